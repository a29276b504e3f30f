"""Coordinate transforms and OSM topology to shapely geometry reconstruction."""

import logging
from itertools import groupby
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import shapely
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError
from shapely import wkb
from shapely.geometry import LineString, MultiLineString, Polygon
from shapely.geometry.base import BaseGeometry, BaseMultipartGeometry
from shapely.ops import linemerge, transform

from .constants import STORAGE_SRID
from .database import SpatialDatabase, check_identifier
from .errors import InvalidProjection, MalformedGeometry

logger = logging.getLogger(__name__)

Coordinates = Sequence[Tuple[float, float]]


# ── Coordinate transforms ───────────────────────────────────────────────

class Reprojector:
    """Reprojects geometries from the storage CRS (EPSG:4326) to ``epsg``."""

    def __init__(self, epsg):
        if isinstance(epsg, bool) or not isinstance(epsg, (int, np.integer)) or epsg <= 0:
            raise InvalidProjection(f"EPSG code must be a positive integer, got {epsg!r}")
        self.epsg = int(epsg)
        try:
            CRS.from_epsg(self.epsg)
        except CRSError as e:
            raise InvalidProjection(f"Unknown EPSG code {self.epsg}: {e}") from e

        if self.epsg == STORAGE_SRID:
            self.transformer = None
        else:
            self.transformer = Transformer.from_crs(
                f"EPSG:{STORAGE_SRID}",
                f"EPSG:{self.epsg}",
                always_xy=True
            )

    def __call__(self, geom: Optional[BaseGeometry]) -> Optional[BaseGeometry]:
        return transform_geometry(geom, self.transformer)


def transform_geometry(geom, transformer):
    """Transform geometry from WGS84 to the target projection.

    Returns None for empty input or when any coordinate comes back NaN.
    """
    if geom is None or geom.is_empty:
        return None
    if transformer is None:
        return geom

    try:
        transformed = transform(transformer.transform, geom)
    except Exception as e:
        logger.error(f"Error transforming geometry: {e}")
        return None

    # Check for NaN coordinates
    if np.isnan(shapely.get_coordinates(transformed)).any():
        return None
    return transformed


# ── Constructors ────────────────────────────────────────────────────────

def make_line(points: Coordinates) -> LineString:
    """Line through ordered points; fewer than 2 points is malformed."""
    if len(points) < 2:
        raise MalformedGeometry(f"A line needs at least 2 points, got {len(points)}")
    return LineString(points)


def is_closed_ring(points: Coordinates) -> bool:
    """First point equals last and there are at least 3 distinct vertices."""
    return len(points) >= 4 and tuple(points[0]) == tuple(points[-1])


def make_ring_polygon(points: Coordinates) -> Polygon:
    if not is_closed_ring(points):
        raise MalformedGeometry(f"Open or degenerate ring of {len(points)} points")
    return Polygon(points)


def explode(geometry: Optional[BaseGeometry]) -> Iterator[BaseGeometry]:
    """Yield the single-part geometries inside ``geometry``."""
    if geometry is None or geometry.is_empty:
        return
    if isinstance(geometry, BaseMultipartGeometry):
        for part in geometry.geoms:
            yield from explode(part)
    else:
        yield geometry


def polygon_parts(geometry: Optional[BaseGeometry]) -> List[Polygon]:
    return [part for part in explode(geometry) if isinstance(part, Polygon)]


def line_parts(geometry: Optional[BaseGeometry]) -> List[LineString]:
    return [part for part in explode(geometry) if isinstance(part, LineString)]


def merge_rings(lines: Iterable[LineString]) -> List[LineString]:
    """Join lines sharing endpoints and keep the closed rings.

    Open chains left after merging are unmatched ring fragments and are
    dropped.
    """
    lines = [line for line in lines if line is not None and not line.is_empty]
    if not lines:
        return []
    merged = linemerge(lines)
    rings = []
    for part in line_parts(merged):
        if is_closed_ring(list(part.coords)):
            rings.append(part)
        else:
            logger.debug(f"Dropping unclosed ring fragment of {len(part.coords)} points")
    return rings


def assemble_polygons(outer_lines: Iterable[LineString],
                      inner_lines: Iterable[LineString]) -> List[Polygon]:
    """One polygon per distinct outer ring, holed by the inner rings it contains."""
    inner_shells = [Polygon(ring.coords) for ring in merge_rings(inner_lines)]
    polygons, seen = [], set()
    for ring in merge_rings(outer_lines):
        shell = Polygon(ring.coords)
        key = shell.normalize().wkb
        if key in seen:
            continue
        seen.add(key)
        holes = [inner.exterior.coords for inner in inner_shells if shell.contains(inner)]
        polygons.append(Polygon(shell.exterior.coords, holes))
    return polygons


# ── Reconstruction from the raw tables ──────────────────────────────────

class GeometryReconstructor:
    """Rebuild element geometries for the ids listed in a staging table.

    Every generator yields ``(element_id, geometry)`` already reprojected;
    malformed elements are skipped.
    """

    def __init__(self, db: SpatialDatabase, prefix: str, reprojector: Reprojector,
                 log: Optional[logging.Logger] = None):
        self.db = db
        self.prefix = check_identifier(prefix)
        self.reproject = reprojector
        self.logger = log or logger

    def _emit(self, element_id, geometry, kind: str):
        projected = self.reproject(geometry)
        if projected is None:
            self.logger.debug(f"Dropping {kind} {element_id}: reprojection failed")
        return projected

    def node_points(self, ids_table: str) -> Iterator[Tuple[int, BaseGeometry]]:
        check_identifier(ids_table)
        sql = (f"SELECT n.id_node, n.the_geom FROM {self.prefix}_node AS n "
               f"JOIN {ids_table} AS f ON n.id_node = f.id ORDER BY n.id_node")
        for node_id, blob in self.db.iter_rows(sql):
            if blob is None:
                continue
            point = self._emit(node_id, wkb.loads(bytes(blob)), "node")
            if point is not None:
                yield node_id, point

    def way_coordinates(self, ids_table: str) -> Dict[int, List[Tuple[float, float]]]:
        """Ordered node coordinates of every way in ``ids_table``."""
        check_identifier(ids_table)
        sql = (f"SELECT wn.id_way, n.the_geom FROM {self.prefix}_way_node AS wn "
               f"JOIN {ids_table} AS f ON wn.id_way = f.id "
               f"JOIN {self.prefix}_node AS n ON n.id_node = wn.id_node "
               f"ORDER BY wn.id_way, wn.node_order")
        ways = {}
        for way_id, rows in groupby(self.db.iter_rows(sql), key=lambda row: row[0]):
            coords = []
            for _, blob in rows:
                if blob is None:
                    continue
                point = wkb.loads(bytes(blob))
                coords.append((point.x, point.y))
            ways[way_id] = coords
        return ways

    def _way_lines(self, ids_table: str) -> Dict[int, LineString]:
        """Unprojected lines of the ways in ``ids_table``."""
        lines = {}
        for way_id, coords in self.way_coordinates(ids_table).items():
            try:
                lines[way_id] = make_line(coords)
            except MalformedGeometry as e:
                self.logger.debug(f"Dropping way {way_id}: {e}")
        return lines

    def way_lines(self, ids_table: str) -> Iterator[Tuple[int, BaseGeometry]]:
        for way_id, line in self._way_lines(ids_table).items():
            projected = self._emit(way_id, line, "way")
            if projected is not None:
                yield way_id, projected

    def way_polygons(self, ids_table: str) -> Iterator[Tuple[int, BaseGeometry]]:
        for way_id, coords in self.way_coordinates(ids_table).items():
            try:
                polygon = make_ring_polygon(coords)
            except MalformedGeometry as e:
                self.logger.debug(f"Dropping way {way_id}: {e}")
                continue
            projected = self._emit(way_id, polygon, "way")
            if projected is not None:
                yield way_id, projected

    def _members(self, ids_table: str) -> Tuple[Dict[int, List[Tuple[str, int]]], Dict[int, LineString]]:
        """Member ``(role, way_id)`` lists per relation plus the member way lines."""
        check_identifier(ids_table)
        members: Dict[int, List[Tuple[str, int]]] = {}
        sql = (f"SELECT wm.id_relation, wm.role, wm.id_way FROM {self.prefix}_way_member AS wm "
               f"JOIN {ids_table} AS f ON wm.id_relation = f.id ORDER BY wm.id_relation, wm.rowid")
        for relation_id, role, way_id in self.db.iter_rows(sql):
            members.setdefault(relation_id, []).append(((role or "").lower(), way_id))

        with self.db.staging_table("MEMBER_WAYS") as member_ways:
            self.db.execute(f"CREATE TABLE {member_ways} (id INTEGER PRIMARY KEY)")
            self.db.execute(
                f"INSERT INTO {member_ways} (id) SELECT DISTINCT wm.id_way "
                f"FROM {self.prefix}_way_member AS wm JOIN {ids_table} AS f ON wm.id_relation = f.id")
            lines = self._way_lines(member_ways)
        return members, lines

    def relation_lines(self, ids_table: str) -> Iterator[Tuple[int, BaseGeometry]]:
        members, lines = self._members(ids_table)
        for relation_id, relation_members in members.items():
            parts = [lines[way_id] for _, way_id in relation_members if way_id in lines]
            if len(parts) < 2:
                self.logger.debug(f"Dropping relation {relation_id}: {len(parts)} member line(s)")
                continue
            projected = self._emit(relation_id, MultiLineString(parts), "relation")
            if projected is not None:
                yield relation_id, projected

    def relation_polygons(self, ids_table: str) -> Iterator[Tuple[int, BaseGeometry]]:
        """Polygons of multipolygon-like relations, one row per outer ring."""
        members, lines = self._members(ids_table)
        for relation_id, relation_members in members.items():
            outer = [lines[w] for role, w in relation_members if role == "outer" and w in lines]
            inner = [lines[w] for role, w in relation_members if role == "inner" and w in lines]
            polygons = assemble_polygons(outer, inner)
            if not polygons:
                self.logger.debug(f"Dropping relation {relation_id}: no closed outer ring")
            for polygon in polygons:
                projected = self._emit(relation_id, polygon, "relation")
                if projected is not None:
                    yield relation_id, projected
