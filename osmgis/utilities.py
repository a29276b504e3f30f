"""Overpass query builders, bounding box helpers and JSON parameter reading."""

import json
import uuid
import logging
import pathlib
from collections.abc import Mapping
from typing import Any, Iterable, Optional, Sequence, Union

from shapely.geometry import Polygon, box
from shapely.geometry.base import BaseGeometry

from .constants import OVERPASS_MAXSIZE
from .errors import InvalidInput
from .models import BoundingBox

logger = logging.getLogger(__name__)

OSM_ELEMENTS = ("node", "way", "relation")


def uuid_suffix() -> str:
    return str(uuid.uuid4()).replace("-", "_")


def utm_epsg(lon: float, lat: float) -> int:
    """EPSG code of the WGS84 UTM zone containing ``(lon, lat)``."""
    utm_zone = int((lon + 180) / 6) + 1
    utm_zone = min(max(utm_zone, 1), 60)
    return 32600 + utm_zone if lat >= 0 else 32700 + utm_zone


# ── Bounding boxes ───────────────────────────────────────────────────────

def _bounds(area: Union[BoundingBox, BaseGeometry, Sequence[float]]):
    """(minx, miny, maxx, maxy) of a bounding box, geometry or bounds tuple."""
    if isinstance(area, BoundingBox):
        return area.west, area.south, area.east, area.north
    if isinstance(area, BaseGeometry):
        if area.is_empty:
            raise InvalidInput("Cannot use an empty geometry as an area")
        return area.bounds
    if isinstance(area, (list, tuple)) and len(area) == 4:
        return tuple(area)
    raise InvalidInput(f"Unsupported area: {area!r}")


def envelope_to_string(area) -> str:
    """``south,west,north,east`` with 12 decimals, as Overpass expects."""
    minx, miny, maxx, maxy = _bounds(area)
    return f"{miny:.12f},{minx:.12f},{maxy:.12f},{maxx:.12f}"


def to_bbox(geometry: Optional[BaseGeometry]) -> Optional[str]:
    """Overpass ``(bbox:...)`` filter of a geometry's envelope."""
    if geometry is None or geometry.is_empty:
        logger.error("Cannot convert to an overpass bounding box.")
        return None
    minx, miny, maxx, maxy = geometry.bounds
    return f"(bbox:{miny},{minx},{maxy},{maxx})"


def to_poly(geometry: Optional[BaseGeometry]) -> Optional[str]:
    """Overpass ``(poly:"lat lon ...")`` filter of a polygon's exterior ring."""
    if not isinstance(geometry, Polygon) or geometry.is_empty:
        logger.error("The input geometry must be polygon.")
        return None
    # The closing point is implicit in a poly filter
    coords = list(geometry.exterior.coords)[:-1]
    return '(poly:"' + " ".join(f"{y} {x}" for x, y in coords) + '")'


def build_geometry(bbox: Sequence[float]) -> Optional[Polygon]:
    """Polygon of ``[min_lon, min_lat, max_lon, max_lat]`` in EPSG:4326."""
    if not isinstance(bbox, (list, tuple)) or len(bbox) != 4:
        logger.error("The BBox should be an array of 4 values")
        return None
    min_lon, min_lat, max_lon, max_lat = bbox
    if not all(-90 <= lat <= 90 for lat in (min_lat, max_lat)) or \
            not all(-180 <= lon <= 180 for lon in (min_lon, max_lon)):
        logger.error("Invalid latitude longitude values")
        return None
    geom = box(min(min_lon, max_lon), min(min_lat, max_lat), max(min_lon, max_lon), max(min_lat, max_lat))
    return geom if geom.is_valid and not geom.is_empty else None


def geometry_from_nominatim(bbox: Sequence[float]) -> Optional[Polygon]:
    """Nominatim bounding boxes are ``[south, north, west, east]``."""
    if not isinstance(bbox, (list, tuple)) or len(bbox) != 4:
        logger.error("The bbox must be defined with 4 values")
        return None
    south, north, west, east = bbox
    return build_geometry([west, south, east, north])


def geometry_from_overpass(bbox: Sequence[float]) -> Optional[Polygon]:
    """Overpass bounding boxes are ``[south, west, north, east]``."""
    if not isinstance(bbox, (list, tuple)) or len(bbox) != 4:
        logger.error("The bbox must be defined with 4 values")
        return None
    south, west, north, east = bbox
    return build_geometry([west, south, east, north])


# ── Overpass queries ─────────────────────────────────────────────────────

def _statements(elements: Iterable[str], keys: Optional[Iterable[str]], area_filter: str = "") -> str:
    lines = []
    for element in elements:
        if not keys:
            lines.append(f"\t{element.lower()}{area_filter};")
        else:
            for key in keys:
                lines.append(f'\t{element.lower()}["{key.lower()}"]{area_filter};')
    return "\n".join(lines)


def build_osm_query(area, keys: Optional[Iterable[str]] = None,
                    elements: Iterable[str] = OSM_ELEMENTS) -> str:
    """Overpass query selecting ``elements`` carrying ``keys`` in ``area``.

    A polygon area adds a ``poly`` filter to every statement; any other
    area is used through its bounding box only.
    """
    keys = list(keys or [])
    minx, miny, maxx, maxy = _bounds(area)
    query = f"[bbox:{miny},{minx},{maxy},{maxx}];\n(\n"
    if isinstance(area, Polygon):
        query += _statements(elements, keys, to_poly(area)) + "\n"
        # Without keys every element of the area is already selected
        return query + (");\nout;" if not keys else ");\n(._;>;);\nout;")
    query += _statements(elements, keys) + "\n"
    return query + ");\n(._;>;);\nout;"


def build_osm_query_with_all_data(area, keys: Optional[Iterable[str]] = None,
                                  elements: Iterable[str] = OSM_ELEMENTS) -> str:
    """Like :func:`build_osm_query` but recursing down to every member node."""
    minx, miny, maxx, maxy = _bounds(area)
    query = f"[bbox:{miny},{minx},{maxy},{maxx}];\n((\n"
    query += _statements(elements, list(keys or [])) + "\n"
    return query + ");\n>;);\nout;"


def build_area_query(area) -> str:
    """Everything inside the envelope of ``area``, down to the member nodes."""
    envelope = envelope_to_string(area)
    return (f"[maxsize:{OVERPASS_MAXSIZE}];"
            f"((node({envelope});way({envelope});relation({envelope}););>;);out;")


# ── Parameters ───────────────────────────────────────────────────────────

def read_json_parameters(source: Any) -> dict:
    """Read a JSON object from a path or an open text stream.

    Key order is kept: mapping tables are priority ordered.
    """
    if not source:
        raise InvalidInput("The given file should not be None")
    try:
        if hasattr(source, "read"):
            parsed = json.load(source)
        else:
            path = pathlib.Path(source)
            if not path.is_file():
                raise InvalidInput(f"No file named {path} found.")
            with open(path, encoding="utf-8") as f:
                parsed = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidInput(f"Invalid JSON parameters: {e}") from e
    if not isinstance(parsed, Mapping):
        raise InvalidInput("The json file doesn't contain only parameters.")
    return dict(parsed)
