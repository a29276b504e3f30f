"""Building and road layers assembled from the raw OSM tables."""

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.validation import make_valid
from tqdm import tqdm

from .attributes import (
    height_roof, height_wall, nb_levels, oneway, reconcile_heights_and_levels,
    round_levels, speed_kmh, z_index,
)
from .classifier import TagClassifier, tag_value
from .constants import DEFAULT_BUILDING_TYPE, DEFAULT_ROAD_TYPE
from .database import SpatialDatabase, check_identifier, to_wkb, unique_name
from .errors import InvalidInput, NoMatchingData
from .geometry import line_parts, polygon_parts
from .models import BuildingAttributes, LayerResult, RoadAttributes
from .parameters import building_parameters, road_parameters
from .transform import check_inputs, extract_ways_as_lines, run_operation, to_polygons

logger = logging.getLogger(__name__)

BUILDING_COLUMNS = [
    ("the_geom", "BLOB"),
    ("id_build", "INTEGER PRIMARY KEY AUTOINCREMENT"),
    ("id_source", "TEXT"),
    ("height_wall", "REAL"),
    ("height_roof", "REAL"),
    ("nb_lev", "INTEGER"),
    ("type", "TEXT"),
    ("main_use", "TEXT"),
    ("zindex", "INTEGER"),
]

ROAD_COLUMNS = [
    ("the_geom", "BLOB"),
    ("id_road", "INTEGER PRIMARY KEY AUTOINCREMENT"),
    ("id_source", "TEXT"),
    ("type", "TEXT"),
    ("surface", "TEXT"),
    ("oneway", "INTEGER"),
    ("maxspeed", "INTEGER"),
    ("zindex", "INTEGER"),
]


# ── Per-row derivation ──────────────────────────────────────────────────

def building_attributes(row: Mapping[str, Any], columns: Iterable[str], classifier: TagClassifier,
                        type_levels: Mapping[str, int], h_lev_min: float, h_lev_max: float,
                        h_threshold_lev2: float) -> BuildingAttributes:
    """Heights, levels, type, use and z-index of one building row."""
    columns = list(columns)
    wall = height_wall(tag_value(row, "height"), tag_value(row, "building:height"),
                       tag_value(row, "roof:height"), tag_value(row, "building:roof:height"))
    roof = height_roof(tag_value(row, "height"), tag_value(row, "building:height"))
    levels = nb_levels(tag_value(row, "building:levels"), tag_value(row, "roof:levels"),
                       tag_value(row, "building:roof:levels"))

    type_, use = classifier.classify(row, columns)
    if not type_:
        type_ = DEFAULT_BUILDING_TYPE

    reconciled = reconcile_heights_and_levels(wall, roof, levels, h_lev_min, h_lev_max, h_threshold_lev2,
                                              type_levels.get(type_, 0))
    return BuildingAttributes(
        height_wall=reconciled.height_wall,
        height_roof=reconciled.height_roof,
        nb_lev=round_levels(reconciled.nb_levels),
        type=type_,
        main_use=use,
        zindex=z_index(tag_value(row, "layer")),
    )


def road_attributes(row: Mapping[str, Any], columns: Iterable[str], type_classifier: TagClassifier,
                    surface_classifier: TagClassifier, maxspeed_defaults: Mapping[str, Any]) -> RoadAttributes:
    """Type, surface, direction, speed and z-index of one road row."""
    columns = list(columns)
    type_, _ = type_classifier.classify(row, columns)
    if not type_:
        type_ = DEFAULT_ROAD_TYPE

    speed = speed_kmh(tag_value(row, "maxspeed"))
    if speed == -1:
        speed = maxspeed_defaults.get(type_)

    return RoadAttributes(
        type=type_,
        surface=surface_classifier.classify_value(row, columns),
        oneway=oneway(tag_value(row, "oneway")),
        maxspeed=speed,
        zindex=z_index(tag_value(row, "layer")),
    )


# ── Helpers ─────────────────────────────────────────────────────────────

def _check_layer_inputs(db: SpatialDatabase, output_table_prefix: str):
    if db is None:
        raise InvalidInput("Please set a valid database connection")
    if not output_table_prefix:
        raise InvalidInput("Invalid empty output table prefix")
    check_identifier(output_table_prefix)


def zone_envelope(db: SpatialDatabase, zone_envelope_table: Optional[str]) -> Optional[BaseGeometry]:
    """Union of the geometries of ``zone_envelope_table``, or None."""
    if not zone_envelope_table:
        return None
    if not db.table_exists(zone_envelope_table):
        raise InvalidInput(f"Missing zone envelope table {zone_envelope_table}")
    geometries = [f["the_geom"] for f in db.features(zone_envelope_table) if f.get("the_geom") is not None]
    if not geometries:
        raise NoMatchingData(f"Zone envelope table {zone_envelope_table} is empty")
    return unary_union(geometries)


def _valid(geometry: BaseGeometry) -> BaseGeometry:
    return geometry if geometry.is_valid else make_valid(geometry)


# ── Building layer ──────────────────────────────────────────────────────

def _building_layer(db, osm_tables_prefix, epsg, output_table_prefix, zone_envelope_table, parameters):
    _check_layer_inputs(db, output_table_prefix)
    params = building_parameters(parameters)
    logger.info("Create the building layer")

    check_inputs(db, osm_tables_prefix, epsg)
    polygons = to_polygons(db, osm_tables_prefix, epsg, params["tags"], params["columns"])
    if not polygons:
        raise NoMatchingData(f"Cannot create the building layer: {polygons.message}")

    try:
        envelope = zone_envelope(db, zone_envelope_table)
        columns = [c for c in db.columns(polygons.table_name) if c.lower() != "the_geom"]
        classifier = TagClassifier(params["type"])
        type_levels: Dict[str, int] = params["level"]

        rows = []
        for feature in tqdm(db.features(polygons.table_name), desc="buildings", unit="building", leave=False):
            geometry = feature["the_geom"]
            if geometry is None:
                continue
            geometry = _valid(geometry)
            if envelope is not None and not geometry.intersects(envelope):
                continue

            attributes = building_attributes(feature, columns, classifier, type_levels, params["h_lev_min"],
                                             params["h_lev_max"], params["hThresholdLev2"])
            if not attributes.is_kept():
                continue
            for part in polygon_parts(geometry):
                rows.append((to_wkb(part), feature["id"], attributes.height_wall, attributes.height_roof,
                             attributes.nb_lev, attributes.type, attributes.main_use, attributes.zindex))

        output = unique_name(f"{output_table_prefix}_BUILDING")
        db.write_table(output, BUILDING_COLUMNS, rows, srid=epsg,
                       insert_columns=[name for name, _ in BUILDING_COLUMNS if name != "id_build"])
    finally:
        db.drop_table(polygons.table_name)

    logger.info(f"{len(rows)} buildings written to {output}")
    return output


def create_building_layer(db: SpatialDatabase, osm_tables_prefix: str, epsg: int, output_table_prefix: str,
                          zone_envelope_table: Optional[str] = None, parameters: Any = None) -> LayerResult:
    """Building footprints with heights, levels, type and main use.

    ``parameters`` replaces the built-in building parameters; it may be a
    dict or a JSON file path.
    """
    return run_operation("create_building_layer", _building_layer, db, osm_tables_prefix, epsg,
                         output_table_prefix, zone_envelope_table, parameters)


# ── Road layer ──────────────────────────────────────────────────────────

def _road_layer(db, osm_tables_prefix, epsg, output_table_prefix, zone_envelope_table, parameters):
    _check_layer_inputs(db, output_table_prefix)
    params = road_parameters(parameters)
    logger.info("Create the road layer")

    check_inputs(db, osm_tables_prefix, epsg)
    lines = extract_ways_as_lines(db, osm_tables_prefix, epsg, params["tags"], params["columns"])
    if not lines:
        raise NoMatchingData(f"Cannot create the road layer: {lines.message}")

    try:
        envelope = zone_envelope(db, zone_envelope_table)
        columns = [c for c in db.columns(lines.table_name) if c.lower() != "the_geom"]
        type_classifier = TagClassifier(params["type"], default_type=DEFAULT_ROAD_TYPE)
        surface_classifier = TagClassifier(params["surface"])

        rows = []
        for feature in tqdm(db.features(lines.table_name), desc="roads", unit="road", leave=False):
            geometry = feature["the_geom"]
            if geometry is None:
                continue
            if envelope is not None:
                if not geometry.intersects(envelope):
                    continue
                if not envelope.contains(geometry):
                    geometry = geometry.intersection(envelope)

            attributes = road_attributes(feature, columns, type_classifier, surface_classifier,
                                         params["maxspeed"])
            maxspeed = int(attributes.maxspeed) if attributes.maxspeed is not None else None
            for part in line_parts(geometry):
                rows.append((to_wkb(part), feature["id"], attributes.type, attributes.surface,
                             int(attributes.oneway), maxspeed, attributes.zindex))

        output = unique_name(f"{output_table_prefix}_ROAD")
        db.write_table(output, ROAD_COLUMNS, rows, srid=epsg,
                       insert_columns=[name for name, _ in ROAD_COLUMNS if name != "id_road"])
    finally:
        db.drop_table(lines.table_name)

    logger.info("Roads transformation finishes")
    return output


def create_road_layer(db: SpatialDatabase, osm_tables_prefix: str, epsg: int, output_table_prefix: str,
                      zone_envelope_table: Optional[str] = None, parameters: Any = None) -> LayerResult:
    """Road centre lines with type, surface, oneway, maxspeed and z-index."""
    return run_operation("create_road_layer", _road_layer, db, osm_tables_prefix, epsg,
                         output_table_prefix, zone_envelope_table, parameters)
