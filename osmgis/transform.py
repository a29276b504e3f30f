"""Raw OSM tables to attributed point, line and polygon tables.

Every public function takes ``(db, osm_tables_prefix, epsg_code, tags,
columns_to_keep)`` and returns a :class:`~osmgis.models.LayerResult`.
The produced table has an ``id`` column (``n1``, ``w1``, ``r1``...), a
``the_geom`` WKB column in ``epsg_code`` and one text column per kept
tag key.
"""

import sqlite3
import logging
from typing import Any, Callable, Iterable, Optional

from tqdm import tqdm

from .database import SpatialDatabase, check_identifier, quote_identifier, to_wkb, unique_name
from .errors import InvalidInput, NoMatchingData, OSMGISError
from .geometry import GeometryReconstructor, Reprojector
from .models import LayerResult
from .tag_filter import TagFilter

logger = logging.getLogger(__name__)

# element -> (id letter, id column)
ELEMENTS = {
    "node": ("n", "id_node"),
    "way": ("w", "id_way"),
    "relation": ("r", "id_relation"),
}


def check_inputs(db: SpatialDatabase, osm_tables_prefix: str, epsg_code) -> Reprojector:
    if db is None:
        raise InvalidInput("The database should not be None")
    if not osm_tables_prefix:
        raise InvalidInput("Invalid empty OSM table prefix")
    check_identifier(osm_tables_prefix)
    return Reprojector(epsg_code)


def run_operation(operation: str, work: Callable[..., str], *args) -> LayerResult:
    """Run ``work`` and turn any failure into a failed result."""
    try:
        table_name = work(*args)
    except NoMatchingData as e:
        logger.info(f"{operation}: {e}")
        return LayerResult.failure(str(e), e)
    except OSMGISError as e:
        logger.error(f"{operation}: {e}")
        return LayerResult.failure(str(e), e)
    except sqlite3.Error as e:
        logger.error(f"{operation}: database error: {e}")
        return LayerResult.failure(f"Database error: {e}", e)
    except Exception as e:
        logger.exception(f"{operation}: unexpected error")
        return LayerResult.failure(f"Unexpected error: {e}", e)
    return LayerResult.success(table_name)


def _extract(db: SpatialDatabase, osm_tables_prefix: str, epsg_code, tags: Any,
             columns_to_keep: Optional[Iterable[str]], element: str, kind: str, output_prefix: str) -> str:
    reprojector = check_inputs(db, osm_tables_prefix, epsg_code)
    tag_filter = TagFilter(tags)
    letter, id_column = ELEMENTS[element]
    tag_table = f"{osm_tables_prefix}_{element}_tag"

    if not db.table_exists(tag_table):
        raise InvalidInput(f"Missing raw OSM table {tag_table}")
    if tag_filter.count(db, tag_table) <= 0:
        raise NoMatchingData(f"No keys or values found in the {element}s")

    db.build_indexes(osm_tables_prefix)
    keys = tag_filter.selected_keys(db, tag_table, columns_to_keep)
    logger.info(f"Build {element}s as {kind}")

    rows = []
    with db.staging_table(f"FILTERED_{element.upper()}S") as ids_table:
        tag_filter.select_ids(db, tag_table, id_column, ids_table)
        records = TagFilter.pivot(db, tag_table, id_column, ids_table, keys)
        reconstructor = GeometryReconstructor(db, osm_tables_prefix, reprojector)
        geometries = getattr(reconstructor, f"{element}_{kind}")(ids_table)

        for element_id, geometry in tqdm(geometries, desc=f"{element} {kind}", unit=element, leave=False):
            record = records.get(element_id, {})
            row = [f"{letter}{element_id}", to_wkb(geometry)]
            if element == "node":
                row.append(element_id)
            row.extend(record.get(key) for key in keys)
            rows.append(row)

    if not rows:
        raise NoMatchingData(f"No valid {element} {kind} could be built")

    columns = [("id", "TEXT"), ("the_geom", "BLOB")]
    if element == "node":
        columns.append(("id_node", "INTEGER"))
    columns.extend((key, "TEXT") for key in keys)

    output = unique_name(output_prefix)
    db.write_table(output, columns, rows, srid=reprojector.epsg)
    logger.info(f"{len(rows)} {element} {kind} written to {output}")
    return output


# ── Single element kinds ────────────────────────────────────────────────

def extract_nodes_as_points(db, osm_tables_prefix, epsg_code, tags=None, columns_to_keep=None) -> LayerResult:
    """Tagged nodes as points; the table also keeps the raw ``id_node``."""
    return run_operation("extract_nodes_as_points", _extract, db, osm_tables_prefix, epsg_code, tags,
                         columns_to_keep, "node", "points", "OSM_POINTS")


def extract_ways_as_polygons(db, osm_tables_prefix, epsg_code, tags=None, columns_to_keep=None) -> LayerResult:
    """Closed ways of at least 4 points as polygons."""
    return run_operation("extract_ways_as_polygons", _extract, db, osm_tables_prefix, epsg_code, tags,
                         columns_to_keep, "way", "polygons", "WAYS_POLYGONS")


def extract_ways_as_lines(db, osm_tables_prefix, epsg_code, tags=None, columns_to_keep=None) -> LayerResult:
    return run_operation("extract_ways_as_lines", _extract, db, osm_tables_prefix, epsg_code, tags,
                         columns_to_keep, "way", "lines", "WAYS_LINES")


def extract_relations_as_polygons(db, osm_tables_prefix, epsg_code, tags=None, columns_to_keep=None) -> LayerResult:
    """Multipolygon relations, one row per distinct outer ring."""
    return run_operation("extract_relations_as_polygons", _extract, db, osm_tables_prefix, epsg_code, tags,
                         columns_to_keep, "relation", "polygons", "RELATIONS_POLYGONS")


def extract_relations_as_lines(db, osm_tables_prefix, epsg_code, tags=None, columns_to_keep=None) -> LayerResult:
    """Relations of two or more member ways as multi-lines."""
    return run_operation("extract_relations_as_lines", _extract, db, osm_tables_prefix, epsg_code, tags,
                         columns_to_keep, "relation", "lines", "RELATIONS_LINES")


# ── Ways and relations together ─────────────────────────────────────────

def merge_tables(db: SpatialDatabase, first: str, second: str, output: str, srid: int):
    """Concatenate two tables over the sorted union of their columns.

    A column missing on one side is null for that side's rows. Both
    inputs are dropped.
    """
    first_columns = db.columns(first)
    second_columns = db.columns(second)
    union = {}
    for column in first_columns + second_columns:
        union.setdefault(column.lower(), column)
    all_columns = [union[key] for key in sorted(union)]

    def select(columns):
        present = {c.lower() for c in columns}
        return ", ".join(quote_identifier(c) if c.lower() in present else f"NULL AS {quote_identifier(c)}"
                         for c in all_columns)

    db.create_table(output, [(c, "BLOB" if c.lower() == "the_geom" else "TEXT") for c in all_columns], srid=srid)
    names = ", ".join(quote_identifier(c) for c in all_columns)
    try:
        db.execute(f"INSERT INTO {output} ({names}) "
                   f"SELECT {select(first_columns)} FROM {first} "
                   f"UNION ALL SELECT {select(second_columns)} FROM {second}")
    except sqlite3.Error:
        db.drop_table(output)
        raise
    db.drop_table(first, second)


def _combine(kind: str, ways_operation, relations_operation, db, osm_tables_prefix, epsg_code,
             tags, columns_to_keep) -> str:
    check_inputs(db, osm_tables_prefix, epsg_code)
    TagFilter(tags)
    logger.info(f"Start {kind} transformation")
    db.build_indexes(osm_tables_prefix)

    ways = ways_operation(db, osm_tables_prefix, epsg_code, tags, columns_to_keep)
    relations = relations_operation(db, osm_tables_prefix, epsg_code, tags, columns_to_keep)
    output = unique_name(f"OSM_{kind.upper()}")

    if ways and relations:
        try:
            merge_tables(db, ways.table_name, relations.table_name, output, epsg_code)
        except Exception:
            db.drop_table(ways.table_name, relations.table_name, output)
            raise
        logger.info(f"The way and relation {kind} have been built.")
    elif ways:
        db.rename_table(ways.table_name, output)
        logger.info(f"The way {kind} have been built.")
    elif relations:
        db.rename_table(relations.table_name, output)
        logger.info(f"The relation {kind} have been built.")
    else:
        logger.warning(f"Cannot extract any {kind}.")
        raise NoMatchingData(f"Cannot extract any {kind}")
    return output


def to_points(db, osm_tables_prefix, epsg_code, tags=None, columns_to_keep=None) -> LayerResult:
    return extract_nodes_as_points(db, osm_tables_prefix, epsg_code, tags, columns_to_keep)


def to_lines(db, osm_tables_prefix, epsg_code, tags=None, columns_to_keep=None) -> LayerResult:
    """Way lines and relation lines in one table."""
    return run_operation("to_lines", _combine, "lines", extract_ways_as_lines, extract_relations_as_lines,
                         db, osm_tables_prefix, epsg_code, tags, columns_to_keep)


def to_polygons(db, osm_tables_prefix, epsg_code, tags=None, columns_to_keep=None) -> LayerResult:
    """Way polygons and relation polygons in one table."""
    return run_operation("to_polygons", _combine, "polygons", extract_ways_as_polygons, extract_relations_as_polygons,
                         db, osm_tables_prefix, epsg_code, tags, columns_to_keep)


TRANSFORMS = {
    "points": to_points,
    "lines": to_lines,
    "polygons": to_polygons,
}
