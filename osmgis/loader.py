"""Load an .osm / .osm.pbf file into the raw OSM tables of a prefix."""

import logging
import pathlib
from typing import Any, Dict, List, Optional, Union

import osmium
from shapely.geometry import Point

from .database import OSM_TABLES, SpatialDatabase, check_identifier
from .errors import InvalidInput
from .models import LayerResult
from .tag_filter import TagFilter
from .transform import run_operation

logger = logging.getLogger(__name__)

BATCH_SIZE = 50000

_MEMBER_TABLES = {"n": "node_member", "w": "way_member", "r": "relation_member"}


class RawSchemaHandler(osmium.SimpleHandler):
    """Streams OSM elements into the raw tables, flushing in batches.

    Only tags accepted by ``tag_filter`` are stored; every element is.
    """

    def __init__(self, db: SpatialDatabase, prefix: str, batch_size: int = BATCH_SIZE,
                 tag_filter: Optional[TagFilter] = None):
        super().__init__()
        self.db = db
        self.prefix = prefix
        self.tag_filter = tag_filter or TagFilter(None)
        self.batch_size = batch_size
        self.pending: Dict[str, List[tuple]] = {suffix: [] for suffix in OSM_TABLES}
        self.counts = {"node": 0, "way": 0, "relation": 0}

    def _add(self, suffix: str, row: tuple):
        rows = self.pending[suffix]
        rows.append(row)
        if len(rows) >= self.batch_size:
            self._flush(suffix)

    def _flush(self, suffix: str):
        rows = self.pending[suffix]
        if rows:
            columns = [name for name, _ in OSM_TABLES[suffix]]
            self.db.insert_rows(f"{self.prefix}_{suffix}", columns, rows)
            self.pending[suffix] = []

    def _add_tags(self, suffix: str, element_id: int, tags):
        for tag in tags:
            if self.tag_filter.matches(tag.k, tag.v):
                self._add(suffix, (element_id, tag.k, tag.v))

    def flush(self):
        for suffix in self.pending:
            self._flush(suffix)

    def node(self, n):
        if not n.location.valid():
            return
        self.counts["node"] += 1
        self._add("node", (n.id, Point(n.location.lon, n.location.lat).wkb))
        self._add_tags("node_tag", n.id, n.tags)

    def way(self, w):
        self.counts["way"] += 1
        self._add("way", (w.id,))
        for order, node_ref in enumerate(w.nodes, start=1):
            self._add("way_node", (w.id, node_ref.ref, order))
        self._add_tags("way_tag", w.id, w.tags)

    def relation(self, r):
        self.counts["relation"] += 1
        self._add("relation", (r.id,))
        for member in r.members:
            self._add(_MEMBER_TABLES[member.type], (r.id, member.ref, member.role))
        self._add_tags("relation_tag", r.id, r.tags)


def _load(db: SpatialDatabase, osm_tables_prefix: str, osm_file_path: Union[str, pathlib.Path],
          tags: Any) -> str:
    if db is None:
        raise InvalidInput("Please set a valid database connection")
    if not osm_tables_prefix:
        raise InvalidInput("Invalid empty OSM table prefix")
    check_identifier(osm_tables_prefix)
    path = pathlib.Path(osm_file_path)
    if not path.is_file():
        raise InvalidInput(f"The input OSM file does not exist: {path}")
    tag_filter = TagFilter(tags)

    logger.info(f"Load the OSM file {path} in the database with the prefix {osm_tables_prefix}")
    db.create_osm_tables(osm_tables_prefix)
    handler = RawSchemaHandler(db, osm_tables_prefix, tag_filter=tag_filter)
    try:
        handler.apply_file(str(path))
        handler.flush()
    except Exception:
        db.drop_osm_tables(osm_tables_prefix)
        raise
    db.build_indexes(osm_tables_prefix)
    logger.info(f"Loaded {handler.counts['node']} nodes, {handler.counts['way']} ways "
                f"and {handler.counts['relation']} relations")
    return osm_tables_prefix


def load(db: SpatialDatabase, osm_tables_prefix: str, osm_file_path: Union[str, pathlib.Path],
         tags: Any = None) -> LayerResult:
    """Create the raw tables of ``osm_tables_prefix`` and fill them from a file.

    ``tags`` restricts the stored tags to a tag specification; all tags
    are kept by default. On success ``table_name`` holds the prefix.
    """
    return run_operation("load", _load, db, osm_tables_prefix, osm_file_path, tags)


def drop_osm_tables(db: SpatialDatabase, osm_tables_prefix: str) -> bool:
    if db is None or not osm_tables_prefix:
        logger.error("A database and a prefix are required to drop OSM tables")
        return False
    db.drop_osm_tables(osm_tables_prefix)
    return True
