"""SpatialDatabase: SQLite storage for raw OSM tables and GIS layers."""

import re
import time
import sqlite3
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from shapely import wkb
from shapely.geometry.base import BaseGeometry

from .constants import DB_PATH, STORAGE_SRID
from .errors import InvalidInput
from .models import PathManager
from .utilities import uuid_suffix

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# ── Raw OSM schema ───────────────────────────────────────────────────────
OSM_TABLES = {
    "node": [("id_node", "INTEGER"), ("the_geom", "BLOB")],
    "way": [("id_way", "INTEGER")],
    "way_node": [("id_way", "INTEGER"), ("id_node", "INTEGER"), ("node_order", "INTEGER")],
    "relation": [("id_relation", "INTEGER")],
    "way_member": [("id_relation", "INTEGER"), ("id_way", "INTEGER"), ("role", "TEXT")],
    "node_member": [("id_relation", "INTEGER"), ("id_node", "INTEGER"), ("role", "TEXT")],
    "relation_member": [("id_relation", "INTEGER"), ("id_sub_relation", "INTEGER"), ("role", "TEXT")],
    "node_tag": [("id_node", "INTEGER"), ("tag_key", "TEXT"), ("tag_value", "TEXT")],
    "way_tag": [("id_way", "INTEGER"), ("tag_key", "TEXT"), ("tag_value", "TEXT")],
    "relation_tag": [("id_relation", "INTEGER"), ("tag_key", "TEXT"), ("tag_value", "TEXT")],
}

OSM_INDEXES = {
    "node": ["id_node"],
    "way_node": ["id_way", "id_node"],
    "way_member": ["id_relation", "id_way"],
    "node_tag": ["id_node", "tag_key"],
    "way_tag": ["id_way", "tag_key"],
    "relation_tag": ["id_relation", "tag_key"],
}


def check_identifier(name: str) -> str:
    """Return ``name`` if it is safe to interpolate as a table name."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise InvalidInput(f"Invalid table name: {name!r}")
    return name


def quote_identifier(name: str) -> str:
    """Quote a free-form column name such as an OSM tag key."""
    return '"' + name.replace('"', '""') + '"'


def unique_name(prefix: str) -> str:
    """Fresh run-scoped table name: ``<prefix>_<uuid>``."""
    return f"{prefix}_{uuid_suffix()}"


def to_wkb(geometry: Optional[BaseGeometry]) -> Optional[bytes]:
    return geometry.wkb if geometry is not None else None


def from_wkb(blob: Optional[bytes]) -> Optional[BaseGeometry]:
    return wkb.loads(bytes(blob)) if blob is not None else None


class SpatialDatabase:
    def __init__(self, db_path: str = DB_PATH):
        self.db_path = PathManager.get_data_path(db_path)

        # Set default connection settings
        self.connection_settings = {
            'timeout': 20,
            'isolation_level': None  # Autocommit mode
        }
        self.init_database()

    def _get_connection(self):
        """Get a database connection with optimized settings."""
        conn = sqlite3.connect(self.db_path, **self.connection_settings)
        conn.execute("PRAGMA busy_timeout = 10000")
        return conn

    def _with_retry(self, work):
        """Run ``work(conn)`` in its own connection, retrying while the file is locked."""
        for attempt in range(3):  # Try 3 times
            try:
                conn = self._get_connection()
                try:
                    return work(conn)
                finally:
                    conn.close()
            except sqlite3.OperationalError as e:
                if "database is locked" in str(e) and attempt < 2:  # Don't sleep on last try
                    logger.warning(f"Database locked, retrying ({attempt + 1}/3)")
                    time.sleep(5)
                else:
                    raise

    def init_database(self):
        """Initialize the database and the geometry registry."""
        def work(conn):
            conn.execute("PRAGMA journal_mode = WAL")    # Write-Ahead Logging
            conn.execute("PRAGMA synchronous = NORMAL")  # Faster writes
            conn.execute("""
                CREATE TABLE IF NOT EXISTS geometry_columns (
                    table_name TEXT PRIMARY KEY,
                    srid INTEGER NOT NULL
                )
            """)
        self._with_retry(work)

    # ── Generic SQL ──────────────────────────────────────────────────────

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute one statement and return the affected row count."""
        return self._with_retry(lambda conn: conn.execute(sql, params).rowcount)

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Tuple]:
        return self._with_retry(lambda conn: conn.execute(sql, params).fetchall())

    def query_dicts(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a query and return each row as a column -> value dict."""
        def work(conn):
            cursor = conn.execute(sql, params)
            names = [d[0] for d in cursor.description]
            return [dict(zip(names, row)) for row in cursor.fetchall()]
        return self._with_retry(work)

    def iter_rows(self, sql: str, params: Sequence[Any] = ()) -> Iterator[Tuple]:
        """Stream rows of a query without materialising the result."""
        conn = self._get_connection()
        try:
            yield from conn.execute(sql, params)
        finally:
            conn.close()

    # ── Tables ───────────────────────────────────────────────────────────

    def table_exists(self, table_name: str) -> bool:
        rows = self.query(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND lower(name) = lower(?)",
            (table_name,))
        return bool(rows)

    def create_table(self, table_name: str, columns: Iterable[Tuple[str, str]],
                     srid: Optional[int] = None):
        """Create ``table_name`` with ``(name, sql_type)`` columns.

        When ``srid`` is given the table is registered in ``geometry_columns``.
        """
        check_identifier(table_name)
        ddl = ", ".join(f"{quote_identifier(name)} {sql_type}" for name, sql_type in columns)

        def work(conn):
            conn.execute(f"DROP TABLE IF EXISTS {table_name}")
            conn.execute(f"CREATE TABLE {table_name} ({ddl})")
            if srid is not None:
                conn.execute("INSERT OR REPLACE INTO geometry_columns (table_name, srid) VALUES (?, ?)",
                             (table_name.lower(), srid))
        self._with_retry(work)

    def drop_table(self, *table_names: str):
        def work(conn):
            for name in table_names:
                check_identifier(name)
                conn.execute(f"DROP TABLE IF EXISTS {name}")
                conn.execute("DELETE FROM geometry_columns WHERE table_name = ?", (name.lower(),))
        self._with_retry(work)

    def rename_table(self, old_name: str, new_name: str):
        check_identifier(old_name)
        check_identifier(new_name)

        def work(conn):
            conn.execute(f"DROP TABLE IF EXISTS {new_name}")
            conn.execute(f"ALTER TABLE {old_name} RENAME TO {new_name}")
            conn.execute("UPDATE geometry_columns SET table_name = ? WHERE table_name = ?",
                         (new_name.lower(), old_name.lower()))
        self._with_retry(work)

    def columns(self, table_name: str) -> List[str]:
        """Column names of a table, in declaration order."""
        check_identifier(table_name)
        return [row[1] for row in self.query(f"PRAGMA table_info({table_name})")]

    def count(self, table_name: str, where: str = "", params: Sequence[Any] = ()) -> int:
        check_identifier(table_name)
        sql = f"SELECT COUNT(*) FROM {table_name}"
        if where:
            sql += f" WHERE {where}"
        return self.query(sql, params)[0][0]

    def srid(self, table_name: str) -> Optional[int]:
        rows = self.query("SELECT srid FROM geometry_columns WHERE table_name = ?",
                          (table_name.lower(),))
        return rows[0][0] if rows else None

    def insert_rows(self, table_name: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> int:
        """Store many rows in one transaction. Returns the number inserted."""
        check_identifier(table_name)
        rows = list(rows)
        if not rows:
            return 0
        names = ", ".join(quote_identifier(c) for c in columns)
        marks = ", ".join("?" for _ in columns)

        def work(conn):
            conn.execute("BEGIN")
            try:
                conn.executemany(f"INSERT INTO {table_name} ({names}) VALUES ({marks})", rows)
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
            return len(rows)
        return self._with_retry(work)

    def write_table(self, table_name: str, columns: Sequence[Tuple[str, str]], rows: Iterable[Sequence[Any]],
                    srid: Optional[int] = None, insert_columns: Optional[Sequence[str]] = None) -> int:
        """Create ``table_name`` and store ``rows`` in it.

        ``insert_columns`` defaults to every column. The table is dropped
        again when the rows cannot be stored.
        """
        self.create_table(table_name, columns, srid=srid)
        try:
            return self.insert_rows(table_name, insert_columns or [name for name, _ in columns], rows)
        except Exception:
            self.drop_table(table_name)
            raise

    def features(self, table_name: str) -> List[Dict[str, Any]]:
        """All rows of a geometry table with ``the_geom`` decoded to shapely."""
        check_identifier(table_name)
        rows = self.query_dicts(f"SELECT * FROM {table_name}")
        for row in rows:
            if "the_geom" in row:
                row["the_geom"] = from_wkb(row["the_geom"])
        return rows

    @contextmanager
    def staging_table(self, prefix: str = "STAGING"):
        """Yield a fresh table name that is dropped on exit, success or not."""
        name = unique_name(prefix)
        try:
            yield name
        finally:
            try:
                self.drop_table(name)
            except sqlite3.Error as e:
                logger.error(f"Could not drop staging table {name}: {e}")

    # ── Raw OSM schema ───────────────────────────────────────────────────

    def create_osm_tables(self, prefix: str):
        """Create the empty raw OSM tables for ``prefix``."""
        check_identifier(prefix)
        for suffix, columns in OSM_TABLES.items():
            self.create_table(f"{prefix}_{suffix}", columns,
                              srid=STORAGE_SRID if suffix == "node" else None)

    def drop_osm_tables(self, prefix: str):
        check_identifier(prefix)
        self.drop_table(*(f"{prefix}_{suffix}" for suffix in OSM_TABLES))
        logger.info(f"Dropped raw OSM tables for prefix {prefix}")

    def osm_tables_exist(self, prefix: str) -> bool:
        return all(self.table_exists(f"{prefix}_{suffix}")
                   for suffix in ("node", "way", "way_node", "relation", "way_member",
                                  "node_tag", "way_tag", "relation_tag"))

    def build_indexes(self, prefix: str):
        """Index the join columns of the raw tables (idempotent)."""
        check_identifier(prefix)

        def work(conn):
            for suffix, columns in OSM_INDEXES.items():
                table = f"{prefix}_{suffix}"
                exists = conn.execute(
                    "SELECT 1 FROM sqlite_master WHERE type = 'table' AND lower(name) = lower(?)",
                    (table,)).fetchone()
                if not exists:
                    continue
                for column in columns:
                    conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_{column} ON {table}({column})")
        self._with_retry(work)
