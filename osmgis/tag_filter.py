"""Tag predicates over the raw ``*_tag`` tables.

A tag specification is either a flat collection of keys::

    ["building", "landcover"]

or a mapping from key to accepted value(s)::

    {"building": ["yes", "house"], "landcover": "grass", "amenity": None}

Clauses for different keys are OR-ed: an entity qualifies as soon as one
of its tags matches one rule.
"""

import logging
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .database import SpatialDatabase, check_identifier
from .errors import InvalidSpecification

logger = logging.getLogger(__name__)

_COLLECTIONS = (list, tuple, set, frozenset)

# Column names produced by the transforms; tag keys never shadow them
RESERVED_COLUMNS = frozenset({"id", "the_geom", "id_node"})


def _normalise_values(key: str, value: Any) -> Tuple[str, ...]:
    """Accepted values for one mapping entry; empty tuple means key-only."""
    if value is None or value is True:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, _COLLECTIONS):
        values = []
        for v in value:
            if not isinstance(v, str):
                raise InvalidSpecification(f"Values of tag '{key}' must be strings, got {v!r}")
            if v not in values:
                values.append(v)
        return tuple(values)
    raise InvalidSpecification(f"Unsupported value for tag '{key}': {value!r}")


class TagFilter:
    """Predicate built from a tag specification.

    ``TagFilter(None)`` and ``TagFilter({})`` are vacuous: they select
    everything, which is different from selecting nothing.
    """

    def __init__(self, tags: Any = None):
        self.rules: Dict[str, Tuple[str, ...]] = {}
        self.keys_only = False

        if tags is None:
            return
        if isinstance(tags, Mapping):
            for key, value in tags.items():
                if not isinstance(key, str) or not key:
                    raise InvalidSpecification(f"Tag keys must be non-empty strings, got {key!r}")
                self.rules[key] = _normalise_values(key, value)
        elif isinstance(tags, _COLLECTIONS):
            for key in tags:
                if not isinstance(key, str) or not key:
                    raise InvalidSpecification(f"Tag keys must be non-empty strings, got {key!r}")
                self.rules.setdefault(key, ())
            self.keys_only = True
        else:
            raise InvalidSpecification(
                f"A tag specification is a collection of keys or a key/value mapping, got {type(tags).__name__}")

    def __repr__(self):
        return f"TagFilter({self.rules!r})"

    @property
    def is_empty(self) -> bool:
        return not self.rules

    def keys(self) -> List[str]:
        return list(self.rules)

    def where_clause(self) -> Tuple[str, List[str]]:
        """Parametrised SQL predicate over ``tag_key``/``tag_value``.

        The vacuous filter gives ``("", [])``.
        """
        if self.is_empty:
            return "", []
        if self.keys_only:
            keys = self.keys()
            return f"tag_key IN ({', '.join('?' for _ in keys)})", keys

        clauses, params = [], []
        for key, values in self.rules.items():
            if values:
                clauses.append(f"(tag_key = ? AND tag_value IN ({', '.join('?' for _ in values)}))")
                params.extend([key, *values])
            else:
                clauses.append("(tag_key = ?)")
                params.append(key)
        return " OR ".join(clauses), params

    def matches(self, key: str, value: Optional[str]) -> bool:
        """Python twin of :meth:`where_clause` for a single tag."""
        if self.is_empty:
            return True
        if key not in self.rules:
            return False
        values = self.rules[key]
        return not values or value in values

    # ── Queries against a tag table ──────────────────────────────────────

    def count(self, db: SpatialDatabase, tag_table: str) -> int:
        """Number of tag rows selected by this filter."""
        where, params = self.where_clause()
        return db.count(tag_table, where, params)

    def select_ids(self, db: SpatialDatabase, tag_table: str, id_column: str, target_table: str) -> int:
        """Copy the distinct ids of qualifying entities into ``target_table(id)``."""
        check_identifier(tag_table)
        check_identifier(id_column)
        check_identifier(target_table)
        where, params = self.where_clause()
        db.execute(f"CREATE TABLE {target_table} (id INTEGER PRIMARY KEY)")
        sql = f"INSERT INTO {target_table} (id) SELECT DISTINCT {id_column} FROM {tag_table}"
        if where:
            sql += f" WHERE {where}"
        db.execute(sql, params)
        return db.count(target_table)

    def selected_keys(self, db: SpatialDatabase, tag_table: str,
                      columns_to_keep: Optional[Iterable[str]] = None) -> List[str]:
        """Tag keys that become pivot columns.

        Restricted to the filter keys plus ``columns_to_keep``; every key
        of the table when both are empty. Keys differing only by case
        collapse onto the first one seen.
        """
        check_identifier(tag_table)
        wanted = self.keys()
        for column in columns_to_keep or []:
            if column and column not in wanted:
                wanted.append(column)

        if wanted:
            marks = ", ".join("?" for _ in wanted)
            rows = db.query(f"SELECT DISTINCT tag_key FROM {tag_table} WHERE tag_key IN ({marks}) "
                            "ORDER BY tag_key", wanted)
        else:
            rows = db.query(f"SELECT DISTINCT tag_key FROM {tag_table} ORDER BY tag_key")

        keys, seen = [], set()
        for (key,) in rows:
            if key is None or key.lower() in seen:
                continue
            if key.lower() in RESERVED_COLUMNS:
                logger.debug(f"Skipping tag key '{key}' that clashes with an output column")
                continue
            seen.add(key.lower())
            keys.append(key)
        return keys

    @staticmethod
    def pivot(db: SpatialDatabase, tag_table: str, id_column: str, ids_table: str,
              keys: Sequence[str]) -> Dict[int, Dict[str, Optional[str]]]:
        """One flat ``{key: value}`` record per entity listed in ``ids_table``.

        Every record carries all ``keys`` (``None`` when absent). Tag keys
        differing only by case fill the same column. A key repeated on one
        entity keeps the last stored value.
        """
        check_identifier(tag_table)
        check_identifier(id_column)
        check_identifier(ids_table)
        by_lower = {k.lower(): k for k in keys}
        records: Dict[int, Dict[str, Optional[str]]] = {}

        for (entity_id,) in db.query(f"SELECT id FROM {ids_table}"):
            records[entity_id] = dict.fromkeys(keys)
        if not keys:
            return records

        sql = (f"SELECT t.{id_column}, t.tag_key, t.tag_value FROM {tag_table} AS t "
               f"JOIN {ids_table} AS f ON t.{id_column} = f.id ORDER BY t.rowid")
        for entity_id, key, value in db.iter_rows(sql):
            column = by_lower.get(key.lower()) if key is not None else None
            if column is not None:
                records[entity_id][column] = value
        return records
