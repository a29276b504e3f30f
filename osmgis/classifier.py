"""Resolve free-form tag values into categorical labels.

A mapping table is ordered by priority::

    {
        "residential": {"building": ["house", "residential"]},
        "light_industry": {"building": ["industrial"], "landuse": ["industrial"]},
        "building": {"building": ["!no"]},
    }

A token prefixed with ``!`` matches any present value except the token.
"""

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

TagMapping = Mapping[str, Mapping[str, Any]]


def tag_value(row: Mapping[str, Any], key: str) -> Optional[str]:
    """Case-insensitive read of ``row[key]``."""
    if key in row:
        return row[key]
    lowered = key.lower()
    for name, value in row.items():
        if isinstance(name, str) and name.lower() == lowered:
            return value
    return None


def token_matches(token: str, value: Optional[str]) -> bool:
    """True when ``value`` satisfies a single match token."""
    if value is None:
        return False
    if token.startswith("!"):
        return value != token[1:].lstrip()
    return value == token


def _matched_labels(row: Mapping[str, Any], available_columns: Iterable[str], mapping: TagMapping):
    """Yield labels in definition order whose rules are satisfied by ``row``."""
    available = {c.lower() for c in available_columns if c}
    for label, rules in mapping.items():
        for osm_key, tokens in rules.items():
            if osm_key.lower() not in available:
                continue
            value = tag_value(row, osm_key)
            if isinstance(tokens, str):
                tokens = [tokens]
            if any(token_matches(token, value) for token in tokens):
                yield label
                break


def classify(row: Mapping[str, Any], available_columns: Iterable[str],
             mapping: TagMapping) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(type, use)`` for one row.

    ``type`` is the first matching label, ``use`` the first later label
    different from it (``type`` when there is none). ``(None, None)``
    when nothing matches.
    """
    type_, use = None, None
    for label in _matched_labels(row, available_columns, mapping):
        if type_ is None:
            type_ = label
        elif label != type_:
            use = label
            break
    if type_ is not None and use is None:
        use = type_
    return type_, use


def classify_value(row: Mapping[str, Any], available_columns: Iterable[str],
                   mapping: TagMapping) -> Optional[str]:
    """First matching label only, for single-category attributes like surface."""
    return next(_matched_labels(row, available_columns, mapping), None)


class TagClassifier:
    """A mapping table bound for reuse across the rows of one layer."""

    def __init__(self, mapping: Optional[TagMapping] = None, default_type: Optional[str] = None):
        self.mapping: Dict[str, Mapping[str, Any]] = dict(mapping or {})
        self.default_type = default_type

    def classify(self, row: Mapping[str, Any], available_columns: Iterable[str]) -> Tuple[Optional[str], Optional[str]]:
        type_, use = classify(row, available_columns, self.mapping)
        if type_ is None and self.default_type is not None:
            return self.default_type, None
        return type_, use

    def classify_value(self, row: Mapping[str, Any], available_columns: Iterable[str]) -> Optional[str]:
        value = classify_value(row, available_columns, self.mapping)
        return value if value is not None else self.default_type
