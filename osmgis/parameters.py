"""Layer parameter documents (tag filters, mapping tables, numeric defaults)."""

import logging
from collections.abc import Mapping
from typing import Any, Iterable, Optional

from .constants import RESOURCES_DIR
from .errors import InvalidInput
from .utilities import read_json_parameters

logger = logging.getLogger(__name__)

BUILDING_PARAMETERS = "building_params.json"
ROAD_PARAMETERS = "road_params.json"

BUILDING_KEYS = ("tags", "columns", "type", "level", "h_lev_min", "h_lev_max", "hThresholdLev2")
ROAD_KEYS = ("tags", "columns", "type", "surface", "maxspeed")


def parameters_mapping(source: Any, default_name: str, required: Iterable[str] = ()) -> dict:
    """Load a parameter document.

    ``source`` may be a mapping, a JSON file path or an open stream; when
    it is None the built-in default ``default_name`` is used instead.
    """
    if source is None:
        logger.debug(f"Using default parameters {default_name}")
        parameters = read_json_parameters(RESOURCES_DIR / default_name)
    elif isinstance(source, Mapping):
        parameters = dict(source)
    else:
        parameters = read_json_parameters(source)

    missing = [key for key in required if key not in parameters]
    if missing:
        raise InvalidInput(f"Missing parameters: {', '.join(missing)}")
    return parameters


def building_parameters(source: Optional[Any] = None) -> dict:
    parameters = parameters_mapping(source, BUILDING_PARAMETERS, BUILDING_KEYS)
    for key in ("h_lev_min", "h_lev_max", "hThresholdLev2"):
        value = parameters[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise InvalidInput(f"Parameter {key} must be a positive number, got {value!r}")
    return parameters


def road_parameters(source: Optional[Any] = None) -> dict:
    return parameters_mapping(source, ROAD_PARAMETERS, ROAD_KEYS)
