"""Numeric attribute derivation from OSM tag values.

Every function here is total: unparseable or missing input gives the
documented default instead of an exception.
"""

import math
import re
from typing import Any, Optional

from .constants import MPH_TO_KMH
from .models import HeightsAndLevels

_SPEED = re.compile(r"^\s*(\d+)(\s*([A-Za-z]+))?\s*$")
_INTEGER = re.compile(r"^\s*[+-]?\d+\s*$")


def parse_float(value: Any) -> Optional[float]:
    """Finite float value of a tag, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    else:
        text = str(value).strip()
        if not text or "_" in text:
            return None
        try:
            result = float(text)
        except ValueError:
            return None
    return result if math.isfinite(result) else None


def height_wall(height: Any, b_height: Any, roof_height: Any, b_roof_height: Any) -> float:
    """Wall height: overall height minus roof height.

    ``building:height`` wins over ``height`` and ``building:roof:height``
    over ``roof:height``. 0 unless one of each pair parses.
    """
    h, bh = parse_float(height), parse_float(b_height)
    rh, brh = parse_float(roof_height), parse_float(b_roof_height)
    if (h is None and bh is None) or (rh is None and brh is None):
        return 0.0
    total = bh if bh is not None else h
    roof = brh if brh is not None else rh
    return total - roof


def height_roof(height: Any, b_height: Any) -> float:
    h, bh = parse_float(height), parse_float(b_height)
    if h is not None:
        return h
    if bh is not None:
        return bh
    return 0.0


def nb_levels(b_lev: Any, roof_lev: Any, b_roof_lev: Any) -> int:
    """``building:levels`` plus roof levels, truncated. 0 without ``building:levels``."""
    levels = parse_float(b_lev)
    if levels is None:
        return 0
    roof = parse_float(roof_lev)
    if roof is None:
        roof = parse_float(b_roof_lev)
    return int(levels + (roof or 0.0))


def _multi_level_rule(nb_lev_from_type: Any, height_wall: float, h_threshold_lev2: float) -> bool:
    # Binds as: type 1, or (type 2 and above the threshold)
    return nb_lev_from_type == 1 or (nb_lev_from_type == 2 and height_wall > h_threshold_lev2)


def reconcile_heights_and_levels(height_wall: float, height_roof: float, nb_levels: float,
                                 h_lev_min: float, h_lev_max: float, h_threshold_lev2: float,
                                 nb_lev_from_type: Any) -> HeightsAndLevels:
    """Fill missing heights and levels from each other, then clamp them.

    ``nb_lev_from_type`` is the level rule of the building type: 0 keeps
    a single level, 1 always derives levels, 2 derives levels only for
    walls higher than ``h_threshold_lev2``.
    """
    default_height = h_lev_min * nb_levels if nb_levels != 0 else h_lev_min

    if height_wall == 0:
        height_wall = height_roof if height_roof != 0 else default_height

    if height_roof == 0:
        height_roof = height_wall if height_wall != 0 else default_height

    if _multi_level_rule(nb_lev_from_type, height_wall, h_threshold_lev2):
        if nb_levels == 0:
            if height_wall != 0:
                nb_levels = height_wall / h_lev_min
            elif height_roof != 0:
                nb_levels = height_roof / h_lev_min
            else:
                nb_levels = 1
    else:
        nb_levels = 1

    if height_wall > height_roof:
        height_roof = height_wall

    if nb_levels * h_lev_min > height_roof:
        height_roof = nb_levels * h_lev_min

    if _multi_level_rule(nb_lev_from_type, height_wall, h_threshold_lev2):
        if nb_levels * h_lev_max < height_wall:
            nb_levels = height_wall / h_lev_max

    return HeightsAndLevels(height_wall=height_wall, height_roof=height_roof, nb_levels=nb_levels)


def speed_kmh(maxspeed: Any) -> float:
    """``maxspeed`` tag in km/h, -1 when it cannot be read.

    Accepts a bare integer, or an integer followed by ``kmh`` or ``mph``.
    """
    if maxspeed is None:
        return -1
    match = _SPEED.match(str(maxspeed))
    if not match:
        return -1
    speed = int(match.group(1))
    unit = match.group(3)
    if not unit:
        return speed
    unit = unit.lower()
    if unit == "kmh":
        return speed
    if unit == "mph":
        return speed * MPH_TO_KMH
    return -1


def z_index(layer: Any) -> int:
    if layer is None or isinstance(layer, bool):
        return 0
    if isinstance(layer, int):
        return layer
    text = str(layer)
    return int(text) if _INTEGER.match(text) else 0


def oneway(value: Any) -> bool:
    return value == "yes"


def round_levels(nb_levels: float) -> int:
    """Levels as stored in an integer column (half up)."""
    return int(math.floor(nb_levels + 0.5))
