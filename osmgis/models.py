"""Data classes and path management."""

import pathlib
from dataclasses import dataclass
from typing import Optional, Tuple

from shapely.geometry import Polygon, box

from .constants import OUTPUT_DIR, DATA_DIR


class PathManager:
    """Manage data and output paths, creating the directories on first use."""

    @staticmethod
    def get_output_path(filename) -> pathlib.Path:
        """Get the output file path; relative names land in OUTPUT_DIR."""
        path = pathlib.Path(filename)
        if path.is_absolute():
            return path
        OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        return OUTPUT_DIR / path

    @staticmethod
    def get_data_path(filename: str) -> pathlib.Path:
        """Get the data file path."""
        path = pathlib.Path(filename)
        if path.is_absolute():
            path.parent.mkdir(parents=True, exist_ok=True)
            return path
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        return DATA_DIR / filename


@dataclass
class BoundingBox:
    north: float
    south: float
    east: float
    west: float

    @classmethod
    def from_bounds(cls, bounds: Tuple[float, float, float, float]) -> "BoundingBox":
        """Build from a shapely ``(minx, miny, maxx, maxy)`` bounds tuple."""
        west, south, east, north = bounds
        return cls(north=north, south=south, east=east, west=west)

    def to_polygon(self) -> Polygon:
        """Convert bounding box to shapely polygon."""
        return box(self.west, self.south, self.east, self.north)

    @property
    def center(self) -> Tuple[float, float]:
        """(lon, lat) of the box centre."""
        return (self.west + self.east) / 2, (self.south + self.north) / 2


@dataclass
class LayerResult:
    """Outcome of a public operation.

    ``ok`` is False when the operation failed or selected nothing; the
    reason is in ``message`` and ``error`` names the error class.
    """
    ok: bool
    table_name: Optional[str] = None
    message: str = ""
    error: Optional[str] = None

    def __bool__(self):
        return self.ok

    @classmethod
    def success(cls, table_name: str, message: str = "") -> "LayerResult":
        return cls(ok=True, table_name=table_name, message=message)

    @classmethod
    def failure(cls, message: str, error: Optional[Exception] = None) -> "LayerResult":
        return cls(ok=False, message=message,
                   error=type(error).__name__ if error is not None else None)


@dataclass
class HeightsAndLevels:
    height_wall: float
    height_roof: float
    nb_levels: float


@dataclass
class BuildingAttributes:
    height_wall: float
    height_roof: float
    nb_lev: int
    type: Optional[str]
    main_use: Optional[str]
    zindex: int

    def is_kept(self) -> bool:
        """Buildings without levels, below ground or without a type are dropped."""
        return self.nb_lev > 0 and self.zindex >= 0 and bool(self.type)


@dataclass
class RoadAttributes:
    type: str
    surface: Optional[str]
    oneway: bool
    maxspeed: Optional[float]
    zindex: int
