"""Remote OSM data providers: Nominatim areas and Overpass extracts.

The pipeline only depends on the two abstract providers below, so tests
and offline runs can inject their own implementations.
"""

import re
import logging
import pathlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Union

import osmnx as ox
import requests
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from .constants import NOMINATIM_USER_AGENT, OVERPASS_STATUS_URL, OVERPASS_URL, REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


# ── Interfaces ──────────────────────────────────────────────────────────

class AreaProvider(ABC):
    """Resolves a place name to its boundary (EPSG:4326)."""

    @abstractmethod
    def area_from_place(self, place_name: str) -> Optional[BaseGeometry]:
        """Polygon or multipolygon of the place, None when it cannot be found."""


class OverpassProvider(ABC):
    """Runs an Overpass query and stores the OSM XML answer in a file."""

    @abstractmethod
    def execute(self, query: str, output_path: Union[str, pathlib.Path]) -> bool:
        """True when the answer has been written to ``output_path``."""


# ── Overpass server status ──────────────────────────────────────────────

_CONNECTED_AS = re.compile(r"^Connected as:\s*(\d+)")
_CURRENT_TIME = re.compile(r"^Current time:\s*(\S+)")
_RATE_LIMIT = re.compile(r"^Rate limit:\s*(\d+)")
_SLOTS_AVAILABLE = re.compile(r"^(\d+) slots? available now\.")
_SLOT_AFTER = re.compile(r"^Slot available after:\s*(\S+), in (-?\d+) seconds?\.")
_RUNNING_QUERIES = "Currently running queries"


@dataclass
class OverpassStatus:
    """Parsed text of the Overpass ``/api/status`` endpoint."""
    connection_id: Optional[int] = None
    current_time: Optional[str] = None
    rate_limit: int = 0
    slots_available: int = 0
    slot_waits: List[int] = field(default_factory=list)
    running_queries: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str) -> "OverpassStatus":
        status = cls()
        in_queries = False
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            if in_queries:
                status.running_queries.append(line)
            elif line.startswith(_RUNNING_QUERIES):
                in_queries = True
            elif m := _CONNECTED_AS.match(line):
                status.connection_id = int(m.group(1))
            elif m := _CURRENT_TIME.match(line):
                status.current_time = m.group(1)
            elif m := _RATE_LIMIT.match(line):
                status.rate_limit = int(m.group(1))
            elif m := _SLOTS_AVAILABLE.match(line):
                status.slots_available = int(m.group(1))
            elif m := _SLOT_AFTER.match(line):
                status.slot_waits.append(int(m.group(2)))
        return status

    @property
    def slot_wait_time(self) -> int:
        """Seconds until a slot frees up; 0 if one is free, -1 if unknown."""
        if self.slots_available > 0:
            return 0
        if not self.slot_waits:
            return -1
        return max(min(self.slot_waits), 0)

    def __str__(self):
        lines = [
            f"Connected as: {self.connection_id}",
            f"Current time: {self.current_time}",
            f"Rate limit: {self.rate_limit}",
            f"{self.slots_available} slots available now.",
        ]
        lines += [f"Slot available in {wait} seconds." for wait in self.slot_waits]
        lines.append(f"{_RUNNING_QUERIES}: {len(self.running_queries)}")
        return "\n".join(lines)


# ── Default implementations ─────────────────────────────────────────────

class OverpassClient(OverpassProvider):
    def __init__(self, url: str = OVERPASS_URL, status_url: str = OVERPASS_STATUS_URL,
                 timeout: int = REQUEST_TIMEOUT, session: Optional[requests.Session] = None,
                 log: Optional[logging.Logger] = None):
        self.url = url
        self.status_url = status_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", NOMINATIM_USER_AGENT)
        self.logger = log or logger

    def server_status(self) -> Optional[OverpassStatus]:
        try:
            response = self.session.get(self.status_url, timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.error(f"Cannot get the status of the server: {e}")
            return None
        if response.status_code != 200:
            self.logger.error(f"Cannot get the status of the server. "
                              f"Server answered with code {response.status_code}: {response.text}")
            return None
        return OverpassStatus.parse(response.text)

    def execute(self, query: str, output_path: Union[str, pathlib.Path]) -> bool:
        if not query:
            self.logger.error("The query should not be None or empty.")
            return False
        output_path = pathlib.Path(output_path)
        self.logger.info(f"Executing query... {query}")
        try:
            with self.session.post(self.url, data={"data": query}, stream=True, timeout=self.timeout) as response:
                if response.status_code != 200:
                    self.logger.error(f"Cannot execute the query (HTTP {response.status_code}).\n{self.server_status()}")
                    return False
                self.logger.info(f"Downloading the OSM data from overpass api in {output_path}")
                output_path.parent.mkdir(parents=True, exist_ok=True)
                with open(output_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=1 << 16):
                        f.write(chunk)
        except requests.RequestException as e:
            self.logger.error(f"Overpass request failed: {e}")
            return False
        return True


class NominatimAreaProvider(AreaProvider):
    """Place boundaries through the osmnx Nominatim geocoder."""

    def __init__(self, timeout: int = REQUEST_TIMEOUT, log: Optional[logging.Logger] = None):
        self.timeout = timeout
        self.logger = log or logger

    def area_from_place(self, place_name: str) -> Optional[BaseGeometry]:
        if not place_name:
            self.logger.error("The place name should not be None or empty.")
            return None

        prev_req_timeout = ox.settings.requests_timeout
        ox.settings.requests_timeout = self.timeout
        try:
            gdf = ox.geocode_to_gdf(place_name)
        except Exception as e:
            self.logger.error(f"Cannot find an area from the place name {place_name}: {e}")
            return None
        finally:
            ox.settings.requests_timeout = prev_req_timeout

        for geom in gdf.geometry:
            if isinstance(geom, (Polygon, MultiPolygon)) and not geom.is_empty:
                return geom
        self.logger.error(f"Cannot find any polygon for the place {place_name}.")
        return None
