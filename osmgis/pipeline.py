"""Place name to building and road layers, end to end."""

import re
import logging
import shutil
import pathlib
import tempfile
from dataclasses import dataclass
from typing import Any, Optional

from .database import SpatialDatabase, unique_name
from .geometry import Reprojector
from .layers import create_building_layer, create_road_layer
from .loader import load
from .models import BoundingBox
from .remote import AreaProvider, NominatimAreaProvider, OverpassClient, OverpassProvider
from .utilities import build_area_query, utm_epsg

logger = logging.getLogger(__name__)


@dataclass
class Zone:
    zone_table_name: str
    zone_envelope_table_name: str
    epsg: int
    osm_file_path: pathlib.Path


def format_place_name(place_name: str) -> str:
    """``"Vannes, France"`` -> ``"Vannes_France"``, usable as a table prefix."""
    parts = [p for p in re.split(r"[\s,]+", place_name.strip()) if p]
    name = "_".join(re.sub(r"\W", "", p) for p in parts)
    if not name or not (name[0].isalpha() or name[0] == "_"):
        name = f"PLACE_{name}"
    return name


class GISLayers:
    """Download the OSM data of a place and build its GIS layers.

    Collaborators are injected; by default Nominatim (through osmnx) and
    the public Overpass API are used.
    """

    def __init__(self, db: SpatialDatabase, area_provider: Optional[AreaProvider] = None,
                 overpass_provider: Optional[OverpassProvider] = None,
                 building_parameters: Any = None, road_parameters: Any = None,
                 work_dir: Optional[pathlib.Path] = None, log: Optional[logging.Logger] = None):
        self.db = db
        self.area_provider = area_provider or NominatimAreaProvider(log=log)
        self.overpass_provider = overpass_provider or OverpassClient(log=log)
        self.building_parameters = building_parameters
        self.road_parameters = road_parameters
        self.work_dir = work_dir
        self.logger = log or logger

    def download(self, place_name: str) -> Optional[Zone]:
        """Store the zone of ``place_name`` and fetch its OSM data."""
        area = self.area_provider.area_from_place(place_name)
        if area is None:
            self.logger.error(f"Cannot find an area from the place name {place_name}")
            return None

        lon, lat = BoundingBox.from_bounds(area.bounds).center
        epsg = utm_epsg(lon, lat)
        reproject = Reprojector(epsg)
        area_utm = reproject(area)
        if area_utm is None:
            self.logger.error(f"Cannot reproject the area of {place_name} to EPSG:{epsg}")
            return None
        self.logger.info(f"Using EPSG:{epsg} for {place_name}")

        zone_table = unique_name("ZONE")
        zone_envelope_table = unique_name("ZONE_ENVELOPE")
        columns = [("the_geom", "BLOB"), ("id_zone", "TEXT")]
        self.db.write_table(zone_table, columns, [(area_utm.wkb, place_name)], srid=epsg)
        self.db.write_table(zone_envelope_table, columns,
                            [(BoundingBox.from_bounds(area_utm.bounds).to_polygon().wkb, place_name)], srid=epsg)

        work_dir = self.work_dir or pathlib.Path(tempfile.mkdtemp(prefix="osmgis_"))
        osm_file_path = work_dir / f"{unique_name('osm')}.osm"
        if not self.overpass_provider.execute(build_area_query(area), osm_file_path):
            self.logger.error(f"Cannot extract the OSM data from the place {place_name}")
            self.db.drop_table(zone_table, zone_envelope_table)
            self._remove_download(osm_file_path)
            return None
        return Zone(zone_table, zone_envelope_table, epsg, osm_file_path)

    def _remove_download(self, osm_file_path: pathlib.Path):
        """Delete the temporary download directory; a given ``work_dir`` is kept."""
        if self.work_dir is None:
            shutil.rmtree(osm_file_path.parent, ignore_errors=True)

    def run(self, place_name: str) -> Optional[dict]:
        """Table names of the produced layers, None when nothing could be loaded.

        A layer that cannot be built is reported as None while the other
        one is still attempted.
        """
        if self.db is None:
            self.logger.error("Please set a valid database connection")
            return None

        zone = self.download(place_name)
        if zone is None:
            self.logger.error(f"Cannot create the OSM GIS layers from the place {place_name}")
            return None

        prefix = unique_name("OSM_DATA")
        self.logger.info(f"Loading OSM data from the place name {place_name}")
        loaded = load(self.db, prefix, zone.osm_file_path)
        self._remove_download(zone.osm_file_path)
        if not loaded:
            self.logger.error(f"Cannot load the OSM data from the place name {place_name}")
            return None

        output_prefix = format_place_name(place_name)
        try:
            buildings = create_building_layer(self.db, prefix, zone.epsg, output_prefix,
                                              parameters=self.building_parameters)
            if not buildings:
                self.logger.error(f"Cannot create the building layer: {buildings.message}")

            roads = create_road_layer(self.db, prefix, zone.epsg, output_prefix,
                                      parameters=self.road_parameters)
            if not roads:
                self.logger.error(f"Cannot create the road layer: {roads.message}")
        finally:
            self.db.drop_osm_tables(prefix)

        return {
            "building_table_name": buildings.table_name,
            "road_table_name": roads.table_name,
            "zone_table_name": zone.zone_table_name,
            "zone_envelope_table_name": zone.zone_envelope_table_name,
            "epsg": zone.epsg,
        }
