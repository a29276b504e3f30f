"""Write produced layers to GIS files (GeoPackage, GeoJSON, Shapefile...)."""

import logging
import pathlib
from typing import Optional, Union

import geopandas as gpd

from .database import SpatialDatabase
from .errors import InvalidInput
from .models import PathManager

logger = logging.getLogger(__name__)

DRIVERS = {
    ".gpkg": "GPKG",
    ".geojson": "GeoJSON",
    ".json": "GeoJSON",
    ".shp": "ESRI Shapefile",
}


def to_geodataframe(db: SpatialDatabase, table_name: str) -> gpd.GeoDataFrame:
    """Load a geometry table, with its registered SRID as CRS."""
    if not db.table_exists(table_name):
        raise InvalidInput(f"No table named {table_name}")
    features = db.features(table_name)
    srid = db.srid(table_name)
    crs = f"EPSG:{srid}" if srid else None
    if not features:
        columns = [c for c in db.columns(table_name) if c != "the_geom"]
        return gpd.GeoDataFrame({c: [] for c in columns}, geometry=gpd.GeoSeries([]), crs=crs)
    return gpd.GeoDataFrame(features, geometry="the_geom", crs=crs)


def export_layer(db: SpatialDatabase, table_name: str, output_path: Union[str, pathlib.Path],
                 driver: Optional[str] = None) -> pathlib.Path:
    output_path = PathManager.get_output_path(output_path)
    driver = driver or DRIVERS.get(output_path.suffix.lower())
    if driver is None:
        raise InvalidInput(f"Cannot guess the output format of {output_path}")
    gdf = to_geodataframe(db, table_name)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    gdf.to_file(output_path, driver=driver)
    logger.info(f"Exported {len(gdf)} features of {table_name} to {output_path}")
    return output_path
