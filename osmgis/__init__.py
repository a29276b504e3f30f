"""osmgis package: GIS layers from OpenStreetMap data.

Import constants FIRST so logging and .env settings are configured
before any other module runs.
"""

from osmgis import constants as _constants  # noqa: F401

from osmgis.database import SpatialDatabase
from osmgis.layers import create_building_layer, create_road_layer
from osmgis.models import BoundingBox, LayerResult
from osmgis.pipeline import GISLayers
from osmgis.transform import (
    extract_nodes_as_points, extract_relations_as_lines, extract_relations_as_polygons,
    extract_ways_as_lines, extract_ways_as_polygons, to_lines, to_points, to_polygons,
)
