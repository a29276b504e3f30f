"""Configuration constants, paths, and logging setup."""

import os
import pathlib
import logging

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure base paths
BASE_DIR = pathlib.Path(__file__).parent.parent.absolute()
DATA_DIR = pathlib.Path(os.getenv("OSMGIS_DATA_DIR", BASE_DIR / "data"))
OUTPUT_DIR = pathlib.Path(os.getenv("OSMGIS_OUTPUT_DIR", BASE_DIR / "output"))
RESOURCES_DIR = pathlib.Path(__file__).parent / "resources"

# ── Store ────────────────────────────────────────────────────────────────
DB_PATH = os.getenv("OSMGIS_DB_PATH", "osmgis.db")
STORAGE_SRID = 4326

# ── Remote services ──────────────────────────────────────────────────────
OVERPASS_URL = os.getenv("OSMGIS_OVERPASS_URL", "https://overpass-api.de/api/interpreter")
OVERPASS_STATUS_URL = os.getenv("OSMGIS_OVERPASS_STATUS_URL", "http://overpass-api.de/api/status")
NOMINATIM_USER_AGENT = os.getenv("OSMGIS_NOMINATIM_USER_AGENT", "osmgis")
REQUEST_TIMEOUT = int(os.getenv("OSMGIS_REQUEST_TIMEOUT", "180"))

# Overpass server-side cap on memory usage (1 GiB)
OVERPASS_MAXSIZE = 1073741824

# ── Layer defaults ───────────────────────────────────────────────────────
DEFAULT_BUILDING_TYPE = "building"
DEFAULT_ROAD_TYPE = "Small main road"
MPH_TO_KMH = 1.609

# Configure logging
LOG_LEVEL = os.getenv("OSMGIS_LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO),
                    format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)
