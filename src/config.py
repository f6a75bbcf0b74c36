"""
Runtime configuration for the AQ drill-down dashboard.

Backend locations are read from environment variables so the same code can
point at a local geoserver or a deployed one. Everything else is fixed
module-level configuration shared by the clients, the controller and the
Streamlit app.
"""

import logging
import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
DATA_CACHE_DIR = PROJECT_ROOT / "data_cache"

# Backends
GEOSERVER_WFS_URL = os.environ.get(
    "GEOSERVER_WFS_URL", "http://localhost:8080/geoserver/wfs"
)
AQ_API_BASE_URL = os.environ.get("AQ_API_BASE_URL", "http://localhost:8000/api")
REQUEST_TIMEOUT = int(os.environ.get("AQ_REQUEST_TIMEOUT", "30"))

AQ_DATA_ENDPOINT = "aq_data"
SENSOR_AQ_DATA_ENDPOINT = "sensor_aq_data"
SENSOR_GEO_DATA_ENDPOINT = "sensor_geo_data"

# Layer names as defined in geoserver
STATE_LAYER_NAME = "geonode:India_States_Simplified_V2"
DIVISION_LAYER_NAME = "geonode:India_Divisions_Merged_V1"
DISTRICT_LAYER_NAME = "geonode:India_Districts_Merged_Simplified_V1"

GEO_LAYER_NAMES = (STATE_LAYER_NAME, DIVISION_LAYER_NAME, DISTRICT_LAYER_NAME)

# Pollutants requested on every AQ query, in request order
POLLUTANT_CODES = [
    "pm2.5cnc",
    "pm10cnc",
    "temp",
    "humidity",
    "so2ppb",
    "no2ppb",
    "o3ppb",
    "co",
]

POLLUTANT_LABELS = {
    "pm2.5cnc": "PM2.5 (µg/m³)",
    "pm10cnc": "PM10 (µg/m³)",
    "temp": "Temperature (°C)",
    "humidity": "Humidity (%)",
    "so2ppb": "SO₂ (ppb)",
    "no2ppb": "NO₂ (ppb)",
    "o3ppb": "O₃ (ppb)",
    "co": "CO",
}

SAMPLING_PERIODS = ["hours", "days", "weeks", "months"]

# Map defaults
MAP_CENTER = (23.5937, 80.9629)
MAP_DEFAULT_ZOOM = 3.75
MAP_MIN_ZOOM = 3
MAP_MAX_ZOOM = 13

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: int = logging.INFO) -> None:
    """Install the dashboard's root logging handler on stdout."""
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)]
    )
