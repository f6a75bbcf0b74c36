"""
HTTP clients for the geoserver and the AQ metrics API.

Handles:
- WFS GetFeature requests for the state/division/district polygon layers
- Sensor location lookups for an admin scope
- Aggregated pollutant values for regions and sensors, with a fallback query
  (no date filter) when the requested range has no data
- Local snapshots of unfiltered layers in data_cache/
"""

import http.client
import json
import logging
import re
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import (
    AQ_API_BASE_URL,
    AQ_DATA_ENDPOINT,
    GEOSERVER_WFS_URL,
    REQUEST_TIMEOUT,
    SENSOR_AQ_DATA_ENDPOINT,
    SENSOR_GEO_DATA_ENDPOINT,
)
from queries import AQQuery, GeoQuery, SensorGeoQuery, build_aq_url

logger = logging.getLogger(__name__)

USER_AGENT = 'Mozilla/5.0 (AQ Drill-Down Dashboard)'


class APIClientError(Exception):
    """Raised when a backend request fails or returns unreadable data."""


def fetch_json(url: str, timeout: int = REQUEST_TIMEOUT) -> Any:
    """
    GET a URL and decode its JSON body.

    Raises:
        APIClientError: On HTTP errors, connection errors, timeouts or an
            undecodable body
    """
    req = urllib.request.Request(
        url,
        headers={'User-Agent': USER_AGENT, 'Accept': 'application/json'}
    )

    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            return json.loads(response.read().decode('utf-8'))
    except urllib.error.HTTPError as e:
        logger.error(f"HTTP error from {url}: {e.code} {e.reason}")
        raise APIClientError(f"HTTP {e.code} from {url}: {e.reason}") from e
    except urllib.error.URLError as e:
        logger.error(f"URL error from {url}: {e.reason}")
        raise APIClientError(f"Could not reach {url}: {e.reason}") from e
    except (OSError, http.client.HTTPException) as e:
        # Timeouts and dropped connections after the request was sent
        logger.error(f"Connection error from {url}: {e!r}")
        raise APIClientError(f"Connection to {url} failed: {e!r}") from e
    except ValueError as e:
        # JSONDecodeError and UnicodeDecodeError
        logger.error(f"Invalid response body from {url}: {e}")
        raise APIClientError(f"Invalid JSON from {url}") from e


def _extract_rows(payload: Any) -> List[Dict[str, Any]]:
    # The AQ API wraps its rows as {"data": [...]}
    if isinstance(payload, dict):
        rows = payload.get('data')
    else:
        rows = payload
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, dict)]


class GeoDataClient:
    """Fetches polygon FeatureCollections from geoserver over WFS."""

    def __init__(self, base_url: str = GEOSERVER_WFS_URL,
                 cache_dir: Optional[Path] = None, timeout: int = REQUEST_TIMEOUT):
        self.base_url = base_url
        self.cache_dir = cache_dir
        self.timeout = timeout

    def snapshot_path(self, layer_name: str) -> Optional[Path]:
        if self.cache_dir is None:
            return None
        safe_name = re.sub(r'[^A-Za-z0-9_.-]', '_', layer_name)
        return Path(self.cache_dir) / f"{safe_name}.geojson"

    def _load_snapshot(self, layer_name: str) -> Optional[Dict[str, Any]]:
        cache_file = self.snapshot_path(layer_name)
        if cache_file is None or not cache_file.exists():
            return None

        try:
            with open(cache_file, 'r', encoding='utf-8') as f:
                geojson = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load cached layer {cache_file}: {e}")
            return None

        if not geojson.get('features'):
            logger.warning(f"Cached layer {cache_file} has no features, ignoring it")
            return None

        logger.info(f"Loaded {len(geojson['features'])} features from cache: {cache_file}")
        return geojson

    def fetch(self, layer_name: str, cql_filter: Optional[str] = None) -> Dict[str, Any]:
        """
        Fetch the features of a layer, optionally restricted by a CQL filter.

        Unfiltered requests are served from the local snapshot when one
        exists.

        Returns:
            GeoJSON FeatureCollection dict
        """
        query = GeoQuery(layer_name=layer_name, cql_filter=cql_filter)
        query.validate()

        if not cql_filter:
            cached = self._load_snapshot(layer_name)
            if cached is not None:
                return cached

        url = build_aq_url(self.base_url, query.to_params())
        logger.info(f"Fetching geo layer {layer_name} (filter: {cql_filter})")
        geojson = fetch_json(url, timeout=self.timeout)

        if not isinstance(geojson, dict) or 'features' not in geojson:
            raise APIClientError(f"Response for {layer_name} is not a FeatureCollection")

        logger.info(f"Fetched {len(geojson['features'])} features from {layer_name}")
        return geojson

    def save_snapshot(self, layer_name: str) -> Path:
        """Download a full layer and write it to the cache directory."""
        cache_file = self.snapshot_path(layer_name)
        if cache_file is None:
            raise ValueError("GeoDataClient has no cache_dir configured")

        query = GeoQuery(layer_name=layer_name)
        query.validate()
        geojson = fetch_json(build_aq_url(self.base_url, query.to_params()), timeout=self.timeout)
        if not isinstance(geojson, dict) or not geojson.get('features'):
            raise APIClientError(f"Layer {layer_name} returned no features")

        cache_file.parent.mkdir(parents=True, exist_ok=True)
        with open(cache_file, 'w', encoding='utf-8') as f:
            json.dump(geojson, f)
        logger.info(f"✓ Cached {len(geojson['features'])} features of {layer_name} to {cache_file}")
        return cache_file


class SensorGeoClient:
    """Fetches sensor locations (lat/lon plus admin ids) for an admin scope."""

    def __init__(self, base_url: str = AQ_API_BASE_URL, timeout: int = REQUEST_TIMEOUT):
        self.url = f"{base_url.rstrip('/')}/{SENSOR_GEO_DATA_ENDPOINT}"
        self.timeout = timeout

    def fetch(self, query: SensorGeoQuery) -> List[Dict[str, Any]]:
        query.validate()
        url = build_aq_url(self.url, query.to_params())
        logger.info(f"Fetching sensor locations: {url}")
        rows = _extract_rows(fetch_json(url, timeout=self.timeout))
        logger.info(f"Fetched {len(rows)} sensor locations")
        return rows


class AQMetricsClient:
    """
    Fetches aggregated pollutant values for regions or sensors.

    Each fetch takes a primary query and a fallback query. The fallback is
    issued once when the primary returns no rows or fails, so the map still
    shows the latest available values when the selected date range is empty.
    """

    def __init__(self, base_url: str = AQ_API_BASE_URL, timeout: int = REQUEST_TIMEOUT):
        base_url = base_url.rstrip('/')
        self.region_url = f"{base_url}/{AQ_DATA_ENDPOINT}"
        self.sensor_url = f"{base_url}/{SENSOR_AQ_DATA_ENDPOINT}"
        self.timeout = timeout

    def _fetch_with_fallback(self, endpoint_url: str, primary: AQQuery,
                             fallback: Optional[AQQuery]) -> List[Dict[str, Any]]:
        primary.validate()
        if fallback is not None:
            fallback.validate()

        primary_error = None
        try:
            rows = _extract_rows(
                fetch_json(build_aq_url(endpoint_url, primary.to_params()), timeout=self.timeout)
            )
        except APIClientError as e:
            primary_error = e
            rows = []

        if rows:
            logger.info(f"Fetched {len(rows)} AQ rows for {primary.admin_level}")
            return rows

        if fallback is None or fallback == primary:
            if primary_error is not None:
                raise primary_error
            logger.warning(f"No AQ rows for {primary.admin_level}")
            return rows

        logger.warning(
            f"No AQ rows for {primary.admin_level} with {primary.to_params()}, "
            f"retrying with fallback query"
        )
        rows = _extract_rows(
            fetch_json(build_aq_url(endpoint_url, fallback.to_params()), timeout=self.timeout)
        )
        logger.info(f"Fetched {len(rows)} fallback AQ rows for {fallback.admin_level}")
        return rows

    def fetch(self, primary: AQQuery, fallback: Optional[AQQuery] = None) -> List[Dict[str, Any]]:
        """Region-level AQ rows keyed by '<admin_level>_name'."""
        return self._fetch_with_fallback(self.region_url, primary, fallback)

    def fetch_sensor(self, primary: AQQuery, fallback: Optional[AQQuery] = None) -> List[Dict[str, Any]]:
        """Sensor-level AQ rows keyed by 'imei_id'."""
        return self._fetch_with_fallback(self.sensor_url, primary, fallback)
