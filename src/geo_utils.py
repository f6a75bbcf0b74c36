"""
Geospatial helpers for the state/division/district map layers.

Handles:
- Admin level naming (layer <-> property key <-> drill depth)
- Feature bounds in Leaflet-style [[south, west], [north, east]] form
- Map center/zoom that fits a set of bounds
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from config import (
    MAP_CENTER,
    MAP_DEFAULT_ZOOM,
    MAP_MAX_ZOOM,
    MAP_MIN_ZOOM,
)

logger = logging.getLogger(__name__)

# Rendered layer -> feature property holding the region name
LEVEL_NAME_KEYS = {
    'State': 'state',
    'Division': 'division',
    'District': 'district',
}

# Drill depth -> feature property holding the region name
LAYER_NO_NAME_KEYS = {
    1: 'state',
    2: 'division',
    3: 'district',
}


def _iter_positions(coordinates: Any) -> Iterator[Tuple[float, float]]:
    # GeoJSON nests positions to a depth that depends on the geometry type
    if not coordinates:
        return
    if isinstance(coordinates[0], (int, float)):
        yield coordinates[0], coordinates[1]
        return
    for part in coordinates:
        yield from _iter_positions(part)


def _geometry_positions(geometry: Optional[Dict[str, Any]]) -> Iterator[Tuple[float, float]]:
    if not geometry:
        return
    if geometry.get('type') == 'GeometryCollection':
        for child in geometry.get('geometries', []):
            yield from _geometry_positions(child)
        return
    yield from _iter_positions(geometry.get('coordinates'))


def feature_bounds(feature: Dict[str, Any]) -> List[List[float]]:
    """
    Bounding box of a feature as [[min_lat, min_lon], [max_lat, max_lon]].

    Returns an empty list when the feature has no coordinates.
    """
    positions = list(_geometry_positions(feature.get('geometry')))
    if not positions:
        return []

    lons, lats = np.array(positions, dtype=float).T
    return [
        [float(lats.min()), float(lons.min())],
        [float(lats.max()), float(lons.max())],
    ]


def bounds_to_view(bounds: List[List[float]]) -> Tuple[Dict[str, float], float]:
    """
    Map center and zoom level that fit the given bounds.

    Args:
        bounds: [[south, west], [north, east]] or empty for the all-India view

    Returns:
        Tuple of ({'lat', 'lon'} center, zoom)
    """
    if not bounds:
        return {'lat': MAP_CENTER[0], 'lon': MAP_CENTER[1]}, MAP_DEFAULT_ZOOM

    (south, west), (north, east) = bounds
    center = {'lat': (south + north) / 2, 'lon': (west + east) / 2}

    # Web-mercator world width is 360 degrees at zoom 0
    span = max(east - west, (north - south) * 1.6, 1e-6)
    zoom = float(np.clip(np.log2(360.0 / span) - 0.5, MAP_MIN_ZOOM, MAP_MAX_ZOOM))
    return center, zoom


def feature_display_name(feature: Optional[Dict[str, Any]], layer_no: int) -> Optional[str]:
    """Region name of a feature for the given drill depth (1-3)."""
    if not feature:
        return None
    key = LAYER_NO_NAME_KEYS.get(layer_no)
    if key is None:
        return None
    return feature.get('properties', {}).get(key)
