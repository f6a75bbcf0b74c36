"""
Joins AQ metric rows onto GeoJSON features.

Region rows are matched to polygons by case-insensitive name equality at the
current admin level; sensor rows are matched to sensor points by imei_id.
Features are decorated in place with a ``param_values`` mapping
(pollutant code -> value) and the collection itself is returned.
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from config import POLLUTANT_CODES

logger = logging.getLogger(__name__)


def merge_aq_and_geo_data(
    aq_rows: Optional[List[Dict[str, Any]]],
    geo_data: Optional[Dict[str, Any]],
    level_name: str
) -> Optional[Dict[str, Any]]:
    """
    Decorate region polygons with their AQ readings.

    For every feature, rows whose ``<level_name>_name`` equals the feature's
    ``<level_name>`` property (case-insensitive) are applied in order, so the
    last row for a pollutant wins. Features with no matching row keep no
    ``param_values``.

    Args:
        aq_rows: AQ metric rows for the level
        geo_data: GeoJSON FeatureCollection for the level
        level_name: 'state', 'division' or 'district'

    Returns:
        The same FeatureCollection, or None if either input is missing
    """
    if aq_rows is None or geo_data is None:
        logger.error("Error: AQ rows or geo data is missing, nothing to merge")
        return None

    row_key = f"{level_name}_name"

    for feature in geo_data.get('features', []):
        props = feature.setdefault('properties', {})
        feature_name = props.get(level_name)
        if not isinstance(feature_name, str):
            continue

        feature_name_lower = feature_name.lower()
        rows_for_feature = [
            row for row in aq_rows
            if isinstance(row.get(row_key), str) and row[row_key].lower() == feature_name_lower
        ]

        if not rows_for_feature:
            continue

        param_values = props.setdefault('param_values', {})
        for row in rows_for_feature:
            param_values[row['param_name']] = row.get('param_value')
            props['number_of_sensors'] = row.get('number_of_sensors')

    return geo_data


def merge_sensor_aq_and_geo_data(
    sensor_aq_rows: Optional[List[Dict[str, Any]]],
    sensor_geojson: Optional[Dict[str, Any]]
) -> Optional[Dict[str, Any]]:
    """Decorate sensor points with their AQ readings, matched by imei_id."""
    if sensor_aq_rows is None or sensor_geojson is None:
        logger.error("Error: sensor AQ rows or sensor GeoJSON is missing, nothing to merge")
        return None

    for sensor_feature in sensor_geojson.get('features', []):
        props = sensor_feature['properties']
        imei_id = props.get('imei_id')

        rows_for_sensor = [row for row in sensor_aq_rows if row.get('imei_id') == imei_id]
        if not rows_for_sensor:
            continue

        param_values = props.setdefault('param_values', {})
        for row in rows_for_sensor:
            param_values[row['param_name']] = row.get('param_value')

    return sensor_geojson


def create_sensor_geojson(sensor_rows: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
    """
    Build a Point FeatureCollection from raw sensor rows.

    Rows lacking either coordinate are dropped; input order is kept.
    """
    features = [
        {
            'type': 'Feature',
            'geometry': {
                'type': 'Point',
                'coordinates': [row['lon'], row['lat']],
            },
            'properties': {
                'district_id': row.get('district_id'),
                'division_id': row.get('division_id'),
                'state_id': row.get('state_id'),
                'imei_id': row.get('imei_id'),
                'updated_time': row.get('updated_time'),
            },
        }
        for row in (sensor_rows or [])
        if row.get('lat') and row.get('lon')
    ]

    return {'type': 'FeatureCollection', 'features': features}


def summarize_param_values(collection: Optional[Dict[str, Any]], name_key: str) -> pd.DataFrame:
    """
    Flatten a merged collection into one row per feature.

    Columns: name, number_of_sensors and one column per pollutant code
    (NaN where the feature has no reading).
    """
    columns = ['name', 'number_of_sensors'] + POLLUTANT_CODES
    if not collection:
        return pd.DataFrame(columns=columns)

    records = []
    for feature in collection.get('features', []):
        props = feature.get('properties', {})
        record = {
            'name': props.get(name_key),
            'number_of_sensors': props.get('number_of_sensors'),
        }
        record.update(props.get('param_values') or {})
        records.append(record)

    return pd.DataFrame.from_records(records).reindex(columns=columns)
