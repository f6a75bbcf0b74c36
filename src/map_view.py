"""
Plotly figure for the drill-down map.

Builds exactly one polygon layer (State, Division or District, as chosen by
the view state) plus an optional layer of sensor markers that show the
selected pollutant's reading as text. Every trace carries customdata of the
form ``[kind, feature_index]`` so a Streamlit selection event can be mapped
back to the clicked feature.
"""

import logging
import math
import sys
from typing import Any, Dict, List, Optional

import plotly.graph_objects as go

from config import POLLUTANT_LABELS
from geo_utils import LEVEL_NAME_KEYS, bounds_to_view
from view_state import DISTRICT, DIVISION, STATE, ViewState, layer_in_sync

logger = logging.getLogger(__name__)

POLYGON = 'polygon'
SENSOR = 'sensor'

NO_DATA_COLOR = '#BDBDBD'

LEVEL_STYLES = {
    STATE: {
        'colorscale': [
            (0.0, '#4CAF50'), (0.25, '#FFC107'), (0.5, '#FF9800'),
            (0.75, '#F44336'), (1.0, '#7B1FA2')
        ],
        'line_color': '#37474F',
        'line_width': 1.0,
        'opacity': 0.7,
    },
    DIVISION: {
        'colorscale': [
            (0.0, '#66BB6A'), (0.25, '#FFEE58'), (0.5, '#FFA726'),
            (0.75, '#EF5350'), (1.0, '#8E24AA')
        ],
        'line_color': '#1A237E',
        'line_width': 1.5,
        'opacity': 0.65,
    },
    DISTRICT: {
        'colorscale': [
            (0.0, '#81C784'), (0.25, '#FFF176'), (0.5, '#FFB74D'),
            (0.75, '#E57373'), (1.0, '#BA68C8')
        ],
        'line_color': '#004D40',
        'line_width': 1.5,
        'opacity': 0.6,
    },
}


def round_off_digits(value: Any, digits: int = 2) -> Optional[float]:
    """Round a reading to ``digits`` places; None for missing or non-numeric values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    # Ties round towards +inf: 250.625 -> 250.63, -3.125 -> -3.12
    scale = 10 ** digits
    return math.floor((number + sys.float_info.epsilon) * scale + 0.5) / scale


def get_param_value(feature: Dict[str, Any], pollutant: str) -> Optional[Any]:
    param_values = feature.get('properties', {}).get('param_values') or {}
    return param_values.get(pollutant)


def sensor_marker_label(feature: Dict[str, Any], pollutant: str) -> str:
    """Text shown inside a sensor marker: the rounded reading or '-'."""
    rounded = round_off_digits(get_param_value(feature, pollutant))
    if rounded is None:
        return "-"
    if rounded.is_integer():
        return str(int(rounded))
    return str(rounded)


def _features(collection: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not collection:
        return []
    return collection.get('features', [])


def split_polygon_features(collection: Optional[Dict[str, Any]], pollutant: str):
    """
    Indices of polygon features with and without a reading for ``pollutant``.

    Returns:
        Tuple of (with_value, without_value) index lists
    """
    with_value, without_value = [], []
    for idx, feature in enumerate(_features(collection)):
        if round_off_digits(get_param_value(feature, pollutant)) is None:
            without_value.append(idx)
        else:
            with_value.append(idx)
    return with_value, without_value


def _indexed_geojson(features: List[Dict[str, Any]]) -> Dict[str, Any]:
    # Plotly matches locations against the top-level feature id
    return {
        'type': 'FeatureCollection',
        'features': [dict(feature, id=idx) for idx, feature in enumerate(features)],
    }


def _hover_rows(features, indices, name_key, pollutant):
    label = POLLUTANT_LABELS.get(pollutant, pollutant)
    hover = []
    for idx in indices:
        props = features[idx].get('properties', {})
        reading = round_off_digits(get_param_value(features[idx], pollutant))
        sensors = props.get('number_of_sensors')
        hover.append(
            f"<b>{props.get(name_key, 'Unknown')}</b><br>"
            f"{label}: {reading if reading is not None else 'No data'}<br>"
            f"Sensors: {sensors if sensors is not None else '-'}"
        )
    return hover


def build_polygon_traces(collection: Optional[Dict[str, Any]], layer: str,
                         pollutant: str) -> List[go.Choroplethmap]:
    """
    Choropleth traces for one admin layer.

    Features with a reading are coloured by it; features without one are
    drawn grey so they stay visible and selectable.
    """
    features = _features(collection)
    style = LEVEL_STYLES[layer]
    name_key = LEVEL_NAME_KEYS[layer]
    geojson = _indexed_geojson(features)
    with_value, without_value = split_polygon_features(collection, pollutant)

    values = [round_off_digits(get_param_value(features[idx], pollutant)) for idx in with_value]

    coloured = go.Choroplethmap(
        geojson=geojson,
        locations=with_value,
        z=values,
        customdata=[[POLYGON, idx] for idx in with_value],
        text=_hover_rows(features, with_value, name_key, pollutant),
        hoverinfo='text',
        colorscale=style['colorscale'],
        marker_opacity=style['opacity'],
        marker_line_color=style['line_color'],
        marker_line_width=style['line_width'],
        colorbar=dict(
            title=POLLUTANT_LABELS.get(pollutant, pollutant),
            thickness=12,
            len=0.6,
            bgcolor='rgba(255,255,255,0.9)',
        ),
        name=f"{layer} ({pollutant})",
    )

    no_data = go.Choroplethmap(
        geojson=geojson,
        locations=without_value,
        z=[0] * len(without_value),
        customdata=[[POLYGON, idx] for idx in without_value],
        text=_hover_rows(features, without_value, name_key, pollutant),
        hoverinfo='text',
        colorscale=[(0.0, NO_DATA_COLOR), (1.0, NO_DATA_COLOR)],
        showscale=False,
        marker_opacity=style['opacity'] * 0.6,
        marker_line_color=style['line_color'],
        marker_line_width=style['line_width'],
        name=f"{layer} (no data)",
    )

    return [coloured, no_data]


def build_sensor_trace(collection: Optional[Dict[str, Any]], pollutant: str) -> go.Scattermap:
    """Circular text markers showing each sensor's reading."""
    features = _features(collection)
    lats = [feature['geometry']['coordinates'][1] for feature in features]
    lons = [feature['geometry']['coordinates'][0] for feature in features]
    labels = [sensor_marker_label(feature, pollutant) for feature in features]
    hover = [
        f"<b>{feature['properties'].get('imei_id')}</b><br>"
        f"{POLLUTANT_LABELS.get(pollutant, pollutant)}: {label}<br>"
        f"Updated: {feature['properties'].get('updated_time') or '-'}"
        for feature, label in zip(features, labels)
    ]

    return go.Scattermap(
        lat=lats,
        lon=lons,
        mode='markers+text',
        text=labels,
        textposition='middle center',
        textfont=dict(size=9, color='#FFFFFF'),
        hovertext=hover,
        hoverinfo='text',
        marker=dict(size=22, color='#263238', opacity=0.85),
        customdata=[[SENSOR, idx] for idx in range(len(features))],
        name='Sensors',
    )


def build_map_figure(state: ViewState, pollutant: str) -> go.Figure:
    """
    Render the active layer of ``state``.

    Exactly one polygon layer is drawn, chosen by ``current_layer``; the
    sensor markers of the same level are added when the sensor layer is on.
    """
    if not layer_in_sync(state):
        logger.warning(
            f"Drill depth {state.layer_no} does not match rendered layer "
            f"{state.current_layer}"
        )

    fig = go.Figure()
    for trace in build_polygon_traces(state.layer_data(), state.current_layer, pollutant):
        fig.add_trace(trace)

    if state.show_sensor_layer:
        fig.add_trace(build_sensor_trace(state.sensor_data(), pollutant))

    center, zoom = bounds_to_view(state.bounds)
    fig.update_layout(
        map_style="carto-positron",
        map_center=center,
        map_zoom=zoom,
        height=700,
        margin=dict(l=0, r=0, t=0, b=0),
        showlegend=False,
        clickmode='event+select',
        uirevision=f"{state.current_layer}-{state.bounds}",
    )
    return fig


def feature_in_layer(state: ViewState, feature: Optional[Dict[str, Any]]) -> bool:
    """True if ``feature`` is one of the polygons of the rendered layer."""
    if feature is None:
        return False
    return any(candidate is feature for candidate in _features(state.layer_data()))


def _locate_by_trace(state: ViewState, point: Dict[str, Any], pollutant: Optional[str]):
    # Trace order in build_map_figure: coloured polygons, grey polygons, sensors
    curve = point.get('curve_number')
    point_index = point.get('point_index', point.get('point_number'))
    if curve is None or point_index is None:
        return None, None

    if curve == 2:
        return SENSOR, int(point_index)

    if curve in (0, 1) and pollutant:
        with_value, without_value = split_polygon_features(state.layer_data(), pollutant)
        indices = with_value if curve == 0 else without_value
        if 0 <= point_index < len(indices):
            return POLYGON, indices[point_index]
    return None, None


def resolve_clicked_feature(state: ViewState, point: Dict[str, Any], pollutant: Optional[str] = None):
    """
    Map a Plotly selection point back to the clicked feature.

    Returns:
        Tuple of (kind, feature) where kind is 'polygon' or 'sensor', or
        (None, None) if the point cannot be resolved
    """
    customdata = point.get('customdata')
    if customdata and len(customdata) >= 2:
        kind, idx = customdata[0], int(customdata[1])
    else:
        kind, idx = _locate_by_trace(state, point, pollutant)
        if kind is None:
            return None, None

    collection = state.layer_data() if kind == POLYGON else state.sensor_data()
    features = _features(collection)

    if kind not in (POLYGON, SENSOR) or not 0 <= idx < len(features):
        return None, None
    return kind, features[idx]
