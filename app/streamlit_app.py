"""
India Air Quality Drill-Down Dashboard

Interactive map of AQ sensor and administrative-region readings across India
at three nested levels: State -> Division -> District.

- Select a region on the map to see its readings
- Drill down into the selected region to load its child regions and sensors
- Drill up to return to the coarser view
- Date range / sampling changes reload the map from the State level
"""

import logging
import sys
from datetime import date, timedelta
from pathlib import Path

import pandas as pd
import streamlit as st

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from api_clients import AQMetricsClient, GeoDataClient, SensorGeoClient
from config import (
    DATA_CACHE_DIR,
    POLLUTANT_CODES,
    POLLUTANT_LABELS,
    SAMPLING_PERIODS,
    configure_logging,
)
from drill_controller import DrillController
from geo_utils import LEVEL_NAME_KEYS
from map_view import build_map_figure, feature_in_layer, resolve_clicked_feature, SENSOR
from merge import summarize_param_values
from view_state import DISTRICT, DIVISION, STATE, DismissNotice, Filters, Store

configure_logging()
logger = logging.getLogger(__name__)


# ============================================================================
# Session Setup
# ============================================================================

@st.cache_resource
def get_clients():
    """Backend clients shared by every session."""
    return (
        GeoDataClient(cache_dir=DATA_CACHE_DIR),
        SensorGeoClient(),
        AQMetricsClient(),
    )


def get_controller() -> DrillController:
    """Per-session store wrapped in a controller."""
    if 'store' not in st.session_state:
        st.session_state.store = Store()

    geo_client, sensor_client, aq_client = get_clients()
    return DrillController(st.session_state.store, geo_client, sensor_client, aq_client)


# ============================================================================
# Sidebar
# ============================================================================

def render_sidebar(controller: DrillController):
    """
    Filter and layer controls.

    Returns:
        Tuple of (Filters, selected pollutant code)
    """
    state = controller.store.state

    st.sidebar.title("🌫️ India AQ Map")
    st.sidebar.markdown("**Air quality by State, Division and District**")
    st.sidebar.markdown("---")

    st.sidebar.markdown("### 📅 Date Range")
    use_dates = st.sidebar.checkbox("Filter by date range", value=False)

    filters = Filters()
    if use_dates:
        today = date.today()
        date_range = st.sidebar.date_input(
            "From / To",
            value=(today - timedelta(days=7), today),
            max_value=today,
        )
        sampling_period = st.sidebar.selectbox("Sampling period", SAMPLING_PERIODS, index=0)
        sampling_value = st.sidebar.number_input("Sampling value", min_value=1, value=1, step=1)

        # A half-picked range leaves the date filter incomplete
        start_date, end_date = (list(date_range) + [None, None])[:2]
        filters = Filters(
            start_date=start_date,
            end_date=end_date,
            sampling_period=sampling_period,
            sampling_value=int(sampling_value),
        )

    st.sidebar.markdown("---")
    st.sidebar.markdown("### 🧪 Pollutant")
    pollutant = st.sidebar.selectbox(
        "Show readings for",
        options=POLLUTANT_CODES,
        format_func=lambda code: POLLUTANT_LABELS.get(code, code),
        index=0,
    )

    show_sensors = st.sidebar.toggle("Show sensor layer", value=state.show_sensor_layer)
    if show_sensors != state.show_sensor_layer:
        controller.toggle_sensor_layer(show_sensors)

    st.sidebar.markdown("---")
    if st.sidebar.button("⬆️ Drill Up", disabled=state.current_layer == STATE, width="stretch"):
        controller.drill_up()
        st.rerun()

    st.sidebar.markdown("---")
    st.sidebar.markdown("### 📖 Quick Guide")
    st.sidebar.markdown("""
    - Click a region or sensor to see its readings
    - **Drill down** loads the divisions/districts of the selected region
    - **Drill up** returns to the previous level
    - Changing the date range reloads the map at State level
    """)

    return filters, pollutant


# ============================================================================
# Main Panels
# ============================================================================

def render_breadcrumb(state):
    crumbs = ["India"]
    if state.current_layer in (DIVISION, DISTRICT) and state.selected_state:
        crumbs.append(state.selected_state)
    if state.current_layer == DISTRICT and state.selected_division:
        crumbs.append(state.selected_division)
    if state.selected_district and state.current_layer == DISTRICT:
        crumbs.append(state.selected_district)

    st.markdown(f"**{state.current_layer} level** · " + " › ".join(crumbs))


def render_detail_panel(controller: DrillController):
    """Readings of the selected region or sensor, plus the drill action."""
    state = controller.store.state
    feature = state.selected_feature

    st.subheader(f"📍 {state.selected_feature_name or 'Select a region'}")

    if feature is None:
        st.info("Click a region or sensor on the map to see its readings.")
        return

    props = feature.get('properties', {})
    param_values = props.get('param_values') or {}

    if param_values:
        detail_df = pd.DataFrame([
            {
                'Parameter': POLLUTANT_LABELS.get(code, code),
                'Value': param_values.get(code),
            }
            for code in POLLUTANT_CODES if code in param_values
        ])
        st.dataframe(detail_df, width="stretch", hide_index=True)
    else:
        st.warning("No readings available for this selection.")

    if props.get('number_of_sensors') is not None:
        st.metric("Sensors", props['number_of_sensors'])
    if props.get('updated_time'):
        st.caption(f"Last updated: {props['updated_time']}")

    if not feature_in_layer(state, feature):
        return

    if state.current_layer == DISTRICT:
        if st.button("🎯 Zoom to district", width="stretch"):
            controller.zoom_to_district(feature)
            st.rerun()
        return

    if st.button("⬇️ Drill down", width="stretch", disabled=state.is_loading):
        child = "divisions" if state.current_layer == STATE else "districts"
        with st.spinner(f"Loading {child} of {state.selected_feature_name}..."):
            controller.drill_down(feature)
        st.rerun()


def render_summary_table(state, pollutant: str):
    name_key = LEVEL_NAME_KEYS[state.current_layer]
    summary_df = summarize_param_values(state.layer_data(), name_key)

    if summary_df.empty:
        return

    st.header(f"📊 {state.current_layer} Summary")
    summary_df = summary_df.sort_values(pollutant, ascending=False, na_position='last')
    st.dataframe(
        summary_df.rename(columns={'name': state.current_layer, **POLLUTANT_LABELS}),
        width="stretch",
        hide_index=True,
    )
    st.download_button(
        label="📥 Download CSV",
        data=summary_df.to_csv(index=False),
        file_name=f"aq_{name_key}_summary.csv",
        mime="text/csv"
    )


def render_map(controller: DrillController, pollutant: str):
    state = controller.store.state
    fig = build_map_figure(state, pollutant)

    event = st.plotly_chart(
        fig,
        width="stretch",
        config={'displayModeBar': False, 'scrollZoom': True},
        on_select="rerun",
        selection_mode="points",
        key=f"aq_map_{state.generation}_{state.current_layer}",
    )

    points = event.selection.points if event and event.selection else []
    if not points:
        return

    kind, feature = resolve_clicked_feature(state, points[0], pollutant)
    if feature is None or feature is state.selected_feature:
        return

    if kind == SENSOR:
        controller.select_sensor(feature)
    else:
        controller.select_feature(feature)
    st.rerun()


# ============================================================================
# Main Application
# ============================================================================

def main():
    """
    Main application entry point.

    Configures page layout, applies filter changes and renders the map.
    """
    st.set_page_config(
        page_title="India AQ Dashboard",
        page_icon="🌫️",
        layout="wide",
        initial_sidebar_state="expanded"
    )

    controller = get_controller()
    filters, pollutant = render_sidebar(controller)
    state = controller.store.state

    # Any filter change reloads from the State level
    if state.states_data is None or filters != state.filters:
        logger.info(f"Reloading map at State level with {filters}")
        with st.spinner("Loading air quality data..."):
            controller.set_filters(filters)
        state = controller.store.state

    st.title("🌫️ India Air Quality Dashboard")
    render_breadcrumb(state)

    if state.error:
        st.error(f"❌ {state.error}")
    if state.notice:
        st.warning(f"⚠️ {state.notice}")
        if st.button("Dismiss"):
            controller.store.dispatch(DismissNotice())
            st.rerun()

    col_map, col_detail = st.columns([3, 1])
    with col_map:
        render_map(controller, pollutant)
    with col_detail:
        render_detail_panel(controller)

    render_summary_table(controller.store.state, pollutant)


if __name__ == "__main__":
    main()
