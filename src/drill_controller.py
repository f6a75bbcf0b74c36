"""
Drill-down orchestration for the AQ map.

Each level transition runs the same sequence:
1. Build the primary AQ query (date filter only when complete) and its
   no-date fallback
2. Build the sensor-location query for the parent region
3. Fetch, in order: child-level AQ, sensor locations, sensor AQ
4. Build the sensor GeoJSON and merge sensor AQ onto it
5. Fetch the child polygons restricted to the parent by a CQL filter
6. Merge child AQ onto the polygons
7. Commit the result to the store (dropped if a newer sequence started)

Fetches are strictly sequential; every fetch is attempted once.
"""

import logging
from typing import Any, Dict, Optional

from api_clients import APIClientError, AQMetricsClient, GeoDataClient, SensorGeoClient
from config import DIVISION_LAYER_NAME, DISTRICT_LAYER_NAME, STATE_LAYER_NAME
from geo_utils import feature_bounds, feature_display_name
from merge import create_sensor_geojson, merge_aq_and_geo_data, merge_sensor_aq_and_geo_data
from queries import (
    build_aq_query,
    build_cql_filter,
    build_fallback_aq_query,
    build_sensor_geo_query,
)
from view_state import (
    DIVISION,
    STATE,
    DrillDownDivision,
    DrillDownState,
    DrillUp,
    Filters,
    InitialLoaded,
    LoadFailed,
    SelectFeature,
    SetFilters,
    Store,
    ToggleSensorLayer,
    ZoomToDistrict,
)

logger = logging.getLogger(__name__)


def _or_empty(collection: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if collection is None:
        return {'type': 'FeatureCollection', 'features': []}
    return collection


class DrillController:
    """Runs fetch/merge sequences and commits them to a Store."""

    def __init__(self, store: Store, geo_client: GeoDataClient,
                 sensor_client: SensorGeoClient, aq_client: AQMetricsClient):
        self.store = store
        self.geo_client = geo_client
        self.sensor_client = sensor_client
        self.aq_client = aq_client

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _fetch_level_data(self, child_level: str, parent_level: str,
                          parent_id: Optional[Any] = None):
        """Fetch child AQ rows and the merged sensor collection, in order."""
        filters = self.store.state.filters
        aq_query = build_aq_query(child_level, filters)
        fallback_query = build_fallback_aq_query(child_level)
        sensor_geo_query = build_sensor_geo_query(parent_level, parent_id)

        aq_rows = self.aq_client.fetch(aq_query, fallback_query)

        sensor_rows = self.sensor_client.fetch(sensor_geo_query)
        logger.info(f"{child_level.title()} sensor locations: {len(sensor_rows)}")

        sensor_aq_rows = self.aq_client.fetch_sensor(aq_query, fallback_query)
        logger.info(f"{child_level.title()} sensor AQ rows: {len(sensor_aq_rows)}")

        sensor_geojson = create_sensor_geojson(sensor_rows)
        merged_sensors = merge_sensor_aq_and_geo_data(sensor_aq_rows, sensor_geojson)
        logger.info(
            f"{child_level.title()} merged sensors: "
            f"{len(_or_empty(merged_sensors)['features'])}"
        )

        return aq_rows, merged_sensors

    def _fetch_child_geo(self, layer_name: str, cql_filter: Optional[str]) -> Optional[Dict[str, Any]]:
        try:
            return self.geo_client.fetch(layer_name, cql_filter)
        except APIClientError as e:
            logger.error(f"Error in fetching {layer_name} data: {e}")
            return None

    def _fail(self, generation: int, message: str) -> None:
        logger.error(message)
        self.store.commit(generation, LoadFailed(message))

    # ------------------------------------------------------------------
    # Initial load
    # ------------------------------------------------------------------

    def initial_load(self) -> bool:
        """
        Load all-India state polygons and state-level sensors.

        Returns:
            True if the result was committed
        """
        generation = self.store.begin()

        try:
            aq_rows, merged_sensors = self._fetch_level_data('state', 'state')
            geo_data = self._fetch_child_geo(STATE_LAYER_NAME, None)
        except APIClientError as e:
            self._fail(generation, f"Could not load state data: {e}")
            return False

        merged = merge_aq_and_geo_data(aq_rows, geo_data, 'state')
        return self.store.commit(
            generation,
            InitialLoaded(states_data=_or_empty(merged), sensor_data=_or_empty(merged_sensors))
        )

    # ------------------------------------------------------------------
    # Drill down
    # ------------------------------------------------------------------

    def drill_down_state(self, feature: Dict[str, Any]) -> bool:
        """Load the divisions (and sensors) of a state feature."""
        props = feature.get('properties', {})
        state_name = props.get('state') or ''
        state_id = props.get('id')
        state_bounds = feature_bounds(feature)

        generation = self.store.begin()
        logger.info(f"Drilling down into state {state_name} (id {state_id})")

        cql_filter = build_cql_filter('state', state_name, uppercase=True)

        try:
            aq_rows, merged_sensors = self._fetch_level_data('division', 'state', state_id)
        except APIClientError as e:
            self._fail(generation, f"Could not load divisions of {state_name}: {e}")
            return False

        geo_data = self._fetch_child_geo(DIVISION_LAYER_NAME, cql_filter)
        merged = merge_aq_and_geo_data(aq_rows, geo_data, 'division')

        return self.store.commit(
            generation,
            DrillDownState(
                state_name=state_name,
                divisions_data=_or_empty(merged),
                sensor_data=_or_empty(merged_sensors),
                bounds=state_bounds,
            )
        )

    def drill_down_division(self, feature: Dict[str, Any]) -> bool:
        """Load the districts (and sensors) of a division feature."""
        props = feature.get('properties', {})
        division_name = props.get('division') or ''
        division_id = props.get('id')
        division_bounds = feature_bounds(feature)

        generation = self.store.begin()
        logger.info(f"Drilling down into division {division_name} (id {division_id})")

        cql_filter = build_cql_filter('division', division_name)

        try:
            aq_rows, merged_sensors = self._fetch_level_data('district', 'division', division_id)
        except APIClientError as e:
            self._fail(generation, f"Could not load districts of {division_name}: {e}")
            return False

        geo_data = self._fetch_child_geo(DISTRICT_LAYER_NAME, cql_filter)
        merged = merge_aq_and_geo_data(aq_rows, geo_data, 'district')

        return self.store.commit(
            generation,
            DrillDownDivision(
                division_name=division_name,
                districts_data=_or_empty(merged),
                sensor_data=_or_empty(merged_sensors),
                bounds=division_bounds,
            )
        )

    def zoom_to_district(self, feature: Dict[str, Any]) -> None:
        """Districts are the finest level; only re-centre the map."""
        district_name = feature.get('properties', {}).get('district')
        self.store.dispatch(ZoomToDistrict(district_name=district_name, bounds=feature_bounds(feature)))

    def drill_down(self, feature: Dict[str, Any]):
        """Dispatch to the drill handler of the rendered layer."""
        current_layer = self.store.state.current_layer
        if current_layer == STATE:
            return self.drill_down_state(feature)
        if current_layer == DIVISION:
            return self.drill_down_division(feature)
        return self.zoom_to_district(feature)

    # ------------------------------------------------------------------
    # Other interactions
    # ------------------------------------------------------------------

    def drill_up(self) -> None:
        self.store.dispatch(DrillUp())

    def select_feature(self, feature: Dict[str, Any]) -> None:
        name = feature_display_name(feature, self.store.state.layer_no)
        self.store.dispatch(SelectFeature(feature=feature, name=name))

    def select_sensor(self, feature: Dict[str, Any]) -> None:
        name = feature.get('properties', {}).get('imei_id')
        self.store.dispatch(SelectFeature(feature=feature, name=name))

    def toggle_sensor_layer(self, show: bool) -> None:
        self.store.dispatch(ToggleSensorLayer(show=show))

    def set_filters(self, filters: Filters) -> bool:
        """Store new date/sampling filters and reload from the State level."""
        self.store.dispatch(SetFilters(filters=filters))
        return self.initial_load()
