"""
Tests for the drill-down orchestration.

Fake clients share one call log so the tests can check that every drill
fetches AQ rows, sensor locations, sensor AQ rows and child polygons in
that order, exactly once each.
"""

import copy
import sys
from datetime import date
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

import api_clients
from api_clients import APIClientError, AQMetricsClient, GeoDataClient, SensorGeoClient
from config import DISTRICT_LAYER_NAME, DIVISION_LAYER_NAME, STATE_LAYER_NAME
from drill_controller import DrillController
from view_state import (
    DISTRICT,
    DIVISION,
    NO_DISTRICTS_NOTICE,
    NO_DIVISIONS_NOTICE,
    STATE,
    Filters,
    SetFilters,
    Store,
    layer_in_sync,
)


def polygon(props, lon=76.0, lat=10.0):
    return {
        'type': 'Feature',
        'geometry': {
            'type': 'Polygon',
            'coordinates': [[[lon, lat], [lon + 1, lat], [lon + 1, lat + 2], [lon, lat]]],
        },
        'properties': dict(props),
    }


def fc(*features):
    return {'type': 'FeatureCollection', 'features': list(features)}


class FakeGeoClient:
    def __init__(self, log, layers, fail=False):
        self.log = log
        self.layers = layers
        self.fail = fail
        self.calls = []

    def fetch(self, layer_name, cql_filter=None):
        self.log.append('geo')
        self.calls.append((layer_name, cql_filter))
        if self.fail:
            raise APIClientError("geoserver down")
        return copy.deepcopy(self.layers.get(layer_name, fc()))


class FakeSensorClient:
    def __init__(self, log, rows):
        self.log = log
        self.rows = rows
        self.queries = []

    def fetch(self, query):
        self.log.append('sensor_geo')
        self.queries.append(query)
        return list(self.rows)


class FakeAQClient:
    def __init__(self, log, region_rows, sensor_rows, fail=False):
        self.log = log
        self.region_rows = region_rows
        self.sensor_rows = sensor_rows
        self.fail = fail
        self.queries = []

    def fetch(self, primary, fallback=None):
        self.log.append('aq')
        self.queries.append((primary, fallback))
        if self.fail:
            raise APIClientError("AQ API down")
        return [row for row in self.region_rows if f"{primary.admin_level}_name" in row]

    def fetch_sensor(self, primary, fallback=None):
        self.log.append('sensor_aq')
        self.queries.append((primary, fallback))
        return list(self.sensor_rows)


KERALA = polygon({'state': 'Kerala', 'id': 32})
TVM = polygon({'division': 'Thiruvananthapuram', 'id': 7, 'state': 'KERALA'})
KOLLAM = polygon({'district': 'Kollam', 'id': 91, 'division': 'Thiruvananthapuram'})

REGION_ROWS = [
    {'state_name': 'KERALA', 'param_name': 'pm2.5cnc', 'param_value': 12.3, 'number_of_sensors': 5},
    {'division_name': 'thiruvananthapuram', 'param_name': 'pm2.5cnc', 'param_value': 15.0, 'number_of_sensors': 2},
    {'district_name': 'KOLLAM', 'param_name': 'pm10cnc', 'param_value': 40.0, 'number_of_sensors': 1},
]

SENSOR_ROWS = [
    {'imei_id': 'A1', 'lat': 8.5, 'lon': 76.9, 'state_id': 32},
    {'imei_id': 'A2', 'lat': None, 'lon': 76.9, 'state_id': 32},
]

SENSOR_AQ_ROWS = [{'imei_id': 'A1', 'param_name': 'pm2.5cnc', 'param_value': 11.111}]


@pytest.fixture
def log():
    return []


def make_controller(log, layers=None, geo_fail=False, aq_fail=False):
    layers = layers if layers is not None else {
        STATE_LAYER_NAME: fc(KERALA),
        DIVISION_LAYER_NAME: fc(TVM),
        DISTRICT_LAYER_NAME: fc(KOLLAM),
    }
    return DrillController(
        Store(),
        FakeGeoClient(log, layers, fail=geo_fail),
        FakeSensorClient(log, SENSOR_ROWS),
        FakeAQClient(log, REGION_ROWS, SENSOR_AQ_ROWS, fail=aq_fail),
    )


def test_initial_load_populates_state_level(log):
    controller = make_controller(log)

    assert controller.initial_load()

    state = controller.store.state
    assert log == ['aq', 'sensor_geo', 'sensor_aq', 'geo']
    assert state.current_layer == STATE
    assert not state.is_loading
    kerala = state.states_data['features'][0]['properties']
    assert kerala['param_values'] == {'pm2.5cnc': 12.3}
    assert kerala['number_of_sensors'] == 5

    sensors = state.states_sensor_data['features']
    assert [s['properties']['imei_id'] for s in sensors] == ['A1']
    assert sensors[0]['properties']['param_values'] == {'pm2.5cnc': 11.111}
    assert controller.sensor_client.queries[0].to_params() == {'admin_level': 'state'}
    assert controller.geo_client.calls == [(STATE_LAYER_NAME, None)]


def test_drill_down_state_fetches_in_order_and_advances(log):
    controller = make_controller(log)
    controller.initial_load()
    log.clear()

    assert controller.drill_down_state(KERALA)

    state = controller.store.state
    assert log == ['aq', 'sensor_geo', 'sensor_aq', 'geo']
    assert controller.geo_client.calls[-1] == (DIVISION_LAYER_NAME, "state='KERALA'")
    assert controller.sensor_client.queries[-1].to_params() == {'admin_level': 'state', 'admin_id': 32}
    assert state.current_layer == DIVISION
    assert state.layer_no == 2
    assert state.selected_state == 'Kerala'
    assert state.has_drilled_down
    assert state.bounds == [[10.0, 76.0], [12.0, 77.0]]
    assert state.divisions_data['features'][0]['properties']['param_values'] == {'pm2.5cnc': 15.0}
    assert layer_in_sync(state)


def test_drill_down_reuses_aq_query_pair_for_sensors(log):
    controller = make_controller(log)
    controller.store.dispatch(SetFilters(Filters(date(2024, 1, 1), date(2024, 1, 7), 'hours', 1)))

    controller.drill_down_state(KERALA)

    region_query, sensor_query = controller.aq_client.queries
    assert region_query == sensor_query
    primary, fallback = region_query
    assert primary.admin_level == 'division'
    assert primary.from_date == '2024-01-01'
    assert fallback.from_date is None


def test_drill_down_division_uses_exact_name_filter(log):
    controller = make_controller(log)
    controller.initial_load()
    controller.drill_down_state(KERALA)

    assert controller.drill_down_division(TVM)

    state = controller.store.state
    assert controller.geo_client.calls[-1] == (DISTRICT_LAYER_NAME, "division='Thiruvananthapuram'")
    assert controller.sensor_client.queries[-1].to_params() == {'admin_level': 'division', 'admin_id': 7}
    assert state.current_layer == DISTRICT
    assert state.layer_no == 3
    assert state.selected_division == 'Thiruvananthapuram'
    assert state.districts_data['features'][0]['properties']['param_values'] == {'pm10cnc': 40.0}


def test_drill_down_state_with_no_divisions(log):
    controller = make_controller(log, layers={STATE_LAYER_NAME: fc(KERALA)})
    controller.initial_load()

    controller.drill_down_state(KERALA)

    state = controller.store.state
    assert state.current_layer == STATE
    assert state.layer_no == 2
    assert state.notice == NO_DIVISIONS_NOTICE
    assert not state.has_drilled_down
    assert not state.is_loading
    assert state.selected_state == 'Kerala'
    assert not layer_in_sync(state)


def test_drill_down_division_with_no_districts(log):
    controller = make_controller(log, layers={STATE_LAYER_NAME: fc(KERALA), DIVISION_LAYER_NAME: fc(TVM)})
    controller.initial_load()
    controller.drill_down_state(KERALA)

    controller.drill_down_division(TVM)

    state = controller.store.state
    assert state.current_layer == DIVISION
    assert state.layer_no == 3
    assert state.notice == NO_DISTRICTS_NOTICE


def test_geo_failure_is_treated_as_no_children(log):
    controller = make_controller(log, geo_fail=True)

    controller.drill_down_state(KERALA)

    state = controller.store.state
    assert state.notice == NO_DIVISIONS_NOTICE
    assert state.divisions_data == {'type': 'FeatureCollection', 'features': []}
    assert state.error is None


def test_aq_failure_aborts_and_clears_loading(log):
    controller = make_controller(log, aq_fail=True)

    assert not controller.drill_down_state(KERALA)

    state = controller.store.state
    assert log == ['aq']
    assert not state.is_loading
    assert "Kerala" in state.error
    assert state.current_layer == STATE
    assert state.layer_no == 1


def test_zoom_to_district_does_not_fetch(log):
    controller = make_controller(log)
    controller.initial_load()
    controller.drill_down_state(KERALA)
    controller.drill_down_division(TVM)
    log.clear()

    controller.drill_down(KOLLAM)

    state = controller.store.state
    assert log == []
    assert state.current_layer == DISTRICT
    assert state.selected_district == 'Kollam'
    assert state.bounds == [[10.0, 76.0], [12.0, 77.0]]


def test_drill_down_dispatches_by_rendered_layer(log):
    controller = make_controller(log)
    controller.initial_load()

    controller.drill_down(KERALA)
    assert controller.store.state.current_layer == DIVISION

    controller.drill_down(TVM)
    assert controller.store.state.current_layer == DISTRICT


def test_stale_drill_result_is_dropped(log):
    controller = make_controller(log)
    controller.initial_load()

    original_fetch = controller.geo_client.fetch

    def fetch_and_supersede(layer_name, cql_filter=None):
        # A second drill starts while the first is still waiting on geoserver
        if layer_name == DIVISION_LAYER_NAME and len(controller.geo_client.calls) == 1:
            controller.store.begin()
        return original_fetch(layer_name, cql_filter)

    controller.geo_client.fetch = fetch_and_supersede

    assert not controller.drill_down_state(KERALA)
    assert controller.store.state.current_layer == STATE
    assert controller.store.state.layer_no == 1


def test_select_feature_uses_depth_name(log):
    controller = make_controller(log)
    controller.initial_load()

    controller.select_feature(KERALA)
    assert controller.store.state.selected_feature_name == 'Kerala'

    controller.select_sensor({'properties': {'imei_id': 'A1'}})
    assert controller.store.state.selected_feature_name == 'A1'


def test_set_filters_reloads_from_state_level(log):
    controller = make_controller(log)
    controller.initial_load()
    controller.drill_down_state(KERALA)
    log.clear()

    controller.set_filters(Filters(date(2024, 2, 1), date(2024, 2, 3), 'days', 1))

    state = controller.store.state
    assert log == ['aq', 'sensor_geo', 'sensor_aq', 'geo']
    assert state.current_layer == STATE
    assert state.layer_no == 1
    assert state.filters.sampling_period == 'days'
    assert controller.aq_client.queries[-1][0].from_date == '2024-02-01'


def test_drill_up_and_toggle(log):
    controller = make_controller(log)
    controller.initial_load()
    controller.drill_down_state(KERALA)

    controller.drill_up()
    controller.toggle_sensor_layer(False)

    state = controller.store.state
    assert state.current_layer == STATE
    assert not state.show_sensor_layer


@pytest.mark.parametrize('body_or_error', [TimeoutError("timed out"), b'{"data": "\xff\xfe"}'])
def test_transport_failure_clears_loading(monkeypatch, body_or_error):
    class Response:
        def read(self):
            return body_or_error

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    def urlopen(*args, **kwargs):
        if isinstance(body_or_error, Exception):
            raise body_or_error
        return Response()

    monkeypatch.setattr(api_clients.urllib.request, 'urlopen', urlopen)
    controller = DrillController(Store(), GeoDataClient(), SensorGeoClient(), AQMetricsClient(timeout=0.5))

    assert not controller.initial_load()

    state = controller.store.state
    assert state.is_loading is False
    assert state.error is not None
