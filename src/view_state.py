"""
Immutable view state for the drill-down map and the reducer that advances it.

Every change to what the dashboard shows goes through ``reduce(state, action)``,
which returns a new ``ViewState`` snapshot. ``Store`` holds the current
snapshot and tags each fetch sequence with a generation id so that results
of a superseded drill-down are dropped instead of overwriting newer ones.

Layers and drill depth:
    State: 1
    Division: 2
    District: 3
    Sensor: 4 (named, never reached by the current flow)
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

STATE = 'State'
DIVISION = 'Division'
DISTRICT = 'District'

LAYER_NUMBERS = {
    STATE: 1,
    DIVISION: 2,
    DISTRICT: 3,
}

PARENT_LAYERS = {
    DIVISION: STATE,
    DISTRICT: DIVISION,
}

NO_DIVISIONS_NOTICE = "No divisions found for the selected State"
NO_DISTRICTS_NOTICE = "No districts found for the selected Division"


@dataclass(frozen=True)
class Filters:
    """Date range and sampling configuration shared by every level."""

    start_date: Optional[Any] = None
    end_date: Optional[Any] = None
    sampling_period: Optional[str] = None
    sampling_value: Optional[int] = None


@dataclass(frozen=True)
class ViewState:
    current_layer: str = STATE
    layer_no: int = 1

    selected_state: Optional[str] = None
    selected_division: Optional[str] = None
    selected_district: Optional[str] = None

    # Merged polygon collections per level
    states_data: Optional[Dict[str, Any]] = None
    divisions_data: Optional[Dict[str, Any]] = None
    districts_data: Optional[Dict[str, Any]] = None

    # Merged sensor collections per level
    states_sensor_data: Optional[Dict[str, Any]] = None
    divisions_sensor_data: Optional[Dict[str, Any]] = None
    districts_sensor_data: Optional[Dict[str, Any]] = None

    bounds: List[List[float]] = field(default_factory=list)
    bounds_history: Tuple[List[List[float]], ...] = ()

    selected_feature: Optional[Dict[str, Any]] = None
    selected_feature_name: Optional[str] = None

    show_sensor_layer: bool = True
    is_loading: bool = False
    has_drilled_down: bool = False

    filters: Filters = field(default_factory=Filters)

    notice: Optional[str] = None
    error: Optional[str] = None
    generation: int = 0

    def layer_data(self) -> Optional[Dict[str, Any]]:
        """Polygon collection of the rendered layer."""
        return {
            STATE: self.states_data,
            DIVISION: self.divisions_data,
            DISTRICT: self.districts_data,
        }[self.current_layer]

    def sensor_data(self) -> Optional[Dict[str, Any]]:
        """Sensor collection of the rendered layer."""
        return {
            STATE: self.states_sensor_data,
            DIVISION: self.divisions_sensor_data,
            DISTRICT: self.districts_sensor_data,
        }[self.current_layer]


# ============================================================================
# Actions
# ============================================================================

@dataclass(frozen=True)
class SetFilters:
    action_type: ClassVar[str] = 'SET_FILTERS'
    filters: Filters


@dataclass(frozen=True)
class LoadStarted:
    action_type: ClassVar[str] = 'LOAD_STARTED'


@dataclass(frozen=True)
class InitialLoaded:
    action_type: ClassVar[str] = 'INITIAL_LOADED'
    states_data: Optional[Dict[str, Any]]
    sensor_data: Optional[Dict[str, Any]]


@dataclass(frozen=True)
class DrillDownState:
    action_type: ClassVar[str] = 'DRILL_DOWN_STATE'
    state_name: str
    divisions_data: Optional[Dict[str, Any]]
    sensor_data: Optional[Dict[str, Any]]
    bounds: List[List[float]]


@dataclass(frozen=True)
class DrillDownDivision:
    action_type: ClassVar[str] = 'DRILL_DOWN_DIVISION'
    division_name: str
    districts_data: Optional[Dict[str, Any]]
    sensor_data: Optional[Dict[str, Any]]
    bounds: List[List[float]]


@dataclass(frozen=True)
class ZoomToDistrict:
    action_type: ClassVar[str] = 'ZOOM_TO_DISTRICT'
    district_name: Optional[str]
    bounds: List[List[float]]


@dataclass(frozen=True)
class DrillUp:
    action_type: ClassVar[str] = 'DRILL_UP'


@dataclass(frozen=True)
class SelectFeature:
    action_type: ClassVar[str] = 'SELECT_FEATURE'
    feature: Optional[Dict[str, Any]]
    name: Optional[str]


@dataclass(frozen=True)
class ToggleSensorLayer:
    action_type: ClassVar[str] = 'TOGGLE_SENSOR_LAYER'
    show: bool


@dataclass(frozen=True)
class LoadFailed:
    action_type: ClassVar[str] = 'LOAD_FAILED'
    message: str


@dataclass(frozen=True)
class DismissNotice:
    action_type: ClassVar[str] = 'DISMISS_NOTICE'


# ============================================================================
# Reducer
# ============================================================================

def _has_features(collection: Optional[Dict[str, Any]]) -> bool:
    return bool(collection and collection.get('features'))


def _drill_down(state: ViewState, child_layer: str, collection, bounds, notice: str,
                **level_changes) -> ViewState:
    """
    Commit the result of a State->Division or Division->District drill.

    The child collections are stored either way. Only a non-empty polygon
    collection switches the rendered layer. The drill depth counter moves
    forward even when the drill found nothing, which can leave layer_no
    ahead of current_layer (see layer_in_sync).
    """
    changes = dict(level_changes)
    changes.update(is_loading=False, layer_no=state.layer_no + 1)

    if _has_features(collection):
        changes.update(
            current_layer=child_layer,
            bounds_history=state.bounds_history + (state.bounds,),
            bounds=bounds,
            has_drilled_down=True,
            notice=None,
        )
    else:
        changes.update(
            notice=notice,
            selected_feature=None,
            selected_feature_name=None,
            has_drilled_down=False,
        )

    return replace(state, **changes)


def _drill_up(state: ViewState) -> ViewState:
    parent_layer = PARENT_LAYERS.get(state.current_layer)
    if parent_layer is None:
        return state

    history = state.bounds_history
    bounds = history[-1] if history else []

    changes = dict(
        current_layer=parent_layer,
        layer_no=LAYER_NUMBERS[parent_layer],
        bounds=bounds,
        bounds_history=history[:-1],
        selected_feature=None,
        selected_feature_name=None,
        has_drilled_down=parent_layer != STATE,
        notice=None,
    )
    if state.current_layer == DISTRICT:
        changes['selected_district'] = None
        changes['selected_division'] = None
    else:
        changes['selected_state'] = None

    return replace(state, **changes)


def reduce(state: ViewState, action) -> ViewState:
    """Return the snapshot that follows ``state`` after ``action``."""
    action_type = action.action_type

    if action_type == 'SET_FILTERS':
        # A filter change reloads from the top level
        return replace(
            state,
            filters=action.filters,
            current_layer=STATE,
            layer_no=1,
            selected_state=None,
            selected_division=None,
            selected_district=None,
            divisions_data=None,
            districts_data=None,
            divisions_sensor_data=None,
            districts_sensor_data=None,
            bounds=[],
            bounds_history=(),
            selected_feature=None,
            selected_feature_name=None,
            has_drilled_down=False,
            notice=None,
            error=None,
        )

    if action_type == 'LOAD_STARTED':
        return replace(state, is_loading=True, error=None, generation=state.generation + 1)

    if action_type == 'INITIAL_LOADED':
        return replace(
            state,
            states_data=action.states_data,
            states_sensor_data=action.sensor_data,
            is_loading=False,
        )

    if action_type == 'DRILL_DOWN_STATE':
        return _drill_down(
            state, DIVISION, action.divisions_data, action.bounds, NO_DIVISIONS_NOTICE,
            divisions_data=action.divisions_data,
            divisions_sensor_data=action.sensor_data,
            selected_state=action.state_name,
        )

    if action_type == 'DRILL_DOWN_DIVISION':
        return _drill_down(
            state, DISTRICT, action.districts_data, action.bounds, NO_DISTRICTS_NOTICE,
            districts_data=action.districts_data,
            districts_sensor_data=action.sensor_data,
            selected_division=action.division_name,
        )

    if action_type == 'ZOOM_TO_DISTRICT':
        return replace(
            state,
            bounds=action.bounds,
            has_drilled_down=True,
            selected_district=action.district_name,
        )

    if action_type == 'DRILL_UP':
        return _drill_up(state)

    if action_type == 'SELECT_FEATURE':
        return replace(state, selected_feature=action.feature, selected_feature_name=action.name)

    if action_type == 'TOGGLE_SENSOR_LAYER':
        return replace(state, show_sensor_layer=action.show)

    if action_type == 'LOAD_FAILED':
        return replace(state, is_loading=False, error=action.message)

    if action_type == 'DISMISS_NOTICE':
        return replace(state, notice=None, error=None)

    raise ValueError(f"Unknown action type: {action_type}")


def layer_in_sync(state: ViewState) -> bool:
    """True when the drill depth counter matches the rendered layer."""
    return LAYER_NUMBERS[state.current_layer] == state.layer_no


class Store:
    """
    Holds the current ViewState.

    ``begin()`` starts a fetch sequence and returns its generation id;
    ``commit()`` applies the sequence's result only if no newer sequence
    has started since.
    """

    def __init__(self, state: Optional[ViewState] = None):
        self._state = state if state is not None else ViewState()

    @property
    def state(self) -> ViewState:
        return self._state

    def dispatch(self, action) -> ViewState:
        logger.debug(f"Dispatching {action.action_type}")
        self._state = reduce(self._state, action)
        return self._state

    def begin(self) -> int:
        return self.dispatch(LoadStarted()).generation

    def is_current(self, generation: int) -> bool:
        return generation == self._state.generation

    def commit(self, generation: int, action) -> bool:
        if not self.is_current(generation):
            logger.info(
                f"Dropping stale {action.action_type} result "
                f"(generation {generation}, current {self._state.generation})"
            )
            return False
        self.dispatch(action)
        return True
