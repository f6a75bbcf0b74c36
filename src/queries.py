"""
Typed request structs for the geoserver and AQ API backends.

Each request is a small frozen dataclass that validates itself before it is
dispatched and renders to a flat query-parameter dict. The builders encode
the date-filter rule shared by every admin level: the date range and
sampling configuration are sent either complete or not at all.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from config import GEO_LAYER_NAMES, POLLUTANT_CODES

logger = logging.getLogger(__name__)

ADMIN_LEVELS = ("state", "division", "district")


class QueryValidationError(ValueError):
    """Raised when a request struct is rejected before dispatch."""


def _format_date(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class AQQuery:
    """Query for aggregated pollutant values at one admin level."""

    admin_level: str
    params: str = ",".join(POLLUTANT_CODES)
    from_date: Optional[str] = None
    to_date: Optional[str] = None
    sampling: Optional[str] = None
    sampling_value: Optional[int] = None

    @property
    def has_date_filter(self) -> bool:
        return self.from_date is not None

    def validate(self) -> None:
        if self.admin_level not in ADMIN_LEVELS:
            raise QueryValidationError(f"Unknown admin level: {self.admin_level!r}")
        if not self.params:
            raise QueryValidationError("AQ query requests no pollutants")

        date_fields = (self.from_date, self.to_date, self.sampling, self.sampling_value)
        present = [field is not None for field in date_fields]
        if any(present) and not all(present):
            raise QueryValidationError(
                "Partial date filter: from_date, to_date, sampling and "
                "sampling_value must be sent together"
            )

    def to_params(self) -> Dict[str, Any]:
        params = {
            'admin_level': self.admin_level,
            'params': self.params,
            'from_date': self.from_date,
            'to_date': self.to_date,
            'sampling': self.sampling,
            'sampling_value': self.sampling_value,
        }
        return {key: value for key, value in params.items() if value is not None}


@dataclass(frozen=True)
class SensorGeoQuery:
    """Query for sensor locations inside one admin scope."""

    admin_level: str
    admin_id: Optional[Any] = None

    def validate(self) -> None:
        if self.admin_level not in ADMIN_LEVELS:
            raise QueryValidationError(f"Unknown admin level: {self.admin_level!r}")

    def to_params(self) -> Dict[str, Any]:
        params = {'admin_level': self.admin_level}
        if self.admin_id:
            params['admin_id'] = self.admin_id
        return params


@dataclass(frozen=True)
class GeoQuery:
    """WFS GetFeature request for one geoserver layer."""

    layer_name: str
    cql_filter: Optional[str] = None

    def validate(self) -> None:
        if self.layer_name not in GEO_LAYER_NAMES:
            raise QueryValidationError(f"Unknown geoserver layer: {self.layer_name!r}")

    def to_params(self) -> Dict[str, Any]:
        params = {
            'service': 'WFS',
            'version': '1.0.0',
            'request': 'GetFeature',
            'typeName': self.layer_name,
            'outputFormat': 'application/json',
        }
        if self.cql_filter:
            params['CQL_FILTER'] = self.cql_filter
        return params


def build_aq_query(admin_level: str, filters=None) -> AQQuery:
    """
    Build the primary AQ query for an admin level.

    The date range and sampling configuration are attached only when all
    four of start date, end date, sampling period and sampling value are
    set. Any missing piece drops the whole date filter.

    Args:
        admin_level: 'state', 'division' or 'district'
        filters: Object with start_date, end_date, sampling_period and
            sampling_value attributes (or None)

    Returns:
        AQQuery ready for dispatch
    """
    if filters is None:
        return AQQuery(admin_level=admin_level)

    start_date = filters.start_date
    end_date = filters.end_date
    sampling_period = filters.sampling_period
    sampling_value = filters.sampling_value

    if start_date and end_date and sampling_period and sampling_value:
        return AQQuery(
            admin_level=admin_level,
            from_date=_format_date(start_date),
            to_date=_format_date(end_date),
            sampling=sampling_period,
            sampling_value=sampling_value,
        )

    return AQQuery(admin_level=admin_level)


def build_fallback_aq_query(admin_level: str) -> AQQuery:
    """AQ query for the same level with no date filter."""
    return AQQuery(admin_level=admin_level)


def build_sensor_geo_query(admin_level: str, admin_id: Optional[Any] = None) -> SensorGeoQuery:
    return SensorGeoQuery(admin_level=admin_level, admin_id=admin_id or None)


def build_cql_filter(field: str, value: str, uppercase: bool = False) -> str:
    """
    Build a CQL equality predicate such as ``state='KERALA'``.

    Single quotes inside the value are doubled, which is how CQL escapes
    them inside a string literal.
    """
    if uppercase:
        value = value.upper()
    escaped = value.replace("'", "''")
    return f"{field}='{escaped}'"


def build_aq_url(base_url: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Append the non-None params to base_url as a query string."""
    params = params or {}
    query_string = urlencode(
        [(key, value) for key, value in params.items() if value is not None]
    )
    return f"{base_url}?{query_string}" if query_string else base_url
