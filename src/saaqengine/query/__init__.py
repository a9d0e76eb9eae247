"""Filter resolution, SQL building and execution.

Value types are re-exported here; the translator, builder and executor are
imported from their modules.
"""

from saaqengine.query.filters import AgeRange, FilterIds, FilterSpec, LicenseClass, QueryOptions
from saaqengine.query.metrics import CoverageField, MeasureField, MetricSpec, MetricType, RWIMode
from saaqengine.query.series import QueryResult, SummaryStatistics, TimePoint, TimeSeries
from saaqengine.query.tokens import Badge, FilterToken, parse_token

__all__ = [
    "AgeRange",
    "Badge",
    "CoverageField",
    "FilterIds",
    "FilterSpec",
    "FilterToken",
    "LicenseClass",
    "MeasureField",
    "MetricSpec",
    "MetricType",
    "QueryOptions",
    "QueryResult",
    "RWIMode",
    "SummaryStatistics",
    "TimePoint",
    "TimeSeries",
    "parse_token",
]
