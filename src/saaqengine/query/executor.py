"""QueryExecutor: runs built statements on a dedicated read handle."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import structlog

from saaqengine.config.models import QueryConfig
from saaqengine.query.builder import PercentageQuery, Query
from saaqengine.query.metrics import MetricSpec, MetricType
from saaqengine.query.plan import PlanClassification, explain_plan
from saaqengine.query.series import QueryResult, SummaryStatistics, TimePoint, TimeSeries
from saaqengine.query.transforms import post_process

if TYPE_CHECKING:
    from saaqengine.core.errors import SlowQueryWarning
    from saaqengine.store.database import Database, StoreHandle

logger = structlog.get_logger()


def _unit(metric: MetricSpec) -> str | None:
    if metric.normalize:
        return None
    if metric.metric is MetricType.PERCENTAGE:
        return "%"
    if metric.metric is MetricType.COVERAGE:
        return "%" if metric.coverage_as_percentage else None
    if metric.field is not None and metric.metric.needs_field:
        return metric.field.unit
    return None


def percentage_by_year(
    numerator: dict[int, float | None],
    denominator: dict[int, float | None],
) -> dict[int, float | None]:
    """numerator * 100 / denominator for every baseline year.

    A year with a zero or missing baseline yields None; a baseline year
    the numerator never reached is 0%.
    """
    result: dict[int, float | None] = {}
    for year in sorted(set(numerator) | set(denominator)):
        base = denominator.get(year)
        if not base:
            result[year] = None
            continue
        result[year] = (numerator.get(year) or 0.0) * 100.0 / base
    return result


class QueryExecutor:
    def __init__(self, db: Database, config: QueryConfig | None = None) -> None:
        self.db = db
        self.config = config or QueryConfig()

    def explain(self, query: Query | PercentageQuery) -> list[PlanClassification]:
        with self.db.read_handle("explain") as handle:
            return [explain_plan(handle, q) for q in _statements(query)]

    def execute(self, query: Query | PercentageQuery, filter_info: dict[str, Any] | None = None) -> QueryResult:
        """Run a query and post-process its series.

        Raises:
            SlowQueryWarning: the plan scans a fact table and the policy is
                "reject".
            StorageError: connection or statement failure.
        """
        started = time.monotonic()
        metric = query.numerator.metric if isinstance(query, PercentageQuery) else query.metric

        with self.db.read_handle("query") as handle:
            warning = self._check_plans(handle, query)
            if isinstance(query, PercentageQuery):
                by_year = percentage_by_year(_fetch(handle, query.numerator), _fetch(handle, query.denominator))
            else:
                by_year = _fetch(handle, query)

        years = sorted(by_year)
        values = post_process([by_year[y] for y in years], normalize=metric.normalize, cumulative=metric.cumulative)
        points = [TimePoint(y, v) for y, v in zip(years, values, strict=True)]
        series = TimeSeries(label=query.label, points=points, unit=_unit(metric))
        elapsed_ms = (time.monotonic() - started) * 1000

        logger.info(
            "query_executed",
            metric=metric.metric.value,
            points=len(points),
            elapsed_ms=round(elapsed_ms, 1),
            slow_plan=warning is not None,
        )
        return QueryResult(
            series=series,
            summary=SummaryStatistics.from_points(points),
            filter=filter_info or {},
            warning=warning,
            elapsed_ms=elapsed_ms,
        )

    def _check_plans(self, handle: StoreHandle, query: Query | PercentageQuery) -> SlowQueryWarning | None:
        policy = self.config.slow_query_policy
        if not self.config.explain or policy == "ignore":
            return None
        for statement in _statements(query):
            plan = explain_plan(handle, statement)
            if plan.warning is None:
                continue
            if policy == "reject":
                logger.warning("slow_query_rejected", table=statement.fact_table, plan=plan.details)
                raise plan.warning
            logger.warning("slow_query_plan", table=statement.fact_table, plan=plan.details)
            return plan.warning
        return None


def _statements(query: Query | PercentageQuery) -> list[Query]:
    if isinstance(query, PercentageQuery):
        return [query.numerator, query.denominator]
    return [query]


def _fetch(handle: StoreHandle, query: Query) -> dict[int, float | None]:
    logger.debug("query_sql", sql=query.sql, params=query.params)
    rows = handle.all(query.sql, query.params)
    return {int(r[0]): (float(r[1]) if r[1] is not None else None) for r in rows}
