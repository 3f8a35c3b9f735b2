from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from metrichub.config import Settings
from metrichub.dependencies import get_engine, get_scope, get_settings
from metrichub.engine import MetricsEngine, Scope, TimeRange
from metrichub.schemas.metrics import DoraMetricsResponse, SingleMetricResponse
from metrichub.services import metrics_service

router = APIRouter(prefix="/metrics", tags=["metrics"])


def get_time_range(
    days: int | None = Query(default=None, ge=1, description="Trailing window length in days"),
    range_: str | None = Query(
        default=None,
        alias="range",
        description="Named window: last-7-days, last-30-days, last-90-days, this-month, last-month",
    ),
    engine: MetricsEngine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
) -> TimeRange:
    """Resolve the ``days`` / ``range`` query parameters against the engine clock."""
    return metrics_service.resolve_window(engine, days, range_, settings.MAX_WINDOW_DAYS)


def _single_metric(
    metric: str, engine: MetricsEngine, time_range: TimeRange, scope: Scope
) -> SingleMetricResponse:
    response = engine.metrics(time_range, scope)
    return metrics_service.build_single_metric_response(response, metric)


@router.get(
    "/dora",
    response_model=DoraMetricsResponse,
    summary="All four DORA metrics",
)
async def get_dora_metrics(
    time_range: TimeRange = Depends(get_time_range),
    scope: Scope = Depends(get_scope),
    engine: MetricsEngine = Depends(get_engine),
) -> DoraMetricsResponse:
    """Return deployment frequency, lead time, MTTR and change failure rate.

    Each metric is classified into a DORA tier; ``overall_performance`` is
    the worst of the four.  ``metadata.data_quality`` is ``low`` when the
    window holds no deployments or no resolved incidents, in which case the
    numbers should be displayed as "N/A".

    Args:
        time_range: Window resolved from ``days`` (default 30) or ``range``.
        scope: Optional ``service`` / ``environment`` filter.
        engine: Injected metrics engine.
    """
    return metrics_service.dora_metrics(engine, time_range, scope)


@router.get(
    "/dora/deployment-frequency",
    response_model=SingleMetricResponse,
    summary="Deployment frequency",
)
async def get_deployment_frequency(
    time_range: TimeRange = Depends(get_time_range),
    scope: Scope = Depends(get_scope),
    engine: MetricsEngine = Depends(get_engine),
) -> SingleMetricResponse:
    """Deployments per day over the window (at least one day is assumed)."""
    return _single_metric("deployment_frequency", engine, time_range, scope)


@router.get(
    "/dora/lead-time",
    response_model=SingleMetricResponse,
    summary="Lead time for changes",
)
async def get_lead_time(
    time_range: TimeRange = Depends(get_time_range),
    scope: Scope = Depends(get_scope),
    engine: MetricsEngine = Depends(get_engine),
) -> SingleMetricResponse:
    """Median commit-to-deploy time of deployments started in the window."""
    return _single_metric("lead_time", engine, time_range, scope)


@router.get(
    "/dora/mttr",
    response_model=SingleMetricResponse,
    summary="Mean time to restore",
)
async def get_mttr(
    time_range: TimeRange = Depends(get_time_range),
    scope: Scope = Depends(get_scope),
    engine: MetricsEngine = Depends(get_engine),
) -> SingleMetricResponse:
    """Mean recovery time of the resolved incidents started in the window."""
    return _single_metric("mttr", engine, time_range, scope)


@router.get(
    "/dora/change-failure-rate",
    response_model=SingleMetricResponse,
    summary="Change failure rate",
)
async def get_change_failure_rate(
    time_range: TimeRange = Depends(get_time_range),
    scope: Scope = Depends(get_scope),
    engine: MetricsEngine = Depends(get_engine),
) -> SingleMetricResponse:
    return _single_metric("change_failure_rate", engine, time_range, scope)
