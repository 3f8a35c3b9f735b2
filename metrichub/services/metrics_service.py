from __future__ import annotations

from datetime import timedelta

from metrichub.benchmarks.dora import describe_level
from metrichub.engine import MetricResponse, MetricsEngine, Scope, TimeRange, ValidationError
from metrichub.models.enums import Trend
from metrichub.schemas.metrics import (
    BenchmarkSchema,
    ClassificationSchema,
    DoraMetricsData,
    DoraMetricsResponse,
    MetricsMetadata,
    ScopeSchema,
    SingleMetricData,
    SingleMetricResponse,
    TimeRangeSchema,
    format_duration,
)

# Unit reported for each single-metric endpoint.
_UNITS: dict[str, str] = {
    "deployment_frequency": "deployments/day",
    "lead_time": "duration",
    "mttr": "duration",
    "change_failure_rate": "ratio",
}


def resolve_window(
    engine: MetricsEngine,
    days: int | None,
    preset: str | None,
    max_days: int,
) -> TimeRange:
    """Turn the ``days`` / ``range`` query parameters into a :class:`TimeRange`.

    ``range`` wins when both are given.

    Raises:
        ValidationError: If ``days`` exceeds *max_days* or ``range`` is unknown.
    """
    if days is not None and days > max_days:
        raise ValidationError(f"days must be at most {max_days}.")
    return engine.window(days=days, preset=preset)


def _metadata(response: MetricResponse) -> MetricsMetadata:
    time_range = response.metadata.time_range
    scope = response.window.scope
    return MetricsMetadata(
        time_range=TimeRangeSchema(start=time_range.start, end=time_range.end),
        scope=ScopeSchema(service=scope.service, environment=scope.environment),
        data_quality=response.metadata.data_quality,
        last_updated=response.metadata.last_updated,
    )


def build_dora_response(response: MetricResponse) -> DoraMetricsResponse:
    """Render an engine :class:`MetricResponse` as the full DORA payload."""
    window = response.window
    classification = response.classification
    data = DoraMetricsData(
        deployment_frequency=round(window.deployment_frequency, 4),
        lead_time=format_duration(window.lead_time),
        lead_time_seconds=window.lead_time.total_seconds(),
        mttr=format_duration(window.mttr),
        mttr_seconds=window.mttr.total_seconds(),
        change_failure_rate=round(window.change_failure_rate, 4),
        classification=ClassificationSchema(**classification.as_dict()),
        overall_performance=classification.overall,
        trend=response.trend,
        deployments_count=window.deployment_count,
        failed_deployments_count=window.failed_count,
        incidents_count=window.incident_count,
        resolved_incidents_count=window.resolved_incident_count,
    )
    return DoraMetricsResponse(data=data, metadata=_metadata(response))


def build_single_metric_response(response: MetricResponse, metric: str) -> SingleMetricResponse:
    """Render one of the four DORA metrics out of *response*.

    Args:
        response: Engine output for the requested window and scope.
        metric: One of ``deployment_frequency``, ``lead_time``, ``mttr`` or
            ``change_failure_rate``.
    """
    raw = getattr(response.window, metric)
    tier = getattr(response.classification, metric)

    value: float | str
    value_seconds: float | None = None
    percentage: str | None = None
    if isinstance(raw, timedelta):
        value = format_duration(raw)
        value_seconds = raw.total_seconds()
    else:
        value = round(raw, 4)
        if metric == "change_failure_rate":
            percentage = f"{raw * 100:.1f}%"

    data = SingleMetricData(
        metric=metric,
        value=value,
        value_seconds=value_seconds,
        unit=_UNITS[metric],
        percentage=percentage,
        trend=response.trend.get(metric, Trend.stable),
        benchmark=BenchmarkSchema(tier=tier, description=describe_level(metric, tier)),
    )
    return SingleMetricResponse(data=data, metadata=_metadata(response))


def dora_metrics(
    engine: MetricsEngine,
    time_range: TimeRange,
    scope: Scope,
) -> DoraMetricsResponse:
    return build_dora_response(engine.metrics(time_range, scope))
