from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from metrichub.models.enums import DataQuality, PerformanceTier, Trend


def format_duration(value: timedelta) -> str:
    """Render *value* the way the dashboard shows durations.

    Example::

        >>> format_duration(timedelta(hours=2, minutes=30))
        '2h 30m'
        >>> format_duration(timedelta(seconds=0))
        '0s'
    """
    total = int(round(value.total_seconds()))
    days, rest = divmod(total, 86_400)
    hours, rest = divmod(rest, 3_600)
    minutes, seconds = divmod(rest, 60)
    parts = [
        f"{amount}{unit}"
        for amount, unit in ((days, "d"), (hours, "h"), (minutes, "m"))
        if amount
    ]
    if not parts:
        return f"{seconds}s"
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Shared metadata
# ---------------------------------------------------------------------------


class TimeRangeSchema(BaseModel):
    start: datetime
    end: datetime


class ScopeSchema(BaseModel):
    service: str | None = None
    environment: str | None = None


class MetricsMetadata(BaseModel):
    """Context returned alongside every metrics payload."""

    time_range: TimeRangeSchema
    scope: ScopeSchema
    data_quality: DataQuality
    last_updated: datetime
    version: str = "v1"


# ---------------------------------------------------------------------------
# Full DORA response
# ---------------------------------------------------------------------------


class ClassificationSchema(BaseModel):
    deployment_frequency: PerformanceTier
    lead_time: PerformanceTier
    mttr: PerformanceTier
    change_failure_rate: PerformanceTier
    overall: PerformanceTier


class DoraMetricsData(BaseModel):
    """The four DORA metrics with their tiers and trends.

    Durations are given both as a display string and in seconds.
    ``change_failure_rate`` is a fraction in ``[0, 1]``.
    """

    deployment_frequency: float
    lead_time: str
    lead_time_seconds: float
    mttr: str
    mttr_seconds: float
    change_failure_rate: float
    classification: ClassificationSchema
    overall_performance: PerformanceTier
    trend: dict[str, Trend] = Field(default_factory=dict)
    deployments_count: int
    failed_deployments_count: int
    incidents_count: int
    resolved_incidents_count: int


class DoraMetricsResponse(BaseModel):
    data: DoraMetricsData
    metadata: MetricsMetadata


# ---------------------------------------------------------------------------
# Single-metric responses
# ---------------------------------------------------------------------------


class BenchmarkSchema(BaseModel):
    tier: PerformanceTier
    description: str


class SingleMetricData(BaseModel):
    """One DORA metric with its benchmark tier.

    ``value`` is numeric for rates and a display string for durations, in
    which case ``value_seconds`` carries the raw number.
    """

    metric: str
    value: float | str
    value_seconds: float | None = None
    unit: str
    percentage: str | None = None
    trend: Trend
    benchmark: BenchmarkSchema


class SingleMetricResponse(BaseModel):
    data: SingleMetricData
    metadata: MetricsMetadata
