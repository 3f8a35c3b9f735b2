from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

from metrichub.benchmarks.dora import DEFAULT_THRESHOLDS
from metrichub.engine.window import MetricWindow
from metrichub.models.enums import PerformanceTier

_HOUR = timedelta(hours=1)


class MetricBands(BaseModel):
    """Boundaries of the elite / high / medium bands for one metric.

    Anything beyond the ``medium`` boundary is ``low``.  Unknown band names
    are rejected.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    elite: float
    high: float
    medium: float


class ThresholdTable(BaseModel):
    """Configurable DORA band boundaries for all four metrics."""

    model_config = ConfigDict(frozen=True)

    deployment_frequency: MetricBands
    lead_time_hours: MetricBands
    mttr_hours: MetricBands
    change_failure_rate: MetricBands

    @model_validator(mode="after")
    def _check_band_order(self) -> ThresholdTable:
        df = self.deployment_frequency
        if not df.elite >= df.high >= df.medium >= 0:
            raise ValueError(
                "deployment_frequency bands must satisfy elite >= high >= medium >= 0"
            )
        for name in ("lead_time_hours", "mttr_hours", "change_failure_rate"):
            bands: MetricBands = getattr(self, name)
            if not 0 <= bands.elite <= bands.high <= bands.medium:
                raise ValueError(f"{name} bands must satisfy 0 <= elite <= high <= medium")
        return self

    @classmethod
    def default(cls) -> ThresholdTable:
        return cls.model_validate(DEFAULT_THRESHOLDS)

    @classmethod
    def with_overrides(cls, overrides: Mapping[str, Mapping[str, Any]]) -> ThresholdTable:
        """Merge per-metric, per-band *overrides* over :data:`DEFAULT_THRESHOLDS`.

        Example::

            ThresholdTable.with_overrides({"mttr_hours": {"elite": 0.5}})
        """
        merged = {metric: dict(bands) for metric, bands in DEFAULT_THRESHOLDS.items()}
        for metric, bands in overrides.items():
            if metric not in merged:
                raise ValueError(f"Unknown DORA metric {metric!r} in threshold overrides")
            merged[metric].update(bands)
        return cls.model_validate(merged)


@dataclass(frozen=True)
class PerformanceClassification:
    """Per-metric tiers plus the conservative worst-of-four ``overall`` tier."""

    deployment_frequency: PerformanceTier
    lead_time: PerformanceTier
    mttr: PerformanceTier
    change_failure_rate: PerformanceTier
    overall: PerformanceTier

    def as_dict(self) -> dict[str, str]:
        return {
            "deployment_frequency": self.deployment_frequency.value,
            "lead_time": self.lead_time.value,
            "mttr": self.mttr.value,
            "change_failure_rate": self.change_failure_rate.value,
            "overall": self.overall.value,
        }


def _higher_is_better(value: float, bands: MetricBands) -> PerformanceTier:
    if value >= bands.elite:
        return PerformanceTier.elite
    if value >= bands.high:
        return PerformanceTier.high
    if value >= bands.medium:
        return PerformanceTier.medium
    return PerformanceTier.low


def _lower_is_better(value: float, bands: MetricBands) -> PerformanceTier:
    if value <= bands.elite:
        return PerformanceTier.elite
    if value <= bands.high:
        return PerformanceTier.high
    if value <= bands.medium:
        return PerformanceTier.medium
    return PerformanceTier.low


def worst_tier(tiers: list[PerformanceTier]) -> PerformanceTier:
    """Return the lowest-ranked tier so one regressed metric is never masked."""
    return min(tiers, key=lambda tier: tier.rank)


def classify(window: MetricWindow, thresholds: ThresholdTable) -> PerformanceClassification:
    """Classify every metric of *window* against *thresholds*.

    Pure function: the result depends only on its arguments.
    """
    per_metric = {
        "deployment_frequency": _higher_is_better(
            window.deployment_frequency, thresholds.deployment_frequency
        ),
        "lead_time": _lower_is_better(window.lead_time / _HOUR, thresholds.lead_time_hours),
        "mttr": _lower_is_better(window.mttr / _HOUR, thresholds.mttr_hours),
        "change_failure_rate": _lower_is_better(
            window.change_failure_rate, thresholds.change_failure_rate
        ),
    }
    return PerformanceClassification(
        **per_metric,
        overall=worst_tier(list(per_metric.values())),
    )


class Classifier:
    """Stateless classifier bound to one :class:`ThresholdTable`."""

    def __init__(self, thresholds: ThresholdTable | None = None) -> None:
        self.thresholds = thresholds or ThresholdTable.default()

    def classify(self, window: MetricWindow) -> PerformanceClassification:
        return classify(window, self.thresholds)
