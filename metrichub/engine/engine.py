from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from metrichub.engine.aggregator import WindowedAggregator
from metrichub.engine.classifier import Classifier, PerformanceClassification, ThresholdTable
from metrichub.engine.events import ALL_SCOPE, Event, Incident, Scope, SystemState, TimeRange
from metrichub.engine.lifecycle import IncidentLifecycleManager
from metrichub.engine.store import Clock, InMemoryEventStore, utc_now
from metrichub.engine.timeranges import last_days, resolve_preset
from metrichub.engine.window import MetricWindow
from metrichub.models.enums import DataQuality, Trend

if TYPE_CHECKING:
    from metrichub.config import Settings

logger = logging.getLogger(__name__)

# Relative change below which a metric is reported as "stable".
_STABLE_TOLERANCE: float = 0.05

METRIC_NAMES: tuple[str, ...] = (
    "deployment_frequency",
    "lead_time",
    "mttr",
    "change_failure_rate",
)


@dataclass(frozen=True)
class ResponseMetadata:
    time_range: TimeRange
    data_quality: DataQuality
    last_updated: datetime


@dataclass(frozen=True)
class MetricResponse:
    """A computed window, its classification and the metadata callers render."""

    window: MetricWindow
    classification: PerformanceClassification
    metadata: ResponseMetadata
    trend: dict[str, Trend] = field(default_factory=dict)


def _as_number(value: float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return value


def metric_trend(current: float | timedelta, previous: float | timedelta) -> Trend:
    """Compare *current* with *previous*; changes under 5% count as stable."""
    now, before = _as_number(current), _as_number(previous)
    baseline = max(abs(before), abs(now))
    if baseline == 0 or abs(now - before) / baseline < _STABLE_TOLERANCE:
        return Trend.stable
    return Trend.increasing if now > before else Trend.decreasing


class MetricsEngine:
    """Composition root of the DORA metrics core.

    Wires the event store, the windowed aggregator, the classifier and the
    incident lifecycle manager together.  Each instance is fully isolated;
    configuration (thresholds, clock, data-quality floor) is injected rather
    than read from ambient state, so tests can run many engines side by side.

    Example::

        engine = MetricsEngine(clock=lambda: fixed_now)
        engine.record(deployment)
        response = engine.metrics(engine.window(days=30))
    """

    def __init__(
        self,
        thresholds: ThresholdTable | None = None,
        clock: Clock = utc_now,
        min_samples: int = 5,
        cache_size: int = 256,
        default_window_days: int = 30,
    ) -> None:
        self.clock = clock
        self.min_samples = min_samples
        self.default_window_days = default_window_days
        self.store = InMemoryEventStore(clock=clock)
        self.aggregator = WindowedAggregator(cache_size=cache_size)
        self.aggregator.attach(self.store)
        self.classifier = Classifier(thresholds)
        self.incidents = IncidentLifecycleManager(self.store, clock=clock)

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> MetricsEngine:
        """Build an engine configured from application :class:`~metrichub.config.Settings`."""
        return cls(
            thresholds=ThresholdTable.with_overrides(settings.DORA_THRESHOLDS),
            clock=clock,
            min_samples=settings.DATA_QUALITY_MIN_SAMPLES,
            default_window_days=settings.DEFAULT_WINDOW_DAYS,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(self, event: Event) -> Event:
        """Record a canonical deployment or incident event."""
        with self.staged_record(event) as recorded:
            pass
        return recorded

    @contextmanager
    def staged_record(self, event: Event) -> Iterator[Event]:
        """Stage *event*, letting the caller persist before the commit.

        Incidents go through the lifecycle manager as imports, so plugin
        backfills may already carry a ``resolved_time``.
        """
        if isinstance(event, Incident):
            with self.incidents.staged_import(event) as imported:
                yield imported
        else:
            with self.store.staged_append(event) as appended:
                yield appended

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def window(self, days: int | None = None, preset: str | None = None) -> TimeRange:
        """Resolve a ``days`` count or a dashboard ``preset`` against the engine clock."""
        now = self.clock()
        if preset is not None:
            return resolve_preset(preset, now)
        return last_days(days or self.default_window_days, now)

    def compute(self, time_range: TimeRange, scope: Scope = ALL_SCOPE) -> MetricWindow:
        return self.aggregator.compute(time_range, scope)

    def classify(self, window: MetricWindow) -> PerformanceClassification:
        return self.classifier.classify(window)

    def data_quality(self, window: MetricWindow) -> DataQuality:
        """Grade how trustworthy *window* is.

        ``low`` when there are no deployments or no resolved incidents (the
        caller should render "N/A"), ``high`` when every metric is backed by at
        least ``min_samples`` samples, ``medium`` otherwise.
        """
        if window.deployment_count == 0 or window.resolved_incident_count == 0:
            return DataQuality.low
        samples = (
            window.deployment_count,
            window.lead_time_samples,
            window.resolved_incident_count,
        )
        if all(count >= self.min_samples for count in samples):
            return DataQuality.high
        return DataQuality.medium

    def trend(self, window: MetricWindow) -> dict[str, Trend]:
        """Per-metric trend of *window* against the preceding window of equal length."""
        previous = self.aggregator.compute(window.time_range.previous(), window.scope)
        return {
            name: metric_trend(getattr(window, name), getattr(previous, name))
            for name in METRIC_NAMES
        }

    def metrics(
        self,
        time_range: TimeRange,
        scope: Scope = ALL_SCOPE,
        include_trend: bool = True,
    ) -> MetricResponse:
        """Compute, classify and grade the metrics for *time_range* and *scope*."""
        window = self.compute(time_range, scope)
        response = MetricResponse(
            window=window,
            classification=self.classify(window),
            metadata=ResponseMetadata(
                time_range=time_range,
                data_quality=self.data_quality(window),
                last_updated=self.clock(),
            ),
            trend=self.trend(window) if include_trend else {},
        )
        logger.debug(
            "metrics: %s over %s -> %s",
            scope.label(),
            time_range,
            response.classification.overall.value,
        )
        return response

    def state(self) -> SystemState:
        return self.store.snapshot()
