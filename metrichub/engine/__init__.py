from __future__ import annotations

from metrichub.engine.aggregator import WindowedAggregator
from metrichub.engine.classifier import (
    Classifier,
    PerformanceClassification,
    ThresholdTable,
    classify,
)
from metrichub.engine.engine import MetricResponse, MetricsEngine
from metrichub.engine.errors import (
    AlreadyResolvedError,
    DuplicateIdError,
    InvalidTimestampError,
    MetricHubError,
    NotFoundError,
    ValidationError,
)
from metrichub.engine.events import (
    ALL_SCOPE,
    Deployment,
    Incident,
    PartitionKey,
    Scope,
    SystemState,
    TimeRange,
)
from metrichub.engine.lifecycle import IncidentLifecycleManager
from metrichub.engine.store import EventStore, InMemoryEventStore
from metrichub.engine.window import MetricWindow

__all__ = [
    # Engine
    "MetricsEngine",
    "MetricResponse",
    # Components
    "Classifier",
    "EventStore",
    "InMemoryEventStore",
    "IncidentLifecycleManager",
    "WindowedAggregator",
    "classify",
    # Data model
    "ALL_SCOPE",
    "Deployment",
    "Incident",
    "MetricWindow",
    "PartitionKey",
    "PerformanceClassification",
    "Scope",
    "SystemState",
    "ThresholdTable",
    "TimeRange",
    # Errors
    "AlreadyResolvedError",
    "DuplicateIdError",
    "InvalidTimestampError",
    "MetricHubError",
    "NotFoundError",
    "ValidationError",
]
