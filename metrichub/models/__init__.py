from __future__ import annotations

# Import Base first so all subclasses register against the same metadata.
from metrichub.models.base import Base, TimestampMixin

# Journal tables - imported so Base.metadata.create_all sees every mapped class.
from metrichub.models.deployment import DeploymentRecord

# Enums - no SQLAlchemy dependencies, import early.
from metrichub.models.enums import (
    DataQuality,
    DeploymentStatus,
    IncidentSeverity,
    IncidentState,
    PerformanceTier,
    Trend,
)
from metrichub.models.incident import IncidentRecord

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Enums
    "DataQuality",
    "DeploymentStatus",
    "IncidentSeverity",
    "IncidentState",
    "PerformanceTier",
    "Trend",
    # Models
    "DeploymentRecord",
    "IncidentRecord",
]
