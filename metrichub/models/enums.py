from __future__ import annotations

from enum import Enum


class DeploymentStatus(str, Enum):
    """Lifecycle states for a deployment event."""

    success = "success"
    failed = "failed"
    in_progress = "in_progress"
    rolled_back = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self is not DeploymentStatus.in_progress


class IncidentSeverity(str, Enum):
    """Incident severity levels, ordered from least to most severe."""

    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class IncidentState(str, Enum):
    """States of the incident lifecycle.  ``resolved`` is terminal."""

    open = "open"
    resolved = "resolved"


class PerformanceTier(str, Enum):
    """DORA performance bands, ordered from best to worst."""

    elite = "elite"
    high = "high"
    medium = "medium"
    low = "low"

    @property
    def rank(self) -> int:
        """Numeric rank where a larger value is a better tier (low=0, elite=3)."""
        return _TIER_RANK[self]


_TIER_RANK: dict[PerformanceTier, int] = {
    PerformanceTier.low: 0,
    PerformanceTier.medium: 1,
    PerformanceTier.high: 2,
    PerformanceTier.elite: 3,
}


class DataQuality(str, Enum):
    """How much the caller should trust a computed metric window."""

    high = "high"
    medium = "medium"
    low = "low"


class Trend(str, Enum):
    """Direction of a metric compared to the preceding window."""

    increasing = "increasing"
    decreasing = "decreasing"
    stable = "stable"
