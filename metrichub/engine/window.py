from __future__ import annotations

import heapq
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timedelta

from metrichub.engine.events import Deployment, Incident, Scope, TimeRange

_MICROSECOND = timedelta(microseconds=1)


def to_microseconds(value: timedelta) -> int:
    """Exact integer microseconds of *value* (no float rounding)."""
    return value // _MICROSECOND


def median_of_sorted(values: tuple[int, ...]) -> float:
    """Median of an already sorted, non-empty tuple."""
    mid = len(values) // 2
    if len(values) % 2:
        return values[mid]
    return (values[mid - 1] + values[mid]) / 2


@dataclass(frozen=True)
class MetricWindow:
    """The four DORA metrics computed over one ``(time_range, scope)`` pair.

    Attributes:
        deployment_frequency: Deployments per day, ``count / max(1, days)``.
        lead_time:            Median ``start_time - commit_time`` over
                              deployments that carry a commit time.
        mttr:                 Mean recovery time over resolved incidents.
        change_failure_rate:  ``failed / total`` in ``[0, 1]``; 0 without deployments.

    The ``*_count`` / ``*_samples`` fields expose how much data backs each
    value so callers can judge data quality.
    """

    time_range: TimeRange
    scope: Scope
    deployment_frequency: float
    lead_time: timedelta
    mttr: timedelta
    change_failure_rate: float
    deployment_count: int = 0
    failed_count: int = 0
    lead_time_samples: int = 0
    incident_count: int = 0
    resolved_incident_count: int = 0


@dataclass(frozen=True, slots=True)
class DeploymentSample:
    """Projection of a deployment onto what the metrics need."""

    failed: bool
    lead_time_us: int | None

    @classmethod
    def of(cls, deployment: Deployment) -> DeploymentSample:
        lead_time = deployment.lead_time
        return cls(
            failed=deployment.is_failed,
            lead_time_us=None if lead_time is None else to_microseconds(lead_time),
        )


@dataclass(frozen=True, slots=True)
class IncidentSample:
    """Projection of an incident onto what the metrics need."""

    recovery_us: int | None

    @classmethod
    def of(cls, incident: Incident) -> IncidentSample:
        recovery = incident.recovery_time
        return cls(recovery_us=None if recovery is None else to_microseconds(recovery))


@dataclass(frozen=True)
class PartialAggregate:
    """Mergeable summary of the samples in one partition and one window.

    All durations are integer microseconds so merging partials in any order
    yields exactly the same totals as a single pass over every event.
    """

    deployment_count: int = 0
    failed_count: int = 0
    lead_times_us: tuple[int, ...] = ()
    incident_count: int = 0
    resolved_count: int = 0
    recovery_total_us: int = 0

    @classmethod
    def from_samples(
        cls,
        deployments: Iterable[DeploymentSample],
        incidents: Iterable[IncidentSample],
    ) -> PartialAggregate:
        deployment_count = failed_count = 0
        lead_times: list[int] = []
        for sample in deployments:
            deployment_count += 1
            if sample.failed:
                failed_count += 1
            if sample.lead_time_us is not None:
                lead_times.append(sample.lead_time_us)

        incident_count = resolved_count = recovery_total = 0
        for sample in incidents:
            incident_count += 1
            if sample.recovery_us is not None:
                resolved_count += 1
                recovery_total += sample.recovery_us

        return cls(
            deployment_count=deployment_count,
            failed_count=failed_count,
            lead_times_us=tuple(sorted(lead_times)),
            incident_count=incident_count,
            resolved_count=resolved_count,
            recovery_total_us=recovery_total,
        )

    @classmethod
    def merge(cls, parts: Iterable[PartialAggregate]) -> PartialAggregate:
        parts = list(parts)
        if len(parts) == 1:
            return parts[0]
        return cls(
            deployment_count=sum(p.deployment_count for p in parts),
            failed_count=sum(p.failed_count for p in parts),
            lead_times_us=tuple(heapq.merge(*(p.lead_times_us for p in parts))),
            incident_count=sum(p.incident_count for p in parts),
            resolved_count=sum(p.resolved_count for p in parts),
            recovery_total_us=sum(p.recovery_total_us for p in parts),
        )

    def to_window(self, time_range: TimeRange, scope: Scope) -> MetricWindow:
        lead_time = (
            timedelta(microseconds=median_of_sorted(self.lead_times_us))
            if self.lead_times_us
            else timedelta(0)
        )
        mttr = (
            timedelta(microseconds=self.recovery_total_us / self.resolved_count)
            if self.resolved_count
            else timedelta(0)
        )
        cfr = self.failed_count / self.deployment_count if self.deployment_count else 0.0
        return MetricWindow(
            time_range=time_range,
            scope=scope,
            deployment_frequency=self.deployment_count / max(1.0, time_range.days),
            lead_time=lead_time,
            mttr=mttr,
            change_failure_rate=cfr,
            deployment_count=self.deployment_count,
            failed_count=self.failed_count,
            lead_time_samples=len(self.lead_times_us),
            incident_count=self.incident_count,
            resolved_incident_count=self.resolved_count,
        )
