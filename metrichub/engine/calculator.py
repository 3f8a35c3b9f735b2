from __future__ import annotations

"""Full-rescan DORA calculation.

These functions take plain event sequences and compute a
:class:`~metrichub.engine.window.MetricWindow` in a single pass, without any
index or cache.  They are the reference the incremental
:class:`~metrichub.engine.aggregator.WindowedAggregator` must agree with, and
are handy for one-off calculations over exported data (e.g. a
:class:`~metrichub.engine.events.SystemState`).
"""

import statistics
from collections.abc import Iterable
from datetime import timedelta

from metrichub.engine.events import ALL_SCOPE, Deployment, Incident, Scope, TimeRange
from metrichub.engine.window import MetricWindow, to_microseconds
from metrichub.models.enums import DeploymentStatus


def _in_window(event: Deployment | Incident, time_range: TimeRange, scope: Scope) -> bool:
    return time_range.contains(event.start_time) and scope.matches(event.partition)


def deployment_frequency(deployments: list[Deployment], time_range: TimeRange) -> float:
    """Deployments per day; windows shorter than a day count as one day."""
    return len(deployments) / max(1.0, time_range.days)


def lead_time(deployments: list[Deployment]) -> timedelta:
    """Median commit-to-deploy time, skipping deployments with no commit time."""
    samples = [
        to_microseconds(d.lead_time) for d in deployments if d.lead_time is not None
    ]
    if not samples:
        return timedelta(0)
    return timedelta(microseconds=statistics.median(samples))


def change_failure_rate(deployments: list[Deployment]) -> float:
    if not deployments:
        return 0.0
    failed = sum(1 for d in deployments if d.status is DeploymentStatus.failed)
    return failed / len(deployments)


def mttr(incidents: list[Incident]) -> timedelta:
    """Mean recovery time of resolved incidents; open incidents are ignored."""
    recoveries = [
        to_microseconds(i.recovery_time) for i in incidents if i.recovery_time is not None
    ]
    if not recoveries:
        return timedelta(0)
    return timedelta(microseconds=sum(recoveries) / len(recoveries))


def compute_window(
    deployments: Iterable[Deployment],
    incidents: Iterable[Incident],
    time_range: TimeRange,
    scope: Scope = ALL_SCOPE,
) -> MetricWindow:
    """Compute every metric for *time_range* and *scope* from raw events."""
    in_range_deployments = [d for d in deployments if _in_window(d, time_range, scope)]
    in_range_incidents = [i for i in incidents if _in_window(i, time_range, scope)]

    return MetricWindow(
        time_range=time_range,
        scope=scope,
        deployment_frequency=deployment_frequency(in_range_deployments, time_range),
        lead_time=lead_time(in_range_deployments),
        mttr=mttr(in_range_incidents),
        change_failure_rate=change_failure_rate(in_range_deployments),
        deployment_count=len(in_range_deployments),
        failed_count=sum(1 for d in in_range_deployments if d.status is DeploymentStatus.failed),
        lead_time_samples=sum(1 for d in in_range_deployments if d.lead_time is not None),
        incident_count=len(in_range_incidents),
        resolved_incident_count=sum(1 for i in in_range_incidents if i.is_resolved),
    )
