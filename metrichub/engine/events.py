from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import NamedTuple

from metrichub.engine.errors import InvalidTimestampError, ValidationError
from metrichub.models.enums import DeploymentStatus, IncidentSeverity, IncidentState

_SECONDS_PER_DAY: float = 86_400.0


def new_event_id() -> str:
    """Return a fresh server-side event id."""
    return uuid.uuid4().hex


def _require_aware(name: str, value: datetime | None) -> None:
    if value is not None and value.tzinfo is None:
        raise ValidationError(f"{name} must be timezone-aware.")


class PartitionKey(NamedTuple):
    """The (service, environment) pair that scopes locking and aggregation."""

    service: str
    environment: str

    def __str__(self) -> str:
        return f"{self.service}/{self.environment}"


@dataclass(frozen=True)
class Scope:
    """Filter over partitions.  ``None`` on either axis matches everything."""

    service: str | None = None
    environment: str | None = None

    def matches(self, key: PartitionKey) -> bool:
        if self.service is not None and key.service != self.service:
            return False
        if self.environment is not None and key.environment != self.environment:
            return False
        return True

    def label(self) -> str:
        """Human-readable scope label used in logs and responses."""
        return f"{self.service or '*'}/{self.environment or '*'}"


ALL_SCOPE = Scope()


@dataclass(frozen=True)
class TimeRange:
    """Half-open interval ``[start, end)`` over timezone-aware datetimes."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        _require_aware("start", self.start)
        _require_aware("end", self.end)
        if self.end <= self.start:
            raise ValidationError(
                f"Time range end {self.end.isoformat()} must be after start {self.start.isoformat()}."
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def days(self) -> float:
        return self.duration.total_seconds() / _SECONDS_PER_DAY

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def previous(self) -> TimeRange:
        """Return the window of equal length that ends where this one starts."""
        return TimeRange(start=self.start - self.duration, end=self.start)


@dataclass(frozen=True)
class Deployment:
    """A canonical deployment event, as handed over by a plugin adapter."""

    service: str
    environment: str
    status: DeploymentStatus
    start_time: datetime
    id: str = ""
    end_time: datetime | None = None
    commit_sha: str | None = None
    commit_time: datetime | None = None
    version: str | None = None
    author: str | None = None
    repository: str | None = None
    branch: str | None = None
    build_url: str | None = None
    tags: Mapping[str, str] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def partition(self) -> PartitionKey:
        return PartitionKey(self.service, self.environment)

    @property
    def is_failed(self) -> bool:
        return self.status is DeploymentStatus.failed

    @property
    def lead_time(self) -> timedelta | None:
        """Commit-to-deploy duration, or ``None`` when the commit time is unknown."""
        if self.commit_time is None:
            return None
        return self.start_time - self.commit_time


@dataclass(frozen=True)
class Incident:
    """A canonical incident event."""

    title: str
    service: str
    environment: str
    severity: IncidentSeverity
    start_time: datetime
    id: str = ""
    description: str | None = None
    resolved_time: datetime | None = None
    root_cause: str | None = None
    assignee: str | None = None
    tags: Mapping[str, str] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def partition(self) -> PartitionKey:
        return PartitionKey(self.service, self.environment)

    @property
    def state(self) -> IncidentState:
        return IncidentState.open if self.resolved_time is None else IncidentState.resolved

    @property
    def is_resolved(self) -> bool:
        return self.resolved_time is not None

    @property
    def recovery_time(self) -> timedelta | None:
        if self.resolved_time is None:
            return None
        return self.resolved_time - self.start_time


Event = Deployment | Incident


@dataclass(frozen=True)
class SystemState:
    """Read-only export of every recorded event, ordered by ``start_time``."""

    deployments: tuple[Deployment, ...]
    incidents: tuple[Incident, ...]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _require_partition(service: str, environment: str) -> None:
    if not service or not service.strip():
        raise ValidationError("service must be a non-empty string.")
    if not environment or not environment.strip():
        raise ValidationError("environment must be a non-empty string.")


def normalize_deployment(deployment: Deployment, now: datetime) -> Deployment:
    """Validate *deployment* and return a copy with id and bookkeeping stamps set.

    Raises:
        ValidationError: If a field is missing or the timestamps contradict
            each other (``end_time < start_time``, ``commit_time > start_time``).
    """
    _require_partition(deployment.service, deployment.environment)
    if not isinstance(deployment.status, DeploymentStatus):
        raise ValidationError(f"Unknown deployment status {deployment.status!r}.")
    for name in ("start_time", "end_time", "commit_time"):
        _require_aware(name, getattr(deployment, name))

    if deployment.end_time is not None and deployment.end_time < deployment.start_time:
        raise ValidationError(
            f"Deployment end_time {deployment.end_time.isoformat()} precedes "
            f"start_time {deployment.start_time.isoformat()}."
        )
    if deployment.commit_time is not None and deployment.commit_time > deployment.start_time:
        raise ValidationError(
            f"Deployment commit_time {deployment.commit_time.isoformat()} is after "
            f"start_time {deployment.start_time.isoformat()}."
        )

    return replace(
        deployment,
        id=deployment.id or new_event_id(),
        tags=dict(deployment.tags),
        created_at=deployment.created_at or now,
        updated_at=deployment.updated_at or now,
    )


def normalize_incident(incident: Incident, now: datetime) -> Incident:
    """Validate *incident* and return a copy with id and bookkeeping stamps set.

    An incident may arrive already resolved (historical import); its
    ``resolved_time`` must not precede ``start_time``.
    """
    _require_partition(incident.service, incident.environment)
    if not incident.title or not incident.title.strip():
        raise ValidationError("Incident title must be a non-empty string.")
    if not isinstance(incident.severity, IncidentSeverity):
        raise ValidationError(f"Unknown incident severity {incident.severity!r}.")
    _require_aware("start_time", incident.start_time)
    _require_aware("resolved_time", incident.resolved_time)

    if incident.resolved_time is not None and incident.resolved_time < incident.start_time:
        raise ValidationError(
            f"Incident resolved_time {incident.resolved_time.isoformat()} precedes "
            f"start_time {incident.start_time.isoformat()}."
        )

    return replace(
        incident,
        id=incident.id or new_event_id(),
        tags=dict(incident.tags),
        created_at=incident.created_at or now,
        updated_at=incident.updated_at or now,
    )


def check_resolution(incident: Incident, resolved_time: datetime) -> None:
    """Raise :class:`InvalidTimestampError` if *resolved_time* is not a legal resolution."""
    if resolved_time.tzinfo is None:
        raise InvalidTimestampError("resolved_time must be timezone-aware.")
    if resolved_time < incident.start_time:
        raise InvalidTimestampError(
            f"Incident {incident.id} cannot be resolved at {resolved_time.isoformat()}, "
            f"before it started at {incident.start_time.isoformat()}."
        )
