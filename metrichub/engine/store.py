from __future__ import annotations

import heapq
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Generic, Literal, Protocol, TypeVar, runtime_checkable

from metrichub.engine.errors import (
    AlreadyResolvedError,
    DuplicateIdError,
    InvalidTimestampError,
    NotFoundError,
    ValidationError,
)
from metrichub.engine.events import (
    Deployment,
    Event,
    Incident,
    PartitionKey,
    Scope,
    SystemState,
    TimeRange,
    check_resolution,
    normalize_deployment,
    normalize_incident,
)
from metrichub.engine.index import IndexKey, SortedIndex
from metrichub.models.enums import DeploymentStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

EventKind = Literal["deployment", "incident"]

E = TypeVar("E", Deployment, Incident)


def utc_now() -> datetime:
    """Default clock: the current time in UTC."""
    return datetime.now(tz=UTC)


def index_key(event: Event) -> IndexKey:
    return (event.start_time, event.id)


@dataclass(frozen=True)
class StoreChange:
    """Notification emitted after an event is recorded or mutated.

    ``previous`` is ``None`` for a fresh append and holds the superseded
    version for a status update or an incident resolution.
    """

    kind: EventKind
    partition: PartitionKey
    current: Event
    previous: Event | None = None


StoreListener = Callable[[StoreChange], None]


@dataclass(frozen=True)
class _PartitionEvents:
    deployments: SortedIndex[Deployment]
    incidents: SortedIndex[Incident]


_EMPTY_PARTITION = _PartitionEvents(SortedIndex(), SortedIndex())


class EventQuery(Generic[E]):
    """Restartable, lazily evaluated result of :meth:`EventStore.query`.

    Partition snapshots are captured when the query is created; every call to
    ``iter()`` walks those snapshots again, so iterating twice yields the
    same events even if writers committed in between.
    """

    def __init__(self, sources: list[SortedIndex[E]], time_range: TimeRange) -> None:
        self._sources = sources
        self._time_range = time_range

    def __iter__(self) -> Iterator[E]:
        start, end = self._time_range.start, self._time_range.end
        streams = [source.range(start, end) for source in self._sources]
        if len(streams) == 1:
            return streams[0]
        return heapq.merge(*streams, key=index_key)


@runtime_checkable
class EventStore(Protocol):
    """Storage contract for deployment and incident events.

    The store exclusively owns event identity.  Every mutation is validated
    before it becomes visible and notifies subscribed listeners with a
    :class:`StoreChange` once committed.
    """

    def append(self, event: Event) -> Event:
        """Validate, assign an id if absent, and record *event*."""
        ...

    def resolve_incident(self, incident_id: str, resolved_time: datetime) -> Incident:
        """Set ``resolved_time`` on an open incident."""
        ...

    def complete_deployment(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        end_time: datetime | None = None,
    ) -> Deployment:
        """Move an ``in_progress`` deployment to a terminal status."""
        ...

    def query(
        self,
        time_range: TimeRange,
        service: str | None = None,
        environment: str | None = None,
    ) -> Iterable[Event]:
        """Return events starting inside *time_range*, ordered by ``start_time``."""
        ...

    def snapshot(self) -> SystemState:
        """Return every recorded event as an immutable :class:`SystemState`."""
        ...

    def subscribe(self, listener: StoreListener) -> None:
        """Register *listener* to receive every committed :class:`StoreChange`."""
        ...


class InMemoryEventStore:
    """Thread-safe in-memory :class:`EventStore`.

    Writes to the same (service, environment) partition are serialised by a
    per-partition :class:`threading.Lock`; writes to different partitions
    proceed independently.  Each partition publishes immutable
    :class:`~metrichub.engine.index.SortedIndex` snapshots, so readers never
    lock and never observe a partially applied event.

    Durable persistence is layered on top through the ``staged_*`` context
    managers: they validate and reserve under the lock, release the lock
    while the caller performs its I/O, and commit only if the block exits
    cleanly.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._partitions: dict[PartitionKey, _PartitionEvents] = {}
        self._locks: dict[PartitionKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        # Committed and reserved ids across both event families.
        self._ids: set[str] = set()
        self._ids_guard = threading.Lock()
        self._deployments: dict[str, Deployment] = {}
        self._incidents: dict[str, Incident] = {}
        # Ids with a staged (not yet committed) status update or resolution.
        self._pending: set[str] = set()
        self._listeners: list[StoreListener] = []

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> None:
        self._listeners = [*self._listeners, listener]

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def append(self, event: Event) -> Event:
        with self.staged_append(event) as recorded:
            pass
        return recorded

    @contextmanager
    def staged_append(self, event: Event) -> Iterator[Event]:
        """Reserve *event*'s id, yield the normalised event, commit on clean exit.

        Raises:
            ValidationError: If *event* breaks a data-model invariant.
            DuplicateIdError: If the id is already recorded or reserved.
        """
        normalized = self._normalize(event)
        self._reserve(normalized.id)
        try:
            yield normalized
        except BaseException:
            self._release(normalized.id)
            raise
        self._commit_append(normalized)

    def _normalize(self, event: Event) -> Event:
        now = self._clock()
        if isinstance(event, Deployment):
            return normalize_deployment(event, now)
        if isinstance(event, Incident):
            return normalize_incident(event, now)
        raise ValidationError(f"Unsupported event type {type(event).__name__}.")

    def _reserve(self, event_id: str) -> None:
        with self._ids_guard:
            if event_id in self._ids:
                raise DuplicateIdError(event_id)
            self._ids.add(event_id)

    def _release(self, event_id: str) -> None:
        with self._ids_guard:
            self._ids.discard(event_id)

    def _commit_append(self, event: Event) -> None:
        key = event.partition
        with self._lock_for(key):
            current = self._partitions.get(key, _EMPTY_PARTITION)
            if isinstance(event, Deployment):
                self._partitions[key] = replace(
                    current, deployments=current.deployments.insert(index_key(event), event)
                )
                self._deployments[event.id] = event
                change = StoreChange("deployment", key, event)
            else:
                self._partitions[key] = replace(
                    current, incidents=current.incidents.insert(index_key(event), event)
                )
                self._incidents[event.id] = event
                change = StoreChange("incident", key, event)
            self._notify(change)
        logger.info("append: %s %s (%s)", change.kind, event.id, key)

    # ------------------------------------------------------------------
    # Incident resolution
    # ------------------------------------------------------------------

    def resolve_incident(self, incident_id: str, resolved_time: datetime) -> Incident:
        with self.staged_resolve(incident_id, resolved_time) as resolved:
            pass
        return resolved

    @contextmanager
    def staged_resolve(self, incident_id: str, resolved_time: datetime) -> Iterator[Incident]:
        """Check and claim the resolution of *incident_id*, commit on clean exit.

        A concurrent second resolution of the same incident fails with
        :class:`AlreadyResolvedError` as soon as the first one is claimed.

        Raises:
            NotFoundError: If no incident has this id.
            AlreadyResolvedError: If the incident is resolved or being resolved.
            InvalidTimestampError: If *resolved_time* precedes ``start_time``.
        """
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise NotFoundError("incident", incident_id)
        key = incident.partition
        with self._lock_for(key):
            current = self._incidents[incident_id]
            if current.is_resolved or incident_id in self._pending:
                raise AlreadyResolvedError(incident_id)
            check_resolution(current, resolved_time)
            self._pending.add(incident_id)

        resolved = replace(current, resolved_time=resolved_time, updated_at=self._clock())
        yield from self._commit_update("incident", current, resolved)

    # ------------------------------------------------------------------
    # Deployment completion
    # ------------------------------------------------------------------

    def complete_deployment(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        end_time: datetime | None = None,
    ) -> Deployment:
        with self.staged_complete(deployment_id, status, end_time) as completed:
            pass
        return completed

    @contextmanager
    def staged_complete(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        end_time: datetime | None = None,
    ) -> Iterator[Deployment]:
        """Claim the terminal status update of an ``in_progress`` deployment.

        Raises:
            NotFoundError: If no deployment has this id.
            ValidationError: If the deployment is already terminal or *status*
                is ``in_progress``.
            InvalidTimestampError: If *end_time* precedes ``start_time``.
        """
        deployment = self._deployments.get(deployment_id)
        if deployment is None:
            raise NotFoundError("deployment", deployment_id)
        if not status.is_terminal:
            raise ValidationError("A deployment can only be completed with a terminal status.")
        key = deployment.partition
        with self._lock_for(key):
            current = self._deployments[deployment_id]
            if current.status.is_terminal or deployment_id in self._pending:
                raise ValidationError(
                    f"Deployment {deployment_id} is already {current.status.value}; "
                    "only in_progress deployments can be completed."
                )
            finished = end_time or current.end_time or self._clock()
            if finished.tzinfo is None:
                raise InvalidTimestampError("end_time must be timezone-aware.")
            if finished < current.start_time:
                raise InvalidTimestampError(
                    f"Deployment {deployment_id} cannot end at {finished.isoformat()}, "
                    f"before it started at {current.start_time.isoformat()}."
                )
            self._pending.add(deployment_id)

        completed = replace(current, status=status, end_time=finished, updated_at=self._clock())
        yield from self._commit_update("deployment", current, completed)

    def _commit_update(self, kind: EventKind, previous: E, updated: E) -> Iterator[E]:
        key = previous.partition
        try:
            yield updated
        except BaseException:
            with self._lock_for(key):
                self._pending.discard(previous.id)
            raise

        with self._lock_for(key):
            partition = self._partitions[key]
            if kind == "deployment":
                self._partitions[key] = replace(
                    partition,
                    deployments=partition.deployments.replace(index_key(updated), updated),
                )
                self._deployments[updated.id] = updated
            else:
                self._partitions[key] = replace(
                    partition,
                    incidents=partition.incidents.replace(index_key(updated), updated),
                )
                self._incidents[updated.id] = updated
            self._pending.discard(previous.id)
            self._notify(StoreChange(kind, key, updated, previous))
        logger.info("update: %s %s (%s)", kind, updated.id, key)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_deployment(self, deployment_id: str) -> Deployment:
        deployment = self._deployments.get(deployment_id)
        if deployment is None:
            raise NotFoundError("deployment", deployment_id)
        return deployment

    def get_incident(self, incident_id: str) -> Incident:
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise NotFoundError("incident", incident_id)
        return incident

    def partitions(self) -> list[PartitionKey]:
        """Return every partition that has recorded at least one event."""
        return sorted(dict(self._partitions))

    def query(
        self,
        time_range: TimeRange,
        service: str | None = None,
        environment: str | None = None,
    ) -> Iterable[Event]:
        deployments = self.query_deployments(time_range, service, environment)
        incidents = self.query_incidents(time_range, service, environment)
        return _MergedQuery(deployments, incidents)

    def query_deployments(
        self,
        time_range: TimeRange,
        service: str | None = None,
        environment: str | None = None,
    ) -> EventQuery[Deployment]:
        sources = [p.deployments for p in self._matching(Scope(service, environment))]
        return EventQuery(sources, time_range)

    def query_incidents(
        self,
        time_range: TimeRange,
        service: str | None = None,
        environment: str | None = None,
    ) -> EventQuery[Incident]:
        sources = [p.incidents for p in self._matching(Scope(service, environment))]
        return EventQuery(sources, time_range)

    def snapshot(self) -> SystemState:
        partitions = [partition for _, partition in sorted(dict(self._partitions).items())]
        deployments = heapq.merge(*(p.deployments for p in partitions), key=index_key)
        incidents = heapq.merge(*(p.incidents for p in partitions), key=index_key)
        return SystemState(deployments=tuple(deployments), incidents=tuple(incidents))

    def _matching(self, scope: Scope) -> list[_PartitionEvents]:
        return [
            partition
            for key, partition in sorted(dict(self._partitions).items())
            if scope.matches(key)
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, key: PartitionKey) -> threading.Lock:
        lock = self._locks.get(key)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(key, threading.Lock())
        return lock

    def _notify(self, change: StoreChange) -> None:
        for listener in self._listeners:
            listener(change)


class _MergedQuery:
    """Restartable merge of a deployment query and an incident query."""

    def __init__(self, deployments: EventQuery[Deployment], incidents: EventQuery[Incident]) -> None:
        self._deployments = deployments
        self._incidents = incidents

    def __iter__(self) -> Iterator[Event]:
        return heapq.merge(self._deployments, self._incidents, key=index_key)
