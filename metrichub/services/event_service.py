from __future__ import annotations

import logging
from collections.abc import Iterable
from contextlib import ExitStack
from datetime import UTC, datetime
from typing import cast

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metrichub.engine import Deployment, Incident, MetricsEngine
from metrichub.engine.events import Event
from metrichub.models.deployment import DeploymentRecord
from metrichub.models.incident import IncidentRecord
from metrichub.schemas.event import DeploymentComplete, DeploymentCreate, IncidentCreate

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Event <-> journal row conversion
# ---------------------------------------------------------------------------


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops the offset on the way back; rows are always written in UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _utc(value: datetime | None) -> datetime | None:
    return value.astimezone(UTC) if value is not None else None


def deployment_to_record(deployment: Deployment) -> DeploymentRecord:
    return DeploymentRecord(
        id=deployment.id,
        service=deployment.service,
        environment=deployment.environment,
        status=deployment.status,
        start_time=_utc(deployment.start_time),
        end_time=_utc(deployment.end_time),
        commit_sha=deployment.commit_sha,
        commit_time=_utc(deployment.commit_time),
        version=deployment.version,
        author=deployment.author,
        repository=deployment.repository,
        branch=deployment.branch,
        build_url=deployment.build_url,
        tags=dict(deployment.tags),
        created_at=_utc(deployment.created_at),
        updated_at=_utc(deployment.updated_at),
    )


def record_to_deployment(record: DeploymentRecord) -> Deployment:
    return Deployment(
        id=record.id,
        service=record.service,
        environment=record.environment,
        status=record.status,
        start_time=cast(datetime, _aware(record.start_time)),
        end_time=_aware(record.end_time),
        commit_sha=record.commit_sha,
        commit_time=_aware(record.commit_time),
        version=record.version,
        author=record.author,
        repository=record.repository,
        branch=record.branch,
        build_url=record.build_url,
        tags=record.tags or {},
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def incident_to_record(incident: Incident) -> IncidentRecord:
    return IncidentRecord(
        id=incident.id,
        title=incident.title,
        description=incident.description,
        service=incident.service,
        environment=incident.environment,
        severity=incident.severity,
        start_time=_utc(incident.start_time),
        resolved_time=_utc(incident.resolved_time),
        root_cause=incident.root_cause,
        assignee=incident.assignee,
        tags=dict(incident.tags),
        created_at=_utc(incident.created_at),
        updated_at=_utc(incident.updated_at),
    )


def record_to_incident(record: IncidentRecord) -> Incident:
    return Incident(
        id=record.id,
        title=record.title,
        description=record.description,
        service=record.service,
        environment=record.environment,
        severity=record.severity,
        start_time=cast(datetime, _aware(record.start_time)),
        resolved_time=_aware(record.resolved_time),
        root_cause=record.root_cause,
        assignee=record.assignee,
        tags=record.tags or {},
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def _to_record(event: Event) -> DeploymentRecord | IncidentRecord:
    if isinstance(event, Deployment):
        return deployment_to_record(event)
    return incident_to_record(event)


async def _journal(db: AsyncSession | None, record: DeploymentRecord | IncidentRecord) -> None:
    """Write *record* and commit; on failure the session is rolled back and the error re-raised.

    Updates go through :meth:`AsyncSession.merge` so a row is written whole,
    whether or not it was loaded in this session.
    """
    if db is None:
        return
    try:
        await db.merge(record)
        await db.commit()
    except Exception:
        await db.rollback()
        raise


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


async def record_event(engine: MetricsEngine, event: Event, db: AsyncSession | None = None) -> Event:
    """Record *event* in the engine, journaling it first when *db* is given.

    The id is reserved before the database round-trip, so a duplicate is
    rejected without touching the journal, and an event whose journal write
    fails never becomes visible to metric reads.

    Raises:
        ValidationError: If *event* is malformed.
        DuplicateIdError: If the id is already recorded.
    """
    with engine.staged_record(event) as staged:
        await _journal(db, _to_record(staged))
    return staged


async def record_deployment(
    engine: MetricsEngine,
    data: DeploymentCreate,
    db: AsyncSession | None = None,
) -> Deployment:
    """Record a deployment reported by a plugin or the REST API."""
    event = data.to_event(engine.clock())
    return cast(Deployment, await record_event(engine, event, db))


async def open_incident(
    engine: MetricsEngine,
    data: IncidentCreate,
    db: AsyncSession | None = None,
) -> Incident:
    """Open a live incident reported through the REST API.

    Raises:
        ValidationError: If *data* already carries a ``resolved_time``.
    """
    event = data.to_event(engine.clock())
    with engine.incidents.staged_open(event) as opened:
        await _journal(db, incident_to_record(opened))
    return opened


async def import_incident(
    engine: MetricsEngine,
    data: IncidentCreate,
    db: AsyncSession | None = None,
) -> Incident:
    """Record an incident delivered by a plugin, possibly already resolved."""
    event = data.to_event(engine.clock())
    with engine.incidents.staged_import(event) as imported:
        await _journal(db, incident_to_record(imported))
    return imported


async def complete_deployment(
    engine: MetricsEngine,
    deployment_id: str,
    data: DeploymentComplete,
    db: AsyncSession | None = None,
) -> Deployment:
    """Move an ``in_progress`` deployment to its terminal status.

    Raises:
        NotFoundError: If the deployment does not exist.
        ValidationError: If it is already terminal.
        InvalidTimestampError: If ``end_time`` precedes ``start_time``.
    """
    with engine.store.staged_complete(deployment_id, data.status, data.end_time) as completed:
        await _journal(db, deployment_to_record(completed))
    return completed


async def resolve_incident(
    engine: MetricsEngine,
    incident_id: str,
    resolved_time: datetime | None = None,
    db: AsyncSession | None = None,
) -> Incident:
    """Resolve *incident_id* at *resolved_time* (default: now).

    Raises:
        NotFoundError: If the incident does not exist.
        AlreadyResolvedError: If it is already resolved.
        InvalidTimestampError: If *resolved_time* precedes ``start_time``.
    """
    with engine.incidents.staged_resolve(incident_id, resolved_time) as resolved:
        await _journal(db, incident_to_record(resolved))
    return resolved


async def record_many(
    engine: MetricsEngine,
    events: Iterable[Event],
    db: AsyncSession | None = None,
) -> tuple[int, int]:
    """Record a batch of events with a single journal commit.

    Every id is reserved up front; if any event is rejected or the commit
    fails, none of the batch becomes visible.

    Returns:
        ``(deployments, incidents)`` counts of the recorded events.
    """
    with ExitStack() as stack:
        staged = [stack.enter_context(engine.staged_record(event)) for event in events]
        if db is not None:
            try:
                db.add_all([_to_record(event) for event in staged])
                await db.commit()
            except Exception:
                await db.rollback()
                raise
    deployments = sum(1 for event in staged if isinstance(event, Deployment))
    return deployments, len(staged) - deployments


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------


async def replay_events(db: AsyncSession, engine: MetricsEngine) -> tuple[int, int]:
    """Rebuild *engine* from the journal, oldest event first.

    Called once at start-up; the rebuilt aggregates are the same as if the
    events had been recorded live.

    Returns:
        ``(deployments, incidents)`` counts of the replayed events.
    """
    deployments = await db.execute(
        select(DeploymentRecord).order_by(DeploymentRecord.start_time, DeploymentRecord.id)
    )
    deployment_count = 0
    for record in deployments.scalars():
        engine.record(record_to_deployment(record))
        deployment_count += 1

    incidents = await db.execute(
        select(IncidentRecord).order_by(IncidentRecord.start_time, IncidentRecord.id)
    )
    incident_count = 0
    for record in incidents.scalars():
        engine.record(record_to_incident(record))
        incident_count += 1

    logger.info(
        "Replayed %d deployments and %d incidents from the journal",
        deployment_count,
        incident_count,
    )
    return deployment_count, incident_count
