from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from metrichub.dependencies import get_engine, get_journal, get_scope
from metrichub.engine import MetricsEngine, Scope, TimeRange
from metrichub.routers.metrics import get_time_range
from metrichub.schemas.event import (
    IncidentCreate,
    IncidentListResponse,
    IncidentResolve,
    IncidentResponse,
)
from metrichub.services import event_service

router = APIRouter(prefix="/incidents", tags=["incidents"])


@router.post(
    "",
    response_model=IncidentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record an incident",
)
async def create_incident(
    payload: IncidentCreate,
    engine: MetricsEngine = Depends(get_engine),
    db: AsyncSession | None = Depends(get_journal),
) -> IncidentResponse:
    """Open a live incident.

    Already resolved incidents are plugin backfills and arrive through the
    webhook instead.

    Args:
        payload: Canonical incident payload without a ``resolved_time``.
        engine: Injected metrics engine.
        db: Journal session, ``None`` when persistence is disabled.
    """
    incident = await event_service.open_incident(engine, payload, db)
    return IncidentResponse.model_validate(incident)


@router.get(
    "",
    response_model=IncidentListResponse,
    summary="List incidents in a window",
)
async def list_incidents(
    time_range: TimeRange = Depends(get_time_range),
    scope: Scope = Depends(get_scope),
    limit: int = Query(default=100, ge=1, le=1000),
    engine: MetricsEngine = Depends(get_engine),
) -> IncidentListResponse:
    query = engine.store.query_incidents(time_range, scope.service, scope.environment)
    incidents = [IncidentResponse.model_validate(i) for i in query]
    return IncidentListResponse(incidents=incidents[:limit], count=len(incidents))


@router.get(
    "/{incident_id}",
    response_model=IncidentResponse,
    summary="Get an incident by ID",
)
async def get_incident(
    incident_id: str,
    engine: MetricsEngine = Depends(get_engine),
) -> IncidentResponse:
    """Fetch a single incident, including its current ``state``.

    Raises:
        NotFoundError: 404 if no incident with the given ID exists.
    """
    return IncidentResponse.model_validate(engine.store.get_incident(incident_id))


@router.post(
    "/{incident_id}/resolve",
    response_model=IncidentResponse,
    summary="Resolve an incident",
)
async def resolve_incident(
    incident_id: str,
    payload: IncidentResolve | None = Body(default=None),
    engine: MetricsEngine = Depends(get_engine),
    db: AsyncSession | None = Depends(get_journal),
) -> IncidentResponse:
    """Transition an open incident to ``resolved``.

    ``resolved_time`` defaults to now.  Resolution is a one-way transition:
    resolving twice returns 409 so that a redelivered webhook is detected
    rather than silently moving the resolution time.

    Raises:
        NotFoundError: 404 if the incident does not exist.
        AlreadyResolvedError: 409 if it is already resolved.
        InvalidTimestampError: 400 if ``resolved_time`` precedes ``start_time``.
    """
    resolved_time = payload.resolved_time if payload is not None else None
    incident = await event_service.resolve_incident(engine, incident_id, resolved_time, db)
    return IncidentResponse.model_validate(incident)
