from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from metrichub.config import Settings
from metrichub.dependencies import get_engine, get_journal, get_settings
from metrichub.engine import MetricsEngine
from metrichub.schemas.event import (
    DeploymentResponse,
    IncidentResponse,
    SimulationRequest,
    SimulationResponse,
    StateResponse,
)
from metrichub.services import event_service
from metrichub.simulation import SimulationProfile, generate_history

router = APIRouter(tags=["state"])


@router.get(
    "/state",
    response_model=StateResponse,
    summary="Export every recorded event",
)
async def get_state(
    engine: MetricsEngine = Depends(get_engine),
) -> StateResponse:
    """Return a consistent snapshot of all deployments and incidents.

    Both lists are ordered by ``start_time``.
    """
    snapshot = engine.state()
    return StateResponse(
        deployments=[DeploymentResponse.model_validate(d) for d in snapshot.deployments],
        incidents=[IncidentResponse.model_validate(i) for i in snapshot.incidents],
    )


@router.post(
    "/simulate",
    response_model=SimulationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate a deterministic event history",
)
async def simulate(
    payload: SimulationRequest,
    engine: MetricsEngine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
    db: AsyncSession | None = Depends(get_journal),
) -> SimulationResponse:
    """Record a seeded history ending at the current engine time.

    The batch is all-or-nothing: replaying the same seed twice is rejected
    with 409 because the generated ids collide.

    Raises:
        HTTPException: 404 when ``SIMULATION_ENABLED`` is off.
    """
    if not settings.SIMULATION_ENABLED:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Simulation is disabled.",
        )
    profile = SimulationProfile(
        days=payload.days,
        services=tuple(payload.services),
        environments=tuple(payload.environments),
        deployments_per_day=payload.deployments_per_day,
        failure_rate=payload.failure_rate,
        incident_rate=payload.incident_rate,
    )
    events = generate_history(payload.seed, engine.clock(), profile)
    deployments, incidents = await event_service.record_many(engine, events, db)
    return SimulationResponse(seed=payload.seed, deployments=deployments, incidents=incidents)
