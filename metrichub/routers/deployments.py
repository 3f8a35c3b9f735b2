from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from metrichub.dependencies import get_engine, get_journal, get_scope
from metrichub.engine import MetricsEngine, Scope, TimeRange
from metrichub.routers.metrics import get_time_range
from metrichub.schemas.event import (
    DeploymentComplete,
    DeploymentCreate,
    DeploymentListResponse,
    DeploymentResponse,
)
from metrichub.services import event_service

router = APIRouter(prefix="/deployments", tags=["deployments"])


@router.post(
    "",
    response_model=DeploymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a deployment",
)
async def create_deployment(
    payload: DeploymentCreate,
    engine: MetricsEngine = Depends(get_engine),
    db: AsyncSession | None = Depends(get_journal),
) -> DeploymentResponse:
    """Record a deployment event.

    An ``id`` is generated when the caller does not supply one; supplying
    one makes redelivery safe, since a second delivery is rejected with 409.

    Args:
        payload: Canonical deployment payload.
        engine: Injected metrics engine.
        db: Journal session, ``None`` when persistence is disabled.

    Returns:
        The recorded deployment.
    """
    deployment = await event_service.record_deployment(engine, payload, db)
    return DeploymentResponse.model_validate(deployment)


@router.get(
    "",
    response_model=DeploymentListResponse,
    summary="List deployments in a window",
)
async def list_deployments(
    time_range: TimeRange = Depends(get_time_range),
    scope: Scope = Depends(get_scope),
    limit: int = Query(default=100, ge=1, le=1000),
    engine: MetricsEngine = Depends(get_engine),
) -> DeploymentListResponse:
    """Return deployments started in the window, oldest first.

    ``count`` is the total in the window; at most *limit* are listed.
    """
    query = engine.store.query_deployments(time_range, scope.service, scope.environment)
    deployments = [DeploymentResponse.model_validate(d) for d in query]
    return DeploymentListResponse(deployments=deployments[:limit], count=len(deployments))


@router.get(
    "/{deployment_id}",
    response_model=DeploymentResponse,
    summary="Get a deployment by ID",
)
async def get_deployment(
    deployment_id: str,
    engine: MetricsEngine = Depends(get_engine),
) -> DeploymentResponse:
    return DeploymentResponse.model_validate(engine.store.get_deployment(deployment_id))


@router.post(
    "/{deployment_id}/complete",
    response_model=DeploymentResponse,
    summary="Complete an in-progress deployment",
)
async def complete_deployment(
    deployment_id: str,
    payload: DeploymentComplete,
    engine: MetricsEngine = Depends(get_engine),
    db: AsyncSession | None = Depends(get_journal),
) -> DeploymentResponse:
    """Move an ``in_progress`` deployment to its terminal status.

    Raises:
        NotFoundError: 404 if the deployment does not exist.
        ValidationError: 422 if it has already finished.
    """
    deployment = await event_service.complete_deployment(engine, deployment_id, payload, db)
    return DeploymentResponse.model_validate(deployment)
