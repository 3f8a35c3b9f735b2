from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, TypeVar

import pydantic
from fastapi import APIRouter, Depends
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from metrichub.dependencies import get_engine, get_journal
from metrichub.engine import MetricsEngine
from metrichub.schemas.event import (
    DeploymentComplete,
    DeploymentCreate,
    IncidentCreate,
    IncidentResolve,
    WebhookEnvelope,
    WebhookResponse,
)
from metrichub.services import event_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])

_SchemaT = TypeVar("_SchemaT", bound=BaseModel)


def _parse(schema: type[_SchemaT], data: dict[str, Any]) -> _SchemaT:
    """Validate the envelope ``data`` against *schema*, reporting failures as a 422."""
    try:
        return schema.model_validate(data)
    except pydantic.ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc


def _event_id(data: dict[str, Any]) -> str:
    event_id = data.get("id")
    if not isinstance(event_id, str) or not event_id:
        raise RequestValidationError(
            [{"type": "missing", "loc": ("body", "data", "id"), "msg": "Field required"}]
        )
    return event_id


@router.post(
    "/{plugin}",
    response_model=WebhookResponse,
    summary="Receive a canonical event from a collector plugin",
)
async def handle_webhook(
    plugin: str,
    envelope: WebhookEnvelope,
    engine: MetricsEngine = Depends(get_engine),
    db: AsyncSession | None = Depends(get_journal),
) -> WebhookResponse:
    """Record an event a plugin has already translated into canonical form.

    ``event_type`` selects the operation:

    * ``deployment`` – ``data`` is a deployment payload.
    * ``deployment_completed`` – ``data`` holds ``id``, ``status`` and an
      optional ``end_time``.
    * ``incident`` – ``data`` is an incident payload; it may already be
      resolved.
    * ``incident_resolved`` – ``data`` holds ``id`` and an optional
      ``resolved_time``.

    Redelivery of an event with an explicit ``id`` is answered with 409,
    which plugins should treat as success.
    """
    data = envelope.data
    if envelope.event_type == "deployment":
        event = await event_service.record_deployment(engine, _parse(DeploymentCreate, data), db)
    elif envelope.event_type == "deployment_completed":
        event = await event_service.complete_deployment(
            engine, _event_id(data), _parse(DeploymentComplete, data), db
        )
    elif envelope.event_type == "incident":
        event = await event_service.import_incident(engine, _parse(IncidentCreate, data), db)
    else:
        resolution = _parse(IncidentResolve, data)
        event = await event_service.resolve_incident(
            engine, _event_id(data), resolution.resolved_time, db
        )

    logger.info(
        "Webhook processed: plugin=%s event_type=%s id=%s", plugin, envelope.event_type, event.id
    )
    return WebhookResponse(
        message="Webhook processed",
        plugin=plugin,
        event_type=envelope.event_type,
        event_id=event.id,
        processed_at=datetime.now(UTC),
    )
