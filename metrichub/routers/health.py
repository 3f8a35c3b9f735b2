from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from metrichub import __version__
from metrichub.config import Settings
from metrichub.database import get_db
from metrichub.dependencies import get_engine, get_settings
from metrichub.engine import MetricsEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Liveness check")
async def health_check(
    engine: MetricsEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Report liveness together with the number of events held in memory."""
    snapshot = engine.state()
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "version": __version__,
        "events": {
            "deployments": len(snapshot.deployments),
            "incidents": len(snapshot.incidents),
        },
    }


@router.get("/database", summary="Journal database connectivity")
async def database_health(
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Run ``SELECT 1`` against the journal; 503 if it fails.

    Reports ``disabled`` without touching the database when persistence is
    turned off.
    """
    if not settings.PERSISTENCE_ENABLED:
        return JSONResponse({"status": "disabled"})
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.exception("Database health check failed")
        return JSONResponse(
            {"status": "unhealthy", "error": str(exc)},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return JSONResponse({"status": "healthy"})
