from __future__ import annotations

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from metrichub.config import Settings
from metrichub.database import get_db
from metrichub.engine import MetricsEngine, Scope


def get_engine(request: Request) -> MetricsEngine:
    """Return the :class:`MetricsEngine` owned by the running application."""
    return request.app.state.engine


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_journal(
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
) -> AsyncSession | None:
    """Session to journal writes into, or ``None`` when persistence is disabled."""
    if not settings.PERSISTENCE_ENABLED:
        return None
    return db


def get_scope(
    service: str | None = Query(default=None, description="Restrict to one service"),
    environment: str | None = Query(default=None, description="Restrict to one environment"),
) -> Scope:
    return Scope(service=service or None, environment=environment or None)
