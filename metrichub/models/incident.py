from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from metrichub.models.base import Base, TimestampMixin
from metrichub.models.enums import IncidentSeverity


class IncidentRecord(TimestampMixin, Base):
    """Durable journal row for an incident event.

    ``resolved_time`` is written at most once, by the resolve path.
    """

    __tablename__ = "incidents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    service: Mapped[str] = mapped_column(String, nullable=False, index=True)
    environment: Mapped[str] = mapped_column(String, nullable=False, index=True)
    severity: Mapped[IncidentSeverity] = mapped_column(nullable=False)
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    resolved_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    root_cause: Mapped[str | None] = mapped_column(Text)
    assignee: Mapped[str | None] = mapped_column(String)
    tags: Mapped[dict[str, str] | None] = mapped_column(JSON)
