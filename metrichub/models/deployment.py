from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from metrichub.models.base import Base, TimestampMixin
from metrichub.models.enums import DeploymentStatus


class DeploymentRecord(TimestampMixin, Base):
    """Durable journal row for a deployment event."""

    __tablename__ = "deployments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    service: Mapped[str] = mapped_column(String, nullable=False, index=True)
    environment: Mapped[str] = mapped_column(String, nullable=False, index=True)
    status: Mapped[DeploymentStatus] = mapped_column(nullable=False)
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    commit_sha: Mapped[str | None] = mapped_column(String)
    commit_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[str | None] = mapped_column(String)
    author: Mapped[str | None] = mapped_column(String)
    repository: Mapped[str | None] = mapped_column(String)
    branch: Mapped[str | None] = mapped_column(String)
    build_url: Mapped[str | None] = mapped_column(String)
    tags: Mapped[dict[str, str] | None] = mapped_column(JSON)
