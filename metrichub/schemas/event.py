from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, AwareDatetime, BaseModel, ConfigDict, Field

from metrichub.engine.events import Deployment, Incident
from metrichub.models.enums import DeploymentStatus, IncidentSeverity, IncidentState

# ---------------------------------------------------------------------------
# Deployment schemas
# ---------------------------------------------------------------------------


class DeploymentCreate(BaseModel):
    """Canonical deployment payload, as produced by a plugin adapter.

    ``started_at`` / ``ended_at`` are accepted as aliases of ``start_time`` /
    ``end_time`` for compatibility with the simulation scripts.  A missing
    ``start_time`` defaults to the time of ingestion.
    """

    id: str | None = Field(default=None, max_length=64)
    service: str = Field(min_length=1)
    environment: str = Field(min_length=1)
    status: DeploymentStatus = DeploymentStatus.success
    start_time: AwareDatetime | None = Field(
        default=None, validation_alias=AliasChoices("start_time", "started_at")
    )
    end_time: AwareDatetime | None = Field(
        default=None, validation_alias=AliasChoices("end_time", "ended_at")
    )
    commit_sha: str | None = None
    commit_time: AwareDatetime | None = None
    version: str | None = None
    author: str | None = None
    repository: str | None = None
    branch: str | None = None
    build_url: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)

    def to_event(self, now: datetime) -> Deployment:
        return Deployment(
            id=self.id or "",
            service=self.service,
            environment=self.environment,
            status=self.status,
            start_time=self.start_time or now,
            end_time=self.end_time,
            commit_sha=self.commit_sha,
            commit_time=self.commit_time,
            version=self.version,
            author=self.author,
            repository=self.repository,
            branch=self.branch,
            build_url=self.build_url,
            tags=self.tags,
        )


class DeploymentComplete(BaseModel):
    """Terminal status update for an ``in_progress`` deployment."""

    status: DeploymentStatus
    end_time: AwareDatetime | None = Field(
        default=None, validation_alias=AliasChoices("end_time", "ended_at")
    )


class DeploymentResponse(BaseModel):
    """Deployment event returned from the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    service: str
    environment: str
    status: DeploymentStatus
    start_time: datetime
    end_time: datetime | None
    commit_sha: str | None
    commit_time: datetime | None
    version: str | None
    author: str | None
    repository: str | None
    branch: str | None
    build_url: str | None
    tags: dict[str, str]
    created_at: datetime | None
    updated_at: datetime | None


class DeploymentListResponse(BaseModel):
    deployments: list[DeploymentResponse]
    count: int


# ---------------------------------------------------------------------------
# Incident schemas
# ---------------------------------------------------------------------------


class IncidentCreate(BaseModel):
    """Canonical incident payload.

    ``resolved_time`` is only accepted for historical imports; live incidents
    are opened unresolved and closed through the resolve endpoint.
    """

    id: str | None = Field(default=None, max_length=64)
    title: str = Field(min_length=1)
    description: str | None = None
    service: str = Field(min_length=1)
    environment: str = Field(min_length=1)
    severity: IncidentSeverity = IncidentSeverity.medium
    start_time: AwareDatetime | None = Field(
        default=None, validation_alias=AliasChoices("start_time", "started_at")
    )
    resolved_time: AwareDatetime | None = Field(
        default=None, validation_alias=AliasChoices("resolved_time", "resolved_at")
    )
    root_cause: str | None = None
    assignee: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)

    def to_event(self, now: datetime) -> Incident:
        return Incident(
            id=self.id or "",
            title=self.title,
            description=self.description,
            service=self.service,
            environment=self.environment,
            severity=self.severity,
            start_time=self.start_time or now,
            resolved_time=self.resolved_time,
            root_cause=self.root_cause,
            assignee=self.assignee,
            tags=self.tags,
        )


class IncidentResolve(BaseModel):
    """Optional body of the resolve call; ``resolved_time`` defaults to now."""

    resolved_time: AwareDatetime | None = Field(
        default=None, validation_alias=AliasChoices("resolved_time", "resolved_at")
    )


class IncidentResponse(BaseModel):
    """Incident event returned from the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str | None
    service: str
    environment: str
    severity: IncidentSeverity
    state: IncidentState
    start_time: datetime
    resolved_time: datetime | None
    root_cause: str | None
    assignee: str | None
    tags: dict[str, str]
    created_at: datetime | None
    updated_at: datetime | None


class IncidentListResponse(BaseModel):
    incidents: list[IncidentResponse]
    count: int


# ---------------------------------------------------------------------------
# State / webhook schemas
# ---------------------------------------------------------------------------


class StateResponse(BaseModel):
    """Read-only export of every recorded event."""

    deployments: list[DeploymentResponse]
    incidents: list[IncidentResponse]


class WebhookEnvelope(BaseModel):
    """Event already translated into the canonical shape by a plugin adapter."""

    event_type: Literal["deployment", "deployment_completed", "incident", "incident_resolved"]
    data: dict[str, Any]


class WebhookResponse(BaseModel):
    message: str
    plugin: str
    event_type: str
    event_id: str
    processed_at: datetime


class SimulationRequest(BaseModel):
    """Parameters for generating a deterministic event history."""

    seed: int = 42
    days: int = Field(default=30, ge=1, le=365)
    services: list[str] = Field(default_factory=lambda: ["api", "web", "worker"], min_length=1)
    environments: list[str] = Field(default_factory=lambda: ["production"], min_length=1)
    deployments_per_day: float = Field(default=2.0, gt=0, le=50)
    failure_rate: float = Field(default=0.1, ge=0, le=1)
    incident_rate: float = Field(default=0.1, ge=0, le=1)


class SimulationResponse(BaseModel):
    seed: int
    deployments: int
    incidents: int
