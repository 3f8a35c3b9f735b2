from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metrichub.models.deployment import DeploymentRecord
from tests.conftest import NOW

# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------


async def _create_deployment(client: AsyncClient, **overrides) -> dict:
    """POST /api/v1/deployments and return the parsed JSON body."""
    payload: dict = {
        "service": "api",
        "environment": "production",
        "status": "success",
        "start_time": (NOW - timedelta(hours=1)).isoformat(),
        "commit_time": (NOW - timedelta(hours=3)).isoformat(),
        "commit_sha": "abc123",
    }
    payload.update(overrides)
    payload = {key: value for key, value in payload.items() if value is not None}
    resp = await client.post("/api/v1/deployments", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_deployment(client: AsyncClient, db_session: AsyncSession) -> None:
    """POST /api/v1/deployments records the event and journals it."""
    data = await _create_deployment(client, version="1.4.2", tags={"team": "payments"})

    assert data["id"]
    assert data["service"] == "api"
    assert data["version"] == "1.4.2"
    assert data["tags"] == {"team": "payments"}
    assert data["created_at"] is not None

    rows = (await db_session.execute(select(DeploymentRecord))).scalars().all()
    assert [row.id for row in rows] == [data["id"]]


@pytest.mark.asyncio
async def test_create_deployment_accepts_started_at_alias(client: AsyncClient) -> None:
    data = await _create_deployment(
        client, start_time=None, started_at=(NOW - timedelta(hours=2)).isoformat()
    )

    assert data["start_time"].startswith("2024-06-30T10:00:00")


@pytest.mark.asyncio
async def test_create_deployment_duplicate_id(client: AsyncClient) -> None:
    """Redelivering an event with the same id answers 409."""
    await _create_deployment(client, id="gh-run-1")

    resp = await client.post(
        "/api/v1/deployments",
        json={"id": "gh-run-1", "service": "api", "environment": "production"},
    )

    assert resp.status_code == 409
    assert resp.json()["code"] == "duplicate_id"


@pytest.mark.asyncio
async def test_create_deployment_commit_after_start(client: AsyncClient) -> None:
    resp = await client.post(
        "/api/v1/deployments",
        json={
            "service": "api",
            "environment": "production",
            "start_time": (NOW - timedelta(hours=3)).isoformat(),
            "commit_time": (NOW - timedelta(hours=1)).isoformat(),
        },
    )

    assert resp.status_code == 422
    assert resp.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_create_deployment_naive_timestamp_rejected(client: AsyncClient) -> None:
    resp = await client.post(
        "/api/v1/deployments",
        json={"service": "api", "environment": "production", "start_time": "2024-06-01T10:00:00"},
    )

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_deployment_unknown_status(client: AsyncClient) -> None:
    resp = await client.post(
        "/api/v1/deployments",
        json={"service": "api", "environment": "production", "status": "exploded"},
    )

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_list_deployments_filters(client: AsyncClient) -> None:
    await _create_deployment(client, service="api")
    await _create_deployment(client, service="web")
    await _create_deployment(
        client, start_time=(NOW - timedelta(days=45)).isoformat(), commit_time=None
    )

    resp = await client.get("/api/v1/deployments")
    assert resp.status_code == 200
    assert resp.json()["count"] == 2

    resp = await client.get("/api/v1/deployments", params={"service": "web"})
    assert [d["service"] for d in resp.json()["deployments"]] == ["web"]

    resp = await client.get("/api/v1/deployments", params={"days": 90, "limit": 1})
    body = resp.json()
    assert body["count"] == 3
    assert len(body["deployments"]) == 1


@pytest.mark.asyncio
async def test_get_deployment(client: AsyncClient) -> None:
    created = await _create_deployment(client)

    resp = await client.get(f"/api/v1/deployments/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == created["id"]

    resp = await client.get("/api/v1/deployments/missing")
    assert resp.status_code == 404
    assert resp.json() == {
        "detail": "Deployment missing not found.",
        "code": "not_found",
        "trace_id": resp.headers["X-Request-ID"],
    }


@pytest.mark.asyncio
async def test_complete_deployment(client: AsyncClient, db_session: AsyncSession) -> None:
    created = await _create_deployment(client, status="in_progress")

    resp = await client.post(
        f"/api/v1/deployments/{created['id']}/complete",
        json={"status": "failed"},
    )

    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "failed"
    assert resp.json()["end_time"] is not None

    row = await db_session.get(DeploymentRecord, created["id"])
    assert row is not None
    assert row.status.value == "failed"

    resp = await client.post(
        f"/api/v1/deployments/{created['id']}/complete",
        json={"status": "success"},
    )
    assert resp.status_code == 422
