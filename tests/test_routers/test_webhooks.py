from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient

from metrichub.engine import MetricsEngine
from metrichub.models.enums import DeploymentStatus, IncidentState
from tests.conftest import NOW


@pytest.mark.asyncio
async def test_webhook_deployment(client: AsyncClient, metrics_engine: MetricsEngine) -> None:
    """A plugin delivers a canonical deployment through the webhook."""
    resp = await client.post(
        "/api/v1/webhook/github",
        json={
            "event_type": "deployment",
            "data": {
                "id": "gh-deploy-77",
                "service": "api",
                "environment": "production",
                "status": "success",
                "started_at": (NOW - timedelta(hours=1)).isoformat(),
                "commit_time": (NOW - timedelta(hours=4)).isoformat(),
                "repository": "acme/api",
            },
        },
    )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["plugin"] == "github"
    assert body["event_id"] == "gh-deploy-77"
    assert metrics_engine.store.get_deployment("gh-deploy-77").repository == "acme/api"


@pytest.mark.asyncio
async def test_webhook_redelivery_conflicts(client: AsyncClient) -> None:
    envelope = {
        "event_type": "deployment",
        "data": {"id": "once", "service": "api", "environment": "production"},
    }
    await client.post("/api/v1/webhook/jenkins", json=envelope)

    resp = await client.post("/api/v1/webhook/jenkins", json=envelope)

    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_webhook_incident_lifecycle(client: AsyncClient, metrics_engine: MetricsEngine) -> None:
    await client.post(
        "/api/v1/webhook/pagerduty",
        json={
            "event_type": "incident",
            "data": {
                "id": "pd-1",
                "title": "API down",
                "service": "api",
                "environment": "production",
                "severity": "critical",
                "start_time": (NOW - timedelta(minutes=20)).isoformat(),
            },
        },
    )

    resp = await client.post(
        "/api/v1/webhook/pagerduty",
        json={"event_type": "incident_resolved", "data": {"id": "pd-1"}},
    )

    assert resp.status_code == 200, resp.text
    assert metrics_engine.incidents.state("pd-1") is IncidentState.resolved
    assert metrics_engine.store.get_incident("pd-1").recovery_time == timedelta(minutes=20)


@pytest.mark.asyncio
async def test_webhook_deployment_completed(
    client: AsyncClient, metrics_engine: MetricsEngine
) -> None:
    await client.post(
        "/api/v1/webhook/argocd",
        json={
            "event_type": "deployment",
            "data": {
                "id": "sync-9",
                "service": "web",
                "environment": "staging",
                "status": "in_progress",
            },
        },
    )

    resp = await client.post(
        "/api/v1/webhook/argocd",
        json={"event_type": "deployment_completed", "data": {"id": "sync-9", "status": "rolled_back"}},
    )

    assert resp.status_code == 200, resp.text
    assert metrics_engine.store.get_deployment("sync-9").status is DeploymentStatus.rolled_back


@pytest.mark.asyncio
async def test_webhook_invalid_payload(client: AsyncClient) -> None:
    resp = await client.post(
        "/api/v1/webhook/github",
        json={"event_type": "deployment", "data": {"service": "api"}},
    )
    assert resp.status_code == 422

    resp = await client.post(
        "/api/v1/webhook/github",
        json={"event_type": "incident_resolved", "data": {}},
    )
    assert resp.status_code == 422

    resp = await client.post(
        "/api/v1/webhook/github",
        json={"event_type": "pull_request", "data": {}},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_webhook_imports_resolved_incident(
    client: AsyncClient, metrics_engine: MetricsEngine
) -> None:
    """Plugin backfills may deliver incidents that are already resolved."""
    resp = await client.post(
        "/api/v1/webhook/opsgenie",
        json={
            "event_type": "incident",
            "data": {
                "id": "og-5",
                "title": "Queue backlog",
                "service": "worker",
                "environment": "production",
                "start_time": (NOW - timedelta(hours=2)).isoformat(),
                "resolved_at": (NOW - timedelta(hours=1)).isoformat(),
            },
        },
    )

    assert resp.status_code == 200, resp.text
    assert metrics_engine.incidents.state("og-5") is IncidentState.resolved
