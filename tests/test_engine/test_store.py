from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from metrichub.engine import (
    AlreadyResolvedError,
    DuplicateIdError,
    EventStore,
    InMemoryEventStore,
    InvalidTimestampError,
    NotFoundError,
    TimeRange,
    ValidationError,
)
from metrichub.engine.store import StoreChange
from metrichub.models.enums import DeploymentStatus
from tests.conftest import NOW, make_deployment, make_incident

WINDOW = TimeRange(start=NOW - timedelta(days=30), end=NOW)


@pytest.fixture()
def store() -> InMemoryEventStore:
    return InMemoryEventStore(clock=lambda: NOW)


# ---------------------------------------------------------------------------
# Append
# ---------------------------------------------------------------------------


def test_store_satisfies_protocol(store: InMemoryEventStore) -> None:
    assert isinstance(store, EventStore)


def test_append_assigns_id_and_stamps(store: InMemoryEventStore) -> None:
    """An event without an id gets a server-side id and bookkeeping stamps."""
    recorded = store.append(make_deployment(NOW - timedelta(days=1)))

    assert recorded.id
    assert recorded.created_at == NOW
    assert recorded.updated_at == NOW
    assert store.get_deployment(recorded.id) == recorded


def test_append_keeps_supplied_id(store: InMemoryEventStore) -> None:
    recorded = store.append(make_deployment(NOW - timedelta(days=1), id="deploy-1"))

    assert recorded.id == "deploy-1"


def test_append_duplicate_id_is_rejected(store: InMemoryEventStore) -> None:
    """Ids are unique across deployments and incidents alike."""
    store.append(make_deployment(NOW - timedelta(days=1), id="evt-1"))

    with pytest.raises(DuplicateIdError):
        store.append(make_deployment(NOW - timedelta(hours=1), id="evt-1"))
    with pytest.raises(DuplicateIdError):
        store.append(make_incident(NOW - timedelta(hours=1), id="evt-1"))


@pytest.mark.parametrize(
    "overrides",
    [
        {"service": ""},
        {"environment": "  "},
        {"end_time": NOW - timedelta(days=2)},
        {"commit_time": NOW},
    ],
)
def test_append_invalid_deployment_is_rejected(store: InMemoryEventStore, overrides: dict) -> None:
    deployment = replace(make_deployment(NOW - timedelta(days=1)), **overrides)

    with pytest.raises(ValidationError):
        store.append(deployment)
    assert store.snapshot().deployments == ()


def test_append_naive_timestamp_is_rejected(store: InMemoryEventStore) -> None:
    naive = (NOW - timedelta(days=1)).replace(tzinfo=None)

    with pytest.raises(ValidationError):
        store.append(make_deployment(naive, lead_time=None))


def test_append_incident_resolved_before_start_is_rejected(store: InMemoryEventStore) -> None:
    with pytest.raises(ValidationError):
        store.append(make_incident(NOW, recovery=timedelta(minutes=-5)))


def test_rejected_event_does_not_reserve_its_id(store: InMemoryEventStore) -> None:
    with pytest.raises(ValidationError):
        store.append(make_deployment(NOW, service="", id="retry-me"))

    assert store.append(make_deployment(NOW - timedelta(hours=1), id="retry-me")).id == "retry-me"


def test_subscribers_receive_committed_changes(store: InMemoryEventStore) -> None:
    changes: list[StoreChange] = []
    store.subscribe(changes.append)

    deployment = store.append(make_deployment(NOW - timedelta(days=1)))

    assert len(changes) == 1
    assert changes[0].kind == "deployment"
    assert changes[0].current == deployment
    assert changes[0].previous is None
    assert changes[0].partition == ("api", "production")


# ---------------------------------------------------------------------------
# Staged writes
# ---------------------------------------------------------------------------


def test_staged_append_commits_only_on_clean_exit(store: InMemoryEventStore) -> None:
    """A failure inside the staged block leaves no trace and frees the id."""
    with pytest.raises(RuntimeError):
        with store.staged_append(make_deployment(NOW - timedelta(hours=1), id="staged")):
            raise RuntimeError("journal write failed")

    assert store.snapshot().deployments == ()
    with store.staged_append(make_deployment(NOW - timedelta(hours=1), id="staged")) as staged:
        assert store.snapshot().deployments == ()
    assert store.get_deployment("staged") == staged


def test_staged_append_reserves_id_while_pending(store: InMemoryEventStore) -> None:
    with store.staged_append(make_deployment(NOW - timedelta(hours=1), id="held")):
        with pytest.raises(DuplicateIdError):
            store.append(make_deployment(NOW - timedelta(hours=2), id="held"))


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def test_resolve_incident(store: InMemoryEventStore) -> None:
    incident = store.append(make_incident(NOW - timedelta(hours=2), id="inc-1"))

    resolved = store.resolve_incident("inc-1", NOW - timedelta(hours=1))

    assert resolved.is_resolved
    assert resolved.recovery_time == timedelta(hours=1)
    assert resolved.created_at == incident.created_at
    assert store.get_incident("inc-1") == resolved


def test_resolve_incident_errors(store: InMemoryEventStore) -> None:
    store.append(make_incident(NOW - timedelta(hours=2), id="inc-1"))

    with pytest.raises(NotFoundError):
        store.resolve_incident("missing", NOW)
    with pytest.raises(InvalidTimestampError):
        store.resolve_incident("inc-1", NOW - timedelta(hours=3))

    store.resolve_incident("inc-1", NOW)
    with pytest.raises(AlreadyResolvedError):
        store.resolve_incident("inc-1", NOW)


def test_complete_deployment(store: InMemoryEventStore) -> None:
    store.append(
        make_deployment(NOW - timedelta(hours=1), id="dep-1", status=DeploymentStatus.in_progress)
    )

    completed = store.complete_deployment("dep-1", DeploymentStatus.failed, NOW)

    assert completed.status is DeploymentStatus.failed
    assert completed.end_time == NOW
    with pytest.raises(ValidationError):
        store.complete_deployment("dep-1", DeploymentStatus.success, NOW)


def test_complete_deployment_rejects_non_terminal_status(store: InMemoryEventStore) -> None:
    store.append(
        make_deployment(NOW - timedelta(hours=1), id="dep-1", status=DeploymentStatus.in_progress)
    )

    with pytest.raises(ValidationError):
        store.complete_deployment("dep-1", DeploymentStatus.in_progress)
    with pytest.raises(InvalidTimestampError):
        store.complete_deployment("dep-1", DeploymentStatus.success, NOW - timedelta(days=1))
    with pytest.raises(NotFoundError):
        store.complete_deployment("nope", DeploymentStatus.success)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def test_query_is_ordered_filtered_and_restartable(store: InMemoryEventStore) -> None:
    store.append(make_deployment(NOW - timedelta(days=3), id="a", service="web"))
    store.append(make_incident(NOW - timedelta(days=2), id="b"))
    store.append(make_deployment(NOW - timedelta(days=1), id="c"))
    store.append(make_deployment(NOW - timedelta(days=40), id="too-old"))
    store.append(make_deployment(NOW, id="at-end"))

    query = store.query(WINDOW)

    assert [e.id for e in query] == ["a", "b", "c"]
    assert [e.id for e in query] == ["a", "b", "c"]
    assert [e.id for e in store.query(WINDOW, service="api")] == ["b", "c"]
    assert [e.id for e in store.query(WINDOW, environment="staging")] == []


def test_query_snapshot_ignores_later_writes(store: InMemoryEventStore) -> None:
    store.append(make_deployment(NOW - timedelta(days=2), id="first"))
    query = store.query_deployments(WINDOW)

    store.append(make_deployment(NOW - timedelta(days=1), id="second"))

    assert [d.id for d in query] == ["first"]
    assert [d.id for d in store.query_deployments(WINDOW)] == ["first", "second"]


def test_snapshot_orders_across_partitions(store: InMemoryEventStore) -> None:
    store.append(make_deployment(NOW - timedelta(days=1), id="late", service="web"))
    store.append(make_deployment(NOW - timedelta(days=2), id="early", service="api"))

    state = store.snapshot()

    assert [d.id for d in state.deployments] == ["early", "late"]
    assert store.partitions() == [("api", "production"), ("web", "production")]
