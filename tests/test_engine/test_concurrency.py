from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from metrichub.engine import (
    AlreadyResolvedError,
    DuplicateIdError,
    MetricsEngine,
    Scope,
    TimeRange,
)
from metrichub.engine.calculator import compute_window
from metrichub.models.enums import DeploymentStatus
from tests.conftest import NOW, make_deployment, make_incident

WINDOW = TimeRange(start=NOW - timedelta(days=30), end=NOW)

_SERVICES = ("api", "web", "worker", "billing")


def test_concurrent_appends_lose_nothing(metrics_engine: MetricsEngine) -> None:
    """Parallel writers across and within partitions all land exactly once."""

    def write(worker: int) -> None:
        service = _SERVICES[worker % len(_SERVICES)]
        for n in range(50):
            status = DeploymentStatus.failed if n % 10 == 0 else DeploymentStatus.success
            metrics_engine.record(
                make_deployment(
                    NOW - timedelta(minutes=worker * 50 + n + 1),
                    service=service,
                    status=status,
                    id=f"w{worker}-{n}",
                )
            )

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(write, range(8)))

    window = metrics_engine.compute(WINDOW)
    assert window.deployment_count == 400
    assert window.failed_count == 40
    assert metrics_engine.compute(WINDOW, Scope(service="api")).deployment_count == 100


def test_reads_during_writes_are_consistent(metrics_engine: MetricsEngine) -> None:
    """Readers never observe a half-applied event and see counts only grow."""
    stop = threading.Event()

    def read() -> list[int]:
        observed: list[int] = []
        while not stop.is_set():
            window = metrics_engine.compute(WINDOW)
            assert window.failed_count <= window.deployment_count
            observed.append(window.deployment_count)
        return observed

    def write() -> None:
        for n in range(300):
            metrics_engine.record(make_deployment(NOW - timedelta(minutes=n + 1)))

    with ThreadPoolExecutor(max_workers=3) as pool:
        readers = [pool.submit(read) for _ in range(2)]
        pool.submit(write).result()
        stop.set()
        for reader in readers:
            observed = reader.result()
            assert observed == sorted(observed)
            assert all(0 <= count <= 300 for count in observed)

    state = metrics_engine.state()
    assert metrics_engine.compute(WINDOW) == compute_window(
        state.deployments, state.incidents, WINDOW
    )


def test_concurrent_resolve_has_exactly_one_winner(metrics_engine: MetricsEngine) -> None:
    incident = metrics_engine.incidents.open(make_incident(NOW - timedelta(hours=1)))
    barrier = threading.Barrier(8)

    def resolve(_: int) -> bool:
        barrier.wait()
        try:
            metrics_engine.incidents.resolve(incident.id)
        except AlreadyResolvedError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(resolve, range(8)))

    assert outcomes.count(True) == 1
    assert metrics_engine.compute(WINDOW).resolved_incident_count == 1


def test_concurrent_duplicate_ids_have_exactly_one_winner(metrics_engine: MetricsEngine) -> None:
    barrier = threading.Barrier(6)

    def append(worker: int) -> bool:
        barrier.wait()
        try:
            metrics_engine.record(
                make_deployment(NOW - timedelta(hours=worker + 1), id="redelivered")
            )
        except DuplicateIdError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(append, range(6)))

    assert outcomes.count(True) == 1
    assert metrics_engine.compute(WINDOW).deployment_count == 1
