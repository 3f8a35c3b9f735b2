from __future__ import annotations

from datetime import timedelta

from metrichub.engine import MetricsEngine
from metrichub.engine.events import Deployment, Incident
from metrichub.simulation import SimulationProfile, generate_history
from tests.conftest import NOW


def test_same_seed_same_history() -> None:
    assert generate_history(3, NOW) == generate_history(3, NOW)


def test_different_seeds_differ() -> None:
    assert generate_history(1, NOW) != generate_history(2, NOW)


def test_history_is_ordered_and_inside_window() -> None:
    profile = SimulationProfile(days=5, services=("api",), deployments_per_day=4)
    events = generate_history(11, NOW, profile)

    starts = [event.start_time for event in events]
    assert starts == sorted(starts)
    assert all(NOW - timedelta(days=profile.days) <= s < NOW for s in starts)
    assert all(event.service == "api" for event in events)


def test_incidents_are_resolved_and_deployments_terminal() -> None:
    events = generate_history(5, NOW, SimulationProfile(failure_rate=0.5))

    incidents = [e for e in events if isinstance(e, Incident)]
    deployments = [e for e in events if isinstance(e, Deployment)]
    assert incidents
    assert all(i.resolved_time is not None and i.resolved_time <= NOW for i in incidents)
    assert all(d.status.is_terminal for d in deployments)


def test_history_records_into_engine(metrics_engine: MetricsEngine) -> None:
    events = generate_history(42, NOW)
    for event in events:
        metrics_engine.record(event)

    window = metrics_engine.compute(metrics_engine.window(days=30))

    assert window.deployment_count == sum(isinstance(e, Deployment) for e in events)
    assert 0 < window.change_failure_rate < 1
