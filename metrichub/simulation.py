from __future__ import annotations

"""Seeded generator of plausible deployment and incident histories.

Useful for demos and load tests: the same seed, profile and end time always
produce the same events (ids included), so a simulated history can be
replayed into a fresh engine and compared.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta

from metrichub.engine.events import Deployment, Event, Incident
from metrichub.models.enums import DeploymentStatus, IncidentSeverity

logger = logging.getLogger(__name__)

_SEVERITY_WEIGHTS: dict[IncidentSeverity, int] = {
    IncidentSeverity.low: 4,
    IncidentSeverity.medium: 3,
    IncidentSeverity.high: 2,
    IncidentSeverity.critical: 1,
}


@dataclass(frozen=True)
class SimulationProfile:
    """Shape of the generated history.

    Attributes:
        days: Number of days, ending at the simulation end time.
        services: Services to deploy.
        environments: Environments every service deploys to.
        deployments_per_day: Mean deployments per partition per day.
        failure_rate: Probability that a deployment fails.
        incident_rate: Probability that a deployment triggers an incident.
    """

    days: int = 30
    services: tuple[str, ...] = ("api", "web", "worker")
    environments: tuple[str, ...] = ("production",)
    deployments_per_day: float = 2.0
    failure_rate: float = 0.1
    incident_rate: float = 0.1


def generate_history(seed: int, end: datetime, profile: SimulationProfile | None = None) -> list[Event]:
    """Generate a deterministic event history ending just before *end*.

    Incidents are always generated already resolved, with a recovery time
    between five minutes and two days, clamped to *end*.

    Returns:
        Deployments and incidents ordered by ``start_time``.
    """
    profile = profile or SimulationProfile()
    rng = random.Random(seed)
    start = end - timedelta(days=profile.days)
    events: list[Event] = []

    for service in profile.services:
        for environment in profile.environments:
            expected = profile.deployments_per_day * profile.days
            count = max(0, round(rng.gauss(expected, expected ** 0.5)))
            for n in range(count):
                offset = rng.uniform(0, profile.days * 86_400 - 1)
                started = start + timedelta(seconds=offset)
                failed = rng.random() < profile.failure_rate
                lead = timedelta(minutes=rng.lognormvariate(5.5, 1.0))
                deployment = Deployment(
                    id=f"sim-{seed}-{service}-{environment}-d{n}",
                    service=service,
                    environment=environment,
                    status=DeploymentStatus.failed if failed else DeploymentStatus.success,
                    start_time=started,
                    end_time=min(started + timedelta(minutes=rng.uniform(2, 30)), end),
                    commit_sha=f"{rng.getrandbits(160):040x}",
                    commit_time=started - lead,
                    version=f"1.{n // 10}.{n % 10}",
                    author=rng.choice(("alice", "bob", "carol", "dave")),
                    tags={"source": "simulation"},
                )
                events.append(deployment)

                if failed or rng.random() < profile.incident_rate:
                    recovery = timedelta(minutes=rng.uniform(5, 2_880))
                    events.append(
                        Incident(
                            id=f"sim-{seed}-{service}-{environment}-i{n}",
                            title=f"{service} degradation after {deployment.version}",
                            service=service,
                            environment=environment,
                            severity=rng.choices(
                                list(_SEVERITY_WEIGHTS), weights=list(_SEVERITY_WEIGHTS.values())
                            )[0],
                            start_time=started,
                            resolved_time=min(started + recovery, end),
                            tags={"source": "simulation"},
                        )
                    )

    events.sort(key=lambda event: (event.start_time, event.id))
    logger.info("simulation: generated %d events (seed=%d)", len(events), seed)
    return events
