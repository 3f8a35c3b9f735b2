from __future__ import annotations

"""DORA (DevOps Research and Assessment) benchmark reference data.

The four key DORA metrics are:

* **Deployment Frequency**: how often an organisation successfully releases
  to production.
* **Lead Time for Changes**: the time it takes a commit to get into
  production.
* **Change Failure Rate**: the percentage of deployments causing a failure
  in production.
* **Mean Time to Restore (MTTR)**: how long it takes to recover from a
  failure in production.

``DEFAULT_THRESHOLDS`` holds the numeric band boundaries the classifier uses
when nothing else is configured.  They are a starting point, not gospel:
operators override them through the ``DORA_THRESHOLDS`` setting to match the
benchmark of their own industry.
"""

from typing import Any

from metrichub.models.enums import PerformanceTier

DORA_LEVELS: dict[PerformanceTier, dict[str, str]] = {
    PerformanceTier.elite: {
        "deployment_frequency": "On-demand (multiple deploys per day)",
        "lead_time": "Less than one day",
        "change_failure_rate": "0-15%",
        "mttr": "Less than one hour",
    },
    PerformanceTier.high: {
        "deployment_frequency": "Between once per day and once per week",
        "lead_time": "Between one day and one week",
        "change_failure_rate": "16-20%",
        "mttr": "Less than one day",
    },
    PerformanceTier.medium: {
        "deployment_frequency": "Between once per week and once per month",
        "lead_time": "Between one week and one month",
        "change_failure_rate": "21-30%",
        "mttr": "Between one day and one week",
    },
    PerformanceTier.low: {
        "deployment_frequency": "Less than once per month",
        "lead_time": "More than one month",
        "change_failure_rate": "More than 30%",
        "mttr": "More than one week",
    },
}

# Band lower/upper bounds per metric.  Deployment frequency is "higher is
# better" (deploys per day, value >= bound); the other three are "lower is
# better" (value <= bound).  Durations are expressed in hours.
DEFAULT_THRESHOLDS: dict[str, dict[str, Any]] = {
    "deployment_frequency": {"elite": 1.0, "high": 0.14, "medium": 0.033},
    "lead_time_hours": {"elite": 24.0, "high": 168.0, "medium": 720.0},
    "mttr_hours": {"elite": 1.0, "high": 24.0, "medium": 168.0},
    "change_failure_rate": {"elite": 0.15, "high": 0.20, "medium": 0.30},
}


def describe_level(metric: str, tier: PerformanceTier) -> str:
    """Return the human-readable DORA band description for *metric* at *tier*.

    Examples:
        >>> describe_level("mttr", PerformanceTier.elite)
        'Less than one hour'
    """
    return DORA_LEVELS[tier][metric]
