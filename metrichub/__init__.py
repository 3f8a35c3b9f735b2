"""MetricHub: DORA metrics aggregation engine and API."""

__version__ = "0.1.0"
