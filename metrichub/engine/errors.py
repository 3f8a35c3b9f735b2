from __future__ import annotations

"""Exception taxonomy raised by the metrics engine.

Every error is terminal for the single operation that raised it.  The engine
never retries internally; callers (HTTP handlers, webhook redelivery) decide
their own retry policy.  Each class carries a stable snake_case ``code`` that
the serving layer exposes to clients.
"""


class MetricHubError(Exception):
    """Base class for every domain error raised by the engine."""

    code: str = "metrichub_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MetricHubError):
    """An event is malformed or internally contradictory."""

    code = "validation_error"


class DuplicateIdError(MetricHubError):
    """An event with the same id has already been recorded."""

    code = "duplicate_id"

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event {event_id} already exists.")
        self.event_id = event_id


class NotFoundError(MetricHubError):
    """No deployment or incident exists with the requested id."""

    code = "not_found"

    def __init__(self, kind: str, event_id: str) -> None:
        super().__init__(f"{kind.capitalize()} {event_id} not found.")
        self.kind = kind
        self.event_id = event_id


class AlreadyResolvedError(MetricHubError):
    """The incident has already transitioned to ``resolved``."""

    code = "already_resolved"

    def __init__(self, incident_id: str) -> None:
        super().__init__(f"Incident {incident_id} is already resolved.")
        self.incident_id = incident_id


class InvalidTimestampError(MetricHubError):
    """A timestamp would break an ordering invariant (e.g. resolve before start)."""

    code = "invalid_timestamp"
