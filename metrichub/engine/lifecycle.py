from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import cast

from metrichub.engine.errors import ValidationError
from metrichub.engine.events import Incident
from metrichub.engine.store import Clock, InMemoryEventStore, utc_now
from metrichub.models.enums import IncidentState

logger = logging.getLogger(__name__)


class IncidentLifecycleManager:
    """Enforces the ``open --resolve(ts)--> resolved`` incident state machine.

    ``resolved`` is terminal.  A second :meth:`resolve` fails with
    :class:`~metrichub.engine.errors.AlreadyResolvedError` instead of being
    ignored, so concurrent resolvers can detect that they lost the race.
    Durability and aggregator invalidation are delegated to the event store.
    """

    def __init__(self, store: InMemoryEventStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def open(self, incident: Incident) -> Incident:
        """Record a new ``open`` incident.

        Raises:
            ValidationError: If *incident* already carries a ``resolved_time``;
                use :meth:`import_incident` for historical records.
        """
        with self.staged_open(incident) as opened:
            pass
        return opened

    def import_incident(self, incident: Incident) -> Incident:
        """Record an incident as reported by a plugin, possibly already resolved."""
        with self.staged_import(incident) as imported:
            pass
        return imported

    @contextmanager
    def staged_open(self, incident: Incident) -> Iterator[Incident]:
        """Open *incident*, letting the caller persist before the commit."""
        if incident.resolved_time is not None:
            raise ValidationError("A newly opened incident cannot carry a resolved_time.")
        with self._store.staged_append(incident) as staged:
            yield cast(Incident, staged)

    @contextmanager
    def staged_import(self, incident: Incident) -> Iterator[Incident]:
        """Like :meth:`staged_open`, but accepts an already resolved incident."""
        with self._store.staged_append(incident) as staged:
            yield cast(Incident, staged)

    def resolve(self, incident_id: str, resolved_time: datetime | None = None) -> Incident:
        """Transition *incident_id* to ``resolved`` at *resolved_time* (default: now)."""
        with self.staged_resolve(incident_id, resolved_time) as resolved:
            pass
        return resolved

    @contextmanager
    def staged_resolve(
        self, incident_id: str, resolved_time: datetime | None = None
    ) -> Iterator[Incident]:
        """Resolve *incident_id*, letting the caller persist before the commit."""
        moment = resolved_time or self._clock()
        with self._store.staged_resolve(incident_id, moment) as resolved:
            yield resolved
        logger.info(
            "resolve: incident %s recovered in %s", incident_id, resolved.recovery_time
        )

    def state(self, incident_id: str) -> IncidentState:
        return self._store.get_incident(incident_id).state
