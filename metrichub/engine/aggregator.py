from __future__ import annotations

import logging
from dataclasses import dataclass

from metrichub.engine.events import ALL_SCOPE, Deployment, PartitionKey, Scope, TimeRange
from metrichub.engine.index import SortedIndex
from metrichub.engine.store import EventStore, StoreChange, index_key
from metrichub.engine.window import (
    DeploymentSample,
    IncidentSample,
    MetricWindow,
    PartialAggregate,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _PartitionView:
    """Immutable per-partition indices together with their version.

    Publishing a new view is a single reference assignment, so a reader that
    grabbed a view sees its version and its data from the same moment.
    """

    version: int
    deployments: SortedIndex[DeploymentSample]
    incidents: SortedIndex[IncidentSample]


_EMPTY_VIEW = _PartitionView(0, SortedIndex(), SortedIndex())

# Versions of every partition that contributed to a cached window.
_Signature = tuple[tuple[PartitionKey, int], ...]


@dataclass
class AggregatorStats:
    """Counters exposing how much work :meth:`WindowedAggregator.compute` did."""

    window_hits: int = 0
    window_misses: int = 0
    partial_recomputes: int = 0


class WindowedAggregator:
    """Incrementally maintained DORA metrics per (service, environment).

    The aggregator subscribes to an :class:`~metrichub.engine.store.EventStore`.
    Every committed change is projected onto a compact sample and inserted
    into the partition's sorted index; the partition version is bumped, which
    lazily invalidates cached results.  Nothing is recomputed on the write
    path.

    :meth:`compute` reuses the cached window for a scope when none of its
    partitions changed, and otherwise recomputes only the stale partitions
    (``O(log n + k)`` each via bisection) before merging.

    Usage::

        aggregator = WindowedAggregator()
        aggregator.attach(store)
        window = aggregator.compute(time_range, Scope(service="api"))
    """

    def __init__(self, cache_size: int = 256) -> None:
        self._cache_size = cache_size
        self._views: dict[PartitionKey, _PartitionView] = {}
        self._partials: dict[tuple[PartitionKey, TimeRange], tuple[int, PartialAggregate]] = {}
        self._windows: dict[tuple[Scope, TimeRange], tuple[_Signature, MetricWindow]] = {}
        self.stats = AggregatorStats()

    def attach(self, store: EventStore) -> None:
        """Subscribe to *store* so every committed change reaches :meth:`on_change`."""
        store.subscribe(self.on_change)

    # ------------------------------------------------------------------
    # Write path (runs under the store's partition lock)
    # ------------------------------------------------------------------

    def on_change(self, change: StoreChange) -> None:
        """Fold one committed store change into the partition indices."""
        key = change.partition
        view = self._views.get(key, _EMPTY_VIEW)
        position = index_key(change.current)

        if isinstance(change.current, Deployment):
            sample = DeploymentSample.of(change.current)
            deployments = (
                view.deployments.insert(position, sample)
                if change.previous is None
                else view.deployments.replace(position, sample)
            )
            self._views[key] = _PartitionView(view.version + 1, deployments, view.incidents)
        else:
            incident_sample = IncidentSample.of(change.current)
            incidents = (
                view.incidents.insert(position, incident_sample)
                if change.previous is None
                else view.incidents.replace(position, incident_sample)
            )
            self._views[key] = _PartitionView(view.version + 1, view.deployments, incidents)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def compute(self, time_range: TimeRange, scope: Scope = ALL_SCOPE) -> MetricWindow:
        """Return the :class:`MetricWindow` for *time_range* over *scope*.

        Side-effect free apart from cache bookkeeping; repeated calls without
        an intervening mutation return the identical window.
        """
        views = sorted(
            (key, view) for key, view in dict(self._views).items() if scope.matches(key)
        )
        signature: _Signature = tuple((key, view.version) for key, view in views)

        cached = self._windows.get((scope, time_range))
        if cached is not None and cached[0] == signature:
            self.stats.window_hits += 1
            return cached[1]

        self.stats.window_misses += 1
        partial = PartialAggregate.merge(
            self._partial(key, view, time_range) for key, view in views
        )
        window = partial.to_window(time_range, scope)
        self._windows = self._bounded(self._windows)
        self._windows[(scope, time_range)] = (signature, window)
        return window

    def _partial(
        self, key: PartitionKey, view: _PartitionView, time_range: TimeRange
    ) -> PartialAggregate:
        cached = self._partials.get((key, time_range))
        if cached is not None and cached[0] == view.version:
            return cached[1]

        partial = PartialAggregate.from_samples(
            view.deployments.range(time_range.start, time_range.end),
            view.incidents.range(time_range.start, time_range.end),
        )
        self._partials = self._bounded(self._partials)
        self._partials[(key, time_range)] = (view.version, partial)
        self.stats.partial_recomputes += 1
        logger.debug("compute: recomputed partition %s (version %d)", key, view.version)
        return partial

    def _bounded(self, cache: dict) -> dict:
        # Full caches are replaced wholesale, never evicted in place.
        if len(cache) >= self._cache_size:
            return {}
        return cache
