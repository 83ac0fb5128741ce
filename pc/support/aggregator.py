import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..adapters.query import Query
from ..core.constants import (
    AUTHORITY_ACTIONS_COLLECTION, AUTHORITY_ACTIONS_LIMIT, ISSUES_COLLECTION, ISSUES_LIMIT,
    SURFACE_ANCHORS_COLLECTION, SURFACE_ANCHORS_LIMIT,
)
from ..core.models import AnchorRecord, AuthorityAction, ImpactStats
from ..domain.categories import CategoryRegistry, DEFAULT_REGISTRY
from ..domain.impact import compute_impact_stats
from ..domain.normalize import action_from_dict, anchor_from_dict, parse_batch, surface_to_record
from ..utils.log import log_line
from ..utils.rate import rate_inc
from ..utils.tasks import Subscription

Observer = Callable[[ImpactStats], None]


def _newest(items: Sequence[Any], limit: int) -> Tuple[Any, ...]:
    return tuple(sorted(items, key=lambda x: x.timestamp, reverse=True)[:limit])


class LiveAggregator:
    """
    Live dashboard statistics fed by three independent subscriptions
    (issues, surface anchors, authority actions).

    Each source callback is the only writer of its own snapshot (an immutable
    tuple, newest first, capped). Every update triggers a full recompute from
    the latest three snapshots. There is no barrier between sources and no
    debounce, so a burst of updates means a burst of recomputes.
    """

    def __init__(
        self,
        backend: Any,
        registry: CategoryRegistry = DEFAULT_REGISTRY,
        issues_limit: int = ISSUES_LIMIT,
        surface_limit: int = SURFACE_ANCHORS_LIMIT,
        actions_limit: int = AUTHORITY_ACTIONS_LIMIT,
    ):
        self.backend = backend
        self.registry = registry
        self.issues_limit = issues_limit
        self.surface_limit = surface_limit
        self.actions_limit = actions_limit

        self._lock = threading.Lock()
        self._issues: Tuple[AnchorRecord, ...] = ()
        self._surface: Tuple[AnchorRecord, ...] = ()
        self._actions: Tuple[AuthorityAction, ...] = ()
        self._generation = 0
        self._published = 0
        self._latest: Optional[ImpactStats] = None
        self._observers: List[Observer] = []
        self._subs: List[Subscription] = []

    # =========================
    # LIFECYCLE
    # =========================

    def start(self) -> None:
        if self._subs:
            return
        self._subs = [
            self.backend.listen(ISSUES_COLLECTION, self.on_issues, Query.recent(self.issues_limit)),
            self.backend.listen(SURFACE_ANCHORS_COLLECTION, self.on_surface, Query.recent(self.surface_limit)),
            self.backend.listen(AUTHORITY_ACTIONS_COLLECTION, self.on_actions, Query.recent(self.actions_limit)),
        ]
        log_line("AGGREGATOR | started (3 sources)")

    def stop(self) -> None:
        subs, self._subs = self._subs, []
        for s in subs:
            s.unsubscribe()
        if subs:
            log_line("AGGREGATOR | stopped")

    @property
    def running(self) -> bool:
        return any(s.active for s in self._subs)

    # =========================
    # SOURCES
    # =========================

    def on_issues(self, docs: List[Dict[str, Any]]) -> None:
        records = parse_batch(docs, anchor_from_dict, source=ISSUES_COLLECTION)
        with self._lock:
            self._issues = _newest(records, self.issues_limit)
        self.recompute()

    def on_surface(self, docs: List[Dict[str, Any]]) -> None:
        records = parse_batch(docs, surface_to_record, source=SURFACE_ANCHORS_COLLECTION)
        with self._lock:
            self._surface = _newest(records, self.surface_limit)
        self.recompute()

    def on_actions(self, docs: List[Dict[str, Any]]) -> None:
        actions = parse_batch(docs, action_from_dict, source=AUTHORITY_ACTIONS_COLLECTION)
        with self._lock:
            self._actions = _newest(actions, self.actions_limit)
        self.recompute()

    def snapshots(self) -> Tuple[Tuple[AnchorRecord, ...], Tuple[AnchorRecord, ...], Tuple[AuthorityAction, ...]]:
        with self._lock:
            return self._issues, self._surface, self._actions

    # =========================
    # RECOMPUTE / PUBLISH
    # =========================

    def recompute(self) -> ImpactStats:
        with self._lock:
            issues, surface, actions = self._issues, self._surface, self._actions
            self._generation += 1
            gen = self._generation

        stats = compute_impact_stats(issues, surface, actions, registry=self.registry)
        rate_inc("recompute")

        with self._lock:
            # a slower recompute from older snapshots must not overwrite a newer one
            if gen < self._published:
                return stats
            self._published = gen
            self._latest = stats
            observers = list(self._observers)

        for fn in observers:
            try:
                fn(stats)
            except Exception as e:
                log_line(f"AGGREGATOR | observer failed | err={e!r}", "ERROR")
        return stats

    @property
    def latest(self) -> Optional[ImpactStats]:
        with self._lock:
            return self._latest

    def add_observer(self, fn: Observer) -> Callable[[], None]:
        """Register fn(stats); it also gets the current stats right away if any. Returns a remover."""
        with self._lock:
            self._observers.append(fn)
            current = self._latest

        def _remove() -> None:
            with self._lock:
                if fn in self._observers:
                    self._observers.remove(fn)

        if current is not None:
            fn(current)
        return _remove
