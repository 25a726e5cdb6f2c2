"""
Display order reconciliation for live list snapshots.

The remote store has no notion of a per-user list order; each device keeps
its own under ``listOrder_<userID>``. Every inbound snapshot is merged with
that remembered order here. While the user is dragging lists around, inbound
snapshots are held back so that a snapshot produced before the move cannot
snap the presentation back to the old order.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .documents import parse_list_snapshot
from .models import ListItem
from .preferences import PreferenceStore, clear_list_order, load_list_order, save_list_order
from .store import DocumentSnapshot

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY = 0.5


@dataclass(frozen=True)
class ReconcileResult:
    """Ordered entities for presentation plus the display order to remember."""

    ordered: Tuple[ListItem, ...] = ()
    order: Tuple[str, ...] = ()

    @property
    def ids(self) -> List[str]:
        return [item.id for item in self.ordered]


# PUBLIC_INTERFACE
def reconcile(
    live_entities: Iterable[ListItem],
    cached_order: Optional[Sequence[str]],
    reordering: bool = False,
    previous: Optional[ReconcileResult] = None,
) -> ReconcileResult:
    """
    Merge a live snapshot with the remembered display order.

    - While ``reordering`` the snapshot is ignored and ``previous`` is returned as-is.
    - Entities are deduplicated by id, the first one seen wins.
    - Entities found in ``cached_order`` come first, in that order; the rest
      follow in snapshot order.
    - The returned order drops ids that are no longer live and appends live
      ids that had no recorded position.
    """
    if reordering:
        if previous is not None:
            return previous
        return ReconcileResult(ordered=(), order=tuple(cached_order or ()))

    unique: List[ListItem] = []
    seen: Set[str] = set()
    for entity in live_entities:
        if entity.id in seen:
            logger.debug("Dropping duplicate list %s from snapshot", entity.id)
            continue
        seen.add(entity.id)
        unique.append(entity)

    positions: Dict[str, int] = {}
    for index, list_id in enumerate(cached_order or ()):
        positions.setdefault(list_id, index)

    # sorted() is stable, so unknown ids keep their snapshot order.
    ordered = sorted(unique, key=lambda e: positions.get(e.id, math.inf))

    order: List[str] = []
    for list_id in cached_order or ():
        if list_id in seen and list_id not in order:
            order.append(list_id)
    known = set(order)
    order.extend(e.id for e in ordered if e.id not in known)

    return ReconcileResult(ordered=tuple(ordered), order=tuple(order))


class OrderReconciler:
    """
    Owns the display order state of one signed in user: the in-memory order
    cache, the reorder suppression flag and the last reconciled result.

    ``commit_reorder`` schedules its settle timer on the running event loop.
    """

    def __init__(self, preferences: PreferenceStore, settle_delay: float = DEFAULT_SETTLE_DELAY) -> None:
        self._prefs = preferences
        self._settle_delay = settle_delay
        self._user_id: Optional[str] = None
        self._order_cache: Optional[List[str]] = None
        self._reordering = False
        self._last: Optional[ReconcileResult] = None
        self._pending: Optional[List[DocumentSnapshot]] = None
        self._settle_handle: Optional[asyncio.TimerHandle] = None
        # Called with the result of a snapshot replayed after the settle delay.
        self.on_settled: Optional[Callable[[ReconcileResult], None]] = None

    @property
    def reordering(self) -> bool:
        return self._reordering

    @property
    def order_cache(self) -> Optional[Tuple[str, ...]]:
        return None if self._order_cache is None else tuple(self._order_cache)

    @property
    def last_result(self) -> Optional[ReconcileResult]:
        return self._last

    def load(self, user_id: str) -> None:
        """Bind to ``user_id`` and seed the in-memory cache from local storage."""
        if self._user_id != user_id:
            self._cancel_settle()
            self._order_cache = None
            self._last = None
            self._pending = None
            self._reordering = False
        self._user_id = user_id
        if self._order_cache is None:
            self._order_cache = load_list_order(self._prefs, user_id)

    def apply_snapshot(self, documents: Sequence[DocumentSnapshot]) -> Optional[ReconcileResult]:
        """
        Reconcile a raw snapshot. Returns None while a reorder is in flight;
        the latest held back snapshot is replayed once the flag clears.
        """
        if self._reordering:
            self._pending = list(documents)
            logger.debug("Holding back snapshot of %d lists during reorder", len(documents))
            return None
        return self.apply_entities(parse_list_snapshot(documents))

    def apply_entities(self, entities: Iterable[ListItem]) -> Optional[ReconcileResult]:
        if self._reordering:
            return None

        source = self._order_cache
        if source is None and self._user_id:
            source = load_list_order(self._prefs, self._user_id)

        result = reconcile(entities, source, reordering=False, previous=self._last)
        if source is None or list(result.order) != list(source):
            self._order_cache = list(result.order)
            if self._user_id:
                save_list_order(self._prefs, self._user_id, self._order_cache)
        self._last = result
        return result

    def begin_reorder(self) -> None:
        """Suppress inbound snapshots until a commit has settled."""
        self._reordering = True
        self._cancel_settle()

    def commit_reorder(
        self,
        new_order: Sequence[str],
        user_id: str,
        entities: Optional[Iterable[ListItem]] = None,
    ) -> ReconcileResult:
        """
        Remember ``new_order`` in memory and on disk, then clear the
        suppression flag after the settle delay. Returns ``entities`` (or the
        last reconciled entities) in the new order.
        """
        self._reordering = True
        self._user_id = user_id
        self._order_cache = list(new_order)
        save_list_order(self._prefs, user_id, self._order_cache)

        if entities is None:
            entities = self._last.ordered if self._last is not None else ()
        self._last = reconcile(entities, self._order_cache)

        self._cancel_settle()
        loop = asyncio.get_running_loop()
        self._settle_handle = loop.call_later(self._settle_delay, self._settle)
        return self._last

    def forget(self, list_ids: Iterable[str], user_id: str) -> None:
        """Drop ``list_ids`` from the cached and stored order and from the last result."""
        removed = set(list_ids)
        if self._order_cache is not None:
            self._order_cache = [i for i in self._order_cache if i not in removed]
        stored = load_list_order(self._prefs, user_id)
        if stored is not None:
            save_list_order(self._prefs, user_id, [i for i in stored if i not in removed])
        if self._last is not None:
            self._last = ReconcileResult(
                ordered=tuple(e for e in self._last.ordered if e.id not in removed),
                order=tuple(i for i in self._last.order if i not in removed),
            )

    def reset(self, user_id: Optional[str] = None) -> None:
        """Drop all state; with ``user_id`` also erase the stored order."""
        self._cancel_settle()
        self._order_cache = None
        self._last = None
        self._pending = None
        self._reordering = False
        if user_id:
            clear_list_order(self._prefs, user_id)

    def close(self) -> None:
        self._cancel_settle()

    def _cancel_settle(self) -> None:
        if self._settle_handle is not None:
            self._settle_handle.cancel()
            self._settle_handle = None

    def _settle(self) -> None:
        self._settle_handle = None
        self._reordering = False
        pending, self._pending = self._pending, None
        if pending is None:
            return
        result = self.apply_snapshot(pending)
        if result is not None and self.on_settled is not None:
            self.on_settled(result)
