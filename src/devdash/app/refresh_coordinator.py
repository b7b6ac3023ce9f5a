"""Stale-while-revalidate coordination with single-flight refresh tickets.

Runs on the EventLoop thread. Fetch jobs run on the dispatcher and report
back through `post` as FetchResult messages; finish() is the only place a
fetched payload reaches the CacheStore.

// [LAW:single-enforcer] Sole owner of the per-key ticket table.
// [LAW:dataflow-not-control-flow] request_load always returns a message;
//   CacheHit.needs_refresh carries the revalidate decision as data.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from devdash.app.dispatch import DEADLINE_EXCEEDED, Dispatcher, Fetcher, FetchContext
from devdash.core.entry import CacheKey
from devdash.core.formatting import describe_error
from devdash.core.staleness import StalenessPolicy
from devdash.event_types import (
    AggregateComplete,
    AggregateResult,
    CacheHit,
    CacheMiss,
    FetchResult,
    LoadComplete,
    LoopMessage,
    RefreshComplete,
)
from devdash.io.cache_store import CacheStore

logger = logging.getLogger(__name__)


@dataclass
class RefreshTicket:
    """Bookkeeping for one outstanding fetch of one key."""

    key: CacheKey
    started_at: float
    generation: int
    deadline: float
    # True when created by, or upgraded by, a cache miss.
    blocking: bool = False


class RefreshCoordinator:
    """Decides hit/miss/revalidate and keeps at most one fetch in flight per key."""

    def __init__(
        self,
        store: CacheStore,
        fetcher: Fetcher,
        dispatcher: Dispatcher,
        post: Callable[[LoopMessage], None],
        policy: StalenessPolicy | None = None,
        *,
        fetch_timeout: float = 10.0,
        overdue_grace: float = 2.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._dispatcher = dispatcher
        self._post = post
        self._clock = clock
        self._policy = policy if policy is not None else StalenessPolicy(clock=clock)
        self._fetch_timeout = fetch_timeout
        self._overdue_grace = overdue_grace
        self._tickets: dict[CacheKey, RefreshTicket] = {}
        self._generation = 0
        # Keys in flight inside a fan-out aggregate -> requesting panel id.
        self._aggregate_keys: dict[CacheKey, str] = {}
        self._aggregate_blocking: set[CacheKey] = set()

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def policy(self) -> StalenessPolicy:
        return self._policy

    # -- Requests ------------------------------------------------------------

    def request_load(self, key: CacheKey) -> CacheHit | CacheMiss:
        entry = self._store.get(key)
        if entry is None:
            self._ensure_ticket(key, blocking=True)
            return CacheMiss(key)

        stale = self._policy.is_stale(entry, self._clock())
        if stale:
            self._ensure_ticket(key, blocking=False)
        return CacheHit(
            key=key,
            payload=entry.payload,
            cached_at=entry.cached_at,
            needs_refresh=stale,
        )

    def refresh(self, key: CacheKey) -> bool:
        """Explicit background refresh. False when a ticket was already outstanding."""
        if self.is_outstanding(key):
            return False
        self._ensure_ticket(key, blocking=key not in self._store)
        return True

    def invalidate(self, key: CacheKey) -> None:
        # Outstanding tickets are left alone; their result still lands (last-write-wins).
        self._store.invalidate(key)

    def invalidate_subject(self, subject_id: str) -> None:
        self._store.invalidate_subject(subject_id)

    def is_outstanding(self, key: CacheKey) -> bool:
        """True while a single fetch or an aggregate has key in flight."""
        return key in self._tickets or key in self._aggregate_keys

    def tickets(self) -> list[RefreshTicket]:
        return list(self._tickets.values())

    # -- Ticket lifecycle ----------------------------------------------------

    def _ensure_ticket(self, key: CacheKey, *, blocking: bool) -> RefreshTicket | None:
        if key in self._aggregate_keys:
            # Join the aggregate; absorb_aggregate reports this key's outcome.
            if blocking:
                self._aggregate_blocking.add(key)
            logger.debug("single-flight: %s in flight in aggregate %s", key, self._aggregate_keys[key])
            return None
        ticket = self._tickets.get(key)
        if ticket is not None:
            ticket.blocking = ticket.blocking or blocking
            logger.debug("single-flight: %s already outstanding (gen %d)", key, ticket.generation)
            return ticket

        self._generation += 1
        now = self._clock()
        ticket = RefreshTicket(
            key=key,
            started_at=now,
            generation=self._generation,
            deadline=now + self._fetch_timeout,
            blocking=blocking,
        )
        self._tickets[key] = ticket
        logger.debug(
            "dispatch %s fetch %s (gen %d)",
            "blocking" if blocking else "background",
            key,
            ticket.generation,
        )
        self._dispatcher.submit(lambda: self._run_fetch(ticket.key, ticket.generation, ticket.deadline))
        return ticket

    def _run_fetch(self, key: CacheKey, generation: int, deadline: float) -> None:
        """Worker-thread body. Never touches the store or the ticket table."""
        ctx = FetchContext(deadline=deadline, clock=self._clock)
        try:
            payload = self._fetcher.fetch(ctx, key.subject_id, key.data_kind)
        except Exception as exc:
            logger.debug("fetch %s failed: %s", key, exc)
            self._post(FetchResult(key=key, generation=generation, error=describe_error(exc)))
            return
        if ctx.expired():
            self._post(FetchResult(key=key, generation=generation, error=DEADLINE_EXCEEDED))
            return
        self._post(FetchResult(key=key, generation=generation, payload=payload))

    def finish(self, result: FetchResult) -> LoadComplete | RefreshComplete | None:
        """Apply a worker result. None when it belongs to a retired ticket."""
        ticket = self._tickets.get(result.key)
        if ticket is None or ticket.generation != result.generation:
            logger.debug("discarding late result for %s (gen %d)", result.key, result.generation)
            return None
        del self._tickets[result.key]

        if result.error:
            logger.debug("ticket %s failed: %s", result.key, result.error)
            payload = None
        else:
            payload = self._store.put(result.key, result.payload).payload
        completion = LoadComplete if ticket.blocking else RefreshComplete
        return completion(key=result.key, payload=payload, error=result.error)

    def expire_overdue(self, now: float | None = None) -> list[LoadComplete | RefreshComplete]:
        """Retire tickets past deadline + grace and report them as failures."""
        current = self._clock() if now is None else now
        expired: list[LoadComplete | RefreshComplete] = []
        for key, ticket in list(self._tickets.items()):
            if current <= ticket.deadline + self._overdue_grace:
                continue
            del self._tickets[key]
            logger.warning("fetch %s overdue after %.1fs; giving up", key, current - ticket.started_at)
            completion = LoadComplete if ticket.blocking else RefreshComplete
            expired.append(completion(key=key, error=DEADLINE_EXCEEDED))
        return expired

    # -- Aggregates ----------------------------------------------------------

    def claim_aggregate(self, request_id: str, keys: Sequence[CacheKey]) -> list[CacheKey]:
        """Reserve keys for a fan-out. Keys already in flight are left out of the result."""
        claimed: list[CacheKey] = []
        for key in keys:
            if self.is_outstanding(key):
                continue
            self._aggregate_keys[key] = request_id
            if key not in self._store:
                self._aggregate_blocking.add(key)
            claimed.append(key)
        return claimed

    def absorb_aggregate(self, result: AggregateResult) -> AggregateComplete:
        """Write every reachable subject's payload into the store and release its claims.

        The returned message carries one per-key completion per subject so
        other panels showing the same key see the aggregate's outcome.
        """
        completions: list[LoadComplete | RefreshComplete] = []
        for item in result.results:
            key = CacheKey(item.subject_id, result.data_kind)
            if self._aggregate_keys.get(key) == result.request_id:
                del self._aggregate_keys[key]
            blocking = key in self._aggregate_blocking
            self._aggregate_blocking.discard(key)
            completion = LoadComplete if blocking else RefreshComplete
            if item.reachable:
                payload = self._store.put(key, item.payload).payload
                completions.append(completion(key=key, payload=payload))
            else:
                completions.append(completion(key=key, error=item.error))
        # Claims for subjects the aggregate never reported are released too.
        for key, owner in list(self._aggregate_keys.items()):
            if owner == result.request_id and key.data_kind == result.data_kind:
                del self._aggregate_keys[key]
                self._aggregate_blocking.discard(key)
        return AggregateComplete(
            request_id=result.request_id,
            data_kind=result.data_kind,
            results=result.results,
            completions=tuple(completions),
        )
