"""Bounded-concurrency aggregate fetch over many subjects.

One coordinating job runs on the dispatcher; it fans out to a private pool
capped at `limit` simultaneous fetches, waits up to the overall deadline,
and posts a single AggregateResult. A subject that fails or misses its
deadline is reported unreachable without affecting the others.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait

from devdash.app.dispatch import DEADLINE_EXCEEDED, Dispatcher, Fetcher, FetchContext
from devdash.core.entry import DataKind
from devdash.core.formatting import describe_error
from devdash.event_types import AggregateResult, LoopMessage, SubjectResult

logger = logging.getLogger(__name__)

UNREACHABLE = "device unreachable"


class FanOutCollector:
    """Runs aggregate fetches, at most one outstanding per request id."""

    def __init__(
        self,
        fetcher: Fetcher,
        dispatcher: Dispatcher,
        post: Callable[[LoopMessage], None],
        *,
        limit: int = 3,
        fetch_timeout: float = 10.0,
        deadline: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._fetcher = fetcher
        self._dispatcher = dispatcher
        self._post = post
        self._limit = max(1, limit)
        self._fetch_timeout = fetch_timeout
        self._deadline = deadline
        self._clock = clock
        self._lock = threading.Lock()
        self._outstanding: set[str] = set()

    @property
    def limit(self) -> int:
        return self._limit

    def is_outstanding(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._outstanding

    def collect(self, request_id: str, subject_ids: Sequence[str], data_kind: DataKind) -> bool:
        """Start an aggregate fetch. False when request_id is already in flight."""
        with self._lock:
            if request_id in self._outstanding:
                return False
            self._outstanding.add(request_id)
        subjects = tuple(dict.fromkeys(subject_ids))
        self._dispatcher.submit(lambda: self._run(request_id, subjects, data_kind))
        return True

    def _run(self, request_id: str, subjects: tuple[str, ...], data_kind: DataKind) -> None:
        started = self._clock()
        try:
            results = self._gather(subjects, data_kind)
        finally:
            with self._lock:
                self._outstanding.discard(request_id)
        unreachable = sum(1 for r in results if not r.reachable)
        logger.debug(
            "aggregate %s/%s: %d subjects, %d unreachable",
            request_id,
            data_kind.value,
            len(results),
            unreachable,
        )
        self._post(
            AggregateResult(
                request_id=request_id,
                data_kind=data_kind,
                results=results,
                started_at=started,
            )
        )

    def _gather(self, subjects: tuple[str, ...], data_kind: DataKind) -> tuple[SubjectResult, ...]:
        if not subjects:
            return ()
        pool = ThreadPoolExecutor(
            max_workers=min(self._limit, len(subjects)), thread_name_prefix="devdash-fanout"
        )
        try:
            futures = {
                subject: pool.submit(self._fetch_one, subject, data_kind) for subject in subjects
            }
            wait(futures.values(), timeout=self._deadline)
            results = []
            for subject in subjects:
                future = futures[subject]
                if future.done():
                    results.append(future.result())
                else:
                    results.append(SubjectResult(subject_id=subject, error=UNREACHABLE))
            return tuple(results)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def _fetch_one(self, subject_id: str, data_kind: DataKind) -> SubjectResult:
        # The per-fetch deadline starts when a pool slot picks the subject up.
        ctx = FetchContext(deadline=self._clock() + self._fetch_timeout, clock=self._clock)
        try:
            payload = self._fetcher.fetch(ctx, subject_id, data_kind)
        except Exception as exc:
            return SubjectResult(subject_id=subject_id, error=describe_error(exc))
        if ctx.expired():
            return SubjectResult(subject_id=subject_id, error=DEADLINE_EXCEEDED)
        return SubjectResult(subject_id=subject_id, payload=payload)
