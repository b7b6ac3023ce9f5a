"""Off-loop execution of device I/O.

BLOCKING work (fetchers, savers) runs here, never on the EventLoop thread.
Results come back only as Mailbox messages.

// [LAW:locality-or-seam] Fetcher/Saver protocols are the only seam to device transport.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Protocol

from devdash.core.entry import DataKind

logger = logging.getLogger(__name__)

DEADLINE_EXCEEDED = "deadline exceeded"


@dataclass(frozen=True)
class FetchContext:
    """Deadline carried by every dispatched call."""

    deadline: float
    clock: Callable[[], float] = time.time

    def remaining(self) -> float:
        return max(0.0, self.deadline - self.clock())

    def expired(self) -> bool:
        return self.clock() >= self.deadline


class Fetcher(Protocol):
    """Device data source. Raises on failure, must honour ctx.deadline, never retries."""

    def fetch(self, ctx: FetchContext, subject_id: str, data_kind: DataKind) -> object: ...


class Saver(Protocol):
    """Device mutation sink. Raises on failure."""

    def save(self, ctx: FetchContext, subject_id: str, form_id: str, values: dict) -> None: ...


class Dispatcher(Protocol):
    def submit(self, job: Callable[[], None]) -> object: ...


class FetchDispatcher:
    """Thread-pool executor for fetch/save jobs."""

    def __init__(self, max_workers: int = 8) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="devdash-io"
        )
        self._closed = False

    def submit(self, job: Callable[[], None]) -> Future | None:
        if self._closed:
            logger.debug("dispatcher closed; dropping job %r", job)
            return None
        future = self._executor.submit(job)
        future.add_done_callback(_log_job_crash)
        return future

    def shutdown(self, wait: bool = False) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)


def _log_job_crash(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("io job crashed: %s", exc, exc_info=exc)
