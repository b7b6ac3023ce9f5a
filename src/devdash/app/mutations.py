"""Off-loop form saves reported back as MutationComplete."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from devdash.app.dispatch import Dispatcher, FetchContext, Saver
from devdash.core.formatting import describe_error
from devdash.event_types import LoopMessage, MutationComplete

logger = logging.getLogger(__name__)


class MutationDispatcher:
    def __init__(
        self,
        saver: Saver,
        dispatcher: Dispatcher,
        post: Callable[[LoopMessage], None],
        *,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._saver = saver
        self._dispatcher = dispatcher
        self._post = post
        self._timeout = timeout
        self._clock = clock

    def submit(self, panel_id: str, subject_id: str, form_id: str, values: dict) -> None:
        snapshot = dict(values)
        deadline = self._clock() + self._timeout
        self._dispatcher.submit(
            lambda: self._run(panel_id, subject_id, form_id, snapshot, deadline)
        )

    def _run(self, panel_id: str, subject_id: str, form_id: str, values: dict, deadline: float) -> None:
        ctx = FetchContext(deadline=deadline, clock=self._clock)
        error = ""
        try:
            self._saver.save(ctx, subject_id, form_id, values)
        except Exception as exc:
            error = describe_error(exc)
            logger.info("save %s/%s failed: %s", subject_id, form_id, error)
        self._post(
            MutationComplete(panel_id=panel_id, subject_id=subject_id, form_id=form_id, error=error)
        )
