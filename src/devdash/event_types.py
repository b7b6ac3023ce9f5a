"""Message vocabulary consumed and produced by the EventLoop.

// [LAW:one-source-of-truth] The class IS the type; no message_type string field.
// [LAW:dataflow-not-control-flow] Failures travel as `error` strings on
//   completion messages; an empty string means success.

This module is STABLE. Safe for `from` imports everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass

from devdash.core.entry import CacheKey, DataKind


# ─── Base ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LoopMessage:
    """Base class for everything that travels through the Mailbox."""


# ─── Cache lookups (produced synchronously by RefreshCoordinator.request_load) ─


@dataclass(frozen=True)
class CacheHit(LoopMessage):
    """A cached entry exists; needs_refresh means a background fetch was requested."""

    key: CacheKey
    payload: object
    cached_at: float
    needs_refresh: bool = False


@dataclass(frozen=True)
class CacheMiss(LoopMessage):
    """No entry for key; a blocking fetch is (or already was) dispatched."""

    key: CacheKey


# ─── Completions ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class _Completion(LoopMessage):
    key: CacheKey
    payload: object = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass(frozen=True)
class LoadComplete(_Completion):
    """Blocking fetch (cache-miss path) finished."""


@dataclass(frozen=True)
class RefreshComplete(_Completion):
    """Background refresh (stale-hit path) finished."""


@dataclass(frozen=True)
class FetchResult(LoopMessage):
    """Raw worker output; only RefreshCoordinator.finish interprets it."""

    key: CacheKey
    generation: int
    payload: object = None
    error: str = ""


# ─── Aggregate fan-out ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SubjectResult:
    """One subject's outcome inside an aggregate fetch."""

    subject_id: str
    payload: object = None
    error: str = ""

    @property
    def reachable(self) -> bool:
        return not self.error


@dataclass(frozen=True)
class AggregateResult(LoopMessage):
    """Raw fan-out output, absorbed into the CacheStore by the coordinator."""

    request_id: str
    data_kind: DataKind
    results: tuple[SubjectResult, ...] = ()
    started_at: float = 0.0


@dataclass(frozen=True)
class AggregateComplete(LoopMessage):
    """Fan-out outcome routed to the panel that requested it."""

    request_id: str
    data_kind: DataKind
    results: tuple[SubjectResult, ...] = ()
    # Per-key outcomes for the other panels that show the same keys.
    completions: tuple[_Completion, ...] = ()

    @property
    def unreachable(self) -> tuple[str, ...]:
        return tuple(r.subject_id for r in self.results if not r.reachable)


# ─── Mutations ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MutationComplete(LoopMessage):
    """An off-thread save finished for panel_id's form."""

    panel_id: str
    subject_id: str
    form_id: str
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


# ─── Control ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class InvalidateMsg(LoopMessage):
    """Drop the cached entry for key; outstanding tickets are untouched."""

    key: CacheKey


@dataclass(frozen=True)
class TickMsg(LoopMessage):
    """Periodic animation/housekeeping tick."""

    at: float = 0.0


@dataclass(frozen=True)
class KeyInput(LoopMessage):
    """A user keystroke, named the way Textual names keys ("down", "pagedown", "j")."""

    key: str
    character: str | None = None


@dataclass(frozen=True)
class ShutdownMsg(LoopMessage):
    """Stops EventLoop.run after everything queued before it is processed."""

    reason: str = ""
