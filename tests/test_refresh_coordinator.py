"""Tests for stale-while-revalidate loads and single-flight refresh tickets."""

from devdash.app.dispatch import DEADLINE_EXCEEDED
from devdash.core.entry import CacheKey, DataKind
from devdash.event_types import (
    AggregateResult,
    CacheHit,
    CacheMiss,
    FetchResult,
    LoadComplete,
    RefreshComplete,
    SubjectResult,
)

KEY = CacheKey("dev-a", DataKind.INPUTS)


def _run_and_finish(coordinator, dispatcher, posted):
    dispatcher.run_all()
    results = posted.of_type(FetchResult)
    posted.drain()
    return [coordinator.finish(r) for r in results]


class TestMissPath:
    def test_miss_dispatches_one_blocking_fetch(self, coordinator, dispatcher):
        msg = coordinator.request_load(KEY)
        assert msg == CacheMiss(KEY)
        assert len(dispatcher) == 1
        (ticket,) = coordinator.tickets()
        assert ticket.blocking
        assert coordinator.is_outstanding(KEY)

    def test_concurrent_misses_share_one_fetch(self, coordinator, dispatcher, fetcher, posted):
        for _ in range(5):
            assert isinstance(coordinator.request_load(KEY), CacheMiss)
        assert len(dispatcher) == 1
        (completion,) = _run_and_finish(coordinator, dispatcher, posted)
        assert fetcher.count("dev-a", DataKind.INPUTS) == 1
        assert isinstance(completion, LoadComplete)
        assert completion.ok

    def test_success_populates_store_and_clears_ticket(self, coordinator, dispatcher, fetcher, posted, store):
        fetcher.set("dev-a", DataKind.INPUTS, {"items": ["in0"]})
        coordinator.request_load(KEY)
        (completion,) = _run_and_finish(coordinator, dispatcher, posted)
        assert completion.payload == {"items": ["in0"]}
        assert store.get(KEY).payload == {"items": ["in0"]}
        assert not coordinator.is_outstanding(KEY)

    def test_failure_leaves_store_untouched_and_allows_retry(self, coordinator, dispatcher, fetcher, posted, store):
        fetcher.set("dev-a", DataKind.INPUTS, ConnectionError("boom"))
        coordinator.request_load(KEY)
        (completion,) = _run_and_finish(coordinator, dispatcher, posted)
        assert isinstance(completion, LoadComplete)
        assert completion.error == "ConnectionError: boom"
        assert store.get(KEY) is None
        assert not coordinator.is_outstanding(KEY)

        coordinator.request_load(KEY)
        assert len(dispatcher) == 1


class TestHitPath:
    def test_fresh_hit_fetches_nothing(self, coordinator, dispatcher, store, fetcher):
        store.put(KEY, {"items": [1]})
        msg = coordinator.request_load(KEY)
        assert isinstance(msg, CacheHit)
        assert msg.payload == {"items": [1]}
        assert not msg.needs_refresh
        assert len(dispatcher) == 0
        assert fetcher.calls == []

    def test_stale_hit_returns_old_payload_and_refreshes_once(self, coordinator, dispatcher, store, clock, posted):
        store.put(KEY, "old")
        clock.advance(601)
        first = coordinator.request_load(KEY)
        second = coordinator.request_load(KEY)
        assert first.payload == "old" and first.needs_refresh
        assert second.payload == "old"
        assert len(dispatcher) == 1
        assert not coordinator.tickets()[0].blocking

        (completion,) = _run_and_finish(coordinator, dispatcher, posted)
        assert isinstance(completion, RefreshComplete)
        assert store.get(KEY).payload != "old"
        assert store.get(KEY).cached_at == clock.now

    def test_failed_refresh_keeps_stale_entry(self, coordinator, dispatcher, store, fetcher, clock, posted):
        store.put(KEY, "old")
        clock.advance(601)
        fetcher.set("dev-a", DataKind.INPUTS, TimeoutError("slow"))
        coordinator.request_load(KEY)
        (completion,) = _run_and_finish(coordinator, dispatcher, posted)
        assert isinstance(completion, RefreshComplete)
        assert not completion.ok
        assert store.get(KEY).payload == "old"

    def test_miss_upgrades_background_ticket_to_blocking(self, coordinator, dispatcher, store, clock, posted):
        store.put(KEY, "old")
        clock.advance(601)
        coordinator.request_load(KEY)
        coordinator.invalidate(KEY)
        assert isinstance(coordinator.request_load(KEY), CacheMiss)
        assert len(dispatcher) == 1
        (completion,) = _run_and_finish(coordinator, dispatcher, posted)
        assert isinstance(completion, LoadComplete)


class TestExplicitRefresh:
    def test_refresh_is_single_flight(self, coordinator, dispatcher, store):
        store.put(KEY, 1)
        assert coordinator.refresh(KEY)
        assert not coordinator.refresh(KEY)
        assert len(dispatcher) == 1

    def test_invalidate_forces_next_load_to_miss(self, coordinator, store, dispatcher):
        store.put(KEY, 1)
        coordinator.invalidate(KEY)
        assert isinstance(coordinator.request_load(KEY), CacheMiss)
        assert len(dispatcher) == 1

    def test_invalidate_subject(self, coordinator, store):
        store.put(KEY, 1)
        store.put(CacheKey("dev-a", DataKind.SCENES), 2)
        store.put(CacheKey("dev-b", DataKind.SCENES), 3)
        coordinator.invalidate_subject("dev-a")
        assert store.keys() == [CacheKey("dev-b", DataKind.SCENES)]


class TestGenerations:
    def test_result_with_wrong_generation_is_discarded(self, coordinator, store):
        coordinator.request_load(KEY)
        (ticket,) = coordinator.tickets()
        stray = FetchResult(key=KEY, generation=ticket.generation + 100, payload="stray")
        assert coordinator.finish(stray) is None
        assert coordinator.is_outstanding(KEY)
        assert store.get(KEY) is None

    def test_result_without_ticket_is_discarded(self, coordinator):
        assert coordinator.finish(FetchResult(key=KEY, generation=1, payload=1)) is None

    def test_overdue_ticket_expires_and_late_result_is_dropped(self, coordinator, dispatcher, clock, posted, store):
        coordinator.request_load(KEY)
        clock.advance(11)
        assert coordinator.expire_overdue() == []
        clock.advance(2)
        (expired,) = coordinator.expire_overdue()
        assert isinstance(expired, LoadComplete)
        assert expired.error == DEADLINE_EXCEEDED
        assert not coordinator.is_outstanding(KEY)

        # The worker eventually reports; its generation is retired.
        assert _run_and_finish(coordinator, dispatcher, posted) == [None]
        assert store.get(KEY) is None

    def test_fetch_returning_after_deadline_is_a_failure(self, coordinator, dispatcher, fetcher, clock, posted, store):
        def slow(ctx):
            clock.advance(15)
            return "too late"

        fetcher.set("dev-a", DataKind.INPUTS, slow)
        coordinator.request_load(KEY)
        (completion,) = _run_and_finish(coordinator, dispatcher, posted)
        assert completion.error == DEADLINE_EXCEEDED
        assert store.get(KEY) is None


def test_absorb_aggregate_stores_only_reachable(coordinator, store):
    result = AggregateResult(
        request_id="fleet",
        data_kind=DataKind.ENERGY,
        results=(
            SubjectResult("dev-a", payload={"power_w": 5}),
            SubjectResult("dev-b", error="device unreachable"),
        ),
    )
    complete = coordinator.absorb_aggregate(result)
    assert complete.request_id == "fleet"
    assert complete.unreachable == ("dev-b",)
    assert store.get(CacheKey("dev-a", DataKind.ENERGY)).payload == {"power_w": 5}
    assert store.get(CacheKey("dev-b", DataKind.ENERGY)) is None


class TestAggregateClaims:
    ENERGY_A = CacheKey("dev-a", DataKind.ENERGY)
    ENERGY_B = CacheKey("dev-b", DataKind.ENERGY)

    def test_claim_skips_keys_with_outstanding_ticket(self, coordinator):
        coordinator.request_load(self.ENERGY_A)
        claimed = coordinator.claim_aggregate("fleet", [self.ENERGY_A, self.ENERGY_B])
        assert claimed == [self.ENERGY_B]
        assert coordinator.is_outstanding(self.ENERGY_B)

    def test_load_joins_claimed_key_without_fetching(self, coordinator, dispatcher, fetcher):
        coordinator.claim_aggregate("fleet", [self.ENERGY_A])
        assert coordinator.request_load(self.ENERGY_A) == CacheMiss(self.ENERGY_A)
        assert not coordinator.refresh(self.ENERGY_A)
        assert len(dispatcher) == 0
        assert coordinator.tickets() == []
        assert fetcher.calls == []

    def test_absorb_releases_claims_and_reports_per_key(self, coordinator, store):
        coordinator.claim_aggregate("fleet", [self.ENERGY_A, self.ENERGY_B])
        coordinator.request_load(self.ENERGY_A)
        complete = coordinator.absorb_aggregate(
            AggregateResult(
                request_id="fleet",
                data_kind=DataKind.ENERGY,
                results=(
                    SubjectResult("dev-a", payload={"power_w": 3}),
                    SubjectResult("dev-b", error="device unreachable"),
                ),
            )
        )
        loaded, failed = complete.completions
        assert loaded == LoadComplete(key=self.ENERGY_A, payload={"power_w": 3})
        assert failed.key == self.ENERGY_B
        assert failed.error == "device unreachable"
        assert not coordinator.is_outstanding(self.ENERGY_A)
        assert not coordinator.is_outstanding(self.ENERGY_B)

    def test_absorb_reports_refresh_for_keys_that_had_data(self, coordinator, store):
        store.put(self.ENERGY_A, {"power_w": 1})
        coordinator.claim_aggregate("fleet", [self.ENERGY_A])
        complete = coordinator.absorb_aggregate(
            AggregateResult(
                request_id="fleet",
                data_kind=DataKind.ENERGY,
                results=(SubjectResult("dev-a", payload={"power_w": 2}),),
            )
        )
        assert complete.completions == (RefreshComplete(key=self.ENERGY_A, payload={"power_w": 2}),)
