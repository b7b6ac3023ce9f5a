"""Tests for cache entry types, the TTL table and staleness decisions."""

import pytest

from devdash.core.entry import DEFAULT_TTLS, CacheKey, DataKind, Entry, make_key
from devdash.core.formatting import describe_error, format_age
from devdash.core.staleness import FALLBACK_TTL, StalenessPolicy, is_stale


class TestCacheKey:
    def test_make_key_coerces_string_kind(self):
        key = make_key("dev-a", "energy")
        assert key == CacheKey("dev-a", DataKind.ENERGY)
        assert str(key) == "dev-a/energy"

    def test_make_key_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            make_key("dev-a", "toaster")

    def test_keys_are_hashable_and_distinct_per_kind(self):
        keys = {make_key("dev-a", DataKind.ENERGY), make_key("dev-a", DataKind.INPUTS)}
        assert len(keys) == 2

    def test_entry_key_and_age(self):
        entry = Entry("dev-a", DataKind.SCENES, {"items": []}, cached_at=100.0)
        assert entry.key == CacheKey("dev-a", DataKind.SCENES)
        assert entry.age(130.0) == 30.0
        assert entry.age(50.0) == 0.0


class TestTtlTable:
    def test_every_kind_has_a_ttl(self):
        assert set(DEFAULT_TTLS) == set(DataKind)

    @pytest.mark.parametrize(
        "kind, seconds",
        [
            (DataKind.DEVICE_INFO, 24 * 3600),
            (DataKind.COMPONENTS, 24 * 3600),
            (DataKind.SYSTEM, 3600),
            (DataKind.WIFI, 1800),
            (DataKind.INPUTS, 600),
            (DataKind.SCENES, 300),
            (DataKind.ENERGY, 30),
        ],
    )
    def test_default_ttls(self, kind, seconds):
        assert DEFAULT_TTLS[kind] == seconds


class TestIsStale:
    def test_stale_only_when_strictly_older_than_ttl(self):
        entry = Entry("dev-a", DataKind.ENERGY, 1, cached_at=0.0)
        assert not is_stale(entry, 30.0, 30.0)
        assert is_stale(entry, 30.0, 30.001)

    def test_policy_uses_kind_ttl(self, clock):
        policy = StalenessPolicy(clock=clock)
        energy = Entry("dev-a", DataKind.ENERGY, 1, cached_at=clock.now)
        info = Entry("dev-a", DataKind.DEVICE_INFO, 1, cached_at=clock.now)
        clock.advance(60)
        assert policy.is_stale(energy)
        assert not policy.is_stale(info)

    def test_overrides_accept_strings(self, clock):
        policy = StalenessPolicy({"energy": 120}, clock=clock)
        assert policy.ttl_for(DataKind.ENERGY) == 120.0
        entry = Entry("dev-a", DataKind.ENERGY, 1, cached_at=clock.now)
        clock.advance(60)
        assert not policy.is_stale(entry)

    def test_explicit_now_wins_over_clock(self, clock):
        policy = StalenessPolicy(clock=clock)
        entry = Entry("dev-a", DataKind.ENERGY, 1, cached_at=clock.now)
        assert policy.is_stale(entry, now=clock.now + 31)

    def test_fallback_ttl_is_five_minutes(self):
        assert FALLBACK_TTL == 300.0


class TestFormatting:
    @pytest.mark.parametrize(
        "seconds, expected",
        [
            (None, "never"),
            (0, "just now"),
            (42, "42s ago"),
            (300, "5m ago"),
            (3 * 3600 + 5, "3h ago"),
            (2 * 86400, "2d ago"),
        ],
    )
    def test_format_age(self, seconds, expected):
        assert format_age(seconds) == expected

    def test_describe_error_includes_type_and_message(self):
        assert describe_error(TimeoutError("no answer")) == "TimeoutError: no answer"

    def test_describe_error_without_message(self):
        assert describe_error(ConnectionResetError()) == "ConnectionResetError"
