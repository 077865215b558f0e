"""Tests for the TTL cache."""

import pytest

from relief_recs.errors import CacheUnavailable
from relief_recs.recommendations.cache import (
    InMemoryCacheBackend,
    NullCacheBackend,
    RecommendationCache,
    make_key,
)
from tests.conftest import FakeClock


class BrokenBackend:
    """Backend whose every operation raises."""

    evictions = 0

    def _fail(self, *args, **kwargs):
        raise ConnectionError("cache store unreachable")

    get = set = delete = clear = purge_expired = size = _fail


class UnavailableBackend(InMemoryCacheBackend):
    """Backend that reports an outage on reads and writes with the typed error."""

    def get(self, key):
        raise CacheUnavailable("redis down")

    def set(self, key, entry):
        raise CacheUnavailable("redis down")


class TestMakeKey:
    def test_normalizes_case_whitespace_and_order(self):
        a = make_key("search", term="Earthquake ", causes=["Refugees", "disaster-relief"], take=50)
        b = make_key("search", take=50, causes=["disaster-relief", "refugees"], term="earthquake")

        assert a == b
        assert a.startswith("search:")

    def test_none_and_empty_values_dropped(self):
        assert make_key("browse", cause="water", page=None) == make_key("browse", cause="water")
        assert make_key("search", causes=["", None, "water"]) == make_key("search", causes=["water"])

    def test_duplicates_collapse(self):
        assert make_key("search", causes=["water", "Water"]) == make_key("search", causes=["water"])

    def test_distinct_parameters_differ(self):
        assert make_key("search", term="flood") != make_key("search", term="earthquake")
        assert make_key("search", term="flood") != make_key("browse", term="flood")

    def test_nested_models(self, turkey_entities):
        reordered = turkey_entities.model_copy(update={"affected_groups": ["Families"]})

        assert make_key("recommendation", entities=turkey_entities) == make_key(
            "recommendation", entities=reordered
        )


class TestGetSet:
    def test_miss_then_hit(self, cache):
        assert cache.get("search", "k") is None

        cache.set("search", "k", ["a", "b"])

        assert cache.get("search", "k") == ("a", "b")

    def test_lists_stored_as_tuples(self, cache):
        value = ["a"]
        cache.set("search", "k", value)
        value.append("b")

        assert cache.get("search", "k") == ("a",)

    def test_empty_result_is_a_hit(self, cache):
        cache.set("search", "k", [])

        assert cache.get("search", "k") == ()
        assert cache.stats()["hits"] == 1

    def test_ttl_per_namespace(self, cache, clock):
        cache.set("search", "s", "value")
        cache.set("details", "d", "value")

        clock.advance(6 * 60 * 60 + 1)

        assert cache.get("search", "s") is None
        assert cache.get("details", "d") == "value"

    def test_explicit_ttl(self, cache, clock):
        cache.set("search", "k", "value", ttl=10)
        clock.advance(9)
        assert cache.get("search", "k") == "value"
        clock.advance(2)
        assert cache.get("search", "k") is None

    def test_ttl_overrides(self, clock):
        cache = RecommendationCache(ttls={"recommendation": 5}, clock=clock)
        cache.set("recommendation", "k", "value")
        clock.advance(5)

        assert cache.get("recommendation", "k") is None

    def test_expired_entry_removed(self, cache, clock):
        cache.set("search", "k", "value", ttl=1)
        clock.advance(2)
        cache.get("search", "k")

        assert cache.stats()["size"] == 0

    def test_delete(self, cache):
        cache.set("details", "k", "value")

        assert cache.delete("details", "k") is True
        assert cache.delete("details", "k") is False
        assert cache.get("details", "k") is None


class TestGetOrLoad:
    def test_loads_once(self, cache):
        calls = []

        def loader():
            calls.append(1)
            return ["org"]

        assert cache.get_or_load("search", "k", loader) == ("org",)
        assert cache.get_or_load("search", "k", loader) == ("org",)
        assert len(calls) == 1

    def test_loader_error_not_cached(self, cache):
        def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            cache.get_or_load("search", "k", failing)

        assert cache.get_or_load("search", "k", lambda: ["ok"]) == ("ok",)


class TestStats:
    def test_counters_and_hit_rate(self, cache):
        cache.set("search", "k", "v")
        cache.get("search", "k")
        cache.get("search", "k")
        cache.get("search", "other")
        cache.get("details", "missing")

        stats = cache.stats()

        assert stats["hits"] == 2
        assert stats["misses"] == 2
        assert stats["sets"] == 1
        assert stats["size"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["namespaces"]["search"]["hit_rate"] == pytest.approx(0.6667)
        assert stats["namespaces"]["details"]["size"] == 0

    def test_empty_hit_rate(self, cache):
        assert cache.stats()["hit_rate"] == 0.0

    def test_clear_resets_everything(self, cache):
        cache.set("search", "k", "v")
        cache.get("search", "k")

        cache.clear()
        stats = cache.stats()

        assert cache.get("search", "k") is None
        assert stats["hits"] == 0
        assert stats["size"] == 0


class TestBackends:
    def test_eviction_at_capacity(self, clock):
        cache = RecommendationCache(max_entries=2, clock=clock)
        cache.set("search", "a", 1)
        cache.set("search", "b", 2)
        cache.set("search", "c", 3)

        assert cache.get("search", "a") is None
        assert cache.get("search", "c") == 3
        assert cache.stats()["evictions"] == 1

    def test_purge_expired(self):
        backend = InMemoryCacheBackend()
        clock = FakeClock()
        cache = RecommendationCache(backend=backend, clock=clock, purge_interval=60)
        cache.set("search", "old", "v", ttl=10)

        clock.advance(61)
        cache.set("search", "new", "v")

        assert backend.size() == 1

    def test_null_backend_always_misses(self, clock):
        cache = RecommendationCache(backend=NullCacheBackend(), clock=clock)
        cache.set("search", "k", "v")

        assert cache.get("search", "k") is None
        assert cache.stats()["size"] == 0

    def test_broken_backend_degrades(self, clock):
        cache = RecommendationCache(backend=BrokenBackend(), clock=clock)

        cache.set("search", "k", "v")
        assert cache.get("search", "k") is None
        assert cache.get_or_load("search", "k", lambda: ["fresh"]) == ("fresh",)

        stats = cache.stats()
        assert stats["errors"] >= 3
        assert stats["size"] == 0
        cache.clear()

    def test_backend_errors_surface_as_cache_unavailable(self, clock):
        cache = RecommendationCache(backend=BrokenBackend(), clock=clock)

        with pytest.raises(CacheUnavailable, match="Cache backend get failed: cache store unreachable") as exc_info:
            cache._backend_call("get", cache.backend.get, "search:k")

        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_typed_outage_is_absorbed(self, clock):
        cache = RecommendationCache(backend=UnavailableBackend(), clock=clock)

        cache.set("details", "k", "v")
        value = cache.get("details", "k")

        assert value is None
        assert cache.stats()["errors"] == 2
        assert cache.stats()["namespaces"]["details"]["misses"] == 1
