"""Tests for roadsync.cache."""

from roadsync.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    def test_hit_before_expiry(self) -> None:
        clock = FakeClock()
        cache: TTLCache[list[str]] = TTLCache(ttl=60, clock=clock)
        cache.set("labels", ["bug"])
        clock.now = 59.9
        assert cache.get("labels") == ["bug"]
        assert "labels" in cache

    def test_expires_at_ttl(self) -> None:
        clock = FakeClock()
        cache: TTLCache[str] = TTLCache(ttl=60, clock=clock)
        cache.set("key", "value")
        clock.now = 60
        assert cache.get("key") is None
        assert len(cache) == 0

    def test_set_refreshes_timestamp(self) -> None:
        clock = FakeClock()
        cache: TTLCache[str] = TTLCache(ttl=10, clock=clock)
        cache.set("key", "old")
        clock.now = 8
        cache.set("key", "new")
        clock.now = 15
        assert cache.get("key") == "new"

    def test_invalidate_and_clear(self) -> None:
        cache: TTLCache[int] = TTLCache()
        cache.set("a", 1)
        cache.set(("guild", "labels"), 2)
        cache.invalidate("a")
        cache.invalidate("missing")
        assert cache.get("a") is None
        assert cache.get(("guild", "labels")) == 2
        cache.clear()
        assert len(cache) == 0
