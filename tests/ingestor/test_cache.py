"""Tests for the snapshot cache."""

from token_whale_tracker.ingestor.cache import SnapshotCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSnapshotCache:
    """Tests for SnapshotCache."""

    def test_missing_key(self) -> None:
        cache: SnapshotCache[int] = SnapshotCache(clock=FakeClock())

        assert cache.get("k") is None
        assert cache.age("k") is None
        assert not cache.is_fresh("k", 30)

    def test_fresh_within_ttl(self) -> None:
        clock = FakeClock()
        cache: SnapshotCache[list[int]] = SnapshotCache(clock=clock)
        cache.set("k", [1])

        clock.now += 30
        assert cache.is_fresh("k", 30)
        assert cache.age("k") == 30

        clock.now += 0.5
        assert not cache.is_fresh("k", 30)
        assert cache.is_fresh("k", 600)

    def test_stale_value_is_still_readable(self) -> None:
        clock = FakeClock()
        cache: SnapshotCache[str] = SnapshotCache(clock=clock)
        cache.set("k", "v")

        clock.now += 10_000

        assert cache.get("k") == "v"

    def test_set_resets_age(self) -> None:
        clock = FakeClock()
        cache: SnapshotCache[str] = SnapshotCache(clock=clock)
        cache.set("k", "old")
        clock.now += 100
        cache.set("k", "new")

        assert cache.age("k") == 0
        assert cache.get("k") == "new"

    def test_clear(self) -> None:
        cache: SnapshotCache[str] = SnapshotCache(clock=FakeClock())
        cache.set("k", "v")

        cache.clear()

        assert cache.get("k") is None
