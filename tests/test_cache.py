import asyncio
from pathlib import Path

import pytest

from fantasy_viz.cache import (
    DAY_SECONDS,
    HOUR_SECONDS,
    CacheState,
    JsonFileBackend,
    MemoryBackend,
    ResourceClass,
    TieredCache,
    cache_key,
    ttl_for,
)


class BrokenBackend:
    def get(self, key):
        raise OSError("disk unavailable")

    def put(self, key, value, stored_at):
        raise OSError("disk unavailable")

    def delete(self, key):
        raise OSError("disk unavailable")


def test_ttl_policy() -> None:
    assert ttl_for(ResourceClass.SCORING_RULES) == DAY_SECONDS
    assert ttl_for(ResourceClass.PLAYER_MASTER) == DAY_SECONDS
    assert ttl_for(ResourceClass.TEAM_ROSTER) == 5 * 60
    assert ttl_for(ResourceClass.WEEK_STATS, week=3, current_week=8) is None
    assert ttl_for(ResourceClass.WEEK_PROJECTIONS, week=7, current_week=8) is None
    assert ttl_for(ResourceClass.WEEK_STATS, week=8, current_week=8) == HOUR_SECONDS
    assert ttl_for(ResourceClass.WEEK_STATS, week=9, current_week=8) == DAY_SECONDS
    assert ttl_for(ResourceClass.WEEK_PROJECTIONS, week=8, current_week=8) == DAY_SECONDS
    assert ttl_for(ResourceClass.WEEK_PROJECTIONS, week=10, current_week=8) == DAY_SECONDS


def test_cache_key_joins_parts() -> None:
    assert cache_key("sleeper", "stats", 2024, "week", 3) == "sleeper_stats_2024_week_3"


def test_past_week_never_expires(clock) -> None:
    cache = TieredCache(clock=clock)
    ttl = ttl_for(ResourceClass.WEEK_STATS, week=3, current_week=8)

    async def scenario():
        await cache.put("stats_3", {"4046": {"pass_yd": 250}})
        clock.advance(365 * DAY_SECONDS)
        return await cache.get("stats_3", ttl), await cache.state("stats_3", ttl)

    value, state = asyncio.run(scenario())
    assert value == {"4046": {"pass_yd": 250}}
    assert state is CacheState.FRESH


def test_current_week_entry_goes_stale_after_an_hour(clock) -> None:
    cache = TieredCache(clock=clock)
    ttl = ttl_for(ResourceClass.WEEK_STATS, week=8, current_week=8)

    async def scenario():
        await cache.put("stats_8", {"a": 1})
        clock.advance(HOUR_SECONDS - 1)
        fresh = await cache.get("stats_8", ttl)
        clock.advance(1)
        stale = await cache.get("stats_8", ttl)
        return fresh, stale, await cache.state("stats_8", ttl), await cache.get_stale("stats_8")

    fresh, stale, state, kept = asyncio.run(scenario())
    assert fresh == {"a": 1}
    assert stale is None
    assert state is CacheState.STALE
    assert kept == {"a": 1}


def test_get_or_fetch_fetches_once(clock) -> None:
    cache = TieredCache(MemoryBackend(), clock=clock)
    calls = []

    async def fetch():
        calls.append(1)
        return {"value": len(calls)}

    async def scenario():
        first = await cache.get_or_fetch("k", DAY_SECONDS, fetch)
        second = await cache.get_or_fetch("k", DAY_SECONDS, fetch)
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second == {"value": 1}
    assert len(calls) == 1


def test_stale_fallback_only_when_opted_in(clock) -> None:
    cache = TieredCache(clock=clock)

    async def failing():
        raise RuntimeError("upstream down")

    async def scenario():
        await cache.put("rules", {"rules": {"4": 0.04}})
        clock.advance(2 * DAY_SECONDS)
        served = await cache.get_or_fetch("rules", DAY_SECONDS, failing, allow_stale=True)
        with pytest.raises(RuntimeError):
            await cache.get_or_fetch("rules", DAY_SECONDS, failing)
        with pytest.raises(RuntimeError):
            await cache.get_or_fetch("missing", DAY_SECONDS, failing, allow_stale=True)
        return served

    assert asyncio.run(scenario()) == {"rules": {"4": 0.04}}


def test_durable_failures_degrade_to_miss(clock) -> None:
    cache = TieredCache(BrokenBackend(), clock=clock)

    async def fetch():
        return {"ok": True}

    async def scenario():
        value = await cache.get_or_fetch("k", DAY_SECONDS, fetch)
        return value, await cache.get("k", DAY_SECONDS)

    value, cached = asyncio.run(scenario())
    assert value == {"ok": True}
    assert cached == {"ok": True}


def test_durable_tier_survives_restart(tmp_path: Path, clock) -> None:
    backend = JsonFileBackend(tmp_path / "cache")

    asyncio.run(TieredCache(backend, clock=clock).put("sleeper_players_nfl", {"4046": {"full_name": "Patrick Mahomes"}}))

    restarted = TieredCache(JsonFileBackend(tmp_path / "cache"), clock=clock)
    value = asyncio.run(restarted.get("sleeper_players_nfl", DAY_SECONDS))
    assert value == {"4046": {"full_name": "Patrick Mahomes"}}
    assert backend.clear() == 1
    assert list((tmp_path / "cache").glob("*.json")) == []


def test_json_backend_keeps_similar_keys_apart(tmp_path: Path) -> None:
    backend = JsonFileBackend(tmp_path / "cache")
    keys = ["roster_423.l.1", "roster_423_l_1", "roster_423/l/1", "roster 423.l.1"]

    for index, key in enumerate(keys):
        backend.put(key, index, stored_at=1.0)

    assert len({backend.path_for(key) for key in keys}) == len(keys)
    assert [backend.get(key) for key in keys] == [(index, 1.0) for index in range(len(keys))]
    assert all(path.parent == backend.directory for path in map(backend.path_for, keys))


def test_corrupt_cache_file_is_a_miss(tmp_path: Path, clock) -> None:
    backend = JsonFileBackend(tmp_path / "cache")
    backend.directory.mkdir(parents=True)
    backend.path_for("k").write_text("{not json", encoding="utf-8")

    cache = TieredCache(backend, clock=clock)
    assert asyncio.run(cache.get("k", DAY_SECONDS)) is None


def test_memory_tier_evicts_least_recently_used(clock) -> None:
    cache = TieredCache(clock=clock, max_entries=2)

    async def scenario():
        await cache.put("a", 1)
        await cache.put("b", 2)
        await cache.get("a", None)
        await cache.put("c", 3)
        return [await cache.get(key, None) for key in ("a", "b", "c")]

    assert asyncio.run(scenario()) == [1, None, 3]
    cache.invalidate("a")
    assert cache.status()["totalCached"] == 1
