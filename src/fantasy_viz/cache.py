from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Protocol, Tuple
from urllib.parse import quote

LOGGER = logging.getLogger(__name__)

HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * HOUR_SECONDS
ROSTER_TTL_SECONDS = 5 * 60


class ResourceClass(str, Enum):
    SCORING_RULES = "scoring_rules"
    PLAYER_MASTER = "player_master"
    WEEK_STATS = "week_stats"
    WEEK_PROJECTIONS = "week_projections"
    TEAM_ROSTER = "team_roster"


class CacheState(str, Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


def ttl_for(
    resource_class: ResourceClass,
    week: Optional[int] = None,
    current_week: Optional[int] = None,
) -> Optional[float]:
    """Seconds an entry may be served; ``None`` means it never expires.

    Weeks strictly before ``current_week`` are final and never re-fetched.
    Live stats for the current week expire hourly, projections daily.
    """

    if resource_class in (ResourceClass.SCORING_RULES, ResourceClass.PLAYER_MASTER):
        return DAY_SECONDS
    if resource_class is ResourceClass.TEAM_ROSTER:
        return ROSTER_TTL_SECONDS

    if week is not None and current_week is not None and week < current_week:
        return None
    if resource_class is ResourceClass.WEEK_STATS:
        if current_week is not None and week is not None and week > current_week:
            return DAY_SECONDS
        return HOUR_SECONDS
    return DAY_SECONDS


def cache_key(*parts: object) -> str:
    return "_".join(str(part) for part in parts)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float

    def state(self, now: float, ttl: Optional[float]) -> CacheState:
        if ttl is None or now - self.stored_at < ttl:
            return CacheState.FRESH
        return CacheState.STALE


class DurableBackend(Protocol):
    def get(self, key: str) -> Optional[Tuple[Any, float]]:
        ...

    def put(self, key: str, value: Any, stored_at: float) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryBackend:
    """Durable-tier stand-in kept in a dict; handy for tests and ephemeral runs."""

    def __init__(self) -> None:
        self.items: dict[str, Tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Tuple[Any, float]]:
        return self.items.get(key)

    def put(self, key: str, value: Any, stored_at: float) -> None:
        self.items[key] = (value, stored_at)

    def delete(self, key: str) -> None:
        self.items.pop(key, None)


class JsonFileBackend:
    """One JSON file per key under ``directory``; writes are atomic replaces."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[Tuple[Any, float]]:
        path = self.path_for(key)
        if not path.exists():
            return None
        payload = json.loads(path.read_text())
        if not isinstance(payload, dict) or "timestamp" not in payload:
            raise ValueError(f"Unrecognized cache file layout at {path}")
        return payload.get("data"), float(payload["timestamp"])

    def put(self, key: str, value: Any, stored_at: float) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        payload = {"key": key, "timestamp": stored_at, "data": value}
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)

    def clear(self) -> int:
        if not self.directory.exists():
            return 0
        removed = 0
        for path in self.directory.glob("*.json"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed


class TieredCache:
    """In-process LRU tier in front of a durable backend.

    Freshness is judged at read time with the ttl the caller passes, so a
    week that moves into the past becomes immutable without rewriting its
    entry. Stale entries are kept (never served by ``get``) so callers can opt
    into them when a re-fetch fails.
    """

    def __init__(
        self,
        durable: Optional[DurableBackend] = None,
        clock: Callable[[], float] = time.time,
        max_entries: Optional[int] = None,
    ) -> None:
        self.durable = durable
        self.clock = clock
        self.max_entries = max_entries
        self._memory: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def _remember(self, key: str, entry: CacheEntry) -> None:
        self._memory[key] = entry
        self._memory.move_to_end(key)
        if self.max_entries is not None:
            while len(self._memory) > self.max_entries:
                evicted, _ = self._memory.popitem(last=False)
                LOGGER.debug("Evicted %s from in-process cache", evicted)

    async def _load_durable(self, key: str) -> Optional[CacheEntry]:
        if self.durable is None:
            return None
        try:
            found = await asyncio.to_thread(self.durable.get, key)
        except (OSError, ValueError, TypeError) as exc:
            LOGGER.warning("Durable cache read failed for %s: %s", key, exc)
            return None
        if found is None:
            return None
        value, stored_at = found
        entry = CacheEntry(value=value, stored_at=stored_at)
        self._remember(key, entry)
        return entry

    async def _entry(self, key: str, ttl: Optional[float]) -> Optional[CacheEntry]:
        entry = self._memory.get(key)
        if entry is not None and entry.state(self.clock(), ttl) is CacheState.FRESH:
            self._memory.move_to_end(key)
            return entry
        # the durable tier may hold a newer copy written by another process
        durable_entry = await self._load_durable(key)
        if durable_entry is None:
            return entry
        if entry is None or durable_entry.stored_at >= entry.stored_at:
            return durable_entry
        self._remember(key, entry)
        return entry

    async def state(self, key: str, ttl: Optional[float]) -> CacheState:
        entry = await self._entry(key, ttl)
        if entry is None:
            return CacheState.EMPTY
        return entry.state(self.clock(), ttl)

    async def get(self, key: str, ttl: Optional[float]) -> Optional[Any]:
        entry = await self._entry(key, ttl)
        if entry is None or entry.state(self.clock(), ttl) is not CacheState.FRESH:
            return None
        LOGGER.debug("Cache hit for %s", key)
        return entry.value

    async def get_stale(self, key: str) -> Optional[Any]:
        """Return whatever is stored for ``key``, fresh or not."""

        entry = await self._entry(key, None)
        return entry.value if entry is not None else None

    async def put(self, key: str, value: Any) -> None:
        entry = CacheEntry(value=value, stored_at=self.clock())
        self._remember(key, entry)
        if self.durable is None:
            return
        try:
            await asyncio.to_thread(self.durable.put, key, value, entry.stored_at)
        except (OSError, ValueError, TypeError) as exc:
            LOGGER.warning("Durable cache write failed for %s: %s", key, exc)

    async def get_or_fetch(
        self,
        key: str,
        ttl: Optional[float],
        fetch: Callable[[], Awaitable[Any]],
        allow_stale: bool = False,
    ) -> Any:
        cached = await self.get(key, ttl)
        if cached is not None:
            return cached

        try:
            value = await fetch()
        except Exception as exc:
            if allow_stale:
                stale = await self.get_stale(key)
                if stale is not None:
                    LOGGER.warning("Serving stale cache entry for %s after fetch failure: %s", key, exc)
                    return stale
            raise

        await self.put(key, value)
        return value

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop in-process entries (all of them when ``key`` is None)."""

        if key is None:
            self._memory.clear()
        else:
            self._memory.pop(key, None)

    def status(self) -> dict[str, object]:
        return {"keys": list(self._memory.keys()), "totalCached": len(self._memory)}


__all__ = [
    "CacheEntry",
    "CacheState",
    "DAY_SECONDS",
    "DurableBackend",
    "HOUR_SECONDS",
    "JsonFileBackend",
    "MemoryBackend",
    "ResourceClass",
    "TieredCache",
    "cache_key",
    "ttl_for",
]
