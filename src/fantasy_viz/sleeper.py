from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

import httpx

from .cache import ResourceClass, TieredCache, cache_key, ttl_for
from .errors import UpstreamError
from .settings import AppSettings
from .transport import USER_AGENT, request_json

LOGGER = logging.getLogger(__name__)

SLEEPER_BASE_URL = "https://api.sleeper.app/v1"
SLEEPER_TIMEOUT_SECONDS = 30.0
STATS_TIMEOUT_RETRIES = 2
STATS_RETRY_DELAY_SECONDS = 1.0


class SleeperClient:
    """Public Sleeper stats/projections API behind the tiered cache."""

    def __init__(
        self,
        settings: AppSettings,
        cache: TieredCache,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = STATS_RETRY_DELAY_SECONDS,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.retry_delay = retry_delay
        self._client = httpx.AsyncClient(
            base_url=SLEEPER_BASE_URL,
            timeout=httpx.Timeout(SLEEPER_TIMEOUT_SECONDS),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )

    def _season(self, season: Optional[int]) -> int:
        resolved = season or self.settings.season
        if resolved is None:
            raise ValueError("Season must be provided or FANTASY_SEASON configured")
        return resolved

    async def get_players(self) -> dict[str, dict[str, Any]]:
        """All NFL players keyed by Sleeper id (24h cache)."""

        async def fetch() -> dict[str, Any]:
            data = await request_json(self._client, "GET", "/players/nfl", "Sleeper players")
            if not isinstance(data, dict):
                raise UpstreamError("Unexpected Sleeper players response; expected object")
            return data

        return await self.cache.get_or_fetch(
            cache_key("sleeper_players_nfl"),
            ttl_for(ResourceClass.PLAYER_MASTER),
            fetch,
        )

    async def find_player_by_name(self, name: str) -> Optional[dict[str, Any]]:
        players = await self.get_players()
        needle = name.lower().strip()
        if not needle:
            return None

        candidates = [player for player in players.values() if isinstance(player, dict)]
        for player in candidates:
            if str(player.get("full_name") or "").lower() == needle:
                return player

        # fall back to a substring match in either direction
        for player in candidates:
            full_name = str(player.get("full_name") or "").lower()
            if full_name and (needle in full_name or full_name in needle):
                return player

        LOGGER.warning("Could not find Sleeper player: %s", name)
        return None

    async def _week_data(
        self,
        kind: str,
        resource_class: ResourceClass,
        week: int,
        season: Optional[int],
        current_week: Optional[int],
        retries: int,
    ) -> Optional[dict[str, Any]]:
        """Week snapshot keyed by Sleeper id; ``None`` when the fetch failed."""

        year = self._season(season)
        now_week = current_week if current_week is not None else self.settings.current_week

        async def fetch() -> dict[str, Any]:
            data = await request_json(
                self._client,
                "GET",
                f"/{kind}/nfl/regular/{year}/{week}",
                f"Sleeper {kind} week {week}",
                retries=retries,
                retry_delay=self.retry_delay,
            )
            if not isinstance(data, dict):
                raise UpstreamError(f"Unexpected Sleeper {kind} response for week {week}")
            return data

        try:
            return await self.cache.get_or_fetch(
                cache_key("sleeper", kind, year, "week", week),
                ttl_for(resource_class, week=week, current_week=now_week),
                fetch,
            )
        except UpstreamError as exc:
            LOGGER.error("Failed to fetch Sleeper %s for week %s: %s", kind, week, exc)
            return None

    async def get_week_stats(
        self, week: int, season: Optional[int] = None, current_week: Optional[int] = None
    ) -> Optional[dict[str, Any]]:
        return await self._week_data(
            "stats", ResourceClass.WEEK_STATS, week, season, current_week, retries=STATS_TIMEOUT_RETRIES
        )

    async def get_week_projections(
        self, week: int, season: Optional[int] = None, current_week: Optional[int] = None
    ) -> Optional[dict[str, Any]]:
        return await self._week_data(
            "projections", ResourceClass.WEEK_PROJECTIONS, week, season, current_week, retries=0
        )

    async def get_player_weeks(
        self,
        player_id: str,
        start_week: int,
        end_week: int,
        season: Optional[int] = None,
        current_week: Optional[int] = None,
    ) -> list[tuple[int, Optional[dict[str, Any]], dict[str, Any]]]:
        """(week, stats, projections) for one player, fetched concurrently per week.

        ``stats`` is ``None`` for a week whose stat snapshot could not be
        fetched, and ``{}`` for a week the player simply has no line in. A
        failed projection snapshot reads as no projection.
        """

        async def one_week(week: int) -> tuple[int, Optional[dict[str, Any]], dict[str, Any]]:
            stats, projections = await asyncio.gather(
                self.get_week_stats(week, season, current_week),
                self.get_week_projections(week, season, current_week),
            )
            player_stats = None if stats is None else _player_line(stats, player_id)
            return week, player_stats, _player_line(projections, player_id)

        results = await asyncio.gather(*(one_week(week) for week in range(start_week, end_week + 1)))
        return sorted(results, key=lambda item: item[0])

    async def close(self) -> None:
        await self._client.aclose()


def _player_line(snapshot: Optional[Mapping[str, Any]], player_id: str) -> dict[str, Any]:
    line = snapshot.get(player_id) if snapshot else None
    return dict(line) if isinstance(line, Mapping) else {}


__all__ = ["SLEEPER_BASE_URL", "SleeperClient"]
