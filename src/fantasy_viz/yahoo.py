from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .settings import AppSettings
from .transport import USER_AGENT, RateLimiter, request_json

LOGGER = logging.getLogger(__name__)

BASE_URL = "https://fantasysports.yahooapis.com/fantasy/v2"
MAX_SEARCH_COUNT = 25


def _key(value: str) -> str:
    return quote(value, safe="")


class YahooClient:
    """Async wrapper around the Yahoo Fantasy endpoints the core reads.

    Every call goes through one shared ``RateLimiter``; Yahoo throttles
    per application, not per caller.
    """

    def __init__(
        self,
        settings: AppSettings,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.rate_limiter = rate_limiter or RateLimiter(settings.min_request_interval)
        self._client = httpx.AsyncClient(
            base_url=BASE_URL,
            timeout=httpx.Timeout(settings.request_timeout),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )

    async def _get(
        self,
        path: str,
        access_token: str,
        resource: str,
        params: Optional[dict[str, object]] = None,
    ) -> Any:
        query: dict[str, object] = {"format": "json"}
        if params:
            query.update(params)
        await self.rate_limiter.wait()
        LOGGER.debug("Fetching Yahoo %s", path)
        return await request_json(
            self._client,
            "GET",
            path,
            resource,
            params=query,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    async def fetch_standings(self, league_key: str, access_token: str) -> Any:
        return await self._get(f"/league/{_key(league_key)}/standings", access_token, "League")

    async def fetch_scoreboard(self, league_key: str, week: int, access_token: str) -> Any:
        return await self._get(f"/league/{_key(league_key)}/scoreboard;week={week}", access_token, "Scoreboard")

    async def fetch_settings(self, league_key: str, access_token: str) -> Any:
        return await self._get(f"/league/{_key(league_key)}/settings", access_token, "League settings")

    async def fetch_team_roster(self, team_key: str, access_token: str, week: Optional[int] = None) -> Any:
        week_param = f";week={week}" if week is not None else ""
        return await self._get(f"/team/{_key(team_key)}/roster{week_param}/players/stats", access_token, "Team")

    async def fetch_player(self, player_key: str, access_token: str) -> Any:
        return await self._get(f"/player/{_key(player_key)}", access_token, "Player")

    async def search_players(
        self,
        game_key: str,
        access_token: str,
        search: Optional[str] = None,
        position: Optional[str] = None,
        sort: Optional[str] = None,
        start: int = 0,
        count: int = MAX_SEARCH_COUNT,
    ) -> Any:
        if count > MAX_SEARCH_COUNT:
            raise ValueError(f"count cannot exceed {MAX_SEARCH_COUNT}")
        options = {"search": search, "position": position, "sort": sort, "start": start, "count": count}
        params = {name: value for name, value in options.items() if value is not None}
        return await self._get(f"/game/{_key(game_key)}/players", access_token, "Game", params=params)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "YahooClient":  # pragma: no cover - context helper
        return self

    async def __aexit__(self, *exc_info: object) -> None:  # pragma: no cover - context helper
        await self.close()


__all__ = ["BASE_URL", "YahooClient"]
