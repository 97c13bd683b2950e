from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence, Tuple

import httpx

from .cache import JsonFileBackend, ResourceClass, TieredCache, cache_key, ttl_for
from .credentials import CredentialStore, JsonCredentialBackend, YahooOAuthClient
from .errors import (
    AggregationError,
    NotAuthenticatedError,
    UpstreamError,
    UpstreamUnauthorizedError,
)
from .models import (
    LeagueReport,
    NormalizedPlayerSeason,
    PlayerComparisonReport,
    PlayerSearchPage,
    PlayerStatsReport,
    RosterPlayer,
)
from .normalize import (
    FragmentKind,
    content_fragments,
    find_fragment,
    normalize_league,
    normalize_league_info,
    normalize_player_info,
    normalize_player_search,
)
from .reconcile import build_secondary_season, head_to_head, reconcile_roster_weeks
from .scoring import ScoringRuleTable
from .settings import AppSettings
from .sleeper import SleeperClient
from .transport import RateLimiter
from .yahoo import YahooClient

LOGGER = logging.getLogger(__name__)

MAX_WEEK = 18


def validate_week_range(start_week: int, end_week: int) -> None:
    if start_week < 1 or end_week > MAX_WEEK or start_week > end_week:
        raise ValueError(
            f"Invalid week range: start and end must be between 1-{MAX_WEEK} and start <= end "
            f"(got {start_week}-{end_week})"
        )


def league_key_from_team(team_key: str) -> str:
    """``423.l.12345.t.1`` -> ``423.l.12345``."""

    return team_key.split(".t.")[0]


class FantasyService:
    """Fans requests out to the upstream gateways and assembles reports."""

    def __init__(
        self,
        settings: AppSettings,
        yahoo: YahooClient,
        sleeper: SleeperClient,
        cache: TieredCache,
        credentials: Optional[CredentialStore] = None,
    ) -> None:
        self.settings = settings
        self.yahoo = yahoo
        self.sleeper = sleeper
        self.cache = cache
        self.credentials = credentials

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        yahoo_transport: Optional[httpx.AsyncBaseTransport] = None,
        sleeper_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "FantasyService":
        cache = TieredCache(durable=JsonFileBackend(settings.cache_dir))
        limiter = RateLimiter(settings.min_request_interval)
        credentials = CredentialStore(
            JsonCredentialBackend(settings.credentials_path),
            oauth=YahooOAuthClient(settings, transport=yahoo_transport),
        )
        return cls(
            settings,
            yahoo=YahooClient(settings, rate_limiter=limiter, transport=yahoo_transport),
            sleeper=SleeperClient(settings, cache, transport=sleeper_transport),
            cache=cache,
            credentials=credentials,
        )

    async def close(self) -> None:
        await asyncio.gather(self.yahoo.close(), self.sleeper.close())

    async def access_token_for(self, user_id: str) -> str:
        if self.credentials is None:
            raise NotAuthenticatedError("No credential store configured")
        token = await self.credentials.get_access_credential(user_id)
        if not token:
            raise NotAuthenticatedError(f"No valid Yahoo credential for {user_id}; run `fantasy-viz auth exchange`.")
        return token

    # ---------------------------
    # Scoring rules
    # ---------------------------

    async def get_scoring_rules(self, league_key: str, access_token: str) -> ScoringRuleTable:
        """League rule table, cached for a day; a stale copy beats a failed re-fetch."""

        async def fetch() -> dict[str, object]:
            raw = await self.yahoo.fetch_settings(league_key, access_token)
            table = ScoringRuleTable.from_payload(raw)
            if table is None:
                raise UpstreamError(f"Unrecognized league settings payload for {league_key}")
            LOGGER.info("Loaded %s scoring rules for %s", len(table), league_key)
            return table.to_dict()

        payload = await self.cache.get_or_fetch(
            cache_key("scoring_rules", league_key),
            ttl_for(ResourceClass.SCORING_RULES),
            fetch,
            allow_stale=True,
        )
        return ScoringRuleTable.from_dict(payload)

    # ---------------------------
    # League
    # ---------------------------

    async def _scoreboard(self, league_key: str, week: int, access_token: str) -> Optional[Any]:
        try:
            return await self.yahoo.fetch_scoreboard(league_key, week, access_token)
        except UpstreamError as exc:
            LOGGER.warning("Scoreboard week %s unavailable for %s: %s", week, league_key, exc)
            return None

    async def get_league(self, league_key: str, access_token: str, seed: Optional[int] = None) -> LeagueReport:
        raw = await self.yahoo.fetch_standings(league_key, access_token)

        info = normalize_league_info(find_fragment(content_fragments(raw, "league"), FragmentKind.LEAGUE_INFO))
        current_week = (info.current_week if info else None) or self.settings.current_week
        last_week = current_week or 0
        if info is not None:
            last_week = min(last_week, info.end_week)
        weeks = range(1, last_week + 1)

        results = await asyncio.gather(*(self._scoreboard(league_key, week, access_token) for week in weeks))
        scoreboards = [payload for payload in results if payload is not None]
        if weeks and not scoreboards:
            LOGGER.warning("No scoreboards retrieved for %s; weekly scores will be synthetic", league_key)

        league = normalize_league(raw, scoreboards=scoreboards, seed=seed)
        return LeagueReport(
            league_key=league_key,
            league=league,
            weeks_requested=len(weeks),
            weeks_retrieved=len(scoreboards),
        )

    # ---------------------------
    # Team rosters
    # ---------------------------

    async def get_team_roster(self, team_key: str, week: int, access_token: str) -> Any:
        return await self.cache.get_or_fetch(
            cache_key("roster", team_key, "week", week),
            ttl_for(ResourceClass.TEAM_ROSTER),
            lambda: self.yahoo.fetch_team_roster(team_key, access_token, week=week),
        )

    async def _roster_week(self, team_key: str, week: int, access_token: str) -> Tuple[int, Any]:
        return week, await self.get_team_roster(team_key, week, access_token)

    async def get_player_stats(
        self,
        team_key: str,
        start_week: int,
        end_week: int,
        access_token: str,
        rules: Optional[ScoringRuleTable] = None,
    ) -> PlayerStatsReport:
        validate_week_range(start_week, end_week)
        weeks = list(range(start_week, end_week + 1))
        results = await asyncio.gather(
            *(self._roster_week(team_key, week, access_token) for week in weeks),
            return_exceptions=True,
        )

        snapshots: list[Tuple[int, Any]] = []
        failures: list[BaseException] = []
        for week, result in zip(weeks, results):
            if isinstance(result, UpstreamError):
                LOGGER.warning("Roster week %s unavailable for %s: %s", week, team_key, result)
                failures.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                snapshots.append(result)

        if not snapshots:
            unauthorized = next((exc for exc in failures if isinstance(exc, UpstreamUnauthorizedError)), None)
            if unauthorized is not None:
                raise unauthorized
            raise AggregationError(f"Failed to fetch any roster data for {team_key}")

        players = reconcile_roster_weeks(snapshots, rules=rules)
        return PlayerStatsReport(
            team_key=team_key,
            start_week=start_week,
            end_week=end_week,
            weeks_requested=len(weeks),
            weeks_retrieved=len(snapshots),
            players=players,
        )

    # ---------------------------
    # Players
    # ---------------------------

    async def get_player_info(self, player_key: str, access_token: str) -> Optional[RosterPlayer]:
        try:
            raw = await self.cache.get_or_fetch(
                cache_key("yahoo_player", player_key),
                ttl_for(ResourceClass.PLAYER_MASTER),
                lambda: self.yahoo.fetch_player(player_key, access_token),
            )
        except UpstreamUnauthorizedError:
            raise
        except UpstreamError as exc:
            LOGGER.warning("Player info unavailable for %s: %s", player_key, exc)
            return None
        return normalize_player_info(raw)

    async def get_player_season(
        self,
        name: str,
        start_week: int,
        end_week: int,
        rules: ScoringRuleTable,
        season: Optional[int] = None,
        current_week: Optional[int] = None,
    ) -> Optional[NormalizedPlayerSeason]:
        """Season series for ``name`` from Sleeper, scored with the league's rules."""

        validate_week_range(start_week, end_week)
        player = await self.sleeper.find_player_by_name(name)
        if player is None:
            return None
        player_id = str(player.get("player_id") or "")
        weekly = await self.sleeper.get_player_weeks(
            player_id, start_week, end_week, season=season, current_week=current_week
        )
        return build_secondary_season(
            player_key=f"sleeper.{player_id}",
            player_id=player_id,
            name=str(player.get("full_name") or name),
            position=str(player.get("position") or "N/A"),
            team=str(player.get("team") or "FA"),
            weekly=weekly,
            rules=rules,
        )

    async def _compared_player(
        self,
        player_key: str,
        info: Optional[RosterPlayer],
        start_week: int,
        end_week: int,
        rules: ScoringRuleTable,
        season: Optional[int],
        current_week: Optional[int],
    ) -> NormalizedPlayerSeason:
        name = info.name if info else "Unknown Player"
        position = info.position if info else "N/A"
        try:
            series = await self.get_player_season(name, start_week, end_week, rules, season, current_week)
        except UpstreamError as exc:
            LOGGER.warning("Season series unavailable for %s: %s", name, exc)
            return NormalizedPlayerSeason.empty(
                player_key, name, position, weeks_requested=end_week - start_week + 1
            )
        if series is None:
            return NormalizedPlayerSeason.empty(player_key, name, position)
        series.player_key = player_key
        return series

    async def compare_players(
        self,
        player_keys: Sequence[str],
        start_week: int,
        end_week: int,
        access_token: str,
        league_key: Optional[str] = None,
        team_key: Optional[str] = None,
        season: Optional[int] = None,
        current_week: Optional[int] = None,
    ) -> PlayerComparisonReport:
        keys = [key.strip() for key in player_keys if key and key.strip()]
        if not keys:
            raise ValueError("At least 1 player key is required")
        validate_week_range(start_week, end_week)
        resolved_league = league_key or (league_key_from_team(team_key) if team_key else None)
        if not resolved_league:
            raise ValueError("league_key or team_key is required")

        rules = await self.get_scoring_rules(resolved_league, access_token)
        infos = await asyncio.gather(*(self.get_player_info(key, access_token) for key in keys))
        players = list(
            await asyncio.gather(
                *(
                    self._compared_player(key, info, start_week, end_week, rules, season, current_week)
                    for key, info in zip(keys, infos)
                )
            )
        )
        first, second, ties = head_to_head(players)
        report = PlayerComparisonReport(
            start_week=start_week,
            end_week=end_week,
            players=players,
            player1_better=first,
            player2_better=second,
            ties=ties,
        )
        # players unknown to Sleeper request nothing; only fetch failures count here
        if report.weeks_requested and not report.weeks_retrieved:
            raise AggregationError(
                f"No Sleeper weeks could be retrieved for weeks {start_week}-{end_week}"
            )
        if report.is_partial:
            LOGGER.warning(
                "Retrieved %s/%s player-weeks for comparison", report.weeks_retrieved, report.weeks_requested
            )
        return report

    async def search_players(
        self,
        game_key: str,
        access_token: str,
        search: Optional[str] = None,
        position: Optional[str] = None,
        sort: Optional[str] = None,
        start: int = 0,
        count: int = 25,
    ) -> PlayerSearchPage:
        if not game_key:
            raise ValueError("game_key is required")
        raw = await self.yahoo.search_players(
            game_key, access_token, search=search, position=position, sort=sort, start=start, count=count
        )
        return normalize_player_search(raw, game_key, start=start, count=count)


__all__ = ["FantasyService", "MAX_WEEK", "league_key_from_team", "validate_week_range"]
