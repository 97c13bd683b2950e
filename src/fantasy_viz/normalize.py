from __future__ import annotations

import logging
import math
import random
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from .models import (
    LeagueInfo,
    NormalizedLeague,
    PlayerSearchPage,
    PlayerSearchResult,
    RosterPlayer,
    TeamRecord,
    WeeklyTeamScore,
)

LOGGER = logging.getLogger(__name__)

COUNT_KEY = "count"
DEFAULT_END_WEEK = 17
DEFAULT_AVERAGE_SCORE = 100.0
DEFAULT_SCORE_VARIANCE = 0.3
DEFAULT_MIN_SCORE = 50


# ---------------------------
# Numeric coercion
# ---------------------------


def coerce_float(value: object, default: float = 0.0) -> float:
    """Coerce a JSON number or string-encoded number, never returning NaN/inf."""

    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return default
        try:
            result = float(text)
        except ValueError:
            return default
    else:
        return default
    if not math.isfinite(result):
        return default
    return result


def coerce_int(value: object, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
    number = coerce_float(value, default=math.nan)
    if math.isnan(number):
        return default
    return int(number)


def _optional_int(value: object) -> Optional[int]:
    result = coerce_int(value, default=-1)
    return None if result < 0 else result


# ---------------------------
# Shape decoding
# ---------------------------


class FragmentKind(str, Enum):
    LEAGUE_INFO = "league_info"
    STANDINGS = "standings"
    SCOREBOARD = "scoreboard"
    SETTINGS = "settings"
    ROSTER = "roster"
    PLAYERS = "players"


_DISCRIMINATORS: tuple[tuple[FragmentKind, str], ...] = (
    (FragmentKind.LEAGUE_INFO, "league_id"),
    (FragmentKind.STANDINGS, "standings"),
    (FragmentKind.SCOREBOARD, "scoreboard"),
    (FragmentKind.SETTINGS, "settings"),
    (FragmentKind.ROSTER, "roster"),
    (FragmentKind.PLAYERS, "players"),
)


def classify_fragment(item: object) -> Optional[FragmentKind]:
    """Return which known shape an element of a heterogeneous array carries."""

    if not isinstance(item, dict):
        return None
    for kind, field_name in _DISCRIMINATORS:
        if item.get(field_name) not in (None, "", [], {}):
            return kind
    return None


def find_fragment(items: Iterable[object], kind: FragmentKind) -> Optional[dict]:
    """Scan for the first element matching ``kind``; positions are never trusted."""

    for item in items:
        if classify_fragment(item) is kind:
            return item  # type: ignore[return-value]
    return None


def decode_indexed_collection(value: object) -> list[Any]:
    """Turn ``{"0": ..., "1": ..., "count": n}`` into an ordered list.

    The ``count`` sentinel is dropped by name; numeric keys need not be
    contiguous.
    """

    if isinstance(value, list):
        return list(value)
    if not isinstance(value, dict):
        return []

    indexed: list[tuple[int, Any]] = []
    for key, item in value.items():
        if key == COUNT_KEY:
            continue
        try:
            index = int(key)
        except (TypeError, ValueError):
            LOGGER.debug("Ignoring non-indexed key %r in collection", key)
            continue
        indexed.append((index, item))
    indexed.sort(key=lambda pair: pair[0])
    return [item for _, item in indexed]


def merge_fragments(items: object) -> dict[str, Any]:
    """Flatten a Yahoo info array (a list of small dicts, sometimes nested lists)."""

    merged: dict[str, Any] = {}
    if not isinstance(items, list):
        return merged
    for item in items:
        if isinstance(item, dict):
            merged.update(item)
        elif isinstance(item, list):
            merged.update(merge_fragments(item))
    return merged


def find_values(node: object, key: str) -> Iterator[Any]:
    """Depth-first search yielding every value stored under ``key``."""

    if isinstance(node, dict):
        for name, value in node.items():
            if name == key:
                yield value
            else:
                yield from find_values(value, key)
    elif isinstance(node, list):
        for item in node:
            yield from find_values(item, key)


def content_fragments(raw: object, resource: str) -> list[Any]:
    if not isinstance(raw, dict):
        return []
    content = raw.get("fantasy_content")
    if not isinstance(content, dict):
        return []
    value = content.get(resource)
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value]
    return []


# ---------------------------
# League standings
# ---------------------------


def normalize_league_info(fragment: Optional[dict]) -> Optional[LeagueInfo]:
    if not fragment:
        return None
    end_week = coerce_int(fragment.get("end_week"), default=DEFAULT_END_WEEK) or DEFAULT_END_WEEK
    start_week = coerce_int(fragment.get("start_week"), default=1) or 1
    return LeagueInfo(
        league_id=str(fragment.get("league_id") or "unknown"),
        league_key=str(fragment["league_key"]) if fragment.get("league_key") else None,
        name=str(fragment.get("name") or "Unknown League"),
        start_week=start_week,
        end_week=end_week,
        current_week=_optional_int(fragment.get("current_week")),
        season=_optional_int(fragment.get("season")),
    )


def normalize_team(wrapper: object, key: object = None) -> Optional[TeamRecord]:
    """Decode one (info-array, points-object, standings-object) team entry."""

    team = wrapper.get("team") if isinstance(wrapper, dict) else None
    if not isinstance(team, list):
        LOGGER.warning("Skipping malformed team entry at key %s", key)
        return None

    info_array = next((item for item in team if isinstance(item, list)), None)
    points = next((item for item in team if isinstance(item, dict) and "team_points" in item), None)
    standings = next((item for item in team if isinstance(item, dict) and "team_standings" in item), None)

    if info_array is None:
        LOGGER.warning("Skipping team at key %s - invalid team info array", key)
        return None
    team_points = points.get("team_points") if points else None
    if not isinstance(team_points, dict) or team_points.get("total") in (None, ""):
        LOGGER.warning("Skipping team at key %s - missing team_points.total", key)
        return None
    team_standings = standings.get("team_standings") if standings else None
    if not isinstance(team_standings, dict):
        LOGGER.warning("Skipping team at key %s - missing team_standings", key)
        return None

    info = merge_fragments(info_array)
    outcome = team_standings.get("outcome_totals")
    outcome = outcome if isinstance(outcome, dict) else {}

    return TeamRecord(
        id=str(info.get("team_id") or "unknown"),
        team_key=str(info["team_key"]) if info.get("team_key") else None,
        name=str(info.get("name") or "Team"),
        rank=coerce_int(team_standings.get("rank")),
        wins=coerce_int(outcome.get("wins")),
        losses=coerce_int(outcome.get("losses")),
        ties=coerce_int(outcome.get("ties")),
        season_points_total=coerce_float(team_points.get("total")),
    )


def normalize_teams(standings_fragment: Optional[dict]) -> list[TeamRecord]:
    if not standings_fragment:
        return []
    standings = decode_indexed_collection(standings_fragment.get("standings"))
    teams_data = next(
        (item.get("teams") for item in standings if isinstance(item, dict) and item.get("teams")),
        None,
    )
    if teams_data is None:
        LOGGER.warning("No teams data found in standings")
        return []

    teams: list[TeamRecord] = []
    for index, wrapper in enumerate(decode_indexed_collection(teams_data)):
        record = normalize_team(wrapper, key=index)
        if record is not None:
            teams.append(record)
    teams.sort(key=lambda team: team.rank)
    return teams


def synthesize_weekly_scores(
    teams: Iterable[TeamRecord],
    end_week: int,
    seed: Optional[int] = None,
    variance: float = DEFAULT_SCORE_VARIANCE,
    min_score: int = DEFAULT_MIN_SCORE,
) -> list[WeeklyTeamScore]:
    """Plausible per-week scores derived from each team's season total.

    Passing ``seed`` makes the sequence reproducible.
    """

    rng = random.Random(seed) if seed is not None else random.Random()
    team_list = list(teams)
    points: list[WeeklyTeamScore] = []
    for week in range(1, end_week + 1):
        for team in team_list:
            average = team.season_points_total / end_week if team.season_points_total > 0 else DEFAULT_AVERAGE_SCORE
            spread = average * variance
            score = round(average + (rng.random() - 0.5) * spread * 2)
            points.append(WeeklyTeamScore(week=week, team_name=team.name, score=max(min_score, score)))
    return points


def dedupe_weekly_scores(scores: Iterable[WeeklyTeamScore]) -> list[WeeklyTeamScore]:
    """Keep one score per (week, team); the last one seen wins."""

    latest: dict[tuple[int, str], WeeklyTeamScore] = {}
    for score in scores:
        latest[(score.week, score.team_name)] = score
    return sorted(latest.values(), key=lambda item: item.week)


def normalize_league(
    raw: object,
    scoreboards: Iterable[object] = (),
    seed: Optional[int] = None,
    variance: float = DEFAULT_SCORE_VARIANCE,
    min_score: int = DEFAULT_MIN_SCORE,
    synthesize: bool = True,
) -> NormalizedLeague:
    """Normalize a league standings payload; never raises.

    Real weekly scores are taken from ``scoreboards`` when any are present,
    otherwise (and when ``synthesize`` is set) they are generated from the
    season totals.
    """

    try:
        fragments = content_fragments(raw, "league")
        if not fragments:
            LOGGER.warning("Non-standard league structure - missing fantasy_content.league")
            return NormalizedLeague.empty()

        info = normalize_league_info(find_fragment(fragments, FragmentKind.LEAGUE_INFO))
        standings = find_fragment(fragments, FragmentKind.STANDINGS)
        if info is None:
            LOGGER.warning("No league info found in league array")
        if standings is None:
            LOGGER.warning("No standings found in league array")
        if info is None and standings is None:
            return NormalizedLeague.empty()

        teams = normalize_teams(standings)
        end_week = info.end_week if info else DEFAULT_END_WEEK

        real_scores: list[WeeklyTeamScore] = []
        for payload in scoreboards:
            real_scores.extend(normalize_scoreboard(payload))
        real_scores = [score for score in real_scores if 1 <= score.week <= end_week]

        if real_scores:
            return NormalizedLeague(info=info, teams=teams, points=dedupe_weekly_scores(real_scores))
        if synthesize and teams:
            points = synthesize_weekly_scores(teams, end_week, seed=seed, variance=variance, min_score=min_score)
            return NormalizedLeague(info=info, teams=teams, points=points, scores_synthetic=True)
        return NormalizedLeague(info=info, teams=teams)
    except Exception:  # pragma: no cover - last-resort containment
        LOGGER.exception("normalize_league failed on unexpected payload")
        return NormalizedLeague.empty()


# ---------------------------
# Scoreboard
# ---------------------------


def _scoreboard_teams(node: object, week: Optional[int]) -> Iterator[tuple[Optional[int], list]]:
    if isinstance(node, dict):
        week = _optional_int(node.get("week")) or week
        for name, value in node.items():
            if name == "team" and isinstance(value, list):
                yield week, value
            else:
                yield from _scoreboard_teams(value, week)
    elif isinstance(node, list):
        for item in node:
            yield from _scoreboard_teams(item, week)


def normalize_scoreboard(raw: object, week: Optional[int] = None) -> list[WeeklyTeamScore]:
    """Extract real per-team weekly totals from a league scoreboard payload."""

    fragment = find_fragment(content_fragments(raw, "league"), FragmentKind.SCOREBOARD)
    if fragment is None:
        return []

    scores: list[WeeklyTeamScore] = []
    for context_week, team in _scoreboard_teams(fragment["scoreboard"], week):
        info = merge_fragments(next((item for item in team if isinstance(item, list)), []))
        points = next((item["team_points"] for item in team if isinstance(item, dict) and "team_points" in item), None)
        if not isinstance(points, dict) or points.get("total") in (None, ""):
            LOGGER.warning("Skipping scoreboard team without team_points.total")
            continue
        team_week = _optional_int(points.get("week")) or context_week
        if team_week is None or not info.get("name"):
            LOGGER.warning("Skipping scoreboard team with no week or name")
            continue
        scores.append(
            WeeklyTeamScore(week=team_week, team_name=str(info["name"]), score=coerce_float(points.get("total")))
        )
    return dedupe_weekly_scores(scores)


# ---------------------------
# Players and rosters
# ---------------------------


def _player_name(info: dict[str, Any]) -> str:
    name = info.get("name")
    if isinstance(name, dict):
        full = name.get("full")
        if full:
            return str(full)
        parts = [str(name[part]) for part in ("first", "last") if name.get(part)]
        if parts:
            return " ".join(parts)
    elif isinstance(name, str) and name:
        return name
    return "Unknown Player"


def decode_stat_entries(value: object) -> dict[int, float]:
    """Decode ``[{"stat": {"stat_id": "4", "value": "250"}}, ...]`` into a snapshot."""

    snapshot: dict[int, float] = {}
    for entry in decode_indexed_collection(value):
        stat = entry.get("stat") if isinstance(entry, dict) else None
        if not isinstance(stat, dict):
            continue
        stat_id = coerce_int(stat.get("stat_id"), default=-1)
        if stat_id < 0:
            continue
        snapshot[stat_id] = coerce_float(stat.get("value"))
    return snapshot


def normalize_player(player: object) -> Optional[RosterPlayer]:
    if not isinstance(player, list):
        return None

    info: dict[str, Any] = {}
    extras: dict[str, Any] = {}
    for item in player:
        if isinstance(item, list):
            info.update(merge_fragments(item))
        elif isinstance(item, dict):
            extras.update(item)

    player_key = info.get("player_key")
    if not player_key:
        LOGGER.warning("Skipping player entry without player_key")
        return None

    points = extras.get("player_points")
    actual = coerce_float(points.get("total")) if isinstance(points, dict) else 0.0

    projected: Optional[float] = None
    projected_points = extras.get("player_projected_points")
    if isinstance(projected_points, dict) and projected_points.get("total") not in (None, ""):
        projected = coerce_float(projected_points.get("total"))

    stats_block = extras.get("player_stats")
    stats = decode_stat_entries(stats_block.get("stats")) if isinstance(stats_block, dict) else {}

    return RosterPlayer(
        player_key=str(player_key),
        player_id=str(info.get("player_id") or str(player_key).split(".")[-1]),
        name=_player_name(info),
        position=str(info.get("display_position") or info.get("primary_position") or "N/A"),
        team=str(info.get("editorial_team_abbr") or "FA"),
        actual_points=actual,
        projected_points=projected,
        stats=stats,
    )


def _players_in(node: object) -> Iterator[RosterPlayer]:
    for collection in find_values(node, "players"):
        for wrapper in decode_indexed_collection(collection):
            if not isinstance(wrapper, dict):
                continue
            record = normalize_player(wrapper.get("player"))
            if record is not None:
                yield record


def normalize_roster_players(raw: object) -> list[RosterPlayer]:
    """Decode every player in a team roster (``/team/{key}/roster/players/stats``) payload."""

    roster = find_fragment(content_fragments(raw, "team"), FragmentKind.ROSTER)
    if roster is None:
        return []
    return list(_players_in(roster["roster"]))


def normalize_player_info(raw: object) -> Optional[RosterPlayer]:
    """Decode a single-player payload (``/player/{key}`` or its week stats)."""

    if not isinstance(raw, dict):
        return None
    content = raw.get("fantasy_content")
    player = content.get("player") if isinstance(content, dict) else None
    return normalize_player(player)


def normalize_player_search(raw: object, game_key: str, start: int = 0, count: int = 25) -> PlayerSearchPage:
    results = [
        PlayerSearchResult(
            player_key=player.player_key,
            player_id=player.player_id,
            name=player.name,
            position=player.position,
            team=player.team,
        )
        for player in _players_in(content_fragments(raw, "game"))
    ]
    return PlayerSearchPage(game_key=game_key, start=start, count=count, players=results)


__all__ = [
    "FragmentKind",
    "classify_fragment",
    "content_fragments",
    "coerce_float",
    "coerce_int",
    "decode_indexed_collection",
    "decode_stat_entries",
    "dedupe_weekly_scores",
    "find_fragment",
    "find_values",
    "merge_fragments",
    "normalize_league",
    "normalize_league_info",
    "normalize_player",
    "normalize_player_info",
    "normalize_player_search",
    "normalize_roster_players",
    "normalize_scoreboard",
    "normalize_team",
    "normalize_teams",
    "synthesize_weekly_scores",
]
