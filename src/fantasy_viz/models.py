from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

ACCURACY_THRESHOLD_PCT = 20.0


class ProjectionSource(str, Enum):
    """Where the projected points of a player-week came from."""

    PROVIDER = "provider"
    RUNNING_AVERAGE = "running_average"  # heuristic stand-in, not a real projection
    NONE = "none"


@dataclass(frozen=True)
class LeagueInfo:
    league_id: str
    league_key: Optional[str]
    name: str
    start_week: int
    end_week: int
    current_week: Optional[int] = None
    season: Optional[int] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "leagueId": self.league_id,
            "leagueKey": self.league_key,
            "name": self.name,
            "startWeek": self.start_week,
            "endWeek": self.end_week,
            "currentWeek": self.current_week,
            "season": self.season,
        }


@dataclass
class TeamRecord:
    id: str
    team_key: Optional[str]
    name: str
    rank: int
    wins: int
    losses: int
    ties: int
    season_points_total: float

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "teamKey": self.team_key,
            "name": self.name,
            "rank": self.rank,
            "wins": self.wins,
            "losses": self.losses,
            "ties": self.ties,
            "seasonPointsTotal": self.season_points_total,
        }


@dataclass(frozen=True)
class WeeklyTeamScore:
    week: int
    team_name: str
    score: float

    def to_dict(self) -> dict[str, object]:
        return {"week": self.week, "teamName": self.team_name, "score": self.score}


@dataclass
class NormalizedLeague:
    info: Optional[LeagueInfo]
    teams: list[TeamRecord] = field(default_factory=list)
    points: list[WeeklyTeamScore] = field(default_factory=list)
    scores_synthetic: bool = False

    @classmethod
    def empty(cls) -> "NormalizedLeague":
        """The explicit result for a payload whose shape was not recognized."""

        return cls(info=None)

    @property
    def recognized(self) -> bool:
        return self.info is not None

    @property
    def id(self) -> str:
        return self.info.league_id if self.info else "unknown"

    @property
    def name(self) -> str:
        return self.info.name if self.info else "unknown"

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "info": self.info.to_dict() if self.info else None,
            "teams": [team.to_dict() for team in self.teams],
            "points": [point.to_dict() for point in self.points],
            "scoresSynthetic": self.scores_synthetic,
        }


@dataclass(frozen=True)
class StatLine:
    stat: str
    value: float
    points: float

    def to_dict(self) -> dict[str, object]:
        return {"stat": self.stat, "value": self.value, "points": self.points}


@dataclass(frozen=True)
class NormalizedPlayerWeek:
    week: int
    projected_points: float
    actual_points: float
    difference: float
    percent_difference: float
    breakdown: Optional[tuple[StatLine, ...]] = None
    projection_source: ProjectionSource = ProjectionSource.PROVIDER

    @classmethod
    def build(
        cls,
        week: int,
        projected_points: float,
        actual_points: float,
        breakdown: Optional[Sequence[StatLine]] = None,
        projection_source: ProjectionSource = ProjectionSource.PROVIDER,
    ) -> "NormalizedPlayerWeek":
        difference = actual_points - projected_points
        # Zero projection means "no baseline", not missing data.
        percent = (difference / projected_points) * 100 if projected_points != 0 else 0.0
        return cls(
            week=week,
            projected_points=projected_points,
            actual_points=actual_points,
            difference=difference,
            percent_difference=percent,
            breakdown=tuple(breakdown) if breakdown else None,
            projection_source=projection_source,
        )

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "week": self.week,
            "projectedPoints": self.projected_points,
            "actualPoints": self.actual_points,
            "difference": self.difference,
            "percentDifference": self.percent_difference,
            "projectionSource": self.projection_source.value,
        }
        if self.breakdown:
            payload["breakdown"] = [line.to_dict() for line in self.breakdown]
        return payload


@dataclass(frozen=True)
class PlayerSummary:
    total_projected: float = 0.0
    total_actual: float = 0.0
    total_difference: float = 0.0
    average_projected: float = 0.0
    average_actual: float = 0.0
    weeks_played: int = 0
    accuracy_rate: float = 0.0

    @classmethod
    def from_weeks(
        cls,
        weeks: Sequence[NormalizedPlayerWeek],
        threshold: float = ACCURACY_THRESHOLD_PCT,
    ) -> "PlayerSummary":
        """Summarize the weeks with nonzero actual points.

        A played week counts as accurate when it had a projection and its
        percent difference is within ``threshold`` percent.
        """

        played = [week for week in weeks if week.actual_points != 0]
        if not played:
            return cls()

        total_actual = sum(week.actual_points for week in played)
        total_projected = sum(week.projected_points for week in played)
        accurate = sum(
            1
            for week in played
            if week.projected_points != 0 and abs(week.percent_difference) <= threshold
        )
        count = len(played)
        return cls(
            total_projected=total_projected,
            total_actual=total_actual,
            total_difference=total_actual - total_projected,
            average_projected=total_projected / count,
            average_actual=total_actual / count,
            weeks_played=count,
            accuracy_rate=accurate / count * 100,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "totalProjected": self.total_projected,
            "totalActual": self.total_actual,
            "totalDifference": self.total_difference,
            "averageProjected": self.average_projected,
            "averageActual": self.average_actual,
            "weeksPlayed": self.weeks_played,
            "accuracyRate": self.accuracy_rate,
        }


@dataclass
class NormalizedPlayerSeason:
    player_key: str
    player_id: str
    name: str
    position: str
    team: str
    weeks: list[NormalizedPlayerWeek] = field(default_factory=list)
    summary: PlayerSummary = field(default_factory=PlayerSummary)
    weeks_requested: int = 0
    weeks_retrieved: int = 0

    @classmethod
    def empty(
        cls, player_key: str, name: str, position: str = "N/A", weeks_requested: int = 0
    ) -> "NormalizedPlayerSeason":
        """A series with no data; ``weeks_requested`` > 0 marks it as failed rather than unknown."""

        return cls(
            player_key=player_key,
            player_id=player_key.split(".")[-1],
            name=name,
            position=position,
            team="N/A",
            weeks_requested=weeks_requested,
        )

    @property
    def uses_heuristic_projection(self) -> bool:
        return any(week.projection_source is ProjectionSource.RUNNING_AVERAGE for week in self.weeks)

    def to_dict(self) -> dict[str, object]:
        return {
            "playerKey": self.player_key,
            "playerId": self.player_id,
            "name": self.name,
            "position": self.position,
            "team": self.team,
            "weeklyData": [week.to_dict() for week in self.weeks],
            "summary": self.summary.to_dict(),
            "weeksRequested": self.weeks_requested,
            "weeksRetrieved": self.weeks_retrieved,
        }


@dataclass
class RosterPlayer:
    """One player entry decoded from a roster or player payload."""

    player_key: str
    player_id: str
    name: str
    position: str
    team: str
    actual_points: float = 0.0
    projected_points: Optional[float] = None
    stats: dict[int, float] = field(default_factory=dict)


@dataclass
class PlayerStatsReport:
    team_key: str
    start_week: int
    end_week: int
    weeks_requested: int
    weeks_retrieved: int
    players: list[NormalizedPlayerSeason]

    @property
    def is_partial(self) -> bool:
        return self.weeks_retrieved < self.weeks_requested

    @property
    def average_accuracy(self) -> float:
        if not self.players:
            return 0.0
        return sum(player.summary.accuracy_rate for player in self.players) / len(self.players)

    def to_dict(self) -> dict[str, object]:
        return {
            "teamKey": self.team_key,
            "weekRange": {"start": self.start_week, "end": self.end_week},
            "weeksRequested": self.weeks_requested,
            "weeksRetrieved": self.weeks_retrieved,
            "players": [player.to_dict() for player in self.players],
            "summary": {
                "totalPlayers": len(self.players),
                "averageAccuracy": self.average_accuracy,
            },
        }


@dataclass
class PlayerComparisonReport:
    start_week: int
    end_week: int
    players: list[NormalizedPlayerSeason]
    player1_better: int = 0
    player2_better: int = 0
    ties: int = 0

    @property
    def weeks_requested(self) -> int:
        return sum(player.weeks_requested for player in self.players)

    @property
    def weeks_retrieved(self) -> int:
        return sum(player.weeks_retrieved for player in self.players)

    @property
    def is_partial(self) -> bool:
        return self.weeks_retrieved < self.weeks_requested

    def to_dict(self) -> dict[str, object]:
        return {
            "weekRange": {"start": self.start_week, "end": self.end_week},
            "weeksRequested": self.weeks_requested,
            "weeksRetrieved": self.weeks_retrieved,
            "players": [player.to_dict() for player in self.players],
            "comparison": {
                "player1Better": self.player1_better,
                "player2Better": self.player2_better,
                "ties": self.ties,
            },
        }


@dataclass(frozen=True)
class PlayerSearchResult:
    player_key: str
    player_id: str
    name: str
    position: str
    team: str

    def to_dict(self) -> dict[str, object]:
        return {
            "playerKey": self.player_key,
            "playerId": self.player_id,
            "name": self.name,
            "position": self.position,
            "team": self.team,
        }


@dataclass
class PlayerSearchPage:
    game_key: str
    start: int
    count: int
    players: list[PlayerSearchResult]

    def to_dict(self) -> dict[str, object]:
        return {
            "gameKey": self.game_key,
            "start": self.start,
            "count": self.count,
            "total": len(self.players),
            "players": [player.to_dict() for player in self.players],
        }


@dataclass
class LeagueReport:
    league_key: str
    league: NormalizedLeague
    weeks_requested: int
    weeks_retrieved: int

    def to_dict(self) -> dict[str, object]:
        info = self.league.info
        return {
            "leagueKey": self.league_key,
            "name": self.league.name,
            "season": info.season if info else None,
            "teams": [team.to_dict() for team in self.league.teams],
            "points": [point.to_dict() for point in self.league.points],
            "scoresSynthetic": self.league.scores_synthetic,
            "weeksRequested": self.weeks_requested,
            "weeksRetrieved": self.weeks_retrieved,
        }
