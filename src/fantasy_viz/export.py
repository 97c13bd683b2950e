from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pandas as pd

from .models import NormalizedPlayerSeason, WeeklyTeamScore

PLAYER_WEEK_COLUMNS = [
    "player_key",
    "name",
    "position",
    "team",
    "week",
    "projected_points",
    "actual_points",
    "difference",
    "percent_difference",
    "projection_source",
]

TEAM_SCORE_COLUMNS = ["week", "team_name", "score"]


def player_weeks_frame(players: Iterable[NormalizedPlayerSeason]) -> pd.DataFrame:
    """One row per player-week."""

    rows = [
        {
            "player_key": player.player_key,
            "name": player.name,
            "position": player.position,
            "team": player.team,
            "week": week.week,
            "projected_points": week.projected_points,
            "actual_points": week.actual_points,
            "difference": week.difference,
            "percent_difference": week.percent_difference,
            "projection_source": week.projection_source.value,
        }
        for player in players
        for week in player.weeks
    ]
    df = pd.DataFrame(rows, columns=PLAYER_WEEK_COLUMNS)
    if not df.empty:
        df = df.sort_values(["player_key", "week"]).reset_index(drop=True)
    return df


def team_scores_frame(points: Iterable[WeeklyTeamScore]) -> pd.DataFrame:
    df = pd.DataFrame(
        [{"week": point.week, "team_name": point.team_name, "score": point.score} for point in points],
        columns=TEAM_SCORE_COLUMNS,
    )
    if not df.empty:
        df = df.sort_values(["week", "team_name"]).reset_index(drop=True)
    return df


def write_dataframe(df: pd.DataFrame, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return path


__all__ = ["player_weeks_frame", "team_scores_frame", "write_dataframe"]
