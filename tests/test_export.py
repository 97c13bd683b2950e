from pathlib import Path

import pandas as pd

from fantasy_viz.export import player_weeks_frame, team_scores_frame, write_dataframe
from fantasy_viz.models import NormalizedPlayerSeason, NormalizedPlayerWeek, ProjectionSource, WeeklyTeamScore


def test_player_weeks_frame(tmp_path: Path) -> None:
    season = NormalizedPlayerSeason(
        player_key="423.p.1",
        player_id="1",
        name="Patrick Mahomes",
        position="QB",
        team="KC",
        weeks=[
            NormalizedPlayerWeek.build(week=2, projected_points=20.0, actual_points=25.0),
            NormalizedPlayerWeek.build(
                week=1, projected_points=18.0, actual_points=9.0, projection_source=ProjectionSource.RUNNING_AVERAGE
            ),
        ],
    )

    df = player_weeks_frame([season])

    assert list(df["week"]) == [1, 2]
    assert list(df["projection_source"]) == ["running_average", "provider"]
    assert df.loc[1, "percent_difference"] == 25.0

    path = write_dataframe(df, tmp_path / "out" / "player_weeks.csv")
    exported = pd.read_csv(path)
    assert len(exported) == 2
    assert set(exported.columns) >= {"player_key", "week", "actual_points", "projected_points"}


def test_empty_frames_keep_columns() -> None:
    assert list(player_weeks_frame([]).columns)[:3] == ["player_key", "name", "position"]
    assert list(team_scores_frame([]).columns) == ["week", "team_name", "score"]


def test_team_scores_frame_sorted() -> None:
    df = team_scores_frame(
        [
            WeeklyTeamScore(week=2, team_name="Alpha", score=99.0),
            WeeklyTeamScore(week=1, team_name="Bravo", score=80.0),
            WeeklyTeamScore(week=1, team_name="Alpha", score=101.5),
        ]
    )
    assert list(zip(df["week"], df["team_name"])) == [(1, "Alpha"), (1, "Bravo"), (2, "Alpha")]
