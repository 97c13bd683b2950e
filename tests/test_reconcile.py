import pytest

from fantasy_viz.models import NormalizedPlayerWeek, PlayerSummary, ProjectionSource, RosterPlayer
from fantasy_viz.reconcile import (
    build_roster_series,
    build_secondary_season,
    head_to_head,
    reconcile_roster_weeks,
)
from fantasy_viz.scoring import ScoringRuleTable
from payloads import player_entry, roster_payload

RULES = ScoringRuleTable.from_mapping({4: 0.04, 5: 4, 6: -2})


def _entry(actual: float, projected=None) -> RosterPlayer:
    return RosterPlayer(
        player_key="423.p.1",
        player_id="1",
        name="Test Player",
        position="QB",
        team="KC",
        actual_points=actual,
        projected_points=projected,
    )


def test_percent_difference_zero_when_projection_zero() -> None:
    week = NormalizedPlayerWeek.build(week=1, projected_points=0.0, actual_points=12.0)
    assert week.difference == 12.0
    assert week.percent_difference == 0.0


def test_accuracy_rate_counts_weeks_within_threshold() -> None:
    weeks = [
        NormalizedPlayerWeek.build(week=index + 1, projected_points=100.0, actual_points=actual)
        for index, actual in enumerate([105.0, 85.0, 122.0, 97.0])
    ]
    assert [round(week.percent_difference) for week in weeks] == [5, -15, 22, -3]

    summary = PlayerSummary.from_weeks(weeks)

    assert summary.accuracy_rate == pytest.approx(75.0)
    assert summary.weeks_played == 4
    assert summary.total_actual == pytest.approx(409.0)
    assert summary.average_projected == pytest.approx(100.0)


def test_summary_ignores_weeks_without_points() -> None:
    weeks = [
        NormalizedPlayerWeek.build(week=1, projected_points=10.0, actual_points=0.0),
        NormalizedPlayerWeek.build(week=2, projected_points=10.0, actual_points=11.0),
    ]
    summary = PlayerSummary.from_weeks(weeks)
    assert summary.weeks_played == 1
    assert summary.total_projected == pytest.approx(10.0)
    assert PlayerSummary.from_weeks([]) == PlayerSummary()


def test_running_average_projection_when_provider_omits_it() -> None:
    weeks = build_roster_series({1: _entry(10.0), 2: _entry(20.0), 3: _entry(30.0)})

    assert [week.projected_points for week in weeks] == [10.0, 10.0, 15.0]
    assert all(week.projection_source is ProjectionSource.RUNNING_AVERAGE for week in weeks)


def test_provider_projection_kept_even_when_zero() -> None:
    weeks = build_roster_series({1: _entry(10.0), 2: _entry(14.0, projected=0.0), 3: _entry(9.0, projected=12.0)})

    assert weeks[1].projected_points == 0.0
    assert weeks[1].projection_source is ProjectionSource.PROVIDER
    assert weeks[1].percent_difference == 0.0
    assert weeks[2].projected_points == 12.0
    assert weeks[2].projection_source is ProjectionSource.PROVIDER


def test_reconcile_roster_weeks_merges_out_of_order_snapshots() -> None:
    snapshots = [
        (2, roster_payload([player_entry(1, "Patrick Mahomes", total=20, stats={4: 300, 5: 2}), player_entry(2, "Bench Guy", total=0)], week=2)),
        (1, roster_payload([player_entry(1, "Patrick Mahomes", total=18, projected=19.5), player_entry(2, "Bench Guy", total=0)], week=1)),
    ]

    seasons = reconcile_roster_weeks(snapshots, rules=RULES)

    assert [season.name for season in seasons] == ["Patrick Mahomes"]
    mahomes = seasons[0]
    assert [week.week for week in mahomes.weeks] == [1, 2]
    assert mahomes.weeks[0].projection_source is ProjectionSource.PROVIDER
    assert mahomes.weeks[1].projection_source is ProjectionSource.RUNNING_AVERAGE
    assert mahomes.weeks[1].projected_points == pytest.approx(18.0)
    assert mahomes.uses_heuristic_projection
    assert mahomes.weeks[1].breakdown is not None
    assert {line.stat for line in mahomes.weeks[1].breakdown} == {"pass_yd", "pass_td"}


def test_secondary_season_scores_stats_and_projections() -> None:
    weekly = [
        (2, {"pass_yd": 200}, {}),
        (1, {"pass_yd": 275, "pass_td": 2, "pass_int": 1}, {"pass_yd": 250, "pass_td": 2}),
        (3, {}, {}),
    ]

    season = build_secondary_season("sleeper.4046", "4046", "Patrick Mahomes", "QB", "KC", weekly, RULES)

    assert [week.week for week in season.weeks] == [1, 2, 3]
    week_1, week_2, week_3 = season.weeks
    assert week_1.actual_points == pytest.approx(17.0)
    assert week_1.projected_points == pytest.approx(18.0)
    assert week_1.projection_source is ProjectionSource.PROVIDER
    assert week_2.projection_source is ProjectionSource.NONE
    assert week_3.breakdown is None
    assert season.summary.weeks_played == 2


def test_secondary_season_leaves_out_failed_weeks() -> None:
    weekly = [(1, {"pass_td": 2}, {}), (2, None, {"pass_td": 1}), (3, {}, {})]

    season = build_secondary_season("sleeper.4046", "4046", "Patrick Mahomes", "QB", "KC", weekly, RULES)

    assert [week.week for week in season.weeks] == [1, 3]
    assert (season.weeks_requested, season.weeks_retrieved) == (3, 2)
    assert season.to_dict()["weeksRetrieved"] == 2


def test_head_to_head_counts() -> None:
    first = build_secondary_season("a", "1", "A", "QB", "KC", [(1, {"pass_td": 3}, {}), (2, {"pass_td": 1}, {}), (3, {"pass_td": 2}, {})], RULES)
    second = build_secondary_season("b", "2", "B", "QB", "BUF", [(1, {"pass_td": 2}, {}), (2, {"pass_td": 2}, {}), (3, {"pass_td": 2}, {})], RULES)

    assert head_to_head([first, second]) == (1, 1, 1)
    assert head_to_head([first]) == (0, 0, 0)
