"""Assemble per-player weekly series from normalized snapshots.

Two sources feed these series:

* weekly Yahoo roster payloads, where each player carries its own points and,
  inconsistently, a projected-points block;
* Sleeper stat and projection snapshots, scored through the league's rule
  table.

When Yahoo omits the projection block the series falls back to a running
average of the player's prior actual scores (the first week uses its own
actual score). Weeks built that way are tagged
``ProjectionSource.RUNNING_AVERAGE`` so they can be told apart from real
projections. A projection that is present but equal to zero is kept as a real
projection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence, Tuple

from .models import (
    ACCURACY_THRESHOLD_PCT,
    NormalizedPlayerSeason,
    NormalizedPlayerWeek,
    PlayerSummary,
    ProjectionSource,
    RosterPlayer,
)
from .normalize import normalize_roster_players
from .scoring import ScoringRuleTable, score_primary, score_secondary

LOGGER = logging.getLogger(__name__)


@dataclass
class _PlayerWeeks:
    identity: RosterPlayer
    by_week: dict[int, RosterPlayer] = field(default_factory=dict)

    @property
    def ever_scored(self) -> bool:
        return any(entry.actual_points != 0 for entry in self.by_week.values())


def build_roster_series(
    entries: Mapping[int, RosterPlayer],
    rules: Optional[ScoringRuleTable] = None,
) -> list[NormalizedPlayerWeek]:
    weeks: list[NormalizedPlayerWeek] = []
    prior_actuals: list[float] = []
    for week in sorted(entries):
        entry = entries[week]
        if entry.projected_points is not None:
            projected = entry.projected_points
            source = ProjectionSource.PROVIDER
        elif prior_actuals:
            projected = sum(prior_actuals) / len(prior_actuals)
            source = ProjectionSource.RUNNING_AVERAGE
        else:
            projected = entry.actual_points
            source = ProjectionSource.RUNNING_AVERAGE

        breakdown = score_primary(entry.stats, rules).breakdown if rules is not None and entry.stats else None
        weeks.append(
            NormalizedPlayerWeek.build(
                week=week,
                projected_points=projected,
                actual_points=entry.actual_points,
                breakdown=breakdown,
                projection_source=source,
            )
        )
        prior_actuals.append(entry.actual_points)
    return weeks


def reconcile_roster_weeks(
    weekly_snapshots: Iterable[Tuple[int, object]],
    rules: Optional[ScoringRuleTable] = None,
    threshold: float = ACCURACY_THRESHOLD_PCT,
) -> list[NormalizedPlayerSeason]:
    """Merge N weekly roster payloads of one team into per-player seasons.

    Snapshots may arrive in any order. Players who never recorded a nonzero
    actual score across the window are dropped.
    """

    snapshots = list(weekly_snapshots)
    accumulated: dict[str, _PlayerWeeks] = {}
    for week, payload in snapshots:
        for player in normalize_roster_players(payload):
            slot = accumulated.setdefault(player.player_key, _PlayerWeeks(identity=player))
            slot.by_week[week] = player

    seasons: list[NormalizedPlayerSeason] = []
    for player_key, slot in accumulated.items():
        if not slot.ever_scored:
            LOGGER.debug("Dropping %s - no nonzero actual score in window", player_key)
            continue
        weeks = build_roster_series(slot.by_week, rules)
        identity = slot.identity
        seasons.append(
            NormalizedPlayerSeason(
                player_key=player_key,
                player_id=identity.player_id,
                name=identity.name,
                position=identity.position,
                team=identity.team,
                weeks=weeks,
                summary=PlayerSummary.from_weeks(weeks, threshold=threshold),
                weeks_requested=len(snapshots),
                weeks_retrieved=len(snapshots),
            )
        )
    return seasons


def build_secondary_week(
    week: int,
    stats: Mapping[str, object],
    projections: Mapping[str, object],
    rules: ScoringRuleTable,
) -> NormalizedPlayerWeek:
    actual = score_secondary(stats, rules)
    projected = score_secondary(projections, rules)
    return NormalizedPlayerWeek.build(
        week=week,
        projected_points=projected.points,
        actual_points=actual.points,
        breakdown=actual.breakdown if actual.points != 0 else None,
        projection_source=ProjectionSource.PROVIDER if projections else ProjectionSource.NONE,
    )


def build_secondary_season(
    player_key: str,
    player_id: str,
    name: str,
    position: str,
    team: str,
    weekly: Iterable[Tuple[int, Optional[Mapping[str, object]], Mapping[str, object]]],
    rules: ScoringRuleTable,
    threshold: float = ACCURACY_THRESHOLD_PCT,
) -> NormalizedPlayerSeason:
    """Score a Sleeper series; weeks whose stats are ``None`` failed and are left out."""

    entries = list(weekly)
    weeks = sorted(
        (
            build_secondary_week(week, stats, projections, rules)
            for week, stats, projections in entries
            if stats is not None
        ),
        key=lambda item: item.week,
    )
    return NormalizedPlayerSeason(
        player_key=player_key,
        player_id=player_id,
        name=name,
        position=position,
        team=team,
        weeks=weeks,
        summary=PlayerSummary.from_weeks(weeks, threshold=threshold),
        weeks_requested=len(entries),
        weeks_retrieved=len(weeks),
    )


def head_to_head(players: Sequence[NormalizedPlayerSeason]) -> Tuple[int, int, int]:
    """Weekly actual-points wins of the first player vs the second, plus ties."""

    if len(players) < 2:
        return 0, 0, 0
    second = {week.week: week for week in players[1].weeks}
    first_better = second_better = ties = 0
    for week in players[0].weeks:
        other = second.get(week.week)
        if other is None:
            continue
        if week.actual_points > other.actual_points:
            first_better += 1
        elif other.actual_points > week.actual_points:
            second_better += 1
        else:
            ties += 1
    return first_better, second_better, ties
