"""Yahoo fantasy_content payload builders shared by the tests."""

from typing import Any, Optional


def indexed(items: list[Any]) -> dict[str, Any]:
    collection: dict[str, Any] = {str(index): item for index, item in enumerate(items)}
    collection["count"] = len(items)
    return collection


def team_entry(team_id: int, name: str, rank: int, total: Any, wins: int = 0, losses: int = 0) -> dict[str, Any]:
    return {
        "team": [
            [
                {"team_key": f"423.l.1.t.{team_id}"},
                {"team_id": str(team_id)},
                {"name": name},
            ],
            {"team_points": {"coverage_type": "season", "season": "2024", "total": str(total)}},
            {
                "team_standings": {
                    "rank": rank,
                    "outcome_totals": {"wins": wins, "losses": losses, "ties": 0, "percentage": ".500"},
                }
            },
        ]
    }


def league_info(end_week: int = 17, current_week: Optional[int] = None) -> dict[str, Any]:
    info: dict[str, Any] = {
        "league_key": "423.l.1",
        "league_id": "1",
        "name": "Test League",
        "start_week": "1",
        "end_week": str(end_week),
        "season": "2024",
    }
    if current_week is not None:
        info["current_week"] = current_week
    return info


def standings_payload(teams: list[dict[str, Any]], end_week: int = 17, current_week: Optional[int] = None) -> dict:
    return {
        "fantasy_content": {
            "league": [
                league_info(end_week=end_week, current_week=current_week),
                {"standings": [{"teams": indexed(teams)}]},
            ]
        }
    }


def scoreboard_payload(week: int, scores: dict[str, float]) -> dict:
    matchup_teams = [
        {
            "team": [
                [{"team_key": f"423.l.1.t.{index + 1}"}, {"name": name}],
                {"team_points": {"coverage_type": "week", "week": str(week), "total": str(total)}},
            ]
        }
        for index, (name, total) in enumerate(scores.items())
    ]
    return {
        "fantasy_content": {
            "league": [
                {"league_key": "423.l.1", "league_id": "1", "name": "Test League"},
                {
                    "scoreboard": {
                        "week": str(week),
                        "0": {"matchups": indexed([{"matchup": {"week": str(week), "0": {"teams": indexed(matchup_teams)}}}])},
                    }
                },
            ]
        }
    }


def player_entry(
    player_id: int,
    name: str,
    total: Any,
    projected: Any = None,
    position: str = "QB",
    team: str = "KC",
    stats: Optional[dict[int, Any]] = None,
) -> dict[str, Any]:
    first, _, last = name.partition(" ")
    info = [
        {"player_key": f"423.p.{player_id}"},
        {"player_id": str(player_id)},
        {"name": {"full": name, "first": first, "last": last}},
        {"editorial_team_abbr": team},
        {"display_position": position},
    ]
    extras: list[dict[str, Any]] = [
        {
            "player_stats": {
                "coverage_type": "week",
                "stats": [{"stat": {"stat_id": str(stat_id), "value": str(value)}} for stat_id, value in (stats or {}).items()],
            }
        },
        {"player_points": {"coverage_type": "week", "total": str(total)}},
    ]
    if projected is not None:
        extras.append({"player_projected_points": {"coverage_type": "week", "total": str(projected)}})
    return {"player": [info, *extras]}


def roster_payload(players: list[dict[str, Any]], week: int = 1) -> dict:
    return {
        "fantasy_content": {
            "team": [
                [{"team_key": "423.l.1.t.1"}, {"team_id": "1"}, {"name": "Alpha"}],
                {"roster": {"coverage_type": "week", "week": str(week), "0": {"players": indexed(players)}}},
            ]
        }
    }


def player_payload(player_id: int, name: str, position: str = "QB") -> dict:
    entry = player_entry(player_id, name, total=0, position=position)
    return {"fantasy_content": {"player": entry["player"][:1]}}


def settings_payload(modifiers: dict[int, float]) -> dict:
    stats = [{"stat": {"stat_id": stat_id, "value": str(value)}} for stat_id, value in modifiers.items()]
    return {
        "fantasy_content": {
            "league": [
                {"league_key": "423.l.1", "league_id": "1", "name": "Test League"},
                {"settings": [{"roster_positions": []}, {"stat_modifiers": {"stats": stats}}]},
            ]
        }
    }


