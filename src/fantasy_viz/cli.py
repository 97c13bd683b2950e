from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click

from .cache import JsonFileBackend
from .credentials import CredentialStore, JsonCredentialBackend, YahooOAuthClient
from .errors import FantasyVizError
from .export import player_weeks_frame, team_scores_frame, write_dataframe
from .scoring import ScoringRuleTable, score_primary, score_secondary
from .service import FantasyService, league_key_from_team
from .settings import AppSettings, get_settings

T = TypeVar("T")

DEFAULT_USER = "default"

env_file_option = click.option(
    "--env-file",
    type=click.Path(path_type=Path, dir_okay=False, exists=False, readable=True),
    default=".env",
    show_default=True,
    help="Path to the .env file to load.",
)
user_option = click.option(
    "--user",
    "user_id",
    default=DEFAULT_USER,
    show_default=True,
    help="Local user id the Yahoo credential is stored under.",
)


def _load_settings(env_file: Path) -> AppSettings:
    settings = get_settings(env_file)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return settings


def _build_service(settings: AppSettings) -> FantasyService:
    return FantasyService.from_settings(settings)


def _credential_store(settings: AppSettings) -> CredentialStore:
    return CredentialStore(
        JsonCredentialBackend(settings.credentials_path),
        oauth=YahooOAuthClient(settings),
    )


def _run(coro: Awaitable[T]) -> T:
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except (FantasyVizError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


def _with_service(
    settings: AppSettings,
    user_id: str,
    action: Callable[[FantasyService, str], Awaitable[T]],
) -> T:
    async def runner() -> T:
        service = _build_service(settings)
        try:
            token = await service.access_token_for(user_id)
            return await action(service, token)
        finally:
            await service.close()

    return _run(runner())


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2))


def _env_rows(settings: AppSettings, show_secrets: bool) -> list[tuple[str, str]]:
    secret = settings.yahoo_client_secret if show_secrets else settings.masked_secret(settings.yahoo_client_secret)
    return [
        ("YAHOO_CLIENT_ID", settings.yahoo_client_id or ""),
        ("YAHOO_CLIENT_SECRET", secret or ""),
        ("BASE_URL", settings.base_url),
        ("FANTASY_SEASON", str(settings.season or "")),
        ("FANTASY_CURRENT_WEEK", str(settings.current_week or "")),
        ("DATA_ROOT", str(settings.data_root)),
        ("REQUEST_TIMEOUT", str(settings.request_timeout)),
        ("MIN_REQUEST_INTERVAL_MS", str(int(settings.min_request_interval * 1000))),
        ("LOG_LEVEL", settings.log_level),
    ]


@click.group()
def cli() -> None:
    """Fantasy football projection-vs-actual CLI."""


@cli.command()
@click.option("--show-secrets", is_flag=True, help="Display raw credential values. Use with caution.")
@env_file_option
def env(show_secrets: bool, env_file: Path) -> None:
    """Show the current environment configuration."""

    settings = get_settings(env_file)
    rows = _env_rows(settings, show_secrets)
    width = max(len(key) for key, _ in rows)
    for key, value in rows:
        click.echo(f"{key.ljust(width)} : {value}")


# ---------------------------
# auth
# ---------------------------


@cli.group()
def auth() -> None:
    """Yahoo OAuth helpers."""


@auth.command("url")
@click.option("--state", type=str, help="Opaque state echoed back on the callback.")
@env_file_option
def auth_url(state: Optional[str], env_file: Path) -> None:
    """Print the Yahoo authorization URL to open in a browser."""

    settings = _load_settings(env_file)
    try:
        click.echo(YahooOAuthClient(settings).authorization_url(state=state))
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc


@auth.command("exchange")
@click.argument("code")
@user_option
@env_file_option
def auth_exchange(code: str, user_id: str, env_file: Path) -> None:
    """Exchange an authorization CODE for tokens and store them."""

    settings = _load_settings(env_file)
    store = _credential_store(settings)
    payload = _run(YahooOAuthClient(settings).exchange_code(code))
    try:
        credential = store.set_tokens(user_id, payload)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Stored Yahoo credential for {user_id} → {settings.credentials_path}")
    _echo_json(credential.masked())


@auth.command("refresh")
@user_option
@env_file_option
def auth_refresh(user_id: str, env_file: Path) -> None:
    """Force a token refresh for a stored credential."""

    settings = _load_settings(env_file)
    store = _credential_store(settings)
    if not store.has_credential(user_id):
        raise click.ClickException(f"No stored credential for {user_id}")
    refreshed = _run(store.refresh_credential(user_id))
    if refreshed is None:
        raise click.ClickException(f"Refresh failed for {user_id}; run `fantasy-viz auth exchange` again.")
    click.echo(f"Refreshed Yahoo credential for {user_id}")
    _echo_json(refreshed.masked())


@auth.command("status")
@user_option
@env_file_option
def auth_status(user_id: str, env_file: Path) -> None:
    """Show whether a credential is stored and when it expires."""

    settings = _load_settings(env_file)
    store = _credential_store(settings)
    credential = store.get_credential(user_id)
    if credential is None:
        click.echo(f"No stored credential for {user_id}")
        return
    remaining = credential.expires_at - time.time()
    status = "expired" if remaining <= 0 else f"expires in {int(remaining // 60)} min"
    click.echo(f"{user_id}: {status}")
    _echo_json(credential.masked())


@auth.command("logout")
@user_option
@env_file_option
def auth_logout(user_id: str, env_file: Path) -> None:
    """Remove a stored credential."""

    settings = _load_settings(env_file)
    store = _credential_store(settings)
    if store.remove(user_id):
        click.echo(f"Removed credential for {user_id}")
    else:
        click.echo(f"No stored credential for {user_id}")


# ---------------------------
# league / team / players
# ---------------------------


@cli.group()
def league() -> None:
    """League-level reports."""


@league.command("standings")
@click.argument("league_key")
@click.option("--seed", type=int, help="Seed for synthetic weekly scores (reproducible output).")
@click.option(
    "--csv",
    "csv_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Also write weekly team scores to this CSV file.",
)
@user_option
@env_file_option
def league_standings(
    league_key: str,
    seed: Optional[int],
    csv_path: Optional[Path],
    user_id: str,
    env_file: Path,
) -> None:
    """Standings and weekly team scores for LEAGUE_KEY (e.g. 423.l.12345)."""

    settings = _load_settings(env_file)
    report = _with_service(
        settings, user_id, lambda service, token: service.get_league(league_key, token, seed=seed)
    )
    _echo_json(report.to_dict())
    if csv_path:
        path = write_dataframe(team_scores_frame(report.league.points), csv_path)
        click.echo(f"Saved weekly scores → {path}", err=True)


@cli.group()
def team() -> None:
    """Team-level reports."""


@team.command("player-stats")
@click.argument("team_key")
@click.option("--start", "start_week", type=int, default=1, show_default=True)
@click.option("--end", "end_week", type=int, default=17, show_default=True)
@click.option("--breakdown", is_flag=True, help="Itemize points per stat using the league's rules.")
@click.option(
    "--csv",
    "csv_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Also write player-weeks to this CSV file.",
)
@user_option
@env_file_option
def team_player_stats(
    team_key: str,
    start_week: int,
    end_week: int,
    breakdown: bool,
    csv_path: Optional[Path],
    user_id: str,
    env_file: Path,
) -> None:
    """Projected vs actual points per roster player of TEAM_KEY."""

    settings = _load_settings(env_file)

    async def action(service: FantasyService, token: str):
        rules = None
        if breakdown:
            rules = await service.get_scoring_rules(league_key_from_team(team_key), token)
        return await service.get_player_stats(team_key, start_week, end_week, token, rules=rules)

    report = _with_service(settings, user_id, action)
    if report.is_partial:
        click.echo(
            f"Warning: retrieved {report.weeks_retrieved}/{report.weeks_requested} weeks",
            err=True,
        )
    _echo_json(report.to_dict())
    if csv_path:
        path = write_dataframe(player_weeks_frame(report.players), csv_path)
        click.echo(f"Saved player weeks → {path}", err=True)


@cli.group()
def players() -> None:
    """Player lookups and comparisons."""


@players.command("compare")
@click.argument("player_keys", nargs=-1, required=True)
@click.option("--league-key", type=str, help="League whose scoring rules apply.")
@click.option("--team-key", type=str, help="Team key; its league's scoring rules apply.")
@click.option("--start", "start_week", type=int, default=1, show_default=True)
@click.option("--end", "end_week", type=int, default=17, show_default=True)
@click.option(
    "--csv",
    "csv_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Also write player-weeks to this CSV file.",
)
@user_option
@env_file_option
def players_compare(
    player_keys: tuple[str, ...],
    league_key: Optional[str],
    team_key: Optional[str],
    start_week: int,
    end_week: int,
    csv_path: Optional[Path],
    user_id: str,
    env_file: Path,
) -> None:
    """Compare PLAYER_KEYS (e.g. 423.p.33536 423.p.31866) week by week."""

    settings = _load_settings(env_file)
    report = _with_service(
        settings,
        user_id,
        lambda service, token: service.compare_players(
            list(player_keys),
            start_week,
            end_week,
            token,
            league_key=league_key,
            team_key=team_key,
        ),
    )
    if report.is_partial:
        click.echo(
            f"Warning: retrieved {report.weeks_retrieved}/{report.weeks_requested} player-weeks",
            err=True,
        )
    _echo_json(report.to_dict())
    if csv_path:
        path = write_dataframe(player_weeks_frame(report.players), csv_path)
        click.echo(f"Saved player weeks → {path}", err=True)


@players.command("search")
@click.argument("game_key")
@click.option("--search", "query", type=str, help="Player name fragment.")
@click.option("--position", type=str, help="QB, RB, WR, TE, ...")
@click.option("--sort", type=str, help="NAME, OR, AR, PTS or PR.")
@click.option("--start", type=int, default=0, show_default=True)
@click.option("--count", type=click.IntRange(1, 25), default=25, show_default=True)
@user_option
@env_file_option
def players_search(
    game_key: str,
    query: Optional[str],
    position: Optional[str],
    sort: Optional[str],
    start: int,
    count: int,
    user_id: str,
    env_file: Path,
) -> None:
    """Search players of GAME_KEY (e.g. 423)."""

    settings = _load_settings(env_file)
    page = _with_service(
        settings,
        user_id,
        lambda service, token: service.search_players(
            game_key, token, search=query, position=position, sort=sort, start=start, count=count
        ),
    )
    _echo_json(page.to_dict())


# ---------------------------
# offline scoring / cache
# ---------------------------


@cli.group()
def score() -> None:
    """Offline scoring utilities."""


@score.command("snapshot")
@click.argument("stats_path", type=click.Path(path_type=Path, dir_okay=False, exists=True))
@click.option(
    "--rules",
    "rules_path",
    type=click.Path(path_type=Path, dir_okay=False, exists=True),
    required=True,
    help="YAML file with a `rules:` mapping of stat id → points.",
)
@click.option(
    "--provider",
    type=click.Choice(["yahoo", "sleeper"]),
    default="yahoo",
    show_default=True,
    help="Key space of the snapshot: Yahoo stat ids or Sleeper stat names.",
)
def score_snapshot(stats_path: Path, rules_path: Path, provider: str) -> None:
    """Score a JSON stat snapshot against a rule table."""

    try:
        rules = ScoringRuleTable.load(rules_path)
        snapshot = json.loads(stats_path.read_text())
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    if not isinstance(snapshot, dict):
        raise click.ClickException("Stat snapshot must be a JSON object")

    result = score_primary(snapshot, rules) if provider == "yahoo" else score_secondary(snapshot, rules)
    _echo_json(
        {
            "points": result.points,
            "breakdown": [line.to_dict() for line in result.breakdown],
        }
    )


@cli.group()
def cache() -> None:
    """Durable cache maintenance."""


@cache.command("clear")
@env_file_option
def cache_clear(env_file: Path) -> None:
    """Delete every durable cache entry."""

    settings = _load_settings(env_file)
    removed = JsonFileBackend(settings.cache_dir).clear()
    click.echo(f"Removed {removed} cache entries from {settings.cache_dir}")


__all__ = ["cli"]
