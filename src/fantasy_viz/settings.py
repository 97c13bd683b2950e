from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass
class AppSettings:
    """Application configuration sourced from environment variables."""

    yahoo_client_id: Optional[str]
    yahoo_client_secret: Optional[str]
    base_url: str
    season: Optional[int]
    current_week: Optional[int]
    data_root: Path
    request_timeout: float = 10.0
    min_request_interval: float = 0.05
    log_level: str = "INFO"

    @property
    def cache_dir(self) -> Path:
        return self.data_root / "cache"

    @property
    def credentials_path(self) -> Path:
        return self.data_root / "auth" / "tokens.json"

    @property
    def redirect_uri(self) -> str:
        return f"{self.base_url.rstrip('/')}/auth/yahoo/callback"

    @property
    def oauth_configured(self) -> bool:
        return bool(self.yahoo_client_id and self.yahoo_client_secret)

    def masked_secret(self, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        return f"{value[:4]}***{value[-4:]}" if len(value) > 8 else "***"


def _coerce_int(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Expected integer-compatible value, got: {value!r}") from None


def _coerce_float(value: Optional[str], default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Expected numeric value, got: {value!r}") from None


@lru_cache(maxsize=1)
def get_settings(env_path: Optional[Path | str] = None) -> AppSettings:
    """Load settings from `.env` (if present) and environment variables."""

    env_file = Path(env_path) if env_path else Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    data_root = Path(os.getenv("DATA_ROOT", "./data")).resolve()
    interval_ms = _coerce_float(os.getenv("MIN_REQUEST_INTERVAL_MS"), 50.0)

    return AppSettings(
        yahoo_client_id=os.getenv("YAHOO_CLIENT_ID"),
        yahoo_client_secret=os.getenv("YAHOO_CLIENT_SECRET"),
        base_url=os.getenv("BASE_URL", "http://localhost:5000"),
        season=_coerce_int(os.getenv("FANTASY_SEASON")),
        current_week=_coerce_int(os.getenv("FANTASY_CURRENT_WEEK")),
        data_root=data_root,
        request_timeout=_coerce_float(os.getenv("REQUEST_TIMEOUT"), 10.0),
        min_request_interval=interval_ms / 1000.0,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful for tests."""

    get_settings.cache_clear()  # type: ignore[attr-defined]
