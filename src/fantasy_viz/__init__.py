"""Core package for the fantasy football projection-vs-actual toolkit."""

from .settings import AppSettings, get_settings, reset_settings_cache

__all__ = [
    "AppSettings",
    "get_settings",
    "reset_settings_cache",
]
