from __future__ import annotations

from typing import Optional


class FantasyVizError(RuntimeError):
    """Base class for errors surfaced by the fantasy_viz core."""


class UpstreamError(FantasyVizError):
    """Raised when an upstream provider call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamUnavailableError(UpstreamError):
    """Timeout, transport failure or 5xx from an upstream provider."""


class UpstreamUnauthorizedError(UpstreamError):
    """The provider rejected the access credential; the user must re-authenticate."""


class UpstreamNotFoundError(UpstreamError):
    """The requested league, team or player key does not exist upstream."""


class NotAuthenticatedError(FantasyVizError):
    """No valid credential is available for the requesting user."""


class AggregationError(FantasyVizError):
    """Raised when none of the units of a fan-out request succeeded."""


__all__ = [
    "AggregationError",
    "FantasyVizError",
    "NotAuthenticatedError",
    "UpstreamError",
    "UpstreamNotFoundError",
    "UpstreamUnauthorizedError",
    "UpstreamUnavailableError",
]
