from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from .errors import (
    UpstreamError,
    UpstreamNotFoundError,
    UpstreamUnauthorizedError,
    UpstreamUnavailableError,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36"
)


class RateLimiter:
    """Minimum spacing between requests, shared by every caller of one upstream."""

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._loop is not loop:
            self._lock = asyncio.Lock()
            self._loop = loop
        return self._lock

    async def wait(self) -> None:
        async with self._get_lock():
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self._last_request = self._clock()


async def retry_on_timeout(
    call: Callable[[], Awaitable[T]],
    retries: int = 2,
    delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Retry ``call`` on timeouts only, doubling the delay between attempts."""

    attempt = 0
    while True:
        try:
            return await call()
        except httpx.TimeoutException as exc:
            if attempt >= retries:
                raise
            attempt += 1
            LOGGER.warning("Timeout (%s); retry %s/%s in %.1fs", exc.__class__.__name__, attempt, retries, delay)
            await sleep(delay)
            delay *= 2


def raise_for_upstream(response: httpx.Response, resource: str) -> None:
    status = response.status_code
    if status < 400:
        return
    message = f"{resource} request failed with status {status}"
    if status in (401, 403):
        raise UpstreamUnauthorizedError(f"Not authorized for {resource}; please reconnect.", status_code=status)
    if status == 404:
        raise UpstreamNotFoundError(f"{resource} not found", status_code=status)
    if status >= 500 or status == 429 or status == 999:
        raise UpstreamUnavailableError(message, status_code=status)
    raise UpstreamError(message, status_code=status)


def parse_json(response: httpx.Response, resource: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamError(f"{resource} returned a non-JSON body", status_code=response.status_code) from exc


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    resource: str,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one request, mapping transport failures onto the error taxonomy.

    Timeouts propagate as ``httpx.TimeoutException`` so a caller may opt into
    ``retry_on_timeout``; ``request_json`` converts them afterwards.
    """

    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException:
        raise
    except httpx.HTTPError as exc:
        raise UpstreamUnavailableError(f"{resource} request failed: {exc}") from exc
    raise_for_upstream(response, resource)
    return response


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    resource: str,
    retries: int = 0,
    retry_delay: float = 1.0,
    **kwargs: Any,
) -> Any:
    async def attempt() -> httpx.Response:
        return await send(client, method, url, resource, **kwargs)

    try:
        if retries:
            response = await retry_on_timeout(attempt, retries=retries, delay=retry_delay)
        else:
            response = await attempt()
    except httpx.TimeoutException as exc:
        raise UpstreamUnavailableError(f"{resource} request timed out") from exc
    return parse_json(response, resource)


__all__ = [
    "RateLimiter",
    "USER_AGENT",
    "parse_json",
    "raise_for_upstream",
    "request_json",
    "retry_on_timeout",
    "send",
]
