from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol
from urllib.parse import urlencode

import httpx

from .errors import UpstreamError
from .settings import AppSettings
from .transport import USER_AGENT, request_json

LOGGER = logging.getLogger(__name__)

AUTHORIZE_URL = "https://api.login.yahoo.com/oauth2/request_auth"
TOKEN_URL = "https://api.login.yahoo.com/oauth2/get_token"
DEFAULT_REFRESH_MARGIN_SECONDS = 300
DEFAULT_EXPIRES_IN_SECONDS = 3600


@dataclass(frozen=True)
class StoredCredential:
    access_token: str
    refresh_token: str
    expires_at: float
    owner_id: str
    token_type: str = "bearer"
    provider_user_guid: Optional[str] = None

    @classmethod
    def from_token_payload(
        cls,
        payload: Mapping[str, Any],
        owner_id: str,
        now: float,
        previous: Optional["StoredCredential"] = None,
    ) -> "StoredCredential":
        """Build a record from an OAuth token response.

        Yahoo may omit the refresh token on refresh; the previous one is kept.
        """

        access_token = payload.get("access_token")
        if not access_token:
            raise ValueError("Token response did not include an access_token")
        refresh_token = payload.get("refresh_token") or (previous.refresh_token if previous else None)
        if not refresh_token:
            raise ValueError("Token response did not include a refresh_token")
        try:
            expires_in = float(payload.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN_SECONDS
        guid = payload.get("xoauth_yahoo_guid") or (previous.provider_user_guid if previous else None)
        return cls(
            access_token=str(access_token),
            refresh_token=str(refresh_token),
            expires_at=now + expires_in,
            owner_id=owner_id,
            token_type=str(payload.get("token_type") or "bearer"),
            provider_user_guid=str(guid) if guid else None,
        )

    def expires_within(self, now: float, margin: float) -> bool:
        return now + margin >= self.expires_at

    def masked(self) -> dict[str, object]:
        def _mask(value: str) -> str:
            return f"{value[:6]}***{value[-6:]}" if len(value) > 12 else "***"

        return {
            "ownerId": self.owner_id,
            "accessToken": _mask(self.access_token),
            "refreshToken": _mask(self.refresh_token),
            "expiresAt": self.expires_at,
            "providerUserGuid": self.provider_user_guid,
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "owner_id": self.owner_id,
            "token_type": self.token_type,
            "provider_user_guid": self.provider_user_guid,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StoredCredential":
        return cls(
            access_token=str(payload["access_token"]),
            refresh_token=str(payload["refresh_token"]),
            expires_at=float(payload["expires_at"]),
            owner_id=str(payload["owner_id"]),
            token_type=str(payload.get("token_type") or "bearer"),
            provider_user_guid=payload.get("provider_user_guid"),
        )


class CredentialBackend(Protocol):
    def load_all(self) -> dict[str, dict[str, Any]]:
        ...

    def save_all(self, records: Mapping[str, Mapping[str, Any]]) -> None:
        ...


class JsonCredentialBackend:
    """All users' credentials in one JSON file, rewritten atomically."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load_all(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        payload = json.loads(self.path.read_text())
        users = payload.get("users") if isinstance(payload, dict) else None
        if not isinstance(users, dict):
            raise ValueError(f"Unrecognized credential file layout at {self.path}")
        return users

    def save_all(self, records: Mapping[str, Mapping[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump({"users": dict(records)}, handle, indent=2)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class YahooOAuthClient:
    """Yahoo OAuth2 token endpoint (authorization-code and refresh grants)."""

    def __init__(
        self,
        settings: AppSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._transport = transport

    def _credentials(self) -> tuple[str, str]:
        if not self.settings.oauth_configured:
            raise ValueError("YAHOO_CLIENT_ID and YAHOO_CLIENT_SECRET must be configured.")
        return str(self.settings.yahoo_client_id), str(self.settings.yahoo_client_secret)

    def authorization_url(self, state: Optional[str] = None) -> str:
        client_id, _ = self._credentials()
        params = {
            "client_id": client_id,
            "redirect_uri": self.settings.redirect_uri,
            "response_type": "code",
        }
        if state:
            params["state"] = state
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        auth = self._credentials()
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.request_timeout),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=self._transport,
        ) as client:
            data = await request_json(client, "POST", TOKEN_URL, "Yahoo token", data=form, auth=auth)
        if not isinstance(data, dict):
            raise UpstreamError("Unexpected Yahoo token response; expected object")
        return data

    async def exchange_code(self, code: str) -> dict[str, Any]:
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.settings.redirect_uri,
            }
        )

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "redirect_uri": self.settings.redirect_uri,
            }
        )


class CredentialStore:
    """Per-user OAuth credentials with refresh-on-read.

    A credential within ``refresh_margin`` seconds of expiry is refreshed
    before being handed out. Refreshes for one user are serialized; the
    record is always replaced whole.
    """

    def __init__(
        self,
        backend: CredentialBackend,
        oauth: Optional[YahooOAuthClient] = None,
        clock: Callable[[], float] = time.time,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN_SECONDS,
    ) -> None:
        self.backend = backend
        self.oauth = oauth
        self.clock = clock
        self.refresh_margin = refresh_margin
        self._records: Optional[dict[str, StoredCredential]] = None
        self._locks: dict[str, asyncio.Lock] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _read_records(self) -> dict[str, StoredCredential]:
        records: dict[str, StoredCredential] = {}
        try:
            raw = self.backend.load_all()
        except (OSError, ValueError) as exc:
            LOGGER.warning("Unable to read stored credentials: %s", exc)
            raw = {}
        for user_id, payload in raw.items():
            try:
                records[user_id] = StoredCredential.from_dict(payload)
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping malformed credential for %s: %s", user_id, exc)
        return records

    def _write_records(self, snapshot: dict[str, dict[str, Any]]) -> None:
        try:
            self.backend.save_all(snapshot)
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.error("Unable to persist credentials: %s", exc)

    def _snapshot(self) -> dict[str, dict[str, Any]]:
        return {user_id: record.to_dict() for user_id, record in self._load().items()}

    def _load(self) -> dict[str, StoredCredential]:
        if self._records is None:
            self._records = self._read_records()
        return self._records

    async def _load_async(self) -> dict[str, StoredCredential]:
        if self._records is None:
            records = await asyncio.to_thread(self._read_records)
            if self._records is None:
                self._records = records
        return self._records

    def _persist(self) -> None:
        self._write_records(self._snapshot())

    async def _persist_async(self) -> None:
        await asyncio.to_thread(self._write_records, self._snapshot())

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._locks = {}
            self._loop = loop
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def set_tokens(self, user_id: str, payload: Mapping[str, Any]) -> StoredCredential:
        records = self._load()
        credential = StoredCredential.from_token_payload(
            payload, owner_id=user_id, now=self.clock(), previous=records.get(user_id)
        )
        records[user_id] = credential
        self._persist()
        LOGGER.info("Stored credential for %s", user_id)
        return credential

    def get_credential(self, user_id: str) -> Optional[StoredCredential]:
        return self._load().get(user_id)

    def has_credential(self, user_id: str) -> bool:
        return user_id in self._load()

    def remove(self, user_id: str) -> bool:
        records = self._load()
        if records.pop(user_id, None) is None:
            return False
        self._persist()
        LOGGER.info("Removed credential for %s", user_id)
        return True

    def users(self) -> list[str]:
        return sorted(self._load())

    async def refresh_credential(self, user_id: str) -> Optional[StoredCredential]:
        """Force a refresh; ``None`` when there is nothing to refresh or it fails."""

        current = (await self._load_async()).get(user_id)
        if current is None:
            return None
        if self.oauth is None:
            LOGGER.warning("No OAuth client configured; cannot refresh credential for %s", user_id)
            return None
        try:
            payload = await self.oauth.refresh(current.refresh_token)
            refreshed = StoredCredential.from_token_payload(
                payload, owner_id=user_id, now=self.clock(), previous=current
            )
        except (UpstreamError, ValueError) as exc:
            LOGGER.error("Failed to refresh credential for %s: %s", user_id, exc)
            return None
        (await self._load_async())[user_id] = refreshed
        await self._persist_async()
        LOGGER.info("Refreshed credential for %s", user_id)
        return refreshed

    async def get_access_credential(self, user_id: str) -> Optional[str]:
        current = (await self._load_async()).get(user_id)
        if current is None:
            return None
        if not current.expires_within(self.clock(), self.refresh_margin):
            return current.access_token

        async with self._lock_for(user_id):
            # another caller may have refreshed while we waited
            current = self.get_credential(user_id)
            if current is None:
                return None
            if not current.expires_within(self.clock(), self.refresh_margin):
                return current.access_token
            refreshed = await self.refresh_credential(user_id)
        return refreshed.access_token if refreshed is not None else None


__all__ = [
    "AUTHORIZE_URL",
    "CredentialBackend",
    "CredentialStore",
    "JsonCredentialBackend",
    "StoredCredential",
    "TOKEN_URL",
    "YahooOAuthClient",
]
