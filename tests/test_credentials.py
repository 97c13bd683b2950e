import asyncio
import threading
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

from fantasy_viz.credentials import (
    TOKEN_URL,
    CredentialStore,
    JsonCredentialBackend,
    StoredCredential,
    YahooOAuthClient,
)

TOKEN_RESPONSE = {
    "access_token": "access-token-initial-0001",
    "refresh_token": "refresh-token-initial-0001",
    "expires_in": 3600,
    "token_type": "bearer",
    "xoauth_yahoo_guid": "GUID123",
}


class TokenEndpoint:
    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.forms: list[dict[str, list[str]]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert str(request.url) == TOKEN_URL
        assert request.headers["Authorization"].startswith("Basic ")
        form = parse_qs(request.content.decode())
        self.forms.append(form)
        if self.status != 200:
            return httpx.Response(self.status, json={"error": "invalid_grant"})
        return httpx.Response(
            200,
            json={
                "access_token": f"access-token-refreshed-{len(self.forms):04d}",
                "expires_in": 3600,
                "token_type": "bearer",
            },
        )


def _store(settings, clock, endpoint, path: Path) -> CredentialStore:
    oauth = YahooOAuthClient(settings, transport=httpx.MockTransport(endpoint))
    return CredentialStore(JsonCredentialBackend(path), oauth=oauth, clock=clock)


def test_from_token_payload_computes_expiry() -> None:
    credential = StoredCredential.from_token_payload(TOKEN_RESPONSE, owner_id="user-1", now=1000.0)
    assert credential.expires_at == 4600.0
    assert credential.provider_user_guid == "GUID123"
    assert StoredCredential.from_dict(credential.to_dict()) == credential
    assert credential.masked()["accessToken"] == "access***l-0001"

    with pytest.raises(ValueError):
        StoredCredential.from_token_payload({"refresh_token": "x"}, owner_id="user-1", now=0.0)


def test_fresh_credential_returned_without_refresh(settings, clock, tmp_path: Path) -> None:
    endpoint = TokenEndpoint()
    store = _store(settings, clock, endpoint, tmp_path / "tokens.json")
    store.set_tokens("user-1", TOKEN_RESPONSE)

    clock.advance(3600 - 301)
    token = asyncio.run(store.get_access_credential("user-1"))

    assert token == "access-token-initial-0001"
    assert endpoint.forms == []


def test_refresh_within_margin_replaces_record(settings, clock, tmp_path: Path) -> None:
    endpoint = TokenEndpoint()
    path = tmp_path / "tokens.json"
    store = _store(settings, clock, endpoint, path)
    store.set_tokens("user-1", TOKEN_RESPONSE)

    clock.advance(3600 - 300)
    token = asyncio.run(store.get_access_credential("user-1"))

    assert token == "access-token-refreshed-0001"
    assert endpoint.forms[0]["grant_type"] == ["refresh_token"]
    assert endpoint.forms[0]["refresh_token"] == ["refresh-token-initial-0001"]
    refreshed = store.get_credential("user-1")
    assert refreshed.refresh_token == "refresh-token-initial-0001"
    assert refreshed.expires_at == pytest.approx(clock.now + 3600)
    assert refreshed.provider_user_guid == "GUID123"


def test_concurrent_callers_refresh_once(settings, clock, tmp_path: Path) -> None:
    endpoint = TokenEndpoint()
    store = _store(settings, clock, endpoint, tmp_path / "tokens.json")
    store.set_tokens("user-1", TOKEN_RESPONSE)
    clock.advance(3600)

    async def scenario():
        return await asyncio.gather(*(store.get_access_credential("user-1") for _ in range(3)))

    tokens = asyncio.run(scenario())

    assert set(tokens) == {"access-token-refreshed-0001"}
    assert len(endpoint.forms) == 1


def test_refresh_failure_returns_none(settings, clock, tmp_path: Path) -> None:
    endpoint = TokenEndpoint(status=400)
    store = _store(settings, clock, endpoint, tmp_path / "tokens.json")
    original = store.set_tokens("user-1", TOKEN_RESPONSE)
    clock.advance(4000)

    assert asyncio.run(store.get_access_credential("user-1")) is None
    assert len(endpoint.forms) == 1
    assert store.get_credential("user-1") == original


def test_unknown_user_has_no_credential(settings, clock, tmp_path: Path) -> None:
    store = _store(settings, clock, TokenEndpoint(), tmp_path / "tokens.json")
    assert asyncio.run(store.get_access_credential("nobody")) is None
    assert not store.has_credential("nobody")
    assert store.remove("nobody") is False


def test_credentials_persist_across_instances(settings, clock, tmp_path: Path) -> None:
    path = tmp_path / "auth" / "tokens.json"
    first = _store(settings, clock, TokenEndpoint(), path)
    first.set_tokens("user-1", TOKEN_RESPONSE)
    first.set_tokens("user-2", {**TOKEN_RESPONSE, "access_token": "access-token-second-user"})

    second = _store(settings, clock, TokenEndpoint(), path)
    assert second.users() == ["user-1", "user-2"]
    assert asyncio.run(second.get_access_credential("user-2")) == "access-token-second-user"

    assert second.remove("user-1")
    third = _store(settings, clock, TokenEndpoint(), path)
    assert third.users() == ["user-2"]


def test_corrupt_credential_file_is_ignored(settings, clock, tmp_path: Path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text("[]", encoding="utf-8")
    store = _store(settings, clock, TokenEndpoint(), path)
    assert store.users() == []


def test_exchange_code_posts_authorization_code(settings) -> None:
    forms = []

    def handler(request: httpx.Request) -> httpx.Response:
        forms.append(parse_qs(request.content.decode()))
        return httpx.Response(200, json=TOKEN_RESPONSE)

    oauth = YahooOAuthClient(settings, transport=httpx.MockTransport(handler))
    payload = asyncio.run(oauth.exchange_code("abc123"))

    assert payload["access_token"] == TOKEN_RESPONSE["access_token"]
    assert forms[0]["grant_type"] == ["authorization_code"]
    assert forms[0]["code"] == ["abc123"]
    assert forms[0]["redirect_uri"] == ["http://localhost:5000/auth/yahoo/callback"]


def test_authorization_url_requires_client_config(settings) -> None:
    url = YahooOAuthClient(settings).authorization_url(state="xyz")
    assert url.startswith("https://api.login.yahoo.com/oauth2/request_auth?")
    assert "client_id=client-id-1234" in url
    assert "state=xyz" in url

    settings.yahoo_client_secret = None
    with pytest.raises(ValueError):
        YahooOAuthClient(settings).authorization_url()


class ThreadRecordingBackend(JsonCredentialBackend):
    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self.threads: list[tuple[str, int]] = []

    def load_all(self):
        self.threads.append(("load", threading.get_ident()))
        return super().load_all()

    def save_all(self, records):
        self.threads.append(("save", threading.get_ident()))
        super().save_all(records)


def test_refresh_reads_and_writes_off_the_event_loop(settings, clock, tmp_path: Path) -> None:
    path = tmp_path / "tokens.json"
    _store(settings, clock, TokenEndpoint(), path).set_tokens("user-1", TOKEN_RESPONSE)
    clock.advance(3600)

    backend = ThreadRecordingBackend(path)
    oauth = YahooOAuthClient(settings, transport=httpx.MockTransport(TokenEndpoint()))
    store = CredentialStore(backend, oauth=oauth, clock=clock)

    assert asyncio.run(store.get_access_credential("user-1")) == "access-token-refreshed-0001"

    assert [kind for kind, _ in backend.threads] == ["load", "save"]
    assert all(thread != threading.get_ident() for _, thread in backend.threads)
    assert JsonCredentialBackend(path).load_all()["user-1"]["access_token"] == "access-token-refreshed-0001"
