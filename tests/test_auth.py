from __future__ import annotations

import json
import socket
import threading
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from splitwise_api_client.auth import (
    CALLBACK_RESPONSE_BODY,
    CachingTokenSource,
    LocalServerTokenSource,
    OAuthConfig,
    RefreshingTokenSource,
    Token,
    _Callback,
    _CallbackSlot,
)
from splitwise_api_client.exceptions import (
    CallbackTimeoutError,
    SplitwiseAuthError,
    StateMismatchError,
    TokenCacheError,
)


class _FakeResp:
    def __init__(self, status_code: int, payload: dict, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text or json.dumps(payload)

    def json(self):
        return self._payload


class _CountingSource:
    def __init__(self, token: Token) -> None:
        self.token = token
        self.calls = 0

    def get_token(self) -> Token:
        self.calls += 1
        return self.token


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _config(port: int = 4000) -> OAuthConfig:
    return OAuthConfig(
        client_id="cid",
        client_secret="secret",
        auth_url="https://auth.test/oauth/authorize",
        token_url="https://auth.test/oauth/token",
        redirect_url=f"http://127.0.0.1:{port}/auth_redirect",
    )


# ----------------------------------------------------------------------
# Token
# ----------------------------------------------------------------------
def test_token_round_trips_through_cache_format() -> None:
    expiry = datetime(2030, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    token = Token("a", "bearer", "r", expiry)

    raw = token.to_dict()

    assert raw["expiry"] == "2030-01-02T03:04:05Z"
    assert Token.from_dict(raw) == token


def test_token_zero_expiry_means_no_expiry() -> None:
    token = Token.from_dict({"access_token": "a", "expiry": "0001-01-01T00:00:00Z"})

    assert token.expiry is None
    assert token.valid()


def test_token_validity_window() -> None:
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)

    assert Token("a", expiry=now + timedelta(minutes=5)).valid(now)
    assert not Token("a", expiry=now + timedelta(seconds=5)).valid(now)
    assert not Token("", expiry=None).valid(now)


# ----------------------------------------------------------------------
# Caching
# ----------------------------------------------------------------------
def test_cache_hit_does_not_call_source(tmp_path) -> None:
    path = tmp_path / "token.json"
    path.write_text(json.dumps({"access_token": "cached", "token_type": "bearer"}))
    source = _CountingSource(Token("fresh"))
    cache = CachingTokenSource(source, path)

    first = cache.get_token()
    second = cache.get_token()

    assert first == second
    assert first.access_token == "cached"
    assert source.calls == 0


def test_cache_hit_does_not_revalidate_expired_token(tmp_path) -> None:
    path = tmp_path / "token.json"
    path.write_text(
        json.dumps({"access_token": "stale", "expiry": "2001-01-01T00:00:00Z"})
    )
    source = _CountingSource(Token("fresh"))

    assert CachingTokenSource(source, path).get_token().access_token == "stale"
    assert source.calls == 0


def test_cache_miss_delegates_and_writes(tmp_path) -> None:
    path = tmp_path / "token.json"
    source = _CountingSource(Token("fresh", refresh_token="r"))
    cache = CachingTokenSource(source, path)

    token = cache.get_token()

    assert token.access_token == "fresh"
    assert source.calls == 1
    assert json.loads(path.read_text())["access_token"] == "fresh"
    assert cache.get_token() == token
    assert source.calls == 1


def test_cache_miss_propagates_source_failure(tmp_path) -> None:
    path = tmp_path / "token.json"

    class _Failing:
        def get_token(self) -> Token:
            raise SplitwiseAuthError("denied")

    with pytest.raises(SplitwiseAuthError, match="denied"):
        CachingTokenSource(_Failing(), path).get_token()
    assert not path.exists()


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        json.dumps({"token_type": "bearer"}),
        json.dumps({"access_token": "a", "expiry": 1700000000}),
        json.dumps({"access_token": "a", "expiry": True}),
        json.dumps({"access_token": "a", "expiry": ["x"]}),
        json.dumps({"access_token": "a", "expiry": "yesterday"}),
    ],
)
def test_corrupt_cache_is_fatal(tmp_path, content) -> None:
    path = tmp_path / "token.json"
    path.write_text(content)
    source = _CountingSource(Token("fresh"))

    with pytest.raises(TokenCacheError):
        CachingTokenSource(source, path).get_token()
    assert source.calls == 0


def test_unwritable_cache_is_fatal(tmp_path) -> None:
    path = tmp_path / "missing-dir" / "token.json"

    with pytest.raises(TokenCacheError):
        CachingTokenSource(_CountingSource(Token("fresh")), path).get_token()


# ----------------------------------------------------------------------
# Token endpoint
# ----------------------------------------------------------------------
def test_authorization_url_requests_offline_access() -> None:
    url = _config().authorization_url("xyz")
    query = parse_qs(urlparse(url).query)

    assert url.startswith("https://auth.test/oauth/authorize?")
    assert query["state"] == ["xyz"]
    assert query["access_type"] == ["offline"]
    assert query["response_type"] == ["code"]
    assert query["redirect_uri"] == ["http://127.0.0.1:4000/auth_redirect"]


def test_exchange_posts_code(monkeypatch) -> None:
    seen = SimpleNamespace(url=None, data=None)

    def fake_post(url, data=None, headers=None, timeout=None):
        seen.url = url
        seen.data = data
        return _FakeResp(200, {"access_token": "a", "token_type": "bearer", "expires_in": 3600})

    monkeypatch.setattr("requests.post", fake_post)

    token = _config().exchange("the-code")

    assert seen.url == "https://auth.test/oauth/token"
    assert seen.data["grant_type"] == "authorization_code"
    assert seen.data["code"] == "the-code"
    assert seen.data["client_id"] == "cid"
    assert token.access_token == "a"
    assert token.valid()


def test_exchange_failure_raises_auth_error(monkeypatch) -> None:
    monkeypatch.setattr(
        "requests.post",
        lambda *a, **k: _FakeResp(401, {"error": "invalid_grant"}),
    )

    with pytest.raises(SplitwiseAuthError, match="401"):
        _config().exchange("bad")


def test_exchange_connection_failure(monkeypatch) -> None:
    def fake_post(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr("requests.post", fake_post)

    with pytest.raises(SplitwiseAuthError):
        _config().exchange("code")


# ----------------------------------------------------------------------
# Refreshing
# ----------------------------------------------------------------------
def test_refreshing_source_refreshes_expired_token(monkeypatch) -> None:
    expired = Token("old", refresh_token="r", expiry=datetime(2001, 1, 1, tzinfo=timezone.utc))
    source = _CountingSource(expired)
    saved = []

    def fake_post(url, data=None, headers=None, timeout=None):
        assert data["grant_type"] == "refresh_token"
        assert data["refresh_token"] == "r"
        return _FakeResp(200, {"access_token": "new", "expires_in": 3600})

    monkeypatch.setattr("requests.post", fake_post)
    refreshing = RefreshingTokenSource(_config(), source, on_refresh=saved.append)

    token = refreshing.get_token()

    assert token.access_token == "new"
    assert token.refresh_token == "r"
    assert saved == [token]
    assert refreshing.get_token() is token
    assert source.calls == 1


def test_refreshing_source_without_refresh_token_fails() -> None:
    expired = Token("old", expiry=datetime(2001, 1, 1, tzinfo=timezone.utc))

    with pytest.raises(SplitwiseAuthError):
        RefreshingTokenSource(_config(), _CountingSource(expired)).get_token()


# ----------------------------------------------------------------------
# Interactive flow
# ----------------------------------------------------------------------
def test_callback_slot_delivers_once() -> None:
    slot = _CallbackSlot()

    assert slot.deliver(_Callback(code="1", state="a"))
    assert not slot.deliver(_Callback(code="2", state="b"))
    assert slot.wait(0) == _Callback(code="1", state="a")


def test_callback_slot_wait_times_out() -> None:
    assert _CallbackSlot().wait(0.01) is None


def _browser(state_override=None, extra_requests=0):
    """Return a prompt that plays the browser redirect in a thread."""
    seen = SimpleNamespace(bodies=[], statuses=[], thread=None, done=threading.Event())

    def prompt(url: str) -> None:
        query = parse_qs(urlparse(url).query)
        state = state_override or query["state"][0]
        redirect = query["redirect_uri"][0]

        def run() -> None:
            http = requests.Session()
            http.trust_env = False
            favicon = redirect.replace("/auth_redirect", "/favicon.ico")
            seen.statuses.append(http.get(favicon, timeout=5).status_code)
            for i in range(1 + extra_requests):
                code = "c0de" if i == 0 else f"c0de-{i}"
                resp = http.get(redirect, params={"code": code, "state": state}, timeout=5)
                seen.statuses.append(resp.status_code)
                seen.bodies.append(resp.content)
            seen.done.set()

        seen.thread = threading.Thread(target=run)
        seen.thread.start()

    return prompt, seen


def test_interactive_flow_exchanges_code(monkeypatch) -> None:
    exchanged = []

    def fake_exchange(self, code):
        exchanged.append(code)
        return Token("a", refresh_token="r")

    monkeypatch.setattr(OAuthConfig, "exchange", fake_exchange)
    prompt, seen = _browser()
    source = LocalServerTokenSource(
        _config(_free_port()), timeout=10, open_browser=False, prompt=prompt
    )

    token = source.get_token()
    seen.thread.join(5)

    assert token.access_token == "a"
    assert exchanged == ["c0de"]
    assert seen.statuses == [404, 200]
    assert seen.bodies == [CALLBACK_RESPONSE_BODY]


def test_interactive_flow_ignores_repeated_callback(monkeypatch) -> None:
    exchanged = []

    def fake_exchange(self, code):
        exchanged.append(code)
        return Token("a", refresh_token="r")

    monkeypatch.setattr(OAuthConfig, "exchange", fake_exchange)
    prompt, seen = _browser(extra_requests=1)
    original_wait = _CallbackSlot.wait

    def wait_for_browser(self, timeout=None):
        # Keep the listener up until the repeated redirect has been answered
        result = original_wait(self, timeout)
        seen.done.wait(5)
        return result

    monkeypatch.setattr(_CallbackSlot, "wait", wait_for_browser)
    source = LocalServerTokenSource(
        _config(_free_port()), timeout=10, open_browser=False, prompt=prompt
    )

    token = source.get_token()
    seen.thread.join(5)

    assert token.access_token == "a"
    assert exchanged == ["c0de"]
    assert seen.statuses == [404, 200, 200]
    assert seen.bodies == [CALLBACK_RESPONSE_BODY, CALLBACK_RESPONSE_BODY]


def test_interactive_flow_state_mismatch_skips_exchange(monkeypatch) -> None:
    exchanged = []
    monkeypatch.setattr(OAuthConfig, "exchange", lambda self, code: exchanged.append(code))
    prompt, seen = _browser(state_override="forged")
    source = LocalServerTokenSource(
        _config(_free_port()), timeout=10, open_browser=False, prompt=prompt
    )

    with pytest.raises(StateMismatchError):
        source.get_token()
    seen.thread.join(5)

    assert exchanged == []


def test_interactive_flow_times_out() -> None:
    source = LocalServerTokenSource(
        _config(_free_port()), timeout=0.2, open_browser=False, prompt=lambda url: None
    )

    with pytest.raises(CallbackTimeoutError):
        source.get_token()


def test_interactive_flow_listener_failure() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        port = busy.getsockname()[1]
        source = LocalServerTokenSource(
            _config(port), timeout=1, open_browser=False, prompt=lambda url: None
        )

        with pytest.raises(SplitwiseAuthError, match="callback listener"):
            source.get_token()
