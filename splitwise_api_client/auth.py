"""
OAuth2 credentials for the Splitwise API.

Splitwise uses the authorization code grant.  Obtaining a first token
needs a human: the user opens an authorization URL in a browser and
Splitwise redirects back to a local callback address carrying a one
time ``code``.  That code is exchanged for an access token (and a
refresh token, since offline access is requested).

The pieces here compose into a chain of token sources, each exposing
``get_token()``:

* :class:`LocalServerTokenSource` drives the interactive flow;
* :class:`CachingTokenSource` persists the result to a JSON file so the
  browser dance happens once;
* :class:`RefreshingTokenSource` keeps the token in memory and renews
  it through the token endpoint once it expires.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import threading
import time
import webbrowser
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Dict, Optional, Protocol, Union
from urllib.parse import parse_qs, urlencode, urlparse

import requests

from .exceptions import (
    CallbackTimeoutError,
    ResponseDecodeError,
    SplitwiseAuthError,
    StateMismatchError,
    TokenCacheError,
)
from .models import parse_datetime

logger = logging.getLogger(__name__)

AUTH_URL = "https://secure.splitwise.com/oauth/authorize"
TOKEN_URL = "https://secure.splitwise.com/oauth/token"
REDIRECT_URL = "http://localhost:4000/auth_redirect"

CALLBACK_RESPONSE_BODY = b"Authorization received. Go back to your terminal. :)"

# Tokens count as expired this long before their actual expiry.
_EXPIRY_DELTA = timedelta(seconds=10)


# ----------------------------------------------------------------------
# Token
# ----------------------------------------------------------------------
@dataclass
class Token:
    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None

    def valid(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` while the token can still be sent."""
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now < self.expiry - _EXPIRY_DELTA

    def authorization_header(self) -> str:
        scheme = "Bearer" if self.token_type.lower() == "bearer" else self.token_type
        return f"{scheme} {self.access_token}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat().replace("+00:00", "Z") if self.expiry else None,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Token":
        """Build a token from its cached JSON form.

        Raises ``KeyError`` when ``access_token`` is missing and
        :class:`ResponseDecodeError` when the expiry is malformed.
        """
        expiry = parse_datetime(raw.get("expiry"))
        # A zero timestamp (year 1) is how some writers spell "no expiry".
        if expiry is not None and expiry.year <= 1:
            expiry = None
        return cls(
            access_token=raw["access_token"],
            token_type=raw.get("token_type") or "Bearer",
            refresh_token=raw.get("refresh_token") or None,
            expiry=expiry,
        )

    @classmethod
    def from_response(cls, raw: Dict[str, Any]) -> "Token":
        """Build a token from a token endpoint response."""
        access_token = raw.get("access_token")
        if not access_token:
            raise SplitwiseAuthError("Token response did not contain an access_token")
        expires_in = raw.get("expires_in")
        expiry = None
        if isinstance(expires_in, (int, float)) and expires_in > 0:
            expiry = datetime.now(timezone.utc) + timedelta(seconds=float(expires_in))
        return cls(
            access_token=access_token,
            token_type=raw.get("token_type") or "Bearer",
            refresh_token=raw.get("refresh_token") or None,
            expiry=expiry,
        )


class TokenSource(Protocol):
    def get_token(self) -> Token: ...


# ----------------------------------------------------------------------
# OAuth endpoint configuration
# ----------------------------------------------------------------------
@dataclass
class OAuthConfig:
    """Client registration and endpoints for the authorization code grant.

    Parameters
    ----------
    client_id : str
        The consumer key of your registered Splitwise application.
    client_secret : str
        The consumer secret of your registered Splitwise application.
    auth_url, token_url : str, optional
        Override the Splitwise authorization and token endpoints.
    redirect_url : str, optional
        Callback URL registered with the application.  The interactive
        flow listens on its host, port and path.
    timeout : float, optional
        Timeout in seconds for token endpoint requests.
    """

    client_id: str
    client_secret: str
    auth_url: str = AUTH_URL
    token_url: str = TOKEN_URL
    redirect_url: str = REDIRECT_URL
    timeout: Optional[float] = 30

    def __post_init__(self) -> None:
        if not self.client_id:
            raise ValueError("client_id must be provided")
        if not self.client_secret:
            raise ValueError("client_secret must be provided")

    def authorization_url(self, state: str) -> str:
        """Return the URL a human must visit to grant access."""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "state": state,
            "access_type": "offline",
        }
        return f"{self.auth_url}?{urlencode(params)}"

    def exchange(self, code: str) -> Token:
        """Trade an authorization code for a token."""
        return self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_url,
            }
        )

    def refresh(self, token: Token) -> Token:
        """Obtain a fresh access token using ``token.refresh_token``."""
        if not token.refresh_token:
            raise SplitwiseAuthError("Token has expired and carries no refresh_token")
        refreshed = self._token_request(
            {"grant_type": "refresh_token", "refresh_token": token.refresh_token}
        )
        if not refreshed.refresh_token:
            refreshed.refresh_token = token.refresh_token
        return refreshed

    def _token_request(self, payload: Dict[str, str]) -> Token:
        payload = dict(payload, client_id=self.client_id, client_secret=self.client_secret)
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        try:
            response = requests.post(
                self.token_url, data=payload, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise SplitwiseAuthError(f"Failed to connect to token endpoint: {exc}") from exc

        if response.status_code >= 400:
            raise SplitwiseAuthError(
                f"Token request ({payload['grant_type']}) failed with status "
                f"{response.status_code}: {response.text}"
            )
        try:
            token_info = response.json()
        except ValueError as exc:
            raise SplitwiseAuthError(f"Token endpoint returned invalid JSON: {exc}") from exc
        return Token.from_response(token_info)


# ----------------------------------------------------------------------
# Token sources
# ----------------------------------------------------------------------
class CachingTokenSource:
    """Serve a token from a JSON file, populating it on first use.

    When ``path`` does not exist the wrapped ``source`` is asked for a
    token, which is written to ``path`` before being returned.  A cache
    file that exists but cannot be read or decoded raises
    :class:`TokenCacheError`; it is never silently replaced.  A cached
    token is returned as-is, even when expired: renewing it is the job
    of :class:`RefreshingTokenSource`.

    The file is not locked.  Processes sharing a path must coordinate
    among themselves.
    """

    def __init__(self, source: TokenSource, path: Union[str, "os.PathLike[str]"]) -> None:
        self.source = source
        self.path = os.path.expanduser(os.fspath(path))

    def get_token(self) -> Token:
        token = self.load()
        if token is not None:
            return token
        token = self.source.get_token()
        self.save(token)
        return token

    def load(self) -> Optional[Token]:
        """Return the cached token, or ``None`` when no cache file exists."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise TokenCacheError(f"Could not read token cache {self.path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise TokenCacheError(f"Token cache {self.path} does not hold a JSON object")
        try:
            return Token.from_dict(raw)
        except (KeyError, ResponseDecodeError) as exc:
            raise TokenCacheError(f"Token cache {self.path} is corrupt: {exc}") from exc

    def save(self, token: Token) -> None:
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(token.to_dict(), f, indent=2)
        except OSError as exc:
            raise TokenCacheError(f"Could not write token cache {self.path}: {exc}") from exc
        logger.info("Saved Splitwise token to %s", self.path)


class RefreshingTokenSource:
    """Hold a token in memory and refresh it when it expires.

    The first call takes the token from ``source``.  Refreshed tokens
    are passed to ``on_refresh`` (for example
    :meth:`CachingTokenSource.save`) so they outlive the process.
    """

    def __init__(
        self,
        config: OAuthConfig,
        source: TokenSource,
        *,
        on_refresh: Optional[Callable[[Token], None]] = None,
    ) -> None:
        self.config = config
        self.source = source
        self.on_refresh = on_refresh
        self._token: Optional[Token] = None

    def get_token(self) -> Token:
        if self._token is None:
            self._token = self.source.get_token()
        if not self._token.valid():
            logger.debug("Access token expired, refreshing")
            self._token = self.config.refresh(self._token)
            if self.on_refresh is not None:
                self.on_refresh(self._token)
        return self._token


@dataclass(frozen=True)
class _Callback:
    code: Optional[str]
    state: Optional[str]
    error: Optional[str] = None


class _CallbackSlot:
    """Single-use hand-off from the listener thread to the waiting caller.

    Only the first delivery is kept; later ones are dropped and report
    ``False``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._value: Optional[_Callback] = None

    def deliver(self, value: _Callback) -> bool:
        with self._lock:
            if self._ready.is_set():
                return False
            self._value = value
            self._ready.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> Optional[_Callback]:
        if not self._ready.wait(timeout):
            return None
        return self._value


def _callback_handler(slot: _CallbackSlot, callback_path: str) -> type:
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            # Browsers also ask for /favicon.ico and friends
            if parsed.path != callback_path:
                self.send_response(404)
                self.end_headers()
                self.wfile.write(b"Not found")
                return

            query = parse_qs(parsed.query)
            delivered = slot.deliver(
                _Callback(
                    code=query.get("code", [None])[0],
                    state=query.get("state", [None])[0],
                    error=query.get("error", [None])[0],
                )
            )
            if not delivered:
                logger.debug("Ignoring repeated OAuth callback")

            self.send_response(200)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.end_headers()
            self.wfile.write(CALLBACK_RESPONSE_BODY)

        def log_message(self, *_args: Any, **_kwargs: Any) -> None:
            # Quiet default HTTP server logging
            return

    return Handler


def _print_url(url: str) -> None:
    print(f"Open this URL in the browser to authenticate.\n\n{url}\n")


def new_state() -> str:
    """Return a URL-safe random CSRF token carrying 192 bits of entropy."""
    return secrets.token_urlsafe(24)


class LocalServerTokenSource:
    """Obtain a token interactively through a local callback listener.

    Each call generates a fresh CSRF ``state``, starts an HTTP listener
    on the host and port of ``config.redirect_url``, shows the
    authorization URL (and optionally opens a browser) and blocks until
    the first callback arrives.  The listener is torn down before the
    code is exchanged.

    Parameters
    ----------
    config : OAuthConfig
        Client registration and endpoints.
    timeout : float, optional
        Seconds to wait for the callback.  ``None`` (the default) waits
        indefinitely.
    open_browser : bool, optional
        Also try to open the URL with :mod:`webbrowser`.
    prompt : callable, optional
        Receives the authorization URL to show to the user.  Defaults
        to printing it on stdout.
    """

    def __init__(
        self,
        config: OAuthConfig,
        *,
        timeout: Optional[float] = None,
        open_browser: bool = True,
        prompt: Callable[[str], None] = _print_url,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self.open_browser = open_browser
        self.prompt = prompt

    def get_token(self) -> Token:
        try:
            state = new_state()
        except NotImplementedError as exc:
            raise SplitwiseAuthError(f"Could not generate CSRF token: {exc}") from exc

        callback = self._wait_for_callback(self.config.authorization_url(state))

        if callback.state != state:
            raise StateMismatchError("Callback state mismatch")
        if callback.error:
            raise SplitwiseAuthError(f"Authorization was not granted: {callback.error}")
        if not callback.code:
            raise SplitwiseAuthError("Callback did not carry an authorization code")

        token = self.config.exchange(callback.code)
        logger.info("Interactive Splitwise authorization completed")
        return token

    def _listen(self, slot: _CallbackSlot) -> HTTPServer:
        parsed = urlparse(self.config.redirect_url)
        host = parsed.hostname or "localhost"
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        try:
            return HTTPServer((host, port), _callback_handler(slot, parsed.path or "/"))
        except OSError as exc:
            raise SplitwiseAuthError(
                f"Could not start callback listener on {host}:{port}: {exc}"
            ) from exc

    def _wait_for_callback(self, url: str) -> _Callback:
        slot = _CallbackSlot()
        server = self._listen(slot)
        thread = threading.Thread(
            target=server.serve_forever, kwargs={"poll_interval": 0.1}, daemon=True
        )
        thread.start()
        started = time.monotonic()
        try:
            self.prompt(url)
            if self.open_browser:
                try:
                    webbrowser.open(url)
                except webbrowser.Error as exc:
                    logger.debug("Could not open a browser: %s", exc)
            callback = slot.wait(self.timeout)
        finally:
            server.shutdown()
            server.server_close()
            thread.join()

        if callback is None:
            raise CallbackTimeoutError(
                f"No OAuth callback received after {time.monotonic() - started:.0f} seconds"
            )
        return callback
