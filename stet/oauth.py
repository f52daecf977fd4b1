from __future__ import annotations

import datetime as dt
import logging
import secrets
import threading
import time
import webbrowser
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import requests

from stet.config import is_placeholder
from stet.errors import (
    ApiError,
    AuthFlowPending,
    AuthorizationError,
    AuthRequired,
    Forbidden,
    RateLimited,
    StetError,
)
from stet.tokens import Token, TokenStore, utcnow

logger = logging.getLogger('stet')

HTTP_TIMEOUT = 30
CALLBACK_PATH = "/callback"
SHUTDOWN_GRACE = 2.0
# Lifetime assumed when a token response carries no usable expiry.
DEFAULT_TOKEN_LIFETIME = dt.timedelta(hours=1)

# Failures of a refresh call that mean "the stored credentials are no good".
REFRESH_ERRORS = (StetError, requests.RequestException, ValueError, KeyError, TypeError)


def parse_retry_after_seconds(resp: Optional[requests.Response]) -> Optional[int]:
    if resp is None or resp.headers is None:
        return None
    ra = resp.headers.get('Retry-After')
    if ra:
        try:
            return int(float(ra))
        except ValueError:
            pass
    reset = resp.headers.get('X-RateLimit-Reset')
    if reset:
        try:
            return max(1, int(reset) - int(time.time()))
        except ValueError:
            pass
    return None


def raise_for_status(resp: requests.Response) -> None:
    """Map an HTTP status onto the error taxonomy; 2xx/3xx pass through."""
    code = resp.status_code
    if code < 400:
        return
    if code == 401:
        raise AuthRequired("unauthorized")
    if code == 403:
        raise Forbidden()
    if code == 429:
        raise RateLimited(parse_retry_after_seconds(resp))
    raise ApiError(code, resp.text or "")


def _lifetime(expires_in: object) -> dt.timedelta:
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_LIFETIME
    if seconds <= 0:
        return DEFAULT_TOKEN_LIFETIME
    return dt.timedelta(seconds=seconds)


# -----------------------------
# Token lifecycle
# -----------------------------
class OAuthManager:
    """Owns one integration's token: load, refresh before expiry, persist.

    Subclasses implement `has_credentials` and `_refresh_request`.
    """

    service = "oauth"

    def __init__(self, store: TokenStore, session: Optional[requests.Session] = None,
                 clock: Callable[[], dt.datetime] = utcnow):
        self.store = store
        self.session = session or requests.Session()
        self._clock = clock
        self._refresh_lock = threading.Lock()

    def has_credentials(self) -> bool:
        raise NotImplementedError

    def _refresh_request(self, token: Token) -> Token:
        raise NotImplementedError

    def load_token(self) -> Optional[Token]:
        return self.store.load()

    def get_valid_token(self) -> Optional[Token]:
        """A usable token, refreshing it first when it is inside the expiry skew.

        None means the user has to authenticate; a failed refresh is logged and
        also reported as None.
        """
        token = self.store.load()
        if token is None:
            return None
        if token.usable(self._clock()):
            return token
        try:
            return self.refresh(token)
        except REFRESH_ERRORS as exc:
            logger.warning("%s token refresh failed: %s", self.service, exc)
            return None

    def is_authenticated(self) -> bool:
        return self.has_credentials() and self.get_valid_token() is not None

    def refresh(self, token: Token) -> Token:
        with self._refresh_lock:
            # Another effect may have refreshed while we waited for the lock.
            current = self.store.load()
            if current is not None and current.access_token != token.access_token and current.usable(self._clock()):
                return current
            if not token.refresh_token:
                raise AuthRequired(f"{self.service}: no refresh token")
            new = self._refresh_request(token)
            self.store.save(new)
        logger.info("%s token refreshed; expires %s", self.service, new.expires_at.isoformat())
        return new

    def _current_token(self) -> Optional[Token]:
        return self.get_valid_token()

    def _send(self, method: str, url: str, token: Token, **kwargs) -> requests.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {token.access_token}"
        headers.setdefault("Accept", "application/json")
        return self.session.request(method, url, headers=headers, timeout=HTTP_TIMEOUT, **kwargs)

    def authorized_request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Authenticated call; a 401 refreshes the token and retries exactly once."""
        token = self._current_token()
        if token is None:
            raise AuthRequired(f"{self.service}: not authenticated")
        resp = self._send(method, url, token, **kwargs)
        if resp.status_code == 401:
            logger.info("%s %s %s: 401, refreshing token", self.service, method, url)
            try:
                token = self.refresh(token)
            except REFRESH_ERRORS as exc:
                raise AuthRequired(f"{self.service}: token refresh failed: {exc}") from exc
            resp = self._send(method, url, token, **kwargs)
        if resp.status_code >= 400:
            logger.error("%s %s %s failed: HTTP %s", self.service, method, url, resp.status_code)
        raise_for_status(resp)
        return resp

    def cancel_flow(self) -> None:
        """Abort a pending interactive authorization, if the integration has one."""


# -----------------------------
# Authorization code flow
# -----------------------------
class _Outcome:
    """First of code / error / timeout / cancel wins; later resolutions are no-ops."""

    def __init__(self):
        self._lock = threading.Lock()
        self._done = threading.Event()
        self.kind: Optional[str] = None
        self.value: Optional[str] = None

    def resolve(self, kind: str, value: Optional[str] = None) -> bool:
        with self._lock:
            if self._done.is_set():
                return False
            self.kind, self.value = kind, value
            self._done.set()
            return True

    def wait(self, timeout: Optional[float]) -> bool:
        return self._done.wait(timeout)


class _CallbackServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address, outcome: _Outcome, path: str, state: str):
        self.outcome = outcome
        self.callback_path = path
        self.expected_state = state
        super().__init__(address, _CallbackHandler)


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def do_GET(self):
        parsed = urlparse(self.path)
        if parsed.path != self.server.callback_path:
            self.send_error(404)
            return
        params = parse_qs(parsed.query)
        error = (params.get("error") or [""])[0]
        code = (params.get("code") or [""])[0]
        state = (params.get("state") or [""])[0]
        outcome = self.server.outcome
        if error:
            detail = (params.get("error_description") or [error])[0]
            first = outcome.resolve("error", detail)
            status, title, body = 400, "Authorization failed", detail
        elif not code:
            first = outcome.resolve("error", "no authorization code in callback")
            status, title, body = 400, "Authorization failed", "No authorization code was received."
        elif state and state != self.server.expected_state:
            first = outcome.resolve("error", "state mismatch in callback")
            status, title, body = 400, "Authorization failed", "State mismatch."
        else:
            first = outcome.resolve("code", code)
            status, title, body = 200, "Authorization successful", "You can close this window and return to stet."
        if not first:
            status, title, body = 409, "Already handled", "This authorization request was already completed."
        page = f"<html><body><h1>{title}</h1><p>{body}</p></body></html>".encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(page)))
        self.end_headers()
        self.wfile.write(page)

    def log_message(self, format, *args):
        logger.debug("oauth callback: " + format, *args)


def _stop_listener(server: _CallbackServer, thread: threading.Thread, grace: float) -> None:
    stopper = threading.Thread(target=server.shutdown, name="stet-oauth-shutdown", daemon=True)
    stopper.start()
    stopper.join(grace)
    thread.join(grace)
    server.server_close()
    if thread.is_alive():
        logger.warning("oauth callback listener did not stop within %.1fs", grace)


class AuthorizationCodeManager(OAuthManager):
    """OAuthManager with a browser-based authorization code flow."""

    def __init__(self, store: TokenStore, session: Optional[requests.Session] = None,
                 clock: Callable[[], dt.datetime] = utcnow, callback_port: int = 8089,
                 open_browser: Optional[Callable[[str], bool]] = None,
                 shutdown_grace: float = SHUTDOWN_GRACE):
        super().__init__(store, session=session, clock=clock)
        self.callback_port = callback_port
        self.open_browser = open_browser or webbrowser.open
        self.shutdown_grace = shutdown_grace
        self._flow_lock = threading.Lock()
        self._pending: Optional[_Outcome] = None

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        raise NotImplementedError

    def exchange_code(self, code: str, redirect_uri: str) -> Token:
        raise NotImplementedError

    @property
    def flow_pending(self) -> bool:
        return self._pending is not None

    def cancel_flow(self) -> None:
        with self._flow_lock:
            pending = self._pending
        if pending is not None:
            pending.resolve("cancelled")

    def start_authorization_flow(self, timeout: float = 300.0) -> Token:
        """Run the browser flow to completion; blocks the calling worker thread.

        Raises AuthFlowPending if a flow is already running, AuthorizationError
        on callback error, timeout or cancellation.
        """
        outcome = _Outcome()
        with self._flow_lock:
            if self._pending is not None:
                raise AuthFlowPending(self.service)
            self._pending = outcome
        try:
            state = secrets.token_urlsafe(16)
            try:
                server = _CallbackServer(("localhost", self.callback_port), outcome, CALLBACK_PATH, state)
            except OSError as exc:
                raise AuthorizationError(f"cannot listen on port {self.callback_port}: {exc}") from exc
            redirect_uri = f"http://localhost:{server.server_port}{CALLBACK_PATH}"
            thread = threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.2},
                                      name=f"stet-oauth-{self.service}", daemon=True)
            thread.start()
            try:
                url = self.authorization_url(redirect_uri, state)
                logger.info("%s authorization started; waiting up to %ss", self.service, timeout)
                if not self.open_browser(url):
                    logger.warning("%s: could not open a browser; visit %s", self.service, url)
                if not outcome.wait(timeout):
                    outcome.resolve("timeout")
            finally:
                _stop_listener(server, thread, self.shutdown_grace)
            if outcome.kind == "code":
                token = self.exchange_code(outcome.value or "", redirect_uri)
                logger.info("%s authorization completed", self.service)
                return token
            if outcome.kind == "timeout":
                raise AuthorizationError("authorization timed out")
            if outcome.kind == "cancelled":
                raise AuthorizationError("authorization cancelled")
            raise AuthorizationError(f"authorization failed: {outcome.value}")
        finally:
            with self._flow_lock:
                self._pending = None


# -----------------------------
# Integrations
# -----------------------------
class OuraAuth(AuthorizationCodeManager):
    service = "oura"
    AUTH_URL = "https://cloud.ouraring.com/oauth/authorize"
    TOKEN_URL = "https://api.ouraring.com/oauth/token"
    SCOPE = "daily heartrate"

    def __init__(self, client_id: str, client_secret: str, store: TokenStore, **kwargs):
        super().__init__(store, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret

    def has_credentials(self) -> bool:
        return not is_placeholder(self.client_id) and not is_placeholder(self.client_secret)

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        query = urlencode({
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": self.SCOPE,
            "state": state,
        })
        return f"{self.AUTH_URL}?{query}"

    def _token_from_response(self, resp: requests.Response, previous: Optional[Token] = None) -> Token:
        if resp.status_code != 200:
            raise AuthorizationError(f"token endpoint returned {resp.status_code}: {resp.text[:200]}")
        data = resp.json()
        return Token(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or (previous.refresh_token if previous else ""),
            token_type=data.get("token_type") or "Bearer",
            expires_at=self._clock() + _lifetime(data.get("expires_in")),
        )

    def exchange_code(self, code: str, redirect_uri: str) -> Token:
        resp = self.session.post(self.TOKEN_URL, data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }, timeout=HTTP_TIMEOUT)
        token = self._token_from_response(resp)
        self.store.save(token)
        return token

    def _refresh_request(self, token: Token) -> Token:
        resp = self.session.post(self.TOKEN_URL, data={
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }, timeout=HTTP_TIMEOUT)
        return self._token_from_response(resp, previous=token)


class PlantaAuth(OAuthManager):
    """Planta exchanges a one-off app code (from the mobile app) for tokens."""

    service = "planta"
    BASE_URL = "https://public.planta-api.com"

    def __init__(self, app_code: str, store: TokenStore, **kwargs):
        super().__init__(store, **kwargs)
        self.app_code = app_code

    def has_credentials(self) -> bool:
        return not is_placeholder(self.app_code)

    def _token_from_response(self, resp: requests.Response) -> Token:
        if resp.status_code != 200:
            raise AuthorizationError(f"planta auth returned {resp.status_code}: {resp.text[:200]}")
        data = (resp.json() or {}).get("data") or {}
        try:
            expires = dt.datetime.fromisoformat(str(data.get("expiresAt")).replace("Z", "+00:00"))
            if expires.tzinfo is None:
                expires = expires.replace(tzinfo=dt.timezone.utc)
        except ValueError:
            expires = self._clock() + DEFAULT_TOKEN_LIFETIME
        return Token(
            access_token=data["accessToken"],
            refresh_token=data.get("refreshToken") or "",
            token_type=data.get("tokenType") or "Bearer",
            expires_at=expires,
        )

    def exchange_app_code(self) -> Token:
        if not self.has_credentials():
            raise AuthRequired("PLANTA_APP_CODE is not set")
        resp = self.session.post(f"{self.BASE_URL}/v1/auth/authorize",
                                 json={"code": self.app_code}, timeout=HTTP_TIMEOUT)
        token = self._token_from_response(resp)
        self.store.save(token)
        logger.info("planta app code exchanged for token")
        return token

    def ensure_authenticated(self) -> Token:
        token = self.get_valid_token()
        if token is not None:
            return token
        return self.exchange_app_code()

    def _current_token(self) -> Optional[Token]:
        return self.ensure_authenticated()

    def _refresh_request(self, token: Token) -> Token:
        resp = self.session.post(f"{self.BASE_URL}/v1/auth/refreshToken",
                                 json={"refreshToken": token.refresh_token}, timeout=HTTP_TIMEOUT)
        return self._token_from_response(resp)
