"""Core wrapper: connect() entry point, authentication and request dispatch.

One :class:`SupersetClient` owns one ``requests.Session`` and one
:class:`SessionState`.  Login happens lazily on the first call; the CSRF
token and session cookie are fetched during login, or on demand before the
first mutating request when a static access token is used.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from http.cookies import CookieError, SimpleCookie
from typing import Any

import requests
from yarl import URL

from superset_py.errors import (
    AuthenticationError,
    CsrfFetchError,
    TransportError,
    error_from_response,
)
from superset_py.models import Credentials, HttpMethod, RequestIntent, SessionState

_log = logging.getLogger("superset-mcp")

DEFAULT_BASE_URL = "http://localhost:8088"
DEFAULT_TIMEOUT = 30

LOGIN_PATH = "api/v1/security/login"
CSRF_PATH = "api/v1/security/csrf_token/"


def _env_int(key: str, default: int) -> int:
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


def connect(base_url: str | None = None) -> SupersetClient:
    """One-liner entry point.  Reads ``SUPERSET_*`` settings from the
    environment and returns an unauthenticated :class:`SupersetClient`.

    Either ``SUPERSET_ACCESS_TOKEN`` or both ``SUPERSET_USERNAME`` and
    ``SUPERSET_PASSWORD`` must be set; otherwise :class:`KeyError` is raised
    naming the missing variables.
    """
    credentials = Credentials(
        base_url=base_url or os.environ.get("SUPERSET_BASE_URL", DEFAULT_BASE_URL),
        username=os.environ.get("SUPERSET_USERNAME") or None,
        password=os.environ.get("SUPERSET_PASSWORD") or None,
        access_token=os.environ.get("SUPERSET_ACCESS_TOKEN") or None,
        auth_provider=os.environ.get("SUPERSET_AUTH_PROVIDER") or "db",
    )
    if not credentials.usable:
        raise KeyError(
            "SUPERSET_USERNAME and SUPERSET_PASSWORD (or SUPERSET_ACCESS_TOKEN)"
        )
    return SupersetClient(
        credentials,
        timeout=_env_int("SUPERSET_MCP_TIMEOUT", DEFAULT_TIMEOUT),
    )


def _session_cookie(response: Any) -> str | None:
    """Pull the ``session`` cookie from a response's jar or Set-Cookie header."""
    jar = getattr(response, "cookies", None)
    if jar is not None:
        value = jar.get("session")
        if value:
            return value
    headers = getattr(response, "headers", None) or {}
    raw = headers.get("Set-Cookie")
    if not raw:
        return None
    parsed = SimpleCookie()
    try:
        parsed.load(raw)
    except CookieError as exc:
        _log.warning("could not parse Set-Cookie header: %s", exc)
        return None
    morsel = parsed.get("session")
    return morsel.value if morsel else None


def _ok(response: Any) -> bool:
    return 200 <= response.status_code < 300


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class Authenticator:
    """Turns :class:`Credentials` into a populated :class:`SessionState`."""

    def __init__(self, client: SupersetClient) -> None:
        self._client = client

    @property
    def credentials(self) -> Credentials:
        return self._client.credentials

    @property
    def state(self) -> SessionState:
        return self._client.state

    def authenticate(self) -> SessionState:
        """Log in (or adopt the static token) and overwrite the session state.

        Safe to call repeatedly; each call starts from a clean state.
        """
        creds = self.credentials
        self.state.clear()

        if creds.has_static_token:
            self.state.access_token = creds.access_token
            self.state.authenticated_at = datetime.now(timezone.utc)
            _log.info("auth mode=static_token base_url=%s", creds.base_url)
            return self.state

        if not (creds.username and creds.password):
            raise AuthenticationError(
                "No credentials configured: set SUPERSET_USERNAME and "
                "SUPERSET_PASSWORD, or SUPERSET_ACCESS_TOKEN."
            )

        self.state.access_token = self._login()
        self.fetch_csrf()
        self.state.authenticated_at = datetime.now(timezone.utc)
        _log.info(
            "auth mode=login user=%s base_url=%s", creds.username, creds.base_url,
        )
        return self.state

    def _login(self) -> str:
        creds = self.credentials
        response = self._client.send(
            "POST",
            LOGIN_PATH,
            headers={"Content-Type": "application/json"},
            json={
                "username": creds.username,
                "password": creds.password,
                "provider": creds.auth_provider or "db",
                "refresh": True,
            },
        )
        if not _ok(response):
            raise AuthenticationError(
                f"Login failed: {error_from_response(response)}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise AuthenticationError("Login response was not JSON") from exc
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise AuthenticationError("Login response did not contain access_token")
        return token

    def fetch_csrf(self) -> None:
        """Fetch the CSRF token and session cookie using the current bearer token."""
        try:
            response = self._client.send(
                "GET",
                CSRF_PATH,
                headers={"Authorization": f"Bearer {self.state.access_token}"},
            )
        except TransportError as exc:
            raise CsrfFetchError(f"CSRF token request failed: {exc}") from exc

        if not _ok(response):
            raise CsrfFetchError(
                f"CSRF token request failed: {error_from_response(response)}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise CsrfFetchError("CSRF token response was not JSON") from exc
        token = body.get("result") if isinstance(body, dict) else None
        if not token:
            raise CsrfFetchError("CSRF token response did not contain result")

        self.state.csrf_token = token
        self.state.cookie = _session_cookie(response)
        _log.debug("csrf token acquired cookie=%s", bool(self.state.cookie))


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class SupersetClient:
    """Authenticated request dispatcher for one Superset instance.

    All resource modules take an instance of this class as their first
    argument.  Methods return decoded JSON bodies (plain dicts/lists).
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.credentials = credentials
        self.state = SessionState()
        self.timeout = timeout
        self.base_url = URL(credentials.base_url.rstrip("/"))
        self._http = session or requests.Session()
        self._auth = Authenticator(self)

    def __repr__(self) -> str:
        return f"SupersetClient({str(self.base_url)!r})"

    # ------------------------------------------------------------------
    # Auth lifecycle
    # ------------------------------------------------------------------

    def authenticate(self) -> SessionState:
        return self._auth.authenticate()

    def fetch_csrf(self) -> None:
        self._auth.fetch_csrf()

    def ensure_authenticated(self) -> None:
        """Authenticate once.  Never checks whether the token is still valid."""
        if not self.state.access_token:
            self._auth.authenticate()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def url(self, path: str) -> URL:
        return self.base_url / path.lstrip("/")

    def send(
        self,
        method: HttpMethod,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> requests.Response:
        """Issue one raw HTTP call.  Only transport failures are raised here."""
        try:
            return self._http.request(
                method,
                str(self.url(path)),
                headers=headers,
                params=params,
                json=json,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(str(exc)) from exc

    def _headers(self, mutating: bool) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.state.access_token}",
            "Content-Type": "application/json",
        }
        if mutating:
            headers["X-CSRFToken"] = self.state.csrf_token or ""
            headers["Referer"] = str(self.base_url)
            if self.state.cookie:
                headers["Cookie"] = f"session={self.state.cookie}"
        return headers

    def request(self, intent: RequestIntent) -> Any:
        """Authenticate if needed, dispatch *intent*, and decode the body.

        Raises :class:`~superset_py.errors.UpstreamHttpError` on a non-2xx
        status and :class:`~superset_py.errors.TransportError` when no
        response arrives.  Nothing is retried.
        """
        self.ensure_authenticated()
        if intent.mutating and not self.state.csrf_token:
            self._auth.fetch_csrf()

        _log.debug("request method=%s path=%s", intent.method, intent.path)
        response = self.send(
            intent.method,
            intent.path,
            headers=self._headers(intent.mutating),
            params=intent.params,
            json=intent.body,
        )
        if not _ok(response):
            raise error_from_response(response)
        if response.status_code == 204 or not response.text:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"message": response.text}

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request(RequestIntent(method="GET", path=path, params=params))

    def post(
        self,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return self.request(
            RequestIntent(method="POST", path=path, params=params, body=json)
        )

    def put(
        self,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return self.request(
            RequestIntent(method="PUT", path=path, params=params, body=json)
        )

    def delete(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request(RequestIntent(method="DELETE", path=path, params=params))
