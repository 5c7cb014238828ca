"""HTTP client for the hosted backend-as-a-service.

This module provides async httpx clients for the two collaborators the
engine needs from the hosted backend:

- ``RestDataStore``: ``IDataStore`` over the PostgREST dialect
  (``/rest/v1/<table>``)
- ``GoTrueAuthClient``: ``IAuthProvider`` over the auth endpoints
  (``/auth/v1/...``)

Both share one ``BackendClient`` (connection pool, API key, session token,
timeouts, error mapping, tracing). Failed requests are never retried
automatically: every transport or HTTP error surfaces as
``CollaboratorFailure`` and retrying is left to the user.

Example:
    >>> from eventnet.api import BackendClient, GoTrueAuthClient, RestDataStore
    >>>
    >>> async with BackendClient() as backend:
    ...     auth = GoTrueAuthClient(backend)
    ...     store = RestDataStore(backend)
    ...     await auth.sign_in("ada@example.com", "secret")
    ...     events = await store.select(Table.EVENTS, order=["date"])
"""

from collections.abc import Sequence
from typing import Any

import httpx

from eventnet.config import Table, settings
from eventnet.errors import CollaboratorFailure, NotAuthorized
from eventnet.interfaces import AuthEvent, AuthNotifier, split_filter_key, split_order_key
from eventnet.logging import logger
from eventnet.metrics import errors_total, track_store_operation
from eventnet.models import AuthUser, parse_row
from eventnet.telemetry import (
    add_span_attributes,
    get_tracer,
    record_exception_in_span,
    sync_logging_context_to_span,
)

tracer = get_tracer(__name__)


# =============================================================================
# Shared Backend Client
# =============================================================================


class BackendClient:
    """Async HTTP client for the hosted backend.

    Features:
    - Connection pooling with keepalive
    - API key and bearer session token on every request
    - Bounded per-request timeout
    - Error mapping to ``CollaboratorFailure``
    - OpenTelemetry span per request

    Args:
        base_url: Backend project URL (defaults to settings.backend_url)
        anon_key: Public API key (defaults to settings.backend_anon_key)
        timeout: Per-request timeout in seconds (defaults to settings.request_timeout_seconds)
        transport: Custom httpx transport (e.g. ``httpx.MockTransport`` in tests)

    Example:
        >>> async with BackendClient() as backend:
        ...     response = await backend.request("GET", "/rest/v1/events")
    """

    def __init__(
        self,
        base_url: str | None = None,
        anon_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base_url = base_url or settings.backend_url
        anon_key = anon_key or settings.backend_anon_key
        if not base_url or not anon_key:
            raise ValueError("Backend URL and API key must be configured")

        self.base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._transport = transport

        self._limits = httpx.Limits(
            max_connections=20,
            max_keepalive_connections=5,
            keepalive_expiry=30.0,
        )
        self._timeout = httpx.Timeout(timeout or settings.request_timeout_seconds)

        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Lazy initialization of HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                limits=self._limits,
                timeout=self._timeout,
                http2=True,
                transport=self._transport,
                headers={"apikey": self._anon_key},
            )
        return self._client

    async def __aenter__(self) -> "BackendClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close all connections and cleanup resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def refresh_token(self) -> str | None:
        return self._refresh_token

    def set_session(self, access_token: str | None, refresh_token: str | None = None) -> None:
        """Install (or clear, with None) the signed-in session tokens."""
        self._access_token = access_token
        self._refresh_token = refresh_token

    def _auth_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token or self._anon_key}"}

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Perform one HTTP request with error mapping.

        Args:
            method: HTTP method
            path: Path relative to the backend URL
            params: Query parameters
            json: JSON body
            headers: Extra headers

        Returns:
            The successful (2xx) response

        Raises:
            CollaboratorFailure: On transport errors and non-2xx responses
        """
        client = await self._ensure_client()

        with tracer.start_as_current_span(f"backend {method} {path}") as span:
            sync_logging_context_to_span(span)
            add_span_attributes(span, {"http.method": method, "http.route": path})
            try:
                resp = await client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    headers={**self._auth_header(), **(headers or {})},
                )
            except httpx.HTTPError as exc:
                record_exception_in_span(span, exc)
                errors_total.labels(error_type=type(exc).__name__, component="api").inc()
                logger.warning(f"⚠️ Backend {method} {path} failed: {exc}")
                raise CollaboratorFailure(f"Backend unreachable: {exc}") from exc

            add_span_attributes(span, {"http.status_code": resp.status_code})

            if resp.status_code >= 400:
                message = _error_message(resp)
                failure = CollaboratorFailure(
                    f"Backend returned HTTP {resp.status_code}: {message}",
                    status_code=resp.status_code,
                )
                record_exception_in_span(span, failure)
                errors_total.labels(error_type="http_error", component="api").inc()
                logger.warning(f"⚠️ Backend {method} {path} -> HTTP {resp.status_code}: {message}")
                raise failure

        return resp


def _error_message(resp: httpx.Response) -> str:
    """Extract a readable message from a backend error response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return str(body)[:200]


def _json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise CollaboratorFailure(f"Backend returned invalid JSON: {exc}") from exc


# =============================================================================
# REST Data Store
# =============================================================================


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quoted(value: Any) -> str:
    text = _literal(value)
    if any(ch in text for ch in ',()"'):
        return '"' + text.replace('"', '\\"') + '"'
    return text


def build_filter_params(filters: dict[str, Any] | None) -> list[tuple[str, str]]:
    """Translate ``column__op`` filters into PostgREST query parameters.

    Example:
        >>> build_filter_params({"event_id": "e-1", "id__in": ["a", "b"]})
        [('event_id', 'eq.e-1'), ('id', 'in.(a,b)')]
        >>> build_filter_params({"end_date": None})
        [('end_date', 'is.null')]
    """
    params: list[tuple[str, str]] = []
    for key, value in (filters or {}).items():
        column, op = split_filter_key(key)
        if op == "in":
            params.append((column, "in.(" + ",".join(_quoted(v) for v in value) + ")"))
        elif value is None and op == "eq":
            params.append((column, "is.null"))
        elif value is None and op == "ne":
            params.append((column, "not.is.null"))
        else:
            params.append((column, f"{'neq' if op == 'ne' else op}.{_literal(value)}"))
    return params


def build_order_param(order: Sequence[str] | None) -> str | None:
    """Translate order entries into a PostgREST ``order`` value.

    Example:
        >>> build_order_param(["created_at", "-seq"])
        'created_at.asc,seq.desc'
    """
    if not order:
        return None
    parts = []
    for key in order:
        column, descending = split_order_key(key)
        parts.append(f"{column}.{'desc' if descending else 'asc'}")
    return ",".join(parts)


class RestDataStore:
    """``IDataStore`` over the hosted backend's REST interface.

    Args:
        backend: Shared backend client

    Example:
        >>> store = RestDataStore(backend)
        >>> count = await store.count(
        ...     Table.REGISTRATIONS, {"event_id": "e-1", "status": "registered"}
        ... )
    """

    def __init__(self, backend: BackendClient) -> None:
        self.backend = backend

    @staticmethod
    def _path(table: Table) -> str:
        return f"/rest/v1/{Table(table).value}"

    async def select(
        self,
        table: Table,
        filters: dict[str, Any] | None = None,
        order: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch rows matching ``filters`` in ``order``."""
        with track_store_operation("select", str(table)):
            params = [("select", "*"), *build_filter_params(filters)]
            if order_param := build_order_param(order):
                params.append(("order", order_param))
            if limit is not None:
                params.append(("limit", str(limit)))
            resp = await self.backend.request("GET", self._path(table), params=params)
            return _json(resp)

    async def insert(self, table: Table, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return the stored representation."""
        with track_store_operation("insert", str(table)):
            resp = await self.backend.request(
                "POST",
                self._path(table),
                json=row,
                headers={"Prefer": "return=representation"},
            )
            rows = _json(resp)
            if not rows:
                raise CollaboratorFailure(f"Insert into {table} returned no row")
            return rows[0]

    async def update(
        self,
        table: Table,
        filters: dict[str, Any],
        patch: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Apply ``patch`` to rows matching ``filters``."""
        with track_store_operation("update", str(table)):
            resp = await self.backend.request(
                "PATCH",
                self._path(table),
                params=build_filter_params(filters),
                json=patch,
                headers={"Prefer": "return=representation"},
            )
            return _json(resp)

    async def delete(self, table: Table, filters: dict[str, Any]) -> int:
        """Delete rows matching ``filters`` and report how many were removed."""
        with track_store_operation("delete", str(table)):
            resp = await self.backend.request(
                "DELETE",
                self._path(table),
                params=build_filter_params(filters),
                headers={"Prefer": "return=representation"},
            )
            return len(_json(resp))

    async def count(self, table: Table, filters: dict[str, Any] | None = None) -> int:
        """Count rows with an exact-count HEAD request."""
        with track_store_operation("count", str(table)):
            resp = await self.backend.request(
                "HEAD",
                self._path(table),
                params=[("select", "*"), *build_filter_params(filters)],
                headers={"Prefer": "count=exact"},
            )
            return parse_content_range_total(resp.headers.get("Content-Range"))


def parse_content_range_total(header: str | None) -> int:
    """Total row count from a ``Content-Range`` header.

    Example:
        >>> parse_content_range_total("0-9/42")
        42
        >>> parse_content_range_total("*/0")
        0
    """
    if not header or "/" not in header:
        raise CollaboratorFailure("Backend response is missing a row count")
    total = header.rsplit("/", 1)[1]
    if not total.isdigit():
        raise CollaboratorFailure(f"Backend returned an unusable row count: {header!r}")
    return int(total)


# =============================================================================
# Hosted Auth Client
# =============================================================================


class GoTrueAuthClient(AuthNotifier):
    """``IAuthProvider`` over the hosted backend's auth endpoints.

    Signing in installs the session token on the shared ``BackendClient``
    so subsequent store requests run as the signed-in user.

    Args:
        backend: Shared backend client
    """

    def __init__(self, backend: BackendClient) -> None:
        super().__init__()
        self.backend = backend

    async def _start_session(self, body: dict[str, Any], event: AuthEvent) -> AuthUser:
        user = parse_row(AuthUser, body.get("user") or {})
        self.backend.set_session(body.get("access_token"), body.get("refresh_token"))
        logger.info(f"🔑 Session {event.value.lower()} for user {user.id}")
        await self._notify(event, user)
        return user

    async def current_user(self) -> AuthUser | None:
        """Return the signed-in user, or None when there is no valid session."""
        if not self.backend.access_token:
            return None
        try:
            resp = await self.backend.request("GET", "/auth/v1/user")
        except CollaboratorFailure as exc:
            if exc.status_code in (401, 403):
                return None
            raise
        return parse_row(AuthUser, _json(resp))

    async def sign_in(self, email: str, password: str) -> AuthUser:
        """Sign in with email and password.

        Raises:
            NotAuthorized: If the credentials are rejected
            CollaboratorFailure: On any other backend failure
        """
        try:
            resp = await self.backend.request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
        except CollaboratorFailure as exc:
            if exc.status_code in (400, 401):
                raise NotAuthorized("Invalid email or password") from exc
            raise
        return await self._start_session(_json(resp), AuthEvent.SIGNED_IN)

    async def sign_up(self, email: str, password: str, full_name: str) -> AuthUser:
        """Create an account; ``full_name`` is stored as user metadata.

        When the project requires email confirmation no session is returned
        and the user stays signed out.
        """
        resp = await self.backend.request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": {"full_name": full_name}},
        )
        body = _json(resp)
        if body.get("access_token"):
            return await self._start_session(body, AuthEvent.SIGNED_IN)
        logger.info(f"📧 Sign up for {email} awaits email confirmation")
        return parse_row(AuthUser, body.get("user") or body)

    async def refresh_session(self) -> AuthUser:
        """Exchange the refresh token for a new session."""
        if not self.backend.refresh_token:
            raise NotAuthorized("No session to refresh")
        resp = await self.backend.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": self.backend.refresh_token},
        )
        return await self._start_session(_json(resp), AuthEvent.TOKEN_REFRESHED)

    async def sign_out(self) -> None:
        """End the session on the backend and locally."""
        if self.backend.access_token:
            await self.backend.request("POST", "/auth/v1/logout")
        self.backend.set_session(None)
        logger.info("👋 Signed out")
        await self._notify(AuthEvent.SIGNED_OUT, None)


__all__ = [
    "BackendClient",
    "RestDataStore",
    "GoTrueAuthClient",
    "build_filter_params",
    "build_order_param",
    "parse_content_range_total",
]
