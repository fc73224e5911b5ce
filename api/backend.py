"""
HTTP client for the hosted backend (REST tables + auth).

The hosted service exposes PostgREST-style table endpoints under
``/rest/v1/{table}`` and GoTrue-style auth endpoints under ``/auth/v1``.
``BackendClient`` speaks just enough of both for the gateway: filtered
selects, inserts, patches, deletes, exact counts, and the password / OAuth /
refresh / logout / user calls.

Every failure (HTTP error status, timeout, connection error) is raised as a
``GatewayError``; nothing is retried here.
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence
from urllib.parse import urlencode

import httpx

from .app_config import BackendSettings
from .schemas import AuthSession, User
from .shared.errors import GatewayError, NotAuthenticatedError
from .shared.logger import get_logger

logger = get_logger(__name__)

# (column, ascending) pairs
Ordering = Sequence[tuple[str, bool]]


def _filter_value(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def build_query(
    columns: str = "*",
    filters: dict[str, Any] | None = None,
    order: Ordering | None = None,
    limit: int | None = None,
) -> list[tuple[str, str]]:
    """Build PostgREST query parameters.

    ``filters`` maps column names to values compared with ``eq``; ``None``
    becomes ``is.null``.
    """
    params: list[tuple[str, str]] = [("select", columns)]
    for column, value in (filters or {}).items():
        params.append((column, _filter_value(value)))
    if order:
        params.append(("order", ",".join(f"{col}.{'asc' if asc else 'desc'}" for col, asc in order)))
    if limit is not None:
        params.append(("limit", str(limit)))
    return params


def _error_from_response(response: httpx.Response) -> GatewayError:
    message = response.reason_phrase or "Backend request failed"
    code = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("msg") or body.get("error_description") or body.get("error") or message
        code = body.get("code") or body.get("error_code")
        if code is not None:
            code = str(code)
    if response.status_code == 401:
        return NotAuthenticatedError(message)
    return GatewayError(message, status_code=response.status_code, code=code)


class BackendClient:
    """Thin async wrapper around the hosted REST and auth endpoints.

    One instance belongs to one session context; it carries that session's
    access token. ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: BackendSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self._session: AuthSession | None = None
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.timeout),
            transport=transport,
            headers={"apikey": settings.anon_key, **settings.extra_headers},
        )

    # ----------------------------------------------------------------- session

    @property
    def session(self) -> AuthSession | None:
        return self._session

    def set_session(self, session: AuthSession | None) -> None:
        self._session = session

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        token = self._session.access_token if self._session else self.settings.anon_key
        headers = {"Authorization": f"Bearer {token}"}
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayError(f"Backend request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Backend connection error: {e}") from e
        if response.is_error:
            error = _error_from_response(response)
            logger.debug("%s %s -> %s %s", method, url, response.status_code, error.message)
            raise error
        return response

    # ------------------------------------------------------------------- tables

    def _table_url(self, table: str) -> str:
        return f"{self.settings.rest_url}/{table}"

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        order: Ordering | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        response = await self._request(
            "GET",
            self._table_url(table),
            params=build_query(columns, filters, order, limit),
            headers=self._headers(),
        )
        return response.json() or []

    async def select_one(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        rows = await self.select(table, columns, filters, limit=1)
        return rows[0] if rows else None

    async def count(self, table: str, filters: dict[str, Any] | None = None) -> int:
        response = await self._request(
            "HEAD",
            self._table_url(table),
            params=build_query("id", filters),
            headers=self._headers(prefer="count=exact"),
        )
        # Content-Range: 0-4/5  or  */0
        content_range = response.headers.get("content-range", "")
        total = content_range.rpartition("/")[2]
        return int(total) if total.isdigit() else 0

    async def insert(self, table: str, row: dict[str, Any], columns: str = "*") -> dict[str, Any]:
        response = await self._request(
            "POST",
            self._table_url(table),
            params=[("select", columns)],
            json=row,
            headers=self._headers(prefer="return=representation"),
        )
        rows = response.json()
        if not rows:
            raise GatewayError(f"Insert into {table} returned no row")
        return rows[0]

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        filters: dict[str, Any],
        columns: str = "*",
    ) -> list[dict[str, Any]]:
        response = await self._request(
            "PATCH",
            self._table_url(table),
            params=build_query(columns, filters),
            json=values,
            headers=self._headers(prefer="return=representation"),
        )
        return response.json() or []

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        params = [(column, _filter_value(value)) for column, value in filters.items()]
        await self._request(
            "DELETE",
            self._table_url(table),
            params=params,
            headers=self._headers(),
        )

    # --------------------------------------------------------------------- auth

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        response = await self._request(
            "POST",
            f"{self.settings.auth_url}/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = AuthSession.model_validate(response.json())
        self._session = session
        return session

    async def refresh_session(self) -> AuthSession:
        if not self._session or not self._session.refresh_token:
            raise NotAuthenticatedError("No refresh token available")
        response = await self._request(
            "POST",
            f"{self.settings.auth_url}/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": self._session.refresh_token},
        )
        session = AuthSession.model_validate(response.json())
        self._session = session
        return session

    def oauth_authorize_url(self, provider: str, redirect_to: str | None = None, scopes: Iterable[str] = ()) -> str:
        """URL the browser is sent to for third-party sign-in."""
        params: dict[str, str] = {"provider": provider}
        if redirect_to:
            params["redirect_to"] = redirect_to
        scopes = list(scopes)
        if scopes:
            params["scopes"] = " ".join(scopes)
        return f"{self.settings.auth_url}/authorize?{urlencode(params)}"

    async def get_user(self) -> User:
        if not self._session:
            raise NotAuthenticatedError()
        response = await self._request("GET", f"{self.settings.auth_url}/user", headers=self._headers())
        return User.model_validate(response.json())

    async def sign_out(self) -> None:
        if not self._session:
            return
        try:
            await self._request("POST", f"{self.settings.auth_url}/logout", headers=self._headers())
        finally:
            self._session = None

    async def aclose(self) -> None:
        await self._client.aclose()
