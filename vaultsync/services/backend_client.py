"""Async client for the PostgREST-style backend API"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from vaultsync.config import settings
from vaultsync.errors import AuthenticationError, BackendError
from vaultsync.schemas.auth import AuthSession, AuthUser

logger = logging.getLogger(__name__)

QueryFilter = Tuple[str, str]


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def eq(column: str, value: Any) -> QueryFilter:
    """column = value"""
    return column, f"eq.{_format_value(value)}"


def neq(column: str, value: Any) -> QueryFilter:
    """column <> value"""
    return column, f"neq.{_format_value(value)}"


def in_(column: str, values: Iterable[Any]) -> QueryFilter:
    """column IN (values)"""
    quoted = ",".join(f'"{_format_value(v)}"' for v in values)
    return column, f"in.({quoted})"


def is_null(column: str) -> QueryFilter:
    return column, "is.null"


def chunked(values: Sequence[Any], size: int) -> List[Sequence[Any]]:
    """Split a sequence into consecutive slices of at most `size` items"""
    return [values[i:i + size] for i in range(0, len(values), size)]


SessionProvider = Callable[[], Awaitable[Optional[AuthSession]]]


class BackendClient:
    """
    Row-level access to backend tables and RPC functions.

    Requests are authorized with the current session's access token when a
    session is available, and with the anon key otherwise.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        session: Optional[AuthSession] = None,
        session_provider: Optional[SessionProvider] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize backend client.

        Args:
            base_url: Backend root URL (default: settings.backend_url)
            anon_key: Public API key sent as `apikey`
            session: Fixed auth session
            session_provider: Coroutine returning the current session, for refreshable auth
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self.anon_key = anon_key if anon_key is not None else settings.backend_anon_key
        self._session = session
        self._session_provider = session_provider
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
        )

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()

    def set_session(self, session: Optional[AuthSession]) -> None:
        self._session = session

    async def get_session(self) -> Optional[AuthSession]:
        if self._session_provider is not None:
            return await self._session_provider()
        return self._session

    async def get_user(self) -> AuthUser:
        """
        Current authenticated user.

        Raises:
            AuthenticationError: If no session is available
        """
        session = await self.get_session()
        if session is None or not session.access_token:
            raise AuthenticationError("Auth session missing!")
        return session.user

    async def require_user(self, action_label: str) -> AuthUser:
        """Authenticated user, or AuthenticationError naming the attempted action"""
        try:
            return await self.get_user()
        except AuthenticationError as e:
            message = str(e) or f"Must be signed in to {action_label}"
            raise AuthenticationError(message) from e

    async def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        session = await self.get_session()
        token = session.access_token if session and session.access_token else self.anon_key
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @staticmethod
    def _raise_for_status(response: httpx.Response, fallback: str) -> None:
        if response.is_success:
            return
        message = fallback
        try:
            body = response.json()
            if isinstance(body, dict) and body.get("message"):
                message = str(body["message"])
        except ValueError:
            if response.text.strip():
                message = response.text.strip()[:300]
        raise BackendError(message, status_code=response.status_code)

    @staticmethod
    def _rows(response: httpx.Response) -> List[Dict[str, Any]]:
        if not response.content:
            return []
        body = response.json()
        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            return [body]
        return []

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _get(self, path: str, params: List[Tuple[str, str]]) -> httpx.Response:
        headers = await self._headers()
        return await self.client.get(path, params=params, headers=headers)

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[QueryFilter] = (),
        order: Optional[str] = None,
        ascending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Read rows from a table.

        Args:
            table: Table name
            columns: Comma separated column list
            filters: Filters built with eq/neq/in_/is_null
            order: Column to order by
            ascending: Sort direction
            limit: Maximum number of rows

        Returns:
            List of row dicts

        Raises:
            BackendError: If the request fails
        """
        params: List[Tuple[str, str]] = [("select", columns.replace(" ", ""))]
        params.extend(filters)
        if order:
            params.append(("order", f"{order}.{'asc' if ascending else 'desc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))

        try:
            response = await self._get(f"/rest/v1/{table}", params)
        except httpx.HTTPError as e:
            logger.error(f"Backend select on {table} failed: {e}")
            raise BackendError(f"Unable to load {table}: {e}")

        self._raise_for_status(response, f"Unable to load {table}")
        return self._rows(response)

    async def select_one(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[QueryFilter] = (),
        order: Optional[str] = None,
        ascending: bool = True,
    ) -> Optional[Dict[str, Any]]:
        """First matching row or None"""
        rows = await self.select(table, columns, filters, order=order, ascending=ascending, limit=1)
        return rows[0] if rows else None

    async def _write(
        self,
        method: str,
        table: str,
        fallback: str,
        json: Any = None,
        filters: Sequence[QueryFilter] = (),
        returning: bool = True,
    ) -> List[Dict[str, Any]]:
        prefer = "return=representation" if returning else "return=minimal"
        headers = await self._headers(prefer)
        try:
            response = await self.client.request(
                method,
                f"/rest/v1/{table}",
                params=list(filters),
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"Backend {method} on {table} failed: {e}")
            raise BackendError(f"{fallback}: {e}")

        self._raise_for_status(response, fallback)
        return self._rows(response) if returning else []

    async def insert(
        self,
        table: str,
        rows: Union[Dict[str, Any], List[Dict[str, Any]]],
        returning: bool = True,
    ) -> List[Dict[str, Any]]:
        """Insert one row or a batch of rows"""
        return await self._write("POST", table, f"Unable to insert into {table}", json=rows, returning=returning)

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        filters: Sequence[QueryFilter],
        returning: bool = True,
    ) -> List[Dict[str, Any]]:
        """Update rows matching the filters"""
        return await self._write(
            "PATCH", table, f"Unable to update {table}", json=values, filters=filters, returning=returning
        )

    async def delete(self, table: str, filters: Sequence[QueryFilter]) -> None:
        """Delete rows matching the filters"""
        await self._write("DELETE", table, f"Unable to delete from {table}", filters=filters, returning=False)

    async def rpc(self, function: str, params: Dict[str, Any]) -> Any:
        """Call a backend SQL function"""
        headers = await self._headers()
        try:
            response = await self.client.post(f"/rest/v1/rpc/{function}", json=params, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Backend rpc {function} failed: {e}")
            raise BackendError(f"Unable to call {function}: {e}")

        self._raise_for_status(response, f"Unable to call {function}")
        return response.json() if response.content else None
