"""Client for the hosted Postgres REST interface (PostgREST).

Each call is table-scoped and forwards the caller's bearer token so row-level
security policies apply to the end user, not to this service.
"""

import logging
from typing import Any

import httpx
from httpx import HTTPStatusError

from studyspace.core.config import settings
from studyspace.core.exceptions import PersistenceFailure
from studyspace.core.retry import retry_with_backoff

logger = logging.getLogger(__name__)

Row = dict[str, Any]


def _quote(value: Any) -> str:
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def build_filters(filters: dict[str, Any] | None) -> dict[str, str]:
    """Translate ``{column: value}`` into PostgREST query parameters.

    Scalars become ``eq`` filters, lists and tuples become ``in`` filters and
    ``None`` becomes ``is.null``.
    """
    params: dict[str, str] = {}
    for column, value in (filters or {}).items():
        if value is None:
            params[column] = "is.null"
        elif isinstance(value, (list, tuple, set)):
            params[column] = "in.(" + ",".join(_quote(v) for v in value) + ")"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        else:
            params[column] = f"eq.{value}"
    return params


def build_ranges(ranges: dict[str, tuple[Any, Any]] | None) -> dict[str, str]:
    """Translate ``{column: (lower, upper)}`` into inclusive ``gte``/``lte`` filters.

    Either bound may be None. Both bounds on one column go into a single
    ``and`` parameter, since a query string key can only carry one filter.
    """
    params: dict[str, str] = {}
    conditions: list[str] = []
    for column, (lower, upper) in (ranges or {}).items():
        bounds: list[str] = []
        if lower is not None:
            bounds.append(f"gte.{lower}")
        if upper is not None:
            bounds.append(f"lte.{upper}")
        if len(bounds) == 1:
            params[column] = bounds[0]
        elif bounds:
            conditions += [f"{column}.{bound}" for bound in bounds]
    if conditions:
        params["and"] = "(" + ",".join(conditions) + ")"
    return params


class PostgrestClient:
    """Thin async wrapper over the PostgREST table endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.rest_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.supabase_anon_key
        self.timeout = timeout or settings.persistence_timeout
        self._transport = transport

    def _get_headers(self, credential: str | None, prefer: str | None = None) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
        if credential:
            headers["Authorization"] = credential
        elif self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        credential: str | None = None,
        prefer: str | None = None,
    ) -> list[Row]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.request(
                method,
                f"{self.base_url}/{table}",
                params=params,
                json=json,
                headers=self._get_headers(credential, prefer),
            )
            response.raise_for_status()
            if not response.content:
                return []
            data = response.json()
            return data if isinstance(data, list) else [data]

    @retry_with_backoff(max_attempts=3, min_wait=1, max_wait=5)
    async def _select(
        self,
        table: str,
        params: dict[str, str],
        credential: str | None,
    ) -> list[Row]:
        return await self._request("GET", table, params=params, credential=credential)

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        ranges: dict[str, tuple[Any, Any]] | None = None,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
        credential: str | None = None,
    ) -> list[Row]:
        """Read rows. Transient failures are retried since reads are safe to repeat."""
        params = build_filters(filters)
        params.update(build_ranges(ranges))
        params["select"] = columns
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        if offset:
            params["offset"] = str(offset)
        try:
            return await self._select(table, params, credential)
        except httpx.HTTPError as e:
            raise self._failure("select", table, e) from e

    async def insert(
        self,
        table: str,
        rows: Row | list[Row],
        *,
        credential: str | None = None,
    ) -> list[Row]:
        """Insert rows and return them as stored."""
        try:
            return await self._request(
                "POST", table, json=rows, credential=credential, prefer="return=representation"
            )
        except httpx.HTTPError as e:
            raise self._failure("insert", table, e) from e

    async def upsert(
        self,
        table: str,
        rows: Row | list[Row],
        *,
        on_conflict: str | None = None,
        ignore_duplicates: bool = False,
        credential: str | None = None,
    ) -> list[Row]:
        """Insert rows, merging (or skipping) those that hit ``on_conflict``."""
        resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        params = {"on_conflict": on_conflict} if on_conflict else None
        try:
            return await self._request(
                "POST",
                table,
                params=params,
                json=rows,
                credential=credential,
                prefer=f"resolution={resolution},return=representation",
            )
        except httpx.HTTPError as e:
            raise self._failure("upsert", table, e) from e

    async def update(
        self,
        table: str,
        values: Row,
        *,
        filters: dict[str, Any],
        credential: str | None = None,
    ) -> list[Row]:
        """Update matching rows and return them."""
        try:
            return await self._request(
                "PATCH",
                table,
                params=build_filters(filters),
                json=values,
                credential=credential,
                prefer="return=representation",
            )
        except httpx.HTTPError as e:
            raise self._failure("update", table, e) from e

    async def delete(
        self,
        table: str,
        *,
        filters: dict[str, Any],
        credential: str | None = None,
    ) -> list[Row]:
        """Delete matching rows and return them."""
        if not filters:
            raise ValueError("Refusing to delete without filters")
        try:
            return await self._request(
                "DELETE",
                table,
                params=build_filters(filters),
                credential=credential,
                prefer="return=representation",
            )
        except httpx.HTTPError as e:
            raise self._failure("delete", table, e) from e

    async def ping(self) -> bool:
        """Check that the REST endpoint answers."""
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
                response = await client.get(self.base_url + "/", headers=self._get_headers(None))
                return response.status_code < 500
        except httpx.HTTPError:
            return False

    @staticmethod
    def _failure(operation: str, table: str, error: httpx.HTTPError) -> PersistenceFailure:
        if isinstance(error, HTTPStatusError):
            status = error.response.status_code
            logger.error(f"{table} {operation} failed: {status} - {error.response.text}")
            return PersistenceFailure(f"{table} {operation} failed ({status})", table=table, status=status)
        logger.error(f"{table} {operation} failed: {error}")
        return PersistenceFailure(f"{table} {operation} failed: {error}", table=table)


# Global client instance
_postgrest_client: PostgrestClient | None = None


def get_postgrest_client() -> PostgrestClient:
    """Get global PostgREST client instance."""
    global _postgrest_client
    if _postgrest_client is None:
        _postgrest_client = PostgrestClient()
    return _postgrest_client
