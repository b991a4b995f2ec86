"""
Supabase service for database operations.

Thin PostgREST client over httpx. Core reads/writes raise SupabaseError so
callers can decide how to degrade; analytics logging never fails the request.
"""
import json
import time
import httpx
from httpx import Timeout
from typing import Dict, Any, List, Optional
import logging

from ..config import SUPABASE_URL, SUPABASE_KEY

logger = logging.getLogger(__name__)


class SupabaseError(Exception):
    """Supabase request failed or Supabase is not configured."""
    pass


class SupabaseService:
    """Service for handling Supabase database operations."""

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url if url is not None else SUPABASE_URL
        self.key = key if key is not None else SUPABASE_KEY
        self.enabled = bool(self.url and self.key)
        self.transport = transport

    def _headers(self, write: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
        }
        if write:
            headers["Content-Type"] = "application/json"
            headers["Prefer"] = "return=representation"
        return headers

    def _endpoint(self, path: str) -> str:
        if not self.enabled:
            raise SupabaseError("Supabase is not configured (SUPABASE_URL/SUPABASE_KEY)")
        return f"{self.url.rstrip('/')}/rest/v1/{path}"

    async def _request(
        self,
        method: str,
        path: str,
        timeout_s: float,
        write: bool = False,
        params: Optional[Dict[str, str]] = None,
        body: Any = None,
    ) -> Any:
        url = self._endpoint(path)
        content = json.dumps(body, default=str) if body is not None else None
        async with httpx.AsyncClient(timeout=Timeout(timeout_s), transport=self.transport) as client:
            try:
                r = await client.request(method, url, headers=self._headers(write), params=params, content=content)
                r.raise_for_status()
                return r.json() if r.content else []
            except httpx.HTTPStatusError as e:
                raise SupabaseError(f"Supabase {method} {path} failed: {e.response.status_code}") from e
            except httpx.HTTPError as e:
                raise SupabaseError(f"Supabase {method} {path} failed: {e}") from e
            except json.JSONDecodeError as e:
                raise SupabaseError(f"Supabase {method} {path} returned invalid JSON: {e}") from e

    @staticmethod
    def _filters(eq: Optional[Dict[str, Any]]) -> Dict[str, str]:
        return {k: f"eq.{v}" for k, v in (eq or {}).items()}

    async def insert(self, table: str, rows: List[Dict[str, Any]], timeout_s: float = 5.0) -> List[Dict[str, Any]]:
        """Insert rows into a Supabase table and return the stored representation."""
        if not rows:
            return []
        return await self._request("POST", table, timeout_s, write=True, body=rows)

    async def select(
        self,
        table: str,
        eq: Optional[Dict[str, Any]] = None,
        order: str = "",
        limit: int = 1000,
        timeout_s: float = 5.0,
    ) -> List[Dict[str, Any]]:
        """Select rows from a Supabase table."""
        params = {"select": "*", "limit": str(limit), **self._filters(eq)}
        if order:
            params["order"] = order
        return await self._request("GET", table, timeout_s, params=params)

    async def update(
        self,
        table: str,
        data: Dict[str, Any],
        eq: Dict[str, Any],
        timeout_s: float = 5.0,
    ) -> List[Dict[str, Any]]:
        """
        Update rows in a Supabase table.

        Args:
            table: Table name
            data: Data to update
            eq: Equality filters for WHERE clause
            timeout_s: Request timeout

        Returns:
            Updated rows (empty when the filter matched nothing)
        """
        if not data or not eq:
            raise SupabaseError("update requires data and at least one filter")
        return await self._request("PATCH", table, timeout_s, write=True, params=self._filters(eq), body=data)

    async def rpc(self, function: str, args: Dict[str, Any], timeout_s: float = 10.0) -> Any:
        """Call a Postgres function exposed through PostgREST."""
        return await self._request("POST", f"rpc/{function}", timeout_s, write=True, body=args)

    async def log_run(self, run_data: Dict[str, Any], table: str = "emergency_match_runs") -> None:
        """Log a matching run to the analytics table."""
        try:
            if not self.enabled:
                return
            await self.insert(table, [{**run_data, "t": int(time.time())}])
        except Exception as e:
            # Never fail the request due to analytics
            logger.debug(f"Analytics log skipped: {e}")
            return
