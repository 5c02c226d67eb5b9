"""Async HTTP helpers for the Supabase REST API (PostgREST).

Chat rooms, system messages and profiles live behind Supabase; every call
from this service goes through these helpers with the service role key.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from libs.common.config import get_settings
from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)

_DEFAULT_TIMEOUT = 10.0


def _headers() -> dict[str, str]:
    settings = get_settings()
    headers = {
        "apikey": settings.SUPABASE_SERVICE_ROLE_KEY,
        "Authorization": f"Bearer {settings.SUPABASE_SERVICE_ROLE_KEY}",
        "Content-Type": "application/json",
    }
    request_id = get_request_id()
    if request_id:
        headers["X-Request-ID"] = request_id
    return headers


async def supabase_request(
    *,
    method: str,
    path: str,
    json: Any = None,
    params: Optional[dict] = None,
    timeout: float = _DEFAULT_TIMEOUT,
) -> httpx.Response:
    """Make an authenticated request to the Supabase REST API.

    Args:
        method: HTTP method.
        path: Path below ``/rest/v1`` (e.g. "/rpc/get_or_create_direct_room").
        json: Optional JSON body.
        params: Optional query parameters (PostgREST filters).
        timeout: Request timeout in seconds.

    Raises:
        httpx.HTTPStatusError for non-2xx responses, httpx.RequestError on
        connection failures.
    """
    settings = get_settings()
    url = f"{settings.SUPABASE_URL.rstrip('/')}/rest/v1{path}"

    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.request(
            method,
            url,
            headers=_headers(),
            json=json,
            params=params,
        )
    response.raise_for_status()
    return response


async def supabase_rpc(function: str, params: dict) -> Any:
    """Call a Postgres function exposed through PostgREST and return its JSON."""
    response = await supabase_request(
        method="POST", path=f"/rpc/{function}", json=params
    )
    if not response.content:
        return None
    return response.json()


async def supabase_select_one(
    table: str, *, filters: dict[str, str], columns: str = "*"
) -> Optional[dict]:
    """Fetch the first row of ``table`` matching equality ``filters``."""
    params = {"select": columns, "limit": "1"}
    params.update({key: f"eq.{value}" for key, value in filters.items()})
    response = await supabase_request(method="GET", path=f"/{table}", params=params)
    rows = response.json()
    return rows[0] if rows else None
