"""Liveness probe for a running gateway.

An unhealthy-but-running gateway is a normal state to display, so the
probe folds every failure (refused connection, timeout, non-2xx) into
False and never raises.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger("kiro_sidecar.health")

DEFAULT_HEALTH_PATH = "/v1/models"
DEFAULT_HEALTH_HEADER = "x-api-key"
DEFAULT_HEALTH_TIMEOUT = 3.0


async def check_health(
    port: int,
    api_key: str,
    *,
    host: str = "127.0.0.1",
    path: str = DEFAULT_HEALTH_PATH,
    header: str = DEFAULT_HEALTH_HEADER,
    timeout: float = DEFAULT_HEALTH_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """GET ``http://host:port/path`` with the API key header.

    Returns:
        True on a 2xx response, False on anything else.
    """
    url = f"http://{host}:{port}{path}"
    try:
        headers = {header: api_key} if header and api_key else {}
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.get(url, headers=headers)
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        # ValueError covers UnicodeEncodeError from non-ASCII header values
        logger.debug("Health probe %s failed: %s", url, exc)
        return False
    if not resp.is_success:
        logger.debug("Health probe %s returned %d", url, resp.status_code)
    return resp.is_success


def probe(port: int, api_key: str, **kwargs) -> bool:
    """Blocking wrapper around :func:`check_health` for synchronous callers."""
    return asyncio.run(check_health(port, api_key, **kwargs))
