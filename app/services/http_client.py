"""
Outbound HTTP for vendor APIs (Shopify Admin, couriers, WhatsApp Cloud, Interakt).

Reads are retried on gateway errors and dropped connections; writes go out once,
since a repeated POST could create a second order or send a second message.
"""
import asyncio
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0
READ_RETRIES = 2
RETRY_STATUSES = (502, 503, 504)
MAX_BACKOFF = 8.0

TRANSIENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout)


def _backoff(attempt: int) -> float:
    return min(0.5 * (2 ** attempt), MAX_BACKOFF)


async def get_with_retry(
    url: str,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = READ_RETRIES,
) -> httpx.Response:
    """GET that retries RETRY_STATUSES and transient connection errors."""
    attempt = 0
    async with httpx.AsyncClient(timeout=timeout) as client:
        while True:
            try:
                resp = await client.get(url, params=params, headers=headers)
            except TRANSIENT_ERRORS as e:
                if attempt >= retries:
                    raise
                logger.warning("GET %s failed (attempt %s): %s", url, attempt + 1, e)
            else:
                if resp.status_code not in RETRY_STATUSES or attempt >= retries:
                    return resp
                logger.warning("GET %s -> %s, retrying", url, resp.status_code)
            attempt += 1
            await asyncio.sleep(_backoff(attempt))


async def post_no_retry(
    url: str,
    *,
    json: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> httpx.Response:
    async with httpx.AsyncClient(timeout=timeout) as client:
        return await client.post(url, json=json or {}, headers=headers or {})


def safe_json(resp: httpx.Response) -> Any:
    """Decoded JSON body, or None when the vendor replied with something else."""
    try:
        return resp.json()
    except ValueError:
        return None
