"""Outbound HTTP helpers shared by the catalog client and scene processor."""

import asyncio
from typing import Any, Optional

import httpx

from app.core.logging import logger


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    retries: int = 2,
    backoff: float = 1.0,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying network errors and 5xx responses.

    Retries wait ``backoff * 2**attempt`` seconds. Timeouts and 4xx responses
    are never retried so the worst-case latency stays bounded.

    Args:
        client: Shared async client
        method: HTTP method
        url: Request URL
        retries: Number of retries after the first attempt
        backoff: Base delay in seconds between retries
        timeout: Per-request timeout overriding the client default

    Returns:
        The last response received. Callers decide whether to raise on status.
    """
    if timeout is not None:
        kwargs["timeout"] = timeout

    for attempt in range(retries + 1):
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            logger.warning(f"Request to {url} timed out")
            raise
        except httpx.TransportError as e:
            if attempt == retries:
                raise
            logger.warning(
                f"Request to {url} failed ({e}), retry {attempt + 1}/{retries}"
            )
        else:
            if response.status_code < 500 or attempt == retries:
                return response
            logger.warning(
                f"Server error {response.status_code} from {url}, "
                f"retry {attempt + 1}/{retries}"
            )

        await asyncio.sleep(backoff * (2**attempt))

    # Unreachable: the final attempt either returns or raises.
    raise RuntimeError(f"Fetch failed after retries: {url}")
