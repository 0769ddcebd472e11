"""
Outbound HTTP helpers shared by the gateway adapters.

All calls carry an explicit timeout. GETs are idempotent and are retried
once on transport errors or 5xx responses; POSTs are never retried.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx

from storify.core.config import settings
from storify.core.logging import _safe_truncate
from storify.features.billing.provider import BillingProviderError

logger = logging.getLogger("storify.billing")

GET_RETRIES = 1
RETRY_BACKOFF_SECONDS = 0.5


@asynccontextmanager
async def gateway_client(client: Optional[httpx.AsyncClient] = None):
    """Yield the injected client, or a short-lived one owned by this call."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.GATEWAY_TIMEOUT_SECONDS) as owned:
        yield owned


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    gateway: str,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> httpx.Response:
    method = method.upper()
    attempts = 1 + (GET_RETRIES if method == "GET" else 0)
    request_timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS

    for attempt in range(1, attempts + 1):
        try:
            response = await client.request(method, url, timeout=request_timeout, **kwargs)
        except httpx.HTTPError as e:
            if attempt < attempts:
                logger.warning(f"[{gateway}] {method} {url} failed ({e.__class__.__name__}), retrying")
                await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)
                continue
            raise BillingProviderError(f"{gateway} request failed: {e.__class__.__name__}", gateway=gateway) from e

        if response.status_code >= 500 and attempt < attempts:
            logger.warning(f"[{gateway}] {method} {url} returned {response.status_code}, retrying")
            await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)
            continue
        return response

    raise BillingProviderError(f"{gateway} request failed", gateway=gateway)


def json_or_error(response: httpx.Response, *, gateway: str, action: str) -> Dict[str, Any]:
    """Decode a JSON body, raising BillingProviderError on HTTP or decode errors."""
    if response.status_code >= 400:
        raise BillingProviderError(
            f"{gateway} {action} failed ({response.status_code}): {_safe_truncate(response.text, 300)}",
            gateway=gateway,
            status_code=response.status_code,
        )
    try:
        data = response.json()
    except ValueError as e:
        raise BillingProviderError(f"{gateway} {action} returned invalid JSON", gateway=gateway) from e
    if not isinstance(data, dict):
        raise BillingProviderError(f"{gateway} {action} returned unexpected payload", gateway=gateway)
    return data
