"""
Shared HTTP client with timeouts and a bounded retry policy for external APIs.
Shopify goes through request_with_retry (429 + Retry-After); Odoo uses post_no_retry.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 3
DEFAULT_RETRY_AFTER = 2.0  # seconds, when the server sends no Retry-After
MAX_RETRY_AFTER = 60.0


class RetryPolicy:
    """
    How many times to repeat a request that was rate limited, and how long to wait.
    The wait comes from the Retry-After header when present, else `default_delay`.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_RETRIES,
        default_delay: float = DEFAULT_RETRY_AFTER,
        retry_on: tuple[int, ...] = (429,),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.default_delay = default_delay
        self.retry_on = retry_on
        self.sleep = sleep

    def should_retry(self, resp: httpx.Response, attempt: int) -> bool:
        return resp.status_code in self.retry_on and attempt < self.max_retries

    def delay_for(self, resp: httpx.Response) -> float:
        raw = resp.headers.get("retry-after")
        if raw:
            try:
                return min(max(float(raw), 0.0), MAX_RETRY_AFTER)
            except ValueError:
                pass
        return self.default_delay


async def request_with_retry(
    method: str,
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    retry_policy: Optional[RetryPolicy] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any,
) -> httpx.Response:
    """
    Perform HTTP request with timeout; repeat it while the policy says so.
    Returns the last response (which may still be a 429 once retries are exhausted).
    Connection errors propagate on first occurrence.
    """
    policy = retry_policy or RetryPolicy()
    attempt = 0
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        while True:
            resp = await client.request(method, url, **kwargs)
            if not policy.should_retry(resp, attempt):
                return resp
            attempt += 1
            delay = policy.delay_for(resp)
            logger.warning(
                "HTTP %s %s -> %s, retry %s/%s in %.1fs",
                method, url, resp.status_code, attempt, policy.max_retries, delay,
            )
            await policy.sleep(delay)


async def post_no_retry(
    url: str,
    *,
    json: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """POST with no retries (non-idempotent). Uses single attempt with timeout."""
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        return await client.post(url, json=json or {}, headers=headers or {})
