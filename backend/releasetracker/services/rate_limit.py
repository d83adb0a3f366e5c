"""
rate_limit.py

Exponential backoff for upstream 429 responses. Only throttling is retried;
any other failure propagates to the caller on the first attempt.
"""
import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30


class RateLimitExceeded(Exception):
    """Raised when retries are exhausted on a throttled endpoint."""

    def __init__(self, message: str, service: str = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.service = service
        self.retry_after = retry_after


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


async def with_backoff(func, *args, max_retries: int = 4, service: str = None, sleep=asyncio.sleep, **kwargs):
    """Execute func with exponential backoff on HTTP 429 responses."""
    delay = 1.0

    for attempt in range(max_retries):
        try:
            return await func(*args, **kwargs)
        except httpx.HTTPStatusError as e:
            if e.response.status_code != 429:
                raise
            retry_after = _retry_after_seconds(e.response)
            wait = min(delay if retry_after is None else retry_after, MAX_BACKOFF_SECONDS)
            logger.warning(f"{service or 'upstream'} rate limited on attempt {attempt + 1}/{max_retries}, sleeping {wait}s")
            await sleep(wait)
            delay = min(delay * 2, MAX_BACKOFF_SECONDS)

    raise RateLimitExceeded(f"Max retries ({max_retries}) exceeded for {service or 'upstream'}", service=service)
