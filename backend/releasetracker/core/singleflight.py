"""
singleflight.py

Async single-flight: at most one in-flight computation per key; concurrent
callers for the same key await the same result (or the same exception).
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class SingleFlight:
    def __init__(self):
        self._inflight: Dict[str, asyncio.Future] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def do(self, key: str, func: Callable[[], Awaitable[Any]]) -> Any:
        existing = self._inflight.get(key)
        # A future left behind by a finished event loop cannot be awaited here
        if existing is not None and existing.get_loop() is asyncio.get_running_loop():
            logger.debug(f"Single-flight join for {key}")
            return await asyncio.shield(existing)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await func()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unjoined failure is not reported as never awaited
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]


# Process-wide guard used by caches that are not given their own
default_flight = SingleFlight()
