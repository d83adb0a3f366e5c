from redis import asyncio as aioredis
from redis.asyncio.connection import ConnectionPool as AsyncConnectionPool
import asyncio
import threading
from typing import Dict

# Per-event-loop async Redis clients; Celery tasks run each job in a fresh loop
_redis_async_by_loop: Dict[str, aioredis.Redis] = {}


def _current_loop_key(redis_url: str) -> str:
	"""Key for the current async context and target URL.

	Prefer the running event loop identity; if none, fall back to thread id.
	"""
	try:
		loop = asyncio.get_running_loop()
		return f"{redis_url}|loop-{id(loop)}"
	except RuntimeError:
		return f"{redis_url}|thread-{threading.get_ident()}"


def get_redis(redis_url: str) -> aioredis.Redis:
	"""Get an async Redis client bound to the current event loop.

	This avoids reusing a client created in a different loop which can cause
	"Future attached to a different loop" errors when awaited.
	"""
	key = _current_loop_key(redis_url)
	client = _redis_async_by_loop.get(key)
	if client is not None:
		return client

	pool = AsyncConnectionPool.from_url(
		redis_url,
		decode_responses=True,
		max_connections=20,
		socket_connect_timeout=5,
		socket_timeout=5,
		retry_on_timeout=True,
	)
	client = aioredis.Redis(connection_pool=pool)
	_redis_async_by_loop[key] = client
	return client


async def close_redis(redis_url: str) -> None:
	"""Close and forget the client bound to the current loop, if any."""
	client = _redis_async_by_loop.pop(_current_loop_key(redis_url), None)
	if client is not None:
		await client.aclose()
