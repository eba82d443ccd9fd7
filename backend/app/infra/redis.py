"""Redis client for the discovery result cache.

``redis_client`` is a proxy so modules can import it once while tests swap the
underlying connection for fakeredis.
"""

from __future__ import annotations

import redis.asyncio as redis

from app.settings import settings


def create_client(url: str) -> redis.Redis:
	"""One connection pool per process. Socket timeouts mirror the cache timeout."""
	return redis.from_url(
		url,
		decode_responses=True,
		socket_timeout=settings.cache_timeout_seconds,
		socket_connect_timeout=settings.cache_timeout_seconds,
		health_check_interval=30,
	)


class RedisProxy:
	"""Forward attribute access to the active client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	def __getattr__(self, item):
		return getattr(self._client, item)


redis_client: RedisProxy = RedisProxy(create_client(settings.redis_url))


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
