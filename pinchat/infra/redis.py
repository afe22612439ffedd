"""Shared Redis connection for the Redis document backend.

``redis_client`` is a proxy, so modules that imported it keep working when the
underlying client is replaced (fakeredis in tests, a reconnected client at runtime).
"""

from __future__ import annotations

import redis.asyncio as redis

from pinchat.settings import settings


class RedisProxy:
	"""Lightweight proxy that forwards attribute access to an underlying Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
