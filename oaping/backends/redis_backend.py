"""Redis hash stash store.

Each stashed access is one field of a Redis hash (field = access id,
value = URL). HSET overwrites per field, and take-all is a single
MULTI/EXEC of HGETALL + DEL, so an entry is never half written and never
returned twice.

Requires the ``redis`` extra.
"""

import asyncio
import logging
from typing import Any
from urllib.parse import urlsplit

from oaping.core.access import StashEntry
from oaping.core.errors import StashError

logger = logging.getLogger("oaping.backends.redis")

DEFAULT_KEY = "oaping:stash"


def _sanitize_url(url: str) -> str:
    """Mask the password of a Redis URL so it can be logged."""
    try:
        parts = urlsplit(url)
        host = f"{parts.hostname}:{parts.port or 6379}"
    except ValueError:
        return "<url>"
    if parts.password is None:
        return host
    return parts._replace(netloc=f"{parts.username or ''}:****@{host}").geturl()


class RedisStashStore:
    """Stash store backed by one Redis hash.

    Args:
        redis_url: Redis connection URL.
        key: Hash key holding the stash.
        pool_size: Connection pool size.
    """

    def __init__(self, redis_url: str, key: str = DEFAULT_KEY, pool_size: int = 4) -> None:
        self._url = redis_url
        self.key = key
        self._pool_size = pool_size
        self._client: Any = None
        self._lock = asyncio.Lock()

    @property
    def redis_url(self) -> str:
        return self._url

    async def _redis(self) -> Any:
        if self._client is not None:
            return self._client

        try:
            from redis.asyncio import ConnectionPool, Redis
        except ImportError as e:
            raise ImportError("RedisStashStore needs redis: pip install oaping[redis]") from e

        async with self._lock:
            if self._client is None:
                pool = ConnectionPool.from_url(
                    self._url, max_connections=self._pool_size, decode_responses=True
                )
                self._client = Redis(connection_pool=pool)
                logger.info(f"Using Redis stash {self.key} at {_sanitize_url(self._url)}")
        return self._client

    async def put(self, entry: StashEntry) -> None:
        """HSET the entry, replacing any entry for the same access.

        Raises:
            StashError: If Redis could not be reached or refused the write.
        """
        from redis.exceptions import RedisError

        client = await self._redis()
        try:
            await client.hset(self.key, str(entry.access_id), entry.url)
        except RedisError as e:
            raise StashError(
                f"Could not stash ping: {e}", access_id=entry.access_id, url=entry.url
            ) from e

    async def take_all(self) -> list[StashEntry]:
        """Read and delete the whole hash in one transaction.

        Raises:
            StashError: If Redis could not be reached.
        """
        from redis.exceptions import RedisError

        client = await self._redis()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.hgetall(self.key)
                pipe.delete(self.key)
                fields, _ = await pipe.execute()
        except RedisError as e:
            raise StashError(f"Could not read stash {self.key}: {e}") from e

        entries = []
        for field, url in fields.items():
            if field.isdigit():
                entries.append(StashEntry(access_id=int(field), url=url))
            else:
                logger.warning(f"Ignoring field {field!r} of {self.key}, not an access id")
        return entries

    async def count(self) -> int:
        client = await self._redis()
        return await client.hlen(self.key)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def delete(self) -> None:
        """Drop the whole stash."""
        client = await self._redis()
        await client.delete(self.key)
