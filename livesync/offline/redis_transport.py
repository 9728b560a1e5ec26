from typing import Any, Dict, List, Optional
from redis.asyncio import Redis, ConnectionPool
from ..config.schema import MirrorCfg
from ..util.types import Result
from ..util.logging import log


class RedisTransport:
    """Async Redis list operations over a small pool, every call returning a Result."""

    def __init__(self, cfg: Optional[MirrorCfg] = None) -> None:
        self.cfg = cfg or MirrorCfg()
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None
        self._running = False

    @property
    def url(self) -> str:
        url = str(self.cfg.url)
        if self.cfg.tls and url.startswith("redis://"):
            url = "rediss://" + url[len("redis://"):]
        return url

    @property
    def connected(self) -> bool:
        return self._running and self._redis is not None

    def _pool_kwargs(self) -> Dict[str, Any]:
        # Envelopes are msgpack bytes
        kwargs: Dict[str, Any] = {"decode_responses": False, "max_connections": 4}
        for name in ("username", "password", "socket_timeout", "socket_connect_timeout"):
            value = getattr(self.cfg, name)
            if value:
                kwargs[name] = value
        return kwargs

    async def connect(self) -> Result[None]:
        """Create the pool and check the server answers PING."""
        try:
            self._pool = ConnectionPool.from_url(self.url, **self._pool_kwargs())
            self._redis = Redis(connection_pool=self._pool)
            await self._redis.ping()
        except Exception as e:
            self._running = False
            return Result.failure("redis.connect_failed", str(e))
        self._running = True
        log("DEBUG", "mirror", "redis_connected", url=self.url)
        return Result.success()

    async def disconnect(self) -> Result[None]:
        self._running = False
        redis, pool = self._redis, self._pool
        self._redis = self._pool = None
        try:
            if redis is not None:
                await redis.aclose()
            if pool is not None:
                await pool.disconnect()
        except Exception as e:
            return Result.failure("redis.disconnect_failed", str(e))
        return Result.success()

    async def push(self, key: str, data: bytes) -> Result[int]:
        """RPUSH ``data`` onto ``key``; the value is the new list length."""
        if not self.connected:
            return Result.failure("redis.not_connected", "Not connected")
        try:
            return Result.success(await self._redis.rpush(key, data))
        except Exception as e:
            return Result.failure("redis.push_failed", str(e), key=key)

    async def range(self, key: str) -> Result[List[bytes]]:
        if not self.connected:
            return Result.failure("redis.not_connected", "Not connected")
        try:
            return Result.success(list(await self._redis.lrange(key, 0, -1)))
        except Exception as e:
            return Result.failure("redis.range_failed", str(e), key=key)

    async def remove(self, key: str, data: bytes) -> Result[int]:
        """LREM one occurrence of ``data``; the value is how many were removed."""
        if not self.connected:
            return Result.failure("redis.not_connected", "Not connected")
        try:
            return Result.success(await self._redis.lrem(key, 1, data))
        except Exception as e:
            return Result.failure("redis.remove_failed", str(e), key=key)

    async def delete_key(self, key: str) -> Result[None]:
        if not self.connected:
            return Result.failure("redis.not_connected", "Not connected")
        try:
            await self._redis.delete(key)
        except Exception as e:
            return Result.failure("redis.delete_failed", str(e), key=key)
        return Result.success()
