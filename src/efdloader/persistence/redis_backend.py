"""Redis cache backend implementing ICacheBackend (used for slice leases)."""

from __future__ import annotations

import redis

from efdloader.core.exceptions import CacheError


class RedisCacheBackend:
    """Production ICacheBackend backed by Redis."""

    def __init__(self, host: str = "localhost", port: int = 6379, db: int = 0) -> None:
        self._client = redis.Redis(
            host=host, port=port, db=db, decode_responses=True,
        )

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except Exception as exc:
            raise CacheError(f"Redis GET failed for key={key!r}: {exc}") from exc

    def set_if_absent(self, key: str, ttl: int, value: str) -> bool:
        """SET NX EX; True when this call created the key."""
        try:
            return bool(self._client.set(key, value, nx=True, ex=ttl))
        except Exception as exc:
            raise CacheError(f"Redis SET NX failed for key={key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except Exception as exc:
            raise CacheError(f"Redis DELETE failed for key={key!r}: {exc}") from exc
