"""Redis test fixtures."""

import time
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from truthchain.cache.verification import VerificationCache


class FakeRedis:
    """In-memory stand-in for the subset of ``redis.asyncio.Redis`` we use.

    Set ``fail`` to make every command raise a connection error.
    """

    def __init__(self) -> None:
        self.store: dict[str, bytes] = {}
        self.expiry: dict[str, float] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis is down")

    def _live(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.time():
            self.store.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.store

    async def get(self, key: str) -> bytes | None:
        self._check()
        return self.store.get(key) if self._live(key) else None

    async def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self._check()
        self.store[key] = value.encode() if isinstance(value, str) else value
        if ex is not None:
            self.expiry[key] = time.time() + ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    async def incr(self, key: str) -> int:
        self._check()
        current = int(self.store[key]) if self._live(key) else 0
        self.store[key] = str(current + 1).encode()
        return current + 1

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        if key not in self.store:
            return False
        self.expiry[key] = time.time() + seconds
        return True

    async def ping(self) -> bool:
        self._check()
        return True

    async def info(self, section: str | None = None) -> dict[str, Any]:
        self._check()
        return {"connected_clients": 1}

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Empty in-memory Redis."""
    return FakeRedis()


@pytest.fixture
def verification_cache(fake_redis: FakeRedis) -> VerificationCache:
    """Verification cache backed by the in-memory Redis."""
    return VerificationCache(fake_redis, ttl=3600)  # type: ignore[arg-type]
