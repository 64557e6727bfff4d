"""Redis-backed cache of verification results."""

import json
import time
from dataclasses import dataclass
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from truthchain.core.logging import get_logger
from truthchain.core.metrics import CACHE_EVENTS_TOTAL

logger = get_logger(__name__)

KEY_PREFIX = "verification:"
DEFAULT_TTL = 3600
# a positive result without these is treated as corrupt
REQUIRED_FIELDS = ("hash", "author")


@dataclass(frozen=True)
class CachedVerification:
    """A cached verification result.

    ``result`` is ``None`` for a negative entry (hash known to be absent).
    """

    content_hash: str
    result: dict[str, Any] | None
    expires_at: float
    cached_at: float

    @property
    def positive(self) -> bool:
        return self.result is not None

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at


class VerificationCache:
    """Stores verification results under ``verification:{hash}``.

    Redis failures never propagate: reads degrade to a miss, writes to a
    no-op.
    """

    def __init__(self, redis: Redis, ttl: int = DEFAULT_TTL) -> None:
        self.redis = redis
        self.ttl = ttl

    @staticmethod
    def key(content_hash: str) -> str:
        return f"{KEY_PREFIX}{content_hash.lower()}"

    async def get(self, content_hash: str) -> CachedVerification | None:
        """Return a live entry, or ``None`` on a miss.

        Corrupt payloads and entries past their embedded expiry are deleted.
        """
        key = self.key(content_hash)
        try:
            raw = await self.redis.get(key)
        except RedisError as e:
            logger.warning("verification_cache_read_failed", hash=content_hash, error=str(e))
            CACHE_EVENTS_TOTAL.labels(event="error").inc()
            return None

        if raw is None:
            CACHE_EVENTS_TOTAL.labels(event="miss").inc()
            return None

        entry = self._decode(content_hash, raw)
        if entry is None:
            logger.warning("verification_cache_corrupt", hash=content_hash)
            CACHE_EVENTS_TOTAL.labels(event="corrupt").inc()
            await self.delete(content_hash)
            return None

        if entry.is_expired():
            CACHE_EVENTS_TOTAL.labels(event="expired").inc()
            await self.delete(content_hash)
            return None

        CACHE_EVENTS_TOTAL.labels(event="hit").inc()
        return entry

    @staticmethod
    def _decode(content_hash: str, raw: bytes | str) -> CachedVerification | None:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError, UnicodeDecodeError):
            return None
        if not isinstance(payload, dict) or "result" not in payload:
            return None
        result = payload["result"]
        if result is not None and not (
            isinstance(result, dict) and all(result.get(key) for key in REQUIRED_FIELDS)
        ):
            return None
        try:
            expires_at = float(payload["expires_at"])
            cached_at = float(payload.get("cached_at", expires_at))
        except (KeyError, TypeError, ValueError):
            return None
        return CachedVerification(
            content_hash=content_hash.lower(),
            result=result,
            expires_at=expires_at,
            cached_at=cached_at,
        )

    async def _store(self, content_hash: str, result: dict[str, Any] | None) -> None:
        now = time.time()
        payload = {
            "result": result,
            "expires_at": now + self.ttl,
            "cached_at": now,
        }
        try:
            await self.redis.set(
                self.key(content_hash), json.dumps(payload, default=str), ex=self.ttl
            )
        except RedisError as e:
            logger.warning("verification_cache_write_failed", hash=content_hash, error=str(e))

    async def store_positive(self, content_hash: str, result: dict[str, Any]) -> None:
        await self._store(content_hash, result)

    async def store_negative(self, content_hash: str) -> None:
        await self._store(content_hash, None)

    async def delete(self, content_hash: str) -> None:
        try:
            await self.redis.delete(self.key(content_hash))
        except RedisError as e:
            logger.warning("verification_cache_delete_failed", hash=content_hash, error=str(e))
