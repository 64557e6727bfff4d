"""Rate limiting middleware.

Fixed-window counters in Redis, keyed by tier and caller identity. A caller
is identified by the wallet address it acts for when one is present in the
request, otherwise by its IP address.
"""

import json
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from truthchain.core.config import Settings
from truthchain.core.logging import get_logger
from truthchain.core.metrics import RATE_LIMITED_TOTAL

logger = get_logger()

KEY_PREFIX = "ratelimit"
MAX_BODY_SNIFF = 64 * 1024

_WALLET_PATHS = (
    re.compile(r"/validate-bns/(?P<wallet>S[0-9A-Za-z]{20,60})$"),
    re.compile(r"/registrations/wallet/(?P<wallet>S[0-9A-Za-z]{20,60})$"),
)


@dataclass(frozen=True)
class RateLimitTier:
    name: str
    limit: int
    window: int
    failed_only: bool = False


@dataclass(frozen=True)
class WindowState:
    tier: RateLimitTier
    count: int
    reset_in: int

    @property
    def remaining(self) -> int:
        return max(self.tier.limit - self.count, 0)


def tiers_from_settings(settings: Settings) -> dict[str, RateLimitTier]:
    return {
        "global": RateLimitTier(
            "global", settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW
        ),
        "registration": RateLimitTier(
            "registration",
            settings.RATE_LIMIT_REGISTRATION_MAX,
            settings.RATE_LIMIT_REGISTRATION_WINDOW,
        ),
        "verification": RateLimitTier(
            "verification",
            settings.RATE_LIMIT_VERIFICATION_MAX,
            settings.RATE_LIMIT_VERIFICATION_WINDOW,
            failed_only=True,
        ),
        "strict": RateLimitTier(
            "strict", settings.RATE_LIMIT_STRICT_MAX, settings.RATE_LIMIT_STRICT_WINDOW
        ),
    }


def tiers_for(method: str, path: str, prefix: str = "/api") -> list[str]:
    """Tier names that apply to a request, most general first."""
    route = path[len(prefix):] if path.startswith(prefix) else path
    route = route.rstrip("/") or "/"
    if route == "/metrics" or route == "/health" or route.startswith("/health/"):
        return []

    names = ["global"]
    if method == "POST" and route in ("/register", "/secure/register"):
        names.append("registration")
    elif route == "/verify" or route.startswith("/verify/"):
        names.append("verification")
    elif method == "POST" and route in ("/validate-bns", "/validate-bns/sweep"):
        names.append("strict")
    return names


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def caller_identity(request: Request) -> str:
    """``wallet_{address}`` when the request names a wallet, else the IP."""
    wallet = None
    content_type = request.headers.get("content-type", "")
    if request.method in ("POST", "PUT", "PATCH") and "json" in content_type:
        body = await request.body()
        if body and len(body) <= MAX_BODY_SNIFF:
            try:
                payload = json.loads(body)
            except ValueError:
                payload = None
            if isinstance(payload, dict) and isinstance(payload.get("walletAddress"), str):
                wallet = payload["walletAddress"]

    if not wallet:
        wallet = request.query_params.get("walletAddress")
    if not wallet:
        for pattern in _WALLET_PATHS:
            match = pattern.search(request.url.path)
            if match:
                wallet = match.group("wallet")
                break
    if not wallet:
        wallet = request.headers.get("X-Wallet-Address")

    if wallet:
        return f"wallet_{wallet.strip().lower()}"
    return _client_ip(request)


class RateLimiter:
    """Fixed-window request counters."""

    def __init__(self, redis: Redis) -> None:
        self.redis = redis

    @staticmethod
    def _key(tier: RateLimitTier, identity: str, now: float) -> tuple[str, int]:
        window_start = int(now // tier.window) * tier.window
        reset_in = window_start + tier.window - int(now)
        return f"{KEY_PREFIX}:{tier.name}:{identity}:{window_start}", max(reset_in, 1)

    async def hit(self, tier: RateLimitTier, identity: str) -> WindowState:
        """Count a request and return the window state."""
        key, reset_in = self._key(tier, identity, time.time())
        count = int(await self.redis.incr(key))
        if count == 1:
            await self.redis.expire(key, tier.window)
        return WindowState(tier, count, reset_in)

    async def peek(self, tier: RateLimitTier, identity: str) -> WindowState:
        key, reset_in = self._key(tier, identity, time.time())
        value = await self.redis.get(key)
        return WindowState(tier, int(value or 0), reset_in)


def too_many_requests(state: WindowState) -> JSONResponse:
    response = JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "Too many requests",
            "message": "Rate limit exceeded. Please try again later.",
            "retryAfter": state.reset_in,
        },
    )
    response.headers["Retry-After"] = str(state.reset_in)
    _set_headers(response, state)
    return response


def _set_headers(response: Response, state: WindowState) -> None:
    response.headers["RateLimit-Limit"] = str(state.tier.limit)
    response.headers["RateLimit-Remaining"] = str(state.remaining)
    response.headers["RateLimit-Reset"] = str(state.reset_in)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies per-route rate limit tiers.

    Redis is resolved per request so the limiter works with connections
    created during application startup. When Redis is unavailable requests
    are let through.
    """

    def __init__(
        self,
        app: ASGIApp,
        settings: Settings,
        redis_provider: Callable[[Request], Redis | None],
    ) -> None:
        super().__init__(app)
        self.enabled = settings.RATE_LIMIT_ENABLED
        self.prefix = settings.api_prefix
        self.tiers = tiers_from_settings(settings)
        self.redis_provider = redis_provider

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.enabled or request.method == "OPTIONS":
            return await call_next(request)
        names = tiers_for(request.method, request.url.path, self.prefix)
        tiers = [self.tiers[name] for name in names]
        redis = self.redis_provider(request)
        if not tiers or redis is None:
            return await call_next(request)

        limiter = RateLimiter(redis)
        identity = await caller_identity(request)
        states: list[WindowState] = []
        try:
            for tier in tiers:
                if tier.failed_only:
                    state = await limiter.peek(tier, identity)
                    exceeded = state.count >= tier.limit
                else:
                    state = await limiter.hit(tier, identity)
                    exceeded = state.count > tier.limit
                if exceeded:
                    RATE_LIMITED_TOTAL.labels(tier=tier.name).inc()
                    logger.warning(
                        "rate_limit_exceeded", tier=tier.name, identity=identity
                    )
                    return too_many_requests(state)
                states.append(state)
        except RedisError as e:
            logger.warning("rate_limit_unavailable", error=str(e))
            return await call_next(request)

        response = await call_next(request)

        for tier in tiers:
            if tier.failed_only and response.status_code >= 400:
                try:
                    await limiter.hit(tier, identity)
                except RedisError as e:
                    logger.warning("rate_limit_unavailable", error=str(e))

        if states:
            _set_headers(response, min(states, key=lambda s: s.remaining))
        return response
