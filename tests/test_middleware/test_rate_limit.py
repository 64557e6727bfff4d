"""Rate limiting middleware tests."""

from typing import Any

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport, AsyncClient

from truthchain.core.config import Settings
from truthchain.middleware.rate_limit import (
    RateLimiter,
    RateLimitMiddleware,
    RateLimitTier,
    caller_identity,
    tiers_for,
)
from tests.fixtures.cache import FakeRedis
from tests.fixtures.db import WALLET


class TestTiersFor:
    @pytest.mark.parametrize(
        ("method", "path", "expected"),
        [
            ("POST", "/api/register", ["global", "registration"]),
            ("POST", "/api/secure/register", ["global", "registration"]),
            ("POST", "/api/verify", ["global", "verification"]),
            ("GET", "/api/verify/abcd", ["global", "verification"]),
            ("POST", "/api/verify/batch", ["global", "verification"]),
            ("POST", "/api/validate-bns", ["global", "strict"]),
            ("GET", "/api/validate-bns/SP123", ["global"]),
            ("GET", "/api/stats/global", ["global"]),
            ("GET", "/api/health", []),
            ("GET", "/api/health/redis", []),
            ("GET", "/metrics", []),
        ],
    )
    def test_route_tiers(self, method, path, expected):
        assert tiers_for(method, path) == expected


def _request(
    method: str = "GET",
    path: str = "/api/verify",
    headers: dict[str, str] | None = None,
    query: str = "",
    body: bytes = b"",
) -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    scope: dict[str, Any] = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": query.encode(),
        "headers": raw_headers,
        "client": ("10.0.0.9", 1234),
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


class TestCallerIdentity:
    @pytest.mark.asyncio
    async def test_wallet_in_json_body(self):
        request = _request(
            "POST",
            "/api/secure/register",
            headers={"content-type": "application/json"},
            body=f'{{"walletAddress": "{WALLET}"}}'.encode(),
        )
        assert await caller_identity(request) == f"wallet_{WALLET.lower()}"

    @pytest.mark.asyncio
    async def test_wallet_in_query(self):
        request = _request(query=f"walletAddress={WALLET}")
        assert await caller_identity(request) == f"wallet_{WALLET.lower()}"

    @pytest.mark.asyncio
    async def test_wallet_in_path(self):
        request = _request(path=f"/api/registrations/wallet/{WALLET}")
        assert await caller_identity(request) == f"wallet_{WALLET.lower()}"

    @pytest.mark.asyncio
    async def test_wallet_header(self):
        request = _request(headers={"X-Wallet-Address": WALLET})
        assert await caller_identity(request) == f"wallet_{WALLET.lower()}"

    @pytest.mark.asyncio
    async def test_forwarded_ip(self):
        request = _request(headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})
        assert await caller_identity(request) == "203.0.113.5"

    @pytest.mark.asyncio
    async def test_client_ip_fallback(self):
        request = _request("POST", headers={"content-type": "application/json"}, body=b"[")
        assert await caller_identity(request) == "10.0.0.9"


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_counts_within_window(self):
        redis = FakeRedis()
        limiter = RateLimiter(redis)  # type: ignore[arg-type]
        tier = RateLimitTier("global", limit=2, window=60)

        first = await limiter.hit(tier, "ip")
        second = await limiter.hit(tier, "ip")
        peeked = await limiter.peek(tier, "ip")

        assert (first.count, second.count, peeked.count) == (1, 2, 2)
        assert second.remaining == 0
        assert 1 <= second.reset_in <= 60
        [key] = redis.store
        assert key.startswith("ratelimit:global:ip:")
        assert key in redis.expiry

    @pytest.mark.asyncio
    async def test_identities_are_isolated(self):
        limiter = RateLimiter(FakeRedis())  # type: ignore[arg-type]
        tier = RateLimitTier("global", limit=1, window=60)

        await limiter.hit(tier, "a")

        assert (await limiter.peek(tier, "b")).count == 0


def _limited_app(redis: FakeRedis | None, **overrides: Any) -> FastAPI:
    values: dict[str, Any] = {
        "RATE_LIMIT_MAX_REQUESTS": 100,
        "RATE_LIMIT_REGISTRATION_MAX": 2,
        "RATE_LIMIT_VERIFICATION_MAX": 2,
        "RATE_LIMIT_STRICT_MAX": 1,
    }
    values.update(overrides)
    settings = Settings(**values)
    app = FastAPI()

    @app.post("/api/register")
    async def register() -> dict[str, bool]:
        return {"ok": True}

    @app.post("/api/verify")
    async def verify(request: Request) -> JSONResponse:
        payload = await request.json()
        status = 200 if payload.get("hash") == "good" else 400
        return JSONResponse({"ok": status == 200}, status_code=status)

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    app.add_middleware(
        RateLimitMiddleware, settings=settings, redis_provider=lambda request: redis
    )
    return app


async def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestRateLimitMiddleware:
    @pytest.mark.asyncio
    async def test_registration_tier_rejects_third_request(self):
        async with await _client(_limited_app(FakeRedis())) as client:
            responses = [await client.post("/api/register") for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 429]
        limited = responses[2]
        assert limited.json()["success"] is False
        assert limited.json()["error"] == "Too many requests"
        assert int(limited.headers["Retry-After"]) >= 1
        assert responses[0].headers["RateLimit-Remaining"] == "1"

    @pytest.mark.asyncio
    async def test_verification_tier_counts_failures_only(self):
        async with await _client(_limited_app(FakeRedis())) as client:
            ok = [await client.post("/api/verify", json={"hash": "good"}) for _ in range(5)]
            bad = [await client.post("/api/verify", json={"hash": "bad"}) for _ in range(3)]
            after = await client.post("/api/verify", json={"hash": "good"})

        assert all(r.status_code == 200 for r in ok)
        assert [r.status_code for r in bad] == [400, 400, 429]
        assert after.status_code == 429

    @pytest.mark.asyncio
    async def test_health_is_never_limited(self):
        app = _limited_app(FakeRedis(), RATE_LIMIT_MAX_REQUESTS=1)
        async with await _client(app) as client:
            responses = [await client.get("/api/health") for _ in range(3)]

        assert all(r.status_code == 200 for r in responses)

    @pytest.mark.asyncio
    async def test_fails_open_when_redis_is_down(self):
        redis = FakeRedis()
        redis.fail = True
        async with await _client(_limited_app(redis)) as client:
            responses = [await client.post("/api/register") for _ in range(4)]

        assert all(r.status_code == 200 for r in responses)

    @pytest.mark.asyncio
    async def test_disabled(self):
        app = _limited_app(FakeRedis(), RATE_LIMIT_ENABLED=False)
        async with await _client(app) as client:
            responses = [await client.post("/api/register") for _ in range(4)]

        assert all(r.status_code == 200 for r in responses)

    @pytest.mark.asyncio
    async def test_wallets_get_separate_buckets(self):
        async with await _client(_limited_app(FakeRedis())) as client:
            for _ in range(2):
                await client.post("/api/register", headers={"X-Wallet-Address": WALLET})
            other = await client.post("/api/register", headers={"X-Wallet-Address": "SPOTHER"})
            same = await client.post("/api/register", headers={"X-Wallet-Address": WALLET})

        assert other.status_code == 200
        assert same.status_code == 429
