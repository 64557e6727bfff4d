"""Application startup and shutdown events."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import Counter, Gauge
from redis.asyncio.client import Redis as AsyncRedis
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from truthchain.blockchain.gateway import ContractGateway
from truthchain.cache.verification import VerificationCache
from truthchain.core.config import Settings
from truthchain.core.db import Database
from truthchain.services.bns import BNSClient, BNSValidator
from truthchain.services.ipfs import PinataClient
from truthchain.services.scheduler import BNSValidationScheduler


class RedisInitError(Exception):
    """Raised when the Redis connection cannot be established."""


REDIS_POOL_CONNECTIONS = Gauge(
    "app_redis_pool_connections",
    "Number of active Redis connections",
)

# Prometheus metrics
REQUESTS_TOTAL = Counter(
    "app_http_requests_total",
    "Total number of HTTP requests",
    labelnames=["method", "path"],
)

RESPONSES_TOTAL = Counter(
    "app_http_responses_total",
    "Total number of HTTP responses",
    labelnames=["status_code"],
)

logger: logging.Logger = logging.getLogger("truthchain.core.events")


class AppState:
    """Shared resources owned by the application lifespan."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.redis: AsyncRedis | None = None
        self.database: Database | None = None
        self.gateway: ContractGateway | None = None
        self.cache: VerificationCache | None = None
        self.bns_client: BNSClient | None = None
        self.bns_validator: BNSValidator | None = None
        self.scheduler: BNSValidationScheduler | None = None
        self.ipfs: PinataClient | None = None

    async def redis_health(self) -> bool:
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            pool_info = await self.redis.info("clients")
            REDIS_POOL_CONNECTIONS.set(pool_info.get("connected_clients", 0))
            return True
        except (RedisError, OSError) as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def database_health(self) -> bool:
        if self.database is None:
            return False
        return await self.database.health_check()

    async def chain_health(self) -> bool:
        if self.gateway is None:
            return False
        return await self.gateway.stats() is not None


async def create_redis_pool(
    settings: Settings, max_retries: int = 3, retry_delay: float = 1.0
) -> AsyncRedis:
    """Create Redis connection pool with retry logic.

    Raises:
        RedisInitError: If connection cannot be established after retries
    """
    for attempt in range(max_retries):
        try:
            pool = AsyncRedis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=False,
                max_connections=settings.REDIS_POOL_SIZE,
                health_check_interval=15,
            )
            # Verify connection is working
            await pool.ping()
            logger.info(
                f"Redis pool initialized - Size: {settings.REDIS_POOL_SIZE}, "
                f"Health check interval: 15s"
            )
            return pool
        except (ConnectionError, TimeoutError) as e:
            if attempt == max_retries - 1:
                raise RedisInitError(f"Failed to initialize Redis pool: {e}") from e
            logger.warning(
                f"Redis connection attempt {attempt + 1}/{max_retries} "
                f"failed: {e}. Retrying in {retry_delay}s..."
            )
            await asyncio.sleep(retry_delay)

    raise RedisInitError("Failed to initialize Redis pool: max retries exceeded")


async def build_state(settings: Settings) -> AppState:
    """Create every shared resource."""
    state = AppState(settings)
    state.redis = await create_redis_pool(settings)

    state.database = Database(settings.DATABASE_URL, pool_size=settings.MAX_CONNECTIONS)
    state.database.connect()
    if settings.DB_AUTO_CREATE:
        await state.database.create_tables()

    state.gateway = ContractGateway.from_settings(settings)
    state.cache = VerificationCache(state.redis, ttl=settings.VERIFICATION_CACHE_TTL)

    state.bns_client = BNSClient.from_settings(settings)
    state.bns_validator = BNSValidator(
        state.bns_client,
        state.database.session,
        batch_size=settings.BNS_BATCH_SIZE,
        staleness_window=settings.BNS_STALENESS_WINDOW,
        request_delay=settings.BNS_REQUEST_DELAY,
    )
    state.scheduler = BNSValidationScheduler(
        state.bns_validator,
        warmup=settings.BNS_VALIDATION_WARMUP,
        interval=settings.BNS_VALIDATION_INTERVAL,
    )

    if settings.ipfs_enabled:
        state.ipfs = PinataClient.from_settings(settings)
    else:
        logger.info("Pinata credentials not configured, IPFS storage disabled")
    return state


async def close_state(state: AppState) -> None:
    """Release resources in reverse order of creation."""
    try:
        if state.scheduler is not None:
            await state.scheduler.stop()
        for client in (state.ipfs, state.bns_client, state.gateway):
            if client is not None:
                await client.aclose()
        if state.database is not None:
            await state.database.dispose()
        if state.redis is not None:
            logger.info("Closing Redis connections...")
            await state.redis.aclose()
            logger.info("Redis connections closed")
        logger.info("Application shutdown complete")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")
        raise


def create_lifespan(state: AppState | None = None):
    """Build the lifespan handler.

    A pre-built ``state`` is installed as-is and not closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if state is not None:
            app.state.resources = state
            yield
            return

        settings: Settings = app.state.settings
        resources = await build_state(settings)
        app.state.resources = resources
        if settings.BNS_VALIDATION_ENABLED and resources.scheduler is not None:
            resources.scheduler.start()
        logger.info(
            "Application startup complete - "
            f"Network: {settings.NETWORK}, "
            f"Contract: {settings.CONTRACT_ADDRESS}.{settings.CONTRACT_NAME}"
        )
        try:
            yield
        finally:
            await close_state(resources)

    return lifespan
