"""FastAPI dependencies wiring routes to application resources."""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from truthchain.blockchain.gateway import ContractGateway
from truthchain.cache.verification import VerificationCache
from truthchain.core.events import AppState
from truthchain.database.repositories import RegistrationRepository
from truthchain.services.bns import BNSValidator
from truthchain.services.registration import RegistrationService
from truthchain.services.resolver import VerificationResolver
from truthchain.services.scheduler import BNSValidationScheduler


def get_resources(request: Request) -> AppState:
    resources = getattr(request.app.state, "resources", None)
    if resources is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return resources


def _require(value, name: str):
    if value is None:
        raise HTTPException(status_code=503, detail=f"{name} is not available")
    return value


def get_gateway(resources: AppState = Depends(get_resources)) -> ContractGateway:
    return _require(resources.gateway, "Blockchain gateway")


def get_cache(resources: AppState = Depends(get_resources)) -> VerificationCache:
    return _require(resources.cache, "Verification cache")


def get_bns_validator(resources: AppState = Depends(get_resources)) -> BNSValidator:
    return _require(resources.bns_validator, "BNS validation")


def get_scheduler(resources: AppState = Depends(get_resources)) -> BNSValidationScheduler:
    return _require(resources.scheduler, "BNS scheduler")


async def get_session(
    resources: AppState = Depends(get_resources),
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session.

    Yields:
        AsyncSession: Database session
    """
    database = _require(resources.database, "Database")
    async with database.session() as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> RegistrationRepository:
    return RegistrationRepository(session)


def get_resolver(
    gateway: ContractGateway = Depends(get_gateway),
    cache: VerificationCache = Depends(get_cache),
    repository: RegistrationRepository = Depends(get_repository),
) -> VerificationResolver:
    return VerificationResolver(gateway=gateway, cache=cache, repository=repository)


def get_chain_resolver(
    gateway: ContractGateway = Depends(get_gateway),
    cache: VerificationCache = Depends(get_cache),
) -> VerificationResolver:
    """Resolver for chain-only paths, without a database session."""
    return VerificationResolver(gateway=gateway, cache=cache)


def get_registration_service(
    resources: AppState = Depends(get_resources),
    gateway: ContractGateway = Depends(get_gateway),
    cache: VerificationCache = Depends(get_cache),
    repository: RegistrationRepository = Depends(get_repository),
) -> RegistrationService:
    settings = resources.settings
    return RegistrationService(
        gateway=gateway,
        cache=cache,
        repository=repository,
        ipfs=resources.ipfs,
        max_content_length=settings.MAX_CONTENT_LENGTH,
        confirmation_delay=settings.CONFIRMATION_DELAY,
    )
