"""Verification resolver.

Answers "is this content registered, and by whom" by consulting, in order,
the verification cache, the registration store and the chain contracts.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from truthchain.blockchain.gateway import MAX_BATCH_SIZE, ChainRegistration, ContractGateway
from truthchain.cache.verification import VerificationCache
from truthchain.core.hashing import InvalidHashError, hash_content_hex, hex_to_bytes
from truthchain.core.logging import get_logger
from truthchain.core.metrics import VERIFICATIONS_TOTAL
from truthchain.database.models import RegistrationModel
from truthchain.database.repositories import RegistrationRepository

logger = get_logger(__name__)

MESSAGE_CACHED = "Content verified (cached)"
MESSAGE_VERIFIED = "Content verified successfully"
MESSAGE_NOT_FOUND = "Content not found on blockchain"
MISSING_ITEM_INPUT = "Either content or hash required"
INVALID_ITEM_INPUT = "Content and hash must be strings"


class MissingInputError(ValueError):
    """Neither content nor a hash was supplied."""


@dataclass
class VerificationOutcome:
    """Result of a single verification."""

    hash: str
    verified: bool
    source: str
    message: str
    data: dict[str, Any] | None = None


@dataclass
class BatchItemOutcome:
    """Result of one batch item; failures never abort the batch."""

    success: bool
    verified: bool = False
    hash: str | None = None
    data: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "verified": self.verified,
            "hash": self.hash,
        }
        if self.error is not None:
            result["error"] = self.error
        else:
            result["data"] = self.data
        return result


def record_data(record: RegistrationModel) -> dict[str, Any]:
    """Response payload for a stored registration."""
    content = record.content or {}
    return {
        "hash": record.content_hash,
        "author": record.author_wallet,
        "bnsName": record.bns_name,
        "bnsStatus": record.bns_status if record.bns_name else None,
        "currentBnsOwner": record.current_bns_owner,
        "registeredAt": (record.chain_timestamp or record.created_at).isoformat(),
        "blockHeight": record.block_height,
        "registrationId": record.registration_id,
        "txId": record.tx_id,
        "tweetUrl": content.get("url"),
        "twitterHandle": content.get("twitter_handle"),
        "chainStatus": record.chain_status,
    }


def chain_data(registration: ChainRegistration) -> dict[str, Any]:
    """Response payload for a registration read from a contract."""
    return {
        "hash": registration.hash.hex(),
        "author": registration.author,
        "bnsName": registration.bns_name,
        "bnsStatus": "valid" if registration.bns_name else None,
        "registeredAt": registration.registered_at.isoformat(),
        "blockHeight": registration.block_height,
        "registrationId": registration.registration_id,
        "contract": registration.contract,
        "degraded": registration.degraded,
    }


@dataclass
class VerificationResolver:
    """Cache, then store, then chain."""

    gateway: ContractGateway
    cache: VerificationCache
    repository: RegistrationRepository | None = None
    batch_limit: int = field(default=MAX_BATCH_SIZE)

    @staticmethod
    def resolve_hash(content: str | None = None, hash_hex: str | None = None) -> str:
        """Canonical hex hash for the given content or hash.

        Raises:
            MissingInputError: If neither is given
            InvalidHashError: If the hash is malformed
        """
        if content:
            return hash_content_hex(content)
        if hash_hex:
            return hex_to_bytes(hash_hex).hex()
        raise MissingInputError(MISSING_ITEM_INPUT)

    async def verify(
        self, content: str | None = None, hash_hex: str | None = None
    ) -> VerificationOutcome:
        content_hash = self.resolve_hash(content, hash_hex)
        log = logger.bind(hash=content_hash)

        cached = await self.cache.get(content_hash)
        if cached is not None:
            if cached.positive:
                log.debug("verification_cache_hit")
                await self._count_verification(content_hash)
                return self._finish(
                    content_hash, True, "cache", MESSAGE_CACHED, cached.result
                )
            # A cached negative may predate an out-of-band registration
            log.debug("verification_negative_cache_invalidated")
            await self.cache.delete(content_hash)

        record = await self._find_record(content_hash)
        if record is not None:
            data = record_data(record)
            await self.cache.store_positive(content_hash, data)
            await self._count_verification(content_hash)
            return self._finish(content_hash, True, "database", MESSAGE_VERIFIED, data)

        registration = await self.gateway.resolve(bytes.fromhex(content_hash))
        if registration is None:
            await self.cache.store_negative(content_hash)
            return self._finish(content_hash, False, "chain", MESSAGE_NOT_FOUND)

        data = chain_data(registration)
        await self.cache.store_positive(content_hash, data)
        if not registration.degraded:
            await self._backfill(registration)
        return self._finish(content_hash, True, "chain", MESSAGE_VERIFIED, data)

    @staticmethod
    def _finish(
        content_hash: str,
        verified: bool,
        source: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> VerificationOutcome:
        VERIFICATIONS_TOTAL.labels(source=source, verified=str(verified).lower()).inc()
        return VerificationOutcome(
            hash=content_hash,
            verified=verified,
            source=source,
            message=message,
            data=data,
        )

    async def _find_record(self, content_hash: str) -> RegistrationModel | None:
        if self.repository is None:
            return None
        try:
            return await self.repository.find_verifiable(content_hash)
        except SQLAlchemyError as e:
            logger.error("registration_lookup_failed", hash=content_hash, error=str(e))
            await self.repository.session.rollback()
            return None

    async def _count_verification(self, content_hash: str) -> None:
        if self.repository is None:
            return
        try:
            await self.repository.increment_verifications(content_hash)
        except SQLAlchemyError as e:
            logger.warning("verification_count_failed", hash=content_hash, error=str(e))
            await self.repository.session.rollback()

    async def _backfill(self, registration: ChainRegistration) -> None:
        if self.repository is None:
            return
        content_hash = registration.hash.hex()
        try:
            inserted = await self.repository.backfill_from_chain(
                content_hash,
                author_wallet=registration.author,
                block_height=registration.block_height,
                registration_id=registration.registration_id,
                chain_timestamp=registration.registered_at,
                bns_name=registration.bns_name,
                content_type=registration.content_type,
            )
        except SQLAlchemyError as e:
            logger.warning("registration_backfill_failed", hash=content_hash, error=str(e))
            await self.repository.session.rollback()
            return
        if inserted:
            logger.info("registration_backfilled", hash=content_hash)

    async def quick_exists(self, hash_hex: str) -> bool:
        """Existence probe against the primary contract only."""
        return await self.gateway.exists(hex_to_bytes(hash_hex))

    async def verify_batch(self, items: list[dict[str, Any]]) -> list[BatchItemOutcome]:
        """Chain-only verification of up to ten items, in input order."""
        if not items:
            raise ValueError("Items array is required for batch verification")
        if len(items) > self.batch_limit:
            raise ValueError(
                f"Maximum {self.batch_limit} items allowed per batch request"
            )
        return list(await asyncio.gather(*(self._verify_item(item) for item in items)))

    async def _verify_item(self, item: Any) -> BatchItemOutcome:
        if not isinstance(item, dict):
            return BatchItemOutcome(success=False, error=MISSING_ITEM_INPUT)
        content = item.get("content") or item.get("tweetContent")
        hash_hex = item.get("hash")
        if not all(v is None or isinstance(v, str) for v in (content, hash_hex)):
            return BatchItemOutcome(success=False, error=INVALID_ITEM_INPUT)
        try:
            content_hash = self.resolve_hash(content, hash_hex)
        except (MissingInputError, InvalidHashError) as e:
            return BatchItemOutcome(success=False, error=str(e))

        try:
            registration = await self.gateway.resolve(bytes.fromhex(content_hash))
        except Exception as e:
            logger.exception("batch_item_failed", hash=content_hash)
            return BatchItemOutcome(success=False, hash=content_hash, error=str(e))

        verified = registration is not None
        VERIFICATIONS_TOTAL.labels(source="batch", verified=str(verified).lower()).inc()
        return BatchItemOutcome(
            success=True,
            verified=verified,
            hash=content_hash,
            data=chain_data(registration) if registration else None,
        )
