"""Registration workflows.

Two ways in: the server signs and broadcasts ``register-content`` itself, or
the caller's wallet does and the service tracks the pending record until the
transaction lands.
"""

import asyncio
from dataclasses import dataclass
from typing import Any

from truthchain.blockchain.gateway import ContractGateway
from truthchain.cache.verification import VerificationCache
from truthchain.core.hashing import hash_content_hex
from truthchain.core.logging import get_logger
from truthchain.database.models import utcnow
from truthchain.database.repositories import RegistrationRepository
from truthchain.services.ipfs import IPFSError, PinataClient
from truthchain.services.resolver import VerificationResolver

logger = get_logger(__name__)

PREVIEW_LENGTH = 100


class RegistrationConflictError(Exception):
    """The content is already registered."""


class RegistrationNotFoundError(Exception):
    """No registration matches the request."""


class ContentTooLongError(ValueError):
    """Content exceeds the registrable length."""


class RegistrationFailedError(Exception):
    """The contract call could not be submitted."""


@dataclass
class RegistrationService:
    gateway: ContractGateway
    cache: VerificationCache
    repository: RegistrationRepository
    ipfs: PinataClient | None = None
    max_content_length: int = 280
    confirmation_delay: float = 2.0

    def _check_length(self, content: str) -> None:
        if len(content) > self.max_content_length:
            raise ContentTooLongError(
                f"Content exceeds {self.max_content_length} character limit"
            )

    async def register_direct(self, content: str, signing_key: str) -> dict[str, Any]:
        """Sign and broadcast a registration with a server-held key.

        Raises:
            ContentTooLongError: If the content is too long
            RegistrationConflictError: If the primary contract has the hash
            RegistrationFailedError: If the submission is rejected
        """
        self._check_length(content)
        content_hash = hash_content_hex(content)
        raw_hash = bytes.fromhex(content_hash)

        if await self.gateway.exists(raw_hash):
            raise RegistrationConflictError("Content already registered on blockchain")

        result = await self.gateway.submit(raw_hash, signing_key)
        if not result.success:
            raise RegistrationFailedError(result.error or "Registration failed")

        # A cached "not found" would hide the new registration for an hour
        await self.cache.delete(content_hash)
        logger.info("registration_submitted", hash=content_hash, tx_id=result.tx_id)
        return {
            "hash": content_hash,
            "txId": result.tx_id,
            "contract": self.gateway.primary.contract_id,
        }

    async def check_registration(self, content: str) -> dict[str, Any]:
        content_hash = hash_content_hex(content)
        exists = await self.gateway.exists(bytes.fromhex(content_hash))
        return {
            "hash": content_hash,
            "exists": exists,
            "canRegister": not exists and len(content) <= self.max_content_length,
        }

    async def prepare_registration(
        self,
        content: str,
        wallet_address: str,
        bns_name: str | None = None,
        url: str | None = None,
        twitter_handle: str | None = None,
        source: str = "web",
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> dict[str, Any]:
        """Record a pending registration for a wallet-signed transaction.

        Returns the record and the contract call the wallet should sign.

        Raises:
            ContentTooLongError: If the content is too long
            RegistrationConflictError: If the hash is already registered
        """
        self._check_length(content)
        content_hash = hash_content_hex(content)

        existing = await self.repository.get_by_hash(content_hash)
        if existing is not None and existing.is_confirmed:
            raise RegistrationConflictError("Content already registered")
        if await self.gateway.exists(bytes.fromhex(content_hash)):
            raise RegistrationConflictError("Content already registered on blockchain")

        ipfs_fields: dict[str, Any] = {}
        if self.ipfs is not None:
            try:
                upload = await self.ipfs.store_content(
                    {
                        "content": content,
                        "hash": content_hash,
                        "author": wallet_address.upper(),
                        "bnsName": bns_name,
                        "url": url,
                        "twitterHandle": twitter_handle,
                    },
                    metadata={"contentHash": content_hash, "author": wallet_address},
                    name=f"truthchain-{content_hash[:16]}.json",
                )
                ipfs_fields = {
                    "ipfs_cid": upload.cid,
                    "ipfs_gateway": upload.gateway_url,
                    "ipfs_pinned": True,
                    "ipfs_uploaded_at": utcnow(),
                }
            except IPFSError as e:
                logger.warning("ipfs_store_failed", hash=content_hash, error=str(e))

        record = await self.repository.save_pending(
            content_hash,
            author_wallet=wallet_address.upper(),
            bns_name=bns_name or None,
            bns_status="valid",
            content={
                "type": "tweet",
                "text": content,
                "preview": content[:PREVIEW_LENGTH],
                "url": url,
                "twitter_handle": twitter_handle,
            },
            source=source,
            user_agent=user_agent,
            ip_address=ip_address,
            **ipfs_fields,
        )
        logger.info("registration_prepared", hash=content_hash, wallet=wallet_address)
        return {
            "registration": record.to_dict(),
            "contractCall": {
                "contractAddress": self.gateway.primary.address,
                "contractName": self.gateway.primary.name,
                "functionName": "register-content",
                "functionArgs": [f"0x{content_hash}", self.gateway.content_type],
                "network": self.gateway.network,
            },
        }

    async def confirm_registration(
        self,
        tx_id: str,
        content: str | None = None,
        hash_hex: str | None = None,
    ) -> dict[str, Any]:
        """Reconcile a pending record with the chain after the wallet broadcast.

        Raises:
            RegistrationNotFoundError: If no record exists for the hash
        """
        content_hash = VerificationResolver.resolve_hash(content, hash_hex)
        record = await self.repository.get_by_hash(content_hash)
        if record is None:
            raise RegistrationNotFoundError("Registration not found")
        if record.is_confirmed:
            return {"status": "confirmed", "registration": record.to_dict()}

        if self.confirmation_delay:
            await asyncio.sleep(self.confirmation_delay)

        registration = await self.gateway.verify(bytes.fromhex(content_hash))
        if registration is not None:
            confirmed = await self.repository.confirm(
                content_hash,
                tx_id=tx_id,
                block_height=None if registration.degraded else registration.block_height,
                registration_id=(
                    None if registration.degraded else registration.registration_id
                ),
                chain_timestamp=None if registration.degraded else registration.registered_at,
                bns_name=registration.bns_name,
            )
            await self.cache.delete(content_hash)
            logger.info("registration_confirmed", hash=content_hash, tx_id=tx_id)
            return {
                "status": "confirmed",
                "registration": confirmed.to_dict() if confirmed else None,
            }

        tx_status = await self.gateway.transaction_status(tx_id)
        if tx_status and tx_status.startswith("abort"):
            await self.repository.mark_failed(content_hash, f"Transaction {tx_status}")
            logger.warning(
                "registration_failed", hash=content_hash, tx_id=tx_id, tx_status=tx_status
            )
            return {"status": "failed", "txStatus": tx_status}

        await self.repository.attach_tx_id(content_hash, tx_id)
        return {"status": "pending", "txStatus": tx_status}

    async def get_by_tx_id(self, tx_id: str) -> dict[str, Any]:
        record = await self.repository.find_by_tx_id(tx_id)
        if record is None:
            raise RegistrationNotFoundError("Registration not found")
        return record.to_dict()

    async def retrieve_content(self, content_hash: str) -> dict[str, Any]:
        """Fetch the stored content of a registration from IPFS.

        Raises:
            RegistrationNotFoundError: If no record or no CID exists
            IPFSError: If IPFS is not configured or the gateway fails
        """
        record = await self.repository.get_by_hash(content_hash)
        if record is None or not record.ipfs_cid:
            raise RegistrationNotFoundError("Content not found")
        if self.ipfs is None:
            raise IPFSError("IPFS storage is not configured")

        stored = await self.ipfs.retrieve_content(record.ipfs_cid)
        await self.repository.increment_views(record.content_hash)
        return {
            "hash": record.content_hash,
            "cid": record.ipfs_cid,
            "content": stored,
            "gatewayUrls": self.ipfs.gateway_urls(record.ipfs_cid),
            "registration": record.to_dict(),
        }

    async def list_for_wallet(
        self, wallet_address: str, skip: int = 0, limit: int = 50
    ) -> dict[str, Any]:
        records = await self.repository.list_by_wallet(wallet_address, skip, limit)
        total = await self.repository.count({"author_wallet": wallet_address.upper()})
        return {
            "walletAddress": wallet_address.upper(),
            "total": total,
            "registrations": [record.to_dict() for record in records],
        }

    async def global_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = await self.repository.global_stats()
        stats["contract"] = await self.gateway.stats()
        return stats

