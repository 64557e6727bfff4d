"""Registration store test fixtures.

The in-memory repository subclasses the real one so status transitions that
only touch loaded instances (confirm, BNS updates) run the production code.
"""

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from truthchain.blockchain.clarity import c32_address
from truthchain.database.models import RegistrationModel, utcnow
from truthchain.database.repositories import RegistrationRepository

# Built from fixed hashes so the checksums are always valid
WALLET = c32_address(22, bytes.fromhex("a46ff88886c2ef9762d970b4d2c63678835bd39d"))
OTHER_WALLET = c32_address(22, bytes.fromhex("6d78de7b0625dfbfc16c3a8a5735f6dc3dc3f2ce"))


def make_registration(content_hash: str, **overrides: Any) -> RegistrationModel:
    """A registration with every column populated the way the database would."""
    now = utcnow()
    fields: dict[str, Any] = {
        "id": f"reg-{content_hash[:8]}",
        "content_hash": content_hash,
        "author_wallet": WALLET,
        "bns_name": None,
        "bns_status": "valid",
        "last_bns_validation": None,
        "current_bns_owner": None,
        "bns_transferred_at": None,
        "content": {"type": "tweet", "text": "hello", "preview": "hello"},
        "chain_status": "confirmed",
        "tx_id": None,
        "block_height": 150000,
        "registration_id": 7,
        "chain_timestamp": now,
        "chain_error": None,
        "ipfs_cid": None,
        "ipfs_gateway": None,
        "ipfs_pinned": False,
        "ipfs_uploaded_at": None,
        "views": 0,
        "verifications": 0,
        "last_viewed": None,
        "last_verified": None,
        "source": "web",
        "user_agent": None,
        "ip_address": None,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return RegistrationModel(**fields)


class InMemoryRegistrationRepository(RegistrationRepository):
    """Registration repository over a dict keyed by content hash."""

    def __init__(self, records: Sequence[RegistrationModel] = ()) -> None:
        super().__init__(AsyncMock(spec=AsyncSession))
        self.records: dict[str, RegistrationModel] = {
            record.content_hash: record for record in records
        }

    def add(self, record: RegistrationModel) -> RegistrationModel:
        self.records[record.content_hash] = record
        return record

    async def create(self, **kwargs: Any) -> RegistrationModel:
        record = make_registration(
            kwargs.pop("content_hash"),
            block_height=None,
            registration_id=None,
            chain_timestamp=None,
            **kwargs,
        )
        return self.add(record)

    async def count(self, filters: Optional[dict[str, Any]] = None) -> int:
        return sum(
            1
            for record in self.records.values()
            if all(getattr(record, k) == v for k, v in (filters or {}).items())
        )

    async def get_by_hash(self, content_hash: str) -> Optional[RegistrationModel]:
        return self.records.get(content_hash.lower())

    async def find_verifiable(self, content_hash: str) -> Optional[RegistrationModel]:
        record = self.records.get(content_hash.lower())
        if record is not None and record.chain_status in ("confirmed", "pending"):
            return record
        return None

    async def find_by_tx_id(self, tx_id: str) -> Optional[RegistrationModel]:
        return next((r for r in self.records.values() if r.tx_id == tx_id), None)

    async def list_by_wallet(
        self, wallet: str, skip: int = 0, limit: int = 50
    ) -> Sequence[RegistrationModel]:
        records = [r for r in self.records.values() if r.author_wallet == wallet.upper()]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[skip : skip + limit]

    async def list_bns_by_wallet(self, wallet: str) -> Sequence[RegistrationModel]:
        return [
            r
            for r in await self.list_by_wallet(wallet, limit=len(self.records) or 1)
            if r.bns_name
        ]

    async def find_stale_bns(
        self, window_seconds: int, limit: int = 100, now: datetime | None = None
    ) -> Sequence[RegistrationModel]:
        cutoff = (now or utcnow()) - timedelta(seconds=window_seconds)
        stale = [
            r
            for r in self.records.values()
            if r.bns_name
            and (r.last_bns_validation is None or r.last_bns_validation < cutoff)
        ]
        stale.sort(
            key=lambda r: (r.last_bns_validation is not None, r.last_bns_validation or cutoff)
        )
        return stale[:limit]

    async def attach_tx_id(self, content_hash: str, tx_id: str) -> None:
        record = self.records.get(content_hash.lower())
        if record is not None and not record.is_confirmed:
            record.tx_id = tx_id

    async def mark_failed(self, content_hash: str, error: str) -> bool:
        record = self.records.get(content_hash.lower())
        if record is None or record.chain_status != "pending":
            return False
        record.chain_status = "failed"
        record.chain_error = error
        return True

    async def backfill_from_chain(self, content_hash: str, **fields: Any) -> bool:
        if content_hash.lower() in self.records:
            return False
        content_type = fields.pop("content_type", None)
        self.add(
            make_registration(
                content_hash.lower(),
                author_wallet=fields.pop("author_wallet").upper(),
                content={"type": content_type} if content_type else None,
                source="chain",
                verifications=1,
                **fields,
            )
        )
        return True

    async def increment_verifications(self, content_hash: str) -> None:
        record = self.records.get(content_hash.lower())
        if record is not None:
            record.verifications += 1
            record.last_verified = utcnow()

    async def increment_views(self, content_hash: str) -> None:
        record = self.records.get(content_hash.lower())
        if record is not None:
            record.views += 1
            record.last_viewed = utcnow()

    async def global_stats(self) -> dict[str, int]:
        records = list(self.records.values())
        return {
            "totalRegistrations": len(records),
            "confirmed": sum(r.chain_status == "confirmed" for r in records),
            "pending": sum(r.chain_status == "pending" for r in records),
            "failed": sum(r.chain_status == "failed" for r in records),
            "withBns": sum(bool(r.bns_name) for r in records),
            "bnsTransferred": sum(r.bns_status == "transferred" for r in records),
            "bnsUnowned": sum(r.bns_status == "unowned" for r in records),
            "uniqueAuthors": len({r.author_wallet for r in records}),
            "totalVerifications": sum(r.verifications for r in records),
            "totalViews": sum(r.views for r in records),
        }


@pytest.fixture
def registration_repository() -> InMemoryRegistrationRepository:
    """Empty in-memory registration repository."""
    return InMemoryRegistrationRepository()


@pytest.fixture
def session_scope(registration_repository: InMemoryRegistrationRepository):
    """Session factory yielding the repository's mock session."""

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        yield registration_repository.session

    return scope
