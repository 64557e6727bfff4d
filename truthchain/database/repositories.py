"""Repository pattern for database operations."""

from abc import ABC
from datetime import datetime, timedelta
from typing import Any, Generic, Optional, Sequence, TypeVar

from sqlalchemy import distinct, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from .models import RegistrationModel, utcnow

ModelType = TypeVar("ModelType")


class BaseRepository(ABC, Generic[ModelType]):
    """Base repository for common database operations."""

    def __init__(self, session: AsyncSession, model: type[ModelType]):
        self.session = session
        self.model = model

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        """Get entity by ID."""
        return await self.session.get(self.model, id)

    async def count(self, filters: Optional[dict[str, Any]] = None) -> int:
        """Count entities with optional filtering."""
        query = select(func.count()).select_from(self.model)

        # Apply filters
        if filters:
            for key, value in filters.items():
                if hasattr(self.model, key):
                    query = query.filter(getattr(self.model, key) == value)

        result = await self.session.execute(query)
        return result.scalar() or 0

    async def create(self, **kwargs) -> ModelType:
        """Create new entity."""
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.commit()
        await self.session.refresh(instance)
        return instance


class RegistrationRepository(BaseRepository[RegistrationModel]):
    """Repository for content registrations."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, RegistrationModel)

    async def get_by_hash(self, content_hash: str) -> Optional[RegistrationModel]:
        """Get a registration by content hash, in any chain state."""
        query = select(self.model).filter(
            self.model.content_hash == content_hash.lower()
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_verifiable(self, content_hash: str) -> Optional[RegistrationModel]:
        """Get a confirmed or pending registration by content hash."""
        query = select(self.model).filter(
            self.model.content_hash == content_hash.lower(),
            self.model.chain_status.in_(("confirmed", "pending")),
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_by_tx_id(self, tx_id: str) -> Optional[RegistrationModel]:
        query = select(self.model).filter(self.model.tx_id == tx_id)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def list_by_wallet(
        self, wallet: str, skip: int = 0, limit: int = 50
    ) -> Sequence[RegistrationModel]:
        """Registrations authored by a wallet, newest first."""
        query = (
            select(self.model)
            .filter(self.model.author_wallet == wallet.upper())
            .order_by(self.model.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def list_bns_by_wallet(self, wallet: str) -> Sequence[RegistrationModel]:
        """Registrations of a wallet that carry a BNS binding."""
        query = (
            select(self.model)
            .filter(
                self.model.author_wallet == wallet.upper(),
                self.model.bns_name.is_not(None),
            )
            .order_by(self.model.created_at.desc())
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def find_stale_bns(
        self, window_seconds: int, limit: int = 100, now: datetime | None = None
    ) -> Sequence[RegistrationModel]:
        """Bindings never validated or last validated before the window.

        Oldest (and never validated) first so a capped sweep rotates
        through the whole table.
        """
        cutoff = (now or utcnow()) - timedelta(seconds=window_seconds)
        query = (
            select(self.model)
            .filter(
                self.model.bns_name.is_not(None),
                or_(
                    self.model.last_bns_validation.is_(None),
                    self.model.last_bns_validation < cutoff,
                ),
            )
            .order_by(self.model.last_bns_validation.asc().nulls_first())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def save_pending(self, content_hash: str, **fields: Any) -> RegistrationModel:
        """Create a pending registration, or refresh a pending/failed one.

        Raises:
            ValueError: If the hash is already confirmed
        """
        existing = await self.get_by_hash(content_hash)
        if existing is None:
            return await self.create(
                content_hash=content_hash.lower(), chain_status="pending", **fields
            )
        if existing.is_confirmed:
            raise ValueError(f"Registration {content_hash} is already confirmed")

        for key, value in fields.items():
            if hasattr(existing, key):
                setattr(existing, key, value)
        existing.chain_status = "pending"
        existing.chain_error = None
        await self.session.commit()
        await self.session.refresh(existing)
        return existing

    async def confirm(
        self,
        content_hash: str,
        *,
        tx_id: str | None = None,
        block_height: int | None = None,
        registration_id: int | None = None,
        chain_timestamp: datetime | None = None,
        bns_name: str | None = None,
    ) -> Optional[RegistrationModel]:
        """Move a registration to ``confirmed``.

        Confirmed records are returned unchanged.
        """
        instance = await self.get_by_hash(content_hash)
        if instance is None or instance.is_confirmed:
            return instance

        instance.chain_status = "confirmed"
        instance.chain_error = None
        if tx_id:
            instance.tx_id = tx_id
        if block_height is not None:
            instance.block_height = block_height
        if registration_id is not None:
            instance.registration_id = registration_id
        if chain_timestamp is not None:
            instance.chain_timestamp = chain_timestamp
        if bns_name and not instance.bns_name:
            instance.bns_name = bns_name
        await self.session.commit()
        await self.session.refresh(instance)
        return instance

    async def attach_tx_id(self, content_hash: str, tx_id: str) -> None:
        """Remember the transaction of a still-pending registration."""
        statement = (
            update(self.model)
            .where(
                self.model.content_hash == content_hash.lower(),
                self.model.chain_status != "confirmed",
            )
            .values(tx_id=tx_id, updated_at=utcnow())
        )
        await self.session.execute(statement)
        await self.session.commit()

    async def mark_failed(self, content_hash: str, error: str) -> bool:
        """Move a pending registration to ``failed``."""
        statement = (
            update(self.model)
            .where(
                self.model.content_hash == content_hash.lower(),
                self.model.chain_status == "pending",
            )
            .values(chain_status="failed", chain_error=error, updated_at=utcnow())
        )
        result = await self.session.execute(statement)
        await self.session.commit()
        return bool(result.rowcount)

    async def backfill_from_chain(
        self,
        content_hash: str,
        *,
        author_wallet: str,
        block_height: int,
        registration_id: int,
        chain_timestamp: datetime,
        bns_name: str | None = None,
        content_type: str | None = None,
    ) -> bool:
        """Insert a confirmed record for a chain-only registration.

        Does nothing when a record already exists.
        """
        now = utcnow()
        statement = (
            insert(self.model)
            .values(
                content_hash=content_hash.lower(),
                author_wallet=author_wallet.upper(),
                bns_name=bns_name,
                bns_status="valid",
                content={"type": content_type} if content_type else None,
                chain_status="confirmed",
                block_height=block_height,
                registration_id=registration_id,
                chain_timestamp=chain_timestamp,
                source="chain",
                ipfs_pinned=False,
                views=0,
                verifications=1,
                last_verified=now,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["content_hash"])
        )
        result = await self.session.execute(statement)
        await self.session.commit()
        return bool(result.rowcount)

    async def increment_verifications(self, content_hash: str) -> None:
        now = utcnow()
        statement = (
            update(self.model)
            .where(self.model.content_hash == content_hash.lower())
            .values(verifications=self.model.verifications + 1, last_verified=now)
        )
        await self.session.execute(statement)
        await self.session.commit()

    async def increment_views(self, content_hash: str) -> None:
        now = utcnow()
        statement = (
            update(self.model)
            .where(self.model.content_hash == content_hash.lower())
            .values(views=self.model.views + 1, last_viewed=now)
        )
        await self.session.execute(statement)
        await self.session.commit()

    async def update_bns_status(
        self,
        instance: RegistrationModel,
        status: str,
        current_owner: str | None,
        validated_at: datetime | None = None,
    ) -> RegistrationModel:
        """Record the outcome of a BNS ownership check."""
        validated_at = validated_at or utcnow()
        if status != "valid" and instance.bns_status == "valid":
            instance.bns_transferred_at = validated_at
        instance.bns_status = status
        instance.current_bns_owner = current_owner
        instance.last_bns_validation = validated_at
        await self.session.commit()
        return instance

    async def touch_bns_validation(
        self, instance: RegistrationModel, validated_at: datetime | None = None
    ) -> RegistrationModel:
        """Advance the validation timestamp without changing the status."""
        instance.last_bns_validation = validated_at or utcnow()
        await self.session.commit()
        return instance

    async def global_stats(self) -> dict[str, int]:
        """Aggregate counts across all registrations."""
        model = self.model
        query = select(
            func.count(),
            func.count().filter(model.chain_status == "confirmed"),
            func.count().filter(model.chain_status == "pending"),
            func.count().filter(model.chain_status == "failed"),
            func.count().filter(model.bns_name.is_not(None)),
            func.count().filter(model.bns_status == "transferred"),
            func.count().filter(model.bns_status == "unowned"),
            func.count(distinct(model.author_wallet)),
            func.coalesce(func.sum(model.verifications), 0),
            func.coalesce(func.sum(model.views), 0),
        )
        result = await self.session.execute(query)
        row = result.one()
        keys = (
            "totalRegistrations",
            "confirmed",
            "pending",
            "failed",
            "withBns",
            "bnsTransferred",
            "bnsUnowned",
            "uniqueAuthors",
            "totalVerifications",
            "totalViews",
        )
        return {key: int(value or 0) for key, value in zip(keys, row)}
