"""SQLAlchemy models for content registrations."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB

from .base import Base

BNS_STATUSES = ("valid", "transferred", "unowned")
CHAIN_STATUSES = ("pending", "confirmed", "failed")
REGISTRATION_SOURCES = ("extension", "web", "mobile", "api", "chain")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegistrationModel(Base):
    """A content hash notarized (or being notarized) on chain."""

    __tablename__ = "registrations"

    id = Column(
        Text,
        primary_key=True,
        default=lambda: str(uuid4()),
        nullable=False,
    )
    content_hash = Column(Text, nullable=False, unique=True)  # lowercase hex
    author_wallet = Column(Text, nullable=False, index=True)  # uppercase

    # BNS binding
    bns_name = Column(Text, nullable=True)
    bns_status: Column[str] = Column(  # type: ignore[assignment]
        Enum(*BNS_STATUSES, name="bns_status_enum"),
        nullable=False,
        default="valid",
    )
    last_bns_validation = Column(DateTime(timezone=True), nullable=True)
    current_bns_owner = Column(Text, nullable=True)
    bns_transferred_at = Column(DateTime(timezone=True), nullable=True)

    # type, text, preview, url, twitter_handle
    content = Column(JSONB, nullable=True)

    # Chain state
    chain_status: Column[str] = Column(  # type: ignore[assignment]
        Enum(*CHAIN_STATUSES, name="chain_status_enum"),
        nullable=False,
        default="pending",
    )
    tx_id = Column(Text, nullable=True, index=True)
    block_height = Column(BigInteger, nullable=True)
    registration_id = Column(BigInteger, nullable=True)
    chain_timestamp = Column(DateTime(timezone=True), nullable=True)
    chain_error = Column(Text, nullable=True)

    # IPFS
    ipfs_cid = Column(Text, nullable=True)
    ipfs_gateway = Column(Text, nullable=True)
    ipfs_pinned = Column(Boolean, nullable=False, default=False)
    ipfs_uploaded_at = Column(DateTime(timezone=True), nullable=True)

    # Analytics
    views = Column(Integer, nullable=False, default=0)
    verifications = Column(Integer, nullable=False, default=0)
    last_viewed = Column(DateTime(timezone=True), nullable=True)
    last_verified = Column(DateTime(timezone=True), nullable=True)

    # Request metadata
    source: Column[str] = Column(  # type: ignore[assignment]
        Enum(*REGISTRATION_SOURCES, name="registration_source_enum"),
        nullable=False,
        default="api",
    )
    user_agent = Column(Text, nullable=True)
    ip_address = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_registrations_bns_validation", "bns_name", "last_bns_validation"),
        Index("ix_registrations_chain_status_created", "chain_status", "created_at"),
    )

    @property
    def is_confirmed(self) -> bool:
        return self.chain_status == "confirmed"

    def to_dict(self) -> dict:
        """Public representation used by API responses and the cache."""
        content = self.content or {}
        return {
            "hash": self.content_hash,
            "author": self.author_wallet,
            "bnsName": self.bns_name,
            "bnsStatus": self.bns_status,
            "currentBnsOwner": self.current_bns_owner,
            "lastBnsValidation": _iso(self.last_bns_validation),
            "contentType": content.get("type"),
            "contentPreview": content.get("preview"),
            "url": content.get("url"),
            "twitterHandle": content.get("twitter_handle"),
            "chainStatus": self.chain_status,
            "txId": self.tx_id,
            "blockHeight": self.block_height,
            "registrationId": self.registration_id,
            "timestamp": _iso(self.chain_timestamp or self.created_at),
            "ipfsCid": self.ipfs_cid,
            "ipfsGateway": self.ipfs_gateway,
            "views": self.views or 0,
            "verifications": self.verifications or 0,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
