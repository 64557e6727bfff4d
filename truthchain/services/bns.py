"""BNS ownership checks.

Registrations may claim a BNS name for their author. Names can be
transferred after registration, so the claim is re-checked against the
name registry and marked ``valid``, ``transferred`` or ``unowned``.
"""

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from truthchain.core.config import Settings
from truthchain.core.logging import get_logger
from truthchain.core.metrics import BNS_VALIDATIONS_TOTAL
from truthchain.database.models import RegistrationModel, utcnow
from truthchain.database.repositories import RegistrationRepository

logger = get_logger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class RegistryUnavailableError(Exception):
    """The name registry could not answer (5xx, timeout or transport error)."""


@dataclass(frozen=True)
class BNSCheck:
    status: str
    current_names: list[str]
    current_owner: str | None = None


def classify(original_name: str, names: list[str]) -> BNSCheck:
    """Compare a claimed name with the names the wallet owns now."""
    if original_name in names:
        return BNSCheck(status="valid", current_names=names, current_owner=original_name)
    if names:
        return BNSCheck(status="transferred", current_names=names, current_owner=names[0])
    return BNSCheck(status="unowned", current_names=[])


class BNSClient:
    """Reads owned names from the Hiro BNS API."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(headers=headers, timeout=timeout)

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.AsyncClient | None = None
    ) -> "BNSClient":
        return cls(
            settings.BNS_API_URL,
            api_key=settings.HIRO_API_KEY,
            timeout=settings.BNS_TIMEOUT,
            client=client,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def fetch_names(self, address: str) -> list[str]:
        """Names currently owned by ``address``.

        Raises:
            RegistryUnavailableError: On 5xx, timeouts and transport errors
        """
        url = f"{self.base_url}/v1/addresses/stacks/{address}/names"
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise RegistryUnavailableError(f"BNS lookup for {address} failed: {e}") from e

        if response.status_code >= 500:
            raise RegistryUnavailableError(
                f"BNS registry returned HTTP {response.status_code}"
            )
        if response.status_code == 404:
            return []
        if response.status_code >= 400:
            logger.warning(
                "bns_lookup_rejected", address=address, status=response.status_code
            )
            return []

        try:
            payload = response.json()
        except ValueError as e:
            raise RegistryUnavailableError("BNS registry returned invalid JSON") from e
        names = payload.get("names", []) if isinstance(payload, dict) else []
        return [str(name) for name in names]


@dataclass
class SweepReport:
    """Counts from one staleness sweep."""

    checked: int = 0
    valid: int = 0
    transferred: int = 0
    unowned: int = 0
    failed: int = 0
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    def record(self, status: str) -> None:
        self.checked += 1
        setattr(self, status, getattr(self, status) + 1)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


@dataclass
class WalletValidationReport:
    """Outcome of validating every binding of one wallet."""

    wallet: str
    total: int = 0
    valid: int = 0
    transferred: int = 0
    unowned: int = 0
    failed: int = 0
    current_names: list[str] = field(default_factory=list)
    records: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "walletAddress": self.wallet,
            "total": self.total,
            "valid": self.valid,
            "transferred": self.transferred,
            "unowned": self.unowned,
            "failed": self.failed,
            "currentNames": self.current_names,
            "records": self.records,
        }


def binding_status(record: RegistrationModel) -> dict[str, Any]:
    return {
        "hash": record.content_hash,
        "bnsName": record.bns_name,
        "bnsStatus": record.bns_status,
        "currentBnsOwner": record.current_bns_owner,
        "lastValidated": (
            record.last_bns_validation.isoformat() if record.last_bns_validation else None
        ),
        "transferredAt": (
            record.bns_transferred_at.isoformat() if record.bns_transferred_at else None
        ),
    }


class BNSValidator:
    """Keeps registration BNS statuses in line with the name registry."""

    def __init__(
        self,
        client: BNSClient,
        session_scope: SessionScope,
        batch_size: int = 100,
        staleness_window: int = 86400,
        request_delay: float = 0.1,
    ) -> None:
        self.client = client
        self.session_scope = session_scope
        self.batch_size = batch_size
        self.staleness_window = staleness_window
        self.request_delay = request_delay
        self._lock = asyncio.Lock()

    async def validate_stale(self) -> SweepReport:
        """Re-check up to ``batch_size`` stale bindings.

        A registry failure skips every record of that wallet for the rest
        of the sweep and leaves their validation timestamps untouched so the
        next sweep retries them. A transferred or unowned record is never
        restored to ``valid`` here.
        """
        async with self._lock:
            report = SweepReport()
            async with self.session_scope() as session:
                repository = RegistrationRepository(session)
                records = await repository.find_stale_bns(
                    self.staleness_window, limit=self.batch_size
                )
                logger.info("bns_sweep_started", stale_records=len(records))

                owned: dict[str, list[str]] = {}
                unavailable: set[str] = set()
                lookups = 0
                for record in records:
                    wallet = record.author_wallet
                    if wallet in unavailable:
                        report.failed += 1
                        BNS_VALIDATIONS_TOTAL.labels(status="failed").inc()
                        continue
                    if wallet not in owned:
                        if lookups:
                            await asyncio.sleep(self.request_delay)
                        lookups += 1
                        try:
                            owned[wallet] = await self.client.fetch_names(wallet)
                        except RegistryUnavailableError as e:
                            logger.warning(
                                "bns_lookup_failed",
                                hash=record.content_hash,
                                wallet=wallet,
                                error=str(e),
                            )
                            unavailable.add(wallet)
                            report.failed += 1
                            BNS_VALIDATIONS_TOTAL.labels(status="failed").inc()
                            continue

                    try:
                        status = await self._apply(
                            repository, record, owned[wallet], allow_restore=False
                        )
                    except SQLAlchemyError as e:
                        logger.error(
                            "bns_status_update_failed",
                            hash=record.content_hash,
                            error=str(e),
                        )
                        await session.rollback()
                        report.failed += 1
                        continue
                    report.record(status)

            report.finished_at = utcnow()
            logger.info("bns_sweep_finished", **report.to_dict())
            return report

    async def _apply(
        self,
        repository: RegistrationRepository,
        record: RegistrationModel,
        names: list[str],
        allow_restore: bool,
    ) -> str:
        check = classify(record.bns_name, names)
        BNS_VALIDATIONS_TOTAL.labels(status=check.status).inc()
        if check.status == "valid" and record.bns_status != "valid" and not allow_restore:
            await repository.touch_bns_validation(record)
            return record.bns_status

        if check.status != record.bns_status:
            logger.info(
                "bns_status_changed",
                hash=record.content_hash,
                bns_name=record.bns_name,
                previous=record.bns_status,
                status=check.status,
                current_owner=check.current_owner,
            )
        current_owner = check.current_owner if check.status == "transferred" else None
        await repository.update_bns_status(record, check.status, current_owner)
        return check.status

    async def validate_wallet(self, address: str) -> WalletValidationReport:
        """Validate every binding of one wallet now.

        A manual check may restore ``valid`` on a previously flagged record.

        Raises:
            RegistryUnavailableError: If the registry cannot be reached
        """
        report = WalletValidationReport(wallet=address.upper())
        names = await self.client.fetch_names(address)
        report.current_names = names

        async with self.session_scope() as session:
            repository = RegistrationRepository(session)
            records = await repository.list_bns_by_wallet(address)
            for record in records:
                report.total += 1
                try:
                    status = await self._apply(repository, record, names, allow_restore=True)
                except SQLAlchemyError as e:
                    logger.error(
                        "bns_status_update_failed", hash=record.content_hash, error=str(e)
                    )
                    await session.rollback()
                    report.failed += 1
                    continue
                setattr(report, status, getattr(report, status) + 1)
                report.records.append(binding_status(record))
        return report

    async def status_for_wallet(self, address: str) -> list[dict[str, Any]]:
        async with self.session_scope() as session:
            records = await RegistrationRepository(session).list_bns_by_wallet(address)
            return [binding_status(record) for record in records]

    async def status_for_hash(self, content_hash: str) -> dict[str, Any] | None:
        async with self.session_scope() as session:
            record = await RegistrationRepository(session).get_by_hash(content_hash)
            if record is None or not record.bns_name:
                return None
            return binding_status(record)

