"""Contract gateway for the TruthChain notarization contracts.

Wraps the Stacks node HTTP API. Every public coroutine converts transport,
decoding and ledger errors into ``False`` / ``None`` / a failed
:class:`SubmissionResult`, so callers never handle raw exceptions.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from truthchain.core.config import Settings
from truthchain.core.logging import get_logger
from truthchain.core.metrics import CONTRACT_CALL_DURATION, CONTRACT_CALLS_TOTAL

from .clarity import (
    ClarityDecodeError,
    ClarityType,
    ClarityValue,
    buffer_cv,
    from_hex,
    list_cv,
    string_ascii_cv,
    to_hex,
    to_python,
)
from .transactions import InvalidSigningKeyError, SigningKey, build_contract_call

logger = get_logger(__name__)

MAX_BATCH_SIZE = 10

# Error codes returned by the contract
ERR_HASH_EXISTS = 100
ERR_INVALID_HASH = 101
ERR_INVALID_CONTENT_TYPE = 102
ERR_UNAUTHORIZED = 103
ERR_HASH_NOT_FOUND = 104

CONTRACT_ERRORS: dict[int, str] = {
    ERR_HASH_EXISTS: "Content hash is already registered",
    ERR_INVALID_HASH: "Content hash must be exactly 32 bytes",
    ERR_INVALID_CONTENT_TYPE: "Content type is not supported by the contract",
    ERR_UNAUTHORIZED: "Contract is inactive or the caller is not authorized",
    ERR_HASH_NOT_FOUND: "Content hash is not registered",
}


def describe_contract_error(code: int) -> str:
    """Human-readable message for a contract error code."""
    return CONTRACT_ERRORS.get(code, f"Contract returned error u{code}")


class ContractCallError(Exception):
    """A read-only call failed in transport, decoding or on the ledger."""


@dataclass(frozen=True)
class ContractVersion:
    """Coordinates of one deployed contract."""

    address: str
    name: str
    label: str = "primary"

    @property
    def contract_id(self) -> str:
        return f"{self.address}.{self.name}"

    @classmethod
    def parse(cls, contract_id: str, label: str) -> "ContractVersion":
        address, _, name = contract_id.partition(".")
        return cls(address=address, name=name, label=label)


@dataclass(frozen=True)
class ChainRegistration:
    """Registration details read from a contract."""

    hash: bytes
    author: str
    block_height: int
    timestamp: float
    registration_id: int
    bns_name: str | None = None
    content_type: str | None = None
    contract: str | None = None
    degraded: bool = False

    @property
    def registered_at(self) -> datetime:
        """Timestamp as a UTC datetime.

        The contract stores seconds, older deployments stored milliseconds.
        """
        seconds = self.timestamp / 1000 if self.timestamp > 1e12 else self.timestamp
        return datetime.fromtimestamp(seconds, tz=timezone.utc)


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a state-changing contract call."""

    success: bool
    tx_id: str | None = None
    error: str | None = None


class ContractGateway:
    """Read-only queries and submissions against the notarization contracts."""

    def __init__(
        self,
        primary: ContractVersion,
        api_url: str,
        network: str = "mainnet",
        legacy: list[ContractVersion] | None = None,
        timeout: float = 10.0,
        fee: int = 10000,
        content_type: str = "tweet",
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.primary = primary
        self.api_url = api_url.rstrip("/")
        self.network = network
        self.legacy = list(legacy or [])
        self.fee = fee
        self.content_type = content_type
        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=timeout / 3),
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.AsyncClient | None = None
    ) -> "ContractGateway":
        legacy = [
            ContractVersion.parse(contract_id, label=f"legacy-{index + 1}")
            for index, contract_id in enumerate(settings.LEGACY_CONTRACTS)
        ]
        return cls(
            primary=ContractVersion(
                settings.CONTRACT_ADDRESS, settings.CONTRACT_NAME, "primary"
            ),
            api_url=settings.stacks_api_url,
            network=settings.NETWORK,
            legacy=legacy,
            timeout=settings.CHAIN_TIMEOUT,
            fee=settings.STACKS_TX_FEE,
            content_type=settings.CONTENT_TYPE,
            api_key=settings.HIRO_API_KEY,
            client=client,
        )

    @property
    def mainnet(self) -> bool:
        return self.network == "mainnet"

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def versions(self) -> list[ContractVersion]:
        """Contracts to consult, newest first.

        Historical contracts only exist on mainnet.
        """
        if self.mainnet:
            return [self.primary, *self.legacy]
        return [self.primary]

    async def _call_read_only(
        self,
        version: ContractVersion,
        function: str,
        arguments: list[ClarityValue],
    ) -> ClarityValue:
        url = (
            f"{self.api_url}/v2/contracts/call-read/"
            f"{version.address}/{version.name}/{function}"
        )
        body = {
            "sender": version.address,
            "arguments": [to_hex(arg) for arg in arguments],
        }
        start = time.perf_counter()
        try:
            response = await self.client.post(url, json=body)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            CONTRACT_CALLS_TOTAL.labels(function=function, outcome="transport_error").inc()
            raise ContractCallError(f"{function} on {version.contract_id}: {e}") from e
        finally:
            CONTRACT_CALL_DURATION.labels(function=function).observe(
                time.perf_counter() - start
            )

        if not isinstance(payload, dict) or not payload.get("okay"):
            cause = payload.get("cause") if isinstance(payload, dict) else None
            CONTRACT_CALLS_TOTAL.labels(function=function, outcome="ledger_error").inc()
            raise ContractCallError(
                f"{function} on {version.contract_id} failed: "
                f"{cause or 'unknown cause'}"
            )
        try:
            value = from_hex(str(payload.get("result", "")))
        except ClarityDecodeError as e:
            CONTRACT_CALLS_TOTAL.labels(function=function, outcome="decode_error").inc()
            raise ContractCallError(f"{function} returned malformed data: {e}") from e

        CONTRACT_CALLS_TOTAL.labels(function=function, outcome="ok").inc()
        return value

    async def exists(self, content_hash: bytes, version: ContractVersion | None = None) -> bool:
        """Check ``hash-exists``; any failure counts as not found."""
        version = version or self.primary
        try:
            result = await self._call_read_only(
                version, "hash-exists", [buffer_cv(content_hash)]
            )
        except ContractCallError as e:
            logger.error("hash_exists_failed", contract=version.name, error=str(e))
            return False

        # Accept both a bare bool and (ok bool)
        if result.type == ClarityType.RESPONSE_OK:
            result = result.value
        return result.type == ClarityType.TRUE

    async def verify(
        self, content_hash: bytes, version: ContractVersion | None = None
    ) -> ChainRegistration | None:
        """Fetch registration details from one contract.

        When the hash exists but the details cannot be read, a degraded
        record is returned (author ``unknown``, block height 0, current time).
        """
        version = version or self.primary
        if not await self.exists(content_hash, version):
            return None

        try:
            result = await self._call_read_only(
                version, "verify-content", [buffer_cv(content_hash)]
            )
            registration = self._parse_registration(content_hash, version, result)
            if registration is not None:
                return registration
            logger.warning(
                "verify_content_unexpected_result",
                contract=version.name,
                result=repr(to_python(result)),
            )
        except ContractCallError as e:
            logger.warning(
                "verify_content_failed", contract=version.name, error=str(e)
            )

        return ChainRegistration(
            hash=content_hash,
            author="unknown",
            block_height=0,
            timestamp=time.time(),
            registration_id=0,
            contract=version.contract_id,
            degraded=True,
        )

    @staticmethod
    def _parse_registration(
        content_hash: bytes, version: ContractVersion, result: ClarityValue
    ) -> ChainRegistration | None:
        if result.type != ClarityType.RESPONSE_OK:
            return None
        data = to_python(result.value)
        if not isinstance(data, dict):
            return None
        try:
            return ChainRegistration(
                hash=content_hash,
                author=str(data["author"]),
                block_height=int(data["block-height"]),
                timestamp=float(data["time-stamp"]),
                registration_id=int(data["registration-id"]),
                bns_name=data.get("bns-name"),
                content_type=data.get("content-type"),
                contract=version.contract_id,
            )
        except (KeyError, TypeError, ValueError):
            return None

    async def resolve(self, content_hash: bytes) -> ChainRegistration | None:
        """Look the hash up across contract versions, newest first."""
        for version in self.versions():
            registration = await self.verify(content_hash, version)
            if registration is not None:
                logger.info(
                    "hash_resolved",
                    hash=content_hash.hex(),
                    contract=version.name,
                    bns_name=registration.bns_name,
                    degraded=registration.degraded,
                )
                return registration
            logger.debug("hash_not_in_contract", contract=version.name)
        logger.info(
            "hash_not_found",
            hash=content_hash.hex(),
            contracts=[v.name for v in self.versions()],
        )
        return None

    async def stats(self) -> dict[str, Any] | None:
        """Aggregate counts from ``get-contract-stats``."""
        try:
            result = await self._call_read_only(self.primary, "get-contract-stats", [])
        except ContractCallError as e:
            logger.error("contract_stats_failed", error=str(e))
            return None
        data = to_python(result)
        if isinstance(data, dict) and "ok" in data:
            data = data["ok"]
        if not isinstance(data, dict):
            logger.error("contract_stats_unexpected", payload=repr(data))
            return None
        return data

    async def batch_exists(self, hashes: list[bytes]) -> list[dict[str, Any]] | None:
        """Existence flags for up to ten hashes via ``batch-verify``."""
        if len(hashes) > MAX_BATCH_SIZE:
            raise ValueError(f"batch-verify accepts at most {MAX_BATCH_SIZE} hashes")
        try:
            result = await self._call_read_only(
                self.primary,
                "batch-verify",
                [list_cv([buffer_cv(h) for h in hashes])],
            )
        except ContractCallError as e:
            logger.error("batch_verify_failed", error=str(e))
            return None

        data = to_python(result)
        if isinstance(data, dict) and "ok" in data:
            data = data["ok"]
        if not isinstance(data, list):
            logger.error("batch_verify_unexpected", payload=repr(data))
            return None
        results = []
        for content_hash, item in zip(hashes, data):
            exists = item.get("exists") if isinstance(item, dict) else item
            results.append({"hash": content_hash.hex(), "exists": exists is True})
        return results

    async def _account_nonce(self, address: str) -> int:
        response = await self.client.get(
            f"{self.api_url}/v2/accounts/{address}", params={"proof": 0}
        )
        response.raise_for_status()
        return int(response.json()["nonce"])

    async def submit(self, content_hash: bytes, signing_key: str) -> SubmissionResult:
        """Sign and broadcast ``register-content`` on the primary contract."""
        if len(content_hash) != 32:
            return SubmissionResult(
                success=False, error=describe_contract_error(ERR_INVALID_HASH)
            )
        try:
            key = SigningKey.from_hex(signing_key)
        except InvalidSigningKeyError as e:
            return SubmissionResult(success=False, error=str(e))

        sender = key.address(self.mainnet)
        try:
            nonce = await self._account_nonce(sender)
            transaction = build_contract_call(
                key,
                mainnet=self.mainnet,
                nonce=nonce,
                fee=self.fee,
                contract_address=self.primary.address,
                contract_name=self.primary.name,
                function_name="register-content",
                arguments=[
                    buffer_cv(content_hash),
                    string_ascii_cv(self.content_type),
                ],
            )
            response = await self.client.post(
                f"{self.api_url}/v2/transactions",
                content=transaction.serialize(),
                headers={"Content-Type": "application/octet-stream"},
            )
        except (httpx.HTTPError, KeyError, ValueError) as e:
            CONTRACT_CALLS_TOTAL.labels(
                function="register-content", outcome="transport_error"
            ).inc()
            logger.error("registration_submit_failed", sender=sender, error=str(e))
            return SubmissionResult(success=False, error=f"Broadcast failed: {e}")

        if response.status_code != 200:
            CONTRACT_CALLS_TOTAL.labels(
                function="register-content", outcome="rejected"
            ).inc()
            return SubmissionResult(success=False, error=self._broadcast_error(response))

        try:
            tx_id = response.json()
        except ValueError:
            tx_id = response.text.strip().strip('"')
        tx_id = str(tx_id)
        if not tx_id.startswith("0x"):
            tx_id = f"0x{tx_id}"
        CONTRACT_CALLS_TOTAL.labels(function="register-content", outcome="ok").inc()
        logger.info("registration_broadcast", tx_id=tx_id, sender=sender)
        return SubmissionResult(success=True, tx_id=tx_id)

    @staticmethod
    def _broadcast_error(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or f"Broadcast rejected with HTTP {response.status_code}"
        if not isinstance(payload, dict):
            return str(payload)
        error = payload.get("error", "transaction rejected")
        reason = payload.get("reason")
        return f"{error}: {reason}" if reason else str(error)

    async def transaction_status(self, tx_id: str) -> str | None:
        """Status of a broadcast transaction from the extended API."""
        try:
            response = await self.client.get(f"{self.api_url}/extended/v1/tx/{tx_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return str(response.json().get("tx_status"))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("transaction_status_failed", tx_id=tx_id, error=str(e))
            return None

    def describe(self) -> dict[str, Any]:
        return {
            "network": self.network,
            "contract": self.primary.contract_id,
            "fallbacks": [v.contract_id for v in self.versions()[1:]],
        }

