"""Stacks contract-call transactions.

Builds and signs single-signature (P2PKH) contract calls in the SIP-005 wire
format. Signing keys are only ever held in local variables; none of the
errors raised here include key material.
"""

import hashlib
import re
import struct
from dataclasses import dataclass, replace

from Crypto.Hash import RIPEMD160
from coincurve import PrivateKey

from .clarity import ClarityValue, c32_address, c32_address_decode, serialize

# Transaction versions and chain ids
TX_VERSION_MAINNET = 0x00
TX_VERSION_TESTNET = 0x80
CHAIN_ID_MAINNET = 0x00000001
CHAIN_ID_TESTNET = 0x80000000

# Single-sig address versions
ADDRESS_VERSION_MAINNET_SINGLE_SIG = 22
ADDRESS_VERSION_TESTNET_SINGLE_SIG = 26

AUTH_TYPE_STANDARD = 0x04
HASH_MODE_P2PKH = 0x00
KEY_ENCODING_COMPRESSED = 0x00
KEY_ENCODING_UNCOMPRESSED = 0x01
ANCHOR_MODE_ANY = 0x03
POST_CONDITION_MODE_ALLOW = 0x01
PAYLOAD_CONTRACT_CALL = 0x02

EMPTY_SIGNATURE = b"\x00" * 65

_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}(01)?$")


class InvalidSigningKeyError(ValueError):
    """Raised when a signing key cannot be parsed."""


def sha512_256(data: bytes) -> bytes:
    return hashlib.new("sha512_256", data).digest()


def hash160(data: bytes) -> bytes:
    return RIPEMD160.new(hashlib.sha256(data).digest()).digest()


def txid(tx_bytes: bytes) -> str:
    """Transaction id as lowercase hex."""
    return sha512_256(tx_bytes).hex()


@dataclass(frozen=True)
class SigningKey:
    """A parsed secp256k1 private key plus its public-key encoding."""

    private_key: PrivateKey
    compressed: bool

    @classmethod
    def from_hex(cls, value: str) -> "SigningKey":
        cleaned = value.strip()
        if cleaned[:2] in ("0x", "0X"):
            cleaned = cleaned[2:]
        if not _KEY_PATTERN.match(cleaned):
            raise InvalidSigningKeyError(
                "Signing key must be 64 hex characters, optionally followed by '01'"
            )
        compressed = len(cleaned) == 66
        try:
            private_key = PrivateKey(bytes.fromhex(cleaned[:64]))
        except ValueError:
            raise InvalidSigningKeyError("Signing key is out of range") from None
        return cls(private_key=private_key, compressed=compressed)

    @property
    def public_key(self) -> bytes:
        return self.private_key.public_key.format(compressed=self.compressed)

    @property
    def signer_hash(self) -> bytes:
        return hash160(self.public_key)

    def address(self, mainnet: bool) -> str:
        version = (
            ADDRESS_VERSION_MAINNET_SINGLE_SIG
            if mainnet
            else ADDRESS_VERSION_TESTNET_SINGLE_SIG
        )
        return c32_address(version, self.signer_hash)

    def sign_digest(self, digest: bytes) -> bytes:
        """Recoverable signature over a 32-byte digest in ``v || r || s`` order."""
        rsv = self.private_key.sign_recoverable(digest, hasher=None)
        return rsv[64:] + rsv[:64]


@dataclass(frozen=True)
class ContractCall:
    """An unsigned or signed contract-call transaction."""

    mainnet: bool
    signer_hash: bytes
    compressed: bool
    nonce: int
    fee: int
    contract_address: str
    contract_name: str
    function_name: str
    arguments: tuple[ClarityValue, ...]
    signature: bytes = EMPTY_SIGNATURE

    def _spending_condition(self, nonce: int, fee: int, signature: bytes) -> bytes:
        key_encoding = (
            KEY_ENCODING_COMPRESSED if self.compressed else KEY_ENCODING_UNCOMPRESSED
        )
        return (
            bytes([HASH_MODE_P2PKH])
            + self.signer_hash
            + struct.pack(">Q", nonce)
            + struct.pack(">Q", fee)
            + bytes([key_encoding])
            + signature
        )

    def _payload(self) -> bytes:
        version, address_hash = c32_address_decode(self.contract_address)
        contract = self.contract_name.encode("ascii")
        function = self.function_name.encode("ascii")
        args = b"".join(serialize(arg) for arg in self.arguments)
        return (
            bytes([PAYLOAD_CONTRACT_CALL, version])
            + address_hash
            + bytes([len(contract)])
            + contract
            + bytes([len(function)])
            + function
            + struct.pack(">I", len(self.arguments))
            + args
        )

    def _serialize(self, nonce: int, fee: int, signature: bytes) -> bytes:
        version = TX_VERSION_MAINNET if self.mainnet else TX_VERSION_TESTNET
        chain_id = CHAIN_ID_MAINNET if self.mainnet else CHAIN_ID_TESTNET
        return (
            bytes([version])
            + struct.pack(">I", chain_id)
            + bytes([AUTH_TYPE_STANDARD])
            + self._spending_condition(nonce, fee, signature)
            + bytes([ANCHOR_MODE_ANY, POST_CONDITION_MODE_ALLOW])
            + struct.pack(">I", 0)  # no post conditions
            + self._payload()
        )

    def serialize(self) -> bytes:
        return self._serialize(self.nonce, self.fee, self.signature)

    @property
    def txid(self) -> str:
        return txid(self.serialize())

    def initial_sighash(self) -> bytes:
        """Txid of the transaction with nonce, fee and signature cleared."""
        return sha512_256(self._serialize(0, 0, EMPTY_SIGNATURE))

    def presign_sighash(self) -> bytes:
        return sha512_256(
            self.initial_sighash()
            + bytes([AUTH_TYPE_STANDARD])
            + struct.pack(">Q", self.fee)
            + struct.pack(">Q", self.nonce)
        )

    def signed(self, key: SigningKey) -> "ContractCall":
        if key.signer_hash != self.signer_hash:
            raise InvalidSigningKeyError("Signing key does not match the signer")
        return replace(self, signature=key.sign_digest(self.presign_sighash()))


def build_contract_call(
    key: SigningKey,
    *,
    mainnet: bool,
    nonce: int,
    fee: int,
    contract_address: str,
    contract_name: str,
    function_name: str,
    arguments: list[ClarityValue],
) -> ContractCall:
    """Build and sign a contract call for ``key``."""
    unsigned = ContractCall(
        mainnet=mainnet,
        signer_hash=key.signer_hash,
        compressed=key.compressed,
        nonce=nonce,
        fee=fee,
        contract_address=contract_address,
        contract_name=contract_name,
        function_name=function_name,
        arguments=tuple(arguments),
    )
    return unsigned.signed(key)
