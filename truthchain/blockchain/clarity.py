"""Clarity value serialization (SIP-005 consensus encoding).

Only the Gateway speaks this format; everything above it sees plain Python
values produced by :func:`to_python`.
"""

import hashlib
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

C32_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

MAX_NAME_LENGTH = 128


class ClarityDecodeError(ValueError):
    """Raised when bytes do not form a valid Clarity value."""


class ClarityType(IntEnum):
    """Wire type prefixes."""

    INT = 0x00
    UINT = 0x01
    BUFFER = 0x02
    TRUE = 0x03
    FALSE = 0x04
    PRINCIPAL_STANDARD = 0x05
    PRINCIPAL_CONTRACT = 0x06
    RESPONSE_OK = 0x07
    RESPONSE_ERR = 0x08
    OPTIONAL_NONE = 0x09
    OPTIONAL_SOME = 0x0A
    LIST = 0x0B
    TUPLE = 0x0C
    STRING_ASCII = 0x0D
    STRING_UTF8 = 0x0E


@dataclass(frozen=True)
class ClarityValue:
    """A decoded or to-be-encoded Clarity value.

    ``value`` depends on ``type``: int for (u)int, bytes for buffers,
    bool for booleans, str for strings, ``(version, hash160)`` for standard
    principals, ``(version, hash160, name)`` for contract principals, a
    nested ClarityValue for responses and ``some``, a list for lists and a
    dict for tuples.
    """

    type: ClarityType
    value: Any = field(default=None)


# Constructors -------------------------------------------------------------


def int_cv(value: int) -> ClarityValue:
    return ClarityValue(ClarityType.INT, value)


def uint_cv(value: int) -> ClarityValue:
    if value < 0:
        raise ValueError("uint cannot be negative")
    return ClarityValue(ClarityType.UINT, value)


def buffer_cv(value: bytes) -> ClarityValue:
    return ClarityValue(ClarityType.BUFFER, bytes(value))


def bool_cv(value: bool) -> ClarityValue:
    return ClarityValue(ClarityType.TRUE if value else ClarityType.FALSE, value)


def string_ascii_cv(value: str) -> ClarityValue:
    value.encode("ascii")
    return ClarityValue(ClarityType.STRING_ASCII, value)


def string_utf8_cv(value: str) -> ClarityValue:
    return ClarityValue(ClarityType.STRING_UTF8, value)


def list_cv(items: list[ClarityValue]) -> ClarityValue:
    return ClarityValue(ClarityType.LIST, list(items))


def tuple_cv(items: dict[str, ClarityValue]) -> ClarityValue:
    return ClarityValue(ClarityType.TUPLE, dict(items))


def some_cv(value: ClarityValue) -> ClarityValue:
    return ClarityValue(ClarityType.OPTIONAL_SOME, value)


def none_cv() -> ClarityValue:
    return ClarityValue(ClarityType.OPTIONAL_NONE)


def ok_cv(value: ClarityValue) -> ClarityValue:
    return ClarityValue(ClarityType.RESPONSE_OK, value)


def err_cv(value: ClarityValue) -> ClarityValue:
    return ClarityValue(ClarityType.RESPONSE_ERR, value)


def standard_principal_cv(address: str) -> ClarityValue:
    version, hash160 = c32_address_decode(address)
    return ClarityValue(ClarityType.PRINCIPAL_STANDARD, (version, hash160))


def contract_principal_cv(contract_id: str) -> ClarityValue:
    address, _, name = contract_id.partition(".")
    version, hash160 = c32_address_decode(address)
    return ClarityValue(ClarityType.PRINCIPAL_CONTRACT, (version, hash160, name))


# c32check -----------------------------------------------------------------


def c32_encode(data: bytes) -> str:
    """Crockford-style base32 of ``data`` keeping leading zero bytes."""
    number = int.from_bytes(data, "big")
    digits = []
    while number:
        number, remainder = divmod(number, 32)
        digits.append(C32_ALPHABET[remainder])
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "0" * leading_zeros + "".join(reversed(digits))


def c32_decode(text: str, length: int) -> bytes:
    """Decode c32 text into exactly ``length`` bytes."""
    number = 0
    for char in text.upper().replace("O", "0").replace("L", "1").replace("I", "1"):
        index = C32_ALPHABET.find(char)
        if index < 0:
            raise ClarityDecodeError(f"Invalid c32 character '{char}'")
        number = number * 32 + index
    try:
        return number.to_bytes(length, "big")
    except OverflowError as exc:
        raise ClarityDecodeError("c32 value too large") from exc


def _c32_checksum(version: int, data: bytes) -> bytes:
    payload = bytes([version]) + data
    return hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]


def c32_address(version: int, hash160: bytes) -> str:
    """Render a Stacks address (``S`` + version char + c32check body)."""
    if not 0 <= version < 32:
        raise ValueError("Address version must be in [0, 32)")
    if len(hash160) != 20:
        raise ValueError("Address hash must be 20 bytes")
    body = c32_encode(hash160 + _c32_checksum(version, hash160))
    return f"S{C32_ALPHABET[version]}{body}"


def c32_address_decode(address: str) -> tuple[int, bytes]:
    """Parse a Stacks address into ``(version, hash160)``.

    Raises:
        ClarityDecodeError: If the address is malformed or its checksum fails
    """
    if len(address) < 3 or address[0] != "S":
        raise ClarityDecodeError(f"Invalid Stacks address '{address}'")
    version = C32_ALPHABET.find(address[1].upper())
    if version < 0:
        raise ClarityDecodeError(f"Invalid Stacks address '{address}'")
    decoded = c32_decode(address[2:], 24)
    hash160, checksum = decoded[:20], decoded[20:]
    if _c32_checksum(version, hash160) != checksum:
        raise ClarityDecodeError(f"Bad checksum in Stacks address '{address}'")
    return version, hash160


# Serialization ------------------------------------------------------------


def _encode_name(name: str) -> bytes:
    raw = name.encode("ascii")
    if len(raw) > MAX_NAME_LENGTH:
        raise ValueError(f"Clarity name too long: {name}")
    return bytes([len(raw)]) + raw


def serialize(value: ClarityValue) -> bytes:
    """Serialize a Clarity value to its consensus bytes."""
    kind = value.type
    prefix = bytes([kind])

    if kind in (ClarityType.INT, ClarityType.UINT):
        signed = kind == ClarityType.INT
        return prefix + int(value.value).to_bytes(16, "big", signed=signed)
    if kind == ClarityType.BUFFER:
        return prefix + struct.pack(">I", len(value.value)) + value.value
    if kind in (ClarityType.TRUE, ClarityType.FALSE, ClarityType.OPTIONAL_NONE):
        return prefix
    if kind == ClarityType.PRINCIPAL_STANDARD:
        version, hash160 = value.value
        return prefix + bytes([version]) + hash160
    if kind == ClarityType.PRINCIPAL_CONTRACT:
        version, hash160, name = value.value
        return prefix + bytes([version]) + hash160 + _encode_name(name)
    if kind in (
        ClarityType.RESPONSE_OK,
        ClarityType.RESPONSE_ERR,
        ClarityType.OPTIONAL_SOME,
    ):
        return prefix + serialize(value.value)
    if kind == ClarityType.LIST:
        items = b"".join(serialize(item) for item in value.value)
        return prefix + struct.pack(">I", len(value.value)) + items
    if kind == ClarityType.TUPLE:
        # Tuple keys are serialized in lexicographic order
        entries = sorted(value.value.items())
        body = b"".join(_encode_name(key) + serialize(item) for key, item in entries)
        return prefix + struct.pack(">I", len(entries)) + body
    if kind == ClarityType.STRING_ASCII:
        raw = value.value.encode("ascii")
        return prefix + struct.pack(">I", len(raw)) + raw
    if kind == ClarityType.STRING_UTF8:
        raw = value.value.encode("utf-8")
        return prefix + struct.pack(">I", len(raw)) + raw
    raise ValueError(f"Unsupported Clarity type: {kind!r}")


def to_hex(value: ClarityValue) -> str:
    return "0x" + serialize(value).hex()


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def take(self, count: int) -> bytes:
        end = self.offset + count
        if end > len(self.data):
            raise ClarityDecodeError("Unexpected end of Clarity value")
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return int(struct.unpack(">I", self.take(4))[0])

    def name(self) -> str:
        length = self.u8()
        try:
            return self.take(length).decode("ascii")
        except UnicodeDecodeError as exc:
            raise ClarityDecodeError("Clarity name is not ASCII") from exc


def _read_value(reader: _Reader) -> ClarityValue:
    type_id = reader.u8()
    try:
        kind = ClarityType(type_id)
    except ValueError as exc:
        raise ClarityDecodeError(f"Unknown Clarity type id 0x{type_id:02x}") from exc

    if kind == ClarityType.INT:
        return int_cv(int.from_bytes(reader.take(16), "big", signed=True))
    if kind == ClarityType.UINT:
        return uint_cv(int.from_bytes(reader.take(16), "big"))
    if kind == ClarityType.BUFFER:
        return buffer_cv(reader.take(reader.u32()))
    if kind == ClarityType.TRUE:
        return bool_cv(True)
    if kind == ClarityType.FALSE:
        return bool_cv(False)
    if kind == ClarityType.PRINCIPAL_STANDARD:
        version = reader.u8()
        return ClarityValue(kind, (version, reader.take(20)))
    if kind == ClarityType.PRINCIPAL_CONTRACT:
        version = reader.u8()
        hash160 = reader.take(20)
        return ClarityValue(kind, (version, hash160, reader.name()))
    if kind in (
        ClarityType.RESPONSE_OK,
        ClarityType.RESPONSE_ERR,
        ClarityType.OPTIONAL_SOME,
    ):
        return ClarityValue(kind, _read_value(reader))
    if kind == ClarityType.OPTIONAL_NONE:
        return none_cv()
    if kind == ClarityType.LIST:
        count = reader.u32()
        return list_cv([_read_value(reader) for _ in range(count)])
    if kind == ClarityType.TUPLE:
        count = reader.u32()
        entries = {}
        for _ in range(count):
            key = reader.name()
            entries[key] = _read_value(reader)
        return tuple_cv(entries)
    raw = reader.take(reader.u32())
    try:
        if kind == ClarityType.STRING_ASCII:
            return ClarityValue(kind, raw.decode("ascii"))
        return ClarityValue(kind, raw.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ClarityDecodeError("Invalid string payload") from exc


def deserialize(data: bytes) -> ClarityValue:
    """Parse a single Clarity value; trailing bytes are an error."""
    reader = _Reader(data)
    value = _read_value(reader)
    if reader.offset != len(data):
        raise ClarityDecodeError("Trailing bytes after Clarity value")
    return value


def from_hex(text: str) -> ClarityValue:
    cleaned = text[2:] if text.startswith(("0x", "0X")) else text
    try:
        raw = bytes.fromhex(cleaned)
    except ValueError as exc:
        raise ClarityDecodeError("Clarity result is not hex") from exc
    return deserialize(raw)


def to_python(value: ClarityValue) -> Any:
    """Convert a Clarity value to plain Python data.

    Responses become ``{"ok": ...}`` / ``{"err": ...}``, optionals become
    the inner value or ``None`` and principals become address strings.
    """
    kind = value.type
    if kind in (ClarityType.TRUE, ClarityType.FALSE):
        return kind == ClarityType.TRUE
    if kind == ClarityType.PRINCIPAL_STANDARD:
        return c32_address(*value.value)
    if kind == ClarityType.PRINCIPAL_CONTRACT:
        version, hash160, name = value.value
        return f"{c32_address(version, hash160)}.{name}"
    if kind == ClarityType.RESPONSE_OK:
        return {"ok": to_python(value.value)}
    if kind == ClarityType.RESPONSE_ERR:
        return {"err": to_python(value.value)}
    if kind == ClarityType.OPTIONAL_NONE:
        return None
    if kind == ClarityType.OPTIONAL_SOME:
        return to_python(value.value)
    if kind == ClarityType.LIST:
        return [to_python(item) for item in value.value]
    if kind == ClarityType.TUPLE:
        return {key: to_python(item) for key, item in value.value.items()}
    return value.value
