"""Content hashing.

Every code path that derives a hash from raw text goes through
:func:`hash_content`, so identical-looking submissions always collide.
"""

import hashlib
import re

_WHITESPACE = re.compile(r"\s+")
_HEX = re.compile(r"^[0-9a-fA-F]*$")

HASH_LENGTH = 32


class InvalidHashError(ValueError):
    """Raised when a caller-supplied hash is not 32 bytes of hex."""


def normalize_content(text: str) -> str:
    """Trim the text and collapse whitespace runs to a single space."""
    return _WHITESPACE.sub(" ", text.strip())


def hash_content(text: str) -> bytes:
    """SHA-256 of the normalized text."""
    return hashlib.sha256(normalize_content(text).encode("utf-8")).digest()


def hash_content_hex(text: str) -> str:
    """Lowercase hex digest of the normalized text."""
    return hash_content(text).hex()


def _strip_prefix(value: str) -> str:
    value = value.strip()
    if value[:2] in ("0x", "0X"):
        return value[2:]
    return value


def hex_to_bytes(value: str) -> bytes:
    """Decode a hex hash, dropping an optional ``0x`` prefix.

    Raises:
        InvalidHashError: If the value is not hex or not 32 bytes long
    """
    cleaned = _strip_prefix(value)
    if not cleaned or len(cleaned) % 2 or not _HEX.match(cleaned):
        raise InvalidHashError("Hash must be a hex string")
    raw = bytes.fromhex(cleaned)
    if len(raw) != HASH_LENGTH:
        raise InvalidHashError(
            f"Hash must be {HASH_LENGTH} bytes ({HASH_LENGTH * 2} hex characters)"
        )
    return raw


def normalize_hash_hex(value: str) -> str:
    """Canonical lowercase, unprefixed form of a hex hash."""
    return hex_to_bytes(value).hex()


def validate_content_hash(text: str, expected: bytes) -> bool:
    """Check that ``text`` hashes to ``expected``."""
    return hash_content(text) == expected
