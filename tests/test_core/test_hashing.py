"""Tests for content hashing."""

import hashlib

import pytest

from truthchain.core.hashing import (
    InvalidHashError,
    hash_content,
    hash_content_hex,
    hex_to_bytes,
    normalize_content,
    normalize_hash_hex,
    validate_content_hash,
)

HELLO_WORLD_SHA256 = "b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9"


class TestNormalizeContent:
    def test_trims_and_collapses_whitespace(self):
        assert normalize_content("  hello \t\n  world  ") == "hello world"

    def test_leaves_single_spaces_alone(self):
        assert normalize_content("hello world") == "hello world"

    def test_whitespace_only_becomes_empty(self):
        assert normalize_content(" \n\t ") == ""


class TestHashContent:
    def test_digest_is_sha256_of_normalized_text(self):
        assert hash_content_hex("hello world") == HELLO_WORLD_SHA256
        assert hash_content("hello world") == hashlib.sha256(b"hello world").digest()

    def test_irregular_whitespace_hashes_identically(self):
        """Whitespace differences must not produce a different registration."""
        a = hash_content("Just launched my new startup! 🚀")
        b = hash_content("Just   launched my new startup! 🚀  ")

        assert a == b
        assert len(a) == 32

    def test_unicode_is_hashed_as_utf8(self):
        expected = hashlib.sha256("café 🚀".encode("utf-8")).hexdigest()
        assert hash_content_hex("café 🚀") == expected

    def test_case_is_significant(self):
        assert hash_content("Hello") != hash_content("hello")

    def test_validate_content_hash(self):
        digest = hash_content("some text")
        assert validate_content_hash("  some   text ", digest)
        assert not validate_content_hash("other text", digest)


class TestHexToBytes:
    def test_accepts_prefixed_and_uppercase(self):
        raw = hex_to_bytes("0x" + HELLO_WORLD_SHA256.upper())
        assert raw.hex() == HELLO_WORLD_SHA256

    def test_normalize_hash_hex_is_lowercase_unprefixed(self):
        assert normalize_hash_hex("0X" + HELLO_WORLD_SHA256.upper()) == HELLO_WORLD_SHA256

    @pytest.mark.parametrize("value", ["", "0x", "zz" * 32, "abc", "not-a-hash"])
    def test_rejects_non_hex(self, value):
        with pytest.raises(InvalidHashError, match="hex string"):
            hex_to_bytes(value)

    def test_rejects_wrong_length(self):
        with pytest.raises(InvalidHashError, match="32 bytes"):
            hex_to_bytes("ab" * 31)

    def test_invalid_hash_is_a_value_error(self):
        assert issubclass(InvalidHashError, ValueError)
