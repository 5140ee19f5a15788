"""
Tests for the AES-256-GCM message codec.

Tests cover:
- Encrypt/decrypt round trip
- Fresh nonce per message
- Tamper detection (IntegrityError)
- Malformed input (FormatError)
- Single passphrase-derived key shared by every codec instance
"""

import base64
import hashlib

import pytest

from siso.config import settings
from siso.crypto import MessageCodec, get_codec, NONCE_SIZE, TAG_SIZE
from siso.errors import FormatError, IntegrityError


@pytest.fixture
def codec() -> MessageCodec:
    return MessageCodec.from_passphrase("unit-test-passphrase")


def flip_bit(value: str, bit: int) -> str:
    """Flip one bit of a base64-encoded value."""
    raw = bytearray(base64.b64decode(value))
    raw[bit // 8] ^= 1 << (bit % 8)
    return base64.b64encode(bytes(raw)).decode("ascii")


class TestRoundTrip:
    """Test decrypt(encrypt(P)) == P."""

    @pytest.mark.parametrize("plaintext", [
        "hello",
        "",
        "Grüße aus Köln 🔒 你好",
        "x" * 100_000,
        "data:image/png;base64,iVBORw0KGgo=",
    ])
    def test_round_trip(self, codec, plaintext):
        payload = codec.encrypt(plaintext)
        assert codec.decrypt(payload.ciphertext, payload.iv, payload.auth_tag) == plaintext

    def test_payload_field_sizes(self, codec):
        payload = codec.encrypt("hello")

        assert len(base64.b64decode(payload.iv)) == NONCE_SIZE
        assert len(base64.b64decode(payload.auth_tag)) == TAG_SIZE
        assert len(base64.b64decode(payload.ciphertext)) == len("hello")

    def test_ciphertext_is_not_plaintext(self, codec):
        payload = codec.encrypt("attack at dawn")

        assert "attack at dawn" not in payload.ciphertext
        assert base64.b64decode(payload.ciphertext) != b"attack at dawn"

    def test_same_plaintext_encrypts_differently(self, codec):
        first = codec.encrypt("hello")
        second = codec.encrypt("hello")

        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext


class TestNonces:
    """Test that every encryption draws a new nonce."""

    def test_no_nonce_reuse_in_large_sample(self, codec):
        nonces = {codec.encrypt("same message").iv for _ in range(5000)}
        assert len(nonces) == 5000


class TestTampering:
    """Test that any modification is detected rather than decrypted."""

    def test_every_ciphertext_bit_flip_detected(self, codec):
        payload = codec.encrypt("hello")
        bits = len(base64.b64decode(payload.ciphertext)) * 8

        for bit in range(bits):
            with pytest.raises(IntegrityError):
                codec.decrypt(flip_bit(payload.ciphertext, bit), payload.iv, payload.auth_tag)

    def test_every_tag_bit_flip_detected(self, codec):
        payload = codec.encrypt("hello")

        for bit in range(TAG_SIZE * 8):
            with pytest.raises(IntegrityError):
                codec.decrypt(payload.ciphertext, payload.iv, flip_bit(payload.auth_tag, bit))

    def test_nonce_modification_detected(self, codec):
        payload = codec.encrypt("hello")

        with pytest.raises(IntegrityError):
            codec.decrypt(payload.ciphertext, flip_bit(payload.iv, 0), payload.auth_tag)

    def test_tag_from_other_message_rejected(self, codec):
        first = codec.encrypt("hello")
        second = codec.encrypt("hello")

        with pytest.raises(IntegrityError):
            codec.decrypt(first.ciphertext, first.iv, second.auth_tag)

    def test_wrong_key_rejected(self, codec):
        payload = codec.encrypt("hello")
        other = MessageCodec.from_passphrase("another-passphrase")

        with pytest.raises(IntegrityError):
            other.decrypt(payload.ciphertext, payload.iv, payload.auth_tag)


class TestMalformedInput:
    """Test FormatError on structurally invalid payloads."""

    def test_invalid_base64_ciphertext(self, codec):
        payload = codec.encrypt("hello")

        with pytest.raises(FormatError):
            codec.decrypt("not base64!!", payload.iv, payload.auth_tag)

    def test_short_nonce(self, codec):
        payload = codec.encrypt("hello")
        short_iv = base64.b64encode(b"\x00" * 8).decode("ascii")

        with pytest.raises(FormatError):
            codec.decrypt(payload.ciphertext, short_iv, payload.auth_tag)

    def test_truncated_tag(self, codec):
        payload = codec.encrypt("hello")
        short_tag = base64.b64encode(base64.b64decode(payload.auth_tag)[:8]).decode("ascii")

        with pytest.raises(FormatError):
            codec.decrypt(payload.ciphertext, payload.iv, short_tag)

    def test_non_string_input(self, codec):
        payload = codec.encrypt("hello")

        with pytest.raises(FormatError):
            codec.decrypt(None, payload.iv, payload.auth_tag)

    def test_key_must_be_32_bytes(self):
        with pytest.raises(ValueError):
            MessageCodec(b"short")


class TestSharedKey:
    """
    Test the documented security model: one static key derived from the
    configured passphrase decrypts every message.
    """

    def test_key_is_sha256_of_passphrase(self, codec):
        payload = codec.encrypt("hello")
        same_key = MessageCodec(hashlib.sha256(b"unit-test-passphrase").digest())

        assert same_key.decrypt(payload.ciphertext, payload.iv, payload.auth_tag) == "hello"

    def test_anyone_with_configuration_can_decrypt(self):
        payload = get_codec().encrypt("server-side secret")
        outsider = MessageCodec.from_passphrase(settings.ENCRYPTION_PASSPHRASE)

        assert outsider.decrypt(payload.ciphertext, payload.iv, payload.auth_tag) == "server-side secret"

    def test_process_codec_is_cached(self):
        assert get_codec() is get_codec()
