"""
AES-256-GCM codec for message bodies.

Security model: the key is SHA-256 of a single configured passphrase and is
shared by every message on the server. Anyone holding the deployed
configuration can decrypt every stored message. This protects rows at rest
against casual inspection only; it is not end-to-end encryption. Per-chat
keying is a possible future extension.

Uses the cryptography library (AESGCM), which appends the 16-byte tag to
the ciphertext; the codec splits it out so rows store ciphertext, iv and
auth tag as three base64 columns.
"""

import base64
import binascii
import hashlib
import logging
import os
from functools import lru_cache
from typing import NamedTuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from siso.config import settings
from siso.errors import FormatError, IntegrityError

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16


class EncryptedPayload(NamedTuple):
    """Base64-encoded AES-GCM output as persisted in the messages table."""
    ciphertext: str
    iv: str
    auth_tag: str


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: str, field: str) -> bytes:
    if not isinstance(value, str):
        raise FormatError(f"{field} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"{field} is not valid base64: {e}")


class MessageCodec:
    """Authenticated symmetric encryption of message plaintext."""

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError("AES-256 key must be 32 bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_passphrase(cls, passphrase: str) -> "MessageCodec":
        """Derive the 32-byte key as SHA-256 of the passphrase."""
        return cls(hashlib.sha256(passphrase.encode("utf-8")).digest())

    def encrypt(self, plaintext: str) -> EncryptedPayload:
        """
        Encrypt plaintext under a fresh random 96-bit nonce.

        A new nonce is drawn from os.urandom on every call; a nonce must
        never be reused under the same key.
        """
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return EncryptedPayload(
            ciphertext=_b64encode(sealed[:-TAG_SIZE]),
            iv=_b64encode(nonce),
            auth_tag=_b64encode(sealed[-TAG_SIZE:]),
        )

    def decrypt(self, ciphertext: str, iv: str, auth_tag: str) -> str:
        """
        Decrypt and verify a stored payload.

        Raises:
            FormatError: malformed base64, nonce/tag length, or non-UTF-8 plaintext
            IntegrityError: authentication tag does not verify
        """
        body = _b64decode(ciphertext, "ciphertext")
        nonce = _b64decode(iv, "iv")
        tag = _b64decode(auth_tag, "authTag")

        if len(nonce) != NONCE_SIZE:
            raise FormatError(f"iv must be {NONCE_SIZE} bytes, got {len(nonce)}")
        if len(tag) != TAG_SIZE:
            raise FormatError(f"authTag must be {TAG_SIZE} bytes, got {len(tag)}")

        try:
            plaintext = self._aead.decrypt(nonce, body + tag, None)
        except InvalidTag:
            raise IntegrityError()

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FormatError(f"plaintext is not valid UTF-8: {e}")


@lru_cache()
def get_codec() -> MessageCodec:
    """
    Get the process-wide codec.
    The key is derived once per process from ENCRYPTION_PASSPHRASE.
    """
    logger.debug("Deriving message encryption key")
    return MessageCodec.from_passphrase(settings.ENCRYPTION_PASSPHRASE)
