"""
Exception taxonomy for the siso service.

Every error raised by the service layer derives from SisoError and carries
the HTTP status the API answers with. The FastAPI exception handler in
main.py turns these into {"detail": message} responses.
"""

from typing import Any, Dict, Optional


class SisoError(Exception):
    """
    Base exception class for all siso errors.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status returned by the API for this error
    """

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to the API error body."""
        return {"detail": self.message}


class InvalidArgument(SisoError):
    """Missing or malformed required fields (self-chat, empty ids, bad data URI)."""

    status_code = 400
    default_message = "Invalid argument"


class Forbidden(SisoError):
    """Caller is not a chat participant, or the admin code is wrong."""

    status_code = 403
    default_message = "Forbidden"


class CryptoError(SisoError):
    """Base exception for message encryption/decryption failures."""

    default_message = "Cryptographic operation failed"


class IntegrityError(CryptoError):
    """Authentication tag verification failed (tampered or corrupted data, or wrong key)."""

    default_message = "Message authentication failed"


class FormatError(CryptoError):
    """Ciphertext, nonce or tag is malformed (bad base64, wrong length, bad UTF-8)."""

    default_message = "Malformed encrypted payload"


class StoreError(SisoError):
    """Underlying persistence failure."""

    default_message = "Storage operation failed"
