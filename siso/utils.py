"""
Utility functions for the siso API.
"""

import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def verify_admin_code(provided: Optional[str], expected: str) -> bool:
    """
    Check an admin code against the configured one.

    Args:
        provided: Code from the request body (may be missing)
        expected: ADMIN_CODE setting

    Returns:
        True if the codes match, False otherwise
    """
    if not provided or not expected:
        logger.info("Admin code missing")
        return False

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
    logger.info(f"Admin code verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
