"""
Device-local identity helpers.

A user is nothing more than a random uuid4 generated on the device. It is
shared with a peer as an invite link of the form "<origin>/#<user id>".
Persisting the id on the device is up to the embedding application.
"""

import uuid
from typing import Optional

SHORT_ID_LENGTH = 8


def new_user_id() -> str:
    return str(uuid.uuid4())


def short_id(user_id: str) -> str:
    """First characters of an id, for display."""
    return user_id[:SHORT_ID_LENGTH]


def invite_link(origin: str, user_id: str) -> str:
    return f"{origin.rstrip('/')}/#{user_id}"


def extract_user_id(raw: Optional[str]) -> Optional[str]:
    """
    Get a user id from either a bare id or an invite link.

    Everything after the last '#' is taken as the id.
    Returns None for empty input.
    """
    if not raw:
        return None
    raw = raw.strip()
    idx = raw.rfind("#")
    if idx != -1:
        raw = raw[idx + 1:]
    return raw or None
