"""
User display-name profiles and admin statistics.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from siso.errors import InvalidArgument, StoreError
from siso.models import Chat, Message, User
from siso.storage import now_ms

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
FIND_LIMIT = 10


def upsert_profile(db: Session, user_id: str, display_name: str) -> None:
    """
    Set or replace a user's display name (last write wins).

    Raises:
        InvalidArgument: user_id is empty or display_name is blank
    """
    if not user_id or not isinstance(display_name, str):
        raise InvalidArgument("userId and displayName are required")
    trimmed = display_name.strip()
    if not trimmed:
        raise InvalidArgument("displayName must not be empty")

    updated_at = now_ms()
    statement = sqlite_insert(User).values(id=user_id, display_name=trimmed, updated_at=updated_at)
    statement = statement.on_conflict_do_update(
        index_elements=["id"],
        set_={"display_name": trimmed, "updated_at": updated_at},
    )

    try:
        db.execute(statement)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save display name: {e}")
        raise StoreError("Failed to save display name")

    logger.info("Display name updated")


def parse_id_list(raw: Optional[str]) -> List[str]:
    """Split a comma-separated ids parameter, dropping blanks."""
    if raw is None:
        raise InvalidArgument("ids parameter is required")
    return [part.strip() for part in raw.split(",") if part.strip()]


def get_profiles(db: Session, ids: Iterable[str]) -> List[User]:
    """Profiles for the given ids; unknown ids are simply absent."""
    ids = list(ids)
    if not ids:
        return []
    return db.query(User).filter(User.id.in_(ids)).all()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _ascii_lower(value: str) -> str:
    # Same folding as SQLite's built-in lower()
    return "".join(char.lower() if char.isascii() else char for char in value)


def find_users(db: Session, q: Optional[str], limit: int = FIND_LIMIT) -> List[User]:
    """
    Case-insensitive substring search on display names.

    Returns at most `limit` users, most recently updated first.

    Case folding is ASCII-only, matching SQLite's lower(): non-ASCII letters
    must match exactly, so "Ä" finds "Ärger" but "ä" does not.
    """
    query_text = (q or "").strip()
    if not query_text:
        raise InvalidArgument("q parameter is required")

    pattern = f"%{_escape_like(_ascii_lower(query_text))}%"
    users = (
        db.query(User)
        .filter(func.lower(User.display_name).like(pattern, escape="\\"))
        .order_by(User.updated_at.desc())
        .limit(limit)
        .all()
    )
    logger.debug(f"Name search returned {len(users)} users")
    return users


def get_stats(db: Session, user_id: Optional[str] = None) -> dict:
    """
    Aggregate counts for the admin dashboard.

    Message counts only cover messages that have not been viewed yet,
    since viewing deletes them.

    Returns:
        Dictionary with stats data
    """
    logger.info("Computing admin statistics")

    now = now_ms()
    user_count = db.query(func.count(User.id)).scalar() or 0
    chat_count = db.query(func.count(Chat.id)).scalar() or 0
    message_count = db.query(func.count(Message.seq)).scalar() or 0
    messages_last_24h = (
        db.query(func.count(Message.seq)).filter(Message.created_at >= now - DAY_MS).scalar() or 0
    )
    messages_last_7d = (
        db.query(func.count(Message.seq)).filter(Message.created_at >= now - 7 * DAY_MS).scalar() or 0
    )

    my_sent_messages = None
    if user_id:
        my_sent_messages = (
            db.query(func.count(Message.seq)).filter(Message.sender_id == user_id).scalar() or 0
        )

    logger.debug(f"Stats computed: {user_count} users, {chat_count} chats, {message_count} messages")

    return {
        "user_count": user_count,
        "chat_count": chat_count,
        "message_count": message_count,
        "messages_last_24h": messages_last_24h,
        "messages_last_7d": messages_last_7d,
        "my_sent_messages": my_sent_messages,
    }
