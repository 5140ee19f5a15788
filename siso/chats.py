"""
Chat identity resolution and lifecycle.

A chat pairs exactly two opaque user ids. For any unordered pair {A, B}
there is at most one chat: lookups match both orderings, and the
(pair_low, pair_high) unique constraint on the table rejects a second
insert when both participants open the chat at the same moment.
"""

import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from siso.errors import Forbidden, InvalidArgument, StoreError
from siso.messages import delete_all_for_chat
from siso.models import Chat
from siso.storage import now_ms

logger = logging.getLogger(__name__)


def _find_chat_for_pair(db: Session, user_a: str, user_b: str) -> Optional[Chat]:
    return (
        db.query(Chat)
        .filter(
            or_(
                and_(Chat.user_a_id == user_a, Chat.user_b_id == user_b),
                and_(Chat.user_a_id == user_b, Chat.user_b_id == user_a),
            )
        )
        .first()
    )


def create_or_get_chat(db: Session, my_user_id: str, other_user_id: str) -> Tuple[str, bool]:
    """
    Resolve the chat between two users, creating it on first contact.

    Args:
        db: Database session
        my_user_id: Initiating user (stored as user_a_id on creation)
        other_user_id: The other participant

    Returns:
        Tuple of (chat_id, created)

    Raises:
        InvalidArgument: an id is empty or both ids are the same
        StoreError: the chat could not be read or written
    """
    if not my_user_id or not other_user_id:
        raise InvalidArgument("myUserId and otherUserId are required")
    if my_user_id == other_user_id:
        raise InvalidArgument("Cannot open a chat with yourself")

    existing = _find_chat_for_pair(db, my_user_id, other_user_id)
    if existing is not None:
        logger.debug(f"Found existing chat {existing.id}")
        return existing.id, False

    pair_low, pair_high = sorted((my_user_id, other_user_id))
    chat = Chat(
        id=str(uuid.uuid4()),
        user_a_id=my_user_id,
        user_b_id=other_user_id,
        pair_low=pair_low,
        pair_high=pair_high,
        created_at=now_ms(),
    )

    try:
        db.add(chat)
        db.commit()
        logger.info(f"Chat created: {chat.id}")
        return chat.id, True

    except IntegrityError:
        # The other participant created the chat between our lookup and insert
        db.rollback()
        winner = _find_chat_for_pair(db, my_user_id, other_user_id)
        if winner is None:
            logger.error("Chat pair conflict but no chat found on re-read")
            raise StoreError("Failed to create chat")
        logger.info(f"Chat creation race resolved to existing chat {winner.id}")
        return winner.id, False

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create chat: {e}")
        raise StoreError("Failed to create chat")


def ensure_chat(db: Session, user_a: str, user_b: str) -> str:
    """
    Return the id of the single chat between user_a and user_b.

    Idempotent and order-independent: ensure_chat(A, B) == ensure_chat(B, A).
    """
    chat_id, _ = create_or_get_chat(db, user_a, user_b)
    return chat_id


def get_chat(db: Session, chat_id: str) -> Optional[Chat]:
    return db.query(Chat).filter(Chat.id == chat_id).first()


def list_chats(db: Session, user_id: str) -> List[Chat]:
    """All chats the user participates in, newest first."""
    if not user_id:
        raise InvalidArgument("userId is required")

    chats = (
        db.query(Chat)
        .filter(or_(Chat.user_a_id == user_id, Chat.user_b_id == user_id))
        .order_by(Chat.created_at.desc(), Chat.id.asc())
        .all()
    )
    logger.debug(f"Listed {len(chats)} chats")
    return chats


def delete_chat(db: Session, chat_id: str, requesting_user_id: str) -> int:
    """
    Delete a chat and all of its messages.

    Messages and the chat row are removed in one transaction so no
    orphaned messages remain.

    Returns:
        Number of messages deleted with the chat

    Raises:
        InvalidArgument: requesting_user_id is empty
        Forbidden: the requester is not a participant (or the chat is gone)
        StoreError: the deletion failed and was rolled back
    """
    if not requesting_user_id:
        raise InvalidArgument("userId is required")

    chat = get_chat(db, chat_id)
    if chat is None or not chat.has_participant(requesting_user_id):
        logger.warning(f"Chat deletion refused for chat {chat_id}")
        raise Forbidden("No access to this chat")

    try:
        deleted = delete_all_for_chat(db, chat_id, commit=False)
        db.delete(chat)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete chat {chat_id}: {e}")
        raise StoreError("Failed to delete chat")

    logger.info(f"Chat deleted: {chat_id} ({deleted} messages)")
    return deleted
