"""
Encrypted view-once message store.

Messages are encrypted on append and decrypted only when an inbox is read.
Reading an inbox does not consume anything: a message stays (and is
re-delivered on every poll) until its recipient calls consume_on_view,
which deletes the row. Deletion is the read receipt.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from siso.content import Content, parse_content, serialize_content
from siso.crypto import MessageCodec, get_codec
from siso.errors import CryptoError, InvalidArgument, StoreError
from siso.metrics import record_message_event
from siso.models import Message
from siso.storage import now_ms

logger = logging.getLogger(__name__)

DECRYPTION_FAILED_PLACEHOLDER = "[decryption failed]"


@dataclass
class InboxMessage:
    """A decrypted message, or a placeholder for a row that failed to decrypt."""
    id: str
    chat_id: str
    sender_id: str
    receiver_id: str
    created_at: int
    content: Optional[Content] = None
    error: Optional[str] = None

    @property
    def kind(self) -> str:
        if self.content is None:
            return "error"
        return self.content.kind

    @property
    def wire_content(self) -> str:
        if self.content is None:
            return DECRYPTION_FAILED_PLACEHOLDER
        return serialize_content(self.content)


def append_message(
    db: Session,
    chat_id: str,
    sender_id: str,
    receiver_id: str,
    content: Content,
    codec: Optional[MessageCodec] = None,
) -> str:
    """
    Encrypt and persist a message.

    Chat membership is not checked here; callers must verify that sender
    and receiver belong to the chat.

    Args:
        db: Database session
        chat_id: Chat the message belongs to
        sender_id: Sending user
        receiver_id: The only user whose inbox will contain the message
        content: Text or image content
        codec: Codec to encrypt with (defaults to the process-wide codec)

    Returns:
        The new message id
    """
    if not chat_id or not sender_id or not receiver_id:
        raise InvalidArgument("chatId, senderId and receiverId are required")

    codec = codec or get_codec()
    payload = codec.encrypt(serialize_content(content))
    message_id = str(uuid.uuid4())

    message = Message(
        id=message_id,
        chat_id=chat_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        ciphertext=payload.ciphertext,
        iv=payload.iv,
        auth_tag=payload.auth_tag,
        created_at=now_ms(),
    )

    try:
        db.add(message)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store message in chat {chat_id}: {e}")
        raise StoreError("Failed to store message")

    logger.info(f"Message stored: {message_id} ({content.kind})")
    record_message_event("sent")
    return message_id


def _decrypt_row(row: Message, codec: MessageCodec) -> InboxMessage:
    inbox_message = InboxMessage(
        id=row.id,
        chat_id=row.chat_id,
        sender_id=row.sender_id,
        receiver_id=row.receiver_id,
        created_at=row.created_at,
    )
    try:
        plaintext = codec.decrypt(row.ciphertext, row.iv, row.auth_tag)
        inbox_message.content = parse_content(plaintext)
    except (CryptoError, InvalidArgument) as e:
        logger.error(f"Failed to decrypt message {row.id}: {e}")
        record_message_event("decrypt_failed")
        inbox_message.error = e.message
    return inbox_message


def list_inbox(
    db: Session,
    chat_id: str,
    user_id: str,
    codec: Optional[MessageCodec] = None,
) -> List[InboxMessage]:
    """
    Decrypted messages addressed to user_id in chat_id, oldest first.

    Ties on created_at keep insertion order. A row that cannot be
    decrypted is returned as a placeholder instead of failing the list.
    """
    if not chat_id or not user_id:
        raise InvalidArgument("chatId and userId are required")

    codec = codec or get_codec()
    rows = (
        db.query(Message)
        .filter(Message.chat_id == chat_id, Message.receiver_id == user_id)
        .order_by(Message.created_at.asc(), Message.seq.asc())
        .all()
    )
    logger.debug(f"Inbox query returned {len(rows)} rows for chat {chat_id}")
    return [_decrypt_row(row, codec) for row in rows]


def consume_on_view(db: Session, message_id: str) -> bool:
    """
    Delete a message because it has been viewed.

    Idempotent: an id that no longer exists still reports success, so
    clients can retry safely.
    """
    try:
        deleted = db.query(Message).filter(Message.id == message_id).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete viewed message {message_id}: {e}")
        raise StoreError("Failed to delete message")

    if deleted:
        logger.info(f"Message consumed: {message_id}")
        record_message_event("viewed")
    else:
        logger.debug(f"View of already-consumed message: {message_id}")
    return True


def delete_all_for_chat(db: Session, chat_id: str, commit: bool = True) -> int:
    """
    Delete every message of a chat.

    With commit=False the deletion joins the caller's transaction
    (used by the chat deletion cascade).

    Returns:
        Number of rows deleted
    """
    try:
        deleted = db.query(Message).filter(Message.chat_id == chat_id).delete(synchronize_session=False)
        if commit:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete messages for chat {chat_id}: {e}")
        raise StoreError("Failed to delete chat messages")

    logger.debug(f"Deleted {deleted} messages for chat {chat_id}")
    return deleted
