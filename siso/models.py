"""
ORM models: display-name profiles, two-party chats and pending messages.

Message rows only ever hold ciphertext; see crypto.py for the envelope.
"""

from sqlalchemy import BigInteger, Column, Integer, String, Text, UniqueConstraint

from siso.storage import Base


class User(Base):
    """
    Optional display-name profile for an opaque user id.

    Table: users
    Last write wins; no history is kept.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    display_name = Column(String, nullable=False)
    updated_at = Column(BigInteger, nullable=False, index=True)  # epoch ms


class Chat(Base):
    """
    A pairing of exactly two user ids.

    Table: chats
    pair_low/pair_high hold the participants sorted, and the unique
    constraint on them allows at most one chat per unordered pair.
    """
    __tablename__ = "chats"
    __table_args__ = (
        UniqueConstraint("pair_low", "pair_high", name="uq_chats_pair"),
    )

    id = Column(String, primary_key=True)
    user_a_id = Column(String, nullable=False, index=True)
    user_b_id = Column(String, nullable=False, index=True)
    pair_low = Column(String, nullable=False)
    pair_high = Column(String, nullable=False)
    created_at = Column(BigInteger, nullable=False)  # epoch ms

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.user_a_id, self.user_b_id)


class Message(Base):
    """
    Encrypted view-once message.

    Table: messages
    seq is an insertion counter used to break created_at ties;
    id is the public message identifier.
    """
    __tablename__ = "messages"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True, index=True)
    chat_id = Column(String, nullable=False, index=True)
    sender_id = Column(String, nullable=False, index=True)
    receiver_id = Column(String, nullable=False)
    ciphertext = Column(Text, nullable=False)
    iv = Column(String, nullable=False)
    auth_tag = Column(String, nullable=False)
    created_at = Column(BigInteger, nullable=False, index=True)  # epoch ms
