import uuid

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from repchat.clock import next_sequence, utc_now
from repchat.database import Base, JSONType


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False, index=True)
    sender = Column(Text, nullable=False)  # USER, ADMIN, AI
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    seq = Column(BigInteger, nullable=False, default=next_sequence)
    delivered_to = Column(JSONType, nullable=False, default=list)
    read_by = Column(JSONType, nullable=False, default=list)
    delivered_at = Column(DateTime(timezone=True))
    read_at = Column(DateTime(timezone=True))
    edited = Column(Boolean, nullable=False, default=False)
    edited_at = Column(DateTime(timezone=True))

    conversation = relationship("Conversation", back_populates="messages")


class ConversationReadStatus(Base):
    """Per-user last-read marker for a conversation (admin unread badges)."""

    __tablename__ = "conversation_read_status"

    conversation_id = Column(Uuid, ForeignKey("conversations.id"), primary_key=True)
    user_id = Column(Text, primary_key=True)
    last_read_at = Column(DateTime(timezone=True), nullable=False)
