import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from repchat.clock import utc_now
from repchat.database import Base, JSONType
from repchat.schemas.identity import CustomerIdentity, SaleChannel, channel_of, identity_from_storage


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (Index("ix_conversations_identity", "customer_phone", "rep_phone", "status"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_phone = Column(Text, nullable=False)  # phone number or prefixed instagram key
    instagram_handle = Column(Text)
    rep_phone = Column(Text, nullable=False)
    chat_mode = Column(Text, nullable=False, default="AI")  # AI, HUMAN
    status = Column(Text, nullable=False, default="active")  # active, archived, ended, closed
    customer_info = Column(JSONType)
    bridge_ref = Column(Text)
    has_potential_sale = Column(Boolean, default=False)
    sale_status = Column(Text)  # potential, marked, verified
    sale_id = Column(Uuid)
    last_sale_keyword_at = Column(DateTime(timezone=True))
    sale_keywords_count = Column(Integer, default=0)
    typing_users = Column(JSONType, nullable=False, default=list)
    last_message_at = Column(DateTime(timezone=True))
    last_message_sender = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    messages = relationship("Message", back_populates="conversation")

    @property
    def customer_identity(self) -> CustomerIdentity:
        return identity_from_storage(self.customer_phone, self.instagram_handle)

    @property
    def channel(self) -> SaleChannel:
        return channel_of(self.customer_identity)

    @property
    def customer_name(self) -> str:
        info = self.customer_info or {}
        first_name = info.get("first_name")
        last_name = info.get("last_name")
        if first_name and last_name:
            return f"{first_name} {last_name}"
        return first_name or "Unknown Customer"
