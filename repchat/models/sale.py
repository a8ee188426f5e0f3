import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, Text, Uuid

from repchat.clock import utc_now
from repchat.database import Base, JSONType


class Sale(Base):
    __tablename__ = "sales"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False, index=True)
    customer_name = Column(Text, nullable=False)
    customer_phone = Column(Text, nullable=False)
    customer_instagram = Column(Text)
    channel = Column(Text, nullable=False)  # website, instagram; frozen at creation
    commission_rate = Column(Numeric(5, 4), nullable=False)
    sale_amount = Column(Numeric(12, 2), nullable=False)
    commission_amount = Column(Numeric(12, 2), nullable=False)
    product_details = Column(Text, default="")
    status = Column(Text, nullable=False, default="pending_review")  # pending_review, verified, disputed, rejected
    detection_method = Column(Text, nullable=False)  # manual, auto
    detected_keywords = Column(JSONType)
    marked_by = Column(JSONType)
    rep_info = Column(JSONType, nullable=False)  # snapshot: name, rep_id, phone_number
    sale_date = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    notes = Column(Text)
    verified_at = Column(DateTime(timezone=True))
    verified_by = Column(JSONType)
    disputed_at = Column(DateTime(timezone=True))
    disputed_by = Column(JSONType)
    dispute_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class SaleEvidence(Base):
    """Transcript and keyword snapshot taken when a sale is marked. Never updated."""

    __tablename__ = "sale_evidence"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=False, index=True)
    conversation_id = Column(Uuid, nullable=False)
    message_ids = Column(JSONType, nullable=False, default=list)
    transcript_snapshot = Column(JSONType, nullable=False, default=list)
    keywords_found = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class AuditEntry(Base):
    __tablename__ = "audit_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subject_id = Column(Text, nullable=False, index=True)
    actor = Column(JSONType, nullable=False)
    action = Column(Text, nullable=False)  # created, verified, disputed, rejected, amount_changed, ...
    reason = Column(Text)
    previous_value = Column(JSONType)
    new_value = Column(JSONType)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utc_now)
