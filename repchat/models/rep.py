import uuid

from sqlalchemy import Boolean, Column, DateTime, Text, Uuid

from repchat.clock import utc_now
from repchat.database import Base


class Rep(Base):
    __tablename__ = "reps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    rep_id = Column(Text, nullable=False, unique=True)  # public URL slug
    name = Column(Text, nullable=False)
    email = Column(Text)
    phone_number = Column(Text, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
