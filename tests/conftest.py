import os
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import repchat.models  # noqa: F401  registers tables on Base.metadata
from repchat.database import Base
from repchat.models import Conversation, Message, Rep

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    """Real SQLAlchemy session over in-memory SQLite."""
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def make_conversation(db):
    def _make(
        customer_phone="+15551230000",
        rep_phone="+15559998888",
        status="active",
        chat_mode="AI",
        created_at=T0,
        **kwargs,
    ):
        conversation = Conversation(
            customer_phone=customer_phone,
            rep_phone=rep_phone,
            status=status,
            chat_mode=chat_mode,
            created_at=created_at,
            typing_users=[],
            **kwargs,
        )
        db.add(conversation)
        db.commit()
        return conversation

    return _make


@pytest.fixture
def add_message(db):
    def _add(conversation, sender, content, at=None, **kwargs):
        message = Message(
            conversation_id=conversation.id,
            sender=sender,
            content=content,
            timestamp=at or T0 + timedelta(minutes=1),
            delivered_to=kwargs.pop("delivered_to", []),
            read_by=kwargs.pop("read_by", []),
            **kwargs,
        )
        db.add(message)
        db.commit()
        return message

    return _add


@pytest.fixture
def rep(db):
    rep = Rep(rep_id="jane", name="Jane Rep", email="jane@example.com", phone_number="+15559998888")
    db.add(rep)
    db.commit()
    return rep
