"""Delivery and read receipts.

Marks are conversation-scoped and bulk: the triggering events (chat opened,
window focused) concern the whole thread. Every write is a set union, so
concurrent or repeated calls commute and never remove a participant.
"""

from typing import Literal, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from repchat.clock import as_utc, utc_now
from repchat.models import Conversation, ConversationReadStatus, Message
from repchat.services.conversation_service import get_conversation
from repchat.services.errors import store_errors
from repchat.services.feed import stage_event
from repchat.services.message_service import list_messages

MessageStatus = Literal["sent", "delivered", "read"]


def _mark(db: Session, conversation_id: UUID, participant_id: str, field: str, stamp_field: str) -> int:
    get_conversation(db, conversation_id)
    now = utc_now()
    updated = 0

    for message in list_messages(db, conversation_id):
        if message.sender == participant_id:
            continue
        marks = list(getattr(message, field) or [])
        if participant_id in marks:
            continue
        marks.append(participant_id)
        setattr(message, field, marks)
        setattr(message, stamp_field, now)
        updated += 1

    if updated:
        with store_errors(f"mark_{field}"):
            db.flush()
        stage_event(db, conversation_id, "receipts_updated", participant_id=participant_id, field=field, count=updated)
    return updated


def mark_delivered(db: Session, conversation_id: UUID, participant_id: str) -> int:
    """Add participant_id to delivered_to on every message it did not send. Returns the number updated."""
    return _mark(db, conversation_id, participant_id, "delivered_to", "delivered_at")


def mark_read(db: Session, conversation_id: UUID, participant_id: str) -> int:
    """Add participant_id to read_by on every message it did not send. Returns the number updated."""
    return _mark(db, conversation_id, participant_id, "read_by", "read_at")


def message_status(message: Message, recipient: str) -> MessageStatus:
    if recipient in (message.read_by or []):
        return "read"
    if recipient in (message.delivered_to or []):
        return "delivered"
    return "sent"


def mark_conversation_read(db: Session, conversation_id: UUID, user_id: str) -> ConversationReadStatus:
    """Record when an admin user last opened the conversation and mark its messages read for them."""
    get_conversation(db, conversation_id)
    with store_errors("mark_conversation_read"):
        status = db.get(ConversationReadStatus, {"conversation_id": conversation_id, "user_id": user_id})
        if status is None:
            status = ConversationReadStatus(conversation_id=conversation_id, user_id=user_id, last_read_at=utc_now())
            db.add(status)
        else:
            status.last_read_at = utc_now()
        db.flush()
    mark_read(db, conversation_id, user_id)
    return status


def has_unread(conversation: Conversation, last_read: Optional[ConversationReadStatus]) -> bool:
    """Unread when the customer or the AI spoke after the admin last looked."""
    if not conversation.last_message_at or conversation.last_message_sender == "ADMIN":
        return False
    if last_read is None:
        return True
    return as_utc(conversation.last_message_at) > as_utc(last_read.last_read_at)


def read_status_for_user(db: Session, user_id: str, conversation_ids: list[UUID]) -> dict[UUID, ConversationReadStatus]:
    if not conversation_ids:
        return {}
    with store_errors("read_status_for_user"):
        rows = (
            db.query(ConversationReadStatus)
            .filter(
                ConversationReadStatus.user_id == user_id,
                ConversationReadStatus.conversation_id.in_(conversation_ids),
            )
            .all()
        )
    return {row.conversation_id: row for row in rows}
