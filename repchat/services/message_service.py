from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from repchat.clock import utc_now
from repchat.models import Conversation, Message
from repchat.services.errors import NotFound, ValidationFailed, store_errors
from repchat.services.feed import stage_event
from repchat.services.state_machine import MessageSender


def save_message(
    db: Session,
    conversation: Conversation,
    sender: MessageSender,
    content: str,
    timestamp: Optional[datetime] = None,
) -> Message:
    """Append a message and bump the conversation's last-message markers."""
    message = Message(
        conversation_id=conversation.id,
        sender=sender.value,
        content=content,
        timestamp=timestamp or utc_now(),
        delivered_to=[],
        read_by=[],
    )
    with store_errors("save_message"):
        db.add(message)
        conversation.last_message_at = message.timestamp
        conversation.last_message_sender = sender.value
        db.flush()

    stage_event(db, conversation.id, "message_added", message_id=str(message.id), sender=sender.value)
    return message


def list_messages(db: Session, conversation_id: UUID) -> list[Message]:
    """Messages in timestamp order; equal timestamps keep insertion order."""
    with store_errors("list_messages"):
        return (
            db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.timestamp.asc(), Message.seq.asc())
            .all()
        )


def edit_message(db: Session, conversation_id: UUID, message_id: UUID, new_content: str) -> Message:
    """Replace content only; id, sender and timestamp never change."""
    new_content = (new_content or "").strip()
    if not new_content:
        raise ValidationFailed("Message content cannot be empty")

    with store_errors("edit_message"):
        message = (
            db.query(Message)
            .filter(Message.id == message_id, Message.conversation_id == conversation_id)
            .first()
        )
    if not message:
        raise NotFound(f"Message {message_id} not found in conversation {conversation_id}")

    message.content = new_content
    message.edited = True
    message.edited_at = utc_now()
    db.flush()
    stage_event(db, conversation_id, "message_edited", message_id=str(message.id))
    return message
