"""Conversation identity resolution.

One live thread per (customer, rep) pair. Resolution is a plain
check-then-act against the store with no uniqueness constraint: two
concurrent first contacts can both create a conversation. That race is
repaired after the fact by the merge engine, so nothing here retries or
locks.
"""

from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from repchat.clock import as_utc, utc_now
from repchat.logging_config import get_logger
from repchat.models import Conversation
from repchat.schemas.identity import CustomerIdentity, InstagramIdentity, storage_key
from repchat.services.errors import NotFound, ValidationFailed, store_errors
from repchat.services.feed import stage_event
from repchat.services.state_machine import ChatMode, ConversationStatus

logger = get_logger("conversation_service")

RESOLUTION_ORDER = (
    (ConversationStatus.ACTIVE,),
    (ConversationStatus.ARCHIVED,),
    (ConversationStatus.ENDED, ConversationStatus.CLOSED),
)


@dataclass
class ConversationHandle:
    conversation: Conversation
    is_existing: bool

    @property
    def needs_reactivation(self) -> bool:
        return self.conversation.status != ConversationStatus.ACTIVE.value


def newest_first_key(conversation: Conversation) -> tuple:
    """Latest created_at first; equal timestamps fall back to the smaller id."""
    return (-as_utc(conversation.created_at).timestamp(), str(conversation.id))


def pick_latest(conversations: Iterable[Conversation]) -> Optional[Conversation]:
    ordered = sorted(conversations, key=newest_first_key)
    return ordered[0] if ordered else None


def _find(db: Session, customer_key: str, rep_phone: str, statuses) -> Optional[Conversation]:
    rows = (
        db.query(Conversation)
        .filter(
            Conversation.customer_phone == customer_key,
            Conversation.rep_phone == rep_phone,
            Conversation.status.in_([s.value for s in statuses]),
        )
        .all()
    )
    return pick_latest(rows)


def find_conversation(db: Session, customer: CustomerIdentity, rep_phone: str) -> Optional[Conversation]:
    """Active match, else newest archived, else newest ended/closed."""
    customer_key = storage_key(customer)
    with store_errors("find_conversation"):
        for statuses in RESOLUTION_ORDER:
            conversation = _find(db, customer_key, rep_phone, statuses)
            if conversation:
                return conversation
    return None


def resolve(
    db: Session,
    customer: CustomerIdentity,
    rep_phone: str,
    chat_mode: ChatMode = ChatMode.AI,
    customer_info: Optional[dict] = None,
) -> ConversationHandle:
    """Find the authoritative conversation for the pair, or create it.

    A non-active match is returned as a reactivation candidate; the caller
    decides whether to call reactivate().
    """
    existing = find_conversation(db, customer, rep_phone)
    if existing:
        return ConversationHandle(conversation=existing, is_existing=True)

    conversation = Conversation(
        customer_phone=storage_key(customer),
        instagram_handle=customer.handle if isinstance(customer, InstagramIdentity) else None,
        rep_phone=rep_phone,
        chat_mode=chat_mode.value,
        status=ConversationStatus.ACTIVE.value,
        customer_info=customer_info,
        typing_users=[],
        created_at=utc_now(),
    )
    with store_errors("resolve"):
        db.add(conversation)
        db.flush()

    logger.info(
        f"Created conversation {conversation.id}",
        extra={"context": {"rep_phone": rep_phone, "chat_mode": chat_mode.value}},
    )
    return ConversationHandle(conversation=conversation, is_existing=False)


def reactivate(db: Session, conversation: Conversation) -> Conversation:
    if conversation.status != ConversationStatus.ACTIVE.value:
        old_status = conversation.status
        conversation.status = ConversationStatus.ACTIVE.value
        db.flush()
        stage_event(db, conversation.id, "status_changed", old=old_status, new=conversation.status)
        logger.info(f"Reactivated conversation {conversation.id} from {old_status}")
    return conversation


def get_conversation(db: Session, conversation_id: UUID) -> Conversation:
    with store_errors("get_conversation"):
        conversation = db.get(Conversation, conversation_id)
    if not conversation:
        raise NotFound(f"Conversation {conversation_id} not found")
    return conversation


def find_active_human_conversation(db: Session, rep_phone: str, customer_phone: str) -> Optional[Conversation]:
    """Active HUMAN-mode conversation for an inbound SMS from a rep."""
    with store_errors("find_active_human_conversation"):
        rows = (
            db.query(Conversation)
            .filter(
                Conversation.rep_phone == rep_phone,
                Conversation.customer_phone == customer_phone,
                Conversation.chat_mode == ChatMode.HUMAN.value,
                Conversation.status == ConversationStatus.ACTIVE.value,
            )
            .all()
        )
    return pick_latest(rows)


def find_by_bridge_ref(db: Session, bridge_ref: str) -> Optional[Conversation]:
    with store_errors("find_by_bridge_ref"):
        rows = (
            db.query(Conversation)
            .filter(Conversation.bridge_ref == bridge_ref, Conversation.status == ConversationStatus.ACTIVE.value)
            .all()
        )
    return pick_latest(rows)


def _set_status(db: Session, conversation: Conversation, status: ConversationStatus) -> None:
    old_status = conversation.status
    conversation.status = status.value
    db.flush()
    stage_event(db, conversation.id, "status_changed", old=old_status, new=status.value)


def end_conversation(db: Session, conversation_id: UUID) -> Conversation:
    conversation = get_conversation(db, conversation_id)
    if conversation.status == ConversationStatus.ENDED.value:
        raise ValidationFailed("Conversation already ended")
    _set_status(db, conversation, ConversationStatus.ENDED)
    return conversation


def set_archived(db: Session, conversation_id: UUID, archive: bool) -> Conversation:
    """Archive, or unarchive into 'ended' (the next contact reactivates it)."""
    conversation = get_conversation(db, conversation_id)
    _set_status(db, conversation, ConversationStatus.ARCHIVED if archive else ConversationStatus.ENDED)
    return conversation


def set_typing(db: Session, conversation_id: UUID, participant_id: str, is_typing: bool) -> list[str]:
    conversation = get_conversation(db, conversation_id)
    typing_users = list(conversation.typing_users or [])
    if is_typing and participant_id not in typing_users:
        typing_users.append(participant_id)
    elif not is_typing and participant_id in typing_users:
        typing_users.remove(participant_id)
    else:
        return typing_users

    conversation.typing_users = typing_users
    db.flush()
    stage_event(db, conversation.id, "typing_changed", typing_users=typing_users)
    return typing_users


def list_conversations(
    db: Session,
    status: Optional[str] = None,
    rep_phone: Optional[str] = None,
    limit: int = 100,
) -> list[Conversation]:
    query = db.query(Conversation)
    if status:
        query = query.filter(Conversation.status == status)
    if rep_phone:
        query = query.filter(Conversation.rep_phone == rep_phone)
    with store_errors("list_conversations"):
        rows = query.all()
    rows.sort(key=lambda c: as_utc(c.last_message_at or c.created_at), reverse=True)
    return rows[:limit]
