"""Messages entering a conversation from the customer, the rep or the AI.

Customer messages feed sale detection. In HUMAN mode they are relayed to
the rep through the bridge, or as a plain SMS when no bridge exists. Relay
failures never fail the message.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from repchat.logging_config import get_logger
from repchat.models import Message, Sale
from repchat.schemas.identity import display_name
from repchat.services.bridge_service import BridgeProvisioner
from repchat.services.conversation_service import (
    find_active_human_conversation,
    find_by_bridge_ref,
    get_conversation,
)
from repchat.services.errors import ValidationFailed
from repchat.services.message_service import save_message
from repchat.services.notification_service import Notifier
from repchat.services.rep_directory import RepDirectory
from repchat.services.result import BestEffort
from repchat.services.sale_detection import KeywordScore, score
from repchat.services.sale_service import flag_potential_sale, maybe_create_pending_sale
from repchat.services.state_machine import ChatMode, ConversationStatus, MessageSender

logger = get_logger("inbound_service")

ADMIN_AUTHOR = "admin"
BRIDGE_SMS_SOURCE = "SMS"


@dataclass
class CustomerMessageOutcome:
    message: Message
    keyword_score: KeywordScore
    flagged: bool
    pending_sale: Optional[Sale]
    relay: BestEffort[None]


def _require_text(content: Optional[str]) -> str:
    content = (content or "").strip()
    if not content:
        raise ValidationFailed("Message content cannot be empty")
    return content


def handle_customer_message(
    db: Session,
    conversation_id: UUID,
    content: str,
    rep_directory: RepDirectory,
    bridge: BridgeProvisioner,
    notifier: Notifier,
) -> CustomerMessageOutcome:
    content = _require_text(content)
    conversation = get_conversation(db, conversation_id)
    if conversation.status != ConversationStatus.ACTIVE.value:
        raise ValidationFailed("Conversation is no longer active")

    message = save_message(db, conversation, MessageSender.USER, content)

    keyword_score = score(content)
    flagged = flag_potential_sale(db, conversation, keyword_score)
    pending_sale = maybe_create_pending_sale(db, conversation, keyword_score, rep_directory)
    if flagged:
        logger.info(
            f"Potential sale flagged on {conversation.id}",
            extra={"context": {"keywords": keyword_score.keywords, "confidence": keyword_score.confidence}},
        )
    db.commit()

    relay = BestEffort.skipped()
    if conversation.chat_mode == ChatMode.HUMAN.value:
        author = display_name(conversation.customer_identity)
        context = {"conversation_id": str(conversation.id)}
        if conversation.bridge_ref:
            bridge_ref = conversation.bridge_ref
            relay = BestEffort.run(
                "Bridge relay",
                lambda: bridge.relay(bridge_ref, author, f"[{author}] {content}"),
                context,
            )
        else:
            rep_phone = conversation.rep_phone
            relay = BestEffort.run("SMS forward", lambda: notifier.send(rep_phone, f"[{author}]: {content}"), context)

    return CustomerMessageOutcome(
        message=message,
        keyword_score=keyword_score,
        flagged=flagged,
        pending_sale=pending_sale,
        relay=relay,
    )


def send_admin_message(
    db: Session,
    conversation_id: UUID,
    content: str,
    bridge: BridgeProvisioner,
) -> tuple[Message, BestEffort[None]]:
    """Reply from the dashboard. Reps can confirm sales too, so the text is scored like a customer's."""
    content = _require_text(content)
    conversation = get_conversation(db, conversation_id)

    message = save_message(db, conversation, MessageSender.ADMIN, content)
    flag_potential_sale(db, conversation, score(content))
    db.commit()

    relay = BestEffort.skipped()
    if conversation.bridge_ref:
        bridge_ref = conversation.bridge_ref
        relay = BestEffort.run(
            "Admin relay",
            lambda: bridge.relay(bridge_ref, ADMIN_AUTHOR, content),
            {"conversation_id": str(conversation.id)},
        )
    return message, relay


def handle_rep_sms(db: Session, rep_phone: str, customer_phone: str, body: str) -> Optional[Message]:
    """Inbound SMS from a rep, addressed to the customer's number. None when no live HUMAN chat matches."""
    conversation = find_active_human_conversation(db, rep_phone, customer_phone)
    if not conversation:
        logger.warning(
            "No active human conversation for inbound SMS",
            extra={"context": {"rep_phone": rep_phone, "customer_phone": customer_phone}},
        )
        return None

    message = save_message(db, conversation, MessageSender.ADMIN, body)
    db.commit()
    return message


def handle_bridge_message(db: Session, bridge_ref: str, body: str, source: Optional[str]) -> Optional[Message]:
    """Message added on the bridge. Only SMS-sourced ones come from the rep; the rest are our own relays."""
    if (source or "").upper() != BRIDGE_SMS_SOURCE:
        return None

    conversation = find_by_bridge_ref(db, bridge_ref)
    if not conversation:
        logger.warning("No active conversation for bridge message", extra={"context": {"bridge_ref": bridge_ref}})
        return None

    message = save_message(db, conversation, MessageSender.ADMIN, body)
    db.commit()
    return message


def log_ai_exchange(
    db: Session,
    conversation_id: UUID,
    user_message: Optional[str] = None,
    ai_response: Optional[str] = None,
) -> list[Message]:
    """Record a turn of an AI conversation run by an outside agent."""
    conversation = get_conversation(db, conversation_id)
    messages = []
    if user_message:
        messages.append(save_message(db, conversation, MessageSender.USER, user_message))
    if ai_response:
        messages.append(save_message(db, conversation, MessageSender.AI, ai_response))
    db.commit()
    return messages
