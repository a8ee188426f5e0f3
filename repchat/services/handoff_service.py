"""AI -> HUMAN handoff.

Commits as it goes: the mode flip is durable before any external call, so a
bridge or notifier failure cannot roll it back. Safe to retry: the flip is
a no-op the second time and the bridge is only provisioned while
bridge_ref is unset.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from repchat.logging_config import get_logger
from repchat.models import Conversation, Message
from repchat.schemas.identity import display_name
from repchat.services.bridge_service import BridgeProvisioner
from repchat.services.conversation_service import get_conversation
from repchat.services.errors import store_errors
from repchat.services.feed import stage_event
from repchat.services.message_service import save_message
from repchat.services.notification_service import Notifier, format_transfer_notification
from repchat.services.result import BestEffort
from repchat.services.state_machine import ChatMode, MessageSender, hand_off_to_human

logger = get_logger("handoff_service")

TRANSFER_MESSAGE = "You have been connected to a human representative. They will be with you shortly."


@dataclass
class HandoffOutcome:
    conversation: Conversation
    transfer_message: Message
    bridge: BestEffort[str]
    notification: BestEffort[None]


def _merge_intake(conversation: Conversation, intake_answers: Optional[dict]) -> None:
    info = dict(conversation.customer_info or {})
    if intake_answers:
        merged = dict(info.get("intake_answers") or {})
        merged.update({k: v for k, v in intake_answers.items() if v is not None})
        info["intake_answers"] = merged
    conversation.customer_info = info


def _customer_label(conversation: Conversation) -> str:
    info = conversation.customer_info or {}
    if info.get("first_name"):
        return conversation.customer_name
    return display_name(conversation.customer_identity)


def _provision_bridge(db: Session, conversation: Conversation, bridge: BridgeProvisioner) -> BestEffort[str]:
    if conversation.bridge_ref:
        return BestEffort.skipped(conversation.bridge_ref)

    context = {"conversation_id": str(conversation.id)}
    outcome = BestEffort.run(
        "Bridge provisioning",
        lambda: bridge.provision(conversation.customer_identity, conversation.rep_phone),
        context,
    )
    if not outcome.succeeded:
        return outcome

    def persist() -> str:
        conversation.bridge_ref = outcome.value
        db.commit()
        return outcome.value

    persisted = BestEffort.run("Bridge reference save", persist, context)
    if not persisted.succeeded:
        db.rollback()
    return persisted


def transfer_to_human(
    db: Session,
    conversation_id: UUID,
    intake_answers: Optional[dict],
    bridge: BridgeProvisioner,
    notifier: Notifier,
) -> HandoffOutcome:
    """Switch a conversation to HUMAN mode and tell the customer.

    Raises NotFound, or StoreUnavailable if the mode flip or the transfer
    message cannot be written. Bridge and notification failures come back
    as failed BestEffort values.
    """
    conversation = get_conversation(db, conversation_id)

    old_mode = conversation.chat_mode
    conversation.chat_mode = hand_off_to_human(ChatMode(old_mode)).value
    _merge_intake(conversation, intake_answers)
    if old_mode != conversation.chat_mode:
        stage_event(db, conversation.id, "mode_changed", old=old_mode, new=conversation.chat_mode)
    with store_errors("transfer_to_human"):
        db.commit()
    logger.info(
        f"Conversation {conversation.id} handed off to human",
        extra={"context": {"rep_phone": conversation.rep_phone, "previous_mode": old_mode}},
    )

    bridge_outcome = _provision_bridge(db, conversation, bridge)

    intake = (conversation.customer_info or {}).get("intake_answers") or {}
    text = format_transfer_notification(_customer_label(conversation), intake)
    notification = BestEffort.run(
        "Rep notification",
        lambda: notifier.send(conversation.rep_phone, text),
        {"conversation_id": str(conversation.id), "rep_phone": conversation.rep_phone},
    )

    message = save_message(db, conversation, MessageSender.AI, TRANSFER_MESSAGE)
    with store_errors("transfer_message"):
        db.commit()

    return HandoffOutcome(
        conversation=conversation,
        transfer_message=message,
        bridge=bridge_outcome,
        notification=notification,
    )
