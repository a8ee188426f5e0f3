"""Customer-facing chat endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from repchat.database import get_db
from repchat.logging_config import get_logger
from repchat.routers.deps import get_rep_directory, http_error
from repchat.schemas.chat import (
    ConversationRequest,
    InitChatRequest,
    InitChatResponse,
    LogAIMessageRequest,
    MarkResponse,
    MessageOut,
    MessagesResponse,
    ParticipantRequest,
    SendMessageRequest,
    SendMessageResponse,
    SideEffectStatus,
    StatusResponse,
    TransferRequest,
    TransferResponse,
    TypingRequest,
    TypingResponse,
)
from repchat.services.bridge_service import BridgeProvisioner, get_bridge_provisioner
from repchat.services.conversation_service import end_conversation, get_conversation, reactivate, resolve, set_typing
from repchat.services.errors import ServiceError
from repchat.services.handoff_service import transfer_to_human
from repchat.services.inbound_service import handle_customer_message, log_ai_exchange
from repchat.services.message_service import list_messages, save_message
from repchat.services.notification_service import Notifier, get_notifier
from repchat.services.rep_directory import RepDirectory
from repchat.services.result import BestEffort
from repchat.services.state_machine import ChatMode, MessageSender
from repchat.services.tracking_service import mark_delivered, mark_read, message_status

logger = get_logger("chat_router")

router = APIRouter(tags=["chat"])

AI_WELCOME_MESSAGE = "Hello! I'm your AI assistant. How can I help you today?"


def _side_effect(outcome: BestEffort) -> SideEffectStatus:
    return SideEffectStatus(attempted=outcome.attempted, succeeded=outcome.succeeded, error=outcome.error)


def _init(
    request: InitChatRequest,
    chat_mode: ChatMode,
    response: Response,
    db: Session,
    rep_directory: RepDirectory,
    bridge: Optional[BridgeProvisioner],
) -> InitChatResponse:
    rep_phone = rep_directory.resolve_rep_phone(db, request.rep_id)
    if not rep_phone:
        raise HTTPException(status_code=400, detail="Invalid rep ID")

    customer = request.identity()
    customer_info = request.customer_info.model_dump(exclude_none=True) if request.customer_info else None

    try:
        handle = resolve(db, customer, rep_phone, chat_mode=chat_mode, customer_info=customer_info)
        conversation = handle.conversation
        if handle.needs_reactivation:
            reactivate(db, conversation)
        elif not handle.is_existing and chat_mode == ChatMode.AI:
            save_message(db, conversation, MessageSender.AI, AI_WELCOME_MESSAGE)
        db.commit()
    except ServiceError as e:
        raise http_error(e)

    if not handle.is_existing and bridge is not None:
        outcome = BestEffort.run(
            "Bridge provisioning",
            lambda: bridge.provision(customer, rep_phone),
            {"conversation_id": str(conversation.id)},
        )
        if outcome.succeeded:
            conversation.bridge_ref = outcome.value
            db.commit()

    if not handle.is_existing:
        response.status_code = 201

    return InitChatResponse(
        conversation_id=conversation.id,
        is_existing=handle.is_existing,
        chat_mode=conversation.chat_mode,
        status=conversation.status,
    )


@router.post("/init-chat", response_model=InitChatResponse)
def init_chat(
    request: InitChatRequest,
    response: Response,
    db: Session = Depends(get_db),
    rep_directory: RepDirectory = Depends(get_rep_directory),
    bridge: BridgeProvisioner = Depends(get_bridge_provisioner),
):
    """Start or resume a chat handled by the rep directly."""
    return _init(request, ChatMode.HUMAN, response, db, rep_directory, bridge)


@router.post("/init-ai-chat", response_model=InitChatResponse)
def init_ai_chat(
    request: InitChatRequest,
    response: Response,
    db: Session = Depends(get_db),
    rep_directory: RepDirectory = Depends(get_rep_directory),
):
    """Start or resume a chat that begins with the AI assistant."""
    return _init(request, ChatMode.AI, response, db, rep_directory, None)


@router.post("/send-message", response_model=SendMessageResponse)
def send_message(
    request: SendMessageRequest,
    db: Session = Depends(get_db),
    rep_directory: RepDirectory = Depends(get_rep_directory),
    bridge: BridgeProvisioner = Depends(get_bridge_provisioner),
    notifier: Notifier = Depends(get_notifier),
):
    try:
        outcome = handle_customer_message(db, request.conversation_id, request.content, rep_directory, bridge, notifier)
    except ServiceError as e:
        raise http_error(e)

    return SendMessageResponse(
        success=True,
        message_id=outcome.message.id,
        potential_sale=outcome.flagged,
        pending_sale_id=outcome.pending_sale.id if outcome.pending_sale else None,
        relayed=outcome.relay.succeeded if outcome.relay.attempted else None,
    )


@router.post("/log-ai-message")
def log_ai_message(request: LogAIMessageRequest, db: Session = Depends(get_db)):
    try:
        messages = log_ai_exchange(db, request.conversation_id, request.user_message, request.ai_response)
    except ServiceError as e:
        raise http_error(e)
    return {"success": True, "message_ids": [str(m.id) for m in messages]}


@router.post("/transfer-to-human", response_model=TransferResponse)
def transfer(
    request: TransferRequest,
    db: Session = Depends(get_db),
    bridge: BridgeProvisioner = Depends(get_bridge_provisioner),
    notifier: Notifier = Depends(get_notifier),
):
    """Hand the conversation to the rep. Bridge and notification failures are reported, not raised."""
    intake = request.intake_answers.model_dump(exclude_unset=True) if request.intake_answers else None
    try:
        outcome = transfer_to_human(db, request.conversation_id, intake, bridge, notifier)
    except ServiceError as e:
        logger.error(f"Transfer failed for {request.conversation_id}: {e.message}")
        raise http_error(e)

    return TransferResponse(
        success=True,
        conversation_id=outcome.conversation.id,
        chat_mode=outcome.conversation.chat_mode,
        message_id=outcome.transfer_message.id,
        bridge=_side_effect(outcome.bridge),
        notification=_side_effect(outcome.notification),
    )


@router.post("/end-chat", response_model=StatusResponse)
def end_chat(request: ConversationRequest, db: Session = Depends(get_db)):
    try:
        conversation = end_conversation(db, request.conversation_id)
        db.commit()
    except ServiceError as e:
        raise http_error(e)
    return StatusResponse(success=True, conversation_id=conversation.id, status=conversation.status)


@router.post("/typing", response_model=TypingResponse)
def typing(request: TypingRequest, db: Session = Depends(get_db)):
    try:
        typing_users = set_typing(db, request.conversation_id, request.participant_id, request.is_typing)
        db.commit()
    except ServiceError as e:
        raise http_error(e)
    return TypingResponse(conversation_id=request.conversation_id, typing_users=typing_users)


@router.post("/mark-delivered", response_model=MarkResponse)
def delivered(request: ParticipantRequest, db: Session = Depends(get_db)):
    try:
        updated = mark_delivered(db, request.conversation_id, request.participant_id)
        db.commit()
    except ServiceError as e:
        raise http_error(e)
    return MarkResponse(conversation_id=request.conversation_id, updated=updated)


@router.post("/mark-read", response_model=MarkResponse)
def read(request: ParticipantRequest, db: Session = Depends(get_db)):
    try:
        updated = mark_read(db, request.conversation_id, request.participant_id)
        db.commit()
    except ServiceError as e:
        raise http_error(e)
    return MarkResponse(conversation_id=request.conversation_id, updated=updated)


@router.get("/conversations/{conversation_id}/messages", response_model=MessagesResponse)
def get_messages(conversation_id: UUID, viewer: Optional[str] = None, db: Session = Depends(get_db)):
    """Transcript in order. With ?viewer=<participant>, each message carries its status for that participant."""
    try:
        conversation = get_conversation(db, conversation_id)
        messages = list_messages(db, conversation_id)
    except ServiceError as e:
        raise http_error(e)

    return MessagesResponse(
        conversation_id=conversation.id,
        chat_mode=conversation.chat_mode,
        status=conversation.status,
        typing_users=list(conversation.typing_users or []),
        messages=[
            MessageOut(
                id=m.id,
                sender=m.sender,
                content=m.content,
                timestamp=m.timestamp,
                delivered_to=list(m.delivered_to or []),
                read_by=list(m.read_by or []),
                status=message_status(m, viewer) if viewer else None,
                edited=bool(m.edited),
                edited_at=m.edited_at,
            )
            for m in messages
        ],
    )
