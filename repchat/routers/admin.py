"""Admin API endpoints: conversation moderation, duplicate merge, sales review."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from repchat.config import settings
from repchat.database import get_db
from repchat.logging_config import get_logger
from repchat.routers.deps import get_rep_directory, http_error
from repchat.schemas.admin import (
    AdminMarkReadRequest,
    AdminSendMessageRequest,
    AdminSendMessageResponse,
    ArchiveRequest,
    ConversationListResponse,
    ConversationSummary,
    EditMessageRequest,
    MergeGroupOut,
    MergePreviewResponse,
    MergeResponse,
    PreviewConversation,
    PreviewGroupOut,
)
from repchat.schemas.chat import MessageOut, StatusResponse
from repchat.schemas.identity import display_name
from repchat.schemas.sale import (
    AuditEntryOut,
    ChannelTotalsOut,
    CommissionSummaryResponse,
    EvidenceOut,
    MarkSaleRequest,
    MarkSaleResponse,
    SaleDetailResponse,
    SaleOut,
    SalesListResponse,
    UpdateSaleRequest,
)
from repchat.services import sale_service
from repchat.services.bridge_service import BridgeProvisioner, get_bridge_provisioner
from repchat.services.conversation_service import list_conversations, set_archived
from repchat.services.errors import ServiceError
from repchat.services.inbound_service import send_admin_message
from repchat.services.merge_service import merge_duplicates, preview_duplicates
from repchat.services.message_service import edit_message
from repchat.services.rep_directory import RepDirectory
from repchat.services.tracking_service import has_unread, mark_conversation_read, read_status_for_user

logger = get_logger("admin_router")


def _require_admin_token(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    expected = settings.admin_api_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_API_TOKEN not configured")
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(_require_admin_token)])


# === CONVERSATIONS ===


@router.get("/conversations", response_model=ConversationListResponse)
def get_conversations(
    status: Optional[str] = None,
    rep_phone: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    try:
        conversations = list_conversations(db, status=status, rep_phone=rep_phone, limit=limit)
        read_status = read_status_for_user(db, user_id, [c.id for c in conversations]) if user_id else {}
    except ServiceError as e:
        raise http_error(e)

    return ConversationListResponse(
        conversations=[
            ConversationSummary(
                id=c.id,
                customer=display_name(c.customer_identity),
                channel=c.channel,
                customer_name=c.customer_name,
                rep_phone=c.rep_phone,
                chat_mode=c.chat_mode,
                status=c.status,
                has_potential_sale=bool(c.has_potential_sale),
                sale_status=c.sale_status,
                sale_id=c.sale_id,
                last_message_at=c.last_message_at,
                last_message_sender=c.last_message_sender,
                has_unread=has_unread(c, read_status.get(c.id)) if user_id else False,
                created_at=c.created_at,
            )
            for c in conversations
        ]
    )


@router.post("/archive-conversation", response_model=StatusResponse)
def archive_conversation(request: ArchiveRequest, db: Session = Depends(get_db)):
    try:
        conversation = set_archived(db, request.conversation_id, request.archive)
        db.commit()
    except ServiceError as e:
        raise http_error(e)
    return StatusResponse(success=True, conversation_id=conversation.id, status=conversation.status)


@router.post("/edit-message", response_model=MessageOut)
def edit(request: EditMessageRequest, db: Session = Depends(get_db)):
    try:
        message = edit_message(db, request.conversation_id, request.message_id, request.content)
        db.commit()
    except ServiceError as e:
        raise http_error(e)
    return MessageOut(
        id=message.id,
        sender=message.sender,
        content=message.content,
        timestamp=message.timestamp,
        delivered_to=list(message.delivered_to or []),
        read_by=list(message.read_by or []),
        edited=True,
        edited_at=message.edited_at,
    )


@router.post("/send-message", response_model=AdminSendMessageResponse)
def admin_send_message(
    request: AdminSendMessageRequest,
    db: Session = Depends(get_db),
    bridge: BridgeProvisioner = Depends(get_bridge_provisioner),
):
    try:
        message, relay = send_admin_message(db, request.conversation_id, request.content, bridge)
    except ServiceError as e:
        raise http_error(e)
    return AdminSendMessageResponse(
        success=True,
        message_id=message.id,
        relayed=relay.succeeded if relay.attempted else None,
    )


@router.post("/mark-read")
def admin_mark_read(request: AdminMarkReadRequest, db: Session = Depends(get_db)):
    try:
        status = mark_conversation_read(db, request.conversation_id, request.user_id)
        db.commit()
    except ServiceError as e:
        raise http_error(e)
    return {"success": True, "last_read_at": status.last_read_at}


# === MERGE ===


@router.get("/merge-conversations", response_model=MergePreviewResponse)
def merge_preview(db: Session = Depends(get_db)):
    """Dry run: which conversations would be merged and which one survives."""
    try:
        report = preview_duplicates(db)
    except ServiceError as e:
        raise http_error(e)

    return MergePreviewResponse(
        total_conversations=report.total_conversations,
        duplicate_groups_count=report.duplicate_groups_count,
        total_duplicates_to_remove=report.total_duplicates_to_remove,
        groups=[
            PreviewGroupOut(
                phone_number=group.customer_phone,
                rep_phone_number=group.rep_phone,
                conversation_count=group.conversation_count,
                conversations=[
                    PreviewConversation(
                        id=entry.id,
                        status=entry.status,
                        chat_mode=entry.chat_mode,
                        created_at=entry.created_at,
                        will_be_kept=entry.will_be_kept,
                    )
                    for entry in group.conversations
                ],
            )
            for group in report.duplicate_groups
        ],
    )


@router.post("/merge-conversations", response_model=MergeResponse)
def merge_conversations(db: Session = Depends(get_db)):
    try:
        report = merge_duplicates(db)
    except ServiceError as e:
        raise http_error(e)

    logger.info(
        "Merge run finished",
        extra={"context": {"merged": report.merged_count, "failed": report.failed_count}},
    )
    return MergeResponse(
        success=report.failed_count == 0,
        merged_count=report.merged_count,
        failed_count=report.failed_count,
        results=[
            MergeGroupOut(
                phone_number=group.customer_phone,
                rep_phone_number=group.rep_phone,
                kept_conversation_id=group.surviving_id,
                deleted_conversation_ids=group.deleted_ids,
                messages_moved=group.messages_moved,
                reactivated=group.reactivated,
                error=group.error,
            )
            for group in report.groups
        ],
    )


# === SALES ===


@router.post("/sales", response_model=MarkSaleResponse, status_code=201)
def mark_sale(
    request: MarkSaleRequest,
    db: Session = Depends(get_db),
    rep_directory: RepDirectory = Depends(get_rep_directory),
):
    try:
        outcome = sale_service.mark_sale(
            db,
            request.conversation_id,
            request.sale_amount,
            request.marked_by.model_dump(exclude_none=True),
            rep_directory,
            product_details=request.product_details,
            sale_date=request.sale_date,
            notes=request.notes,
        )
    except ServiceError as e:
        raise http_error(e)

    return MarkSaleResponse(
        success=True,
        sale_id=outcome.sale.id,
        commission_amount=outcome.sale.commission_amount,
        evidence_recorded=outcome.evidence.succeeded,
        audit_recorded=outcome.audit.succeeded,
    )


@router.get("/sales", response_model=SalesListResponse)
def get_sales(
    channel: Optional[str] = None,
    status: Optional[str] = None,
    rep_phone: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    try:
        sales, total = sale_service.list_sales(
            db,
            channel=channel,
            status=status,
            rep_phone=rep_phone,
            start=start_date,
            end=end_date,
            limit=limit,
            offset=offset,
        )
    except ServiceError as e:
        raise http_error(e)
    return SalesListResponse(
        sales=[SaleOut.model_validate(s) for s in sales],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/sales/summary", response_model=CommissionSummaryResponse)
def get_sales_summary(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    rep_phone: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Commission totals; the period defaults to the current calendar month."""
    try:
        summary = sale_service.commission_summary(db, start=start_date, end=end_date, rep_phone=rep_phone)
    except ServiceError as e:
        raise http_error(e)

    return CommissionSummaryResponse(
        period_start=summary.period_start,
        period_end=summary.period_end,
        total_sales=summary.total_sales,
        total_amount=summary.total_amount,
        total_commission=summary.total_commission,
        by_channel={
            channel: ChannelTotalsOut(count=t.count, amount=t.amount, commission=t.commission)
            for channel, t in summary.by_channel.items()
        },
        by_status=summary.by_status,
    )


@router.get("/sales/{sale_id}", response_model=SaleDetailResponse)
def get_sale(sale_id: UUID, db: Session = Depends(get_db)):
    try:
        sale, evidence, audit_log = sale_service.get_sale_detail(db, sale_id)
    except ServiceError as e:
        raise http_error(e)
    return SaleDetailResponse(
        sale=SaleOut.model_validate(sale),
        evidence=[EvidenceOut.model_validate(e) for e in evidence],
        audit_log=[AuditEntryOut.model_validate(a) for a in audit_log],
    )


@router.put("/sales/{sale_id}", response_model=SaleOut)
def update_sale(sale_id: UUID, request: UpdateSaleRequest, db: Session = Depends(get_db)):
    try:
        sale = sale_service.update_sale(
            db,
            sale_id,
            request.actor.model_dump(exclude_none=True),
            status=request.status,
            reason=request.reason,
            sale_amount=request.sale_amount,
            notes=request.notes,
            product_details=request.product_details,
        )
        db.commit()
    except ServiceError as e:
        raise http_error(e)
    return SaleOut.model_validate(sale)
