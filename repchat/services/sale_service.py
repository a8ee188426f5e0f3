"""Sale ledger: manual marking, auto-detected pending sales, review and commission summary.

Channel and commission rate are frozen on the Sale when it is created; later
edits to the conversation never touch them. The audit log, not a state
machine, is the history of a sale: any status may follow any other.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from repchat.clock import utc_now
from repchat.logging_config import get_logger
from repchat.models import AuditEntry, Conversation, Message, Sale, SaleEvidence
from repchat.services import audit_service
from repchat.services.conversation_service import get_conversation
from repchat.services.errors import NotFound, ValidationFailed, store_errors
from repchat.services.message_service import list_messages
from repchat.services.rep_directory import RepDirectory
from repchat.services.result import BestEffort
from repchat.services.sale_detection import (
    KeywordScore,
    calculate_commission,
    commission_for,
    extract_keyword_context,
    round_money,
    score,
    should_create_pending_sale,
    should_flag_potential_sale,
)

logger = get_logger("sale_service")

SALE_STATUSES = ("pending_review", "verified", "disputed", "rejected")
COUNTED_STATUSES = ("verified", "pending_review")
SUMMARY_STATUSES = ("pending_review", "verified", "disputed")
CHANNELS = ("website", "instagram")

Money = Union[Decimal, float, int, str]


@dataclass
class MarkSaleOutcome:
    sale: Sale
    evidence: BestEffort[SaleEvidence]
    audit: BestEffort[AuditEntry]


@dataclass
class ChannelTotals:
    count: int = 0
    amount: Decimal = Decimal("0.00")
    commission: Decimal = Decimal("0.00")


@dataclass
class CommissionSummary:
    period_start: datetime
    period_end: datetime
    total_sales: int = 0
    total_amount: Decimal = Decimal("0.00")
    total_commission: Decimal = Decimal("0.00")
    by_channel: dict[str, ChannelTotals] = field(default_factory=lambda: {c: ChannelTotals() for c in CHANNELS})
    by_status: dict[str, int] = field(default_factory=lambda: {s: 0 for s in SUMMARY_STATUSES})


def get_sale(db: Session, sale_id: UUID) -> Sale:
    with store_errors("get_sale"):
        sale = db.get(Sale, sale_id)
    if not sale:
        raise NotFound(f"Sale {sale_id} not found")
    return sale


def _rep_snapshot(db: Session, rep_directory: RepDirectory, rep_phone: str) -> dict:
    info = rep_directory.get_by_phone(db, rep_phone)
    if info:
        return info.snapshot()
    return {"rep_id": None, "name": "Unknown Rep", "phone_number": rep_phone}


def _money_snapshot(sale: Sale) -> dict:
    return {"status": sale.status, "sale_amount": float(sale.sale_amount)}


def _build_evidence(sale: Sale, messages: list[Message]) -> SaleEvidence:
    transcript = []
    keywords_found = []
    for message in messages:
        transcript.append(
            {
                "id": str(message.id),
                "sender": message.sender,
                "content": message.content,
                "timestamp": message.timestamp.isoformat() if message.timestamp else None,
            }
        )
        for keyword in score(message.content).keywords:
            keywords_found.append(
                {
                    "keyword": keyword,
                    "message_id": str(message.id),
                    "context": extract_keyword_context(message.content, keyword),
                }
            )

    return SaleEvidence(
        sale_id=sale.id,
        conversation_id=sale.conversation_id,
        message_ids=[entry["id"] for entry in transcript],
        transcript_snapshot=transcript,
        keywords_found=keywords_found,
        created_at=utc_now(),
    )


def mark_sale(
    db: Session,
    conversation_id: UUID,
    amount: Money,
    actor: dict,
    rep_directory: RepDirectory,
    product_details: str = "",
    sale_date: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> MarkSaleOutcome:
    """Record a sale a rep or admin closed by hand.

    The Sale and the conversation's reference to it are committed first and
    are the guarantee. Evidence and audit are then written separately; a
    failure there is logged and returned, the Sale stays.
    """
    try:
        amount = round_money(amount)
    except ArithmeticError:
        raise ValidationFailed("Sale amount must be a number")
    if amount <= 0:
        raise ValidationFailed("Sale amount must be greater than 0")

    conversation = get_conversation(db, conversation_id)
    channel = conversation.channel
    rate, commission = calculate_commission(amount, channel)
    identity = conversation.customer_identity

    sale = Sale(
        conversation_id=conversation.id,
        customer_name=conversation.customer_name,
        customer_phone=conversation.customer_phone,
        customer_instagram=identity.handle if channel == "instagram" else None,
        channel=channel,
        commission_rate=rate,
        sale_amount=amount,
        commission_amount=commission,
        product_details=product_details or "",
        status="pending_review",
        detection_method="manual",
        marked_by=actor,
        rep_info=_rep_snapshot(db, rep_directory, conversation.rep_phone),
        sale_date=sale_date or utc_now(),
        notes=notes,
        created_at=utc_now(),
        updated_at=utc_now(),
    )
    with store_errors("mark_sale"):
        db.add(sale)
        db.flush()
        conversation.has_potential_sale = True
        conversation.sale_status = "marked"
        conversation.sale_id = sale.id
        db.commit()

    logger.info(
        f"Sale {sale.id} marked on conversation {conversation.id}",
        extra={"context": {"channel": channel, "amount": str(amount), "commission": str(commission)}},
    )

    context = {"sale_id": str(sale.id)}

    def write_evidence() -> SaleEvidence:
        evidence = _build_evidence(sale, list_messages(db, conversation.id))
        db.add(evidence)
        db.commit()
        return evidence

    evidence = BestEffort.run("Sale evidence", write_evidence, context)
    if not evidence.succeeded:
        db.rollback()

    def write_audit() -> AuditEntry:
        entry = audit_service.record(
            db, sale.id, actor, "created", "Manual sale marking", None, _money_snapshot(sale)
        )
        db.commit()
        return entry

    audit = BestEffort.run("Sale audit", write_audit, context)
    if not audit.succeeded:
        db.rollback()

    return MarkSaleOutcome(sale=sale, evidence=evidence, audit=audit)


def _apply_status(db: Session, sale: Sale, new_status: str, reason: Optional[str], actor: dict) -> None:
    now = utc_now()
    sale.status = new_status
    conversation = db.get(Conversation, sale.conversation_id)

    if new_status == "verified":
        sale.verified_at = now
        sale.verified_by = actor
        if conversation and conversation.sale_id == sale.id:
            conversation.sale_status = "verified"
    elif new_status == "disputed":
        sale.disputed_at = now
        sale.disputed_by = actor
        sale.dispute_reason = reason
    elif new_status == "rejected":
        if conversation and conversation.sale_id == sale.id:
            conversation.sale_id = None
            conversation.sale_status = None


def update_sale(
    db: Session,
    sale_id: UUID,
    actor: dict,
    status: Optional[str] = None,
    reason: Optional[str] = None,
    sale_amount: Optional[Money] = None,
    notes: Optional[str] = None,
    product_details: Optional[str] = None,
) -> Sale:
    """Review edit of a sale. Appends one audit entry when status or amount changes.

    A status change needs a reason. An amount change recomputes commission
    from the rate frozen on the sale.
    """
    sale = get_sale(db, sale_id)

    if status is not None and status not in SALE_STATUSES:
        raise ValidationFailed(f"Invalid sale status: {status}")
    status_changed = status is not None and status != sale.status
    if status_changed and not (reason or "").strip():
        raise ValidationFailed("A reason is required when changing sale status")

    new_amount = None
    if sale_amount is not None:
        new_amount = round_money(sale_amount)
        if new_amount <= 0:
            raise ValidationFailed("Sale amount must be greater than 0")
    amount_changed = new_amount is not None and new_amount != sale.sale_amount

    previous = _money_snapshot(sale)

    if status_changed:
        _apply_status(db, sale, status, reason, actor)
    if amount_changed:
        sale.sale_amount = new_amount
        sale.commission_amount = commission_for(new_amount, sale.commission_rate)
    if notes is not None:
        sale.notes = notes
    if product_details is not None:
        sale.product_details = product_details
    sale.updated_at = utc_now()

    with store_errors("update_sale"):
        db.flush()
        if status_changed or amount_changed:
            action = status if status_changed else "amount_changed"
            audit_service.record(db, sale.id, actor, action, reason, previous, _money_snapshot(sale))

    if status_changed:
        logger.info(f"Sale {sale.id} status {previous['status']} -> {status}", extra={"context": {"reason": reason}})
    return sale


def set_sale_status(db: Session, sale_id: UUID, new_status: str, reason: str, actor: dict) -> Sale:
    return update_sale(db, sale_id, actor, status=new_status, reason=reason)


def flag_potential_sale(db: Session, conversation: Conversation, keyword_score: KeywordScore) -> bool:
    """Set the UI flag for a conversation when an inbound message looks like a sale."""
    if not should_flag_potential_sale(keyword_score):
        return False

    conversation.has_potential_sale = True
    if not conversation.sale_status:
        conversation.sale_status = "potential"
    conversation.last_sale_keyword_at = utc_now()
    conversation.sale_keywords_count = (conversation.sale_keywords_count or 0) + len(keyword_score.keywords)
    with store_errors("flag_potential_sale"):
        db.flush()
    return True


def maybe_create_pending_sale(
    db: Session,
    conversation: Conversation,
    keyword_score: KeywordScore,
    rep_directory: RepDirectory,
) -> Optional[Sale]:
    """Draft a pending_review Sale from strong keyword evidence.

    Amount is unknown at this point so the draft carries zero until a
    reviewer sets it. Skipped when the conversation already has a sale.
    """
    if not should_create_pending_sale(keyword_score) or conversation.sale_id:
        return None

    channel = conversation.channel
    rate, _ = calculate_commission(0, channel)
    identity = conversation.customer_identity
    sale = Sale(
        conversation_id=conversation.id,
        customer_name=conversation.customer_name,
        customer_phone=conversation.customer_phone,
        customer_instagram=identity.handle if channel == "instagram" else None,
        channel=channel,
        commission_rate=rate,
        sale_amount=Decimal("0.00"),
        commission_amount=Decimal("0.00"),
        status="pending_review",
        detection_method="auto",
        detected_keywords=list(keyword_score.keywords),
        rep_info=_rep_snapshot(db, rep_directory, conversation.rep_phone),
        sale_date=utc_now(),
        created_at=utc_now(),
        updated_at=utc_now(),
    )
    with store_errors("create_pending_sale"):
        db.add(sale)
        db.flush()
        conversation.sale_id = sale.id
        audit_service.record(
            db,
            sale.id,
            None,
            "created",
            f"Auto-detected ({keyword_score.confidence} confidence)",
            None,
            _money_snapshot(sale),
        )

    logger.info(
        f"Pending sale {sale.id} auto-created on conversation {conversation.id}",
        extra={"context": {"keywords": keyword_score.keywords, "confidence": keyword_score.confidence}},
    )
    return sale


def list_sales(
    db: Session,
    channel: Optional[str] = None,
    status: Optional[str] = None,
    rep_phone: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    query = db.query(Sale)
    if channel:
        query = query.filter(Sale.channel == channel)
    if status:
        query = query.filter(Sale.status == status)
    if rep_phone:
        query = query.join(Conversation, Conversation.id == Sale.conversation_id).filter(
            Conversation.rep_phone == rep_phone
        )
    if start:
        query = query.filter(Sale.sale_date >= start)
    if end:
        query = query.filter(Sale.sale_date < end)

    with store_errors("list_sales"):
        total = query.count()
        rows = query.order_by(Sale.sale_date.desc()).offset(offset).limit(limit).all()
    return rows, total


def month_bounds(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    now = now or utc_now()
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


def commission_summary(
    db: Session,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    rep_phone: Optional[str] = None,
) -> CommissionSummary:
    """Totals over verified and pending sales in [start, end); defaults to the current month."""
    default_start, default_end = month_bounds()
    start = start or default_start
    end = end or default_end

    sales, _ = list_sales(db, rep_phone=rep_phone, start=start, end=end, limit=100000)
    summary = CommissionSummary(period_start=start, period_end=end)

    for sale in sales:
        if sale.status in summary.by_status:
            summary.by_status[sale.status] += 1
        if sale.status not in COUNTED_STATUSES:
            continue
        amount = Decimal(sale.sale_amount)
        commission = Decimal(sale.commission_amount)
        summary.total_sales += 1
        summary.total_amount += amount
        summary.total_commission += commission
        totals = summary.by_channel.setdefault(sale.channel, ChannelTotals())
        totals.count += 1
        totals.amount += amount
        totals.commission += commission

    return summary


def get_sale_detail(db: Session, sale_id: UUID) -> tuple[Sale, list[SaleEvidence], list[AuditEntry]]:
    sale = get_sale(db, sale_id)
    with store_errors("get_sale_detail"):
        evidence = (
            db.query(SaleEvidence)
            .filter(SaleEvidence.sale_id == sale.id)
            .order_by(SaleEvidence.created_at.asc())
            .all()
        )
    return sale, evidence, audit_service.list_entries(db, sale.id)
