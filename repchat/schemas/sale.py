from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

SaleStatus = Literal["pending_review", "verified", "disputed", "rejected"]


class Actor(BaseModel):
    uid: str = Field(min_length=1)
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class MarkSaleRequest(BaseModel):
    conversation_id: UUID
    sale_amount: Decimal
    product_details: str = ""
    sale_date: Optional[datetime] = None
    notes: Optional[str] = None
    marked_by: Actor


class UpdateSaleRequest(BaseModel):
    actor: Actor
    status: Optional[SaleStatus] = None
    reason: Optional[str] = None
    sale_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    product_details: Optional[str] = None


class SaleOut(BaseModel):
    id: UUID
    conversation_id: UUID
    customer_name: str
    customer_phone: str
    customer_instagram: Optional[str] = None
    channel: str
    commission_rate: Decimal
    sale_amount: Decimal
    commission_amount: Decimal
    product_details: Optional[str] = None
    status: str
    detection_method: str
    detected_keywords: Optional[list[str]] = None
    marked_by: Optional[dict] = None
    rep_info: dict
    sale_date: datetime
    notes: Optional[str] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[dict] = None
    disputed_at: Optional[datetime] = None
    disputed_by: Optional[dict] = None
    dispute_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MarkSaleResponse(BaseModel):
    success: bool
    sale_id: UUID
    commission_amount: Decimal
    evidence_recorded: bool
    audit_recorded: bool


class SalesListResponse(BaseModel):
    sales: list[SaleOut]
    total: int
    limit: int
    offset: int


class EvidenceOut(BaseModel):
    id: UUID
    message_ids: list[str]
    transcript_snapshot: list[dict]
    keywords_found: list[dict]
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditEntryOut(BaseModel):
    id: UUID
    actor: dict
    action: str
    reason: Optional[str] = None
    previous_value: Optional[dict] = None
    new_value: Optional[dict] = None
    timestamp: datetime

    model_config = {"from_attributes": True}


class SaleDetailResponse(BaseModel):
    sale: SaleOut
    evidence: list[EvidenceOut]
    audit_log: list[AuditEntryOut]


class ChannelTotalsOut(BaseModel):
    count: int
    amount: Decimal
    commission: Decimal


class CommissionSummaryResponse(BaseModel):
    period_start: datetime
    period_end: datetime
    total_sales: int
    total_amount: Decimal
    total_commission: Decimal
    by_channel: dict[str, ChannelTotalsOut]
    by_status: dict[str, int]
