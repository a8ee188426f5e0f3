from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ConversationSummary(BaseModel):
    id: UUID
    customer: str
    channel: str
    customer_name: str
    rep_phone: str
    chat_mode: str
    status: str
    has_potential_sale: bool = False
    sale_status: Optional[str] = None
    sale_id: Optional[UUID] = None
    last_message_at: Optional[datetime] = None
    last_message_sender: Optional[str] = None
    has_unread: bool = False
    created_at: datetime


class ConversationListResponse(BaseModel):
    conversations: list[ConversationSummary]


class ArchiveRequest(BaseModel):
    conversation_id: UUID
    archive: bool = True


class EditMessageRequest(BaseModel):
    conversation_id: UUID
    message_id: UUID
    content: str = Field(min_length=1)


class AdminSendMessageRequest(BaseModel):
    conversation_id: UUID
    content: str = Field(min_length=1)


class AdminSendMessageResponse(BaseModel):
    success: bool
    message_id: UUID
    relayed: Optional[bool] = None


class AdminMarkReadRequest(BaseModel):
    conversation_id: UUID
    user_id: str = Field(min_length=1)


class PreviewConversation(BaseModel):
    id: UUID
    status: str
    chat_mode: str
    created_at: datetime
    will_be_kept: bool


class PreviewGroupOut(BaseModel):
    phone_number: str
    rep_phone_number: str
    conversation_count: int
    conversations: list[PreviewConversation]


class MergePreviewResponse(BaseModel):
    total_conversations: int
    duplicate_groups_count: int
    total_duplicates_to_remove: int
    groups: list[PreviewGroupOut]


class MergeGroupOut(BaseModel):
    phone_number: str
    rep_phone_number: str
    kept_conversation_id: UUID
    deleted_conversation_ids: list[UUID]
    messages_moved: int
    reactivated: bool
    error: Optional[str] = None


class MergeResponse(BaseModel):
    success: bool
    merged_count: int
    failed_count: int
    results: list[MergeGroupOut]
