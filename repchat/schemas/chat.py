from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from repchat.schemas.identity import CustomerIdentity, InstagramIdentity, PhoneIdentity, is_reserved_key


class IntakeAnswers(BaseModel):
    goals: list[str] = Field(default_factory=list)
    stage: Optional[str] = None
    interest: list[str] = Field(default_factory=list)


class CustomerInfo(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None


class InitChatRequest(BaseModel):
    """Start or resume a chat with a rep.

    The customer is either a phone number or an Instagram handle. A legacy
    client may send both; the handle wins and the phone is ignored.
    """

    rep_id: str = Field(min_length=1)
    user_mobile_number: Optional[str] = None
    user_instagram_handle: Optional[str] = None
    customer_info: Optional[CustomerInfo] = None

    @model_validator(mode="after")
    def require_identity(self) -> "InitChatRequest":
        if not (self.user_mobile_number or "").strip() and not (self.user_instagram_handle or "").strip():
            raise ValueError("user_mobile_number or user_instagram_handle is required")
        if not (self.user_instagram_handle or "").strip() and is_reserved_key(self.user_mobile_number):
            raise ValueError("user_mobile_number uses a reserved prefix")
        return self

    def identity(self) -> CustomerIdentity:
        if self.user_instagram_handle and self.user_instagram_handle.strip():
            return InstagramIdentity(handle=self.user_instagram_handle.strip())
        return PhoneIdentity(phone_number=self.user_mobile_number.strip())


class InitChatResponse(BaseModel):
    conversation_id: UUID
    is_existing: bool
    chat_mode: str
    status: str


class SendMessageRequest(BaseModel):
    conversation_id: UUID
    content: str = Field(min_length=1)


class SendMessageResponse(BaseModel):
    success: bool
    message_id: UUID
    potential_sale: bool = False
    pending_sale_id: Optional[UUID] = None
    relayed: Optional[bool] = None


class LogAIMessageRequest(BaseModel):
    conversation_id: UUID
    user_message: Optional[str] = None
    ai_response: Optional[str] = None


class TransferRequest(BaseModel):
    conversation_id: UUID
    intake_answers: Optional[IntakeAnswers] = None


class SideEffectStatus(BaseModel):
    attempted: bool
    succeeded: bool
    error: Optional[str] = None


class TransferResponse(BaseModel):
    success: bool
    conversation_id: UUID
    chat_mode: str
    message_id: UUID
    bridge: SideEffectStatus
    notification: SideEffectStatus


class ConversationRequest(BaseModel):
    conversation_id: UUID


class ParticipantRequest(BaseModel):
    conversation_id: UUID
    participant_id: str = Field(min_length=1)


class TypingRequest(ParticipantRequest):
    is_typing: bool


class TypingResponse(BaseModel):
    conversation_id: UUID
    typing_users: list[str]


class MarkResponse(BaseModel):
    conversation_id: UUID
    updated: int


class StatusResponse(BaseModel):
    success: bool
    conversation_id: UUID
    status: str


class MessageOut(BaseModel):
    id: UUID
    sender: Literal["USER", "ADMIN", "AI"]
    content: str
    timestamp: datetime
    delivered_to: list[str] = Field(default_factory=list)
    read_by: list[str] = Field(default_factory=list)
    status: Optional[Literal["sent", "delivered", "read"]] = None
    edited: bool = False
    edited_at: Optional[datetime] = None


class MessagesResponse(BaseModel):
    conversation_id: UUID
    chat_mode: str
    status: str
    typing_users: list[str]
    messages: list[MessageOut]
