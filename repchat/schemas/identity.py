"""Customer identity as captured at the API boundary.

Instagram direct-link customers have no phone number; they share the
conversation key column under a reserved prefix. Only this module knows
about the prefix: everything else works with the tagged union.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from repchat.config import settings

SaleChannel = Literal["website", "instagram"]


def is_reserved_key(value: str) -> bool:
    """True if value would collide with the stored form of an Instagram identity."""
    return value.strip().lower().startswith(settings.instagram_phone_prefix.lower())


class PhoneIdentity(BaseModel):
    kind: Literal["phone"] = "phone"
    phone_number: str = Field(min_length=1)

    @field_validator("phone_number")
    @classmethod
    def reject_reserved_prefix(cls, value: str) -> str:
        if is_reserved_key(value):
            raise ValueError(f"phone number must not start with {settings.instagram_phone_prefix!r}")
        return value


class InstagramIdentity(BaseModel):
    kind: Literal["instagram"] = "instagram"
    handle: str = Field(min_length=1)


CustomerIdentity = Annotated[Union[PhoneIdentity, InstagramIdentity], Field(discriminator="kind")]


def storage_key(identity: CustomerIdentity) -> str:
    """Value stored in Conversation.customer_phone for this identity."""
    if isinstance(identity, InstagramIdentity):
        return f"{settings.instagram_phone_prefix}{identity.handle.lstrip('@').lower()}"
    return identity.phone_number


def identity_from_storage(customer_phone: str, instagram_handle: Optional[str] = None) -> CustomerIdentity:
    if instagram_handle:
        return InstagramIdentity(handle=instagram_handle)
    prefix = settings.instagram_phone_prefix
    if customer_phone and is_reserved_key(customer_phone):
        return InstagramIdentity(handle=customer_phone[len(prefix) :])
    return PhoneIdentity(phone_number=customer_phone)


def channel_of(identity: CustomerIdentity) -> SaleChannel:
    return "instagram" if isinstance(identity, InstagramIdentity) else "website"


def display_name(identity: CustomerIdentity) -> str:
    if isinstance(identity, InstagramIdentity):
        return f"@{identity.handle.lstrip('@')}"
    return identity.phone_number
