from typing import Optional, Protocol

from repchat.clock import utc_now
from repchat.config import settings
from repchat.logging_config import get_logger
from repchat.schemas.identity import CustomerIdentity, storage_key
from repchat.services.errors import ExternalIntegrationFailed
from repchat.services.twilio_service import TwilioService, get_twilio_service

logger = get_logger("bridge_service")


class BridgeProvisioner(Protocol):
    def provision(self, customer: CustomerIdentity, rep_phone: str) -> str: ...

    def add_participant(self, bridge_ref: str, identity: str) -> None: ...

    def relay(self, bridge_ref: str, author: str, body: str) -> None: ...


class TwilioBridgeProvisioner:
    """Live SMS relay between the rep's phone and the chat, backed by a Twilio Conversation."""

    def __init__(self, twilio: Optional[TwilioService], proxy_number: Optional[str]):
        self.twilio = twilio
        self.proxy_number = proxy_number

    def _client(self) -> TwilioService:
        if not self.twilio or not self.proxy_number:
            raise ExternalIntegrationFailed("Twilio is not configured")
        return self.twilio

    def provision(self, customer: CustomerIdentity, rep_phone: str) -> str:
        twilio = self._client()
        customer_key = storage_key(customer)
        bridge_ref = twilio.create_conversation(f"Transfer-{customer_key}-{int(utc_now().timestamp() * 1000)}")
        twilio.add_sms_participant(bridge_ref, rep_phone, self.proxy_number)
        self.add_participant(bridge_ref, customer_key)
        logger.info(f"Provisioned bridge {bridge_ref} for {customer_key}")
        return bridge_ref

    def add_participant(self, bridge_ref: str, identity: str) -> None:
        self._client().add_chat_participant(bridge_ref, identity)

    def relay(self, bridge_ref: str, author: str, body: str) -> None:
        self._client().send_conversation_message(bridge_ref, author, body)


def get_bridge_provisioner() -> BridgeProvisioner:
    return TwilioBridgeProvisioner(get_twilio_service(), settings.twilio_phone_number)
