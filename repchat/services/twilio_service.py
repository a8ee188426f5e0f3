import base64
import hashlib
import hmac
from typing import Optional

import httpx

from repchat.config import settings
from repchat.logging_config import get_logger
from repchat.services.errors import ExternalIntegrationFailed

logger = get_logger("twilio_service")


class TwilioService:
    """Thin client for the Twilio REST endpoints used for SMS and Conversations."""

    API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}"
    CONVERSATIONS_URL = "https://conversations.twilio.com/v1"

    def __init__(self, account_sid: str, auth_token: str, timeout: Optional[float] = None):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.api_url = self.API_URL.format(sid=account_sid)
        self.timeout = timeout if timeout is not None else settings.external_timeout_seconds

    def _make_request(self, url: str, data: dict) -> dict:
        """POST form data to Twilio. Raises ExternalIntegrationFailed on any failure, including timeouts."""
        try:
            with httpx.Client(timeout=self.timeout, auth=(self.account_sid, self.auth_token)) as client:
                response = client.post(url, data=data)
        except httpx.HTTPError as e:
            logger.error(f"Twilio API error: {e}")
            raise ExternalIntegrationFailed(f"Twilio request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Twilio API returned {response.status_code}: {response.text}")
            raise ExternalIntegrationFailed(f"Twilio returned {response.status_code}")
        return response.json()

    def send_sms(self, to: str, from_: str, body: str) -> str:
        """Send an SMS. Returns the message SID."""
        result = self._make_request(f"{self.api_url}/Messages.json", {"To": to, "From": from_, "Body": body})
        return result["sid"]

    def create_conversation(self, friendly_name: str) -> str:
        result = self._make_request(f"{self.CONVERSATIONS_URL}/Conversations", {"FriendlyName": friendly_name})
        return result["sid"]

    def add_sms_participant(self, conversation_sid: str, phone_number: str, proxy_address: str) -> str:
        result = self._make_request(
            f"{self.CONVERSATIONS_URL}/Conversations/{conversation_sid}/Participants",
            {
                "MessagingBinding.Address": phone_number,
                "MessagingBinding.ProxyAddress": proxy_address,
            },
        )
        return result["sid"]

    def add_chat_participant(self, conversation_sid: str, identity: str) -> str:
        result = self._make_request(
            f"{self.CONVERSATIONS_URL}/Conversations/{conversation_sid}/Participants",
            {"Identity": identity},
        )
        return result["sid"]

    def send_conversation_message(self, conversation_sid: str, author: str, body: str) -> str:
        result = self._make_request(
            f"{self.CONVERSATIONS_URL}/Conversations/{conversation_sid}/Messages",
            {"Author": author, "Body": body},
        )
        return result["sid"]


def get_twilio_service() -> Optional[TwilioService]:
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        return None
    return TwilioService(settings.twilio_account_sid, settings.twilio_auth_token)


def compute_signature(auth_token: str, url: str, params: dict[str, str]) -> str:
    """Twilio request signature: HMAC-SHA1 over the URL followed by sorted key/value pairs."""
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_signature(auth_token: str, url: str, params: dict[str, str], signature: Optional[str]) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(auth_token, url, params), signature)
