from typing import Optional, Protocol

from repchat.config import settings
from repchat.logging_config import get_logger
from repchat.services.errors import ExternalIntegrationFailed
from repchat.services.twilio_service import TwilioService, get_twilio_service

logger = get_logger("notification_service")

PURCHASE_MARKER = "purchasing"


class Notifier(Protocol):
    def send(self, rep_phone: str, text: str) -> None: ...


class SmsNotifier:
    """Sends rep notifications as plain SMS from the service number."""

    def __init__(self, twilio: Optional[TwilioService], from_number: Optional[str]):
        self.twilio = twilio
        self.from_number = from_number

    def send(self, rep_phone: str, text: str) -> None:
        if not self.twilio or not self.from_number:
            raise ExternalIntegrationFailed("Twilio is not configured")
        self.twilio.send_sms(rep_phone, self.from_number, text)
        logger.info(f"Notified rep {rep_phone}")


def get_notifier() -> Notifier:
    return SmsNotifier(get_twilio_service(), settings.twilio_phone_number)


def has_purchase_intent(interests: Optional[list[str]]) -> bool:
    return any(PURCHASE_MARKER in (interest or "").lower() for interest in interests or [])


def format_transfer_notification(customer_name: Optional[str], intake_answers: dict) -> str:
    """Format the SMS a rep receives when a chat moves from AI to a human."""
    name = customer_name or "A customer"
    goals = intake_answers.get("goals") or []
    interests = intake_answers.get("interest") or []
    stage = intake_answers.get("stage")

    text = f"🔔 {name} has transferred from AI to human chat."
    if has_purchase_intent(interests):
        text += " 💰 PURCHASE INTENT detected!"
    text += f"\n\nGoals: {', '.join(goals) or 'N/A'}"
    text += f"\nStage: {stage or 'N/A'}"
    text += f"\nInterests: {', '.join(interests) or 'N/A'}"
    return text
