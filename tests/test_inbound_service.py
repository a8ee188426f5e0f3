from unittest.mock import Mock

import pytest

from repchat.models import Conversation, Message, Sale
from repchat.services.errors import ExternalIntegrationFailed, ValidationFailed
from repchat.services.inbound_service import (
    handle_bridge_message,
    handle_customer_message,
    handle_rep_sms,
    log_ai_exchange,
    send_admin_message,
)
from repchat.services.rep_directory import RepDirectory


@pytest.fixture
def bridge():
    return Mock()


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def directory():
    return RepDirectory(ttl_seconds=300)


class TestCustomerMessage:
    def test_ai_mode_saves_without_relay(self, db, make_conversation, directory, bridge, notifier):
        conversation = make_conversation(chat_mode="AI")

        outcome = handle_customer_message(db, conversation.id, "hello", directory, bridge, notifier)

        assert outcome.message.sender == "USER"
        assert outcome.relay.attempted is False
        bridge.relay.assert_not_called()
        notifier.send.assert_not_called()

    def test_inactive_conversation_rejected(self, db, make_conversation, directory, bridge, notifier):
        conversation = make_conversation(status="ended")

        with pytest.raises(ValidationFailed) as exc:
            handle_customer_message(db, conversation.id, "hello", directory, bridge, notifier)
        assert exc.value.message == "Conversation is no longer active"
        assert db.query(Message).count() == 0

    def test_empty_content_rejected(self, db, make_conversation, directory, bridge, notifier):
        conversation = make_conversation()
        with pytest.raises(ValidationFailed):
            handle_customer_message(db, conversation.id, "   ", directory, bridge, notifier)

    def test_sale_keywords_flag_and_create_pending_sale(self, db, make_conversation, directory, bridge, notifier):
        conversation = make_conversation()

        outcome = handle_customer_message(
            db,
            conversation.id,
            "Great, I bought it! Order number 4471, payment processed.",
            directory,
            bridge,
            notifier,
        )

        assert outcome.flagged is True
        assert outcome.pending_sale is not None
        stored = db.get(Conversation, conversation.id)
        assert stored.has_potential_sale is True
        assert stored.sale_id == outcome.pending_sale.id
        assert db.query(Sale).count() == 1

    def test_human_mode_relays_through_bridge(self, db, make_conversation, directory, bridge, notifier):
        conversation = make_conversation(chat_mode="HUMAN", bridge_ref="CH123")

        outcome = handle_customer_message(db, conversation.id, "are you there?", directory, bridge, notifier)

        assert outcome.relay.succeeded is True
        bridge.relay.assert_called_once_with("CH123", "+15551230000", "[+15551230000] are you there?")

    def test_human_mode_without_bridge_forwards_sms(self, db, make_conversation, directory, bridge, notifier):
        conversation = make_conversation(chat_mode="HUMAN")

        handle_customer_message(db, conversation.id, "hi", directory, bridge, notifier)

        notifier.send.assert_called_once_with("+15559998888", "[+15551230000]: hi")

    def test_relay_failure_keeps_message(self, db, make_conversation, directory, bridge, notifier):
        conversation = make_conversation(chat_mode="HUMAN", bridge_ref="CH123")
        bridge.relay.side_effect = ExternalIntegrationFailed("Twilio returned 500")

        outcome = handle_customer_message(db, conversation.id, "hi", directory, bridge, notifier)

        assert outcome.relay.succeeded is False
        assert db.get(Message, outcome.message.id) is not None


class TestRepAndBridgeMessages:
    def test_rep_sms_goes_to_active_human_conversation(self, db, make_conversation):
        conversation = make_conversation(chat_mode="HUMAN")

        message = handle_rep_sms(db, "+15559998888", "+15551230000", "On my way")

        assert message.conversation_id == conversation.id
        assert message.sender == "ADMIN"

    def test_rep_sms_without_conversation(self, db, make_conversation):
        make_conversation(chat_mode="AI")
        assert handle_rep_sms(db, "+15559998888", "+15551230000", "hello?") is None

    def test_bridge_sms_appended(self, db, make_conversation):
        conversation = make_conversation(chat_mode="HUMAN", bridge_ref="CH123")

        message = handle_bridge_message(db, "CH123", "Hi from rep", "SMS")

        assert message.conversation_id == conversation.id
        assert message.sender == "ADMIN"

    def test_bridge_non_sms_ignored(self, db, make_conversation):
        make_conversation(chat_mode="HUMAN", bridge_ref="CH123")
        assert handle_bridge_message(db, "CH123", "echo", "API") is None
        assert db.query(Message).count() == 0


class TestAdminAndAI:
    def test_admin_message_relayed(self, db, make_conversation, bridge):
        conversation = make_conversation(chat_mode="HUMAN", bridge_ref="CH123")

        message, relay = send_admin_message(db, conversation.id, "Thanks!", bridge)

        assert message.sender == "ADMIN"
        assert relay.succeeded is True
        bridge.relay.assert_called_once_with("CH123", "admin", "Thanks!")

    def test_admin_confirming_sale_flags(self, db, make_conversation, bridge):
        conversation = make_conversation()

        send_admin_message(db, conversation.id, "Your order is confirmed, tracking number to follow", bridge)

        assert db.get(Conversation, conversation.id).has_potential_sale is True

    def test_log_ai_exchange(self, db, make_conversation):
        conversation = make_conversation()

        messages = log_ai_exchange(db, conversation.id, "what is BPC?", "BPC-157 is a peptide.")

        assert [m.sender for m in messages] == ["USER", "AI"]
        assert log_ai_exchange(db, conversation.id) == []
