from unittest.mock import Mock

from repchat.services.feed import ConversationEvent, ConversationFeed, feed
from repchat.services.message_service import save_message
from repchat.services.state_machine import MessageSender


class TestConversationFeed:
    def test_subscriber_receives_own_conversation_only(self):
        local = ConversationFeed()
        callback = Mock()
        local.subscribe("c1", callback)

        local.publish(ConversationEvent("c1", "message_added"))
        local.publish(ConversationEvent("c2", "message_added"))

        assert callback.call_count == 1

    def test_global_subscriber(self):
        local = ConversationFeed()
        callback = Mock()
        local.subscribe(None, callback)

        local.publish(ConversationEvent("c1", "typing_changed"))
        local.publish(ConversationEvent("c2", "status_changed"))

        assert callback.call_count == 2

    def test_unsubscribe(self):
        local = ConversationFeed()
        callback = Mock()
        unsubscribe = local.subscribe("c1", callback)
        unsubscribe()

        local.publish(ConversationEvent("c1", "message_added"))
        callback.assert_not_called()

    def test_failing_subscriber_does_not_block_others(self):
        local = ConversationFeed()
        broken = Mock(side_effect=RuntimeError("socket closed"))
        healthy = Mock()
        local.subscribe("c1", broken)
        local.subscribe("c1", healthy)

        local.publish(ConversationEvent("c1", "message_added"))

        healthy.assert_called_once()


class TestCommitDelivery:
    def test_events_published_after_commit(self, db, make_conversation):
        conversation = make_conversation()
        received = []
        unsubscribe = feed.subscribe(conversation.id, received.append)
        try:
            save_message(db, conversation, MessageSender.USER, "hi")
            assert received == []

            db.commit()
            assert [e.kind for e in received] == ["message_added"]
        finally:
            unsubscribe()

    def test_events_dropped_on_rollback(self, db, make_conversation):
        conversation = make_conversation()
        received = []
        unsubscribe = feed.subscribe(conversation.id, received.append)
        try:
            save_message(db, conversation, MessageSender.USER, "hi")
            db.rollback()
            db.commit()
            assert received == []
        finally:
            unsubscribe()
