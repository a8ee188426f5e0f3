from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from repchat.config import settings
from repchat.database import get_db
from repchat.main import app
from repchat.models import Conversation, Message
from repchat.routers import webhooks
from repchat.routers.chat import AI_WELCOME_MESSAGE
from repchat.services.bridge_service import get_bridge_provisioner
from repchat.services.errors import ExternalIntegrationFailed, StoreUnavailable
from repchat.services.notification_service import get_notifier
from repchat.services.rep_directory import RepDirectory
from repchat.services.twilio_service import compute_signature

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}
ACTOR = {"uid": "admin-1", "name": "Admin", "role": "admin"}


@pytest.fixture
def bridge():
    bridge = Mock()
    bridge.provision.return_value = "CH123"
    return bridge


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def client(engine, bridge, notifier, monkeypatch):
    session_factory = sessionmaker(bind=engine, autoflush=False)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(settings, "admin_api_token", "test-admin-token")
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_bridge_provisioner] = lambda: bridge
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.state.rep_directory = RepDirectory(ttl_seconds=300, default_phone="+15559998888")
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _init_ai(client, phone="+15551230000"):
    response = client.post("/init-ai-chat", json={"rep_id": "default", "user_mobile_number": phone})
    return response


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestChatEndpoints:
    def test_init_ai_chat_creates_then_reuses(self, client):
        first = _init_ai(client)
        assert first.status_code == 201
        body = first.json()
        assert body["is_existing"] is False
        assert body["chat_mode"] == "AI"

        second = _init_ai(client)
        assert second.status_code == 200
        assert second.json()["conversation_id"] == body["conversation_id"]
        assert second.json()["is_existing"] is True

    def test_init_ai_chat_posts_welcome(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]

        messages = client.get(f"/conversations/{conversation_id}/messages").json()["messages"]
        assert [m["sender"] for m in messages] == ["AI"]

    def test_invalid_rep(self, client):
        response = client.post("/init-chat", json={"rep_id": "ghost", "user_mobile_number": "+15551230000"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid rep ID"

    def test_missing_identity(self, client):
        response = client.post("/init-chat", json={"rep_id": "default"})
        assert response.status_code == 422

    def test_init_chat_instagram_provisions_bridge(self, client, bridge, engine):
        response = client.post("/init-chat", json={"rep_id": "default", "user_instagram_handle": "@Jane"})
        assert response.status_code == 201
        assert response.json()["chat_mode"] == "HUMAN"
        bridge.provision.assert_called_once()

        session = sessionmaker(bind=engine)()
        conversation = session.get(Conversation, UUID(response.json()["conversation_id"]))
        assert conversation.customer_phone == "instagram-jane"
        assert conversation.bridge_ref == "CH123"
        session.close()

    def test_send_message_flags_sale(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]

        response = client.post(
            "/send-message",
            json={"conversation_id": conversation_id, "content": "Great, I bought it! Order number 4471, payment processed."},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["potential_sale"] is True
        assert body["pending_sale_id"] is not None

    def test_send_message_unknown_conversation(self, client):
        response = client.post("/send-message", json={"conversation_id": str(uuid4()), "content": "hi"})
        assert response.status_code == 404

    def test_send_message_to_ended_chat(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]
        assert client.post("/end-chat", json={"conversation_id": conversation_id}).status_code == 200

        response = client.post("/send-message", json={"conversation_id": conversation_id, "content": "hi"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Conversation is no longer active"

    def test_end_chat_twice(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]
        client.post("/end-chat", json={"conversation_id": conversation_id})

        response = client.post("/end-chat", json={"conversation_id": conversation_id})
        assert response.status_code == 400

    def test_transfer_with_failing_bridge(self, client, bridge):
        bridge.provision.side_effect = ExternalIntegrationFailed("Twilio returned 503")
        conversation_id = _init_ai(client).json()["conversation_id"]

        response = client.post(
            "/transfer-to-human",
            json={"conversation_id": conversation_id, "intake_answers": {"interest": ["Purchasing Peptides"]}},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["chat_mode"] == "HUMAN"
        assert body["bridge"] == {"attempted": True, "succeeded": False, "error": "Twilio returned 503"}
        assert body["notification"]["succeeded"] is True

    def test_transfer_retry_with_partial_intake(self, client, notifier, engine):
        conversation_id = _init_ai(client).json()["conversation_id"]
        client.post(
            "/transfer-to-human",
            json={
                "conversation_id": conversation_id,
                "intake_answers": {"goals": ["Recovery"], "interest": ["Purchasing Peptides"]},
            },
        )

        response = client.post(
            "/transfer-to-human",
            json={"conversation_id": conversation_id, "intake_answers": {"stage": "ready"}},
        )

        assert response.status_code == 200
        _, text = notifier.send.call_args[0]
        assert "PURCHASE INTENT" in text
        session = sessionmaker(bind=engine)()
        intake = session.get(Conversation, UUID(conversation_id)).customer_info["intake_answers"]
        assert intake == {"goals": ["Recovery"], "interest": ["Purchasing Peptides"], "stage": "ready"}
        session.close()

    def test_transfer_store_outage_on_mode_flip(self, client, bridge, notifier):
        conversation_id = _init_ai(client).json()["conversation_id"]

        with patch(
            "sqlalchemy.orm.Session.commit",
            side_effect=OperationalError("COMMIT", {}, Exception("server closed")),
        ):
            response = client.post("/transfer-to-human", json={"conversation_id": conversation_id})

        assert response.status_code == 503
        bridge.provision.assert_not_called()
        notifier.send.assert_not_called()
        transcript = client.get(f"/conversations/{conversation_id}/messages").json()
        assert transcript["chat_mode"] == "AI"
        assert [m["content"] for m in transcript["messages"]] == [AI_WELCOME_MESSAGE]

    def test_transfer_store_outage_on_transfer_message(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]

        with patch(
            "repchat.services.handoff_service.save_message",
            side_effect=StoreUnavailable("save_message: store unavailable"),
        ):
            response = client.post("/transfer-to-human", json={"conversation_id": conversation_id})

        assert response.status_code == 503
        transcript = client.get(f"/conversations/{conversation_id}/messages").json()
        assert transcript["chat_mode"] == "HUMAN"
        assert [m["content"] for m in transcript["messages"]] == [AI_WELCOME_MESSAGE]

    def test_prefixed_phone_rejected(self, client):
        response = client.post("/init-chat", json={"rep_id": "default", "user_mobile_number": "instagram-bob"})
        assert response.status_code == 422

    def test_transfer_unknown_conversation(self, client):
        response = client.post("/transfer-to-human", json={"conversation_id": str(uuid4())})
        assert response.status_code == 404

    def test_receipts_and_status_projection(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]

        delivered = client.post("/mark-delivered", json={"conversation_id": conversation_id, "participant_id": "USER"})
        assert delivered.json()["updated"] == 1
        again = client.post("/mark-delivered", json={"conversation_id": conversation_id, "participant_id": "USER"})
        assert again.json()["updated"] == 0

        messages = client.get(f"/conversations/{conversation_id}/messages", params={"viewer": "USER"}).json()
        assert messages["messages"][0]["status"] == "delivered"

        client.post("/mark-read", json={"conversation_id": conversation_id, "participant_id": "USER"})
        messages = client.get(f"/conversations/{conversation_id}/messages", params={"viewer": "USER"}).json()
        assert messages["messages"][0]["status"] == "read"

    def test_typing(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]
        response = client.post(
            "/typing",
            json={"conversation_id": conversation_id, "participant_id": "USER", "is_typing": True},
        )
        assert response.json()["typing_users"] == ["USER"]

    def test_log_ai_message(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]
        response = client.post(
            "/log-ai-message",
            json={"conversation_id": conversation_id, "user_message": "hi", "ai_response": "hello"},
        )
        assert response.status_code == 200
        assert len(response.json()["message_ids"]) == 2


class TestWebhooks:
    def _human_conversation(self, client):
        response = client.post("/init-chat", json={"rep_id": "default", "user_mobile_number": "+15551230000"})
        return response.json()["conversation_id"]

    def test_rep_sms_appended(self, client, engine):
        self._human_conversation(client)

        response = client.post(
            "/twilio-inbound",
            data={"From": "+15559998888", "To": "+15551230000", "Body": "On my way"},
        )

        assert response.status_code == 200
        assert response.text == webhooks.EMPTY_TWIML
        assert response.headers["content-type"].startswith("text/xml")
        session = sessionmaker(bind=engine)()
        assert [m.content for m in session.query(Message).filter(Message.sender == "ADMIN")] == ["On my way"]
        session.close()

    def test_signature_required_when_enabled(self, client, monkeypatch):
        monkeypatch.setattr(settings, "twilio_validate_signatures", True)
        monkeypatch.setattr(settings, "twilio_auth_token", "secret")
        params = {"From": "+15559998888", "To": "+15551230000", "Body": "hi"}

        rejected = client.post("/twilio-inbound", data=params, headers={"X-Twilio-Signature": "bogus"})
        assert rejected.status_code == 403

        signature = compute_signature("secret", "http://testserver/twilio-inbound", params)
        accepted = client.post("/twilio-inbound", data=params, headers={"X-Twilio-Signature": signature})
        assert accepted.status_code == 200

    def test_conversation_webhook(self, client):
        self._human_conversation(client)

        ignored = client.post("/twilio-conversation-webhook", data={"EventType": "onParticipantAdded"})
        assert ignored.json()["ignored"] == "onParticipantAdded"

        response = client.post(
            "/twilio-conversation-webhook",
            data={"EventType": "onMessageAdded", "ConversationSid": "CH123", "Body": "Hi there", "Source": "SMS"},
        )
        assert response.json()["message_id"] is not None


class TestAdminEndpoints:
    def test_requires_token(self, client):
        assert client.get("/admin/conversations").status_code == 401
        assert client.get("/admin/conversations", headers={"X-Admin-Token": "wrong"}).status_code == 401

    def test_list_and_archive(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]

        listed = client.get("/admin/conversations", headers=ADMIN_HEADERS).json()["conversations"]
        assert [c["id"] for c in listed] == [conversation_id]
        assert listed[0]["channel"] == "website"

        archived = client.post(
            "/admin/archive-conversation",
            json={"conversation_id": conversation_id, "archive": True},
            headers=ADMIN_HEADERS,
        )
        assert archived.json()["status"] == "archived"

        resumed = _init_ai(client)
        assert resumed.json()["conversation_id"] == conversation_id
        assert resumed.json()["status"] == "active"

    def test_edit_message(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]
        message_id = client.get(f"/conversations/{conversation_id}/messages").json()["messages"][0]["id"]

        response = client.post(
            "/admin/edit-message",
            json={"conversation_id": conversation_id, "message_id": message_id, "content": "Edited"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["edited"] is True
        assert response.json()["content"] == "Edited"

    def test_merge_preview_and_run(self, client, make_conversation):
        t0 = datetime(2025, 3, 1, tzinfo=timezone.utc)
        older = make_conversation(status="archived", created_at=t0)
        make_conversation(status="active", created_at=t0 + timedelta(days=1))
        older_id = str(older.id)

        preview = client.get("/admin/merge-conversations", headers=ADMIN_HEADERS).json()
        assert preview["duplicate_groups_count"] == 1
        assert preview["total_duplicates_to_remove"] == 1
        kept = [c for c in preview["groups"][0]["conversations"] if c["will_be_kept"]]
        assert kept[0]["id"] == older_id

        result = client.post("/admin/merge-conversations", headers=ADMIN_HEADERS).json()
        assert result["success"] is True
        assert result["results"][0]["kept_conversation_id"] == older_id
        assert result["results"][0]["reactivated"] is True

        again = client.post("/admin/merge-conversations", headers=ADMIN_HEADERS).json()
        assert again["results"] == []

    def test_sale_lifecycle(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]

        created = client.post(
            "/admin/sales",
            json={"conversation_id": conversation_id, "sale_amount": "100.00", "marked_by": ACTOR},
            headers=ADMIN_HEADERS,
        )
        assert created.status_code == 201
        sale_id = created.json()["sale_id"]
        assert float(created.json()["commission_amount"]) == 10.0
        assert created.json()["audit_recorded"] is True

        disputed = client.put(
            f"/admin/sales/{sale_id}",
            json={"actor": ACTOR, "status": "disputed", "reason": "price mismatch"},
            headers=ADMIN_HEADERS,
        )
        assert disputed.status_code == 200
        assert disputed.json()["status"] == "disputed"
        assert float(disputed.json()["commission_amount"]) == 10.0

        detail = client.get(f"/admin/sales/{sale_id}", headers=ADMIN_HEADERS).json()
        assert [a["action"] for a in detail["audit_log"]] == ["disputed", "created"]
        assert len(detail["evidence"]) == 1

        listed = client.get("/admin/sales", params={"status": "disputed"}, headers=ADMIN_HEADERS).json()
        assert listed["total"] == 1

    def test_status_change_needs_reason(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]
        sale_id = client.post(
            "/admin/sales",
            json={"conversation_id": conversation_id, "sale_amount": "20", "marked_by": ACTOR},
            headers=ADMIN_HEADERS,
        ).json()["sale_id"]

        response = client.put(f"/admin/sales/{sale_id}", json={"actor": ACTOR, "status": "verified"}, headers=ADMIN_HEADERS)
        assert response.status_code == 400

    def test_mark_sale_rejects_zero(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]
        response = client.post(
            "/admin/sales",
            json={"conversation_id": conversation_id, "sale_amount": "0", "marked_by": ACTOR},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 400

    def test_summary_defaults_to_current_month(self, client):
        conversation_id = _init_ai(client).json()["conversation_id"]
        client.post(
            "/admin/sales",
            json={"conversation_id": conversation_id, "sale_amount": "100", "marked_by": ACTOR},
            headers=ADMIN_HEADERS,
        )

        summary = client.get("/admin/sales/summary", headers=ADMIN_HEADERS).json()
        assert summary["total_sales"] == 1
        assert float(summary["total_commission"]) == 10.0
        assert summary["by_status"]["pending_review"] == 1

    def test_unknown_sale(self, client):
        assert client.get(f"/admin/sales/{uuid4()}", headers=ADMIN_HEADERS).status_code == 404

    def test_store_outage_is_503(self, client):
        with patch("repchat.routers.admin.list_conversations", side_effect=StoreUnavailable("list: store unavailable")):
            response = client.get("/admin/conversations", headers=ADMIN_HEADERS)
        assert response.status_code == 503
