"""
Tests for POST /messages and GET /users/{user_id}/messages.

Tests cover:
- Successful sends for every accepted carrier status
- Delivery failures (raised errors, failure outcomes, unknown statuses)
- Missing fields (400) and validation errors (422), with nothing stored
- Persistence failures on both the success and the failure path
- Listing: ordering, empty lists, ownership (403) and unknown users (404)
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from conftest import TEST_PASSWORD, auth_headers, count_messages
from smsrelay import auth, dispatcher
from smsrelay.delivery import DeliveryFailure, DeliverySuccess
from smsrelay.errors import ConfigurationError
from smsrelay.models import Message, MessageStatus


VALID_MESSAGE = {"to": "+1234567890", "body": "Hello from test!"}


def _broken_save(*args, **kwargs):
    raise OperationalError("INSERT", {}, Exception("database is locked"))


class TestSendSuccess:
    """Carrier accepts the message."""

    def test_send_queued(self, client, db, gateway, user_token):
        user, token = user_token
        gateway.outcome = DeliverySuccess(status="queued", provider_id="SM1234567890abcdef")

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "success"
        assert data["message_text"] == "Message processed successfully"
        message = data["message"]
        assert message["body"] == "Hello from test!"
        assert message["phone_number"] == "+1234567890"
        assert message["status"] == "queued"
        assert message["provider_id"] == "SM1234567890abcdef"
        for key in ("id", "created_at", "updated_at"):
            assert key in message

        stored = db.query(Message).one()
        assert stored.id == message["id"]
        assert stored.user_id == user["id"]
        assert stored.status == "queued"
        assert stored.provider_id == "SM1234567890abcdef"

    @pytest.mark.parametrize("status", ["queued", "sent", "delivered"])
    def test_every_accepted_status_is_stored(self, client, db, gateway, user_token, status):
        _, token = user_token
        gateway.outcome = DeliverySuccess(status=status, provider_id="SM1")

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        assert response.status_code == 201
        assert response.json()["message"]["status"] == status
        assert db.query(Message.status).scalar() == status

    def test_gateway_receives_destination_and_body(self, client, gateway, user_token):
        _, token = user_token

        client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        assert gateway.calls == [("+1234567890", "Hello from test!")]

    def test_missing_provider_id_is_tolerated(self, client, db, gateway, user_token):
        _, token = user_token
        gateway.outcome = DeliverySuccess(status="queued", provider_id=None)

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        assert response.status_code == 201
        assert response.json()["message"]["provider_id"] is None
        assert db.query(Message.provider_id).scalar() is None

    def test_timestamps_carry_utc_suffix(self, client, gateway, user_token):
        _, token = user_token

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        message = response.json()["message"]
        assert message["created_at"].endswith("Z")
        assert message["updated_at"].endswith("Z")

    def test_delivered_scenario(self, client, gateway, user_token):
        _, token = user_token
        gateway.outcome = DeliverySuccess(status="delivered", provider_id="SM1")

        response = client.post("/messages", json={"to": "+1234567890", "body": "Hi"}, headers=auth_headers(token))

        assert response.status_code == 201
        assert response.json()["message"]["status"] == "delivered"
        assert response.json()["message"]["provider_id"] == "SM1"

    def test_body_at_maximum_length(self, client, gateway, user_token):
        _, token = user_token

        response = client.post(
            "/messages", json={"to": "+1234567890", "body": "A" * 1600}, headers=auth_headers(token)
        )

        assert response.status_code == 201

    def test_unicode_body(self, client, gateway, user_token):
        _, token = user_token
        body = "Hello! 😊 How are you doing today? 🎉"

        response = client.post("/messages", json={"to": "+447911123456", "body": body}, headers=auth_headers(token))

        assert response.status_code == 201
        assert response.json()["message"]["body"] == body


class TestSendDeliveryFailure:
    """Carrier does not accept the message: it is stored as failed."""

    def _assert_saved_as_failed(self, response, db):
        assert response.status_code == 422
        assert response.json() == {
            "error": "Message saved but failed to send via SMS",
            "status": "error",
        }
        stored = db.query(Message).one()
        assert stored.status == MessageStatus.FAILED
        assert stored.provider_id is None
        assert stored.body == "Hello from test!"

    def test_gateway_raises(self, client, db, gateway, user_token):
        _, token = user_token
        gateway.raises = RuntimeError("Twilio API error")

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        self._assert_saved_as_failed(response, db)

    def test_gateway_reports_failure(self, client, db, gateway, user_token):
        _, token = user_token
        gateway.outcome = DeliveryFailure(cause=RuntimeError("SMS service error: timeout"))

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        self._assert_saved_as_failed(response, db)

    def test_gateway_not_configured(self, client, db, gateway, user_token):
        _, token = user_token
        gateway.outcome = DeliveryFailure(cause=ConfigurationError("Twilio credentials not configured"))

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        self._assert_saved_as_failed(response, db)

    @pytest.mark.parametrize("status", ["failed", "undelivered", "accepted", "pending"])
    def test_unrecognized_status(self, client, db, gateway, user_token, status):
        _, token = user_token
        gateway.outcome = DeliverySuccess(status=status, provider_id="SM1")

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        self._assert_saved_as_failed(response, db)

    def test_failed_record_cannot_be_saved(self, client, db, gateway, user_token, monkeypatch):
        _, token = user_token
        gateway.raises = RuntimeError("Twilio API error")
        monkeypatch.setattr(dispatcher, "save_message", _broken_save)

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        assert response.status_code == 422
        data = response.json()
        assert data["status"] == "error"
        assert data["message_text"] == "Validation failed"
        assert data["errors"]
        assert count_messages(db) == 0


class TestSendRejected:
    """Requests rejected before any delivery attempt."""

    @pytest.mark.parametrize("body", [
        {},
        {"to": "+1234567890"},
        {"body": "Test message"},
        {"to": "+1234567890", "body": ""},
        {"to": "", "body": "Test"},
        {"to": "   ", "body": "Test"},
    ])
    def test_missing_fields(self, client, db, gateway, user_token, body):
        _, token = user_token

        response = client.post("/messages", json=body, headers=auth_headers(token))

        assert response.status_code == 400
        assert response.json() == {
            "error": "Phone number and message body are required",
            "status": "error",
        }
        assert gateway.calls == []
        assert count_messages(db) == 0

    def test_no_body_at_all(self, client, gateway, user_token):
        _, token = user_token

        response = client.post("/messages", headers=auth_headers(token))

        assert response.status_code == 400

    @pytest.mark.parametrize("to", [
        "invalid",
        "123-456-7890",
        "+",
        "+123",
        "1234567890",
        "+0123456789",
        "+1234567890123456",
        "+1234567890\n",
        "+1\u0662\u0663\u0664\u0665\u0666\u0667\u0668\u0669\u0660",
    ])
    def test_invalid_phone_number(self, client, db, gateway, user_token, to):
        _, token = user_token

        response = client.post("/messages", json={"to": to, "body": "Hi"}, headers=auth_headers(token))

        assert response.status_code == 422
        data = response.json()
        assert data["status"] == "error"
        assert data["message_text"] == "Validation failed"
        assert "To must be a valid phone number" in data["errors"]
        assert gateway.calls == []
        assert count_messages(db) == 0

    def test_body_too_long(self, client, db, gateway, user_token):
        _, token = user_token

        response = client.post(
            "/messages", json={"to": "+1234567890", "body": "A" * 1601}, headers=auth_headers(token)
        )

        assert response.status_code == 422
        assert "Body is too long (maximum is 1600 characters)" in response.json()["errors"]
        assert gateway.calls == []
        assert count_messages(db) == 0

    def test_without_token(self, client, db, gateway):
        response = client.post("/messages", json=VALID_MESSAGE)

        assert response.status_code == 401
        assert gateway.calls == []

    def test_with_invalid_token(self, client, gateway):
        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers("invalid_token"))

        assert response.status_code == 401
        assert gateway.calls == []

    def test_with_revoked_token(self, client, db, gateway, user_token):
        _, token = user_token
        client.delete("/auths", headers=auth_headers(token))

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        assert response.status_code == 401
        assert gateway.calls == []
        assert count_messages(db) == 0

    def test_storage_error_during_token_lookup(self, client, db, gateway, user_token, monkeypatch):
        _, token = user_token

        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(auth, "get_user_by_id", broken)

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert gateway.calls == []
        assert count_messages(db) == 0


class TestSendInternalError:

    def test_success_path_storage_outage(self, client, db, gateway, user_token, monkeypatch):
        _, token = user_token
        monkeypatch.setattr(dispatcher, "save_message", _broken_save)

        response = client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to send message", "status": "error"}
        assert count_messages(db) == 0


@pytest.fixture
def seeded_messages(db, user_token, other_user_token):
    """Three messages for the main user and one for the other user."""
    user, _ = user_token
    other, _ = other_user_token
    base = datetime(2025, 1, 15, 10, 0, 0)
    rows = [
        Message(user_id=user["id"], to="+1234567890", body="Hello world", status="sent",
                created_at=base, updated_at=base),
        Message(user_id=user["id"], to="+1987654321", body="How are you?", status="delivered",
                created_at=base + timedelta(minutes=2), updated_at=base + timedelta(minutes=2)),
        Message(user_id=user["id"], to="+1987654321", body="Middle", status="failed",
                created_at=base + timedelta(minutes=1), updated_at=base + timedelta(minutes=1)),
        Message(user_id=other["id"], to="+1234567890", body="Not yours", status="queued",
                created_at=base + timedelta(minutes=3), updated_at=base + timedelta(minutes=3)),
    ]
    db.add_all(rows)
    db.commit()
    return rows


class TestListMessages:
    """GET /users/{user_id}/messages"""

    def test_lists_own_messages_newest_first(self, client, user_token, seeded_messages):
        user, token = user_token

        response = client.get(f"/users/{user['id']}/messages", headers=auth_headers(token))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["message_text"] == "Messages retrieved successfully"
        assert data["count"] == 3
        assert [m["body"] for m in data["messages"]] == ["How are you?", "Middle", "Hello world"]

        created = [m["created_at"] for m in data["messages"]]
        assert created == sorted(created, reverse=True)

    def test_message_fields(self, client, user_token, seeded_messages):
        user, token = user_token

        response = client.get(f"/users/{user['id']}/messages", headers=auth_headers(token))

        message = response.json()["messages"][0]
        assert set(message) == {
            "id", "body", "phone_number", "status", "provider_id", "created_at", "updated_at",
        }

    def test_timestamps_are_utc(self, client, user_token, seeded_messages):
        user, token = user_token

        response = client.get(f"/users/{user['id']}/messages", headers=auth_headers(token))

        newest = response.json()["messages"][0]
        assert newest["created_at"] == "2025-01-15T10:02:00.000Z"
        assert newest["updated_at"] == "2025-01-15T10:02:00.000Z"

    def test_empty_list(self, client, user_token):
        user, token = user_token

        response = client.get(f"/users/{user['id']}/messages", headers=auth_headers(token))

        assert response.status_code == 200
        assert response.json()["messages"] == []
        assert response.json()["count"] == 0

    def test_sent_messages_appear_in_list(self, client, gateway, user_token):
        user, token = user_token
        client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))
        gateway.raises = RuntimeError("boom")
        client.post("/messages", json=VALID_MESSAGE, headers=auth_headers(token))

        response = client.get(f"/users/{user['id']}/messages", headers=auth_headers(token))

        assert sorted(m["status"] for m in response.json()["messages"]) == ["failed", "queued"]

    def test_other_users_messages_forbidden(self, client, user_token, other_user_token, seeded_messages):
        _, token = user_token
        other, _ = other_user_token

        response = client.get(f"/users/{other['id']}/messages", headers=auth_headers(token))

        assert response.status_code == 403
        assert response.json() == {"error": "Access denied", "status": "error"}

    def test_unknown_user_not_found(self, client, user_token):
        _, token = user_token

        response = client.get(f"/users/{'f' * 32}/messages", headers=auth_headers(token))

        assert response.status_code == 404
        assert response.json() == {"error": "User not found", "status": "error"}

    def test_without_token(self, client, user_token):
        user, _ = user_token

        response = client.get(f"/users/{user['id']}/messages")

        assert response.status_code == 401

    def test_with_invalid_token(self, client, user_token):
        user, _ = user_token

        response = client.get(f"/users/{user['id']}/messages", headers=auth_headers("invalid_token"))

        assert response.status_code == 401

    def test_after_logout(self, client, user_token):
        user, token = user_token
        client.delete("/auths", headers=auth_headers(token))

        response = client.get(f"/users/{user['id']}/messages", headers=auth_headers(token))

        assert response.status_code == 401

    def test_login_token_lists_messages(self, client, user_token, seeded_messages):
        user, _ = user_token
        login = client.post("/auths", json={"email": "test@example.com", "password": TEST_PASSWORD})

        response = client.get(f"/users/{user['id']}/messages", headers=auth_headers(login.json()["token"]))

        assert response.status_code == 200
        assert response.json()["count"] == 3
