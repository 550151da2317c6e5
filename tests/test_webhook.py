"""Tests for the Telegram webhook endpoint."""

import pytest
from conftest import ADMIN_CHAT_ID, WEBHOOK_SECRET

from service_tracker.infrastructure.database.models import (
    AccessRequestRecord,
    StaffAllowlistEntry,
)
from service_tracker.presentation.webhook_routes import WEBHOOK_PATH

SECRET_HEADERS = {"X-Telegram-Bot-Api-Secret-Token": WEBHOOK_SECRET}


def callback(data, chat_id=ADMIN_CHAT_ID):
    return {
        "update_id": 10,
        "callback_query": {
            "id": "cb-9",
            "data": data,
            "message": {"message_id": 101, "chat": {"id": int(chat_id)}},
        },
    }


def seed_pending_request(session, uid="uid-rui"):
    session.add(
        AccessRequestRecord(
            uid=uid,
            email="rui@example.com",
            email_normalized="rui@example.com",
            display_name="Rui",
            request_count=1,
            telegram_message_id=101,
            telegram_chat_id=ADMIN_CHAT_ID,
        )
    )
    session.commit()


def test_missing_secret_is_rejected(client, gateway):
    response = client.post(WEBHOOK_PATH, json=callback("apr|a|uid-rui"))

    assert response.status_code == 401
    assert response.json() == {"ok": False, "error": "invalid_secret"}
    assert gateway.answered == []


def test_wrong_secret_is_rejected(client):
    response = client.post(
        WEBHOOK_PATH,
        json=callback("apr|a|uid-rui"),
        headers={"X-Telegram-Bot-Api-Secret-Token": "nope"},
    )

    assert response.status_code == 401


def test_other_methods_are_not_allowed(client):
    response = client.get(WEBHOOK_PATH)

    assert response.status_code == 405
    assert response.headers["allow"] == "POST"
    assert response.json() == {"ok": False, "error": "method_not_allowed"}


@pytest.mark.parametrize("method", ["OPTIONS", "PUT", "PATCH", "DELETE"])
def test_non_post_methods_keep_the_webhook_contract(client, method):
    response = client.request(method, WEBHOOK_PATH)

    assert response.status_code == 405
    assert response.headers["allow"] == "POST"
    assert response.json() == {"ok": False, "error": "method_not_allowed"}


def test_head_is_not_allowed(client):
    response = client.head(WEBHOOK_PATH)

    assert response.status_code == 405
    assert response.headers["allow"] == "POST"


def test_non_callback_update_is_ignored(client):
    response = client.post(
        WEBHOOK_PATH, json={"update_id": 1, "message": {}}, headers=SECRET_HEADERS
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True, "ignored": True}


def test_callback_from_other_chat_is_ignored(client, session, gateway):
    seed_pending_request(session)

    response = client.post(
        WEBHOOK_PATH, json=callback("apr|a|uid-rui", "-999"), headers=SECRET_HEADERS
    )

    assert response.json() == {"ok": True, "ignored": "unauthorized_chat"}
    assert session.get(StaffAllowlistEntry, "uid-rui") is None
    assert len(gateway.answered) == 1


def test_invalid_callback_data_is_ignored(client):
    response = client.post(
        WEBHOOK_PATH, json=callback("apr|z|uid-rui"), headers=SECRET_HEADERS
    )

    assert response.json() == {"ok": True, "ignored": "invalid_callback"}


def test_approve_tap_grants_access(client, session, gateway):
    seed_pending_request(session)

    response = client.post(
        WEBHOOK_PATH, json=callback("apr|a|uid-rui"), headers=SECRET_HEADERS
    )

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "state": "updated",
        "status": "approved",
        "mappedState": "allowed",
    }
    entry = session.get(StaffAllowlistEntry, "uid-rui")
    assert entry is not None and entry.active
    assert entry.approved_by_chat_id == ADMIN_CHAT_ID
    assert gateway.edited[0][1] == 101


def test_second_tap_reports_already_resolved(client, session):
    seed_pending_request(session)
    client.post(WEBHOOK_PATH, json=callback("apr|d|uid-rui"), headers=SECRET_HEADERS)

    response = client.post(
        WEBHOOK_PATH, json=callback("apr|a|uid-rui"), headers=SECRET_HEADERS
    )

    assert response.json()["state"] == "already_resolved"
    assert response.json()["status"] == "denied"
    assert session.get(StaffAllowlistEntry, "uid-rui") is None
