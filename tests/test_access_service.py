"""Tests for the access-approval state machine."""

from datetime import timedelta

import pytest
from conftest import ADMIN_CHAT_ID
from sqlmodel import Session, select

from service_tracker.application import access_service
from service_tracker.application.access_service import (
    CallbackToasts,
    approve_directly,
    deactivate_allowlist,
    list_access_requests,
    process_telegram_update,
    reopen_request,
    request_access,
    unblock,
)
from service_tracker.domain.access import AccessState, Messages, RequestStatus
from service_tracker.domain.constants import BLOCKLIST_DECIDER
from service_tracker.domain.entities import Identity
from service_tracker.domain.exceptions import NotFoundError
from service_tracker.infrastructure.database.models import (
    AccessBlockByEmail,
    AccessBlockByUid,
    AccessRequestRecord,
    StaffAllowlistEntry,
)

ANA = Identity(uid="uid-ana", email="Ana@Example.com", display_name="Ana Silva")


def callback_update(data: str, chat_id=ADMIN_CHAT_ID, message_id=101) -> dict:
    return {
        "update_id": 1,
        "callback_query": {
            "id": "cb-1",
            "data": data,
            "message": {"message_id": message_id, "chat": {"id": int(chat_id)}},
        },
    }


@pytest.mark.asyncio
async def test_allowlisted_user_is_allowed_without_request(session: Session, gateway):
    session.add(StaffAllowlistEntry(uid=ANA.uid, active=True))
    session.commit()

    result = await request_access(session, ANA, gateway, ADMIN_CHAT_ID)

    assert result.state == AccessState.ALLOWED
    assert result.request_status == RequestStatus.APPROVED
    assert result.message == Messages.ALLOWED
    assert session.get(AccessRequestRecord, ANA.uid) is None
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_inactive_allowlist_entry_does_not_grant_access(
    session: Session, gateway
):
    session.add(StaffAllowlistEntry(uid=ANA.uid, active=False))
    session.commit()

    result = await request_access(session, ANA, gateway, ADMIN_CHAT_ID)

    assert result.state == AccessState.PENDING


@pytest.mark.asyncio
async def test_first_request_creates_pending_request_and_notifies(
    session: Session, gateway, now
):
    result = await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)

    assert result.state == AccessState.PENDING
    assert result.message == Messages.SENT

    record = session.get(AccessRequestRecord, ANA.uid)
    assert record.status == "pending"
    assert record.request_count == 1
    assert record.email_normalized == "ana@example.com"
    assert record.notification_state == "sent"
    assert record.last_notification_at == now
    assert record.telegram_message_id == 101
    assert record.telegram_chat_id == ADMIN_CHAT_ID

    chat_id, card = gateway.sent[0]
    assert chat_id == ADMIN_CHAT_ID
    assert card.uid == ANA.uid
    assert card.request_count == 1


@pytest.mark.asyncio
async def test_repeated_request_inside_cooldown_skips_notification(
    session: Session, gateway, now
):
    await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)

    result = await request_access(
        session, ANA, gateway, ADMIN_CHAT_ID, now=now + timedelta(minutes=5)
    )

    assert result.state == AccessState.PENDING
    assert result.message == Messages.ALREADY_SENT
    assert len(gateway.sent) == 1

    record = session.get(AccessRequestRecord, ANA.uid)
    assert record.request_count == 2
    assert record.notification_state == "skipped"
    assert record.last_notification_at == now


@pytest.mark.asyncio
async def test_repeated_request_after_cooldown_notifies_again(
    session: Session, gateway, now
):
    await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)

    result = await request_access(
        session, ANA, gateway, ADMIN_CHAT_ID, now=now + timedelta(minutes=16)
    )

    assert result.message == Messages.SENT
    assert len(gateway.sent) == 2
    assert gateway.sent[1][1].request_count == 2


@pytest.mark.asyncio
async def test_notification_failure_is_recorded_and_retried(
    session: Session, gateway, now
):
    gateway.fail_send = True

    result = await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)

    assert result.state == AccessState.PENDING
    assert result.message == Messages.NOTIFICATION_FAILED
    record = session.get(AccessRequestRecord, ANA.uid)
    assert record.notification_state == "failed"
    assert "chat not found" in record.notification_error
    assert record.last_notification_at is None

    gateway.fail_send = False
    retried = await request_access(
        session, ANA, gateway, ADMIN_CHAT_ID, now=now + timedelta(minutes=1)
    )

    assert retried.message == Messages.SENT
    assert len(gateway.sent) == 1


@pytest.mark.asyncio
async def test_denied_request_is_returned_unchanged(session: Session, gateway, now):
    session.add(AccessRequestRecord(uid=ANA.uid, status="denied", request_count=3))
    session.commit()

    result = await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)

    assert result.state == AccessState.DENIED
    assert result.message == Messages.DENIED
    assert session.get(AccessRequestRecord, ANA.uid).request_count == 3
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_email_block_wins_over_pending_request(session: Session, gateway, now):
    await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)
    session.add(
        AccessBlockByEmail(email_normalized="ana@example.com", last_uid="other")
    )
    session.commit()

    result = await request_access(
        session, ANA, gateway, ADMIN_CHAT_ID, now=now + timedelta(minutes=1)
    )

    assert result.state == AccessState.BLOCKED
    assert result.message == Messages.BLOCKED
    record = session.get(AccessRequestRecord, ANA.uid)
    assert record.status == "blocked"
    assert record.notification_state == "skipped"
    assert record.decision_by_chat_id == BLOCKLIST_DECIDER
    assert len(gateway.sent) == 1


@pytest.mark.asyncio
async def test_uid_block_wins_over_deactivated_allowlist_entry(
    session: Session, gateway, now
):
    session.add(
        StaffAllowlistEntry(uid=ANA.uid, active=False, approved_at=now, role="staff")
    )
    session.add(AccessBlockByUid(uid=ANA.uid, email_normalized="ana@example.com"))
    session.commit()

    result = await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)

    assert result.state == AccessState.BLOCKED
    assert result.request_status == RequestStatus.BLOCKED
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_approve_callback_grants_access(session: Session, gateway, now):
    await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)

    outcome = await process_telegram_update(
        session, callback_update(f"apr|a|{ANA.uid}"), gateway, ADMIN_CHAT_ID, now=now
    )

    assert outcome.to_response() == {
        "ok": True,
        "state": "updated",
        "status": "approved",
        "mappedState": "allowed",
    }
    entry = session.get(StaffAllowlistEntry, ANA.uid)
    assert entry.active is True
    assert entry.approved_by == "telegram"
    assert entry.approved_by_chat_id == ADMIN_CHAT_ID
    assert gateway.answered == [("cb-1", "Request approved.")]
    assert gateway.edited[0][1] == 101
    assert gateway.edited[0][3] == "approved"

    result = await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)
    assert result.state == AccessState.ALLOWED


@pytest.mark.asyncio
async def test_second_tap_reports_already_resolved(session: Session, gateway, now):
    await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)
    await process_telegram_update(
        session, callback_update(f"apr|d|{ANA.uid}"), gateway, ADMIN_CHAT_ID, now=now
    )

    outcome = await process_telegram_update(
        session, callback_update(f"apr|a|{ANA.uid}"), gateway, ADMIN_CHAT_ID, now=now
    )

    assert outcome.state == "already_resolved"
    assert outcome.status == "denied"
    assert gateway.answered[-1] == ("cb-1", "Already resolved: denied.")
    assert session.get(StaffAllowlistEntry, ANA.uid) is None
    assert len(gateway.edited) == 2


@pytest.mark.asyncio
async def test_double_approve_writes_allowlist_once(session: Session, gateway, now):
    await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)
    update = callback_update(f"apr|a|{ANA.uid}")

    await process_telegram_update(session, update, gateway, ADMIN_CHAT_ID, now=now)
    later = now + timedelta(minutes=3)
    outcome = await process_telegram_update(
        session, update, gateway, ADMIN_CHAT_ID, now=later
    )

    assert outcome.state == "already_resolved"
    assert outcome.status == "approved"
    assert gateway.answered[-1] == ("cb-1", "Already resolved: approved.")
    session.expire_all()
    entries = session.exec(select(StaffAllowlistEntry)).all()
    assert [e.uid for e in entries] == [ANA.uid]
    assert entries[0].approved_at == now
    assert session.get(AccessRequestRecord, ANA.uid).decision_at == now


@pytest.mark.asyncio
async def test_block_callback_blocks_uid_and_email(session: Session, gateway, now):
    await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)

    outcome = await process_telegram_update(
        session, callback_update(f"apr|b|{ANA.uid}"), gateway, ADMIN_CHAT_ID, now=now
    )

    assert outcome.status == "blocked"
    assert session.get(AccessBlockByUid, ANA.uid).email_normalized == "ana@example.com"
    assert session.get(AccessBlockByEmail, "ana@example.com").last_uid == ANA.uid

    other_account = Identity(uid="uid-ana-2", email="ANA@example.com")
    result = await request_access(
        session, other_account, gateway, ADMIN_CHAT_ID, now=now
    )
    assert result.state == AccessState.BLOCKED

    again = await request_access(
        session, ANA, gateway, ADMIN_CHAT_ID, now=now + timedelta(minutes=20)
    )
    assert again.state == AccessState.BLOCKED
    assert again.message == Messages.BLOCKED
    assert len(gateway.sent) == 1


@pytest.mark.asyncio
async def test_callback_from_other_chat_is_ignored(session: Session, gateway, now):
    await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)

    outcome = await process_telegram_update(
        session,
        callback_update(f"apr|a|{ANA.uid}", chat_id="-999"),
        gateway,
        ADMIN_CHAT_ID,
        now=now,
    )

    assert outcome.to_response() == {"ok": True, "ignored": "unauthorized_chat"}
    assert gateway.answered == [("cb-1", CallbackToasts.UNAUTHORIZED_CHAT)]
    assert session.get(AccessRequestRecord, ANA.uid).status == "pending"


@pytest.mark.asyncio
async def test_invalid_callback_data_is_ignored(session: Session, gateway):
    outcome = await process_telegram_update(
        session, callback_update("apr|x|uid"), gateway, ADMIN_CHAT_ID
    )

    assert outcome.to_response() == {"ok": True, "ignored": "invalid_callback"}
    assert gateway.answered == [("cb-1", CallbackToasts.INVALID_ACTION)]


@pytest.mark.asyncio
async def test_non_callback_update_is_ignored(session: Session, gateway):
    outcome = await process_telegram_update(
        session, {"update_id": 5, "message": {"text": "hi"}}, gateway, ADMIN_CHAT_ID
    )

    assert outcome.to_response() == {"ok": True, "ignored": True}
    assert gateway.answered == []


@pytest.mark.asyncio
async def test_callback_for_missing_request(session: Session, gateway):
    outcome = await process_telegram_update(
        session, callback_update("apr|a|ghost"), gateway, ADMIN_CHAT_ID
    )

    assert outcome.state == "missing"
    assert outcome.to_response()["mappedState"] == "pending"
    assert gateway.answered == [("cb-1", CallbackToasts.NOT_FOUND)]
    assert gateway.edited[0][3] == "missing"


@pytest.mark.asyncio
async def test_failed_message_edit_does_not_fail_callback(
    session: Session, gateway, now
):
    await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)
    gateway.fail_edit = True

    outcome = await process_telegram_update(
        session, callback_update(f"apr|a|{ANA.uid}"), gateway, ADMIN_CHAT_ID, now=now
    )

    assert outcome.http_status == 200
    assert outcome.status == "approved"


@pytest.mark.asyncio
async def test_transaction_failure_returns_internal_error(
    session: Session, gateway, monkeypatch
):
    def explode(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(access_service, "apply_callback_decision", explode)

    outcome = await process_telegram_update(
        session, callback_update("apr|a|uid-1"), gateway, ADMIN_CHAT_ID
    )

    assert outcome.http_status == 500
    assert outcome.to_response() == {"ok": False, "error": "internal_error"}
    assert gateway.answered == [("cb-1", CallbackToasts.INTERNAL_ERROR)]


@pytest.mark.asyncio
async def test_reopen_puts_denied_request_back_to_pending(
    session: Session, gateway, now
):
    session.add(AccessRequestRecord(uid=ANA.uid, status="denied", request_count=1))
    session.commit()

    record = reopen_request(session, ANA.uid, now=now)

    assert record.status == "pending"
    assert record.last_notification_at is None
    result = await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)
    assert result.message == Messages.SENT


@pytest.mark.asyncio
async def test_unblock_removes_blocks_and_reopens(session: Session, gateway, now):
    await request_access(session, ANA, gateway, ADMIN_CHAT_ID, now=now)
    await process_telegram_update(
        session, callback_update(f"apr|b|{ANA.uid}"), gateway, ADMIN_CHAT_ID, now=now
    )

    removed = unblock(session, ANA.uid, now=now)

    assert removed == 2
    assert session.get(AccessRequestRecord, ANA.uid).status == "pending"
    assert [r.uid for r in list_access_requests(session, RequestStatus.PENDING)] == [
        ANA.uid
    ]


def test_approve_directly_and_deactivate(session: Session, now):
    session.add(AccessRequestRecord(uid=ANA.uid, email="ana@example.com"))
    session.commit()

    entry = approve_directly(session, ANA.uid, "cli", now=now)

    assert entry.active is True
    assert entry.email == "ana@example.com"
    assert session.get(AccessRequestRecord, ANA.uid).status == "approved"

    assert deactivate_allowlist(session, ANA.uid).active is False


def test_deactivate_unknown_uid_raises(session: Session):
    with pytest.raises(NotFoundError):
        deactivate_allowlist(session, "nobody")
