"""Access-approval workflow over allowlist, request and block records.

Telegram calls always happen outside the database transaction: a failed
notification is recorded on the request but never rolls back a transition.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

from sqlmodel import Session

from ..constants import MAX_NOTIFICATION_ERROR_LENGTH
from ..domain.access import (
    ACTION_RESULT_STATUS,
    AccessResult,
    AccessState,
    CallbackAction,
    Messages,
    NotificationState,
    RequestStatus,
    map_request_state,
    normalize_status,
    parse_callback_data,
    should_send_notification,
)
from ..domain.constants import (
    APPROVED_BY_TELEGRAM,
    BLOCK_REASON_TELEGRAM,
    BLOCKLIST_DECIDER,
    DEFAULT_STAFF_ROLE,
)
from ..domain.entities import Identity, normalize_email
from ..domain.exceptions import ConfigurationError, NotFoundError, NotificationError
from ..infrastructure.database.models import (
    AccessBlockByEmail,
    AccessBlockByUid,
    AccessRequestRecord,
    StaffAllowlistEntry,
)
from ..infrastructure.database.repositories import AccessRepository
from ..infrastructure.telegram import RequestCard, TelegramGateway
from ..logging_config import get_logger
from ..logging_utils import log_access_decision, log_database_operation
from ..metrics import (
    record_access_request,
    record_notification,
    record_webhook_callback,
)
from ..utils import clean_str, utc_now

logger: Final = get_logger(__name__)


class CallbackToasts:
    """Short texts shown to the admin who tapped a button."""

    UNAUTHORIZED_CHAT: Final = "Unauthorized chat."
    INVALID_ACTION: Final = "Invalid action."
    NOT_FOUND: Final = "Request not found."
    INTERNAL_ERROR: Final = "Internal error while processing. Try again."

    @staticmethod
    def updated(status: str) -> str:
        return f"Request {status}."

    @staticmethod
    def already_resolved(status: str) -> str:
        return f"Already resolved: {status}."


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of the locked callback transaction."""

    state: str  # missing, already_resolved or updated
    status: str
    card: RequestCard


@dataclass(frozen=True)
class WebhookOutcome:
    """What the webhook endpoint answers with."""

    http_status: int = 200
    ok: bool = True
    ignored: str | bool | None = None
    state: str | None = None
    status: str | None = None
    error: str | None = None

    def to_response(self) -> dict[str, Any]:
        if not self.ok:
            return {"ok": False, "error": self.error}
        if self.ignored is not None:
            return {"ok": True, "ignored": self.ignored}
        return {
            "ok": True,
            "state": self.state,
            "status": self.status,
            "mappedState": map_request_state(self.status or ""),
        }


def _card_from_request(record: AccessRequestRecord) -> RequestCard:
    return RequestCard(
        uid=record.uid,
        email=clean_str(record.email),
        display_name=clean_str(record.display_name),
        request_count=record.request_count,
    )


def _apply_identity(record: AccessRequestRecord, identity: Identity) -> None:
    record.email = identity.email.strip()
    record.email_normalized = identity.email_normalized
    record.display_name = identity.display_name.strip()
    record.photo_url = identity.photo_url.strip()


def _mark_blocked_by_list(
    repository: AccessRepository,
    existing: AccessRequestRecord | None,
    identity: Identity,
    now: datetime,
) -> AccessRequestRecord:
    record = existing or AccessRequestRecord(uid=identity.uid, created_at=now)
    _apply_identity(record, identity)
    record.status = RequestStatus.BLOCKED.value
    record.updated_at = now
    record.last_requested_at = now
    record.request_count = (record.request_count or 0) + 1
    record.notification_state = NotificationState.SKIPPED.value
    record.notification_error = ""
    record.decision_type = CallbackAction.BLOCK.value
    record.decision_at = now
    record.decision_by_chat_id = BLOCKLIST_DECIDER
    repository.save(record)
    return record


def _result(state: AccessState, status: RequestStatus, message: str) -> AccessResult:
    record_access_request(state.value)
    return AccessResult(state=state, request_status=status, message=message)


async def request_access(
    session: Session,
    identity: Identity,
    gateway: TelegramGateway,
    admin_chat_id: str,
    now: datetime | None = None,
) -> AccessResult:
    """Resolve an authenticated caller's access, registering a request if needed.

    Allowlist membership short-circuits everything; a block on the uid or the
    normalized email comes next; a denied or blocked request is returned as is.
    Anything else becomes a pending request, and the admins are notified unless
    a notification for this pending request is still inside its cooldown.
    """
    now = now or utc_now()
    repository = AccessRepository(session)
    uid = identity.uid

    if repository.is_active_staff(uid):
        log_access_decision(uid, AccessState.ALLOWED)
        return _result(AccessState.ALLOWED, RequestStatus.APPROVED, Messages.ALLOWED)

    existing = repository.find_request(uid)

    if repository.is_blocked(uid, identity.email_normalized):
        record = _mark_blocked_by_list(repository, existing, identity, now)
        session.commit()
        log_database_operation(
            "upsert", "access_requests", uid, status=record.status
        )
        log_access_decision(uid, AccessState.BLOCKED, reason="blocklist")
        record_notification(NotificationState.SKIPPED.value)
        return _result(AccessState.BLOCKED, RequestStatus.BLOCKED, Messages.BLOCKED)

    existing_status = (
        normalize_status(existing.status) if existing else RequestStatus.UNKNOWN
    )
    if existing_status == RequestStatus.DENIED:
        log_access_decision(uid, AccessState.DENIED)
        return _result(AccessState.DENIED, RequestStatus.DENIED, Messages.DENIED)
    if existing_status == RequestStatus.BLOCKED:
        log_access_decision(uid, AccessState.BLOCKED)
        return _result(AccessState.BLOCKED, RequestStatus.BLOCKED, Messages.BLOCKED)

    last_notification_at = existing.last_notification_at if existing else None
    should_notify = existing_status != RequestStatus.PENDING or (
        should_send_notification(last_notification_at, now)
    )

    record = existing or AccessRequestRecord(uid=uid, created_at=now)
    _apply_identity(record, identity)
    record.status = RequestStatus.PENDING.value
    record.updated_at = now
    record.last_requested_at = now
    record.request_count = (record.request_count or 0) + 1
    record.notification_state = (
        NotificationState.PENDING.value
        if should_notify
        else NotificationState.SKIPPED.value
    )
    record.notification_error = ""
    record.decision_type = ""
    record.decision_at = None
    record.decision_by_chat_id = ""
    repository.save(record)
    session.commit()
    session.refresh(record)
    log_database_operation(
        "upsert",
        "access_requests",
        uid,
        status=record.status,
        request_count=record.request_count,
    )

    if not should_notify:
        record_notification(NotificationState.SKIPPED.value)
        log_access_decision(uid, AccessState.PENDING, notified=False)
        return _result(
            AccessState.PENDING, RequestStatus.PENDING, Messages.ALREADY_SENT
        )

    try:
        sent = await gateway.send_approval_request(
            admin_chat_id, _card_from_request(record)
        )
    except (NotificationError, ConfigurationError) as e:
        logger.error("Failed to send Telegram approval message", uid=uid, error=str(e))
        record.notification_state = NotificationState.FAILED.value
        record.notification_error = (str(e) or "unknown_error")[
            :MAX_NOTIFICATION_ERROR_LENGTH
        ]
        record.updated_at = now
        repository.save(record)
        session.commit()
        record_notification(NotificationState.FAILED.value)
        log_access_decision(uid, AccessState.PENDING, notified=False)
        return _result(
            AccessState.PENDING, RequestStatus.PENDING, Messages.NOTIFICATION_FAILED
        )

    record.last_notification_at = now
    record.notification_state = NotificationState.SENT.value
    record.notification_error = ""
    record.telegram_message_id = sent.message_id
    record.telegram_chat_id = sent.chat_id
    record.updated_at = now
    repository.save(record)
    session.commit()
    record_notification(NotificationState.SENT.value)
    log_access_decision(uid, AccessState.PENDING, notified=True)
    return _result(AccessState.PENDING, RequestStatus.PENDING, Messages.SENT)


def apply_callback_decision(
    session: Session,
    uid: str,
    action: CallbackAction,
    chat_id: str,
    now: datetime | None = None,
) -> TransitionResult:
    """Apply one admin decision atomically.

    The request row is locked and must still be pending; a second tap on a
    resolved card reports ``already_resolved`` and writes nothing. Any error
    rolls the whole transaction back.
    """
    now = now or utc_now()
    repository = AccessRepository(session)

    try:
        record = repository.find_request_for_update(uid)
        if record is None:
            session.rollback()
            return TransitionResult(
                state="missing", status="missing", card=RequestCard(uid=uid)
            )

        card = _card_from_request(record)
        current_status = normalize_status(record.status)
        if current_status != RequestStatus.PENDING:
            session.rollback()
            return TransitionResult(
                state="already_resolved", status=current_status.value, card=card
            )

        email = clean_str(record.email)
        email_normalized = normalize_email(record.email_normalized or email)

        if action == CallbackAction.APPROVE:
            entry = repository.find_allowlist_entry(uid) or StaffAllowlistEntry(uid=uid)
            entry.active = True
            entry.role = DEFAULT_STAFF_ROLE
            entry.email = email
            entry.display_name = clean_str(record.display_name)
            entry.approved_at = now
            entry.approved_by = APPROVED_BY_TELEGRAM
            entry.approved_by_chat_id = chat_id
            repository.save(entry)
        elif action == CallbackAction.BLOCK:
            uid_block = repository.find_uid_block(uid) or AccessBlockByUid(uid=uid)
            uid_block.email_normalized = email_normalized
            uid_block.blocked_at = now
            uid_block.blocked_by_chat_id = chat_id
            uid_block.reason = BLOCK_REASON_TELEGRAM
            repository.save(uid_block)

            if email_normalized:
                email_block = repository.find_email_block(
                    email_normalized
                ) or AccessBlockByEmail(email_normalized=email_normalized)
                email_block.last_uid = uid
                email_block.blocked_at = now
                email_block.blocked_by_chat_id = chat_id
                email_block.reason = BLOCK_REASON_TELEGRAM
                repository.save(email_block)

        new_status = ACTION_RESULT_STATUS[action]
        record.status = new_status.value
        record.decision_type = action.value
        record.decision_at = now
        record.decision_by_chat_id = chat_id
        record.notification_error = ""
        record.updated_at = now
        repository.save(record)
        session.commit()
    except Exception:
        session.rollback()
        raise

    log_database_operation(
        "transition", "access_requests", uid, action=action.value, status=new_status
    )
    log_access_decision(uid, map_request_state(new_status), chat_id=chat_id)
    return TransitionResult(state="updated", status=new_status.value, card=card)


def _toast_for(result: TransitionResult) -> str:
    if result.state == "updated":
        return CallbackToasts.updated(result.status)
    if result.state == "already_resolved":
        return CallbackToasts.already_resolved(result.status)
    return CallbackToasts.NOT_FOUND


def _message_id(message: dict[str, Any]) -> int | None:
    try:
        return int(message.get("message_id") or 0) or None
    except (TypeError, ValueError):
        return None


async def process_telegram_update(
    session: Session,
    update: dict[str, Any],
    gateway: TelegramGateway,
    admin_chat_id: str,
    now: datetime | None = None,
) -> WebhookOutcome:
    """Handle one Telegram update that already passed the secret check."""
    callback_query = update.get("callback_query") if isinstance(update, dict) else None
    if not isinstance(callback_query, dict):
        return WebhookOutcome(ignored=True)

    callback_id = clean_str(callback_query.get("id"))
    message = callback_query.get("message")
    message = message if isinstance(message, dict) else {}
    chat = message.get("chat") if isinstance(message.get("chat"), dict) else {}
    callback_chat_id = clean_str(chat.get("id"))

    if not admin_chat_id or callback_chat_id != str(admin_chat_id):
        logger.warning(
            "Callback from unauthorized chat rejected", chat_id=callback_chat_id
        )
        await gateway.answer_callback(callback_id, CallbackToasts.UNAUTHORIZED_CHAT)
        record_webhook_callback("unknown", "unauthorized_chat")
        return WebhookOutcome(ignored="unauthorized_chat")

    parsed = parse_callback_data(callback_query.get("data"))
    if parsed is None:
        logger.warning("Invalid callback data", data=callback_query.get("data"))
        await gateway.answer_callback(callback_id, CallbackToasts.INVALID_ACTION)
        record_webhook_callback("unknown", "invalid_callback")
        return WebhookOutcome(ignored="invalid_callback")

    try:
        result = apply_callback_decision(
            session, parsed.uid, parsed.action, callback_chat_id, now=now
        )
    except Exception as e:
        logger.error(
            "Telegram webhook transaction failed",
            uid=parsed.uid,
            action=parsed.action.value,
            error=str(e),
            exc_info=True,
        )
        await gateway.answer_callback(callback_id, CallbackToasts.INTERNAL_ERROR)
        record_webhook_callback(parsed.action.value, "internal_error")
        return WebhookOutcome(http_status=500, ok=False, error="internal_error")

    record_webhook_callback(parsed.action.value, result.state)
    await gateway.answer_callback(callback_id, _toast_for(result))

    message_id = _message_id(message)
    if message_id:
        try:
            await gateway.edit_resolved_message(
                callback_chat_id, message_id, result.card, result.status
            )
        except (NotificationError, ConfigurationError) as e:
            logger.warning(
                "Failed to edit approval message",
                uid=parsed.uid,
                message_id=message_id,
                error=str(e),
            )

    return WebhookOutcome(state=result.state, status=result.status)


# Out-of-band administration


def _require_request(repository: AccessRepository, uid: str) -> AccessRequestRecord:
    record = repository.find_request(uid)
    if record is None:
        raise NotFoundError(f"No access request for uid '{uid}'")
    return record


def _reset_to_pending(record: AccessRequestRecord, now: datetime) -> None:
    record.status = RequestStatus.PENDING.value
    record.notification_state = NotificationState.PENDING.value
    record.notification_error = ""
    record.last_notification_at = None
    record.decision_type = ""
    record.decision_at = None
    record.decision_by_chat_id = ""
    record.updated_at = now


def reopen_request(
    session: Session, uid: str, now: datetime | None = None
) -> AccessRequestRecord:
    """Put a denied or blocked request back to pending.

    The notification cooldown is cleared so the next request notifies at once.
    """
    now = now or utc_now()
    repository = AccessRepository(session)
    record = _require_request(repository, uid)
    _reset_to_pending(record, now)
    repository.save(record)
    session.commit()
    session.refresh(record)
    log_database_operation("reopen", "access_requests", uid)
    return record


def unblock(session: Session, uid: str, now: datetime | None = None) -> int:
    """Remove both block entries of a uid and reopen a blocked request.

    Returns:
        Number of block entries removed
    """
    now = now or utc_now()
    repository = AccessRepository(session)
    record = repository.find_request(uid)
    email_normalized = record.email_normalized if record else ""
    uid_block = repository.find_uid_block(uid)
    if uid_block is not None and not email_normalized:
        email_normalized = uid_block.email_normalized

    removed = repository.delete_blocks(uid, email_normalized)
    if record is not None and normalize_status(record.status) == RequestStatus.BLOCKED:
        _reset_to_pending(record, now)
        repository.save(record)
    session.commit()
    log_database_operation("unblock", "access_blocks_uid", uid, removed=removed)
    return removed


def approve_directly(
    session: Session, uid: str, approved_by: str, now: datetime | None = None
) -> StaffAllowlistEntry:
    """Grant access without a Telegram tap, resolving any open request."""
    now = now or utc_now()
    repository = AccessRepository(session)
    record = repository.find_request(uid)

    entry = repository.find_allowlist_entry(uid) or StaffAllowlistEntry(uid=uid)
    entry.active = True
    entry.role = entry.role or DEFAULT_STAFF_ROLE
    if record is not None:
        entry.email = clean_str(record.email)
        entry.display_name = clean_str(record.display_name)
        record.status = RequestStatus.APPROVED.value
        record.decision_type = CallbackAction.APPROVE.value
        record.decision_at = now
        record.decision_by_chat_id = approved_by
        record.updated_at = now
        repository.save(record)
    entry.approved_at = now
    entry.approved_by = approved_by
    entry.approved_by_chat_id = ""
    repository.save(entry)
    session.commit()
    session.refresh(entry)
    log_database_operation("upsert", "staff_allowlist", uid, approved_by=approved_by)
    log_access_decision(uid, AccessState.ALLOWED, approved_by=approved_by)
    return entry


def deactivate_allowlist(session: Session, uid: str) -> StaffAllowlistEntry:
    repository = AccessRepository(session)
    entry = repository.find_allowlist_entry(uid)
    if entry is None:
        raise NotFoundError(f"No allowlist entry for uid '{uid}'")
    entry.active = False
    repository.save(entry)
    session.commit()
    session.refresh(entry)
    log_database_operation("deactivate", "staff_allowlist", uid)
    return entry


def list_access_requests(
    session: Session, status: RequestStatus | None = None
) -> list[AccessRequestRecord]:
    """Access requests, most recently updated first."""
    records = AccessRepository(session).list_requests(
        status.value if status is not None else None
    )
    return list(records)
