"""Access-approval domain rules: statuses, callback encoding and cooldowns."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Final

from ..utils import to_millis
from .constants import CALLBACK_PREFIX, CALLBACK_SEPARATOR, NOTIFICATION_COOLDOWN


class RequestStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


class AccessState(StrEnum):
    ALLOWED = "allowed"
    PENDING = "pending"
    DENIED = "denied"
    BLOCKED = "blocked"


class NotificationState(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class CallbackAction(StrEnum):
    APPROVE = "approve"
    DENY = "deny"
    BLOCK = "block"


ACTION_CODES: Final[dict[str, CallbackAction]] = {
    "a": CallbackAction.APPROVE,
    "d": CallbackAction.DENY,
    "b": CallbackAction.BLOCK,
}

ACTION_RESULT_STATUS: Final[dict[CallbackAction, RequestStatus]] = {
    CallbackAction.APPROVE: RequestStatus.APPROVED,
    CallbackAction.DENY: RequestStatus.DENIED,
    CallbackAction.BLOCK: RequestStatus.BLOCKED,
}


class Messages:
    """User-facing copy returned by the access-request entry point."""

    ALLOWED: Final = "Access granted."
    BLOCKED: Final = "Your account is blocked. Contact the administrator."
    DENIED: Final = "Request denied. Contact the administrator to reopen it."
    ALREADY_SENT: Final = "Request already sent. Wait for approval on Telegram."
    SENT: Final = "Request sent. Wait for approval on Telegram."
    NOTIFICATION_FAILED: Final = (
        "Request registered, but the Telegram notification failed. "
        "Contact the administrator."
    )


@dataclass(frozen=True)
class AccessResult:
    """Outcome of an access request as returned to the caller."""

    state: AccessState
    request_status: RequestStatus
    message: str


@dataclass(frozen=True)
class ParsedCallback:
    action_code: str
    action: CallbackAction
    uid: str


def normalize_status(value: str | None) -> RequestStatus:
    """Map a stored status to a known value, anything else to ``unknown``."""
    normalized = str(value or "").strip().lower()
    try:
        status = RequestStatus(normalized)
    except ValueError:
        return RequestStatus.UNKNOWN
    return status


def map_request_state(status: str) -> AccessState:
    if status == RequestStatus.APPROVED:
        return AccessState.ALLOWED
    if status == RequestStatus.BLOCKED:
        return AccessState.BLOCKED
    if status == RequestStatus.DENIED:
        return AccessState.DENIED
    return AccessState.PENDING


def should_send_notification(
    last_notification_at: datetime | None, now: datetime
) -> bool:
    """Whether a still-pending request may notify the admins again.

    A request that was never notified always notifies; otherwise the previous
    notification must be at least one cooldown old.
    """
    if last_notification_at is None:
        return True

    now_ms = to_millis(now)
    last_ms = to_millis(last_notification_at)
    if not last_ms or not now_ms:
        return True

    return now_ms - last_ms >= NOTIFICATION_COOLDOWN.total_seconds() * 1000


def encode_callback_data(action_code: str, uid: str) -> str:
    return CALLBACK_SEPARATOR.join((CALLBACK_PREFIX, action_code, uid))


def parse_callback_data(raw: object) -> ParsedCallback | None:
    """Parse ``apr|<code>|<uid>`` callback data, None when malformed."""
    parts = str(raw if raw is not None else "").split(CALLBACK_SEPARATOR)
    if len(parts) != 3 or parts[0] != CALLBACK_PREFIX:
        return None

    action_code, uid = parts[1], parts[2]
    action = ACTION_CODES.get(action_code)
    if action is None or not uid:
        return None

    return ParsedCallback(action_code=action_code, action=action, uid=uid)


def format_user_label(display_name: str, email: str, uid: str) -> str:
    return display_name or email or uid
