"""Table models, one per store collection.

Per-item tables are keyed by ``{date}_{itemId}`` so there is at most one
record per item and date. Timestamps are naive UTC and every datetime
column declares plain ``DateTime`` storage.
"""

from datetime import datetime
from typing import Any

from sqlmodel import JSON, Column, DateTime, Field, SQLModel

from ...domain.access import NotificationState, RequestStatus
from ...domain.entities import (
    ActivityEntry,
    ActivityType,
    ReadyEntry,
    ServiceDay,
    StatusEntry,
    TimeOverrideEntry,
)
from ...domain.service_day import normalize_service_day
from ...utils import utc_now


def item_doc_id(date: str, item_id: str) -> str:
    return f"{date}_{item_id}"


class StaffAllowlistEntry(SQLModel, table=True):  # type: ignore[call-arg]
    """Authoritative permission record; ``active`` gates the whole app."""

    __tablename__: str = "staff_allowlist"  # type: ignore[assignment]

    uid: str = Field(primary_key=True)
    active: bool = False
    role: str = "staff"
    email: str = ""
    display_name: str = ""
    approved_at: datetime | None = Field(default=None, sa_type=DateTime)
    approved_by: str = ""
    approved_by_chat_id: str = ""


class AccessRequestRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """Per-uid approval workflow record."""

    __tablename__: str = "access_requests"  # type: ignore[assignment]

    uid: str = Field(primary_key=True)
    email: str = ""
    email_normalized: str = Field(default="", index=True)
    display_name: str = ""
    photo_url: str = ""
    status: str = Field(default=RequestStatus.PENDING.value, index=True)
    request_count: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    last_requested_at: datetime | None = Field(default=None, sa_type=DateTime)

    last_notification_at: datetime | None = Field(default=None, sa_type=DateTime)
    notification_state: str = NotificationState.PENDING.value
    notification_error: str = ""

    decision_type: str = ""
    decision_at: datetime | None = Field(default=None, sa_type=DateTime)
    decision_by_chat_id: str = ""

    telegram_message_id: int | None = None
    telegram_chat_id: str = ""


class AccessBlockByUid(SQLModel, table=True):  # type: ignore[call-arg]
    __tablename__: str = "access_blocks_uid"  # type: ignore[assignment]

    uid: str = Field(primary_key=True)
    email_normalized: str = ""
    blocked_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    blocked_by_chat_id: str = ""
    reason: str = ""


class AccessBlockByEmail(SQLModel, table=True):  # type: ignore[call-arg]
    __tablename__: str = "access_blocks_email"  # type: ignore[assignment]

    email_normalized: str = Field(primary_key=True)
    last_uid: str = ""
    blocked_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    blocked_by_chat_id: str = ""
    reason: str = ""


class ServiceStatusRecord(SQLModel, table=True):  # type: ignore[call-arg]
    __tablename__: str = "service_status"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    date: str = Field(index=True)
    item_id: str
    service_type: str = ""
    done: bool = False
    updated_at: datetime | None = Field(default=None, sa_type=DateTime)
    updated_by_uid: str = ""
    updated_by_name: str = ""
    updated_by_email: str = ""

    def to_domain(self) -> StatusEntry:
        return StatusEntry(
            done=self.done,
            updated_at=self.updated_at,
            updated_by_name=self.updated_by_name,
            updated_by_email=self.updated_by_email,
        )


class ServiceTimeOverrideRecord(SQLModel, table=True):  # type: ignore[call-arg]
    __tablename__: str = "service_time_overrides"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    date: str = Field(index=True)
    item_id: str
    service_type: str = ""
    original_time: str = ""
    override_time: str
    updated_at: datetime | None = Field(default=None, sa_type=DateTime)
    updated_by_uid: str = ""
    updated_by_name: str = ""
    updated_by_email: str = ""

    def to_domain(self) -> TimeOverrideEntry:
        return TimeOverrideEntry(
            override_time=self.override_time,
            original_time=self.original_time,
            updated_at=self.updated_at,
            updated_by_name=self.updated_by_name,
            updated_by_email=self.updated_by_email,
        )


class ServiceReadyRecord(SQLModel, table=True):  # type: ignore[call-arg]
    __tablename__: str = "service_ready"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    date: str = Field(index=True)
    item_id: str
    service_type: str = ""
    plate: str = ""
    ready: bool = False
    updated_at: datetime | None = Field(default=None, sa_type=DateTime)
    updated_by_uid: str = ""
    updated_by_name: str = ""
    updated_by_email: str = ""

    def to_domain(self) -> ReadyEntry:
        return ReadyEntry(
            ready=self.ready,
            plate=self.plate,
            updated_at=self.updated_at,
            updated_by_name=self.updated_by_name,
            updated_by_email=self.updated_by_email,
        )


class ServiceActivityRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """Append-only; rows are never updated or deleted."""

    __tablename__: str = "service_activity"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    date: str = Field(index=True)
    action_type: str
    item_id: str
    service_type: str = ""
    done: bool = False
    ready: bool | None = None
    plate: str = ""
    created_at: datetime = Field(
        default_factory=utc_now, sa_type=DateTime, index=True
    )
    updated_by_uid: str = ""
    updated_by_name: str = ""
    updated_by_email: str = ""
    item_name: str = ""
    item_time: str = ""
    reservation_id: str = ""
    old_time: str = ""
    new_time: str = ""

    def to_domain(self) -> ActivityEntry:
        try:
            action_type = ActivityType(self.action_type)
        except ValueError:
            action_type = ActivityType.STATUS_TOGGLE
        return ActivityEntry(
            id=self.id,
            action_type=action_type,
            date=self.date,
            item_id=self.item_id,
            service_type=self.service_type,
            done=self.done,
            ready=self.ready,
            plate=self.plate,
            created_at=self.created_at,
            updated_by_uid=self.updated_by_uid,
            updated_by_name=self.updated_by_name,
            updated_by_email=self.updated_by_email,
            item_name=self.item_name,
            item_time=self.item_time,
            reservation_id=self.reservation_id,
            old_time=self.old_time,
            new_time=self.new_time,
        )


class ScrapedDay(SQLModel, table=True):  # type: ignore[call-arg]
    """Upstream-produced cache of one date; read-only to this service."""

    __tablename__: str = "scraped_data"  # type: ignore[assignment]

    date: str = Field(primary_key=True)
    pickups: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    returns: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    cached_at: datetime | None = Field(default=None, sa_type=DateTime)

    def to_domain(self) -> ServiceDay:
        return normalize_service_day(
            self.date, self.pickups, self.returns, cached_at=self.cached_at
        )


class UserSettings(SQLModel, table=True):  # type: ignore[call-arg]
    __tablename__: str = "user_settings"  # type: ignore[assignment]

    uid: str = Field(primary_key=True)
    api_pin: str = ""
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
