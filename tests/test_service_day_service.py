"""Tests for the staff writes over the per-date service collections."""

from datetime import timedelta

import pytest
from sqlmodel import DateTime, Session, SQLModel

from service_tracker.application.service_day_service import (
    cache_service_day,
    get_ready_map,
    get_service_day,
    get_status_map,
    get_time_override_map,
    list_activity,
    set_item_done_state,
    set_item_ready_state,
    set_item_time_override,
)
from service_tracker.domain.constants import FORCE_COMPLETED_OFFSET
from service_tracker.domain.entities import (
    ActivityType,
    Identity,
    ServiceItem,
    ServiceType,
)
from service_tracker.domain.exceptions import NotFoundError, ValidationError
from service_tracker.domain.service_day import normalize_service_day
from service_tracker.infrastructure.database.models import ServiceStatusRecord

DATE = "2026-03-14"
USER = Identity(uid="staff-1", email="ana.silva@example.com", display_name="Ana Silva")
PICKUP = ServiceItem(
    item_id="p1",
    service_type=ServiceType.PICKUP,
    time="10:00",
    name="Maria",
    reservation_id="R100",
    plate="AA-12-BB",
)
RETURN = ServiceItem(
    item_id="r1", service_type=ServiceType.RETURN, time="18:30", name="Maria"
)


def test_set_item_done_state_upserts_status_and_logs(session: Session, now):
    entry = set_item_done_state(session, DATE, PICKUP, True, USER, now=now)

    assert entry.done is True
    assert entry.updated_at == now
    assert entry.updated_by_name == "Ana"
    assert entry.updated_by_email == USER.email

    set_item_done_state(session, DATE, PICKUP, False, USER, now=now)
    status = get_status_map(session, DATE)
    assert list(status) == ["p1"]
    assert status["p1"].done is False

    activity = list_activity(session, DATE)
    assert [a.action_type for a in activity] == [ActivityType.STATUS_TOGGLE] * 2
    assert activity[0].item_name == "Maria"
    assert activity[0].reservation_id == "R100"


def test_force_completed_backdates_timestamp(session: Session, now):
    entry = set_item_done_state(
        session, DATE, PICKUP, True, USER, force_completed_now=True, now=now
    )

    assert entry.updated_at == now - FORCE_COMPLETED_OFFSET


def test_write_without_item_id_is_rejected(session: Session, now):
    item = ServiceItem(item_id=" ", service_type=ServiceType.PICKUP)

    with pytest.raises(ValidationError, match="itemId"):
        set_item_done_state(session, DATE, item, True, USER, now=now)


def test_time_override_writes_override_and_activity(session: Session, now):
    result = set_item_time_override(session, DATE, PICKUP, " 11:15 ", USER, now=now)

    assert result == "11:15"
    override = get_time_override_map(session, DATE)["p1"]
    assert override.override_time == "11:15"
    assert override.original_time == "10:00"

    (entry,) = list_activity(session, DATE)
    assert entry.action_type == ActivityType.TIME_CHANGE
    assert entry.old_time == "10:00"
    assert entry.new_time == "11:15"


def test_time_override_uses_previous_override_as_old_time(session: Session, now):
    set_item_time_override(session, DATE, PICKUP, "11:15", USER, now=now)
    set_item_time_override(
        session, DATE, PICKUP, "12:00", USER, now=now + timedelta(minutes=1)
    )

    latest = list_activity(session, DATE)[0]
    assert latest.old_time == "11:15"
    assert latest.new_time == "12:00"
    assert get_time_override_map(session, DATE)["p1"].original_time == "10:00"


def test_time_override_to_current_time_is_a_noop(session: Session, now):
    assert set_item_time_override(session, DATE, PICKUP, "10:00", USER, now=now) == (
        "10:00"
    )

    assert get_time_override_map(session, DATE) == {}
    assert list_activity(session, DATE) == []


def test_time_override_rejects_invalid_time(session: Session, now):
    with pytest.raises(ValidationError, match="HH:mm"):
        set_item_time_override(session, DATE, PICKUP, "25:00", USER, now=now)

    assert list_activity(session, DATE) == []


def test_ready_state_for_delivery(session: Session, now):
    entry = set_item_ready_state(
        session, DATE, PICKUP, True, USER, item_time="10:30", now=now
    )

    assert entry.ready is True
    assert entry.plate == "AA-12-BB"
    assert get_ready_map(session, DATE)["p1"].ready is True

    (activity,) = list_activity(session, DATE)
    assert activity.action_type == ActivityType.READY_TOGGLE
    assert activity.ready is True
    assert activity.item_time == "10:30"


def test_ready_state_requires_delivery_with_plate(session: Session, now):
    with pytest.raises(ValidationError):
        set_item_ready_state(session, DATE, RETURN, True, USER, now=now)

    no_plate = ServiceItem(item_id="p2", service_type=ServiceType.PICKUP)
    with pytest.raises(ValidationError, match="plate"):
        set_item_ready_state(session, DATE, no_plate, True, USER, now=now)


def test_list_activity_is_newest_first_and_limited(session: Session, now):
    for minute in range(5):
        set_item_done_state(
            session,
            DATE,
            PICKUP,
            minute % 2 == 0,
            USER,
            now=now + timedelta(minutes=minute),
        )

    entries = list_activity(session, DATE, limit=3)

    assert len(entries) == 3
    assert entries[0].created_at == now + timedelta(minutes=4)
    assert entries[0].done is True
    assert entries[1].done is False


def test_collections_are_scoped_by_date(session: Session, now):
    set_item_done_state(session, DATE, PICKUP, True, USER, now=now)

    assert get_status_map(session, "2026-03-15") == {}


def test_get_service_day_missing_raises(session: Session):
    with pytest.raises(NotFoundError):
        get_service_day(session, DATE)


def test_cache_service_day_round_trip(session: Session, now):
    day = normalize_service_day(
        DATE,
        [{"id": "R1", "time": "10:00", "name": "Ana", "extras": ["Child seat"]}],
        [{"itemId": "ret-1", "time": "18:00"}],
    )

    cache_service_day(session, day, now=now)
    stored = get_service_day(session, DATE)

    assert stored.cached_at == now
    assert stored.pickups[0].item_id == day.pickups[0].item_id
    assert stored.pickups[0].extras == ("Child seat",)
    assert stored.returns[0].item_id == "ret-1"


def test_timestamps_are_stored_as_naive_utc(session: Session, now):
    set_item_done_state(session, DATE, PICKUP, True, USER, now=now)
    session.expire_all()

    record = session.get(ServiceStatusRecord, "2026-03-14_p1")

    assert record is not None
    assert record.updated_at == now
    assert record.updated_at.tzinfo is None


def test_datetime_columns_use_plain_storage():
    datetime_columns = [
        column
        for table in SQLModel.metadata.sorted_tables
        for column in table.columns
        if isinstance(getattr(column.type, "impl", column.type), DateTime)
    ]

    assert datetime_columns
    for column in datetime_columns:
        assert type(column.type) is DateTime, column
        assert column.type.timezone is False
