"""Staff writes and reads over the per-date service collections."""

from datetime import datetime
from typing import Final

from sqlmodel import Session

from ..domain.constants import ACTIVITY_DISPLAY_LIMIT, FORCE_COMPLETED_OFFSET
from ..domain.entities import (
    ActivityEntry,
    ActivityType,
    Identity,
    ReadyEntry,
    ServiceDay,
    ServiceItem,
    ServiceType,
    StatusEntry,
    TimeOverrideEntry,
    validate_time,
)
from ..domain.exceptions import NotFoundError, ValidationError
from ..domain.service_day import item_to_payload
from ..infrastructure.database.models import (
    ScrapedDay,
    ServiceActivityRecord,
    ServiceReadyRecord,
    ServiceStatusRecord,
    ServiceTimeOverrideRecord,
    item_doc_id,
)
from ..infrastructure.database.repositories import ServiceDayRepository
from ..logging_config import get_logger
from ..logging_utils import log_database_operation
from ..metrics import record_service_write
from ..utils import clean_str, utc_now

logger: Final = get_logger(__name__)


def _require_item_id(item: ServiceItem) -> str:
    item_id = clean_str(item.item_id)
    if not item_id:
        raise ValidationError(
            "Cannot update item without itemId.", "itemId", ValidationError.REQUIRED
        )
    return item_id


def _require_date(date: str) -> str:
    date = clean_str(date)
    if not date:
        raise ValidationError("Date is required.", "date", ValidationError.REQUIRED)
    return date


def _activity(
    action_type: ActivityType,
    date: str,
    item: ServiceItem,
    user: Identity,
    now: datetime,
    **fields,
) -> ServiceActivityRecord:
    return ServiceActivityRecord(
        date=date,
        action_type=action_type.value,
        item_id=item.item_id,
        service_type=item.service_type.value,
        created_at=now,
        updated_by_uid=user.uid,
        updated_by_name=user.first_name,
        updated_by_email=user.email,
        item_name=item.name,
        reservation_id=item.reservation_id,
        **fields,
    )


def set_item_done_state(
    session: Session,
    date: str,
    item: ServiceItem,
    done: bool,
    user: Identity,
    force_completed_now: bool = False,
    now: datetime | None = None,
) -> StatusEntry:
    """Upsert the status of one item and log the toggle.

    With ``force_completed_now`` the timestamp is backdated past the completed
    window so the item leaves the active list immediately.
    """
    now = now or utc_now()
    date = _require_date(date)
    item_id = _require_item_id(item)
    updated_at = now - FORCE_COMPLETED_OFFSET if force_completed_now else now

    repository = ServiceDayRepository(session)
    record = repository.find_status(date, item_id) or ServiceStatusRecord(
        id=item_doc_id(date, item_id), date=date, item_id=item_id
    )
    record.service_type = item.service_type.value
    record.done = done
    record.updated_at = updated_at
    record.updated_by_uid = user.uid
    record.updated_by_name = user.first_name
    record.updated_by_email = user.email
    repository.save(record)
    repository.save(
        _activity(
            ActivityType.STATUS_TOGGLE,
            date,
            item,
            user,
            now,
            done=done,
            item_time=item.time,
        )
    )
    session.commit()
    session.refresh(record)

    record_service_write("status")
    log_database_operation(
        "upsert",
        "service_status",
        item_doc_id(date, item_id),
        done=done,
        forced=force_completed_now,
    )
    return record.to_domain()


def set_item_time_override(
    session: Session,
    date: str,
    item: ServiceItem,
    new_time: str,
    user: Identity,
    current_time: str | None = None,
    now: datetime | None = None,
) -> str:
    """Override the scheduled time of one item.

    ``current_time`` is the time the caller currently sees; when omitted the
    stored override (or the original time) is used. Setting the time the item
    already shows is a no-op.

    Returns:
        The normalized HH:mm time

    Raises:
        ValidationError: If the time is not a valid HH:mm value
    """
    now = now or utc_now()
    date = _require_date(date)
    item_id = _require_item_id(item)
    override_time = validate_time(new_time)

    repository = ServiceDayRepository(session)
    existing = repository.find_time_override(date, item_id)
    original_time = clean_str(item.time)
    previous_time = clean_str(current_time)
    if not previous_time and existing is not None:
        previous_time = clean_str(existing.override_time)
    previous_time = previous_time or original_time

    if override_time == previous_time:
        logger.debug("Time override unchanged", date=date, item_id=item_id)
        return override_time

    record = existing or ServiceTimeOverrideRecord(
        id=item_doc_id(date, item_id),
        date=date,
        item_id=item_id,
        override_time=override_time,
    )
    record.service_type = item.service_type.value
    record.original_time = original_time
    record.override_time = override_time
    record.updated_at = now
    record.updated_by_uid = user.uid
    record.updated_by_name = user.first_name
    record.updated_by_email = user.email
    repository.save(record)
    repository.save(
        _activity(
            ActivityType.TIME_CHANGE,
            date,
            item,
            user,
            now,
            item_time=override_time,
            old_time=previous_time,
            new_time=override_time,
        )
    )
    session.commit()

    record_service_write("time_override")
    log_database_operation(
        "upsert",
        "service_time_overrides",
        item_doc_id(date, item_id),
        old_time=previous_time,
        new_time=override_time,
    )
    return override_time


def set_item_ready_state(
    session: Session,
    date: str,
    item: ServiceItem,
    ready: bool,
    user: Identity,
    item_time: str | None = None,
    now: datetime | None = None,
) -> ReadyEntry:
    """Mark a delivery's vehicle ready (or not) and log the toggle.

    Raises:
        ValidationError: For returns, or a delivery without a plate
    """
    now = now or utc_now()
    date = _require_date(date)
    item_id = _require_item_id(item)
    if item.service_type != ServiceType.PICKUP:
        raise ValidationError(
            "Ready state is only available for deliveries.", "serviceType"
        )
    plate = clean_str(item.plate)
    if not plate:
        raise ValidationError(
            "Cannot mark ready without license plate.",
            "plate",
            ValidationError.REQUIRED,
        )

    repository = ServiceDayRepository(session)
    record = repository.find_ready(date, item_id) or ServiceReadyRecord(
        id=item_doc_id(date, item_id), date=date, item_id=item_id
    )
    record.service_type = item.service_type.value
    record.plate = plate
    record.ready = ready is True
    record.updated_at = now
    record.updated_by_uid = user.uid
    record.updated_by_name = user.first_name
    record.updated_by_email = user.email
    repository.save(record)
    repository.save(
        _activity(
            ActivityType.READY_TOGGLE,
            date,
            item,
            user,
            now,
            ready=ready is True,
            plate=plate,
            item_time=clean_str(item_time) or item.time,
        )
    )
    session.commit()
    session.refresh(record)

    record_service_write("ready")
    log_database_operation(
        "upsert", "service_ready", item_doc_id(date, item_id), ready=record.ready
    )
    return record.to_domain()


def list_activity(
    session: Session, date: str, limit: int = ACTIVITY_DISPLAY_LIMIT
) -> list[ActivityEntry]:
    """Most recent activity entries of a date, newest first."""
    limit = max(1, min(limit, ACTIVITY_DISPLAY_LIMIT))
    records = ServiceDayRepository(session).list_activity(_require_date(date), limit)
    return [record.to_domain() for record in records]


def get_service_day(session: Session, date: str) -> ServiceDay:
    """The upstream cache of a date.

    Raises:
        NotFoundError: If the upstream has not produced data for the date yet
    """
    day = ServiceDayRepository(session).find_day(_require_date(date))
    if day is None:
        raise NotFoundError(f"No cached service data for {date}")
    return day


def get_status_map(session: Session, date: str) -> dict[str, StatusEntry]:
    records = ServiceDayRepository(session).list_status(_require_date(date))
    return {record.item_id: record.to_domain() for record in records}


def get_time_override_map(session: Session, date: str) -> dict[str, TimeOverrideEntry]:
    records = ServiceDayRepository(session).list_time_overrides(_require_date(date))
    return {record.item_id: record.to_domain() for record in records}


def get_ready_map(session: Session, date: str) -> dict[str, ReadyEntry]:
    records = ServiceDayRepository(session).list_ready(_require_date(date))
    return {record.item_id: record.to_domain() for record in records}


def cache_service_day(
    session: Session, day: ServiceDay, now: datetime | None = None
) -> ServiceDay:
    """Store a freshly fetched upstream day as the cache of its date."""
    date = _require_date(day.date)
    repository = ServiceDayRepository(session)
    scraped = repository.find_scraped_day(date) or ScrapedDay(date=date)
    scraped.pickups = [item_to_payload(item) for item in day.pickups]
    scraped.returns = [item_to_payload(item) for item in day.returns]
    scraped.cached_at = day.cached_at or now or utc_now()
    repository.save_scraped_day(scraped)
    session.commit()

    log_database_operation(
        "upsert",
        "scraped_data",
        date,
        pickups=len(scraped.pickups),
        returns=len(scraped.returns),
    )
    return scraped.to_domain()
