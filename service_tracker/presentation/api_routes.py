from datetime import datetime
from typing import Annotated, Any, Final

from fastapi import APIRouter, Path, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..application.access_service import request_access
from ..application.service_day_service import (
    get_ready_map,
    get_service_day,
    get_status_map,
    get_time_override_map,
    list_activity,
    set_item_done_state,
    set_item_ready_state,
    set_item_time_override,
)
from ..application.settings_service import get_api_pin, set_api_pin
from ..domain.constants import ACTIVITY_DISPLAY_LIMIT, MAX_PIN_LENGTH
from ..domain.entities import (
    ActivityEntry,
    ReadyEntry,
    ServiceItem,
    ServiceType,
    StatusEntry,
    TimeOverrideEntry,
)
from ..domain.service_day import item_to_payload
from .dependencies import GatewayDep, IdentityDep, SessionDep, SettingsDep, StaffDep

DATE_PATTERN: Final = r"^\d{4}-\d{2}-\d{2}$"

api_router: Final = APIRouter(
    prefix="/api/v1",
    responses={
        400: {"description": "Bad Request - Invalid input data"},
        401: {"description": "Unauthenticated - No identity asserted"},
        403: {"description": "Forbidden - No active allowlist entry"},
    },
)

DatePath = Annotated[
    str, Path(pattern=DATE_PATTERN, description="Service date (YYYY-MM-DD)")
]
ItemIdPath = Annotated[str, Path(min_length=1, description="Stable item identity")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Request Models
class ItemSnapshot(CamelModel):
    """The item as the caller currently sees it."""

    service_type: ServiceType = Field(description="pickup (delivery) or return")
    time: str = Field(default="", description="Original scheduled time (HH:mm)")
    name: str = Field(default="", description="Customer name")
    reservation_id: str = Field(default="", description="Upstream reservation id")
    plate: str = Field(default="", description="Vehicle licence plate")

    def to_item(self, item_id: str) -> ServiceItem:
        return ServiceItem(
            item_id=item_id,
            service_type=self.service_type,
            time=self.time.strip(),
            name=self.name.strip(),
            reservation_id=self.reservation_id.strip(),
            plate=self.plate.strip(),
        )


class StatusUpdate(CamelModel):
    item: ItemSnapshot
    done: bool
    force_completed_now: bool = Field(
        default=False, description="Backdate so the item leaves the active list now"
    )


class TimeOverrideUpdate(CamelModel):
    item: ItemSnapshot
    time: str = Field(description="New time (HH:mm)", examples=["14:30"])
    current_time: str | None = Field(
        default=None, description="Time currently displayed for the item"
    )


class ReadyUpdate(CamelModel):
    item: ItemSnapshot
    ready: bool
    item_time: str | None = Field(default=None, description="Displayed time")


class PinUpdate(CamelModel):
    pin: str = Field(default="", max_length=32, description="Upstream API PIN")


# Response Models
class AccessRequestResponse(CamelModel):
    state: str = Field(description="allowed, pending, denied or blocked")
    request_status: str = Field(description="Stored request status")
    message: str = Field(description="Copy to show to the caller")


class StatusPayload(CamelModel):
    done: bool
    updated_at: datetime | None = None
    updated_by_name: str = ""
    updated_by_email: str = ""

    @classmethod
    def from_entry(cls, entry: StatusEntry) -> "StatusPayload":
        return cls(
            done=entry.done,
            updated_at=entry.updated_at,
            updated_by_name=entry.updated_by_name,
            updated_by_email=entry.updated_by_email,
        )


class TimeOverridePayload(CamelModel):
    override_time: str
    original_time: str = ""
    updated_at: datetime | None = None
    updated_by_name: str = ""
    updated_by_email: str = ""

    @classmethod
    def from_entry(cls, entry: TimeOverrideEntry) -> "TimeOverridePayload":
        return cls(
            override_time=entry.override_time,
            original_time=entry.original_time,
            updated_at=entry.updated_at,
            updated_by_name=entry.updated_by_name,
            updated_by_email=entry.updated_by_email,
        )


class ReadyPayload(CamelModel):
    ready: bool
    plate: str = ""
    updated_at: datetime | None = None
    updated_by_name: str = ""
    updated_by_email: str = ""

    @classmethod
    def from_entry(cls, entry: ReadyEntry) -> "ReadyPayload":
        return cls(
            ready=entry.ready,
            plate=entry.plate,
            updated_at=entry.updated_at,
            updated_by_name=entry.updated_by_name,
            updated_by_email=entry.updated_by_email,
        )


class TimeOverrideResponse(CamelModel):
    override_time: str


class ActivityPayload(CamelModel):
    id: int | None
    action_type: str
    date: str
    item_id: str
    service_type: str = ""
    done: bool = False
    ready: bool | None = None
    plate: str = ""
    created_at: datetime | None = None
    updated_by_uid: str = ""
    updated_by_name: str = ""
    updated_by_email: str = ""
    item_name: str = ""
    item_time: str = ""
    reservation_id: str = ""
    old_time: str = ""
    new_time: str = ""

    @classmethod
    def from_entry(cls, entry: ActivityEntry) -> "ActivityPayload":
        return cls(
            id=entry.id,
            action_type=entry.action_type.value,
            date=entry.date,
            item_id=entry.item_id,
            service_type=entry.service_type,
            done=entry.done,
            ready=entry.ready,
            plate=entry.plate,
            created_at=entry.created_at,
            updated_by_uid=entry.updated_by_uid,
            updated_by_name=entry.updated_by_name,
            updated_by_email=entry.updated_by_email,
            item_name=entry.item_name,
            item_time=entry.item_time,
            reservation_id=entry.reservation_id,
            old_time=entry.old_time,
            new_time=entry.new_time,
        )


class ServiceDayResponse(CamelModel):
    """Upstream cache of one date, items in the upstream field naming."""

    date: str
    cached_at: datetime | None = None
    pickups: list[dict[str, Any]] = Field(default_factory=list)
    returns: list[dict[str, Any]] = Field(default_factory=list)


class PinResponse(CamelModel):
    pin: str = Field(description=f"Digits only, at most {MAX_PIN_LENGTH}")


@api_router.post(
    "/access/request",
    response_model=AccessRequestResponse,
    tags=["access"],
    summary="Request access to the application",
    description="""
    Resolve the caller's access state. An active allowlist entry is granted at
    once; blocked and denied callers get their state back; everyone else gets a
    pending request and the admin chat is notified, at most once per
    cooldown window.
    """,
)
async def api_request_access(
    *,
    session: SessionDep,
    identity: IdentityDep,
    gateway: GatewayDep,
    settings: SettingsDep,
) -> AccessRequestResponse:
    result = await request_access(
        session, identity, gateway, settings.telegram_admin_chat_id
    )
    return AccessRequestResponse(
        state=result.state.value,
        request_status=result.request_status.value,
        message=result.message,
    )


@api_router.get(
    "/service-days/{date}",
    response_model=ServiceDayResponse,
    tags=["service-days"],
    summary="Cached upstream items of a date",
    responses={404: {"description": "No cached data for the date yet"}},
)
async def api_get_service_day(
    *, session: SessionDep, _staff: StaffDep, date: DatePath
) -> ServiceDayResponse:
    day = get_service_day(session, date)
    return ServiceDayResponse(
        date=day.date,
        cached_at=day.cached_at,
        pickups=[item_to_payload(item) for item in day.pickups],
        returns=[item_to_payload(item) for item in day.returns],
    )


@api_router.get(
    "/service-days/{date}/status",
    response_model=dict[str, StatusPayload],
    tags=["service-days"],
    summary="Done state of every item of a date, keyed by item id",
)
async def api_get_status(
    *, session: SessionDep, _staff: StaffDep, date: DatePath
) -> dict[str, StatusPayload]:
    return {
        item_id: StatusPayload.from_entry(entry)
        for item_id, entry in get_status_map(session, date).items()
    }


@api_router.get(
    "/service-days/{date}/time-overrides",
    response_model=dict[str, TimeOverridePayload],
    tags=["service-days"],
    summary="Time overrides of a date, keyed by item id",
)
async def api_get_time_overrides(
    *, session: SessionDep, _staff: StaffDep, date: DatePath
) -> dict[str, TimeOverridePayload]:
    return {
        item_id: TimeOverridePayload.from_entry(entry)
        for item_id, entry in get_time_override_map(session, date).items()
    }


@api_router.get(
    "/service-days/{date}/ready",
    response_model=dict[str, ReadyPayload],
    tags=["service-days"],
    summary="Ready state of the deliveries of a date, keyed by item id",
)
async def api_get_ready(
    *, session: SessionDep, _staff: StaffDep, date: DatePath
) -> dict[str, ReadyPayload]:
    return {
        item_id: ReadyPayload.from_entry(entry)
        for item_id, entry in get_ready_map(session, date).items()
    }


@api_router.post(
    "/service-days/{date}/items/{item_id:path}/status",
    response_model=StatusPayload,
    tags=["service-days"],
    summary="Mark an item done or not done",
)
async def api_set_status(
    *,
    session: SessionDep,
    staff: StaffDep,
    date: DatePath,
    item_id: ItemIdPath,
    update: StatusUpdate,
) -> StatusPayload:
    entry = set_item_done_state(
        session,
        date,
        update.item.to_item(item_id),
        update.done,
        staff,
        force_completed_now=update.force_completed_now,
    )
    return StatusPayload.from_entry(entry)


@api_router.post(
    "/service-days/{date}/items/{item_id:path}/time",
    response_model=TimeOverrideResponse,
    tags=["service-days"],
    summary="Override the scheduled time of an item",
)
async def api_set_time(
    *,
    session: SessionDep,
    staff: StaffDep,
    date: DatePath,
    item_id: ItemIdPath,
    update: TimeOverrideUpdate,
) -> TimeOverrideResponse:
    override_time = set_item_time_override(
        session,
        date,
        update.item.to_item(item_id),
        update.time,
        staff,
        current_time=update.current_time,
    )
    return TimeOverrideResponse(override_time=override_time)


@api_router.post(
    "/service-days/{date}/items/{item_id:path}/ready",
    response_model=ReadyPayload,
    tags=["service-days"],
    summary="Mark a delivery's vehicle ready",
)
async def api_set_ready(
    *,
    session: SessionDep,
    staff: StaffDep,
    date: DatePath,
    item_id: ItemIdPath,
    update: ReadyUpdate,
) -> ReadyPayload:
    entry = set_item_ready_state(
        session,
        date,
        update.item.to_item(item_id),
        update.ready,
        staff,
        item_time=update.item_time,
    )
    return ReadyPayload.from_entry(entry)


@api_router.get(
    "/service-days/{date}/activity",
    response_model=list[ActivityPayload],
    tags=["service-days"],
    summary="Activity log of a date, newest first",
)
async def api_list_activity(
    *,
    session: SessionDep,
    _staff: StaffDep,
    date: DatePath,
    limit: Annotated[int, Query(ge=1, le=ACTIVITY_DISPLAY_LIMIT)] = (
        ACTIVITY_DISPLAY_LIMIT
    ),
) -> list[ActivityPayload]:
    return [ActivityPayload.from_entry(e) for e in list_activity(session, date, limit)]


@api_router.get(
    "/settings/pin",
    response_model=PinResponse,
    tags=["settings"],
    summary="The caller's stored upstream API PIN",
)
async def api_get_pin(*, session: SessionDep, staff: StaffDep) -> PinResponse:
    return PinResponse(pin=get_api_pin(session, staff.uid))


@api_router.put(
    "/settings/pin",
    response_model=PinResponse,
    tags=["settings"],
    summary="Store the caller's upstream API PIN",
)
async def api_set_pin(
    *, session: SessionDep, staff: StaffDep, update: PinUpdate
) -> PinResponse:
    return PinResponse(pin=set_api_pin(session, staff.uid, update.pin))

