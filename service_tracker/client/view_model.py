"""Renderable projection of one service day.

Everything here is pure: the workspace hands in the cached upstream day, the
three live maps and a clock snapshot, and gets back lists ready to display.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from ..domain.constants import COMPLETED_HIDE_AFTER, PLATE_HUE_STEP
from ..domain.entities import (
    ActivityEntry,
    ActivityType,
    ReadyEntry,
    ServiceDay,
    ServiceItem,
    ServiceType,
    StatusEntry,
    TimeOverrideEntry,
    normalize_plate,
)
from ..utils import clean_str

EMPTY_TIME = "--:--"
EMPTY_STAMP = "--/-- --:--"

SERVICE_LABELS = {ServiceType.PICKUP: "Delivery", ServiceType.RETURN: "Return"}


def service_label(service_type: str) -> str:
    return "Return" if service_type == ServiceType.RETURN else "Delivery"


def display_time(
    item: ServiceItem, overrides: Mapping[str, TimeOverrideEntry]
) -> str:
    """A non-empty override wins over the original scheduled time."""
    override = overrides.get(item.item_id)
    if override is not None and clean_str(override.override_time):
        return clean_str(override.override_time)
    return item.time


def plate_color(index: int) -> str:
    """Golden-angle hue for the n-th shared plate."""
    hue = math.floor((index * PLATE_HUE_STEP) % 360 + 0.5)
    return f"hsl({hue} 78% 42%)"


@dataclass(frozen=True)
class SharedPlate:
    plate: str
    label: str
    color: str
    pickup_times: tuple[str, ...] = ()
    return_times: tuple[str, ...] = ()


def _unique_times(times: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for time in times:
        time = clean_str(time)
        if time:
            seen.setdefault(time, None)
    return tuple(seen)


def find_shared_plates(
    pickups: list[ServiceItem],
    returns: list[ServiceItem],
    overrides: Mapping[str, TimeOverrideEntry],
) -> dict[str, SharedPlate]:
    """Plates that appear on both a delivery and a return of the same day.

    Keyed by normalized plate, ordered by plate so each keeps its color while
    the set of shared plates does not change.
    """
    labels: dict[str, str] = {}
    pickup_times: dict[str, list[str]] = {}
    return_times: dict[str, list[str]] = {}

    for items, times in ((pickups, pickup_times), (returns, return_times)):
        for item in items:
            plate = normalize_plate(item.plate)
            if not plate:
                continue
            labels.setdefault(plate, item.plate.strip().upper())
            times.setdefault(plate, []).append(display_time(item, overrides))

    shared = sorted(set(pickup_times) & set(return_times))
    return {
        plate: SharedPlate(
            plate=plate,
            label=labels[plate],
            color=plate_color(index),
            pickup_times=_unique_times(pickup_times[plate]),
            return_times=_unique_times(return_times[plate]),
        )
        for index, plate in enumerate(shared)
    }


def is_completed(entry: StatusEntry | None, now: datetime) -> bool:
    """Done for longer than the completed window.

    A done item whose timestamp has not arrived yet stays active.
    """
    if entry is None or not entry.done or entry.updated_at is None:
        return False
    return now - entry.updated_at > COMPLETED_HIDE_AFTER


def is_manual_completion_candidate(entry: StatusEntry | None, now: datetime) -> bool:
    """Done but still inside the window, so it can be force-completed."""
    if entry is None or not entry.done:
        return False
    return not is_completed(entry, now)


@dataclass(frozen=True)
class ItemView:
    item: ServiceItem
    display_time: str
    done: bool = False
    ready: bool = False
    time_overridden: bool = False
    status: StatusEntry | None = None
    shared_plate: SharedPlate | None = None

    @property
    def item_id(self) -> str:
        return self.item.item_id


@dataclass
class DayView:
    date: str
    active_pickups: list[ItemView] = field(default_factory=list)
    active_returns: list[ItemView] = field(default_factory=list)
    completed: list[ItemView] = field(default_factory=list)
    manual_candidates: list[ItemView] = field(default_factory=list)
    shared_plates: dict[str, SharedPlate] = field(default_factory=dict)

    @property
    def has_items(self) -> bool:
        return bool(self.active_pickups or self.active_returns or self.completed)


def _sort_key(view: ItemView) -> tuple[bool, str]:
    # Items without a time go last
    return (not view.display_time, view.display_time)


def build_day_view(
    day: ServiceDay | None,
    status: Mapping[str, StatusEntry],
    overrides: Mapping[str, TimeOverrideEntry],
    ready: Mapping[str, ReadyEntry],
    now: datetime,
) -> DayView:
    if day is None:
        return DayView(date="")

    shared = find_shared_plates(day.pickups, day.returns, overrides)
    view = DayView(date=day.date, shared_plates=shared)

    for items, active in (
        (day.pickups, view.active_pickups),
        (day.returns, view.active_returns),
    ):
        for item in items:
            entry = status.get(item.item_id)
            ready_entry = ready.get(item.item_id)
            item_view = ItemView(
                item=item,
                display_time=display_time(item, overrides),
                done=bool(entry and entry.done),
                ready=bool(
                    item.service_type == ServiceType.PICKUP
                    and ready_entry
                    and ready_entry.ready
                ),
                time_overridden=display_time(item, overrides) != item.time,
                status=entry,
                shared_plate=shared.get(normalize_plate(item.plate)),
            )
            if is_completed(entry, now):
                view.completed.append(item_view)
            else:
                active.append(item_view)
                if is_manual_completion_candidate(entry, now):
                    view.manual_candidates.append(item_view)

    view.active_pickups.sort(key=_sort_key)
    view.active_returns.sort(key=_sort_key)
    view.completed.sort(key=_sort_key)
    view.manual_candidates.sort(key=_sort_key)
    return view


def menu_label(item_view: ItemView) -> str:
    """``HH:mm - Delivery|Return - name`` for selection menus."""
    item = item_view.item
    time = item_view.display_time or item.time or EMPTY_TIME
    return f"{time} - {SERVICE_LABELS[item.service_type]} - {item.label}"


def activity_line(entry: ActivityEntry) -> tuple[str, str]:
    """Headline and detail line describing one activity entry."""
    actor = entry.updated_by_name or entry.updated_by_email or "Team"
    if entry.action_type == ActivityType.TIME_CHANGE:
        action = "changed time"
    elif entry.action_type == ActivityType.READY_TOGGLE:
        action = "marked ready" if entry.ready else "unmarked ready"
    else:
        action = "completed" if entry.done else "undid"
    headline = f"{actor} {action} {service_label(entry.service_type)}"

    item_label = entry.item_name or f"Service {entry.item_id}"
    reservation = f"#{entry.reservation_id or entry.item_id}"
    stamp = (
        entry.created_at.strftime("%d/%m %H:%M") if entry.created_at else EMPTY_STAMP
    )
    if entry.action_type == ActivityType.TIME_CHANGE:
        old_time = entry.old_time or EMPTY_TIME
        new_time = entry.new_time or entry.item_time or EMPTY_TIME
        change = f"{old_time} → {new_time}"
        detail = f"{item_label} · {reservation} · {change} · {stamp}"
    else:
        item_time = entry.item_time or EMPTY_TIME
        detail = f"{item_label} · {reservation} · {item_time} · {stamp}"
    return headline, detail
