"""Pure domain entities without infrastructure dependencies."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from .constants import MAX_PIN_LENGTH
from .exceptions import ValidationError

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_PLATE_STRIP = re.compile(r"[^A-Z0-9]")
_EMAIL_NAME_SPLIT = re.compile(r"[._-]+")


class ServiceType(StrEnum):
    PICKUP = "pickup"
    RETURN = "return"


class ActivityType(StrEnum):
    STATUS_TOGGLE = "status_toggle"
    TIME_CHANGE = "time_change"
    READY_TOGGLE = "ready_toggle"


def validate_time(value: str | None) -> str:
    """Validate and normalize a 24h ``HH:mm`` time.

    Raises:
        ValidationError: If the value is not a valid HH:mm time
    """
    normalized = str(value or "").strip()
    match = _TIME_PATTERN.match(normalized)
    if not match:
        raise ValidationError(
            "Invalid time. Use the HH:mm format.",
            "time",
            ValidationError.INVALID_FORMAT,
        )
    return f"{match.group(1)}:{match.group(2)}"


def normalize_email(email: str | None) -> str:
    return str(email or "").strip().lower()


def normalize_plate(plate: str | None) -> str:
    """Uppercase a plate and strip everything but letters and digits."""
    return _PLATE_STRIP.sub("", str(plate or "").strip().upper())


def normalize_pin(pin: str | None) -> str:
    return re.sub(r"[^0-9]", "", str(pin or ""))[:MAX_PIN_LENGTH]


def updater_first_name(display_name: str | None, email: str | None) -> str:
    """Short name shown next to audit stamps.

    First word of the display name, else the e-mail local part up to the first
    separator, else ``Unknown``.
    """
    name = str(display_name or "").strip()
    if name:
        return name.split()[0]

    address = str(email or "").strip()
    if address:
        local_part = address.split("@")[0]
        email_name = _EMAIL_NAME_SPLIT.split(local_part)[0]
        if email_name:
            return email_name

    return "Unknown"


@dataclass(frozen=True)
class Identity:
    """An authenticated caller as asserted by the authentication front."""

    uid: str
    email: str = ""
    display_name: str = ""
    photo_url: str = ""

    def __post_init__(self):
        if not self.uid or not self.uid.strip():
            raise ValidationError(
                "Identity uid cannot be empty", "uid", ValidationError.REQUIRED
            )

    @property
    def email_normalized(self) -> str:
        return normalize_email(self.email)

    @property
    def first_name(self) -> str:
        return updater_first_name(self.display_name, self.email)


@dataclass(frozen=True)
class ServiceItem:
    """One delivery (pickup) or return job for one date."""

    item_id: str
    service_type: ServiceType
    time: str = ""
    reservation_id: str = ""
    name: str = ""
    car: str = ""
    plate: str = ""
    phone: str = ""
    flight_number: str = ""
    location: str = ""
    notes: str = ""
    extras: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return self.name or self.reservation_id or self.item_id


@dataclass(frozen=True)
class StatusEntry:
    done: bool = False
    updated_at: datetime | None = None
    updated_by_name: str = ""
    updated_by_email: str = ""


@dataclass(frozen=True)
class TimeOverrideEntry:
    override_time: str = ""
    original_time: str = ""
    updated_at: datetime | None = None
    updated_by_name: str = ""
    updated_by_email: str = ""


@dataclass(frozen=True)
class ReadyEntry:
    ready: bool = False
    plate: str = ""
    updated_at: datetime | None = None
    updated_by_name: str = ""
    updated_by_email: str = ""


@dataclass(frozen=True)
class ActivityEntry:
    """Append-only audit row for one staff action on one date."""

    id: int | None
    action_type: ActivityType
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


@dataclass
class ServiceDay:
    """Raw upstream data for one date, as cached in ``scraped_data``."""

    date: str
    pickups: list[ServiceItem] = field(default_factory=list)
    returns: list[ServiceItem] = field(default_factory=list)
    cached_at: datetime | None = None

    @property
    def has_items(self) -> bool:
        return bool(self.pickups or self.returns)
