"""Parsing of upstream service-day payloads into ServiceItem entities."""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from ..utils import clean_str
from .constants import FALLBACK_ITEM_ID_PREFIX
from .entities import ServiceDay, ServiceItem, ServiceType


def fallback_item_id(
    payload: Mapping[str, Any], date: str, service_type: str, index: int
) -> str:
    """Deterministic id for an upstream item that carries none.

    The fingerprint covers the defining fields plus the position in the list,
    so identical rows within one fetch still get distinct ids.
    """
    fingerprint = "|".join(
        clean_str(value).lower()
        for value in (
            date,
            service_type,
            payload.get("id"),
            payload.get("time"),
            payload.get("name"),
            payload.get("car"),
            payload.get("plate"),
            index,
        )
    )
    return f"{FALLBACK_ITEM_ID_PREFIX}{fingerprint}"


def _parse_service_type(value: Any, default: ServiceType) -> ServiceType:
    try:
        return ServiceType(clean_str(value).lower())
    except ValueError:
        return default


def _parse_extras(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list | tuple):
        return ()
    return tuple(clean_str(extra) for extra in value if clean_str(extra))


def parse_service_item(
    payload: Mapping[str, Any], date: str, service_type: ServiceType, index: int
) -> ServiceItem:
    resolved_type = _parse_service_type(payload.get("serviceType"), service_type)
    item_id = clean_str(payload.get("itemId")) or fallback_item_id(
        payload, date, resolved_type.value, index
    )
    return ServiceItem(
        item_id=item_id,
        service_type=resolved_type,
        time=clean_str(payload.get("time")),
        reservation_id=clean_str(payload.get("id")),
        name=clean_str(payload.get("name")),
        car=clean_str(payload.get("car")),
        plate=clean_str(payload.get("plate")),
        phone=clean_str(payload.get("phone")),
        flight_number=clean_str(payload.get("flightNumber")),
        location=clean_str(payload.get("location")),
        notes=clean_str(payload.get("notes")),
        extras=_parse_extras(payload.get("extras")),
    )


def normalize_items(
    items: Any, date: str, service_type: ServiceType
) -> list[ServiceItem]:
    """Parse a raw item list, tolerating a missing or malformed payload."""
    if not isinstance(items, list):
        return []
    return [
        parse_service_item(item, date, service_type, index)
        for index, item in enumerate(items)
        if isinstance(item, Mapping)
    ]


def normalize_service_day(
    date: str,
    pickups: Any,
    returns: Any,
    cached_at: datetime | None = None,
) -> ServiceDay:
    return ServiceDay(
        date=date,
        pickups=normalize_items(pickups, date, ServiceType.PICKUP),
        returns=normalize_items(returns, date, ServiceType.RETURN),
        cached_at=cached_at,
    )


def item_to_payload(item: ServiceItem) -> dict[str, Any]:
    """Inverse of parse_service_item, in the upstream field naming."""
    return {
        "itemId": item.item_id,
        "serviceType": item.service_type.value,
        "id": item.reservation_id,
        "time": item.time,
        "name": item.name,
        "car": item.car,
        "plate": item.plate,
        "phone": item.phone,
        "flightNumber": item.flight_number,
        "location": item.location,
        "notes": item.notes,
        "extras": list(item.extras),
    }
