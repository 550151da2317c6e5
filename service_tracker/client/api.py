"""HTTP clients used by the client core.

``ServiceDayApiClient`` talks to the upstream ``/getjson`` API that refreshes
the per-date cache; ``TrackerApiClient`` talks to this service's ``/api/v1``.
"""

from typing import Any, Final
from urllib.parse import quote

import httpx

from ..constants import DEFAULT_HTTP_TIMEOUT_SECONDS, PIN_HEADER
from ..domain.entities import ActivityEntry, ActivityType, Identity, ServiceItem
from ..domain.exceptions import (
    AccessDeniedError,
    ConfigurationError,
    DomainError,
    NotFoundError,
    ServiceDayApiError,
    UnauthenticatedError,
    ValidationError,
)
from ..domain.service_day import normalize_service_day
from ..logging_config import get_logger
from ..utils import clean_str, to_datetime

logger: Final = get_logger(__name__)

_STATUS_ERRORS: Final[dict[int, type[DomainError]]] = {
    400: ValidationError,
    401: UnauthenticatedError,
    403: AccessDeniedError,
    404: NotFoundError,
    422: ValidationError,
}


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class ServiceDayApiClient:
    """Client of the upstream service-day API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.strip().rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_service_day(
        self, date: str, pin: str = "", force_refresh: bool = False
    ):
        """Fetch (and make the upstream refresh) the items of one date.

        Raises:
            ConfigurationError: If no base URL is configured
            ValidationError: If no date is given
            ServiceDayApiError: On a transport failure or a non-2xx response
        """
        if not self.base_url:
            raise ConfigurationError("Service day API base URL is not configured")
        if not clean_str(date):
            raise ValidationError("Date is required.", "date", ValidationError.REQUIRED)

        params = {"date": date}
        if force_refresh:
            params["forceRefresh"] = "true"
        headers = {PIN_HEADER: pin} if pin else {}

        try:
            response = await self._client.get(
                f"{self.base_url}/getjson", params=params, headers=headers
            )
        except httpx.HTTPError as e:
            raise ServiceDayApiError(f"Service day API unreachable: {e}") from e

        payload = _json_or_none(response)
        if not isinstance(payload, dict):
            payload = {}

        if not response.is_success:
            message = payload.get("error") or f"API error ({response.status_code})"
            raise ServiceDayApiError(str(message), response.status_code)

        data = payload.get("data") or {}
        logger.debug("Service day fetched", date=date, force_refresh=force_refresh)
        return normalize_service_day(
            date,
            data.get("pickups"),
            data.get("returns"),
            cached_at=to_datetime(payload.get("cachedAt")),
        )


def _item_snapshot(item: ServiceItem) -> dict[str, str]:
    return {
        "serviceType": item.service_type.value,
        "time": item.time,
        "name": item.name,
        "reservationId": item.reservation_id,
        "plate": item.plate,
    }


def _activity_from_payload(payload: dict[str, Any]) -> ActivityEntry:
    try:
        action_type = ActivityType(payload.get("actionType"))
    except ValueError:
        action_type = ActivityType.STATUS_TOGGLE
    return ActivityEntry(
        id=payload.get("id"),
        action_type=action_type,
        date=clean_str(payload.get("date")),
        item_id=clean_str(payload.get("itemId")),
        service_type=clean_str(payload.get("serviceType")),
        done=payload.get("done") is True,
        ready=payload.get("ready"),
        plate=clean_str(payload.get("plate")),
        created_at=to_datetime(payload.get("createdAt")),
        updated_by_uid=clean_str(payload.get("updatedByUid")),
        updated_by_name=clean_str(payload.get("updatedByName")),
        updated_by_email=clean_str(payload.get("updatedByEmail")),
        item_name=clean_str(payload.get("itemName")),
        item_time=clean_str(payload.get("itemTime")),
        reservation_id=clean_str(payload.get("reservationId")),
        old_time=clean_str(payload.get("oldTime")),
        new_time=clean_str(payload.get("newTime")),
    )


class TrackerApiClient:
    """Client of the tracker API acting as one signed-in user.

    Problem Details responses are mapped back onto the domain exceptions the
    server raised.
    """

    def __init__(
        self,
        base_url: str,
        identity: Identity,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.strip().rstrip("/")
        self.identity = identity
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def headers(self) -> dict[str, str]:
        headers = {"X-Auth-Uid": self.identity.uid}
        if self.identity.email:
            headers["X-Auth-Email"] = self.identity.email
        if self.identity.display_name:
            headers["X-Auth-Name"] = self.identity.display_name
        if self.identity.photo_url:
            headers["X-Auth-Picture"] = self.identity.photo_url
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        if not self.base_url:
            raise ConfigurationError("Tracker API base URL is not configured")
        try:
            response = await self._client.request(
                method, f"{self.base_url}/api/v1{path}", headers=self.headers, **kwargs
            )
        except httpx.HTTPError as e:
            raise DomainError(f"Tracker API unreachable: {e}") from e

        payload = _json_or_none(response)
        if response.is_success:
            return payload

        detail = ""
        if isinstance(payload, dict):
            detail = clean_str(payload.get("detail") or payload.get("title"))
        detail = detail or f"API error ({response.status_code})"
        logger.debug(
            "Tracker API call failed",
            method=method,
            path=path,
            status_code=response.status_code,
        )
        error_class = _STATUS_ERRORS.get(response.status_code, DomainError)
        field_errors = payload.get("errors") if isinstance(payload, dict) else None
        if error_class is ValidationError and field_errors:
            first = field_errors[0]
            raise ValidationError(
                detail,
                clean_str(first.get("field")),
                clean_str(first.get("code")) or ValidationError.INVALID_VALUE,
            )
        raise error_class(detail)

    async def request_access(self) -> dict[str, Any]:
        return await self._request("POST", "/access/request")

    async def get_service_day(self, date: str):
        """The cached day, or None while the upstream has produced nothing."""
        try:
            payload = await self._request("GET", f"/service-days/{date}")
        except NotFoundError:
            return None
        return normalize_service_day(
            date,
            payload.get("pickups"),
            payload.get("returns"),
            cached_at=to_datetime(payload.get("cachedAt")),
        )

    async def get_status(self, date: str) -> dict[str, dict[str, Any]]:
        return await self._request("GET", f"/service-days/{date}/status")

    async def get_time_overrides(self, date: str) -> dict[str, dict[str, Any]]:
        return await self._request("GET", f"/service-days/{date}/time-overrides")

    async def get_ready(self, date: str) -> dict[str, dict[str, Any]]:
        return await self._request("GET", f"/service-days/{date}/ready")

    async def list_activity(
        self, date: str, limit: int | None = None
    ) -> list[ActivityEntry]:
        params = {"limit": limit} if limit else None
        payload = await self._request(
            "GET", f"/service-days/{date}/activity", params=params
        )
        return [_activity_from_payload(entry) for entry in payload or []]

    async def set_done(
        self,
        date: str,
        item: ServiceItem,
        done: bool,
        force_completed_now: bool = False,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/service-days/{date}/items/{quote(item.item_id, safe='')}/status",
            json={
                "item": _item_snapshot(item),
                "done": done,
                "forceCompletedNow": force_completed_now,
            },
        )

    async def set_time_override(
        self,
        date: str,
        item: ServiceItem,
        new_time: str,
        current_time: str | None = None,
    ) -> str:
        payload = await self._request(
            "POST",
            f"/service-days/{date}/items/{quote(item.item_id, safe='')}/time",
            json={
                "item": _item_snapshot(item),
                "time": new_time,
                "currentTime": current_time,
            },
        )
        return payload["overrideTime"]

    async def set_ready(
        self,
        date: str,
        item: ServiceItem,
        ready: bool,
        item_time: str | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/service-days/{date}/items/{quote(item.item_id, safe='')}/ready",
            json={"item": _item_snapshot(item), "ready": ready, "itemTime": item_time},
        )

    async def get_pin(self) -> str:
        payload = await self._request("GET", "/settings/pin")
        return clean_str(payload.get("pin"))

    async def set_pin(self, pin: str) -> str:
        payload = await self._request("PUT", "/settings/pin", json={"pin": pin})
        return clean_str(payload.get("pin"))
