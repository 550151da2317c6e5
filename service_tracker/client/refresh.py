"""Staleness-driven refresh of the upstream service-day cache."""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Final

from ..domain.constants import STALE_AFTER
from ..domain.entities import normalize_pin
from ..domain.exceptions import ConfigurationError, ServiceDayApiError
from ..logging_config import get_logger
from ..metrics import record_refresh_attempt
from ..utils import to_millis, utc_now

logger: Final = get_logger(__name__)

PIN_REQUIRED_MESSAGE: Final = "Enter the API PIN to refresh the services."
STALE_PIN_WARNING: Final = (
    "Data is out of date (over 2 hours). Enter the PIN to refresh."
)
AUTO_REFRESH_FAILED_WARNING: Final = (
    "Data is out of date. Automatic refresh failed. Use Refresh to try again."
)

Fetcher = Callable[[str, str, bool], Awaitable[Any]]


class RefreshState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    SYNCED = "synced"
    STALE_PENDING_REFRESH = "stale_pending_refresh"
    ERROR = "error"


class RefreshSource(StrEnum):
    AUTO = "auto"
    MANUAL = "manual"


def is_stale(
    cached_at: datetime | None, now: datetime, max_age: timedelta = STALE_AFTER
) -> bool:
    """A day with no cache at all counts as stale."""
    if cached_at is None:
        return True
    return now - cached_at > max_age


def cache_version_key(date: str, cached_at: datetime | None) -> str:
    version = str(to_millis(cached_at)) if cached_at is not None else "missing"
    return f"{date}:{version}"


def _always_current() -> bool:
    return True


class RefreshController:
    """Decides when the upstream cache of the selected date gets refreshed.

    Automatic refreshes run at most once per cache version of a date so a
    refresh that fails to move the cache never turns into a loop. Manual
    refreshes always run, but never two at a time.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        pin_provider: Callable[[], str],
        clock: Callable[[], datetime] = utc_now,
    ):
        self.fetcher = fetcher
        self.pin_provider = pin_provider
        self.clock = clock
        self.state = RefreshState.IDLE
        self.source: RefreshSource | None = None
        self.warning = ""
        self.error = ""
        self._in_flight = False
        self._attempted: set[str] = set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def reset(self, date: str) -> None:
        """Forget the attempts of the previous date."""
        self._attempted.clear()
        self.warning = ""
        self.error = ""
        self.state = RefreshState.IDLE
        logger.debug("Refresh controller reset", date=date)

    async def on_snapshot(
        self,
        date: str,
        cached_at: datetime | None,
        has_renderable_data: bool,
        is_current: Callable[[], bool] = _always_current,
    ) -> bool:
        """React to a new snapshot of the cached day.

        Returns:
            True when an automatic refresh ran and succeeded
        """
        if not is_stale(cached_at, self.clock()):
            self.warning = ""
            if not self._in_flight:
                self.state = RefreshState.SYNCED
            return False

        key = cache_version_key(date, cached_at)
        if key in self._attempted:
            if not self._in_flight and self.state != RefreshState.ERROR:
                self.state = RefreshState.STALE_PENDING_REFRESH
            return False

        self._attempted.add(key)
        return await self.refresh(
            date,
            RefreshSource.AUTO,
            has_renderable_data=has_renderable_data,
            is_current=is_current,
        )

    async def refresh(
        self,
        date: str,
        source: RefreshSource,
        has_renderable_data: bool = True,
        force_refresh: bool | None = None,
        is_current: Callable[[], bool] = _always_current,
    ) -> bool:
        """Ask the upstream to refresh the cache of ``date``.

        Returns False without fetching when the PIN is missing or a refresh is
        already in flight. ``ConfigurationError`` from the fetcher propagates
        after moving the controller to the error state.
        """
        manual = source == RefreshSource.MANUAL
        if force_refresh is None:
            force_refresh = manual

        pin = normalize_pin(self.pin_provider())
        if not pin:
            if manual or not has_renderable_data:
                self._fail(PIN_REQUIRED_MESSAGE)
            else:
                self.warning = STALE_PIN_WARNING
                self.state = RefreshState.STALE_PENDING_REFRESH
            logger.info("Refresh skipped without PIN", date=date, source=source.value)
            return False

        if self._in_flight:
            logger.debug("Refresh already in flight", date=date, source=source.value)
            return False

        self._in_flight = True
        self.source = source
        self.state = RefreshState.LOADING
        if manual:
            self.error = ""

        try:
            await self.fetcher(date, pin, force_refresh)
        except ConfigurationError as e:
            record_refresh_attempt(source.value, False)
            self._fail(str(e))
            raise
        except ServiceDayApiError as e:
            record_refresh_attempt(source.value, False)
            if not is_current():
                logger.debug("Discarding stale refresh failure", date=date)
                return False
            logger.warning(
                "Service day refresh failed",
                date=date,
                source=source.value,
                error=str(e),
                status_code=e.status_code,
            )
            if not manual and has_renderable_data:
                self.warning = AUTO_REFRESH_FAILED_WARNING
                self.state = RefreshState.STALE_PENDING_REFRESH
            else:
                self._fail(str(e))
            return False
        finally:
            self._in_flight = False
            self.source = None

        record_refresh_attempt(source.value, True)
        if not is_current():
            logger.debug("Discarding stale refresh result", date=date)
            return False

        self.warning = ""
        self.error = ""
        self.state = RefreshState.SYNCED
        logger.info("Service day refreshed", date=date, source=source.value)
        return True

    def _fail(self, message: str) -> None:
        self.error = message
        self.state = RefreshState.ERROR
