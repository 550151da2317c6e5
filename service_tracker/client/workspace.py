"""The signed-in staff member's view of one selected date.

``ServiceWorkspace`` owns every live query of the selected date. Each query
carries its own cancellation token, and changing the date cancels all of them
before anything of the new date is subscribed, so a late result of the old
date can never land in the new one.
"""

import asyncio
import contextlib
from collections.abc import Callable, Mapping
from datetime import datetime
from enum import StrEnum
from typing import Any, Final

from ..config import Settings
from ..constants import DEFAULT_FEED_POLL_INTERVAL_SECONDS
from ..domain.constants import CLOCK_TICK_SECONDS
from ..domain.entities import (
    ActivityEntry,
    Identity,
    ServiceDay,
    ServiceItem,
    normalize_pin,
    validate_time,
)
from ..domain.exceptions import ConfigurationError, DomainError, ValidationError
from ..logging_config import get_logger
from ..utils import utc_now
from .api import ServiceDayApiClient, TrackerApiClient
from .feeds import FeedMerger, ready_merger, status_merger, time_override_merger
from .refresh import RefreshController, RefreshSource
from .subscriptions import CollectionDiffer, PollingQuery
from .view_model import (
    DayView,
    activity_line,
    build_day_view,
    display_time,
    menu_label,
)

logger: Final = get_logger(__name__)


class PinSyncState(StrEnum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class ClockTicker:
    """Periodically refreshed clock snapshot driving the completed window."""

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        interval: float = CLOCK_TICK_SECONDS,
    ):
        self.clock = clock
        self.interval = interval
        self.now = clock()
        self._task: asyncio.Task | None = None

    def tick(self) -> datetime:
        self.now = self.clock()
        return self.now

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="clock-ticker")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None


class ServiceWorkspace:
    def __init__(
        self,
        api: TrackerApiClient,
        source: ServiceDayApiClient,
        pin: str = "",
        clock: Callable[[], datetime] = utc_now,
        poll_interval: float = DEFAULT_FEED_POLL_INTERVAL_SECONDS,
    ):
        self.api = api
        self.source = source
        self.pin = normalize_pin(pin)
        self.poll_interval = poll_interval
        self.ticker = ClockTicker(clock)
        self.refresh = RefreshController(
            self._fetch_upstream, lambda: self.pin, clock=clock
        )

        self.date = ""
        self.day: ServiceDay | None = None
        self.has_day_response = False
        self.status = status_merger()
        self.overrides = time_override_merger()
        self.ready = ready_merger()
        self.activity: list[ActivityEntry] = []
        self.error = ""
        self.config_missing = False
        self.pin_sync_state = PinSyncState.IDLE
        self.cloud_pin = ""
        self.cloud_pin_loaded = False

        self._queries: list[PollingQuery] = []
        self._generation = 0
        self._refresh_tasks: dict[asyncio.Task, int] = {}
        self._owned_clients: list[ServiceDayApiClient | TrackerApiClient] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        tracker_base_url: str,
        identity: Identity,
        pin: str = "",
    ) -> "ServiceWorkspace":
        """Workspace talking to the tracker API as ``identity``.

        The upstream API, its timeout and the live-query polling interval come
        from ``settings``. Both HTTP clients are closed with the workspace.
        """
        api = TrackerApiClient(tracker_base_url, identity)
        source = ServiceDayApiClient(
            settings.source_api_base_url, settings.source_api_timeout_seconds
        )
        workspace = cls(
            api, source, pin=pin, poll_interval=settings.feed_poll_interval_seconds
        )
        workspace._owned_clients = [api, source]
        return workspace

    # Subscriptions

    def _current(self, generation: int) -> Callable[[], bool]:
        return lambda: generation == self._generation

    def _query(self, name: str, fetch, deliver) -> PollingQuery:
        return PollingQuery(
            f"{name}:{self.date}",
            fetch,
            deliver,
            on_error=self._on_query_error,
            interval=self.poll_interval,
        )

    def _feed_query(self, name: str, fetch, merger: FeedMerger) -> PollingQuery:
        differ = CollectionDiffer()

        def deliver(result: Mapping[str, Any]) -> None:
            if merger.apply(differ.changes(result or {})):
                logger.debug("Feed changed", feed=name, date=self.date)

        return self._query(name, fetch, deliver)

    async def select_date(self, date: str) -> None:
        """Tear down the previous date and subscribe to ``date``."""
        await self.close_subscriptions()
        self._generation += 1
        generation = self._generation

        self.date = date
        self.day = None
        self.has_day_response = False
        self.status.reset()
        self.overrides.reset()
        self.ready.reset()
        self.activity = []
        if not self.config_missing:
            self.error = ""
        self.refresh.reset(date)

        def deliver_day(day: ServiceDay | None) -> None:
            self._on_day_snapshot(day, generation)

        def deliver_activity(entries: list[ActivityEntry]) -> None:
            self.activity = entries

        self._queries = [
            self._query(
                "scraped_day", lambda: self.api.get_service_day(date), deliver_day
            ),
            self._feed_query("status", lambda: self.api.get_status(date), self.status),
            self._feed_query(
                "time_overrides",
                lambda: self.api.get_time_overrides(date),
                self.overrides,
            ),
            self._feed_query("ready", lambda: self.api.get_ready(date), self.ready),
            self._query(
                "activity", lambda: self.api.list_activity(date), deliver_activity
            ),
            self._query("pin", self.api.get_pin, self._on_cloud_pin),
        ]
        self.pin_sync_state = PinSyncState.SYNCING
        for query in self._queries:
            query.start()
        logger.info("Date selected", date=date)

    async def poll_now(self) -> None:
        """Run every live query once without waiting for the interval."""
        for query in list(self._queries):
            await query.poll_once()
        await self.wait_for_refresh()

    async def wait_for_refresh(self) -> None:
        """Wait for the automatic refreshes started for the selected date."""
        tasks = [
            task
            for task, generation in self._refresh_tasks.items()
            if generation == self._generation
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close_subscriptions(self) -> None:
        queries, self._queries = self._queries, []
        for query in queries:
            query.subscription.cancel()
        for query in queries:
            await query.subscription.wait_closed()

    async def start(self, date: str) -> None:
        self.ticker.start()
        await self.select_date(date)

    async def close(self) -> None:
        await self.close_subscriptions()
        tasks = list(self._refresh_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.ticker.stop()
        for client in self._owned_clients:
            await client.aclose()
        self._owned_clients = []

    def _on_query_error(self, error: Exception) -> None:
        if isinstance(error, ConfigurationError):
            self.config_missing = True
        self.error = str(error)

    def _on_day_snapshot(self, day: ServiceDay | None, generation: int) -> None:
        self.day = day
        self.has_day_response = True
        # Runs outside the polling task: a date change drops the outcome
        # through is_current but never aborts the upstream call.
        task = asyncio.create_task(
            self._guard_config(
                self.refresh.on_snapshot(
                    self.date,
                    day.cached_at if day is not None else None,
                    has_renderable_data=day is not None,
                    is_current=self._current(generation),
                )
            ),
            name=f"refresh:{self.date}",
        )
        self._refresh_tasks[task] = generation
        task.add_done_callback(self._on_refresh_done)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        self._refresh_tasks.pop(task, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Automatic refresh crashed", error=str(error))

    # Upstream refresh

    async def _fetch_upstream(self, date: str, pin: str, force_refresh: bool) -> Any:
        return await self.source.fetch_service_day(date, pin, force_refresh)

    async def _guard_config(self, refresh) -> bool:
        try:
            return await refresh
        except ConfigurationError as e:
            self.config_missing = True
            self.error = str(e)
            logger.error("Client configuration missing", error=str(e))
            return False

    async def manual_refresh(self) -> bool:
        return await self._guard_config(
            self.refresh.refresh(
                self.date,
                RefreshSource.MANUAL,
                has_renderable_data=self.day is not None,
                is_current=self._current(self._generation),
            )
        )

    # PIN sync

    async def _on_cloud_pin(self, cloud_pin: str) -> None:
        cloud_pin = normalize_pin(cloud_pin)
        self.cloud_pin_loaded = True
        self.cloud_pin = cloud_pin
        if cloud_pin and cloud_pin != self.pin:
            logger.info("Adopting stored PIN")
            self.pin = cloud_pin
        elif not cloud_pin and self.pin:
            try:
                self.cloud_pin = await self.api.set_pin(self.pin)
            except DomainError as e:
                self.pin_sync_state = PinSyncState.ERROR
                self.error = str(e)
                return
        self.pin_sync_state = PinSyncState.SYNCED

    async def set_pin(self, pin: str) -> str:
        """Change the local PIN and store it for the user's other devices."""
        self.pin = normalize_pin(pin)
        if self.cloud_pin_loaded and self.pin != self.cloud_pin:
            try:
                self.cloud_pin = await self.api.set_pin(self.pin)
            except DomainError as e:
                self.pin_sync_state = PinSyncState.ERROR
                self.error = str(e)
                return self.pin
            self.pin_sync_state = PinSyncState.SYNCED
        return self.pin

    # View

    @property
    def now(self) -> datetime:
        return self.ticker.now

    def view(self) -> DayView:
        return build_day_view(
            self.day,
            self.status.snapshot,
            self.overrides.snapshot,
            self.ready.snapshot,
            self.now,
        )

    def activity_lines(self) -> list[tuple[str, str]]:
        return [activity_line(entry) for entry in self.activity]

    def time_override_menu(self) -> list[tuple[str, str]]:
        view = self.view()
        items = view.active_pickups + view.active_returns + view.completed
        return [(item.item_id, menu_label(item)) for item in items]

    def manual_completion_menu(self) -> list[tuple[str, str]]:
        candidates = self.view().manual_candidates
        return [(item.item_id, menu_label(item)) for item in candidates]

    # Writes

    async def toggle_done(self, item: ServiceItem) -> bool:
        entry = self.status.snapshot.get(item.item_id)
        done = not (entry is not None and entry.done)
        await self.api.set_done(self.date, item, done)
        await self.poll_now()
        return done

    async def force_complete(self, item: ServiceItem) -> None:
        await self.api.set_done(self.date, item, True, force_completed_now=True)
        await self.poll_now()

    async def save_time_override(self, item: ServiceItem, new_time: str) -> str:
        override_time = validate_time(new_time)
        current_time = display_time(item, self.overrides.snapshot)
        if override_time == current_time:
            return override_time
        override_time = await self.api.set_time_override(
            self.date, item, override_time, current_time=current_time
        )
        await self.poll_now()
        return override_time

    async def toggle_ready(self, item: ServiceItem) -> bool:
        if not item.plate.strip():
            raise ValidationError(
                "Cannot mark ready without license plate.",
                "plate",
                ValidationError.REQUIRED,
            )
        entry = self.ready.snapshot.get(item.item_id)
        ready = not (entry is not None and entry.ready)
        await self.api.set_ready(
            self.date,
            item,
            ready,
            item_time=display_time(item, self.overrides.snapshot),
        )
        await self.poll_now()
        return ready
