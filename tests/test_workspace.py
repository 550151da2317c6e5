"""Tests for the per-date workspace: subscriptions, refresh and PIN sync."""

import asyncio
from datetime import datetime, timedelta

import pytest

from service_tracker.client.refresh import STALE_PIN_WARNING, RefreshState
from service_tracker.client.workspace import PinSyncState, ServiceWorkspace
from service_tracker.config import Settings
from service_tracker.domain.entities import (
    Identity,
    ServiceDay,
    ServiceItem,
    ServiceType,
)
from service_tracker.domain.exceptions import ConfigurationError, ValidationError

NOW = datetime(2026, 3, 14, 12, 0)
DATE = "2026-03-14"
NEXT_DATE = "2026-03-15"

PICKUP = ServiceItem(
    item_id="p1",
    service_type=ServiceType.PICKUP,
    time="10:00",
    name="Maria",
    plate="AA-12-BB",
)
RETURN = ServiceItem(item_id="r1", service_type=ServiceType.RETURN, time="18:00")


class FakeTrackerApi:
    """In-memory stand-in for the tracker HTTP API."""

    def __init__(self):
        self.days: dict[str, ServiceDay] = {}
        self.status: dict[str, dict] = {}
        self.overrides: dict[str, dict] = {}
        self.ready: dict[str, dict] = {}
        self.pin = ""
        self.gates: dict[str, asyncio.Event] = {}
        self.done_calls: list[tuple] = []
        self.time_calls: list[tuple] = []
        self.ready_calls: list[tuple] = []
        self.pin_writes: list[str] = []

    async def get_service_day(self, date):
        if date in self.gates:
            await self.gates[date].wait()
        return self.days.get(date)

    async def get_status(self, date):
        return dict(self.status.get(date, {}))

    async def get_time_overrides(self, date):
        return dict(self.overrides.get(date, {}))

    async def get_ready(self, date):
        return dict(self.ready.get(date, {}))

    async def list_activity(self, date, limit=None):
        return []

    async def get_pin(self):
        return self.pin

    async def set_pin(self, pin):
        self.pin_writes.append(pin)
        self.pin = pin
        return pin

    async def set_done(self, date, item, done, force_completed_now=False):
        self.done_calls.append((date, item.item_id, done, force_completed_now))
        updated_at = NOW - timedelta(minutes=65 if force_completed_now else 0)
        self.status.setdefault(date, {})[item.item_id] = {
            "done": done,
            "updatedAt": updated_at.isoformat(),
        }
        return {}

    async def set_time_override(self, date, item, new_time, current_time=None):
        self.time_calls.append((date, item.item_id, new_time, current_time))
        self.overrides.setdefault(date, {})[item.item_id] = {
            "overrideTime": new_time,
            "originalTime": item.time,
        }
        return new_time

    async def set_ready(self, date, item, ready, item_time=None):
        self.ready_calls.append((date, item.item_id, ready, item_time))
        self.ready.setdefault(date, {})[item.item_id] = {
            "ready": ready,
            "plate": item.plate,
        }
        return {}


class FakeSource:
    def __init__(self, error: Exception | None = None):
        self.calls: list[tuple[str, str, bool]] = []
        self.error = error

    async def fetch_service_day(self, date, pin="", force_refresh=False):
        self.calls.append((date, pin, force_refresh))
        if self.error is not None:
            raise self.error


class BlockingSource(FakeSource):
    """Upstream whose refresh call waits until released."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.completed = False
        self.cancelled = False

    async def fetch_service_day(self, date, pin="", force_refresh=False):
        self.calls.append((date, pin, force_refresh))
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        self.completed = True


def make_workspace(api, source=None, pin=""):
    return ServiceWorkspace(
        api, source or FakeSource(), pin=pin, clock=lambda: NOW, poll_interval=3600
    )


def fresh_day(date=DATE, cached_at=NOW - timedelta(minutes=5)):
    return ServiceDay(
        date=date, pickups=[PICKUP], returns=[RETURN], cached_at=cached_at
    )


@pytest.mark.asyncio
async def test_select_date_builds_the_view():
    api = FakeTrackerApi()
    api.days[DATE] = fresh_day()
    api.status[DATE] = {
        "p1": {"done": True, "updatedAt": (NOW - timedelta(minutes=5)).isoformat()}
    }
    api.overrides[DATE] = {"r1": {"overrideTime": "17:30", "originalTime": "18:00"}}
    source = FakeSource()
    workspace = make_workspace(api, source)

    await workspace.select_date(DATE)
    await workspace.poll_now()

    view = workspace.view()
    assert workspace.has_day_response
    assert workspace.refresh.state == RefreshState.SYNCED
    assert source.calls == []
    assert [v.item_id for v in view.active_pickups] == ["p1"]
    assert view.active_returns[0].display_time == "17:30"
    assert workspace.manual_completion_menu() == [("p1", "10:00 - Delivery - Maria")]
    await workspace.close()


@pytest.mark.asyncio
async def test_stale_day_is_refreshed_with_the_pin():
    api = FakeTrackerApi()
    api.days[DATE] = fresh_day(cached_at=NOW - timedelta(hours=3))
    source = FakeSource()
    workspace = make_workspace(api, source, pin="1234")

    await workspace.select_date(DATE)
    await workspace.poll_now()

    assert source.calls == [(DATE, "1234", False)]
    await workspace.close()


@pytest.mark.asyncio
async def test_stale_day_without_pin_shows_warning():
    api = FakeTrackerApi()
    api.days[DATE] = fresh_day(cached_at=NOW - timedelta(hours=3))
    source = FakeSource()
    workspace = make_workspace(api, source)

    await workspace.select_date(DATE)
    await workspace.poll_now()

    assert source.calls == []
    assert workspace.refresh.warning == STALE_PIN_WARNING
    await workspace.close()


@pytest.mark.asyncio
async def test_changing_date_clears_previous_state():
    api = FakeTrackerApi()
    api.days[DATE] = fresh_day()
    api.status[DATE] = {"p1": {"done": True}}
    workspace = make_workspace(api)

    await workspace.select_date(DATE)
    await workspace.poll_now()
    old_queries = list(workspace._queries)

    await workspace.select_date(NEXT_DATE)

    assert all(not q.subscription.active for q in old_queries)
    assert workspace.date == NEXT_DATE
    assert workspace.day is None
    assert not workspace.has_day_response
    assert dict(workspace.status.snapshot) == {}
    await workspace.close()


@pytest.mark.asyncio
async def test_late_result_of_previous_date_is_never_applied():
    api = FakeTrackerApi()
    api.days[DATE] = fresh_day()
    api.days[NEXT_DATE] = fresh_day(NEXT_DATE)
    api.gates[DATE] = asyncio.Event()
    workspace = make_workspace(api)

    await workspace.select_date(DATE)
    await asyncio.sleep(0)
    await workspace.select_date(NEXT_DATE)
    await workspace.poll_now()

    api.gates[DATE].set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert workspace.day is not None
    assert workspace.day.date == NEXT_DATE
    await workspace.close()


@pytest.mark.asyncio
async def test_date_change_lets_in_flight_refresh_finish():
    api = FakeTrackerApi()
    api.days[DATE] = fresh_day(cached_at=NOW - timedelta(hours=3))
    api.days[NEXT_DATE] = fresh_day(NEXT_DATE)
    source = BlockingSource()
    workspace = make_workspace(api, source, pin="1234")

    await workspace.select_date(DATE)
    await asyncio.wait_for(source.started.wait(), timeout=1)
    in_flight = list(workspace._refresh_tasks)

    await workspace.select_date(NEXT_DATE)
    source.release.set()
    await asyncio.gather(*in_flight)

    assert source.calls == [(DATE, "1234", False)]
    assert source.completed
    assert not source.cancelled
    assert workspace.date == NEXT_DATE
    assert workspace.refresh.error == ""
    assert workspace.refresh.warning == ""
    await workspace.close()


@pytest.mark.asyncio
async def test_cloud_pin_is_adopted():
    api = FakeTrackerApi()
    api.pin = "9876"
    workspace = make_workspace(api, pin="1234")

    await workspace.select_date(DATE)
    await workspace.poll_now()

    assert workspace.pin == "9876"
    assert workspace.pin_sync_state == PinSyncState.SYNCED
    assert api.pin_writes == []
    await workspace.close()


@pytest.mark.asyncio
async def test_local_pin_is_uploaded_when_cloud_is_empty():
    api = FakeTrackerApi()
    workspace = make_workspace(api, pin="1234")

    await workspace.select_date(DATE)
    await workspace.poll_now()
    await workspace.set_pin("55-66")

    assert api.pin_writes == ["1234", "5566"]
    assert workspace.cloud_pin == "5566"
    await workspace.close()


@pytest.mark.asyncio
async def test_missing_configuration_is_flagged():
    api = FakeTrackerApi()
    api.days[DATE] = fresh_day(cached_at=None)
    source = FakeSource(ConfigurationError("Service API URL is not configured"))
    workspace = make_workspace(api, source, pin="1234")

    await workspace.select_date(DATE)
    await workspace.poll_now()

    assert workspace.config_missing
    assert workspace.error == "Service API URL is not configured"
    assert workspace.refresh.state == RefreshState.ERROR
    await workspace.close()


@pytest.mark.asyncio
async def test_writes_go_through_the_api_and_refresh_feeds():
    api = FakeTrackerApi()
    api.days[DATE] = fresh_day()
    workspace = make_workspace(api)
    await workspace.select_date(DATE)
    await workspace.poll_now()

    assert await workspace.toggle_done(PICKUP) is True
    assert workspace.status.snapshot["p1"].done

    assert await workspace.save_time_override(PICKUP, "10:00") == "10:00"
    assert api.time_calls == []
    assert await workspace.save_time_override(PICKUP, "11:45") == "11:45"
    assert api.time_calls == [(DATE, "p1", "11:45", "10:00")]

    assert await workspace.toggle_ready(PICKUP) is True
    assert api.ready_calls == [(DATE, "p1", True, "11:45")]

    with pytest.raises(ValidationError):
        await workspace.toggle_ready(RETURN)

    await workspace.force_complete(PICKUP)
    assert api.done_calls[-1] == (DATE, "p1", True, True)
    assert [v.item_id for v in workspace.view().completed] == ["p1"]
    await workspace.close()


@pytest.mark.asyncio
async def test_manual_refresh_forces_upstream_fetch():
    api = FakeTrackerApi()
    api.days[DATE] = fresh_day()
    source = FakeSource()
    workspace = make_workspace(api, source, pin="1234")
    await workspace.select_date(DATE)
    await workspace.poll_now()

    assert await workspace.manual_refresh()

    assert source.calls == [(DATE, "1234", True)]
    assert workspace.refresh.state == RefreshState.SYNCED
    await workspace.close()


@pytest.mark.asyncio
async def test_menus_and_activity_lines():
    api = FakeTrackerApi()
    api.days[DATE] = fresh_day()
    workspace = make_workspace(api)
    await workspace.select_date(DATE)
    await workspace.poll_now()

    assert workspace.time_override_menu() == [
        ("p1", "10:00 - Delivery - Maria"),
        ("r1", "18:00 - Return - r1"),
    ]
    assert workspace.activity_lines() == []
    await workspace.close()


@pytest.mark.asyncio
async def test_from_settings_uses_configured_polling_interval():
    settings = Settings(
        _env_file=None,
        source_api_base_url="https://upstream.example.com/",
        source_api_timeout_seconds=12.0,
        feed_poll_interval_seconds=7.5,
    )

    workspace = ServiceWorkspace.from_settings(
        settings, "https://tracker.example.com", Identity(uid="staff-1"), pin="12-34"
    )

    assert workspace.poll_interval == 7.5
    assert workspace.pin == "1234"
    assert workspace.source.base_url == "https://upstream.example.com"
    query = workspace._query("pin", workspace.api.get_pin, lambda pin: None)
    assert query.interval == 7.5
    await workspace.close()
