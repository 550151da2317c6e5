"""Store-backed live queries.

A ``PollingQuery`` re-runs a fetch on an interval and delivers each result
through a ``Subscription`` token. Once the token is cancelled nothing more is
delivered, even from a fetch that was already running.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Final, Generic, TypeVar

from ..constants import DEFAULT_FEED_POLL_INTERVAL_SECONDS
from ..logging_config import get_logger
from .feeds import ChangeEvent, diff_snapshots

logger: Final = get_logger(__name__)

T = TypeVar("T")


class Subscription:
    """Cancellation token owned by one live query."""

    def __init__(self, name: str):
        self.name = name
        self.active = True
        self.task: asyncio.Task | None = None

    def cancel(self) -> None:
        self.active = False
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def wait_closed(self) -> None:
        if self.task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self.task


class PollingQuery(Generic[T]):
    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        deliver: Callable[[T], Awaitable[None] | None],
        on_error: Callable[[Exception], Awaitable[None] | None] | None = None,
        interval: float = DEFAULT_FEED_POLL_INTERVAL_SECONDS,
    ):
        self.name = name
        self.fetch = fetch
        self.deliver = deliver
        self.on_error = on_error
        self.interval = interval
        self.subscription = Subscription(name)

    async def poll_once(self) -> bool:
        """Fetch and deliver one result.

        Returns:
            False when the result was dropped because the query was cancelled
        """
        if not self.subscription.active:
            return False
        try:
            result = await self.fetch()
        except Exception as e:
            if not self.subscription.active:
                return False
            logger.warning("Live query failed", query=self.name, error=str(e))
            if self.on_error is not None:
                await _maybe_await(self.on_error(e))
            return True

        if not self.subscription.active:
            logger.debug("Dropping late result", query=self.name)
            return False
        await _maybe_await(self.deliver(result))
        return True

    async def _run(self) -> None:
        while self.subscription.active:
            await self.poll_once()
            await asyncio.sleep(self.interval)

    def start(self) -> Subscription:
        self.subscription.task = asyncio.create_task(self._run(), name=self.name)
        return self.subscription


async def _maybe_await(value: Awaitable[None] | None) -> None:
    if value is not None:
        await value


class CollectionDiffer:
    """Turns successive keyed query results into change batches."""

    def __init__(self) -> None:
        self._previous: Mapping[str, Mapping[str, Any]] = {}

    def changes(self, current: Mapping[str, Mapping[str, Any]]) -> list[ChangeEvent]:
        batch = diff_snapshots(self._previous, current)
        self._previous = dict(current)
        return batch

    def reset(self) -> None:
        self._previous = {}
