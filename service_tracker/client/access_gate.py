"""Client side of the access-approval flow."""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Final

from ..domain.constants import ACCESS_POLL_SECONDS
from ..domain.exceptions import DomainError
from ..logging_config import get_logger
from ..utils import clean_str

logger: Final = get_logger(__name__)


class GateState(StrEnum):
    CHECKING = "checking"
    ALLOWED = "allowed"
    PENDING = "pending"
    DENIED = "denied"
    BLOCKED = "blocked"
    ERROR = "error"


@dataclass(frozen=True)
class GateCopy:
    eyebrow: str
    title: str
    body: str


STATE_COPY: Final[dict[GateState, GateCopy]] = {
    GateState.PENDING: GateCopy(
        eyebrow="Request sent",
        title="Waiting for approval",
        body=(
            "Your account is signed in but still needs approval from the team "
            "on Telegram."
        ),
    ),
    GateState.DENIED: GateCopy(
        eyebrow="Access denied",
        title="Account without access",
        body=(
            "Your request was denied. Contact the administrator to reopen the "
            "request."
        ),
    ),
    GateState.BLOCKED: GateCopy(
        eyebrow="Account blocked",
        title="Access blocked",
        body="This account was blocked. Talk to the administrator to review the block.",
    ),
}


class AccessGate:
    """Resolves whether the signed-in user may see the workspace.

    While the request is pending the gate re-checks on an interval, so an
    approval in the admin chat lets the user in without any action.
    """

    def __init__(
        self,
        request_access: Callable[[], Awaitable[dict[str, Any]]],
        poll_interval: float = ACCESS_POLL_SECONDS,
    ):
        self._request_access = request_access
        self.poll_interval = poll_interval
        self.state = GateState.CHECKING
        self.message = ""
        self.checking = False
        self._poll_task: asyncio.Task | None = None

    @property
    def copy(self) -> GateCopy:
        return STATE_COPY.get(self.state, STATE_COPY[GateState.PENDING])

    @property
    def allowed(self) -> bool:
        return self.state == GateState.ALLOWED

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def check(self) -> GateState:
        """Ask the server for the current access state.

        A call while a check is already running returns the current state
        without issuing another request.
        """
        if self.checking:
            return self.state

        self.checking = True
        try:
            payload = await self._request_access()
        except DomainError as e:
            logger.warning("Access check failed", error=str(e))
            self.state = GateState.ERROR
            self.message = str(e)
            return self.state
        finally:
            self.checking = False

        try:
            self.state = GateState(clean_str(payload.get("state")))
        except ValueError:
            self.state = GateState.PENDING
        self.message = clean_str(payload.get("message"))
        logger.info("Access state resolved", state=self.state.value)
        return self.state

    async def _poll(self) -> None:
        while self.state == GateState.PENDING:
            await asyncio.sleep(self.poll_interval)
            await self.check()

    async def run(self) -> GateState:
        """Check once and keep polling while the request is pending."""
        await self.check()
        if self.state == GateState.PENDING and not self.polling:
            self._poll_task = asyncio.create_task(self._poll(), name="access-gate")
        return self.state

    async def stop(self) -> None:
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._poll_task
        self._poll_task = None
