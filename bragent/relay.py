"""
Command relay for Bragent.

Turns the pull-based long-poll transport of the browser extension into an
awaitable request/response interface. The agent calls send(); the extension
fetches commands through poll() and answers through post_result().

All state lives on the event loop that owns the channel, which is the only
exclusion mechanism: no id can be resolved twice.
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

EXECUTE_ACTION = "EXECUTE_ACTION"
GET_PAGE_CONTEXT = "GET_PAGE_CONTEXT"


class RelayError(Exception):
    """Base class for relay failures."""


class RelayNotConnectedError(RelayError):
    """No extension has polled yet, or it went silent."""


class RelayTimeoutError(RelayError):
    """No result arrived before the command's deadline."""


class RelayClosedError(RelayError):
    """The channel was closed while the command was outstanding."""


class Command(BaseModel):
    """Command handed to the extension."""

    id: str
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, **self.payload}


class CommandResult(BaseModel):
    """Result posted back by the extension."""

    id: str
    result: Any = None


@dataclass
class _Pending:
    command: Command
    future: asyncio.Future
    timer: asyncio.TimerHandle


class RelayChannel:
    """Correlates commands and results over a long-poll transport.

    Args:
        poll_wait: Seconds a poll stays parked before returning empty
        default_timeout: Seconds send() waits for a result
        require_connection: Refuse to send before the first poll arrives
        peer_timeout: When set, the peer counts as gone once its last poll
            is older than this many seconds
        on_connect: Called whenever the peer (re)connects
    """

    def __init__(
        self,
        poll_wait: float = 25.0,
        default_timeout: float = 30.0,
        require_connection: bool = True,
        peer_timeout: Optional[float] = None,
        on_connect: Optional[Callable[[], None]] = None,
    ):
        self.poll_wait = poll_wait
        self.default_timeout = default_timeout
        self.require_connection = require_connection
        self.peer_timeout = peer_timeout
        self.on_connect = on_connect

        self._ids = itertools.count(1)
        self._pending: dict[str, _Pending] = {}
        self._outgoing: deque[Command] = deque()
        self._pollers: deque[asyncio.Future] = deque()
        self._last_poll_at: Optional[float] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        if self._last_poll_at is None:
            return False
        if self.peer_timeout is None:
            return True
        if any(not p.done() for p in self._pollers):
            return True
        return self.seconds_since_last_poll() <= self.peer_timeout

    @property
    def last_poll_at(self) -> Optional[float]:
        """Monotonic timestamp of the latest poll."""
        return self._last_poll_at

    def seconds_since_last_poll(self) -> Optional[float]:
        if self._last_poll_at is None:
            return None
        return time.monotonic() - self._last_poll_at

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def queued_count(self) -> int:
        return len(self._outgoing)

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Issuing side
    # ------------------------------------------------------------------

    async def send(
        self,
        command_type: str,
        payload: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Issue a command and wait for the extension's result.

        Args:
            command_type: EXECUTE_ACTION or GET_PAGE_CONTEXT
            payload: Extra fields merged into the wire command
            timeout: Seconds to wait, default_timeout when omitted

        Returns:
            The result object posted by the extension

        Raises:
            RelayNotConnectedError: No peer is connected
            RelayTimeoutError: The deadline passed first
            RelayClosedError: The channel was closed meanwhile
        """
        if self._closed:
            raise RelayClosedError("Relay is closed")
        if self.require_connection and not self.connected:
            raise RelayNotConnectedError("Browser extension is not connected")

        loop = asyncio.get_running_loop()
        timeout = self.default_timeout if timeout is None else timeout
        command = Command(id=f"cmd_{next(self._ids)}", type=command_type, payload=payload or {})
        future = loop.create_future()
        timer = loop.call_later(timeout, self._expire, command.id, timeout)
        self._pending[command.id] = _Pending(command, future, timer)

        logger.debug("Sending %s as %s", command.type, command.id)
        self._hand_out(command)

        try:
            return await future
        finally:
            # Timeout, cancellation or success: the record never outlives send()
            record = self._pending.pop(command.id, None)
            if record is not None:
                record.timer.cancel()
            self._discard_queued(command.id)

    def _expire(self, command_id: str, timeout: float) -> None:
        record = self._pending.pop(command_id, None)
        if record is None or record.future.done():
            return
        logger.warning("Command %s (%s) timed out after %.0fs", command_id, record.command.type, timeout)
        self._discard_queued(command_id)
        record.future.set_exception(
            RelayTimeoutError(f"Command {record.command.type} timed out after {timeout:.0f}s")
        )

    def _hand_out(self, command: Command) -> None:
        while self._pollers:
            poller = self._pollers.popleft()
            if not poller.done():
                poller.set_result(command)
                return
        self._outgoing.append(command)

    def _discard_queued(self, command_id: str) -> None:
        for command in list(self._outgoing):
            if command.id == command_id:
                self._outgoing.remove(command)

    # ------------------------------------------------------------------
    # Extension side
    # ------------------------------------------------------------------

    async def poll(self, wait: Optional[float] = None) -> dict[str, Any]:
        """Long-poll for the next command.

        Args:
            wait: Seconds to stay parked, poll_wait when omitted

        Returns:
            The command's wire dict, or {} when the wait expired
        """
        self._mark_poll()
        if self._closed:
            return {}
        if self._outgoing:
            return self._outgoing.popleft().to_wire()

        loop = asyncio.get_running_loop()
        wait = self.poll_wait if wait is None else wait
        future = loop.create_future()
        self._pollers.append(future)
        timer = loop.call_later(wait, _release, future)

        try:
            command = await future
        except asyncio.CancelledError:
            # Client went away after a command was handed to it
            if future.done() and not future.cancelled() and future.result() is not None:
                self._requeue(future.result())
            raise
        finally:
            timer.cancel()
            if future in self._pollers:
                self._pollers.remove(future)

        if command is None:
            return {}
        return command.to_wire()

    def _requeue(self, command: Command) -> None:
        if command.id not in self._pending:
            return
        logger.debug("Re-queueing %s after poller disconnect", command.id)
        while self._pollers:
            poller = self._pollers.popleft()
            if not poller.done():
                poller.set_result(command)
                return
        self._outgoing.appendleft(command)

    def _mark_poll(self) -> None:
        was_connected = self.connected
        self._last_poll_at = time.monotonic()
        if not was_connected:
            logger.info("Browser extension connected")
            if self.on_connect is not None:
                self.on_connect()

    def post_result(self, command_id: str, result: Any) -> bool:
        """Resolve the pending command with the extension's result.

        Returns:
            False when the id is unknown or already timed out (dropped)
        """
        record = self._pending.pop(command_id, None)
        if record is None or record.future.done():
            logger.debug("Dropping result for unknown or expired command %s", command_id)
            return False
        record.timer.cancel()
        record.future.set_result(result)
        logger.debug("Result received for %s", command_id)
        return True

    def close(self) -> None:
        """Fail every outstanding command and release parked pollers."""
        self._closed = True
        for record in self._pending.values():
            record.timer.cancel()
            if not record.future.done():
                record.future.set_exception(RelayClosedError("Relay closed"))
        self._pending.clear()
        self._outgoing.clear()
        while self._pollers:
            _release(self._pollers.popleft())


def _release(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)
