"""
Task control surface for Bragent.

An AgentSession owns the orchestration loop behind the HTTP server. It runs
at most one task in the background, answers the loop's security prompts and
questions from whatever the client posts, and fans events out to the
server-sent event subscribers.
"""

import asyncio
import logging
from typing import Any, Optional

from .adapters import Oracle
from .agent import OrchestrationLoop
from .approver import Approver
from .browser import BrowserExecutionPort
from .config import AgentConfig
from .logger import LogType, RunLogger
from .relay import RelayChannel
from .safety import SecurityVerdict
from .types import TaskResult, TaskStatus

logger = logging.getLogger(__name__)

LOG_RING_SIZE = 100
STATUS_LOG_LIMIT = 50


class TaskAlreadyRunningError(RuntimeError):
    """A task was submitted while another one is still running."""


class SessionApprover(Approver):
    """Approver whose answers arrive over HTTP.

    Each request parks a future and announces it as an event; the matching
    submit_* call resolves it. Only one prompt of each kind is open at a time.
    """

    def __init__(self, session: "AgentSession"):
        self.session = session
        self.security_prompt: Optional[dict[str, Any]] = None
        self.user_input: Optional[dict[str, Any]] = None
        self._security_future: Optional[asyncio.Future] = None
        self._input_future: Optional[asyncio.Future] = None

    async def request_approval(self, verdict: SecurityVerdict) -> bool:
        self.security_prompt = {
            "warning": verdict.format_warning(),
            "riskLevel": verdict.risk_level.value,
            "reason": verdict.reason,
        }
        self._security_future = asyncio.get_running_loop().create_future()
        self.session.emit("securityPrompt", self.security_prompt)
        try:
            return await self._security_future
        finally:
            self.security_prompt = None
            self._security_future = None

    async def ask_user(self, question: str, confirmation: bool = False) -> str:
        self.user_input = {"question": question, "confirmation": confirmation}
        self._input_future = asyncio.get_running_loop().create_future()
        self.session.emit("userInput", self.user_input)
        try:
            return await self._input_future
        finally:
            self.user_input = None
            self._input_future = None

    def resolve_security(self, approved: bool) -> bool:
        future = self._security_future
        if future is None or future.done():
            return False
        future.set_result(approved)
        return True

    def resolve_input(self, answer: str) -> bool:
        future = self._input_future
        if future is None or future.done():
            return False
        future.set_result(answer)
        return True

    def cancel_pending(self) -> None:
        for future in (self._security_future, self._input_future):
            if future is not None and not future.done():
                future.cancel()


class AgentSession:
    """Runs tasks on behalf of HTTP clients.

    Usage:
        session = AgentSession(config, port, oracle, relay)
        session.start_task("Find the weather in Paris")
        queue = session.subscribe()
    """

    def __init__(
        self,
        config: AgentConfig,
        port: BrowserExecutionPort,
        oracle: Oracle,
        relay: Optional[RelayChannel] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        """Initialize the session.

        Args:
            config: Agent configuration
            port: Browser execution port the loop dispatches to
            oracle: LLM adapter
            relay: Relay channel, when the port talks to the extension
            run_logger: Log sink (a console logger when omitted)
        """
        self.config = config
        self.relay = relay
        self.approver = SessionApprover(self)
        self.run_logger = run_logger or RunLogger(max_entries=LOG_RING_SIZE)
        self.run_logger.add_listener(lambda entry: self.emit("log", entry))
        self.loop = OrchestrationLoop(
            port,
            oracle,
            self.approver,
            config=config,
            run_logger=self.run_logger,
        )

        self.current_task: Optional[str] = None
        self.last_result: Optional[TaskResult] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._subscribers: set[asyncio.Queue] = set()

        if relay is not None:
            relay.on_connect = lambda: self.emit("extensionConnected", {"connected": True})

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Task control
    # ------------------------------------------------------------------

    def start_task(self, task: str) -> asyncio.Task:
        """Start a task in the background.

        Raises:
            TaskAlreadyRunningError: Another task has not finished yet
            ValueError: The task text is empty
        """
        task = task.strip()
        if not task:
            raise ValueError("Task must not be empty")
        if self.is_running:
            raise TaskAlreadyRunningError("A task is already running")

        self.current_task = task
        self.last_result = None
        self._stop_requested = False
        self.run_logger.log(f"New task: {task}", LogType.INFO)
        self.emit("taskStart", {"task": task})
        self._task = asyncio.create_task(self._run(task))
        return self._task

    async def _run(self, task: str) -> TaskResult:
        try:
            if self._stop_requested:
                # Stopped before the loop got a chance to start
                result = TaskResult(False, "Task stopped by user", status=TaskStatus.CANCELLED)
            else:
                result = await self.loop.run_task(task)
        except Exception as e:
            logger.exception("Task crashed")
            self.run_logger.log(f"Task failed: {e}", LogType.ERROR)
            result = TaskResult(
                success=False,
                summary=f"Task failed: {e}",
                errors=(str(e),),
                status=TaskStatus.FAILED,
            )
        finally:
            self.current_task = None
            self.approver.cancel_pending()

        self.last_result = result
        self.emit("taskComplete", result.to_dict())
        return result

    def stop_task(self) -> bool:
        """Ask the running task to stop.

        Returns:
            False when nothing is running
        """
        if not self.is_running:
            return False
        self.run_logger.log("Stopping task...", LogType.WARNING)
        self._stop_requested = True
        self.loop.stop()
        self.approver.cancel_pending()
        return True

    async def wait(self) -> Optional[TaskResult]:
        """Wait for the background task, if any, and return its result."""
        if self._task is None:
            return self.last_result
        return await self._task

    def submit_security_decision(self, approved: bool) -> bool:
        """Answer the open security prompt.

        Returns:
            False when no prompt is waiting
        """
        accepted = self.approver.resolve_security(approved)
        if accepted:
            self.run_logger.log(
                "Action approved" if approved else "Action rejected",
                LogType.INFO if approved else LogType.WARNING,
            )
        return accepted

    def submit_user_answer(self, answer: str) -> bool:
        """Answer the open user question.

        Returns:
            False when no question is waiting
        """
        accepted = self.approver.resolve_input(answer)
        if accepted:
            self.run_logger.log(f"User answered: {answer}", LogType.INFO)
        return accepted

    def status(self) -> dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "currentTask": self.current_task,
            "logs": self.run_logger.entries(STATUS_LOG_LIMIT),
            "pendingSecurityPrompt": self.approver.security_prompt,
            "pendingUserInput": self.approver.user_input,
            "extensionConnected": self.relay.connected if self.relay is not None else False,
            "mode": self.config.mode,
        }

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, event: str, data: Any) -> None:
        """Broadcast an event to every subscriber."""
        message = {"event": event, "data": data}
        for queue in list(self._subscribers):
            queue.put_nowait(message)

    async def close(self) -> None:
        """Stop the running task, then release the port and the oracle."""
        if self.is_running:
            self.stop_task()
            await self.wait()
        await self.loop.port.close()
        close_oracle = getattr(self.loop.oracle, "close", None)
        if close_oracle is not None:
            await close_oracle()
