"""
Agent orchestration loop for Bragent.

Runs one task to completion: observe the page, compress it, ask the oracle
for the next tool calls, gate each call through the stagnation detector and
the security classifier, dispatch it through the browser port and feed the
result back into the conversation.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .adapters import ContextTooLargeError, Oracle, OracleError, RateLimitError
from .approver import Approver
from .browser import BrowserExecutionPort
from .config import AgentConfig
from .context import ContextCompressor
from .conversation import ConversationMessage, ConversationState, ToolCallRef
from .logger import LogType, RunLogger
from .relay import RelayNotConnectedError
from .safety import PageMeta, SecurityClassifier
from .stagnation import StagnationDetector, Verdict
from .tool_schemas import (
    TOOL_DEFINITIONS,
    BrowserActionRequest,
    ToolDecodeError,
    ToolInvocation,
    ToolName,
    action_signature,
    decode_tool_call,
    to_browser_action,
)
from .types import PageContext, TaskResult, TaskStatus
from .utils import describe_action, format_recent_actions, redact_sensitive

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a smart browser agent. Complete any task by analyzing the page yourself.

## Tools:
- navigate: open a URL
- click: click a CSS selector FROM the element list
- click_text: click an element by its visible text
- type_text: type text into a field
- scroll: scroll the page to see more elements
- press_key: press a key (Enter, Escape, Tab, ...)
- extract_text: read text from the page
- ask_user: ask the user for PERSONAL data (address, phone, password)
- complete_task: finish the task with a report

## How to work:
1. ANALYZE the page context, it lists every visible element
2. DECIDE what has to happen to reach the goal
3. PICK a suitable element from the list and an action
4. REPEAT until the task is done

## Rules:
- Use ONLY selectors from the page element list
- If the element you need is missing, scroll
- Do not repeat failed actions, try another approach
- If a modal dialog is open, work with its elements
- After typing into a search field you usually need Enter
- ask_user ONLY for personal data, never for "how do I do X"

## Finishing:
- complete_task when the goal is reached
- complete_task with an explanation if the task is impossible
"""

ERROR_HINT_THRESHOLD = 3
MAX_CONSECUTIVE_ERRORS = 5
AGGRESSIVE_TRIM_KEEP = 10

ERROR_HINT = (
    "\n\nTOO MANY ERRORS! Use ONLY selectors from the element list. "
    "If the element you need is not there, call complete_task and explain why."
)
CANCELLED_RESULT = "Action cancelled by user"
SKIPPED_RESULT = "Skipped: the task has already ended"
LOOP_RESULT = "Not executed: the same action keeps repeating"
THINKING = "Thinking..."


class TaskStopped(Exception):
    """Raised inside the loop when the user stops the task."""


@dataclass
class _Termination:
    status: TaskStatus
    success: bool
    summary: str


class OrchestrationLoop:
    """Drives one task at a time through the observe-decide-act cycle.

    Usage:
        loop = OrchestrationLoop(port, oracle, approver, config)
        result = await loop.run_task("Open example.com and read the title")
    """

    def __init__(
        self,
        port: BrowserExecutionPort,
        oracle: Oracle,
        approver: Approver,
        config: Optional[AgentConfig] = None,
        run_logger: Optional[RunLogger] = None,
        classifier: Optional[SecurityClassifier] = None,
    ):
        """Initialize the loop.

        Args:
            port: Where browser actions are executed
            oracle: LLM that picks the next tool calls
            approver: Answers security confirmations and user questions
            config: Agent configuration
            run_logger: Log sink (a console logger when omitted)
            classifier: Security classifier (default rule table when omitted)
        """
        self.port = port
        self.oracle = oracle
        self.approver = approver
        self.config = config or AgentConfig()
        self.run_logger = run_logger or RunLogger()
        self.classifier = classifier or SecurityClassifier()
        self.compressor = ContextCompressor(max_tokens=self.config.max_tokens)
        self.detector = StagnationDetector()
        self.conversation = ConversationState()

        self.actions: list[BrowserActionRequest] = []
        self.errors: list[str] = []
        self.consecutive_errors = 0

        self._running = False
        self._stop_requested = False
        self._wait_task: Optional[asyncio.Future] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Request the running task to stop.

        Observed at the top of the next iteration; a pending confirmation
        or user-input wait is aborted right away.
        """
        if not self._running:
            return
        self._stop_requested = True
        if self._wait_task is not None and not self._wait_task.done():
            self._wait_task.cancel()

    async def run_task(self, task: str) -> TaskResult:
        """Run a task until completion or a terminal condition.

        Args:
            task: Natural-language goal

        Returns:
            Exactly one TaskResult, with the full action log
        """
        if self._running:
            raise RuntimeError("A task is already running")

        self._running = True
        self._stop_requested = False
        start_time = time.monotonic()
        self._reset(task)

        try:
            termination = await self._run(task)
        finally:
            self._running = False
            self._wait_task = None

        result = TaskResult(
            success=termination.success,
            summary=termination.summary or "Task finished",
            actions=tuple(self.actions),
            errors=tuple(self.errors),
            duration=time.monotonic() - start_time,
            status=termination.status,
        )
        log_type = LogType.SUCCESS if result.success else LogType.WARNING
        self.run_logger.log(f"Task finished ({result.status.value}): {result.summary}", log_type)
        return result

    def _reset(self, task: str) -> None:
        self.conversation.reset(
            SYSTEM_PROMPT,
            f"Task: {task}\n\nAnalyze the current page state and start working.",
        )
        self.detector.reset()
        self.compressor.clear_history()
        self.actions = []
        self.errors = []
        self.consecutive_errors = 0

    async def _run(self, task: str) -> _Termination:
        max_iterations = self.config.max_iterations

        for iteration in range(1, max_iterations + 1):
            if self._stop_requested:
                return _stopped()

            self.run_logger.log(f"--- Iteration {iteration}/{max_iterations} ---")
            try:
                termination = await self._iterate(task)
            except TaskStopped:
                return _stopped()
            except RelayNotConnectedError as e:
                message = f"Browser extension is not connected: {e}"
                self.errors.append(message)
                self.run_logger.log(message, LogType.ERROR)
                return _Termination(TaskStatus.FAILED, False, message)
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.error("Iteration %d failed: %s", iteration, message, exc_info=self.config.debug)
                self.errors.append(message)
                self.run_logger.log(f"Error: {message}", LogType.ERROR)
                # Keep the history well-formed, then let the oracle recover
                self.conversation.resolve_pending(f"Error: {message}")
                self.conversation.append(ConversationMessage.user(
                    f"An error occurred: {message}. Try a different approach."
                ))
                continue

            if termination is not None:
                return termination

        return _Termination(
            TaskStatus.ITERATION_LIMIT,
            False,
            f"Iteration limit reached ({max_iterations}) before the task was completed",
        )

    async def _iterate(self, task: str) -> Optional[_Termination]:
        context = await self._fetch_context()
        if self.consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
            return self._error_limit()

        self.conversation.append(ConversationMessage.user(
            self._reminder(task, self.compressor.render(context))
        ))
        self.conversation.trim(self.config.max_history_messages)

        try:
            reply = await asyncio.wait_for(
                self.oracle.complete(self.conversation.messages, TOOL_DEFINITIONS),
                timeout=self.config.oracle_timeout,
            )
        except RateLimitError as e:
            logger.warning("Rate limited: %s", e)
            self.run_logger.log(
                f"Rate limited, waiting {self.config.rate_limit_backoff:.0f} seconds...",
                LogType.WARNING,
            )
            await asyncio.sleep(self.config.rate_limit_backoff)
            return None
        except ContextTooLargeError as e:
            logger.warning("Context too large: %s", e)
            self.run_logger.log("Context too large, shrinking history...", LogType.WARNING)
            self.conversation.aggressive_trim(AGGRESSIVE_TRIM_KEEP)
            return None
        except asyncio.TimeoutError:
            raise OracleError(
                f"Oracle did not answer within {self.config.oracle_timeout:.0f}s"
            ) from None

        if not reply.tool_calls:
            # A valid thinking turn, nothing to execute
            text = reply.text or THINKING
            if reply.text:
                self.run_logger.log(reply.text, LogType.THOUGHT)
            self.conversation.append(ConversationMessage.assistant(text))
            return None

        self.conversation.append(ConversationMessage.assistant(reply.text, tuple(reply.tool_calls)))
        if reply.text:
            self.run_logger.log(reply.text, LogType.THOUGHT)

        deferred_answers: list[str] = []
        termination: Optional[_Termination] = None
        for call in reply.tool_calls:
            if termination is not None:
                self.conversation.append(ConversationMessage.tool(call.id, SKIPPED_RESULT))
                continue
            termination = await self._process_call(call, context, deferred_answers)

        # Tool results must directly follow their assistant message
        for answer in deferred_answers:
            self.conversation.append(ConversationMessage.user(answer))
        return termination

    async def _fetch_context(self) -> PageContext:
        try:
            return await self.port.extract_page_context()
        except RelayNotConnectedError:
            raise
        except Exception as e:
            message = f"Could not read the page: {e}"
            logger.warning(message)
            self.errors.append(message)
            self.consecutive_errors += 1
            self.run_logger.log(message, LogType.ERROR)
            return PageContext.minimal()

    def _reminder(self, task: str, rendered: str) -> str:
        recent = format_recent_actions([a.to_wire() for a in self.actions])
        actions_block = f"\n\n--- Recent actions ---\n{recent}" if recent else ""
        return (
            f"[TASK: {task}]{actions_block}\n\n"
            f"--- Page state ---\n{rendered}\n\n"
            f'Keep working on the task: "{task}". Do NOT repeat actions that are already done!'
        )

    async def _process_call(
        self,
        call: ToolCallRef,
        context: PageContext,
        deferred_answers: list[str],
    ) -> Optional[_Termination]:
        """Gate, dispatch and record one tool call.

        Returns:
            A termination when this call ends the run
        """
        invocation: Optional[ToolInvocation] = None
        decode_error: Optional[ToolDecodeError] = None
        try:
            invocation = decode_tool_call(call.id, call.name, call.arguments)
        except ToolDecodeError as e:
            decode_error = e

        signature = action_signature(invocation) if invocation else call.name
        if self.detector.observe(signature) == Verdict.LOOP:
            self.conversation.append(ConversationMessage.tool(call.id, LOOP_RESULT))
            self.errors.append(f"Loop detected: repeated action {signature}")
            self.run_logger.log("Action loop detected, stopping the task", LogType.WARNING)
            return _Termination(
                TaskStatus.LOOP_DETECTED,
                False,
                f'Task not completed: the agent got stuck in a loop (repeated action "{call.name}"). '
                "A dialog may need to be closed manually, or the task needs rephrasing.",
            )

        if decode_error is not None:
            self.run_logger.log(f"Invalid tool call: {decode_error}", LogType.ERROR)
            return self._record_failure(call, f"Error: {decode_error}")

        args = invocation.arguments

        if invocation.name == ToolName.COMPLETE_TASK:
            self.conversation.append(ConversationMessage.tool(call.id, args.summary))
            return _Termination(TaskStatus.COMPLETED, args.success, args.summary)

        if invocation.name in (ToolName.ASK_USER, ToolName.CONFIRM_ACTION):
            confirmation = invocation.name == ToolName.CONFIRM_ACTION
            self.run_logger.log(
                f"Confirmation: {args.question}" if confirmation else f"Question: {args.question}",
                LogType.CONFIRM if confirmation else LogType.WARNING,
            )
            answer = await self._wait_for_user(
                self.approver.ask_user(args.question, confirmation=confirmation)
            )
            self.conversation.append(ConversationMessage.tool(call.id, "Asked the user, the answer follows"))
            deferred_answers.append(answer or "(the user gave no answer)")
            return None

        action = to_browser_action(invocation)
        self.run_logger.log(
            f"{invocation.name.value}: {json.dumps(redact_sensitive(invocation.arguments_dict()), ensure_ascii=False)}",
            LogType.ACTION,
        )

        verdict = self.classifier.classify(
            action,
            PageMeta(url=context.url, element_text=_element_text(invocation, context)),
        )
        if verdict.requires_confirmation:
            self.run_logger.log(verdict.reason, LogType.CONFIRM)
            approved = await self._wait_for_user(self.approver.request_approval(verdict))
            if not approved:
                # User cancellation is not an error
                self.run_logger.log(CANCELLED_RESULT, LogType.INFO)
                self.conversation.append(ConversationMessage.tool(call.id, CANCELLED_RESULT))
                return None

        self.actions.append(action)
        self.run_logger.print_step(describe_action(redact_sensitive(action.to_wire())), verdict.risk_level)
        try:
            result_text = await self.port.execute_action(action)
        except RelayNotConnectedError:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            self.run_logger.print_result(False, message)
            self.run_logger.log(f"{invocation.name.value} failed: {message}", LogType.ERROR)
            return self._record_failure(call, f"Error: {message}")

        self.consecutive_errors = 0
        self.run_logger.print_result(True, result_text)
        if invocation.name == ToolName.EXTRACT_TEXT:
            self.run_logger.log(f"Content:\n{result_text}", LogType.INFO)
        self.conversation.append(ConversationMessage.tool(call.id, result_text))
        return None

    def _record_failure(self, call: ToolCallRef, content: str) -> Optional[_Termination]:
        self.consecutive_errors += 1
        self.errors.append(content)
        if self.consecutive_errors >= ERROR_HINT_THRESHOLD:
            content += ERROR_HINT
        self.conversation.append(ConversationMessage.tool(call.id, content))

        if self.consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
            return self._error_limit()
        return None

    def _error_limit(self) -> _Termination:
        self.errors.append("Error limit reached")
        self.run_logger.log("Too many errors in a row, stopping the task", LogType.WARNING)
        return _Termination(
            TaskStatus.ERROR_LIMIT,
            False,
            "Could not complete the task: too many errors in a row. Try rephrasing the task.",
        )

    async def _wait_for_user(self, awaitable):
        """Await a user decision; a stop request aborts the wait."""
        if self._stop_requested:
            raise TaskStopped()
        self._wait_task = asyncio.ensure_future(awaitable)
        try:
            return await self._wait_task
        except asyncio.CancelledError:
            if self._stop_requested and self._wait_task.cancelled():
                raise TaskStopped() from None
            raise
        finally:
            self._wait_task = None


def _element_text(invocation: ToolInvocation, context: PageContext) -> str:
    """Visible text of the element an action targets, for the classifier."""
    args = invocation.arguments
    if invocation.name == ToolName.CLICK_TEXT:
        return args.text
    selector = invocation.selector
    if selector:
        element = context.find_element(selector)
        if element is not None and element.text:
            return element.text
    return getattr(args, "description", None) or ""


def _stopped() -> _Termination:
    return _Termination(TaskStatus.CANCELLED, False, "Task stopped by user")
