"""
Pytest configuration and fixtures.

Provides a scripted oracle and an in-memory browser port so the agent loop,
the session and the server can be exercised without a browser or network.
"""

import json
from typing import Any, Callable, Optional, Union

import pytest

from bragent.adapters import OracleError, OracleReply
from bragent.approver import Approver
from bragent.browser import ActionExecutionError, BrowserExecutionPort
from bragent.config import AgentConfig, MODE_EXTENSION
from bragent.conversation import ConversationMessage, ToolCallRef
from bragent.logger import RunLogger
from bragent.safety import SecurityVerdict
from bragent.types import PageContext, PageElement


def call(name: str, call_id: Optional[str] = None, **arguments: Any) -> ToolCallRef:
    """Build a tool call as an oracle would return it."""
    return ToolCallRef(id=call_id or f"call_{name}", name=name, arguments=json.dumps(arguments))


def reply(*calls: ToolCallRef, text: Optional[str] = None) -> OracleReply:
    return OracleReply(text=text, tool_calls=list(calls))


ScriptStep = Union[OracleReply, Exception, Callable[[list[ConversationMessage]], OracleReply]]


class FakeOracle:
    """Oracle that replays a fixed script of replies.

    A step may be a reply, an exception to raise, or a callable that
    builds the reply from the messages. Once the script runs out the
    fallback step is repeated.
    """

    def __init__(self, script: list[ScriptStep], fallback: Optional[ScriptStep] = None):
        self.script = list(script)
        self.fallback = fallback
        self.requests: list[list[ConversationMessage]] = []
        self.closed = False

    async def complete(self, messages, tools) -> OracleReply:
        self.requests.append(list(messages))
        if self.script:
            step = self.script.pop(0)
        elif self.fallback is not None:
            step = self.fallback
        else:
            raise OracleError("Script exhausted")

        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(messages)
        return step

    async def close(self) -> None:
        self.closed = True


class FakePort(BrowserExecutionPort):
    """Browser port that records actions and serves canned contexts."""

    def __init__(
        self,
        context: Optional[PageContext] = None,
        failures: Optional[dict[str, str]] = None,
        results: Optional[dict[str, str]] = None,
    ):
        self.context = context or PageContext(
            url="https://example.com/",
            title="Example Domain",
            elements=(
                PageElement(index=0, tag="a", text="More information", selector="a[href]"),
            ),
        )
        self.failures = failures or {}
        self.results = results or {}
        self.actions: list[Any] = []
        self.context_requests = 0
        self.closed = False

    async def execute_action(self, request) -> str:
        self.actions.append(request)
        if request.type in self.failures:
            raise ActionExecutionError(self.failures[request.type])
        return self.results.get(request.type, "OK")

    async def extract_page_context(self) -> PageContext:
        self.context_requests += 1
        return self.context

    async def close(self) -> None:
        self.closed = True


class RecordingApprover(Approver):
    """Approver with fixed answers that remembers what it was asked."""

    def __init__(self, approve: bool = True, answer: str = ""):
        self.approve = approve
        self.answer = answer
        self.verdicts: list[SecurityVerdict] = []
        self.questions: list[tuple[str, bool]] = []

    async def request_approval(self, verdict: SecurityVerdict) -> bool:
        self.verdicts.append(verdict)
        return self.approve

    async def ask_user(self, question: str, confirmation: bool = False) -> str:
        self.questions.append((question, confirmation))
        return self.answer


@pytest.fixture
def config():
    """Agent configuration with fast timeouts."""
    return AgentConfig(
        model="gpt-4o-mini",
        api_key="test-key",
        max_iterations=10,
        oracle_timeout=5.0,
        rate_limit_backoff=0.0,
        mode=MODE_EXTENSION,
        action_timeout=1.0,
        context_timeout=1.0,
        poll_wait=0.2,
    )


@pytest.fixture
def fake_port():
    return FakePort()


@pytest.fixture
def approver():
    return RecordingApprover()


@pytest.fixture
def run_logger():
    """Run logger that keeps entries without printing."""
    return RunLogger(enable_console=False)
