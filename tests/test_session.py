"""
Tests for the task control surface behind the HTTP server.
"""

import asyncio

import pytest

from bragent.conversation import Role
from bragent.relay import RelayChannel
from bragent.session import AgentSession, TaskAlreadyRunningError
from bragent.tool_schemas import ClickAction
from bragent.types import PageContext, PageElement, TaskStatus

from conftest import FakeOracle, FakePort, call, reply


DANGER_PAGE = PageContext(
    url="https://example.com/settings",
    title="Settings",
    elements=(PageElement(index=0, tag="button", text="Delete account", selector="#delete"),),
)


def complete(summary: str = "Done"):
    return reply(call("complete_task", "call_done", success=True, summary=summary))


async def next_event(queue: asyncio.Queue, name: str, timeout: float = 2.0) -> dict:
    """Read events until one with the given name arrives."""

    async def read():
        while True:
            message = await queue.get()
            if message["event"] == name:
                return message["data"]

    return await asyncio.wait_for(read(), timeout)


@pytest.fixture
def make_session(config, run_logger):
    def factory(oracle, port=None, relay=None):
        return AgentSession(config, port or FakePort(), oracle, relay=relay, run_logger=run_logger)
    return factory


class TestTaskLifecycle:
    """Tests for starting and finishing tasks."""

    @pytest.mark.asyncio
    async def test_task_runs_to_completion(self, make_session):
        """Start and completion are announced as events."""
        session = make_session(FakeOracle([complete("All done")]))
        queue = session.subscribe()

        session.start_task("  Read the title  ")
        assert session.is_running
        assert session.current_task == "Read the title"
        assert await next_event(queue, "taskStart") == {"task": "Read the title"}

        result = await next_event(queue, "taskComplete")
        assert result["success"] is True
        assert result["summary"] == "All done"
        assert result["status"] == "completed"

        await session.wait()
        assert not session.is_running
        assert session.current_task is None
        assert session.last_result.summary == "All done"

    @pytest.mark.asyncio
    async def test_logs_are_streamed(self, make_session):
        """Log entries reach subscribers as log events."""
        session = make_session(FakeOracle([complete()]))
        queue = session.subscribe()
        session.start_task("Anything")
        entry = await next_event(queue, "log")
        assert entry["message"] == "New task: Anything"
        await session.wait()

    @pytest.mark.asyncio
    async def test_empty_task_is_rejected(self, make_session):
        session = make_session(FakeOracle([]))
        with pytest.raises(ValueError):
            session.start_task("   ")
        assert not session.is_running

    @pytest.mark.asyncio
    async def test_one_task_at_a_time(self, make_session):
        """A second task is refused while the first is running."""
        session = make_session(
            FakeOracle([reply(call("click", "c1", selector="#delete"))]),
            FakePort(context=DANGER_PAGE),
        )
        queue = session.subscribe()
        session.start_task("Delete my account")
        await next_event(queue, "securityPrompt")

        with pytest.raises(TaskAlreadyRunningError):
            session.start_task("Something else")

        session.stop_task()
        await session.wait()

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, make_session):
        assert make_session(FakeOracle([])).stop_task() is False

    @pytest.mark.asyncio
    async def test_stop_before_first_iteration(self, make_session):
        """A stop issued right after start ends the task before any oracle call."""
        oracle = FakeOracle([complete()])
        session = make_session(oracle)
        session.start_task("Anything")
        assert session.stop_task() is True

        result = await session.wait()
        assert result.status == TaskStatus.CANCELLED
        assert oracle.requests == []


class TestSecurityPrompts:
    """Tests for confirmations answered over the session."""

    @pytest.mark.asyncio
    async def test_prompt_is_announced_and_pending(self, make_session):
        """The prompt is emitted and visible in the status."""
        session = make_session(
            FakeOracle([reply(call("click", "c1", selector="#delete")), complete()]),
            FakePort(context=DANGER_PAGE),
        )
        queue = session.subscribe()
        session.start_task("Delete my account")

        prompt = await next_event(queue, "securityPrompt")
        assert prompt["riskLevel"] == "high"
        assert prompt["reason"] == 'Delete or cancel button: "Delete account"'
        assert "Delete account" in prompt["warning"]
        assert session.status()["pendingSecurityPrompt"] == prompt

        assert session.submit_security_decision(True)
        await session.wait()
        assert session.status()["pendingSecurityPrompt"] is None

    @pytest.mark.asyncio
    async def test_approved_action_runs(self, make_session):
        port = FakePort(context=DANGER_PAGE)
        session = make_session(
            FakeOracle([reply(call("click", "c1", selector="#delete")), complete()]),
            port,
        )
        queue = session.subscribe()
        session.start_task("Delete my account")
        await next_event(queue, "securityPrompt")
        session.submit_security_decision(True)

        result = await session.wait()
        assert result.success
        assert port.actions == [ClickAction(selector="#delete")]

    @pytest.mark.asyncio
    async def test_rejected_action_is_skipped(self, make_session):
        port = FakePort(context=DANGER_PAGE)
        session = make_session(
            FakeOracle([reply(call("click", "c1", selector="#delete")), complete("Kept the account")]),
            port,
        )
        queue = session.subscribe()
        session.start_task("Delete my account")
        await next_event(queue, "securityPrompt")
        session.submit_security_decision(False)

        result = await session.wait()
        assert result.summary == "Kept the account"
        assert port.actions == []

    @pytest.mark.asyncio
    async def test_decision_without_prompt(self, make_session):
        """Answers with nothing pending are not accepted."""
        session = make_session(FakeOracle([]))
        assert session.submit_security_decision(True) is False
        assert session.submit_user_answer("hello") is False

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_prompt(self, make_session):
        """Stopping while a prompt is open cancels the task."""
        port = FakePort(context=DANGER_PAGE)
        session = make_session(FakeOracle([reply(call("click", "c1", selector="#delete"))]), port)
        queue = session.subscribe()
        session.start_task("Delete my account")
        await next_event(queue, "securityPrompt")

        assert session.stop_task() is True
        result = await session.wait()

        assert result.status == TaskStatus.CANCELLED
        assert port.actions == []
        status = session.status()
        assert status["isRunning"] is False
        assert status["pendingSecurityPrompt"] is None
        assert session.submit_security_decision(True) is False


class TestUserInput:
    """Tests for questions answered over the session."""

    @pytest.mark.asyncio
    async def test_answer_reaches_the_oracle(self, make_session):
        oracle = FakeOracle([
            reply(call("ask_user", "c1", question="Delivery address?")),
            complete(),
        ])
        session = make_session(oracle)
        queue = session.subscribe()
        session.start_task("Order a pizza")

        prompt = await next_event(queue, "userInput")
        assert prompt == {"question": "Delivery address?", "confirmation": False}
        assert session.status()["pendingUserInput"] == prompt

        assert session.submit_user_answer("Main street 1")
        await session.wait()

        user_messages = [m.content for m in oracle.requests[1] if m.role == Role.USER]
        assert "Main street 1" in user_messages
        assert session.status()["pendingUserInput"] is None


class TestStatus:
    """Tests for the status snapshot."""

    @pytest.mark.asyncio
    async def test_idle_status(self, make_session):
        status = make_session(FakeOracle([])).status()
        assert status["isRunning"] is False
        assert status["currentTask"] is None
        assert status["pendingSecurityPrompt"] is None
        assert status["pendingUserInput"] is None
        assert status["extensionConnected"] is False
        assert status["mode"] == "extension"
        assert status["logs"] == []

    @pytest.mark.asyncio
    async def test_logs_are_bounded(self, make_session, run_logger):
        """The status carries at most the last 50 entries."""
        session = make_session(FakeOracle([]))
        for i in range(80):
            run_logger.log(f"entry {i}")
        logs = session.status()["logs"]
        assert len(logs) == 50
        assert logs[-1]["message"] == "entry 79"

    @pytest.mark.asyncio
    async def test_extension_connection(self, make_session):
        """The first poll from the extension is announced."""
        relay = RelayChannel()
        session = make_session(FakeOracle([]), relay=relay)
        queue = session.subscribe()

        await relay.poll(wait=0)
        assert await next_event(queue, "extensionConnected") == {"connected": True}
        assert session.status()["extensionConnected"] is True


class TestSubscribers:
    """Tests for event fan-out."""

    @pytest.mark.asyncio
    async def test_every_subscriber_gets_events(self, make_session):
        session = make_session(FakeOracle([]))
        first, second = session.subscribe(), session.subscribe()
        session.emit("ping", {"n": 1})
        assert first.get_nowait() == {"event": "ping", "data": {"n": 1}}
        assert second.get_nowait() == {"event": "ping", "data": {"n": 1}}

    @pytest.mark.asyncio
    async def test_unsubscribe(self, make_session):
        session = make_session(FakeOracle([]))
        queue = session.subscribe()
        session.unsubscribe(queue)
        session.emit("ping", {})
        assert queue.empty()
        assert session.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_close_releases_resources(self, make_session):
        """Closing closes the port and the oracle."""
        port, oracle = FakePort(), FakeOracle([])
        session = make_session(oracle, port)
        await session.close()
        assert port.closed
        assert oracle.closed
