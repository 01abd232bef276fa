"""
Tests for the HTTP server: task control, relay endpoints and the event stream.
"""

import asyncio
import json

import pytest
from httpx import ASGITransport, AsyncClient

from bragent.browser import RelayBrowserPort
from bragent.relay import GET_PAGE_CONTEXT, RelayChannel
from bragent.server import create_app, format_event
from bragent.session import AgentSession

from conftest import FakeOracle, call, reply


PAGE_PAYLOAD = {
    "success": True,
    "url": "https://example.com/",
    "title": "Example Domain",
    "elements": [{"tag": "a", "text": "More information", "selector": "a[href]"}],
}


def complete(summary: str = "Done"):
    return reply(call("complete_task", "call_done", success=True, summary=summary))


def make_client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def relay():
    return RelayChannel(poll_wait=1.0, default_timeout=2.0)


@pytest.fixture
def build(config, run_logger, relay):
    """Factory for (app, session) around a scripted oracle."""

    def factory(oracle=None, **app_options):
        port = RelayBrowserPort(relay, action_timeout=2.0, context_timeout=2.0)
        session = AgentSession(config, port, oracle or FakeOracle([]), relay=relay, run_logger=run_logger)
        return create_app(session, relay, **app_options), session

    return factory


class TestBasicEndpoints:
    """Tests for health, status and the control panel."""

    @pytest.mark.asyncio
    async def test_health(self, build):
        app, _ = build()
        async with make_client(app) as http:
            response = await http.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_status(self, build):
        app, _ = build()
        async with make_client(app) as http:
            status = (await http.get("/api/status")).json()
        assert status["isRunning"] is False
        assert status["currentTask"] is None
        assert status["extensionConnected"] is False
        assert status["mode"] == "extension"

    @pytest.mark.asyncio
    async def test_control_panel(self, build):
        app, _ = build()
        async with make_client(app) as http:
            response = await http.get("/")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "/api/events" in response.text

    @pytest.mark.asyncio
    async def test_cors_preflight(self, build):
        """The extension may call in from its own origin."""
        app, _ = build()
        async with make_client(app) as http:
            response = await http.options(
                "/api/extension/poll",
                headers={"Origin": "chrome-extension://abc", "Access-Control-Request-Method": "POST"},
            )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"


class TestTaskEndpoints:
    """Tests for starting and steering tasks."""

    @pytest.mark.asyncio
    async def test_empty_task_is_rejected(self, build):
        app, _ = build()
        async with make_client(app) as http:
            assert (await http.post("/api/task", json={"task": "   "})).status_code == 400
            assert (await http.post("/api/task", json={})).status_code == 400

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, build):
        app, _ = build()
        async with make_client(app) as http:
            response = await http.post("/api/stop")
        assert response.json() == {"success": False}

    @pytest.mark.asyncio
    async def test_answers_without_prompt(self, build):
        """Security decisions and answers with nothing pending report failure."""
        app, _ = build()
        async with make_client(app) as http:
            security = await http.post("/api/security-response", json={"approved": True})
            answer = await http.post("/api/user-input", json={"answer": "Main street 1"})
        assert security.json() == {"success": False}
        assert answer.json() == {"success": False}

    @pytest.mark.asyncio
    async def test_task_through_the_extension(self, build, relay):
        """A task runs end to end with the extension answering over HTTP."""
        oracle = FakeOracle([complete("The title is Example Domain")])
        app, session = build(oracle)
        await relay.poll(wait=0)

        async with make_client(app) as http:
            started = await http.post("/api/task", json={"task": "Read the title"})
            assert started.json() == {"success": True, "message": "Task started"}

            second = await http.post("/api/task", json={"task": "Another task"})
            assert second.status_code == 409

            command = (await http.post("/api/extension/poll")).json()
            assert command["type"] == GET_PAGE_CONTEXT

            posted = await http.post(
                "/api/extension/result",
                json={"id": command["id"], "result": PAGE_PAYLOAD},
            )
            assert posted.json() == {"success": True, "accepted": True}

            result = await asyncio.wait_for(session.wait(), 2.0)
            assert result.success
            assert result.summary == "The title is Example Domain"

            status = (await http.get("/api/status")).json()
            assert status["isRunning"] is False
            assert status["extensionConnected"] is True

        assert "URL: https://example.com/" in oracle.requests[0][-1].content


class TestExtensionEndpoints:
    """Tests for the relay long-poll surface."""

    @pytest.mark.asyncio
    async def test_empty_poll(self, config, run_logger):
        relay = RelayChannel(poll_wait=0.01)
        session = AgentSession(config, RelayBrowserPort(relay), FakeOracle([]), relay=relay, run_logger=run_logger)
        async with make_client(create_app(session, relay)) as http:
            response = await http.post("/api/extension/poll")
        assert response.json() == {}
        assert relay.connected

    @pytest.mark.asyncio
    async def test_round_trip(self, build, relay):
        """A command goes out through poll and its result comes back."""
        app, _ = build()
        await relay.poll(wait=0)
        sender = asyncio.create_task(relay.send(GET_PAGE_CONTEXT))

        async with make_client(app) as http:
            command = (await http.post("/api/extension/poll")).json()
            await http.post("/api/extension/result", json={"id": command["id"], "result": {"url": "u"}})

        assert await sender == {"url": "u"}

    @pytest.mark.asyncio
    async def test_unknown_result_is_not_accepted(self, build):
        app, _ = build()
        async with make_client(app) as http:
            response = await http.post("/api/extension/result", json={"id": "cmd_404", "result": {}})
        assert response.json() == {"success": True, "accepted": False}

    @pytest.mark.asyncio
    async def test_malformed_result(self, build):
        """Bodies that are not a result object are rejected with 400."""
        app, _ = build()
        async with make_client(app) as http:
            not_json = await http.post(
                "/api/extension/result",
                content=b"not json",
                headers={"Content-Type": "application/json"},
            )
            no_id = await http.post("/api/extension/result", json={"result": {}})
        assert not_json.status_code == 400
        assert no_id.status_code == 400


class TestEventStream:
    """Tests for the server-sent event stream."""

    def test_format_event(self):
        frame = format_event({"event": "log", "data": {"message": "Привет"}})
        assert frame == 'data: {"event": "log", "data": {"message": "Привет"}}\n\n'

    @pytest.mark.asyncio
    async def test_stream_frames(self, build):
        """The stream opens with the status, then relays events and keepalives."""
        app, session = build(keepalive_interval=0.05)
        route = next(r for r in app.routes if getattr(r, "path", None) == "/api/events")

        response = await route.endpoint()
        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"
        assert session.subscriber_count == 1

        stream = response.body_iterator
        first = await stream.__anext__()
        assert json.loads(first[len("data: "):])["event"] == "status"

        session.emit("log", {"message": "hello"})
        second = await stream.__anext__()
        assert json.loads(second[len("data: "):]) == {"event": "log", "data": {"message": "hello"}}

        assert await stream.__anext__() == ": keepalive\n\n"

        await stream.aclose()
        assert session.subscriber_count == 0
