"""
HTTP surface for Bragent.

Hosts the relay long-poll endpoints for the browser extension, the task
control API, the server-sent event stream and a small control panel.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, StreamingResponse
from pydantic import BaseModel, ValidationError

from .adapters import create_adapter
from .browser import BrowserExecutionPort, PlaywrightBrowserPort, RelayBrowserPort
from .config import AgentConfig
from .relay import CommandResult, RelayChannel
from .session import AgentSession, TaskAlreadyRunningError

logger = logging.getLogger(__name__)

KEEPALIVE_INTERVAL = 15.0


class TaskRequest(BaseModel):
    task: str = ""


class SecurityResponse(BaseModel):
    approved: bool = False


class UserInputResponse(BaseModel):
    answer: str = ""


def format_event(message: dict[str, Any]) -> str:
    """Encode one event as a server-sent event frame."""
    return f"data: {json.dumps(message, ensure_ascii=False, default=str)}\n\n"


def create_app(
    session: AgentSession,
    relay: RelayChannel,
    keepalive_interval: float = KEEPALIVE_INTERVAL,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        session: Task control surface
        relay: Relay channel the extension polls
        keepalive_interval: Seconds between SSE keepalive comments

    Returns:
        Configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Bragent server starting (mode: %s)", session.config.mode)
        yield
        logger.info("Bragent server shutting down...")
        await session.close()
        relay.close()

    app = FastAPI(title="Bragent", lifespan=lifespan)
    app.state.session = session
    app.state.relay = relay

    # The extension calls in from its own origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return CONTROL_PANEL_HTML

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/status")
    async def get_status():
        return session.status()

    @app.post("/api/task")
    async def start_task(request: TaskRequest):
        try:
            session.start_task(request.task)
        except ValueError:
            raise HTTPException(400, "Task must not be empty")
        except TaskAlreadyRunningError:
            raise HTTPException(409, "A task is already running")
        return {"success": True, "message": "Task started"}

    @app.post("/api/stop")
    async def stop_task():
        return {"success": session.stop_task()}

    @app.post("/api/security-response")
    async def security_response(request: SecurityResponse):
        return {"success": session.submit_security_decision(request.approved)}

    @app.post("/api/user-input")
    async def user_input(request: UserInputResponse):
        return {"success": session.submit_user_answer(request.answer)}

    @app.post("/api/extension/poll")
    async def extension_poll():
        return await relay.poll()

    @app.post("/api/extension/result")
    async def extension_result(request: Request):
        try:
            result = CommandResult.model_validate(await request.json())
        except (ValueError, ValidationError):
            raise HTTPException(400, "Invalid request")
        logger.debug("Extension result %s: %s", result.id, json.dumps(result.result, default=str)[:200])
        return {"success": True, "accepted": relay.post_result(result.id, result.result)}

    @app.get("/api/events")
    async def events():
        queue = session.subscribe()

        async def event_generator():
            try:
                yield format_event({"event": "status", "data": session.status()})
                while True:
                    try:
                        message = await asyncio.wait_for(queue.get(), timeout=keepalive_interval)
                    except asyncio.TimeoutError:
                        # Keep proxies from closing an idle stream
                        yield ": keepalive\n\n"
                        continue
                    yield format_event(message)
            finally:
                session.unsubscribe(queue)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return app


def build_port(config: AgentConfig, relay: RelayChannel) -> BrowserExecutionPort:
    """Pick the browser port for the configured mode."""
    if config.uses_extension:
        return RelayBrowserPort(
            relay,
            action_timeout=config.action_timeout,
            context_timeout=config.context_timeout,
        )
    return PlaywrightBrowserPort(config)


def serve(config: AgentConfig) -> None:
    """Wire relay, port, oracle and session together and run uvicorn."""
    relay = RelayChannel(
        poll_wait=config.poll_wait,
        default_timeout=config.action_timeout,
        peer_timeout=config.peer_timeout,
    )
    port = build_port(config, relay)
    oracle = create_adapter(
        config.provider_config,
        timeout=config.oracle_timeout,
        max_tokens=config.oracle_max_tokens,
        temperature=config.temperature,
    )
    session = AgentSession(config, port, oracle, relay=relay)
    app = create_app(session, relay)

    logger.info("Listening on http://%s:%d", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_level="debug" if config.debug else "warning")


CONTROL_PANEL_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <title>Bragent</title>
  <style>
    body { font-family: system-ui, sans-serif; margin: 2rem auto; max-width: 820px; background: #111; color: #ddd; }
    textarea { width: 100%; height: 4rem; background: #1c1c1c; color: #ddd; border: 1px solid #333; }
    button { margin: .5rem .5rem .5rem 0; padding: .4rem 1rem; }
    #logs { background: #0b0b0b; padding: 1rem; height: 420px; overflow-y: auto; font-family: monospace; font-size: 13px; }
    .error { color: #f66; } .success { color: #6d6; } .warning, .confirm { color: #fc5; }
    .action { color: #5cf; } .thought { color: #c8f; } .info { color: #999; }
    #prompt { display: none; border: 1px solid #fc5; padding: 1rem; margin: 1rem 0; white-space: pre-wrap; }
  </style>
</head>
<body>
  <h1>Bragent</h1>
  <div id="status">connecting...</div>
  <textarea id="task" placeholder="Describe the task"></textarea>
  <button id="run">Run</button><button id="stop">Stop</button>
  <div id="prompt">
    <div id="prompt-text"></div>
    <input id="answer" type="text">
    <button id="yes">Approve</button><button id="no">Reject</button><button id="send">Send</button>
  </div>
  <div id="logs"></div>
  <script>
    const logs = document.getElementById('logs');
    const prompt = document.getElementById('prompt');
    let mode = null;
    const post = (url, body) => fetch(url, {
      method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body || {})
    });
    const addLog = (entry) => {
      const line = document.createElement('div');
      line.className = entry.type;
      line.textContent = `[${entry.time}] ${entry.message}`;
      logs.appendChild(line);
      logs.scrollTop = logs.scrollHeight;
    };
    const showPrompt = (text, kind) => {
      mode = kind;
      document.getElementById('prompt-text').textContent = text;
      document.getElementById('answer').style.display = kind === 'input' ? '' : 'none';
      document.getElementById('send').style.display = kind === 'input' ? '' : 'none';
      document.getElementById('yes').style.display = kind === 'security' ? '' : 'none';
      document.getElementById('no').style.display = kind === 'security' ? '' : 'none';
      prompt.style.display = 'block';
    };
    const hidePrompt = () => { prompt.style.display = 'none'; mode = null; };
    const events = new EventSource('/api/events');
    events.onmessage = (e) => {
      const { event, data } = JSON.parse(e.data);
      if (event === 'status') {
        document.getElementById('status').textContent =
          `mode: ${data.mode} | extension: ${data.extensionConnected ? 'connected' : 'not connected'}`;
        data.logs.forEach(addLog);
        if (data.pendingSecurityPrompt) showPrompt(data.pendingSecurityPrompt.warning, 'security');
        if (data.pendingUserInput) showPrompt(data.pendingUserInput.question, 'input');
      } else if (event === 'log') {
        addLog(data);
      } else if (event === 'securityPrompt') {
        showPrompt(data.warning, 'security');
      } else if (event === 'userInput') {
        showPrompt(data.question, 'input');
      } else if (event === 'taskComplete') {
        hidePrompt();
      } else if (event === 'extensionConnected') {
        document.getElementById('status').textContent += ' (extension connected)';
      }
    };
    document.getElementById('run').onclick = () => post('/api/task', { task: document.getElementById('task').value });
    document.getElementById('stop').onclick = () => post('/api/stop');
    document.getElementById('yes').onclick = () => { post('/api/security-response', { approved: true }); hidePrompt(); };
    document.getElementById('no').onclick = () => { post('/api/security-response', { approved: false }); hidePrompt(); };
    document.getElementById('send').onclick = () => {
      post('/api/user-input', { answer: document.getElementById('answer').value });
      document.getElementById('answer').value = '';
      hidePrompt();
    };
  </script>
</body>
</html>
"""
