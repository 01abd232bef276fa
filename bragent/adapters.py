"""
Provider adapters for Bragent.

Provides the oracle interface used by the agent loop, with adapters for:
- OpenAI-compatible chat completions (OpenRouter, OpenAI, Gemini, Groq,
  ZhipuAI, GPT4Free, LM Studio)
- Anthropic Messages API (Claude)

Every adapter takes the conversation plus the tool schema and returns the
reply text and any tool calls. Failures are mapped onto OracleError and its
subclasses so the loop can tell rate limits and oversized contexts apart.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from .conversation import ConversationMessage, Role, ToolCallRef
from .providers import Provider, ProviderConfig

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

_CONTEXT_PATTERN = re.compile(
    r"context|too many tokens|maximum.*tokens|too long|too large|length", re.IGNORECASE
)
_RATE_PATTERN = re.compile(r"rate.?limit|quota|too many requests", re.IGNORECASE)


class OracleError(Exception):
    """The provider failed to produce a reply."""


class RateLimitError(OracleError):
    """The provider asked us to slow down."""


class ContextTooLargeError(OracleError):
    """The conversation does not fit the model's context window."""


@dataclass
class OracleReply:
    """What the oracle answered for one turn."""
    text: Optional[str] = None
    tool_calls: list[ToolCallRef] = field(default_factory=list)


class Oracle(Protocol):
    """Anything that maps (messages, tools) to a reply."""

    async def complete(
        self,
        messages: list[ConversationMessage],
        tools: list[dict[str, Any]],
    ) -> OracleReply:
        ...


def classify_http_error(status_code: int, body: str) -> OracleError:
    """Map an HTTP error response onto the oracle error taxonomy.

    Args:
        status_code: HTTP status of the response
        body: Response body (already shortened)

    Returns:
        The exception to raise
    """
    if status_code == 429 or _RATE_PATTERN.search(body):
        return RateLimitError(f"Rate limited (HTTP {status_code}): {body}")
    if status_code in (400, 413) and _CONTEXT_PATTERN.search(body):
        return ContextTooLargeError(f"Context too large (HTTP {status_code}): {body}")
    return OracleError(f"HTTP {status_code}: {body}")


class LLMAdapter(ABC):
    """Shared HTTP plumbing for provider adapters."""

    def __init__(
        self,
        config: ProviderConfig,
        timeout: float = 60.0,
        max_tokens: int = 400,
        temperature: float = 0.1,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.model = config.effective_model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @abstractmethod
    async def complete(
        self,
        messages: list[ConversationMessage],
        tools: list[dict[str, Any]],
    ) -> OracleReply:
        """Send the conversation and return the reply.

        Args:
            messages: Conversation, system message first
            tools: OpenAI-style function definitions

        Returns:
            Reply text and tool calls

        Raises:
            RateLimitError: The provider rate-limited the request
            ContextTooLargeError: The conversation is too long for the model
            OracleError: Any other provider or transport failure
        """

    async def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        try:
            response = await self.client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise OracleError(f"{self.config.display_name} request timed out") from e
        except httpx.HTTPError as e:
            raise OracleError(f"{self.config.display_name} request failed: {e}") from e

        if response.status_code >= 400:
            raise classify_http_error(response.status_code, response.text[:500])

        try:
            data = response.json()
        except ValueError as e:
            raise OracleError(f"Invalid JSON from {self.config.display_name}") from e

        # Some OpenAI-compatible gateways report errors with HTTP 200
        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise classify_http_error(code if isinstance(code, int) else 400, message[:500])
        return data

    async def close(self) -> None:
        await self.client.aclose()


class OpenAIAdapter(LLMAdapter):
    """Adapter for OpenAI Chat Completions API.

    Works with OpenAI and every OpenAI-compatible API.
    """

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self.config.extra_headers}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def complete(
        self,
        messages: list[ConversationMessage],
        tools: list[dict[str, Any]],
    ) -> OracleReply:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_openai() for m in messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        data = await self._post(f"{self.config.endpoint}/chat/completions", payload, self.headers)

        choices = data.get("choices") or []
        if not choices:
            raise OracleError(f"No choices in response from {self.config.display_name}")
        message = choices[0].get("message") or {}

        tool_calls = []
        for i, call in enumerate(message.get("tool_calls") or []):
            function = call.get("function") or {}
            arguments = function.get("arguments")
            if isinstance(arguments, dict):
                arguments = json.dumps(arguments)
            tool_calls.append(ToolCallRef(
                # Gemini's compatibility layer may omit call ids
                id=call.get("id") or f"call_{i}",
                name=function.get("name", ""),
                arguments=arguments or "{}",
            ))

        return OracleReply(text=message.get("content") or None, tool_calls=tool_calls)


class AnthropicAdapter(LLMAdapter):
    """Adapter for Anthropic Messages API (Claude).

    The system prompt goes into its own parameter, tool calls become
    tool_use blocks and tool results become tool_result blocks.
    """

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    async def complete(
        self,
        messages: list[ConversationMessage],
        tools: list[dict[str, Any]],
    ) -> OracleReply:
        system, converted = to_anthropic_messages(messages)
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": converted,
        }
        if system:
            payload["system"] = system
        if tools:
            payload["tools"] = [to_anthropic_tool(t) for t in tools]

        data = await self._post(f"{self.config.endpoint}/messages", payload, self.headers)

        texts = []
        tool_calls = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(ToolCallRef(
                    id=block["id"],
                    name=block.get("name", ""),
                    arguments=json.dumps(block.get("input") or {}),
                ))

        return OracleReply(text="\n".join(texts) or None, tool_calls=tool_calls)


def to_anthropic_tool(tool: dict[str, Any]) -> dict[str, Any]:
    """Convert an OpenAI function definition to an Anthropic tool."""
    function = tool["function"]
    return {
        "name": function["name"],
        "description": function.get("description", ""),
        "input_schema": function.get("parameters") or {"type": "object", "properties": {}},
    }


def to_anthropic_messages(
    messages: list[ConversationMessage],
) -> tuple[Optional[str], list[dict[str, Any]]]:
    """Convert the conversation to Anthropic's format.

    Consecutive messages of the same role are merged because Anthropic
    requires user and assistant turns to alternate.

    Returns:
        Tuple of (system prompt, messages)
    """
    system = None
    converted: list[dict[str, Any]] = []

    for message in messages:
        if message.role == Role.SYSTEM:
            system = message.content
            continue

        if message.role == Role.TOOL:
            role = "user"
            blocks = [{
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content or "",
            }]
        elif message.role == Role.ASSISTANT:
            role = "assistant"
            blocks = [{"type": "text", "text": message.content}] if message.content else []
            for call in message.tool_calls:
                try:
                    arguments = json.loads(call.arguments or "{}")
                except json.JSONDecodeError:
                    arguments = {}
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": arguments,
                })
        else:
            role = "user"
            blocks = [{"type": "text", "text": message.content or ""}]

        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})

    return system, converted


def create_adapter(
    config: ProviderConfig,
    timeout: float = 60.0,
    max_tokens: int = 400,
    temperature: float = 0.1,
) -> LLMAdapter:
    """Create an LLM adapter for the configured provider.

    Args:
        config: Provider configuration
        timeout: HTTP timeout in seconds
        max_tokens: Reply token limit
        temperature: Sampling temperature

    Returns:
        Configured LLM adapter
    """
    adapter_class = AnthropicAdapter if config.provider == Provider.ANTHROPIC else OpenAIAdapter
    logger.debug("Using %s with model %s", config.display_name, config.effective_model)
    return adapter_class(config, timeout=timeout, max_tokens=max_tokens, temperature=temperature)
