"""
Conversation state for Bragent.

Ordered, role-tagged message log sent to the oracle. Every tool message is
paired with the assistant message whose tool call it answers, and trimming
never splits such a pair.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ConversationError(ValueError):
    """Raised when a message would break tool-call pairing."""


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCallRef:
    """Tool call as it appears in an assistant message.

    Attributes:
        id: Provider-assigned call id
        name: Tool name
        arguments: Arguments as a JSON string
    """
    id: str
    name: str
    arguments: str = "{}"

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class ConversationMessage:
    role: Role
    content: Optional[str] = None
    tool_calls: tuple[ToolCallRef, ...] = ()
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "ConversationMessage":
        return cls(Role.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "ConversationMessage":
        return cls(Role.USER, content)

    @classmethod
    def assistant(
        cls,
        content: Optional[str],
        tool_calls: tuple[ToolCallRef, ...] = (),
    ) -> "ConversationMessage":
        return cls(Role.ASSISTANT, content, tuple(tool_calls))

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> "ConversationMessage":
        return cls(Role.TOOL, content, tool_call_id=tool_call_id)

    @property
    def tool_call_ids(self) -> set[str]:
        return {tc.id for tc in self.tool_calls}

    def to_openai(self) -> dict[str, Any]:
        """Render as an OpenAI chat message dict."""
        message: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [tc.to_openai() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            message["tool_call_id"] = self.tool_call_id
        return message


class ConversationState:
    """Message log owned by one agent run.

    Holds at most one system message, always first.
    """

    def __init__(self, system_prompt: Optional[str] = None):
        self._system: Optional[ConversationMessage] = (
            ConversationMessage.system(system_prompt) if system_prompt else None
        )
        self._messages: list[ConversationMessage] = []

    @property
    def system(self) -> Optional[ConversationMessage]:
        return self._system

    @property
    def messages(self) -> list[ConversationMessage]:
        """Full history, system message first."""
        head = [self._system] if self._system else []
        return head + self._messages

    @property
    def non_system(self) -> list[ConversationMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages) + (1 if self._system else 0)

    @property
    def unresolved_tool_calls(self) -> list[ToolCallRef]:
        """Tool calls of the last assistant turn still waiting for a result."""
        return _unresolved(self._messages)

    def append(self, message: ConversationMessage) -> None:
        """Append a message, enforcing tool-call pairing.

        Raises:
            ConversationError: A tool message without a matching open call,
                or a non-tool message while tool calls are still open
        """
        if message.role == Role.SYSTEM:
            self._system = message
            return

        open_calls = {tc.id for tc in self.unresolved_tool_calls}
        if message.role == Role.TOOL:
            if message.tool_call_id not in open_calls:
                raise ConversationError(
                    f"Tool result for unknown or already answered call: {message.tool_call_id}"
                )
        elif open_calls:
            raise ConversationError(
                f"Cannot append {message.role.value} message while tool calls are open: "
                f"{sorted(open_calls)}"
            )

        self._messages.append(message)

    def resolve_pending(self, content: str) -> int:
        """Answer every open tool call with the same content.

        Returns:
            Number of tool results appended
        """
        pending = self.unresolved_tool_calls
        for call in pending:
            self._messages.append(ConversationMessage.tool(call.id, content))
        return len(pending)

    def trim(self, max_non_system: int) -> None:
        """Keep the system message and at most the last N other messages.

        The kept window never starts with a tool message, a plain assistant
        message or an assistant message whose calls are not all answered
        inside the window. A tool message is dropped whenever the assistant
        message carrying its call falls outside the window.
        """
        before = len(self._messages)
        kept = self._messages[-max_non_system:] if max_non_system > 0 else []

        while kept and _bad_head(kept):
            kept = kept[1:]

        known_calls: set[str] = set()
        cleaned: list[ConversationMessage] = []
        for message in kept:
            if message.role == Role.ASSISTANT:
                known_calls |= message.tool_call_ids
            elif message.role == Role.TOOL and message.tool_call_id not in known_calls:
                continue
            cleaned.append(message)

        self._messages = cleaned
        if len(cleaned) != before:
            logger.debug("History trimmed from %d to %d messages", before, len(cleaned))

    def aggressive_trim(self, keep: int = 10) -> None:
        """Shrink history hard after the oracle rejected it as too large."""
        self.trim(keep)

    def reset(self, system_prompt: str, first_message: Optional[str] = None) -> None:
        self._system = ConversationMessage.system(system_prompt)
        self._messages = []
        if first_message:
            self._messages.append(ConversationMessage.user(first_message))

    def to_openai(self) -> list[dict[str, Any]]:
        return [m.to_openai() for m in self.messages]


def _bad_head(messages: list[ConversationMessage]) -> bool:
    head = messages[0]
    if head.role == Role.TOOL:
        return True
    if head.role != Role.ASSISTANT:
        return False
    if not head.tool_calls:
        return True
    answered = {m.tool_call_id for m in messages[1:] if m.role == Role.TOOL}
    return not head.tool_call_ids <= answered


def _unresolved(messages: list[ConversationMessage]) -> list[ToolCallRef]:
    answered: set[str] = set()
    for message in reversed(messages):
        if message.role == Role.TOOL:
            answered.add(message.tool_call_id)
        elif message.role == Role.ASSISTANT:
            return [tc for tc in message.tool_calls if tc.id not in answered]
        else:
            return []
    return []
