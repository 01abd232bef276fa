"""
Utility functions for Bragent.

Provides helpers for text processing and action formatting.
"""

import re
from typing import Any, Optional

SENSITIVE_FIELD_PATTERN = re.compile(
    r"password|passwd|pwd|card|cvv|cvc|credit|pin\b|ssn|пароль|карт",
    re.IGNORECASE,
)


def truncate_text(text: str, max_chars: int, suffix: str = "...") -> str:
    """Truncate text to a maximum number of characters.

    Args:
        text: Text to truncate
        max_chars: Maximum number of characters
        suffix: Suffix to add when truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_chars:
        return text
    return text[:max_chars - len(suffix)] + suffix


def clean_text(text: str) -> str:
    """Clean and normalize text content.

    Args:
        text: Raw text content

    Returns:
        Cleaned text with normalized whitespace
    """
    # Replace multiple whitespace with single space
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def format_selector(selector: str) -> str:
    """Normalize a selector for Playwright.

    Args:
        selector: Selector as produced by the oracle or the scraper

    Returns:
        Playwright selector (``text:Foo`` becomes ``text="Foo"``)
    """
    selector = selector.strip()

    if selector.startswith("text:"):
        text = selector[len("text:"):].strip().replace('"', '\\"')
        return f'text="{text}"'

    # CSS or an explicit Playwright engine prefix (text=, css=, xpath=)
    return selector


def is_sensitive_field(selector: Optional[str]) -> bool:
    """Check if a selector likely refers to a password or payment field."""
    return bool(selector) and SENSITIVE_FIELD_PATTERN.search(selector) is not None


def redact_sensitive(action: dict[str, Any]) -> dict[str, Any]:
    """Mask typed text aimed at sensitive fields before it is logged.

    Args:
        action: Wire dict of a browser action or tool arguments

    Returns:
        Copy with the text replaced when the target looks sensitive
    """
    if "text" in action and is_sensitive_field(action.get("selector")):
        redacted = dict(action)
        redacted["text"] = "[REDACTED]"
        return redacted
    return action


def describe_action(action: dict[str, Any]) -> str:
    """One-line description of a dispatched browser action.

    Args:
        action: Wire dict of the action

    Returns:
        Short human-readable description
    """
    action_type = action.get("type", "unknown")
    if action_type == "navigate":
        return f"navigate -> {action.get('url', '')}"
    if action_type in ("click", "hover"):
        return f"{action_type} -> {action.get('selector', '')}"
    if action_type == "type_text":
        text = redact_sensitive(action)["text"]
        return f'type_text -> "{truncate_text(text, 60)}" into {action.get("selector", "")}'
    if action_type == "scroll":
        return f"scroll {action.get('direction', 'down')}"
    if action_type == "select":
        return f"select -> {action.get('value', '')} in {action.get('selector', '')}"
    if action_type == "press_key":
        return f"press_key -> {action.get('key', '')}"
    return action_type


def format_recent_actions(actions: list[dict[str, Any]], limit: int = 5) -> str:
    """Numbered list of the last few dispatched actions."""
    recent = actions[-limit:]
    return "\n".join(f"{i}. {describe_action(a)}" for i, a in enumerate(recent, 1))
