"""
Type definitions for Bragent.

Provides typed dataclasses for the page snapshots and task results that flow
between the browser ports, the context compressor and the agent loop.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class BoundingBox:
    """Element position in viewport pixels."""
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class PageElement:
    """Interactive element seen on the page.

    Attributes:
        index: Presentation index, stable only within one PageContext
        tag: Lower-case tag name
        text: Visible text (already shortened by the scraper)
        selector: Selector that re-targets the same element on the next action
        attributes: Selected attributes (id, name, type, placeholder, ...)
        bounding_box: Optional position on screen
    """
    index: int
    tag: str
    text: str
    selector: str
    attributes: dict[str, str] = field(default_factory=dict)
    bounding_box: Optional[BoundingBox] = None

    @classmethod
    def from_payload(cls, data: dict[str, Any], position: int) -> "PageElement":
        """Create from a loosely-typed peer payload."""
        box = data.get("boundingBox") or data.get("bounding_box")
        attributes = data.get("attributes")
        if not isinstance(attributes, dict):
            attributes = {}
        return cls(
            index=data["index"] if data.get("index") is not None else position,
            tag=str(data.get("tag") or ""),
            text=str(data.get("text") or ""),
            selector=str(data.get("selector") or ""),
            attributes={str(k): str(v) for k, v in attributes.items() if v is not None},
            bounding_box=BoundingBox(
                x=box.get("x", 0),
                y=box.get("y", 0),
                width=box.get("width", 0),
                height=box.get("height", 0),
            ) if isinstance(box, dict) else None,
        )


@dataclass(frozen=True)
class FormField:
    """Single input of a form."""
    name: str
    type: str = "text"
    selector: str = ""
    placeholder: str = ""
    required: bool = False

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "FormField":
        name = str(data.get("name") or "")
        return cls(
            name=name,
            type=str(data.get("type") or "text"),
            selector=str(data.get("selector") or (f'[name="{name}"]' if name else "")),
            placeholder=str(data.get("placeholder") or ""),
            required=bool(data.get("required", False)),
        )


@dataclass(frozen=True)
class FormDescriptor:
    """Form found on the page."""
    index: int
    action: str = ""
    method: str = "GET"
    fields: tuple[FormField, ...] = ()

    @classmethod
    def from_payload(cls, data: dict[str, Any], position: int) -> "FormDescriptor":
        # Some peers send "inputs" instead of "fields"
        raw_fields = data.get("fields")
        if raw_fields is None:
            raw_fields = data.get("inputs") or []
        return cls(
            index=data["index"] if data.get("index") is not None else position,
            action=str(data.get("action") or ""),
            method=str(data.get("method") or "GET"),
            fields=tuple(
                FormField.from_payload(f) for f in raw_fields if isinstance(f, dict)
            ),
        )


@dataclass(frozen=True)
class PageContext:
    """Point-in-time snapshot of the controlled page.

    Produced fresh each iteration; never mutated, only superseded.
    """
    url: str = ""
    title: str = ""
    elements: tuple[PageElement, ...] = ()
    forms: tuple[FormDescriptor, ...] = ()
    text_content: str = ""
    has_modal: bool = False
    modal_hint: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def minimal(cls, url: str = "", title: str = "") -> "PageContext":
        """Empty fallback context used when extraction fails."""
        return cls(url=url or "", title=title or "")

    @classmethod
    def from_payload(cls, data: Optional[dict[str, Any]]) -> "PageContext":
        """Normalize a page snapshot posted by the remote peer."""
        if not isinstance(data, dict):
            return cls.minimal()

        raw_elements = data.get("elements")
        raw_forms = data.get("forms")
        return cls(
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
            elements=tuple(
                PageElement.from_payload(el, i)
                for i, el in enumerate(raw_elements if isinstance(raw_elements, list) else [])
                if isinstance(el, dict)
            ),
            forms=tuple(
                FormDescriptor.from_payload(f, i)
                for i, f in enumerate(raw_forms if isinstance(raw_forms, list) else [])
                if isinstance(f, dict)
            ),
            text_content=str(data.get("textContent") or data.get("text_content") or ""),
            has_modal=bool(data.get("hasModal") or data.get("has_modal") or False),
            modal_hint=data.get("modalHint") or data.get("modal_hint") or None,
        )

    def find_element(self, selector: str) -> Optional[PageElement]:
        """Find an element of this snapshot by its exact selector."""
        for element in self.elements:
            if element.selector == selector:
                return element
        return None


class TaskStatus(str, Enum):
    """Terminal state of one agent run."""
    COMPLETED = "completed"
    ITERATION_LIMIT = "iteration_limit"
    LOOP_DETECTED = "loop_detected"
    ERROR_LIMIT = "error_limit"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskResult:
    """Terminal artifact of one agent run.

    Attributes:
        success: Whether the task was reported as accomplished
        summary: Human-readable outcome, never empty
        actions: Every browser action dispatched, in order
        errors: Error messages collected during the run
        duration: Wall time in seconds
        status: Which terminal state ended the run
    """
    success: bool
    summary: str
    actions: tuple[Any, ...] = ()
    errors: tuple[str, ...] = ()
    duration: float = 0.0
    status: TaskStatus = TaskStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "summary": self.summary,
            "actions": [
                a.to_wire() if hasattr(a, "to_wire") else a for a in self.actions
            ],
            "errors": list(self.errors),
            "duration": self.duration,
            "status": self.status.value,
        }
