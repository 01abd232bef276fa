"""
Context compression for Bragent.

Renders a PageContext into a bounded text block for the oracle.
"""

import logging
from collections import deque
from typing import Iterable

from .types import FormDescriptor, PageContext, PageElement
from .utils import clean_text

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[Context truncated to fit the token limit]"

# Rough estimate: one token per three characters
CHARS_PER_TOKEN = 3

SELECTOR_ARROW = "-> "

DEFAULT_MODAL_HINT = "Use the elements inside it."


class ContextCompressor:
    """Renders page snapshots under a token budget.

    Keeps a short rolling history of rendered contexts for auxiliary
    summaries; the history is never fed back into the oracle.
    """

    def __init__(
        self,
        max_tokens: int = 8000,
        max_elements: int = 20,
        max_forms: int = 2,
        history_size: int = 5,
    ):
        """Initialize the compressor.

        Args:
            max_tokens: Token budget for one rendered context
            max_elements: Maximum element lines (elements arrive priority-ordered)
            max_forms: Maximum forms rendered
            history_size: Number of contexts kept for navigation history
        """
        self.max_tokens = max_tokens
        self.max_elements = max_elements
        self.max_forms = max_forms
        self._history: deque[PageContext] = deque(maxlen=history_size)

    @property
    def max_chars(self) -> int:
        return self.max_tokens * CHARS_PER_TOKEN

    def render(self, context: PageContext) -> str:
        """Render a page snapshot for the oracle.

        Args:
            context: Snapshot to render

        Returns:
            Text no longer than max_chars plus the truncation marker
        """
        parts = [
            f"URL: {context.url}",
            f"Title: {context.title}",
        ]

        if context.has_modal:
            parts.append(f"\nMODAL DIALOG OPEN! {context.modal_hint or DEFAULT_MODAL_HINT}")

        if context.elements:
            shown = context.elements[:self.max_elements]
            scope = " [in modal]" if context.has_modal else ""
            parts.append(f"\nElements ({len(shown)}){scope}:")
            parts.append(self._format_elements(shown))

        if context.forms:
            parts.append("\nForms:")
            parts.append(self._format_forms(context.forms[:self.max_forms]))

        self._history.append(context)
        return self.truncate("\n".join(parts))

    def truncate(self, text: str) -> str:
        """Cut text to the character budget.

        A partially emitted line is dropped whole, so the cut never lands
        inside a selector.
        """
        limit = self.max_chars
        if len(text) <= limit:
            return text

        cut = limit
        line_start = text.rfind("\n", 0, cut) + 1
        if text[cut] != "\n" and line_start > 0:
            cut = line_start

        logger.debug("Context truncated from %d to %d chars", len(text), cut)
        return text[:cut].rstrip("\n") + TRUNCATION_MARKER

    def _format_elements(self, elements: Iterable[PageElement]) -> str:
        lines = []
        for el in elements:
            attrs = " ".join(
                f'{k}="{v}"' for k, v in el.attributes.items() if v and len(v) < 50
            )
            attr_str = f" ({attrs})" if attrs else ""
            lines.append(
                f'[{el.index}] <{el.tag}> "{clean_text(el.text)}"{attr_str} {SELECTOR_ARROW}selector: {el.selector}'
            )
        return "\n".join(lines)

    def _format_forms(self, forms: Iterable[FormDescriptor]) -> str:
        blocks = []
        for form in forms:
            if form.fields:
                fields = "\n".join(
                    f"  - {f.name or 'unnamed'} ({f.type or 'text'})"
                    f"{' *required*' if f.required else ''} {SELECTOR_ARROW}{f.selector}"
                    for f in form.fields
                )
            else:
                fields = "  (no fields)"
            blocks.append(f"Form {form.index} [{(form.method or 'GET').upper()}]:\n{fields}")
        return "\n\n".join(blocks)

    def navigation_history(self) -> str:
        """Compact list of recently seen pages."""
        if not self._history:
            return "No navigation history"
        return "\n".join(
            f"{i}. {ctx.title} ({ctx.url})" for i, ctx in enumerate(self._history, 1)
        )

    def page_summary(self, context: PageContext) -> str:
        """Short summary of a page."""
        return (
            f"Page: {context.title}\n"
            f"URL: {context.url}\n"
            f"Elements: {len(context.elements)}\n"
            f"Forms: {len(context.forms)}"
        )

    def clear_history(self) -> None:
        self._history.clear()

    @property
    def history(self) -> list[PageContext]:
        return list(self._history)
