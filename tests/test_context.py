"""
Tests for page context rendering and compression.
"""

from bragent.context import TRUNCATION_MARKER, ContextCompressor
from bragent.types import FormDescriptor, FormField, PageContext, PageElement


def make_elements(count: int, text_size: int = 10) -> tuple[PageElement, ...]:
    return tuple(
        PageElement(
            index=i,
            tag="button",
            text=f"Button {i} " + "x" * text_size,
            selector=f"#button-{i}",
            attributes={"type": "button"},
        )
        for i in range(count)
    )


class TestRender:
    """Tests for rendering a snapshot."""

    def test_header_and_elements(self):
        """URL, title and element lines with selectors are rendered."""
        context = PageContext(
            url="https://example.com",
            title="Example",
            elements=make_elements(2),
        )
        text = ContextCompressor().render(context)
        assert text.startswith("URL: https://example.com\nTitle: Example")
        assert "Elements (2):" in text
        assert '[1] <button> "Button 1 xxxxxxxxxx" (type="button") -> selector: #button-1' in text

    def test_element_limit(self):
        """Only the first max_elements elements are shown."""
        context = PageContext(url="u", title="t", elements=make_elements(30))
        text = ContextCompressor(max_elements=20).render(context)
        assert "Elements (20):" in text
        assert "#button-19" in text
        assert "#button-20" not in text

    def test_modal_is_announced(self):
        """An open modal is flagged and scopes the element list."""
        context = PageContext(
            url="u",
            title="t",
            elements=make_elements(1),
            has_modal=True,
            modal_hint="Close the cookie banner first.",
        )
        text = ContextCompressor().render(context)
        assert "MODAL DIALOG OPEN! Close the cookie banner first." in text
        assert "[in modal]" in text

    def test_forms(self):
        """Forms list their fields with selectors, capped at max_forms."""
        form = FormDescriptor(
            index=0,
            method="post",
            fields=(FormField(name="email", type="email", selector="#email", required=True),),
        )
        context = PageContext(url="u", title="t", forms=(form, form, form))
        text = ContextCompressor(max_forms=2).render(context)
        assert "Form 0 [POST]:" in text
        assert "  - email (email) *required* -> #email" in text
        assert text.count("Form 0") == 2

    def test_long_attributes_are_skipped(self):
        """Attribute values of 50 characters or more are omitted."""
        element = PageElement(
            index=0, tag="a", text="Link", selector="a", attributes={"href": "h" * 60, "id": "short"}
        )
        text = ContextCompressor().render(PageContext(url="u", title="t", elements=(element,)))
        assert 'id="short"' in text
        assert "hhhh" not in text


class TestTruncation:
    """Tests for the token budget."""

    def test_output_respects_budget(self):
        """Rendered text never exceeds the budget plus the marker."""
        compressor = ContextCompressor(max_tokens=100, max_elements=50)
        context = PageContext(url="u", title="t", elements=make_elements(50, text_size=40))
        text = compressor.render(context)
        assert text.endswith(TRUNCATION_MARKER)
        assert len(text) <= compressor.max_chars + len(TRUNCATION_MARKER)

    def test_cut_never_splits_a_selector(self):
        """The last kept element line is complete."""
        compressor = ContextCompressor(max_tokens=100, max_elements=50)
        context = PageContext(url="u", title="t", elements=make_elements(50, text_size=40))
        body = compressor.render(context)[:-len(TRUNCATION_MARKER)]
        last_line = body.splitlines()[-1]
        index = int(last_line[1:last_line.index("]")])
        assert last_line.endswith(f"selector: #button-{index}")

    def test_short_text_is_untouched(self):
        """Text within budget is returned as is."""
        assert ContextCompressor().truncate("short") == "short"


class TestHistory:
    """Tests for the auxiliary navigation history."""

    def test_navigation_history(self):
        """Recently rendered pages are listed, bounded by history_size."""
        compressor = ContextCompressor(history_size=2)
        for i in range(3):
            compressor.render(PageContext(url=f"https://site/{i}", title=f"Page {i}"))
        assert compressor.navigation_history() == "1. Page 1 (https://site/1)\n2. Page 2 (https://site/2)"

    def test_clear_history(self):
        """Clearing empties the history."""
        compressor = ContextCompressor()
        compressor.render(PageContext(url="u", title="t"))
        compressor.clear_history()
        assert compressor.navigation_history() == "No navigation history"

    def test_page_summary(self):
        """The summary counts elements and forms."""
        context = PageContext(url="u", title="t", elements=make_elements(3))
        assert "Elements: 3" in ContextCompressor().page_summary(context)


class TestPayload:
    """Tests for normalizing peer payloads."""

    def test_from_payload(self):
        """Loose extension payloads become a typed snapshot."""
        context = PageContext.from_payload({
            "success": True,
            "url": "https://example.com",
            "title": "Example",
            "elements": [{"tag": "a", "text": "More", "selector": "a", "boundingBox": {"x": 1, "y": 2}}, "junk"],
            "forms": [{"action": "/s", "inputs": [{"name": "q"}]}],
            "hasModal": True,
        })
        assert context.elements[0].index == 0
        assert context.elements[0].bounding_box.y == 2
        assert len(context.elements) == 1
        assert context.forms[0].fields[0].selector == '[name="q"]'
        assert context.has_modal

    def test_from_bad_payload(self):
        """Anything that is not an object yields an empty snapshot."""
        assert PageContext.from_payload(None).elements == ()

    def test_find_element(self):
        """Elements are found by exact selector."""
        context = PageContext(elements=make_elements(3))
        assert context.find_element("#button-2").index == 2
        assert context.find_element("#missing") is None
