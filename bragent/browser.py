"""
Browser execution ports for Bragent.

The agent loop depends only on BrowserExecutionPort. Two bindings exist:
RelayBrowserPort drives the browser extension through the RelayChannel,
PlaywrightBrowserPort drives a local Chromium through async Playwright.
"""

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from .relay import EXECUTE_ACTION, GET_PAGE_CONTEXT, RelayChannel, RelayNotConnectedError
from .tool_schemas import (
    BrowserActionRequest,
    ClickAction,
    ExtractTextAction,
    GoBackAction,
    GoForwardAction,
    HoverAction,
    NavigateAction,
    PressKeyAction,
    RefreshAction,
    ScreenshotAction,
    ScrollAction,
    SelectAction,
    TypeTextAction,
    WaitAction,
)
from .types import PageContext
from .utils import clean_text, format_selector, truncate_text

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright

    from .config import AgentConfig


logger = logging.getLogger(__name__)


class ActionExecutionError(Exception):
    """The action could not be performed (element not found, unsupported type, ...)."""


class ProtocolError(Exception):
    """The execution surface answered with a malformed result."""


class BrowserExecutionPort(ABC):
    """Capability interface consumed by the agent loop."""

    @abstractmethod
    async def execute_action(self, request: BrowserActionRequest) -> str:
        """Perform one browser action.

        Args:
            request: Typed action

        Returns:
            Human-readable result text

        Raises:
            ActionExecutionError: If the action failed
        """

    @abstractmethod
    async def extract_page_context(self) -> PageContext:
        """Snapshot the current page.

        Returns a minimal context instead of raising when extraction fails.
        """

    async def close(self) -> None:
        pass


# =============================================================================
# Relay binding
# =============================================================================

class RelayBrowserPort(BrowserExecutionPort):
    """Drives the browser extension through the relay."""

    def __init__(
        self,
        relay: RelayChannel,
        action_timeout: float = 30.0,
        context_timeout: float = 15.0,
    ):
        self.relay = relay
        self.action_timeout = action_timeout
        self.context_timeout = context_timeout
        self._last_url = ""
        self._last_title = ""

    async def execute_action(self, request: BrowserActionRequest) -> str:
        timeout = self.action_timeout
        if isinstance(request, WaitAction):
            # The peer sleeps for the whole wait before answering
            timeout += request.amount / 1000
        result = await self.relay.send(
            EXECUTE_ACTION,
            {"action": request.to_wire()},
            timeout=timeout,
        )
        if not isinstance(result, dict) or "success" not in result:
            raise ProtocolError(f"Malformed result for {request.type}: {result!r}")

        if not result["success"]:
            raise ActionExecutionError(result.get("error") or f"Action {request.type} failed")

        if isinstance(request, ExtractTextAction) and result.get("text") is not None:
            return truncate_text(str(result["text"]), request.max_length)
        return str(result.get("message") or "OK")

    async def extract_page_context(self) -> PageContext:
        try:
            result = await self.relay.send(GET_PAGE_CONTEXT, timeout=self.context_timeout)
        except RelayNotConnectedError:
            raise
        except Exception as e:
            logger.warning("Page context extraction failed: %s", e)
            return PageContext.minimal(self._last_url, self._last_title)

        if not isinstance(result, dict):
            logger.warning("Malformed page context result: %r", result)
            return PageContext.minimal(self._last_url, self._last_title)

        if result.get("success") is False:
            logger.warning("Extension could not read the page: %s", result.get("error"))
            return PageContext.minimal(
                result.get("url") or self._last_url,
                result.get("title") or self._last_title,
            )

        try:
            context = PageContext.from_payload(result)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Malformed page context result: %s", e)
            return PageContext.minimal(self._last_url, self._last_title)

        self._last_url, self._last_title = context.url, context.title
        return context


# =============================================================================
# Local Playwright binding
# =============================================================================

ELEMENTS_SCRIPT = """
() => {
    if (!document.body) return {elements: [], hasModal: false};
    const modal = Array.from(document.querySelectorAll(
        '[role="dialog"], [aria-modal="true"], dialog[open], .modal.show'
    )).find((el) => {
        const r = el.getBoundingClientRect();
        return r.width > 0 && r.height > 0;
    });
    const root = modal || document.body;

    const getSelector = (el) => {
        if (el.id) return '#' + CSS.escape(el.id);
        const testId = el.getAttribute('data-testid');
        if (testId) return '[data-testid="' + testId + '"]';
        const name = el.getAttribute('name');
        if (name) return el.tagName.toLowerCase() + '[name="' + name + '"]';
        const path = [];
        let current = el;
        while (current && current !== document.body && path.length < 4) {
            let sel = current.tagName.toLowerCase();
            const parent = current.parentElement;
            if (parent) {
                const siblings = Array.from(parent.children).filter((c) => c.tagName === current.tagName);
                if (siblings.length > 1) sel += ':nth-of-type(' + (siblings.indexOf(current) + 1) + ')';
            }
            path.unshift(sel);
            current = parent;
        }
        return path.join(' > ');
    };

    const selectors = [
        'button', 'a[href]', 'input', 'textarea', 'select',
        '[role="button"]', '[role="link"]', '[role="menuitem"]', '[role="tab"]', '[onclick]'
    ];
    const seen = new Set();
    const elements = [];
    for (const el of root.querySelectorAll(selectors.join(','))) {
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        if (rect.width === 0 || rect.height === 0 || style.display === 'none' || style.visibility === 'hidden') continue;
        const selector = getSelector(el);
        if (seen.has(selector)) continue;
        seen.add(selector);
        const attributes = {};
        for (const attr of ['type', 'name', 'placeholder', 'href', 'aria-label', 'title', 'role']) {
            const value = el.getAttribute(attr);
            if (value) attributes[attr] = value.slice(0, 100);
        }
        let text = (el.innerText || el.textContent || '').trim().slice(0, 100);
        if (!text) text = el.getAttribute('aria-label') || el.getAttribute('title') || '';
        if (!text && el.getAttribute('placeholder')) text = '[' + el.getAttribute('placeholder') + ']';
        elements.push({
            index: elements.length,
            tag: el.tagName.toLowerCase(),
            text: text,
            selector: selector,
            attributes: attributes,
            boundingBox: {x: Math.round(rect.x), y: Math.round(rect.y), width: Math.round(rect.width), height: Math.round(rect.height)},
        });
        if (elements.length >= 100) break;
    }
    return {elements: elements, hasModal: Boolean(modal)};
}
"""

FORMS_SCRIPT = """
() => Array.from(document.querySelectorAll('form')).slice(0, 10).map((form, index) => ({
    index: index,
    action: form.action,
    method: form.method,
    fields: Array.from(form.querySelectorAll('input, textarea, select')).map((field, i) => ({
        name: field.name || field.id || 'field-' + i,
        type: field.type || 'text',
        placeholder: field.placeholder || '',
        required: field.required,
        selector: field.id ? '#' + CSS.escape(field.id)
            : (field.name ? field.tagName.toLowerCase() + '[name="' + field.name + '"]' : ''),
    })),
}))
"""

TEXT_SCRIPT = """
() => {
    if (!document.body) return '';
    const clone = document.body.cloneNode(true);
    clone.querySelectorAll('script, style, noscript, svg').forEach((el) => el.remove());
    return (clone.innerText || clone.textContent || '').replace(/\\s+/g, ' ').trim().slice(0, 5000);
}
"""


class PlaywrightBrowserPort(BrowserExecutionPort):
    """Drives a local Chromium through async Playwright.

    The browser is only launched when the first action or snapshot needs it.

    Usage:
        port = PlaywrightBrowserPort(config)
        await port.execute_action(NavigateAction(url="https://example.com"))
        await port.close()
    """

    def __init__(self, config: "AgentConfig", element_timeout_ms: int = 10000):
        """Initialize the port.

        Args:
            config: Agent configuration (headless, slow_mo, user data dir, ...)
            element_timeout_ms: How long to wait for a target element
        """
        self.config = config
        self.element_timeout_ms = element_timeout_ms
        self._playwright: Optional["Playwright"] = None
        self._browser: Optional["Browser"] = None
        self._context: Optional["BrowserContext"] = None
        self._page: Optional["Page"] = None
        self._closed = False

    async def _ensure_page(self) -> "Page":
        if self._closed:
            raise ActionExecutionError("Browser has been closed")
        if self._page is not None:
            return self._page

        from playwright.async_api import async_playwright

        logger.debug("Launching Chromium (first use)")
        self._playwright = await async_playwright().start()
        viewport = {"width": 1280, "height": 800}

        if self.config.user_data_dir:
            # Persistent profile keeps logins between runs
            self._context = await self._playwright.chromium.launch_persistent_context(
                self.config.user_data_dir,
                headless=self.config.headless,
                slow_mo=self.config.slow_mo,
                viewport=viewport,
            )
        else:
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                slow_mo=self.config.slow_mo,
            )
            self._context = await self._browser.new_context(viewport=viewport)

        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()
        logger.debug("Chromium ready")
        return self._page

    async def execute_action(self, request: BrowserActionRequest) -> str:
        from playwright.async_api import Error as PlaywrightError

        page = await self._ensure_page()
        try:
            return await self._perform(page, request)
        except PlaywrightError as e:
            raise ActionExecutionError(f"Action failed: {e.message}") from e

    async def _perform(self, page: "Page", request: BrowserActionRequest) -> str:
        timeout = self.element_timeout_ms

        if isinstance(request, NavigateAction):
            await page.goto(request.url, wait_until="domcontentloaded", timeout=30000)
            await page.wait_for_timeout(500)
            return f"Navigated to {request.url}"

        if isinstance(request, ClickAction):
            selector = format_selector(request.selector)
            await page.locator(selector).first.click(timeout=timeout)
            await page.wait_for_timeout(500)
            return f"Clicked on element: {request.selector}"

        if isinstance(request, TypeTextAction):
            locator = page.locator(format_selector(request.selector)).first
            await locator.fill("", timeout=timeout)
            await locator.type(request.text, delay=30)
            return f"Typed into {request.selector}"

        if isinstance(request, HoverAction):
            await page.locator(format_selector(request.selector)).first.hover(timeout=timeout)
            return f"Hovered over element: {request.selector}"

        if isinstance(request, SelectAction):
            await page.locator(format_selector(request.selector)).first.select_option(
                request.value, timeout=timeout
            )
            return f'Selected "{request.value}" in {request.selector}'

        if isinstance(request, ScrollAction):
            delta = request.amount if request.direction == "down" else -request.amount
            await page.evaluate("(dy) => window.scrollBy(0, dy)", delta)
            return f"Scrolled {request.direction} by {request.amount}px"

        if isinstance(request, WaitAction):
            await page.wait_for_timeout(request.amount)
            return f"Waited for {request.amount}ms"

        if isinstance(request, PressKeyAction):
            await page.keyboard.press(request.key)
            if request.key in ("Enter", "Return"):
                try:
                    await page.wait_for_load_state("domcontentloaded", timeout=5000)
                except Exception:
                    logger.debug("No navigation after %s", request.key)
            return f"Pressed key: {request.key}"

        if isinstance(request, GoBackAction):
            await page.go_back(wait_until="domcontentloaded")
            return "Navigated back"

        if isinstance(request, GoForwardAction):
            await page.go_forward(wait_until="domcontentloaded")
            return "Navigated forward"

        if isinstance(request, RefreshAction):
            await page.reload(wait_until="domcontentloaded")
            return "Page refreshed"

        if isinstance(request, ExtractTextAction):
            if request.selector:
                text = await page.locator(format_selector(request.selector)).first.inner_text(timeout=timeout)
            else:
                text = await page.evaluate(TEXT_SCRIPT)
            return truncate_text(clean_text(text), request.max_length)

        if isinstance(request, ScreenshotAction):
            directory = Path(self.config.screenshots_dir)
            directory.mkdir(parents=True, exist_ok=True)
            label = f"_{request.label}" if request.label else ""
            path = directory / f"screenshot_{int(time.time() * 1000)}{label}.png"
            await page.screenshot(path=str(path), full_page=False)
            return f"Screenshot saved to {path}"

        raise ActionExecutionError(f"Unsupported action type: {request.type}")

    async def extract_page_context(self) -> PageContext:
        url = self._page.url if self._page is not None else ""
        try:
            page = await self._ensure_page()
            url = page.url
            try:
                await page.wait_for_load_state("domcontentloaded", timeout=5000)
            except Exception:
                logger.debug("Page still loading, extracting anyway")
            title = await page.title()
            scraped: dict[str, Any] = await page.evaluate(ELEMENTS_SCRIPT)
            forms = await page.evaluate(FORMS_SCRIPT)
            text = await page.evaluate(TEXT_SCRIPT)
            return PageContext.from_payload({
                "url": page.url,
                "title": title,
                "elements": scraped.get("elements", []),
                "forms": forms,
                "textContent": text,
                "hasModal": scraped.get("hasModal", False),
            })
        except Exception as e:
            logger.warning("Page context extraction failed: %s", e)
            return PageContext.minimal(url, "Page is loading...")

    async def close(self) -> None:
        """Close browser and cleanup resources.

        Safe to call multiple times.
        """
        if self._closed:
            return
        self._closed = True

        # Close in reverse order
        for resource in (self._context, self._browser):
            if resource is not None:
                try:
                    await resource.close()
                except Exception as e:
                    logger.debug("Error while closing browser: %s", e)
        if self._playwright is not None:
            await self._playwright.stop()

        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    async def __aenter__(self) -> "PlaywrightBrowserPort":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
