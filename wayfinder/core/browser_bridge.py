from __future__ import annotations

import json
import logging
from typing import Any, Optional

from playwright.async_api import Browser, BrowserContext, Locator, Page, Playwright, async_playwright

from wayfinder.core.config import BrowserConfig
from wayfinder.core.context_tracker import ContextTracker
from wayfinder.core.contracts import BoundingBox
from wayfinder.core.exposure_registry import ExposureRegistry
from wayfinder.core.signals import ListenerSet, SignalCallback, Unsubscribe

logger = logging.getLogger("wayfinder.browser")

BINDING_NAME = "__wayfinderSignal"

_FACTS_SCRIPT = """
(el, contextAttr) => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    const vw = window.innerWidth || document.documentElement.clientWidth;
    const vh = window.innerHeight || document.documentElement.clientHeight;
    const holder = el.closest(`[${contextAttr}]`);
    return {
        connected: el.isConnected,
        x: rect.x,
        y: rect.y,
        width: rect.width,
        height: rect.height,
        intersecting: rect.bottom > 0 && rect.right > 0 && rect.top < vh && rect.left < vw,
        hidden: style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0',
        attributes: {
            'disabled': el.hasAttribute('disabled') ? '' : null,
            'aria-disabled': el.getAttribute('aria-disabled'),
            'aria-busy': el.getAttribute('aria-busy'),
            [contextAttr]: holder ? holder.getAttribute(contextAttr) : null,
        },
    };
}
"""

_OBSERVER_SCRIPT = """
({binding, toolAttr, contextAttr}) => {
    if (window.__wayfinderInstalled) return false;
    window.__wayfinderInstalled = true;
    const selector = `[${toolAttr}]`;
    const report = (kind, value) => {
        if (value && typeof window[binding] === 'function') window[binding](kind, value);
    };
    const intersection = new IntersectionObserver((entries) => {
        for (const entry of entries) report('geometry', entry.target.getAttribute(toolAttr));
    }, {threshold: [0, 0.1]});
    const toolsWithin = (node) => {
        if (node.nodeType !== 1) return [];
        const found = node.matches(selector) ? [node] : [];
        return found.concat(Array.from(node.querySelectorAll(selector)));
    };
    document.querySelectorAll(selector).forEach((el) => intersection.observe(el));
    let lastContext = null;
    const reportContext = () => {
        const holders = document.querySelectorAll(`[${contextAttr}]`);
        const value = holders.length ? holders[holders.length - 1].getAttribute(contextAttr) : null;
        if (value !== lastContext) {
            lastContext = value;
            report('context', value);
        }
    };
    const mutations = new MutationObserver((records) => {
        for (const record of records) {
            if (record.type === 'attributes') {
                const id = record.target.getAttribute && record.target.getAttribute(toolAttr);
                report('attribute', id);
                continue;
            }
            for (const node of record.addedNodes) {
                for (const el of toolsWithin(node)) {
                    intersection.observe(el);
                    report('tree', el.getAttribute(toolAttr));
                }
            }
            for (const node of record.removedNodes) {
                for (const el of toolsWithin(node)) {
                    intersection.unobserve(el);
                    report('tree', el.getAttribute(toolAttr));
                }
            }
        }
        reportContext();
    });
    mutations.observe(document.documentElement, {
        subtree: true,
        childList: true,
        attributes: true,
        attributeFilter: ['disabled', 'aria-disabled', 'aria-busy', 'style', 'class', 'hidden', contextAttr],
    });
    const reportGeometry = () => document.querySelectorAll(selector).forEach(
        (el) => report('geometry', el.getAttribute(toolAttr)));
    window.addEventListener('scroll', reportGeometry, {passive: true});
    window.addEventListener('resize', reportGeometry);
    reportContext();
    return true;
}
"""


def tool_selector(tool_id: str, tool_attribute: str = "data-tool-id") -> str:
    return f"[{tool_attribute}={json.dumps(tool_id)}]"


class PlaywrightElement:
    """Element handle over a Playwright locator with a cached fact snapshot.

    Reads are synchronous against the snapshot; ``refresh()`` re-reads the
    page. The context attribute resolves to the closest ancestor carrying it,
    so ``parent()`` is not needed for context detection.
    """

    def __init__(self, tool_id: str, locator: Locator, context_attribute: str = "data-nav-context") -> None:
        self._tool_id = tool_id
        self._locator = locator
        self._context_attribute = context_attribute
        self._snapshot: dict[str, Any] = {"connected": False}
        self._geometry = ListenerSet()
        self._attribute = ListenerSet()
        self._tree = ListenerSet()

    @property
    def tool_id(self) -> str:
        return self._tool_id

    @property
    def locator(self) -> Locator:
        return self._locator

    async def refresh(self) -> dict[str, Any]:
        if await self._locator.count() == 0:
            self._snapshot = {"connected": False}
        else:
            self._snapshot = await self._locator.first.evaluate(_FACTS_SCRIPT, self._context_attribute)
        return self._snapshot

    def is_connected(self) -> bool:
        return bool(self._snapshot.get("connected"))

    def get_attribute(self, name: str) -> str | None:
        return self._snapshot.get("attributes", {}).get(name)

    def bounding_box(self) -> BoundingBox | None:
        if "width" not in self._snapshot:
            return None
        return BoundingBox(
            x=float(self._snapshot.get("x", 0.0)),
            y=float(self._snapshot.get("y", 0.0)),
            width=float(self._snapshot["width"]),
            height=float(self._snapshot.get("height", 0.0)),
        )

    def is_intersecting(self) -> bool:
        return bool(self._snapshot.get("intersecting"))

    def is_hidden_by_style(self) -> bool:
        return bool(self._snapshot.get("hidden"))

    def parent(self) -> Optional["PlaywrightElement"]:
        return None

    def on_geometry_change(self, callback: SignalCallback) -> Unsubscribe:
        return self._geometry.add(callback)

    def on_attribute_change(self, callback: SignalCallback) -> Unsubscribe:
        return self._attribute.add(callback)

    def on_tree_change(self, callback: SignalCallback) -> Unsubscribe:
        return self._tree.add(callback)

    def dispatch(self, kind: str) -> None:
        listeners = {"geometry": self._geometry, "attribute": self._attribute, "tree": self._tree}.get(kind)
        if listeners is None:
            logger.debug("ignoring unknown signal kind %r for %s", kind, self._tool_id)
            return
        listeners.fire()


class PlaywrightSignalHub:
    """Routes page-side observer reports to the matching PlaywrightElement."""

    def __init__(self, config: BrowserConfig | None = None, tracker: ContextTracker | None = None) -> None:
        self._config = config or BrowserConfig()
        self._tracker = tracker
        self._page: Page | None = None
        self._elements: dict[str, PlaywrightElement] = {}

    @property
    def page(self) -> Page | None:
        return self._page

    async def attach(self, page: Page) -> None:
        self._page = page
        await page.expose_binding(BINDING_NAME, self._on_binding)
        # A new document drops the page-side observers.
        page.on("load", self._on_load)
        await self.install()

    async def install(self) -> bool:
        if self._page is None:
            raise RuntimeError("Signal hub is not attached to a page")
        installed = await self._page.evaluate(
            _OBSERVER_SCRIPT,
            {
                "binding": BINDING_NAME,
                "toolAttr": self._config.tool_attribute,
                "contextAttr": self._config.context_attribute,
            },
        )
        return bool(installed)

    def element_for(self, tool_id: str) -> PlaywrightElement:
        if self._page is None:
            raise RuntimeError("Signal hub is not attached to a page")
        element = self._elements.get(tool_id)
        if element is None:
            locator = self._page.locator(tool_selector(tool_id, self._config.tool_attribute))
            element = PlaywrightElement(tool_id, locator, self._config.context_attribute)
            self._elements[tool_id] = element
        return element

    def known_tools(self) -> list[str]:
        return list(self._elements.keys())

    async def handle_signal(self, kind: str, value: str) -> None:
        if kind == "context":
            if self._tracker is not None:
                self._tracker.set_current_context(value)
            return

        element = self._elements.get(value)
        if element is None:
            logger.debug("signal %s for untracked tool %s", kind, value)
            return
        await element.refresh()
        element.dispatch(kind)

    async def _on_binding(self, source: Any, kind: str, value: str) -> None:
        await self.handle_signal(kind, value)

    async def _on_load(self, page: Page) -> None:
        await self.install()


async def discover_tools(
    page: Page,
    registry: ExposureRegistry,
    hub: PlaywrightSignalHub,
    tracker: ContextTracker | None = None,
    config: BrowserConfig | None = None,
) -> list[str]:
    config = config or BrowserConfig()
    attribute = config.tool_attribute
    found = await page.eval_on_selector_all(
        f"[{attribute}]",
        f"(nodes) => nodes.map((node) => node.getAttribute('{attribute}'))",
    )
    tool_ids = [tool_id for tool_id in dict.fromkeys(found) if tool_id]

    for tool_id in tool_ids:
        element = hub.element_for(tool_id)
        await element.refresh()
        known = registry.get_tool_state(tool_id)
        if known is not None:
            # Known tools are reclassified in place; only real changes emit.
            if known.element is None:
                registry.attach_element(tool_id, element)
            else:
                registry.refresh(tool_id)
            continue
        registry.register_tool(tool_id, element, {"source": "dom"})
        if tracker is not None:
            tracker.register_tool(tool_id, element=element)

    logger.info("discovered %d tools", len(tool_ids))
    return tool_ids


class PlaywrightToolInvoker:
    """Executes a tool by acting on its element: fill when a value is given, otherwise click."""

    def __init__(self, page: Page, config: BrowserConfig | None = None) -> None:
        self._page = page
        self._config = config or BrowserConfig()

    async def invoke(self, tool_id: str, parameters: dict[str, Any]) -> None:
        locator = self._page.locator(tool_selector(tool_id, self._config.tool_attribute)).first
        if "value" in parameters:
            await locator.fill(str(parameters["value"]), timeout=self._config.default_timeout_ms)
            return
        await locator.click(timeout=self._config.default_timeout_ms)


class BrowserSession:
    """Owns the Playwright browser backing a runtime."""

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self._config = config or BrowserConfig()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started")
        return self._page

    async def start(self) -> Page:
        if self._page is not None:
            return self._page
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self._config.headless)
        self._context = await self._browser.new_context(
            viewport={"width": self._config.viewport_width, "height": self._config.viewport_height},
        )
        self._context.set_default_timeout(self._config.default_timeout_ms)
        self._page = await self._context.new_page()
        await self._page.goto(self._config.start_url, wait_until="domcontentloaded")
        return self._page

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._page = None
