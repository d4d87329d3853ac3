from __future__ import annotations

import asyncio
import itertools
import logging
import re
import time
from typing import Any, Callable

from wayfinder.core.config import DEFAULT_CONTEXT_ID, NavigationConfig
from wayfinder.core.contracts import ContextChange, ContextDetection, DetectionStrategy, NavigationContext
from wayfinder.core.navigation_graph import NavigationGraph

logger = logging.getLogger("wayfinder.context")

ContextSubscriber = Callable[[ContextChange], None]

_PATH_PREFIXES = ("src/pages/", "src/components/", "pages/", "components/")
_EXTENSION = re.compile(r"\.(tsx?|jsx?)$")
_COMPONENT_SUFFIX = re.compile(r"(Page|Tab|Modal|View)$")

DETECTION_THRESHOLD = 0.5


class ContextTracker:
    """Push-based holder of the current navigation context."""

    def __init__(
        self,
        graph: NavigationGraph | None = None,
        config: NavigationConfig | None = None,
        initial_context: str = DEFAULT_CONTEXT_ID,
        context_attribute: str = "data-nav-context",
    ) -> None:
        self._graph = graph
        self._config = config or NavigationConfig()
        self._current = initial_context
        self._context_attribute = context_attribute
        self._subscribers: dict[int, ContextSubscriber] = {}
        self._subscription_ids = itertools.count(1)
        self._component_contexts: dict[str, str] = {}

    @property
    def current_context(self) -> str:
        return self._current

    def get_current_context(self) -> str:
        return self._current

    def set_current_context(self, context_id: str) -> bool:
        if not isinstance(context_id, str) or not context_id.strip():
            logger.warning("Cannot set malformed context id: %r", context_id)
            return False
        if self._graph is not None and not self._graph.has_context(context_id):
            logger.warning("Cannot set current context: %r does not exist", context_id)
            return False
        if context_id == self._current:
            return True

        change = ContextChange(old_context=self._current, new_context=context_id, timestamp=time.time())
        self._current = context_id
        logger.debug("context changed %s -> %s", change.old_context, change.new_context)

        for callback in list(self._subscribers.values()):
            try:
                callback(change)
            except Exception:
                logger.exception("Context subscriber failed for change to %r", context_id)
        return True

    def subscribe(self, callback: ContextSubscriber) -> Callable[[], None]:
        subscription_id = next(self._subscription_ids)
        self._subscribers[subscription_id] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(subscription_id, None)

        return unsubscribe

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def wait_for_context_change(self, target_context: str, timeout_ms: int | None = None) -> bool:
        if timeout_ms is None:
            timeout_ms = self._config.context_wait_timeout_ms
        if self._current == target_context:
            return True
        if timeout_ms <= 0:
            return False

        loop = asyncio.get_running_loop()
        arrived: asyncio.Future[bool] = loop.create_future()

        def on_change(change: ContextChange) -> None:
            if change.new_context == target_context and not arrived.done():
                arrived.set_result(True)

        unsubscribe = self.subscribe(on_change)
        try:
            return await asyncio.wait_for(arrived, timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            return False
        finally:
            unsubscribe()

    def map_component(self, component_name: str, context_id: str) -> None:
        self._component_contexts[component_name] = context_id

    def detect_tool_context(
        self,
        tool_id: str,
        file_path: str | None = None,
        component_name: str | None = None,
        element: Any = None,
    ) -> ContextDetection:
        """Infer which context a tool lives in.

        Strategies run in order: file-path convention, declared component
        mapping, then the nearest ``data-nav-context`` ancestor. Falls back to
        the root context with low confidence.
        """
        if file_path:
            detection = self._detect_by_convention(file_path)
            if detection is not None:
                return detection

        if component_name and component_name in self._component_contexts:
            return ContextDetection(
                strategy=DetectionStrategy.COMPONENT_TREE,
                context_id=self._component_contexts[component_name],
                confidence=1.0,
                metadata={"component_name": component_name},
            )

        if element is not None:
            detection = self._detect_by_dom(element)
            if detection is not None:
                return detection

        logger.debug("no context detected for tool %s", tool_id)
        return ContextDetection(
            strategy=DetectionStrategy.MANUAL,
            context_id=DEFAULT_CONTEXT_ID,
            confidence=0.3,
            metadata={"reason": "auto-detection failed, defaulting to global"},
        )

    def register_tool(
        self,
        tool_id: str,
        context_id: str | None = None,
        file_path: str | None = None,
        component_name: str | None = None,
        element: Any = None,
    ) -> str | None:
        target = context_id or self._current
        if context_id is None and (file_path or component_name or element is not None):
            detection = self.detect_tool_context(tool_id, file_path, component_name, element)
            if detection.confidence > DETECTION_THRESHOLD:
                target = detection.context_id

        if self._graph is None:
            logger.warning("Cannot register tool %r without a navigation graph", tool_id)
            return None
        if not self._graph.register_tool_in_context(tool_id, target):
            return None
        return target

    def get_tool_context(self, tool_id: str) -> str | None:
        if self._graph is None:
            return None
        return self._graph.get_tool_context(tool_id)

    def _detect_by_convention(self, file_path: str) -> ContextDetection | None:
        path = file_path.replace("\\", "/")
        for prefix in _PATH_PREFIXES:
            if path.startswith(prefix):
                path = path[len(prefix) :]
                break
        path = _COMPONENT_SUFFIX.sub("", _EXTENSION.sub("", path))

        parts = [part.lower() for part in path.split("/") if part]
        if not parts:
            return None

        context_id = ".".join(parts)
        if self._graph is not None and not self._graph.has_context(context_id):
            self._create_nested_contexts(parts)

        return ContextDetection(
            strategy=DetectionStrategy.CONVENTION,
            context_id=context_id,
            confidence=0.9,
            metadata={"file_path": file_path, "parts": parts},
        )

    def _detect_by_dom(self, element: Any) -> ContextDetection | None:
        current = element
        while current is not None:
            context_id = current.get_attribute(self._context_attribute)
            if context_id:
                return ContextDetection(
                    strategy=DetectionStrategy.DOM_OBSERVATION,
                    context_id=context_id,
                    confidence=0.8,
                    metadata={"attribute": self._context_attribute},
                )
            current = current.parent()
        return None

    def _create_nested_contexts(self, parts: list[str]) -> None:
        if self._graph is None:
            return
        parent_id: str | None = None
        for index, part in enumerate(parts):
            context_id = ".".join(parts[: index + 1])
            if not self._graph.has_context(context_id):
                self._graph.add_context(
                    NavigationContext(
                        id=context_id,
                        name=part[:1].upper() + part[1:],
                        parent=parent_id,
                        metadata={"auto_created": True},
                    )
                )
            parent_id = context_id
