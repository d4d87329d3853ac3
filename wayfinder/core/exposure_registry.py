from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from collections import defaultdict, deque
from typing import Any, Callable

from wayfinder.core.classifier import classification_metadata
from wayfinder.core.config import ExposureConfig
from wayfinder.core.contracts import Classification, ExposureState, ObservationFacts, StateChangeEvent, ToolState
from wayfinder.core.signals import FrameScheduler
from wayfinder.core.tool_observer import ToolObserver

logger = logging.getLogger("wayfinder.exposure")

StateSubscriber = Callable[[StateChangeEvent], None]


def _valid_id(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


class ExposureRegistry:
    """Authoritative tool_id -> ToolState map with pub/sub and waiters.

    One instance is created per process and injected into every consumer.
    Caller errors are logged and degrade to no-ops; nothing here raises into
    the caller's control flow.
    """

    def __init__(
        self,
        config: ExposureConfig | None = None,
        scheduler: FrameScheduler | None = None,
    ) -> None:
        self._config = config or ExposureConfig()
        self._scheduler = scheduler or FrameScheduler(self._config.frame_interval_ms)
        self._states: dict[str, ToolState] = {}
        self._observers: dict[str, ToolObserver] = {}
        self._global_subscribers: dict[int, StateSubscriber] = {}
        self._tool_subscribers: dict[str, dict[int, StateSubscriber]] = defaultdict(dict)
        self._subscription_ids = itertools.count(1)
        # Per-tool FIFO of pending updates; a tool in _dispatching is being drained.
        self._pending: dict[str, deque[tuple[ExposureState, dict[str, Any] | None]]] = defaultdict(deque)
        self._dispatching: set[str] = set()
        self._lock = threading.RLock()

    @property
    def config(self) -> ExposureConfig:
        return self._config

    @property
    def scheduler(self) -> FrameScheduler:
        return self._scheduler

    def register_tool(self, tool_id: str, element: Any = None, metadata: dict[str, Any] | None = None) -> None:
        if not _valid_id(tool_id):
            logger.warning("Ignoring registration with malformed tool id: %r", tool_id)
            return

        with self._lock:
            replacing = tool_id in self._states
            self._stop_observer(tool_id)
        if replacing:
            logger.warning(
                "Tool %r is already registered; replacing registration. "
                "This might indicate duplicate tool ids in the application.",
                tool_id,
            )
            # Subscribers see the drop before the new registration reports.
            self.update_tool_state(tool_id, ExposureState.NOT_PRESENT, {"reason": "re-registered"})

        with self._lock:
            self._states[tool_id] = ToolState(
                tool_id=tool_id,
                state=ExposureState.NOT_PRESENT,
                last_update=time.time(),
                element=element,
                metadata=dict(metadata or {}),
            )

        if element is not None:
            self._start_observer(tool_id, element, ExposureState.NOT_PRESENT)

    def unregister_tool(self, tool_id: str) -> None:
        if not _valid_id(tool_id):
            logger.warning("Cannot unregister malformed tool id: %r", tool_id)
            return
        with self._lock:
            if tool_id not in self._states:
                logger.warning("Cannot unregister unknown tool: %r", tool_id)
                return
            self._stop_observer(tool_id)
            del self._states[tool_id]
            self._pending.pop(tool_id, None)

    def attach_element(self, tool_id: str, element: Any) -> None:
        if not _valid_id(tool_id):
            logger.warning("Cannot attach element to malformed tool id: %r", tool_id)
            return
        with self._lock:
            current = self._states.get(tool_id)
            if current is None:
                logger.warning("Cannot attach element to unregistered tool: %r", tool_id)
                return
            self._stop_observer(tool_id)
            current.element = element
            initial_state = current.state

        if element is None:
            self.update_tool_state(tool_id, ExposureState.NOT_PRESENT, {"reason": "element detached"})
            return
        self._start_observer(tool_id, element, initial_state)

    def detach_element(self, tool_id: str) -> None:
        self.attach_element(tool_id, None)

    def refresh(self, tool_id: str) -> ToolState | None:
        if not _valid_id(tool_id):
            logger.warning("Cannot refresh malformed tool id: %r", tool_id)
            return None
        observer = self._observers.get(tool_id)
        if observer is not None:
            observer.evaluate()
        return self.get_tool_state(tool_id)

    def get_tool_state(self, tool_id: str) -> ToolState | None:
        if not _valid_id(tool_id):
            logger.warning("Cannot look up malformed tool id: %r", tool_id)
            return None
        with self._lock:
            current = self._states.get(tool_id)
            return current.snapshot() if current else None

    def get_all_tools(self) -> list[ToolState]:
        with self._lock:
            return [state.snapshot() for state in self._states.values()]

    def subscribe(self, callback: StateSubscriber, tool_id: str | None = None) -> Callable[[], None]:
        if tool_id is not None and not _valid_id(tool_id):
            logger.warning("Cannot subscribe to malformed tool id: %r", tool_id)
            return lambda: None
        subscription_id = next(self._subscription_ids)
        with self._lock:
            if tool_id is None:
                self._global_subscribers[subscription_id] = callback
            else:
                self._tool_subscribers[tool_id][subscription_id] = callback

        def unsubscribe() -> None:
            with self._lock:
                if tool_id is None:
                    self._global_subscribers.pop(subscription_id, None)
                    return
                scoped = self._tool_subscribers.get(tool_id)
                if scoped is None:
                    return
                scoped.pop(subscription_id, None)
                if not scoped:
                    self._tool_subscribers.pop(tool_id, None)

        return unsubscribe

    def subscriber_count(self, tool_id: str | None = None) -> int:
        with self._lock:
            if tool_id is None:
                return len(self._global_subscribers)
            if not _valid_id(tool_id):
                return 0
            return len(self._tool_subscribers.get(tool_id, {}))

    async def wait_for_state(
        self,
        tool_id: str,
        target_state: ExposureState,
        timeout_ms: int | None = None,
    ) -> bool:
        """Resolve True once the tool is at least ``target_state``.

        Already-satisfied conditions resolve without suspending. A timeout
        resolves False; the subscription is released on every path.
        """
        if not _valid_id(tool_id):
            logger.warning("Cannot wait on malformed tool id: %r", tool_id)
            return False
        if timeout_ms is None:
            timeout_ms = self._config.default_wait_timeout_ms

        with self._lock:
            current = self._states.get(tool_id)
            if current is not None and current.state >= target_state:
                return True

        if current is None:
            logger.warning("Waiting on unregistered tool %r; it may register later", tool_id)
        if timeout_ms <= 0:
            return False

        loop = asyncio.get_running_loop()
        reached: asyncio.Future[bool] = loop.create_future()

        def on_change(event: StateChangeEvent) -> None:
            if event.new_state >= target_state and not reached.done():
                reached.set_result(True)

        unsubscribe = self.subscribe(on_change, tool_id)
        try:
            return await asyncio.wait_for(reached, timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            return False
        finally:
            unsubscribe()

    def update_tool_state(
        self,
        tool_id: str,
        new_state: ExposureState,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not _valid_id(tool_id):
            logger.warning("Ignoring update for malformed tool id: %r", tool_id)
            return
        try:
            new_state = ExposureState(new_state)
        except ValueError:
            logger.warning("Ignoring invalid exposure state %r for tool %r", new_state, tool_id)
            return

        with self._lock:
            if tool_id not in self._states:
                logger.warning("Cannot update state for unregistered tool: %r", tool_id)
                return
            queue = self._pending[tool_id]
            queue.append((new_state, metadata))
            if tool_id in self._dispatching:
                # Delivered in order by the call already draining this tool.
                return
            self._dispatching.add(tool_id)

        try:
            while True:
                with self._lock:
                    queue = self._pending.get(tool_id)
                    if not queue:
                        self._pending.pop(tool_id, None)
                        self._dispatching.discard(tool_id)
                        return
                    state, meta = queue.popleft()
                    event = self._apply(tool_id, state, meta)
                if event is not None:
                    self._notify(event)
        except BaseException:
            with self._lock:
                self._dispatching.discard(tool_id)
            raise

    def destroy(self) -> None:
        with self._lock:
            for tool_id in list(self._observers.keys()):
                self._stop_observer(tool_id)
            self._scheduler.close()
            self._states.clear()
            self._pending.clear()
            self._global_subscribers.clear()
            self._tool_subscribers.clear()

    def _apply(self, tool_id: str, new_state: ExposureState, metadata: dict[str, Any] | None) -> StateChangeEvent | None:
        current = self._states.get(tool_id)
        if current is None or current.state == new_state:
            return None

        event = StateChangeEvent(
            tool_id=tool_id,
            old_state=current.state,
            new_state=new_state,
            timestamp=time.time(),
            metadata=dict(metadata or {}),
        )
        current.state = new_state
        current.last_update = event.timestamp
        observer = self._observers.get(tool_id)
        if observer is not None:
            observer.sync(new_state)
        if metadata:
            current.metadata = {**current.metadata, **metadata}
        return event

    def _notify(self, event: StateChangeEvent) -> None:
        with self._lock:
            scoped = list(self._tool_subscribers.get(event.tool_id, {}).values())
            global_ = list(self._global_subscribers.values())

        for callback in scoped:
            try:
                callback(event)
            except Exception:
                logger.exception("Tool-scoped subscriber failed for %r", event.tool_id)

        for callback in global_:
            try:
                callback(event)
            except Exception:
                logger.exception("Global exposure subscriber failed for %r", event.tool_id)

    def _start_observer(self, tool_id: str, element: Any, initial_state: ExposureState) -> None:
        observer = ToolObserver(
            tool_id=tool_id,
            element=element,
            on_change=self._on_classified,
            scheduler=self._scheduler,
            initial_state=initial_state,
        )
        with self._lock:
            self._observers[tool_id] = observer
        observer.start()

    def _stop_observer(self, tool_id: str) -> None:
        observer = self._observers.pop(tool_id, None)
        if observer is not None:
            observer.stop()

    def _on_classified(self, observer: ToolObserver, classification: Classification, facts: ObservationFacts) -> None:
        with self._lock:
            if self._observers.get(observer.tool_id) is not observer:
                return
        self.update_tool_state(
            observer.tool_id,
            classification.state,
            classification_metadata(classification, facts),
        )
