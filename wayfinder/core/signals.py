from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from wayfinder.core.contracts import BoundingBox, ObservationFacts

SignalCallback = Callable[[], None]
Unsubscribe = Callable[[], None]


class ElementHandle(Protocol):
    def is_connected(self) -> bool: ...

    def get_attribute(self, name: str) -> str | None: ...

    def bounding_box(self) -> BoundingBox | None: ...

    def is_intersecting(self) -> bool: ...

    def is_hidden_by_style(self) -> bool: ...

    def parent(self) -> Optional["ElementHandle"]: ...


@runtime_checkable
class SignalSource(Protocol):
    def on_geometry_change(self, callback: SignalCallback) -> Unsubscribe: ...

    def on_attribute_change(self, callback: SignalCallback) -> Unsubscribe: ...

    def on_tree_change(self, callback: SignalCallback) -> Unsubscribe: ...


def collect_facts(element: ElementHandle) -> ObservationFacts:
    if not element.is_connected():
        return ObservationFacts(connected=False)

    box = element.bounding_box()
    has_dimensions = box is not None and box.width > 0 and box.height > 0
    return ObservationFacts(
        connected=True,
        intersecting=element.is_intersecting(),
        has_dimensions=has_dimensions,
        disabled=element.get_attribute("disabled") is not None,
        aria_disabled=_is_true(element.get_attribute("aria-disabled")),
        busy=_is_true(element.get_attribute("aria-busy")),
        hidden_by_style=element.is_hidden_by_style(),
        position=box,
    )


def _is_true(value: str | None) -> bool:
    return value is not None and value.strip().lower() == "true"


class ListenerSet:
    """Callback list whose unsubscribe handles are safe to call twice."""

    def __init__(self) -> None:
        self._callbacks: list[SignalCallback] = []

    def add(self, callback: SignalCallback) -> Unsubscribe:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def fire(self) -> None:
        for callback in list(self._callbacks):
            callback()

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)


@dataclass(eq=False)
class HeadlessElement:
    """In-memory element for headless harnesses; it is its own signal source."""

    attributes: dict[str, str] = field(default_factory=dict)
    connected: bool = True
    intersecting: bool = True
    hidden: bool = False
    box: BoundingBox | None = field(default_factory=lambda: BoundingBox(0.0, 0.0, 120.0, 32.0))
    parent_element: Optional["HeadlessElement"] = None
    _geometry: ListenerSet = field(default_factory=ListenerSet, repr=False)
    _attribute: ListenerSet = field(default_factory=ListenerSet, repr=False)
    _tree: ListenerSet = field(default_factory=ListenerSet, repr=False)

    def is_connected(self) -> bool:
        return self.connected

    def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name)

    def bounding_box(self) -> BoundingBox | None:
        return self.box

    def is_intersecting(self) -> bool:
        return self.intersecting

    def is_hidden_by_style(self) -> bool:
        return self.hidden

    def parent(self) -> Optional["HeadlessElement"]:
        return self.parent_element

    def on_geometry_change(self, callback: SignalCallback) -> Unsubscribe:
        return self._geometry.add(callback)

    def on_attribute_change(self, callback: SignalCallback) -> Unsubscribe:
        return self._attribute.add(callback)

    def on_tree_change(self, callback: SignalCallback) -> Unsubscribe:
        return self._tree.add(callback)

    def listener_count(self) -> int:
        return len(self._geometry) + len(self._attribute) + len(self._tree)

    def set_attribute(self, name: str, value: str = "") -> None:
        self.attributes[name] = value
        self._attribute.fire()

    def remove_attribute(self, name: str) -> None:
        if self.attributes.pop(name, None) is not None:
            self._attribute.fire()

    def set_hidden(self, hidden: bool) -> None:
        self.hidden = hidden
        self._attribute.fire()

    def set_geometry(self, box: BoundingBox | None = None, intersecting: bool | None = None) -> None:
        if box is not None:
            self.box = box
        if intersecting is not None:
            self.intersecting = intersecting
        self._geometry.fire()

    def set_connected(self, connected: bool) -> None:
        self.connected = connected
        self._tree.fire()


class FrameScheduler:
    """Coalesces work into at most one run per key per frame interval.

    The queued callback runs once at the end of the frame and reads the latest
    facts at that point, so the final state of a frame is always observed.
    Without a running event loop the callback runs synchronously.
    """

    def __init__(self, frame_interval_ms: int = 16) -> None:
        self._interval = max(0, frame_interval_ms) / 1000.0
        self._pending: dict[Any, tuple[asyncio.TimerHandle, SignalCallback]] = {}

    def request(self, key: Any, callback: SignalCallback) -> None:
        entry = self._pending.get(key)
        if entry is not None:
            self._pending[key] = (entry[0], callback)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            callback()
            return

        handle = loop.call_later(self._interval, self._run, key)
        self._pending[key] = (handle, callback)

    def is_pending(self, key: Any) -> bool:
        return key in self._pending

    def cancel(self, key: Any) -> None:
        entry = self._pending.pop(key, None)
        if entry is not None:
            entry[0].cancel()

    def flush(self) -> None:
        for key in list(self._pending.keys()):
            entry = self._pending.pop(key, None)
            if entry is None:
                continue
            entry[0].cancel()
            entry[1]()

    def close(self) -> None:
        for handle, _ in self._pending.values():
            handle.cancel()
        self._pending.clear()

    def _run(self, key: Any) -> None:
        entry = self._pending.pop(key, None)
        if entry is not None:
            entry[1]()
