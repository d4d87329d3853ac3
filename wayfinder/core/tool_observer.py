from __future__ import annotations

import logging
from typing import Any, Callable

from wayfinder.core.classifier import classify
from wayfinder.core.contracts import Classification, ExposureState, ObservationFacts
from wayfinder.core.signals import FrameScheduler, SignalSource, Unsubscribe, collect_facts

logger = logging.getLogger("wayfinder.exposure")

ClassificationHandler = Callable[["ToolObserver", Classification, ObservationFacts], None]


class ToolObserver:
    """Bridges one tool's element signals to delta-only state classifications."""

    def __init__(
        self,
        tool_id: str,
        element: Any,
        on_change: ClassificationHandler,
        scheduler: FrameScheduler,
        initial_state: ExposureState = ExposureState.NOT_PRESENT,
    ) -> None:
        self._tool_id = tool_id
        self._element = element
        self._on_change = on_change
        self._scheduler = scheduler
        self._last_state = initial_state
        self._unsubscribers: list[Unsubscribe] = []
        self._active = False

    @property
    def tool_id(self) -> str:
        return self._tool_id

    @property
    def element(self) -> Any:
        return self._element

    @property
    def last_state(self) -> ExposureState:
        return self._last_state

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> Classification:
        self._active = True
        classification = self.evaluate()
        if isinstance(self._element, SignalSource):
            self._unsubscribers = [
                self._element.on_geometry_change(self._on_signal),
                self._element.on_attribute_change(self._on_signal),
                self._element.on_tree_change(self._on_signal),
            ]
        return classification

    def stop(self) -> None:
        self._active = False
        self._scheduler.cancel(self)
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def evaluate(self) -> Classification:
        facts = collect_facts(self._element) if self._element is not None else ObservationFacts(connected=False)
        classification = classify(facts)
        logger.debug("classified %s as %s (%s)", self._tool_id, classification.state.name, classification.reason)
        if classification.state != self._last_state:
            self._last_state = classification.state
            self._on_change(self, classification, facts)
        return classification

    def sync(self, state: ExposureState) -> None:
        """Adopt a state recorded elsewhere so the next delta is measured from it."""
        self._last_state = state

    def _on_signal(self) -> None:
        if not self._active:
            return
        self._scheduler.request(self, self._on_frame)

    def _on_frame(self) -> None:
        if not self._active:
            return
        try:
            self.evaluate()
        except Exception:
            logger.exception("classification failed for tool %s", self._tool_id)
