"""Wayfinder exposure tracking and navigation modules."""

from wayfinder.core.classifier import classify
from wayfinder.core.config import (
    DEFAULT_CONTEXT_ID,
    BrowserConfig,
    ExposureConfig,
    NavigationConfig,
    WayfinderConfig,
)
from wayfinder.core.context_tracker import ContextTracker
from wayfinder.core.contracts import (
    BoundingBox,
    Classification,
    ContextChange,
    ContextDetection,
    DetectionStrategy,
    EnterAction,
    ExposureState,
    NavigationContext,
    NavigationEdge,
    NavigationFailure,
    NavigationPath,
    NavigationPhase,
    NavigationResult,
    ObservationFacts,
    PathComputeOptions,
    StateChangeEvent,
    ToolState,
)
from wayfinder.core.exposure_registry import ExposureRegistry
from wayfinder.core.navigation_executor import CancellationToken, NavigationExecutor, ToolInvoker
from wayfinder.core.navigation_graph import NavigationGraph
from wayfinder.core.runtime import WayfinderRuntime
from wayfinder.core.signals import ElementHandle, FrameScheduler, HeadlessElement, SignalSource, collect_facts
from wayfinder.core.telemetry_sink import JsonlTelemetrySink, MemoryTelemetrySink, NullTelemetrySink, TelemetrySink

__all__ = [
    "DEFAULT_CONTEXT_ID",
    "BoundingBox",
    "BrowserConfig",
    "CancellationToken",
    "Classification",
    "ContextChange",
    "ContextDetection",
    "ContextTracker",
    "DetectionStrategy",
    "ElementHandle",
    "EnterAction",
    "ExposureConfig",
    "ExposureRegistry",
    "ExposureState",
    "FrameScheduler",
    "HeadlessElement",
    "JsonlTelemetrySink",
    "MemoryTelemetrySink",
    "NavigationConfig",
    "NavigationContext",
    "NavigationEdge",
    "NavigationExecutor",
    "NavigationFailure",
    "NavigationGraph",
    "NavigationPath",
    "NavigationPhase",
    "NavigationResult",
    "NullTelemetrySink",
    "ObservationFacts",
    "PathComputeOptions",
    "SignalSource",
    "StateChangeEvent",
    "TelemetrySink",
    "ToolInvoker",
    "ToolState",
    "WayfinderConfig",
    "WayfinderRuntime",
    "classify",
    "collect_facts",
]
