from __future__ import annotations

from wayfinder.core.config import WayfinderConfig
from wayfinder.core.context_tracker import ContextTracker
from wayfinder.core.exposure_registry import ExposureRegistry
from wayfinder.core.navigation_executor import NavigationExecutor, ToolInvoker
from wayfinder.core.navigation_graph import NavigationGraph
from wayfinder.core.telemetry_sink import JsonlTelemetrySink, NullTelemetrySink, TelemetrySink


class WayfinderRuntime:
    """Process-wide composition root.

    Owns the single registry, graph and tracker of the process and injects
    them into the executor. Consumers receive this object (or its parts)
    instead of reaching for module-level globals.
    """

    def __init__(
        self,
        config: WayfinderConfig | None = None,
        invoker: ToolInvoker | None = None,
        telemetry_sink: TelemetrySink | None = None,
    ) -> None:
        self.config = config or WayfinderConfig()
        if telemetry_sink is None:
            telemetry_sink = (
                JsonlTelemetrySink(root_dir=self.config.telemetry_dir)
                if self.config.telemetry_dir
                else NullTelemetrySink()
            )
        self.telemetry_sink = telemetry_sink
        self.registry = ExposureRegistry(config=self.config.exposure)
        self.graph = NavigationGraph(config=self.config.navigation)
        self.tracker = ContextTracker(
            graph=self.graph,
            config=self.config.navigation,
            context_attribute=self.config.browser.context_attribute,
        )
        self.executor = NavigationExecutor(
            registry=self.registry,
            graph=self.graph,
            tracker=self.tracker,
            invoker=invoker,
            config=self.config.navigation,
            telemetry_sink=self.telemetry_sink,
        )

    def close(self) -> None:
        self.registry.destroy()
