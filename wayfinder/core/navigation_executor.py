from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from wayfinder.core.config import NavigationConfig
from wayfinder.core.context_tracker import ContextTracker
from wayfinder.core.contracts import (
    ExposureState,
    NavigationFailure,
    NavigationPath,
    NavigationPhase,
    NavigationResult,
    PathComputeOptions,
)
from wayfinder.core.exposure_registry import ExposureRegistry
from wayfinder.core.navigation_graph import NavigationGraph
from wayfinder.core.telemetry_sink import NullTelemetrySink, TelemetrySink

logger = logging.getLogger("wayfinder.executor")


class ToolInvoker(Protocol):
    async def invoke(self, tool_id: str, parameters: dict[str, Any]) -> Any: ...


class CancellationToken:
    """Checked between navigation steps; in-flight waits end on their own timeouts."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class NavigationExecutor:
    """Walks a computed path one edge at a time.

    Each step waits for the edge's tool to become interactable, invokes it
    through the external invoker, then waits for the tracker to report the
    edge's target context. Failures are returned as values, never raised.
    """

    def __init__(
        self,
        registry: ExposureRegistry,
        graph: NavigationGraph,
        tracker: ContextTracker,
        invoker: ToolInvoker | None = None,
        config: NavigationConfig | None = None,
        telemetry_sink: TelemetrySink | None = None,
    ) -> None:
        self._registry = registry
        self._graph = graph
        self._tracker = tracker
        self._invoker = invoker
        self._config = config or NavigationConfig()
        self._sink = telemetry_sink or NullTelemetrySink()
        self._phase = NavigationPhase.IDLE
        self._walk_lock = asyncio.Lock()

    @property
    def phase(self) -> NavigationPhase:
        return self._phase

    def set_invoker(self, invoker: ToolInvoker | None) -> None:
        self._invoker = invoker

    def resolve_target(self, target: str) -> str | None:
        if self._graph.has_context(target):
            return target
        return self._graph.get_tool_context(target)

    async def navigate_to(
        self,
        target: str,
        cancel_token: CancellationToken | None = None,
        options: PathComputeOptions | None = None,
    ) -> NavigationResult:
        async with self._walk_lock:
            result = await self._walk(target, cancel_token, options)
        await self._sink.emit({"event": "navigation_result", **result.to_dict()})
        return result

    async def _walk(
        self,
        target: str,
        cancel_token: CancellationToken | None,
        options: PathComputeOptions | None,
    ) -> NavigationResult:
        self._set_phase(NavigationPhase.PLANNING, target)

        context_id = self.resolve_target(target)
        if context_id is None:
            return self._fail(target, NavigationFailure.UNKNOWN_TARGET)

        current = self._tracker.current_context
        if current == context_id:
            path = NavigationPath(current, context_id, (), 0.0, 0)
            return self._succeed(target, path)

        path = self._graph.compute_path(current, context_id, options)
        if path is None:
            return self._fail(target, NavigationFailure.NO_PATH, metadata={"from": current, "to": context_id})

        self._set_phase(NavigationPhase.STEPPING, target)
        for index, step in enumerate(path.steps):
            step_meta = {
                "step": index,
                "from": step.from_context,
                "to": step.to_context,
                "navigation_tool": step.navigation_tool,
            }
            if cancel_token is not None and cancel_token.cancelled:
                return self._fail(target, NavigationFailure.CANCELLED, path, index, step_meta)

            ready = await self._registry.wait_for_state(
                step.navigation_tool,
                ExposureState.INTERACTABLE,
                self._config.tool_ready_timeout_ms,
            )
            if not ready:
                return self._fail(target, NavigationFailure.TOOL_NOT_READY, path, index, step_meta)

            if self._invoker is None:
                logger.warning(
                    "No tool invoker configured; step %s -> %s via %s was not executed",
                    step.from_context,
                    step.to_context,
                    step.navigation_tool,
                )
            else:
                try:
                    await self._invoker.invoke(step.navigation_tool, dict(step.parameters))
                except Exception:
                    logger.exception("Invocation of %r failed", step.navigation_tool)
                    return self._fail(target, NavigationFailure.INVOCATION_FAILED, path, index, step_meta)

            changed = await self._tracker.wait_for_context_change(step.to_context, self._config.step_timeout_ms)
            if not changed:
                return self._fail(target, NavigationFailure.CONTEXT_DID_NOT_CHANGE, path, index, step_meta)

            await self._sink.emit({"event": "navigation_step", "target": target, **step_meta})

        return self._succeed(target, path)

    def _set_phase(self, phase: NavigationPhase, target: str) -> None:
        logger.info("navigation to %s: %s -> %s", target, self._phase.value, phase.value)
        self._phase = phase

    def _succeed(self, target: str, path: NavigationPath) -> NavigationResult:
        self._set_phase(NavigationPhase.SUCCEEDED, target)
        return NavigationResult(
            target=target,
            phase=NavigationPhase.SUCCEEDED,
            path=path,
            steps_completed=len(path.steps),
        )

    def _fail(
        self,
        target: str,
        reason: NavigationFailure,
        path: NavigationPath | None = None,
        steps_completed: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> NavigationResult:
        self._set_phase(NavigationPhase.FAILED, target)
        logger.warning("navigation to %s failed: %s", target, reason.value)
        return NavigationResult(
            target=target,
            phase=NavigationPhase.FAILED,
            reason=reason,
            path=path,
            steps_completed=steps_completed,
            metadata=dict(metadata or {}),
        )
