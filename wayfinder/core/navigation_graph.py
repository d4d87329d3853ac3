from __future__ import annotations

import heapq
import itertools
import logging
import math
import threading
from dataclasses import replace

from wayfinder.core.config import DEFAULT_CONTEXT_ID, NavigationConfig
from wayfinder.core.contracts import NavigationContext, NavigationEdge, NavigationPath, PathComputeOptions

logger = logging.getLogger("wayfinder.navigation")


class NavigationGraph:
    """Directed graph of navigation contexts joined by tool-triggered edges.

    Contexts form a parent/child tree; edges are an independent overlay and may
    connect any two contexts. A child context declaring an ``enter_action``
    contributes an implicit parent -> child edge. Paths are computed on demand
    and never cached.
    """

    def __init__(self, config: NavigationConfig | None = None) -> None:
        self._config = config or NavigationConfig()
        self._contexts: dict[str, NavigationContext] = {}
        self._edges: list[NavigationEdge] = []
        self._tool_contexts: dict[str, str] = {}
        self._lock = threading.RLock()
        self._add_root()

    @property
    def root_id(self) -> str:
        return DEFAULT_CONTEXT_ID

    def _add_root(self) -> None:
        self._contexts[DEFAULT_CONTEXT_ID] = NavigationContext(id=DEFAULT_CONTEXT_ID, name="Global")

    def add_context(self, context: NavigationContext) -> bool:
        if not isinstance(context.id, str) or not context.id.strip():
            logger.warning("Cannot add context with malformed id: %r", context.id)
            return False

        with self._lock:
            if context.parent is not None and self._creates_cycle(context.id, context.parent):
                logger.warning("Cannot add context %r: parent %r would create a cycle", context.id, context.parent)
                return False

            stored = context.snapshot()
            previous = self._contexts.get(context.id)
            if previous is not None:
                if previous.parent and previous.parent != stored.parent:
                    self._unlink_child(previous.parent, context.id)
                for child_id in previous.children:
                    if child_id not in stored.children:
                        stored.children.append(child_id)
                for tool_id in previous.tools:
                    if tool_id not in stored.tools:
                        stored.tools.append(tool_id)

            # Contexts registered before their parent are adopted here.
            for other in self._contexts.values():
                if other.parent == stored.id and other.id not in stored.children:
                    stored.children.append(other.id)

            self._contexts[stored.id] = stored
            for tool_id in stored.tools:
                self._tool_contexts.setdefault(tool_id, stored.id)

            if stored.parent:
                parent = self._contexts.get(stored.parent)
                if parent is not None and stored.id not in parent.children:
                    parent.children.append(stored.id)
            return True

    def remove_context(self, context_id: str) -> bool:
        with self._lock:
            if context_id == DEFAULT_CONTEXT_ID:
                logger.warning("The %r root context cannot be removed", DEFAULT_CONTEXT_ID)
                return False
            context = self._contexts.pop(context_id, None)
            if context is None:
                logger.warning("Cannot remove unknown context: %r", context_id)
                return False

            if context.parent:
                self._unlink_child(context.parent, context_id)
            for child_id in context.children:
                child = self._contexts.get(child_id)
                if child is not None:
                    child.parent = None
            self._edges = [
                edge for edge in self._edges if context_id not in (edge.from_context, edge.to_context)
            ]
            self._tool_contexts = {
                tool_id: owner for tool_id, owner in self._tool_contexts.items() if owner != context_id
            }
            return True

    def add_edge(self, edge: NavigationEdge) -> bool:
        with self._lock:
            if edge.from_context not in self._contexts:
                logger.warning("Cannot add edge: source context %r does not exist", edge.from_context)
                return False
            if edge.to_context not in self._contexts:
                logger.warning("Cannot add edge: target context %r does not exist", edge.to_context)
                return False
            if not isinstance(edge.navigation_tool, str) or not edge.navigation_tool.strip():
                logger.warning("Cannot add edge %r -> %r without a navigation tool", edge.from_context, edge.to_context)
                return False
            if not isinstance(edge.cost, (int, float)) or math.isnan(edge.cost) or edge.cost < 0:
                logger.warning("Cannot add edge with invalid cost %r", edge.cost)
                return False
            if self._find_edge(edge.from_context, edge.to_context, edge.navigation_tool) is not None:
                logger.warning(
                    "Edge from %r to %r via %r already exists",
                    edge.from_context,
                    edge.to_context,
                    edge.navigation_tool,
                )
                return False

            self._edges.append(replace(edge, parameters=dict(edge.parameters), cost=float(edge.cost)))
            return True

    def remove_edge(self, from_context: str, to_context: str, navigation_tool: str) -> bool:
        with self._lock:
            edge = self._find_edge(from_context, to_context, navigation_tool)
            if edge is None:
                logger.warning("Cannot remove unknown edge %r -> %r via %r", from_context, to_context, navigation_tool)
                return False
            self._edges.remove(edge)
            return True

    def register_tool_in_context(self, tool_id: str, context_id: str) -> bool:
        with self._lock:
            context = self._contexts.get(context_id)
            if context is None:
                logger.warning("Cannot register tool %r: context %r does not exist", tool_id, context_id)
                return False
            previous = self._tool_contexts.get(tool_id)
            if previous and previous != context_id and previous in self._contexts:
                previous_tools = self._contexts[previous].tools
                if tool_id in previous_tools:
                    previous_tools.remove(tool_id)
            if tool_id not in context.tools:
                context.tools.append(tool_id)
            self._tool_contexts[tool_id] = context_id
            return True

    def get_tool_context(self, tool_id: str) -> str | None:
        with self._lock:
            return self._tool_contexts.get(tool_id)

    def has_context(self, context_id: str) -> bool:
        with self._lock:
            return context_id in self._contexts

    def get_context(self, context_id: str) -> NavigationContext | None:
        with self._lock:
            context = self._contexts.get(context_id)
            return context.snapshot() if context else None

    def get_all_contexts(self) -> list[NavigationContext]:
        with self._lock:
            return [context.snapshot() for context in self._contexts.values()]

    def get_all_edges(self) -> list[NavigationEdge]:
        with self._lock:
            return [replace(edge, parameters=dict(edge.parameters)) for edge in self._edges]

    def outgoing_edges(self, context_id: str) -> list[NavigationEdge]:
        with self._lock:
            return self._outgoing(context_id)

    def compute_path(
        self,
        from_context: str,
        to_context: str,
        options: PathComputeOptions | None = None,
    ) -> NavigationPath | None:
        """Cheapest path by edge cost, fewest steps among equal costs.

        ``max_depth`` bounds the number of steps regardless of cost and
        ``avoid_contexts`` removes nodes from the search. Returns None when the
        target is unknown or unreachable.
        """
        options = options or PathComputeOptions(max_depth=self._config.max_depth)

        with self._lock:
            if from_context not in self._contexts or to_context not in self._contexts:
                logger.warning("Cannot compute path %r -> %r: unknown context", from_context, to_context)
                return None

            if from_context == to_context:
                return NavigationPath(from_context, to_context, (), 0.0, 0)

            avoid = set(options.avoid_contexts)
            if to_context in avoid:
                return None

            sequence = itertools.count()
            frontier: list[tuple[float, int, int, str, tuple[NavigationEdge, ...]]] = [
                (0.0, 0, next(sequence), from_context, ())
            ]
            # Fewest steps at which each node was settled; a later pop costs at
            # least as much, so it only matters if it arrives in fewer steps.
            settled_depth: dict[str, int] = {}

            while frontier:
                cost, depth, _, node, steps = heapq.heappop(frontier)
                if node == to_context:
                    return NavigationPath(
                        from_context=from_context,
                        to_context=to_context,
                        steps=steps,
                        total_cost=cost,
                        estimated_time_ms=len(steps) * self._config.step_latency_estimate_ms,
                    )

                best = settled_depth.get(node)
                if best is not None and best <= depth:
                    continue
                settled_depth[node] = depth

                if depth >= options.max_depth:
                    continue

                for edge in self._outgoing(node):
                    if edge.to_context in avoid:
                        continue
                    heapq.heappush(
                        frontier,
                        (cost + edge.cost, depth + 1, next(sequence), edge.to_context, steps + (edge,)),
                    )

        return None

    def clear(self) -> None:
        with self._lock:
            self._contexts.clear()
            self._edges = []
            self._tool_contexts.clear()
            self._add_root()

    def _outgoing(self, context_id: str) -> list[NavigationEdge]:
        edges = [edge for edge in self._edges if edge.from_context == context_id]
        for context in self._contexts.values():
            if context.parent != context_id or context.enter_action is None:
                continue
            action = context.enter_action
            if any(edge.to_context == context.id and edge.navigation_tool == action.tool_id for edge in edges):
                continue
            edges.append(
                NavigationEdge(
                    from_context=context_id,
                    to_context=context.id,
                    navigation_tool=action.tool_id,
                    parameters=dict(action.parameters),
                    cost=self._config.default_edge_cost,
                )
            )
        return edges

    def _find_edge(self, from_context: str, to_context: str, navigation_tool: str) -> NavigationEdge | None:
        for edge in self._edges:
            if (edge.from_context, edge.to_context, edge.navigation_tool) == (from_context, to_context, navigation_tool):
                return edge
        return None

    def _unlink_child(self, parent_id: str, child_id: str) -> None:
        parent = self._contexts.get(parent_id)
        if parent is not None and child_id in parent.children:
            parent.children.remove(child_id)

    def _creates_cycle(self, context_id: str, parent_id: str) -> bool:
        seen: set[str] = set()
        current: str | None = parent_id
        while current is not None and current not in seen:
            if current == context_id:
                return True
            seen.add(current)
            node = self._contexts.get(current)
            current = node.parent if node else None
        return False
