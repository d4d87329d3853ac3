from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any


def _copy_mapping(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: copy.copy(value) for key, value in payload.items()}


class ExposureState(IntEnum):
    """Readiness of a tool for interaction, strictly increasing."""

    NOT_PRESENT = 0
    PRESENT = 1
    VISIBLE = 2
    EXPOSED = 3
    INTERACTABLE = 4


class DetectionStrategy(str, Enum):
    CONVENTION = "convention"
    COMPONENT_TREE = "component-tree"
    DOM_OBSERVATION = "dom-observation"
    MANUAL = "manual"


class NavigationPhase(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    STEPPING = "stepping"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class NavigationFailure(str, Enum):
    UNKNOWN_TARGET = "unknown target"
    NO_PATH = "no path"
    TOOL_NOT_READY = "tool not ready"
    CONTEXT_DID_NOT_CHANGE = "context did not change"
    CANCELLED = "cancelled"
    INVOCATION_FAILED = "invocation failed"


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class ObservationFacts:
    connected: bool
    intersecting: bool = False
    has_dimensions: bool = False
    disabled: bool = False
    aria_disabled: bool = False
    busy: bool = False
    hidden_by_style: bool = False
    position: BoundingBox | None = None


@dataclass(frozen=True)
class Classification:
    state: ExposureState
    reason: str
    blockers: tuple[str, ...] = ()


@dataclass
class ToolState:
    tool_id: str
    state: ExposureState
    last_update: float
    element: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> "ToolState":
        return replace(self, metadata=_copy_mapping(self.metadata))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_id": self.tool_id,
            "state": self.state.name,
            "state_value": int(self.state),
            "last_update": self.last_update,
            "has_element": self.element is not None,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class StateChangeEvent:
    tool_id: str
    old_state: ExposureState
    new_state: ExposureState
    timestamp: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_id": self.tool_id,
            "old_state": self.old_state.name,
            "new_state": self.new_state.name,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class EnterAction:
    tool_id: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class NavigationContext:
    id: str
    name: str
    parent: str | None = None
    children: list[str] = field(default_factory=list)
    tools: list[str] = field(default_factory=list)
    enter_action: EnterAction | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> "NavigationContext":
        return replace(
            self,
            children=list(self.children),
            tools=list(self.tools),
            metadata=_copy_mapping(self.metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "parent": self.parent,
            "children": list(self.children),
            "tools": list(self.tools),
            "enter_action": (
                {"tool_id": self.enter_action.tool_id, "parameters": self.enter_action.parameters}
                if self.enter_action
                else None
            ),
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class NavigationEdge:
    from_context: str
    to_context: str
    navigation_tool: str
    parameters: dict[str, Any] = field(default_factory=dict)
    cost: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_context,
            "to": self.to_context,
            "navigation_tool": self.navigation_tool,
            "parameters": self.parameters,
            "cost": self.cost,
        }


@dataclass(frozen=True)
class NavigationPath:
    from_context: str
    to_context: str
    steps: tuple[NavigationEdge, ...]
    total_cost: float
    estimated_time_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_context,
            "to": self.to_context,
            "steps": [step.to_dict() for step in self.steps],
            "total_cost": self.total_cost,
            "estimated_time_ms": self.estimated_time_ms,
        }


@dataclass(frozen=True)
class PathComputeOptions:
    max_depth: int = 10
    avoid_contexts: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContextDetection:
    strategy: DetectionStrategy
    context_id: str
    confidence: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContextChange:
    old_context: str
    new_context: str
    timestamp: float


@dataclass
class NavigationResult:
    target: str
    phase: NavigationPhase
    reason: NavigationFailure | None = None
    path: NavigationPath | None = None
    steps_completed: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.phase == NavigationPhase.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "phase": self.phase.value,
            "reason": self.reason.value if self.reason else None,
            "path": self.path.to_dict() if self.path else None,
            "steps_completed": self.steps_completed,
            "metadata": self.metadata,
        }
