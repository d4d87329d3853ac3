from __future__ import annotations

from typing import Any

from wayfinder.core.contracts import Classification, ExposureState, ObservationFacts


def classify(facts: ObservationFacts) -> Classification:
    """Map raw element facts onto a single exposure state.

    Rules are evaluated top-down and the first match wins; each rule assumes
    every rule above it failed.
    """
    if not facts.connected:
        return Classification(ExposureState.NOT_PRESENT, "not connected", ("detached",))

    if not facts.intersecting or not facts.has_dimensions or facts.hidden_by_style:
        blockers: list[str] = []
        if facts.hidden_by_style:
            blockers.append("hidden")
        if not facts.has_dimensions:
            blockers.append("zero-size")
        if not facts.intersecting:
            blockers.append("offscreen")
        return Classification(ExposureState.PRESENT, "not visible", tuple(blockers))

    if facts.disabled or facts.aria_disabled:
        blockers = ["disabled"]
        if facts.busy:
            blockers.append("busy")
        return Classification(ExposureState.VISIBLE, "disabled", tuple(blockers))

    if facts.busy:
        return Classification(ExposureState.EXPOSED, "busy", ("busy",))

    return Classification(ExposureState.INTERACTABLE, "ready")


def classification_metadata(classification: Classification, facts: ObservationFacts) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "reason": classification.reason,
        "blockers": list(classification.blockers),
    }
    if facts.position is not None:
        metadata["position"] = facts.position.to_dict()
    return metadata
