import asyncio
import logging
import time

import pytest

from wayfinder.core.config import ExposureConfig
from wayfinder.core.contracts import ExposureState, StateChangeEvent
from wayfinder.core.exposure_registry import ExposureRegistry
from wayfinder.core.signals import HeadlessElement


def collect(registry: ExposureRegistry, tool_id: str | None = None) -> list[StateChangeEvent]:
    events: list[StateChangeEvent] = []
    registry.subscribe(events.append, tool_id)
    return events


def test_registration_without_element_starts_not_present() -> None:
    registry = ExposureRegistry()
    events = collect(registry)

    registry.register_tool("save", metadata={"label": "Save"})

    state = registry.get_tool_state("save")
    assert state is not None
    assert state.state == ExposureState.NOT_PRESENT
    assert state.metadata == {"label": "Save"}
    assert events == []


def test_registration_with_element_emits_initial_classification() -> None:
    registry = ExposureRegistry()
    events = collect(registry)

    registry.register_tool("save", HeadlessElement())

    assert [(e.old_state, e.new_state) for e in events] == [
        (ExposureState.NOT_PRESENT, ExposureState.INTERACTABLE)
    ]
    assert registry.get_tool_state("save").state == ExposureState.INTERACTABLE


def test_identical_update_is_dropped() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")
    events = collect(registry, "save")

    registry.update_tool_state("save", ExposureState.VISIBLE)
    first_update = registry.get_tool_state("save").last_update
    registry.update_tool_state("save", ExposureState.VISIBLE)

    assert len(events) == 1
    assert registry.get_tool_state("save").last_update == first_update


def test_update_merges_metadata_and_event_carries_it() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save", metadata={"label": "Save"})
    events = collect(registry)

    registry.update_tool_state("save", ExposureState.PRESENT, {"reason": "not visible"})

    assert events[0].metadata == {"reason": "not visible"}
    assert registry.get_tool_state("save").metadata == {"label": "Save", "reason": "not visible"}


def test_unknown_and_invalid_updates_are_ignored(caplog) -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")
    events = collect(registry)

    with caplog.at_level(logging.WARNING, logger="wayfinder.exposure"):
        registry.update_tool_state("missing", ExposureState.VISIBLE)
        registry.update_tool_state("save", 42)

    assert events == []
    assert registry.get_tool_state("missing") is None
    assert registry.get_tool_state("save").state == ExposureState.NOT_PRESENT
    assert len(caplog.records) == 2


def test_unhashable_tool_ids_are_logged_no_ops(caplog) -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")
    events = collect(registry)

    with caplog.at_level(logging.WARNING, logger="wayfinder.exposure"):
        assert registry.get_tool_state(["save"]) is None
        registry.update_tool_state(["save"], ExposureState.VISIBLE)
        registry.unregister_tool({"a": 1})
        registry.attach_element(["save"], HeadlessElement())
        assert registry.refresh(["save"]) is None
        unsubscribe = registry.subscribe(lambda event: None, ["save"])
        unsubscribe()

    assert registry.subscriber_count(["save"]) == 0
    assert events == []
    assert registry.get_tool_state("save").state == ExposureState.NOT_PRESENT
    assert len(caplog.records) == 6


@pytest.mark.asyncio
async def test_wait_on_unhashable_tool_id_resolves_false() -> None:
    registry = ExposureRegistry()

    assert await registry.wait_for_state(["x"], ExposureState.VISIBLE, timeout_ms=10) is False
    assert await registry.wait_for_state({"a": 1}, ExposureState.VISIBLE) is False


def test_malformed_registration_is_ignored() -> None:
    registry = ExposureRegistry()
    registry.register_tool("")
    registry.register_tool("   ")
    assert registry.get_all_tools() == []


def test_reregistration_replaces_entry(caplog) -> None:
    registry = ExposureRegistry()
    registry.register_tool("save", metadata={"v": 1})
    registry.update_tool_state("save", ExposureState.VISIBLE)
    events = collect(registry, "save")

    with caplog.at_level(logging.WARNING, logger="wayfinder.exposure"):
        registry.register_tool("save", metadata={"v": 2})

    state = registry.get_tool_state("save")
    assert state.state == ExposureState.NOT_PRESENT
    assert state.metadata == {"v": 2}
    assert "already registered" in caplog.text
    assert [(e.old_state, e.new_state) for e in events] == [
        (ExposureState.VISIBLE, ExposureState.NOT_PRESENT)
    ]


def test_reregistration_with_element_reports_drop_then_new_state() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save", HeadlessElement())
    events = collect(registry, "save")

    registry.register_tool("save", HeadlessElement())

    assert [(e.old_state, e.new_state) for e in events] == [
        (ExposureState.INTERACTABLE, ExposureState.NOT_PRESENT),
        (ExposureState.NOT_PRESENT, ExposureState.INTERACTABLE),
    ]
    assert events[0].metadata == {"reason": "re-registered"}


def test_get_tool_state_returns_a_copy() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save", metadata={"label": "Save"})

    snapshot = registry.get_tool_state("save")
    snapshot.metadata["label"] = "changed"
    snapshot.state = ExposureState.INTERACTABLE

    fresh = registry.get_tool_state("save")
    assert fresh.metadata == {"label": "Save"}
    assert fresh.state == ExposureState.NOT_PRESENT


def test_tool_scoped_subscribers_run_before_global() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")
    order: list[str] = []
    registry.subscribe(lambda event: order.append("global"))
    registry.subscribe(lambda event: order.append("scoped"), "save")
    registry.subscribe(lambda event: order.append("other-tool"), "cancel")

    registry.update_tool_state("save", ExposureState.PRESENT)

    assert order == ["scoped", "global"]


def test_faulty_subscriber_does_not_block_others(caplog) -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")
    seen: list[ExposureState] = []

    def explode(event: StateChangeEvent) -> None:
        raise RuntimeError("boom")

    registry.subscribe(explode, "save")
    registry.subscribe(lambda event: seen.append(event.new_state))

    with caplog.at_level(logging.ERROR, logger="wayfinder.exposure"):
        registry.update_tool_state("save", ExposureState.PRESENT)

    assert seen == [ExposureState.PRESENT]
    assert registry.get_tool_state("save").state == ExposureState.PRESENT
    assert "boom" in caplog.text


def test_reentrant_update_is_delivered_in_order() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")
    observed: list[tuple[ExposureState, ExposureState]] = []

    def escalate(event: StateChangeEvent) -> None:
        if event.new_state == ExposureState.PRESENT:
            registry.update_tool_state("save", ExposureState.VISIBLE)

    registry.subscribe(escalate, "save")
    registry.subscribe(lambda event: observed.append((event.old_state, event.new_state)))

    registry.update_tool_state("save", ExposureState.PRESENT)

    assert observed == [
        (ExposureState.NOT_PRESENT, ExposureState.PRESENT),
        (ExposureState.PRESENT, ExposureState.VISIBLE),
    ]


def test_unsubscribe_stops_delivery() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")
    events: list[StateChangeEvent] = []
    unsubscribe = registry.subscribe(events.append, "save")

    registry.update_tool_state("save", ExposureState.PRESENT)
    unsubscribe()
    unsubscribe()
    registry.update_tool_state("save", ExposureState.VISIBLE)

    assert len(events) == 1
    assert registry.subscriber_count("save") == 0


def test_tool_subscription_survives_unregister() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")
    events = collect(registry, "save")

    registry.unregister_tool("save")
    assert registry.get_tool_state("save") is None
    registry.register_tool("save")
    registry.update_tool_state("save", ExposureState.PRESENT)

    assert [event.new_state for event in events] == [ExposureState.PRESENT]


def test_unregister_stops_observing_element() -> None:
    registry = ExposureRegistry()
    element = HeadlessElement()
    registry.register_tool("save", element)
    assert element.listener_count() == 3

    registry.unregister_tool("save")

    assert element.listener_count() == 0
    assert registry.get_all_tools() == []


def test_element_mutations_drive_state_without_loop() -> None:
    registry = ExposureRegistry()
    element = HeadlessElement(attributes={"disabled": ""})
    registry.register_tool("save", element)
    events = collect(registry, "save")
    assert registry.get_tool_state("save").state == ExposureState.VISIBLE

    element.remove_attribute("disabled")

    assert registry.get_tool_state("save").state == ExposureState.INTERACTABLE
    assert events[-1].metadata["reason"] == "ready"


def test_attach_and_detach_element() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")
    element = HeadlessElement()

    registry.attach_element("save", element)
    assert registry.get_tool_state("save").state == ExposureState.INTERACTABLE
    assert registry.get_tool_state("save").element is element

    registry.detach_element("save")
    assert registry.get_tool_state("save").state == ExposureState.NOT_PRESENT
    assert element.listener_count() == 0


def test_manual_override_does_not_mask_later_classification() -> None:
    registry = ExposureRegistry()
    element = HeadlessElement()
    registry.register_tool("save", element)
    events = collect(registry, "save")

    registry.update_tool_state("save", ExposureState.VISIBLE)
    element.set_attribute("title", "Save")

    assert registry.get_tool_state("save").state == ExposureState.INTERACTABLE
    assert [(e.old_state, e.new_state) for e in events] == [
        (ExposureState.INTERACTABLE, ExposureState.VISIBLE),
        (ExposureState.VISIBLE, ExposureState.INTERACTABLE),
    ]


def test_refresh_corrects_manual_override() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save", HeadlessElement())

    registry.update_tool_state("save", ExposureState.VISIBLE)
    state = registry.refresh("save")

    assert state.state == ExposureState.INTERACTABLE


def test_refresh_reclassifies_current_element() -> None:
    registry = ExposureRegistry()
    element = HeadlessElement()
    registry.register_tool("save", element)

    element.attributes["aria-busy"] = "true"
    state = registry.refresh("save")

    assert state.state == ExposureState.EXPOSED


def test_destroy_releases_everything() -> None:
    registry = ExposureRegistry()
    element = HeadlessElement()
    registry.register_tool("save", element)
    registry.subscribe(lambda event: None)

    registry.destroy()

    assert registry.get_all_tools() == []
    assert registry.subscriber_count() == 0
    assert element.listener_count() == 0


@pytest.mark.asyncio
async def test_wait_for_state_already_satisfied_resolves_immediately() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save", HeadlessElement())

    assert await registry.wait_for_state("save", ExposureState.VISIBLE, timeout_ms=0) is True
    assert await registry.wait_for_state("save", ExposureState.INTERACTABLE) is True
    assert registry.subscriber_count("save") == 0


@pytest.mark.asyncio
async def test_wait_for_state_times_out_false_without_leaking() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")

    started = time.monotonic()
    reached = await registry.wait_for_state("save", ExposureState.INTERACTABLE, timeout_ms=100)
    elapsed = time.monotonic() - started

    assert reached is False
    assert 0.099 <= elapsed < 0.15
    assert registry.subscriber_count("save") == 0


@pytest.mark.asyncio
async def test_wait_for_state_resolves_on_higher_state() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save")

    waiter = asyncio.create_task(registry.wait_for_state("save", ExposureState.VISIBLE, timeout_ms=1000))
    await asyncio.sleep(0)
    registry.update_tool_state("save", ExposureState.PRESENT)
    await asyncio.sleep(0)
    assert not waiter.done()
    registry.update_tool_state("save", ExposureState.INTERACTABLE)

    assert await waiter is True
    assert registry.subscriber_count("save") == 0


@pytest.mark.asyncio
async def test_wait_for_tool_registered_later() -> None:
    registry = ExposureRegistry()

    waiter = asyncio.create_task(registry.wait_for_state("late", ExposureState.INTERACTABLE, timeout_ms=1000))
    await asyncio.sleep(0)
    registry.register_tool("late", HeadlessElement())

    assert await waiter is True


@pytest.mark.asyncio
async def test_save_button_becomes_interactable_when_enabled() -> None:
    registry = ExposureRegistry(ExposureConfig(frame_interval_ms=16))
    element = HeadlessElement(attributes={"disabled": ""})
    registry.register_tool("save-btn", element)
    assert registry.get_tool_state("save-btn").state == ExposureState.VISIBLE

    async def enable_later() -> None:
        await asyncio.sleep(0.05)
        element.remove_attribute("disabled")

    enabler = asyncio.create_task(enable_later())
    started = time.monotonic()
    reached = await registry.wait_for_state("save-btn", ExposureState.INTERACTABLE, timeout_ms=1000)
    elapsed = time.monotonic() - started
    await enabler

    assert reached is True
    assert elapsed < 0.5
    assert registry.get_tool_state("save-btn").state == ExposureState.INTERACTABLE


def test_satisfied_wait_completes_without_suspending() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save", HeadlessElement())

    waiter = registry.wait_for_state("save", ExposureState.INTERACTABLE, timeout_ms=100)
    with pytest.raises(StopIteration) as finished:
        waiter.send(None)

    assert finished.value.value is True


def test_attaching_element_later_reports_each_distinct_state() -> None:
    registry = ExposureRegistry()
    registry.register_tool("save-btn")
    events = collect(registry, "save-btn")
    assert registry.get_tool_state("save-btn").state == ExposureState.NOT_PRESENT

    element = HeadlessElement(attributes={"disabled": ""})
    registry.attach_element("save-btn", element)
    element.remove_attribute("disabled")

    assert [(e.old_state, e.new_state) for e in events] == [
        (ExposureState.NOT_PRESENT, ExposureState.VISIBLE),
        (ExposureState.VISIBLE, ExposureState.INTERACTABLE),
    ]
