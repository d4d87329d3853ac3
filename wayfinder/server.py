"""Wayfinder MCP server.

Exposes tool exposure state and context navigation for a live page.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from wayfinder.core import (
    EnterAction,
    ExposureState,
    NavigationContext,
    NavigationEdge,
    PathComputeOptions,
    WayfinderConfig,
    WayfinderRuntime,
)
from wayfinder.core.browser_bridge import BrowserSession, PlaywrightSignalHub, PlaywrightToolInvoker, discover_tools

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger("wayfinder.server")

_runtime: WayfinderRuntime | None = None
_session: BrowserSession | None = None
_hub: PlaywrightSignalHub | None = None


def _to_state(value: Any) -> ExposureState:
    if isinstance(value, int):
        return ExposureState(value)
    return ExposureState[str(value).strip().upper()]


def _to_enter_action(payload: dict[str, Any] | None) -> EnterAction | None:
    if not payload:
        return None
    return EnterAction(tool_id=payload["tool_id"], parameters=payload.get("parameters", {}))


def _to_context(payload: dict[str, Any]) -> NavigationContext:
    return NavigationContext(
        id=payload["id"],
        name=payload.get("name", payload["id"]),
        parent=payload.get("parent"),
        tools=list(payload.get("tools", [])),
        enter_action=_to_enter_action(payload.get("enter_action")),
        metadata=payload.get("metadata", {}),
    )


def _to_edge(payload: dict[str, Any]) -> NavigationEdge:
    return NavigationEdge(
        from_context=payload["from"],
        to_context=payload["to"],
        navigation_tool=payload["navigation_tool"],
        parameters=payload.get("parameters", {}),
        cost=float(payload.get("cost", 1.0)),
    )


def _to_options(payload: dict[str, Any] | None, default_max_depth: int) -> PathComputeOptions:
    payload = payload or {}
    return PathComputeOptions(
        max_depth=int(payload.get("max_depth", default_max_depth)),
        avoid_contexts=tuple(payload.get("avoid_contexts", [])),
    )


def _text(payload: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


async def get_runtime() -> WayfinderRuntime:
    global _runtime, _session, _hub
    if _runtime is None:
        config = WayfinderConfig.from_env()
        runtime = WayfinderRuntime(config=config)
        session = BrowserSession(config.browser)
        page = await session.start()
        hub = PlaywrightSignalHub(config.browser, tracker=runtime.tracker)
        await hub.attach(page)
        runtime.executor.set_invoker(PlaywrightToolInvoker(page, config.browser))
        await discover_tools(page, runtime.registry, hub, runtime.tracker, config.browser)
        _runtime, _session, _hub = runtime, session, hub
    return _runtime


async def cleanup_runtime() -> None:
    global _runtime, _session, _hub
    if _runtime is not None:
        _runtime.close()
        _runtime = None
    if _session is not None:
        await _session.close()
        _session = None
    _hub = None


server = Server("wayfinder")


@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="exposure_list_tools",
            description="List every registered tool with its exposure state.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="exposure_get_tool_state",
            description="Get the exposure state of one tool.",
            inputSchema={
                "type": "object",
                "properties": {"tool_id": {"type": "string"}},
                "required": ["tool_id"],
            },
        ),
        Tool(
            name="exposure_wait_for_state",
            description="Wait until a tool reaches at least the given exposure state.",
            inputSchema={
                "type": "object",
                "properties": {
                    "tool_id": {"type": "string"},
                    "target_state": {"type": "string"},
                    "timeout_ms": {"type": "integer"},
                },
                "required": ["tool_id", "target_state"],
            },
        ),
        Tool(
            name="exposure_discover_tools",
            description="Rescan the page for tool elements, registering new ones and refreshing known ones.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="navigation_add_context",
            description="Declare a navigation context.",
            inputSchema={
                "type": "object",
                "properties": {"context": {"type": "object"}},
                "required": ["context"],
            },
        ),
        Tool(
            name="navigation_add_edge",
            description="Declare a tool-triggered edge between two contexts.",
            inputSchema={
                "type": "object",
                "properties": {"edge": {"type": "object"}},
                "required": ["edge"],
            },
        ),
        Tool(
            name="navigation_get_current_context",
            description="Get the current navigation context.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="navigation_compute_path",
            description="Compute the cheapest path between two contexts.",
            inputSchema={
                "type": "object",
                "properties": {
                    "from": {"type": "string"},
                    "to": {"type": "string"},
                    "options": {"type": "object"},
                },
                "required": ["to"],
            },
        ),
        Tool(
            name="navigation_navigate_to",
            description="Walk to a context, or to the context owning a tool.",
            inputSchema={
                "type": "object",
                "properties": {
                    "target": {"type": "string"},
                    "options": {"type": "object"},
                },
                "required": ["target"],
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    runtime = await get_runtime()

    try:
        if name == "exposure_list_tools":
            return _text([state.to_dict() for state in runtime.registry.get_all_tools()])

        if name == "exposure_get_tool_state":
            state = runtime.registry.get_tool_state(arguments["tool_id"])
            if state is None:
                return _text({"error": f"Unknown tool: {arguments['tool_id']}"})
            return _text(state.to_dict())

        if name == "exposure_wait_for_state":
            reached = await runtime.registry.wait_for_state(
                arguments["tool_id"],
                _to_state(arguments["target_state"]),
                arguments.get("timeout_ms"),
            )
            return _text({"reached": reached})

        if name == "exposure_discover_tools":
            if _session is None or _hub is None:
                return _text({"error": "Browser session not started"})
            tool_ids = await discover_tools(
                _session.page, runtime.registry, _hub, runtime.tracker, runtime.config.browser
            )
            return _text({"tool_ids": tool_ids})

        if name == "navigation_add_context":
            ok = runtime.graph.add_context(_to_context(arguments["context"]))
            return _text({"ok": ok})

        if name == "navigation_add_edge":
            ok = runtime.graph.add_edge(_to_edge(arguments["edge"]))
            return _text({"ok": ok})

        if name == "navigation_get_current_context":
            context = runtime.graph.get_context(runtime.tracker.current_context)
            return _text(
                {
                    "current_context": runtime.tracker.current_context,
                    "context": context.to_dict() if context else None,
                }
            )

        if name == "navigation_compute_path":
            path = runtime.graph.compute_path(
                arguments.get("from") or runtime.tracker.current_context,
                arguments["to"],
                _to_options(arguments.get("options"), runtime.config.navigation.max_depth),
            )
            return _text({"path": path.to_dict() if path else None})

        if name == "navigation_navigate_to":
            result = await runtime.executor.navigate_to(
                arguments["target"],
                options=_to_options(arguments.get("options"), runtime.config.navigation.max_depth),
            )
            return _text(result.to_dict())

        return [TextContent(type="text", text=json.dumps({"error": f"Unknown tool: {name}"}))]

    except Exception as exc:
        logger.exception("wayfinder tool failure: %s", exc)
        return [TextContent(type="text", text=json.dumps({"error": str(exc), "tool": name}))]


async def main() -> None:
    logger.info("[Server] Starting Wayfinder MCP Server...")
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await cleanup_runtime()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
