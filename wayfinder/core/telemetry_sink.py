from __future__ import annotations

import json
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class TelemetrySink:
    async def emit(self, event: dict[str, Any]) -> None:
        raise NotImplementedError


class NullTelemetrySink(TelemetrySink):
    async def emit(self, event: dict[str, Any]) -> None:
        return None


class MemoryTelemetrySink(TelemetrySink):
    """Keeps the most recent events in memory for inspection."""

    def __init__(self, max_events: int = 256) -> None:
        self._events: deque[dict[str, Any]] = deque(maxlen=max_events)

    async def emit(self, event: dict[str, Any]) -> None:
        self._events.append(dict(event))

    @property
    def events(self) -> list[dict[str, Any]]:
        return list(self._events)

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [event for event in self._events if event.get("event") == kind]


class JsonlTelemetrySink(TelemetrySink):
    def __init__(self, root_dir: str = "/tmp/wayfinder-telemetry", filename: str = "navigation.jsonl") -> None:
        self._root = Path(root_dir)
        self._root.mkdir(parents=True, exist_ok=True)
        self._file = self._root / filename

    @property
    def path(self) -> Path:
        return self._file

    async def emit(self, event: dict[str, Any]) -> None:
        record = {"ts": datetime.now(tz=timezone.utc).isoformat(), **event}
        payload = json.dumps(record, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)
        with self._file.open("a", encoding="utf-8") as file_handle:
            file_handle.write(payload + "\n")
