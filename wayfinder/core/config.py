from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_CONTEXT_ID = "global"


@dataclass(frozen=True)
class ExposureConfig:
    frame_interval_ms: int = 16
    default_wait_timeout_ms: int = 5_000


@dataclass(frozen=True)
class NavigationConfig:
    max_depth: int = 10
    step_latency_estimate_ms: int = 500
    default_edge_cost: float = 1.0
    tool_ready_timeout_ms: int = 5_000
    step_timeout_ms: int = 3_000
    context_wait_timeout_ms: int = 3_000


@dataclass(frozen=True)
class BrowserConfig:
    start_url: str = "about:blank"
    headless: bool = True
    viewport_width: int = 1440
    viewport_height: int = 900
    default_timeout_ms: int = 20_000
    tool_attribute: str = "data-tool-id"
    context_attribute: str = "data-nav-context"


@dataclass(frozen=True)
class WayfinderConfig:
    exposure: ExposureConfig = field(default_factory=ExposureConfig)
    navigation: NavigationConfig = field(default_factory=NavigationConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    telemetry_dir: str | None = None

    @classmethod
    def from_env(cls) -> "WayfinderConfig":
        exposure = ExposureConfig(
            frame_interval_ms=_env_int("WAYFINDER_FRAME_INTERVAL_MS", ExposureConfig.frame_interval_ms),
            default_wait_timeout_ms=_env_int("WAYFINDER_WAIT_TIMEOUT_MS", ExposureConfig.default_wait_timeout_ms),
        )
        navigation = NavigationConfig(
            max_depth=_env_int("WAYFINDER_MAX_DEPTH", NavigationConfig.max_depth),
            step_latency_estimate_ms=_env_int(
                "WAYFINDER_STEP_LATENCY_MS", NavigationConfig.step_latency_estimate_ms
            ),
            tool_ready_timeout_ms=_env_int("WAYFINDER_TOOL_READY_TIMEOUT_MS", NavigationConfig.tool_ready_timeout_ms),
            step_timeout_ms=_env_int("WAYFINDER_STEP_TIMEOUT_MS", NavigationConfig.step_timeout_ms),
        )
        browser = BrowserConfig(
            start_url=os.getenv("WAYFINDER_START_URL", BrowserConfig.start_url),
            headless=os.getenv("WAYFINDER_HEADLESS", "1").lower() not in ("0", "false", "no"),
            tool_attribute=os.getenv("WAYFINDER_TOOL_ATTRIBUTE", BrowserConfig.tool_attribute),
            context_attribute=os.getenv("WAYFINDER_CONTEXT_ATTRIBUTE", BrowserConfig.context_attribute),
        )
        return cls(
            exposure=exposure,
            navigation=navigation,
            browser=browser,
            telemetry_dir=os.getenv("WAYFINDER_TELEMETRY_DIR") or None,
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)
