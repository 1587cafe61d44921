# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Controller configuration with PAGECTL_* environment overrides."""

from __future__ import annotations

import os
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, replace

DEFAULT_VIEWPORT = {"width": 1280, "height": 720}

_TRUTHY = ("1", "true", "yes")


@dataclass(frozen=True)
class ControllerConfig:
    """Timeouts and page settings for one controller process."""

    viewport_width: int = 1280
    viewport_height: int = 720
    navigate_timeout_ms: int = 15000
    wait_until: str = "domcontentloaded"
    settle_delay_s: float = 0.5
    screenshot_timeout_s: float = 5.0
    connect_timeout_ms: int = 30000
    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def viewport(self) -> dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ControllerConfig:
        """Build a config from defaults plus PAGECTL_* overrides.

        Unparsable numeric values are ignored and the default is kept.
        """
        env = os.environ if environ is None else environ
        overrides: dict = {}

        for name, field_name, cast in (
            ("PAGECTL_VIEWPORT_WIDTH", "viewport_width", int),
            ("PAGECTL_VIEWPORT_HEIGHT", "viewport_height", int),
            ("PAGECTL_NAVIGATE_TIMEOUT_MS", "navigate_timeout_ms", int),
            ("PAGECTL_SETTLE_DELAY", "settle_delay_s", float),
            ("PAGECTL_SCREENSHOT_TIMEOUT", "screenshot_timeout_s", float),
            ("PAGECTL_CONNECT_TIMEOUT_MS", "connect_timeout_ms", int),
        ):
            raw = env.get(name, "").strip()
            if raw:
                with suppress(ValueError):
                    overrides[field_name] = cast(raw)

        env_level = env.get("PAGECTL_LOG_LEVEL", "").strip()
        if env_level:
            overrides["log_level"] = env_level.upper()

        env_json = env.get("PAGECTL_JSON_LOGS", "").strip().lower()
        if env_json:
            overrides["json_logs"] = env_json in _TRUTHY

        return replace(cls(), **overrides)
