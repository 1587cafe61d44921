# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""pagectl: drive one remote headless-browser session over a JSON line protocol.

A controller process attaches to a browser's remote-debugging endpoint,
owns a single page, and answers ``navigate`` / ``screenshot`` / ``close``
commands read from stdin with one JSON Response Record each on stdout.
"""

from __future__ import annotations

from .config import ControllerConfig
from .errors import (
    CaptureError,
    CaptureTimeout,
    ConnectError,
    ControllerBusy,
    ControllerError,
    NavigationError,
    PageCtlError,
    ProtocolError,
)
from .protocol import BLANK_PNG_BASE64, Command

__all__ = [
    "BLANK_PNG_BASE64",
    "CaptureError",
    "CaptureTimeout",
    "Command",
    "ConnectError",
    "ControllerBusy",
    "ControllerConfig",
    "ControllerError",
    "NavigationError",
    "PageCtlError",
    "ProtocolError",
]
