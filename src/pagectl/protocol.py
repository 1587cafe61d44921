# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Command Record / Response Record framing for the line protocol.

One JSON object per line in both directions. Parsing never raises anything
but ProtocolError, so a malformed line cannot take the controller down.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass

from .errors import ProtocolError

ACTION_NAVIGATE = "navigate"
ACTION_SCREENSHOT = "screenshot"
ACTION_CLOSE = "close"
KNOWN_ACTIONS = frozenset({ACTION_NAVIGATE, ACTION_SCREENSHOT, ACTION_CLOSE})

STATUS_READY = "ready"
STATUS_NAVIGATED = "navigated"
STATUS_SCREENSHOT = "screenshot"
STATUS_BUSY = "busy"
STATUS_ERROR = "error"

# 1x1 transparent PNG. Sentinel for "capture unavailable", never a real screenshot.
BLANK_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)


@dataclass(frozen=True, slots=True)
class Command:
    """A parsed Command Record."""

    action: str
    url: str | None = None

    @property
    def is_known(self) -> bool:
        return self.action in KNOWN_ACTIONS


def parse_command(line: str | bytes) -> Command:
    """Parse one input line into a Command.

    Raises:
        ProtocolError: the line is not JSON, not an object, or its fields
            have the wrong types.
    """
    try:
        data = json.loads(line)
    except (ValueError, TypeError) as exc:
        # JSONDecodeError and UnicodeDecodeError are both ValueError
        raise ProtocolError(str(exc)) from exc

    if not isinstance(data, dict):
        raise ProtocolError(f"command must be a JSON object, got {type(data).__name__}")

    action = data.get("action")
    if not isinstance(action, str):
        raise ProtocolError("command is missing a string 'action' field")

    url = data.get("url")
    if url is not None and not isinstance(url, str):
        raise ProtocolError("'url' must be a string")

    return Command(action=action, url=url)


def encode_response(record: dict) -> str:
    """Serialize a Response Record to a single line (no trailing newline)."""
    # ensure_ascii keeps U+2028/U+2029 in URLs from splitting the line
    return json.dumps(record, ensure_ascii=True, separators=(",", ":"))


def ready() -> dict:
    return {"status": STATUS_READY}


def navigated(url: str) -> dict:
    return {"status": STATUS_NAVIGATED, "url": url}


def screenshot(data: str) -> dict:
    return {"status": STATUS_SCREENSHOT, "data": data}


def busy() -> dict:
    return {"status": STATUS_BUSY}


def error(message: str) -> dict:
    return {"status": STATUS_ERROR, "message": message}


def decode_image(data: str) -> bytes:
    """Decode the base64 ``data`` field of a screenshot response."""
    return base64.b64decode(data, validate=True)


def is_placeholder(data: str) -> bool:
    """True when a screenshot response carries the capture-unavailable sentinel."""
    return data == BLANK_PNG_BASE64
