# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""pagectl exception hierarchy.

All pagectl-specific errors inherit from PageCtlError. Only ConnectError is
fatal to a controller process; the others are reported per command or
absorbed by the handler that raised them.
"""

from __future__ import annotations


class PageCtlError(Exception):
    """Base exception for all pagectl errors."""


class ConnectError(PageCtlError):
    """Missing endpoint or failed attach to the remote browser."""


class ProtocolError(PageCtlError):
    """Input line is not a valid Command Record."""


class NavigationError(PageCtlError):
    """Page load failed or timed out (absorbed by the navigate handler)."""


class CaptureError(PageCtlError):
    """Screenshot capture failed (absorbed into the placeholder image)."""


class CaptureTimeout(CaptureError):
    """Screenshot capture did not settle within its time budget."""

    def __init__(self, message: str, *, timeout: float = 0.0) -> None:
        super().__init__(message)
        self.timeout = timeout


class ControllerError(PageCtlError):
    """Controller process failed to start, timed out, or reported an error."""


class ControllerBusy(ControllerError):
    """Controller refused a screenshot because another capture is in flight."""


_TARGET_CLOSED_PATTERNS = (
    "target closed",
    "session closed",
    "target page",
    "browser has been closed",
    "connection closed",
    "browser disconnected",
)


def is_target_closed_error(exc: BaseException) -> bool:
    """Detect errors meaning the remote page or browser session was torn down."""
    msg = str(exc).lower()
    return any(p in msg for p in _TARGET_CLOSED_PATTERNS)
