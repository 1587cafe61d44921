# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import pagectl  # noqa: F401
except ImportError:
    raise ImportError("pagectl is not installed. Run: pip install -e '.[dev]'") from None

import asyncio
import io
from unittest.mock import AsyncMock, MagicMock

import pytest

from pagectl.config import ControllerConfig
from pagectl.transport import Transport

# Minimal valid PNG bytes (1x1 transparent pixel)
FAKE_PNG = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00\x1f\x15\xc4\x89"


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real Playwright drivers in unit tests.

    Tests that exercise ``BrowserConnection`` patch
    ``pagectl.browser_connection.async_playwright`` themselves; that patch
    takes priority over this fixture.
    """

    def _no_real_playwright():
        raise RuntimeError(
            "Test tried to start a real Playwright driver. Patch 'pagectl.browser_connection.async_playwright'."
        )

    monkeypatch.setattr("pagectl.browser_connection.async_playwright", _no_real_playwright)


@pytest.fixture
def fast_config() -> ControllerConfig:
    """Config with timeouts shrunk so timeout paths run in milliseconds."""
    return ControllerConfig(settle_delay_s=0, screenshot_timeout_s=0.2, navigate_timeout_ms=200)


@pytest.fixture
def make_page():
    """Factory for mock Playwright pages."""

    def _make(url: str = "about:blank", *, closed: bool = False, png: bytes = FAKE_PNG) -> MagicMock:
        page = MagicMock()
        page.url = url
        page.is_closed = MagicMock(return_value=closed)
        page.screenshot = AsyncMock(return_value=png)
        page.close = AsyncMock()
        page.set_viewport_size = AsyncMock()

        async def _goto(target, **kwargs):
            page.url = target
            return None

        page.goto = AsyncMock(side_effect=_goto)
        return page

    return _make


@pytest.fixture
def connection(make_page) -> MagicMock:
    """Mock BrowserConnection whose new_page() hands out fresh mock pages."""
    conn = MagicMock()
    conn.new_page = AsyncMock(side_effect=lambda: make_page())
    conn.disconnect = AsyncMock()
    return conn


@pytest.fixture
def make_transport():
    """Factory for a Transport fed with ``lines`` and writing to a StringIO.

    Must be called from inside a running event loop.
    """

    def _make(*lines: str, eof: bool = True, limit: int = 2**16) -> tuple[Transport, io.StringIO]:
        reader = asyncio.StreamReader(limit=limit)
        for line in lines:
            reader.feed_data((line + "\n").encode("utf-8"))
        if eof:
            reader.feed_eof()
        output = io.StringIO()
        return Transport(reader, output), output

    return _make

