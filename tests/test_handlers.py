# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for NavigateHandler and ScreenshotHandler.

Both handlers degrade rather than fail: navigation always reports a URL,
capture always yields PNG data. The Screenshot Lock must be released on
every exit path.
"""

from __future__ import annotations

import asyncio
import base64
from unittest.mock import AsyncMock, patch

import pytest

from pagectl.config import ControllerConfig
from pagectl.handlers import (
    CaptureOutcome,
    NavigateHandler,
    NavigationOutcome,
    ScreenshotHandler,
    ScreenshotLock,
    _discard_result,
)
from pagectl.page_guardian import PageGuardian
from pagectl.protocol import BLANK_PNG_BASE64


async def _hang(*args, **kwargs):
    await asyncio.sleep(100)


# ── NavigateHandler ───────────────────────────────────────────────


class TestNavigate:
    async def test_reports_url_after_load(self, connection, make_page, fast_config):
        page = make_page()
        handler = NavigateHandler(PageGuardian(connection, page), fast_config)

        outcome = await handler.navigate("https://example.com/")

        assert outcome == NavigationOutcome(url="https://example.com/")

    async def test_goto_uses_domcontentloaded_and_timeout(self, connection, make_page):
        page = make_page()
        handler = NavigateHandler(PageGuardian(connection, page), ControllerConfig(settle_delay_s=0))

        await handler.navigate("https://example.com")

        page.goto.assert_awaited_once_with("https://example.com", wait_until="domcontentloaded", timeout=15000)

    async def test_waits_settle_delay_before_reading_url(self, connection, make_page):
        handler = NavigateHandler(PageGuardian(connection, make_page()), ControllerConfig())

        with patch("pagectl.handlers.asyncio.sleep", new=AsyncMock()) as sleep:
            await handler.navigate("https://example.com")

        sleep.assert_awaited_once_with(0.5)

    async def test_reports_redirect_target(self, connection, make_page, fast_config):
        page = make_page()

        async def _redirect(url, **kwargs):
            page.url = "https://www.example.org/landing"

        page.goto = AsyncMock(side_effect=_redirect)
        handler = NavigateHandler(PageGuardian(connection, page), fast_config)

        outcome = await handler.navigate("https://example.com")

        assert outcome.url == "https://www.example.org/landing"
        assert outcome.degraded is False

    async def test_load_timeout_degrades_to_current_url(self, connection, make_page, fast_config):
        page = make_page("https://partial.example.com/")
        page.goto = AsyncMock(side_effect=Exception("Timeout 15000ms exceeded."))
        handler = NavigateHandler(PageGuardian(connection, page), fast_config)

        outcome = await handler.navigate("https://slow.example.com")

        assert outcome.url == "https://partial.example.com/"
        assert outcome.degraded is True
        assert "Timeout" in outcome.error

    async def test_stalled_driver_is_bounded(self, connection, make_page, fast_config):
        page = make_page("about:blank")
        page.goto = AsyncMock(side_effect=_hang)
        handler = NavigateHandler(PageGuardian(connection, page), fast_config)

        outcome = await asyncio.wait_for(handler.navigate("https://hang.example.com"), timeout=2)

        assert outcome.url == "about:blank"
        assert outcome.degraded is True

    async def test_recreates_dead_page_before_loading(self, connection, make_page, fast_config):
        dead = make_page(closed=True)
        guardian = PageGuardian(connection, dead)
        handler = NavigateHandler(guardian, fast_config)

        outcome = await handler.navigate("https://example.com/")

        dead.goto.assert_not_awaited()
        assert guardian.page is not dead
        assert outcome == NavigationOutcome(url="https://example.com/")

    async def test_missing_url_skips_load(self, connection, make_page, fast_config):
        page = make_page("https://current.test/")
        handler = NavigateHandler(PageGuardian(connection, page), fast_config)

        outcome = await handler.navigate(None)

        page.goto.assert_not_awaited()
        assert outcome.url == "https://current.test/"
        assert outcome.degraded is True

    async def test_unrecoverable_page_still_reports_navigated(self, connection, make_page, fast_config):
        connection.new_page = AsyncMock(side_effect=Exception("Browser has been closed"))
        dead = make_page("https://last.test/", closed=True)
        handler = NavigateHandler(PageGuardian(connection, dead), fast_config)

        outcome = await handler.navigate("https://example.com")

        assert outcome.url == "https://last.test/"
        assert outcome.degraded is True

    async def test_hung_page_recreation_is_bounded(self, connection, make_page, fast_config):
        connection.new_page = AsyncMock(side_effect=_hang)
        dead = make_page("https://last.test/", closed=True)
        handler = NavigateHandler(PageGuardian(connection, dead), fast_config)

        outcome = await asyncio.wait_for(handler.navigate("https://example.com"), timeout=2)

        assert outcome.url == "https://last.test/"
        assert outcome.degraded is True
        assert "recreation timed out" in outcome.error

    async def test_recreation_time_comes_out_of_load_budget(self, connection, make_page, fast_config):
        fresh = make_page()

        async def _slow_new_page():
            await asyncio.sleep(0.1)
            return fresh

        connection.new_page = AsyncMock(side_effect=_slow_new_page)
        handler = NavigateHandler(PageGuardian(connection, make_page(closed=True)), fast_config)

        outcome = await handler.navigate("https://example.com/")

        assert outcome == NavigationOutcome(url="https://example.com/")
        load_timeout = fresh.goto.await_args.kwargs["timeout"]
        assert 0 < load_timeout <= fast_config.navigate_timeout_ms - 90


# ── ScreenshotLock ────────────────────────────────────────────────


class TestScreenshotLock:
    def test_single_permit(self):
        lock = ScreenshotLock()
        assert lock.try_acquire() is True
        assert lock.try_acquire() is False
        lock.release()
        assert lock.try_acquire() is True

    def test_double_release_raises(self):
        lock = ScreenshotLock()
        lock.try_acquire()
        lock.release()
        with pytest.raises(RuntimeError, match="not held"):
            lock.release()

    def test_locks_are_per_instance(self, connection):
        a = ScreenshotHandler(PageGuardian(connection))
        b = ScreenshotHandler(PageGuardian(connection))
        assert a.try_begin() is True
        assert b.try_begin() is True


# ── ScreenshotHandler ─────────────────────────────────────────────


class TestScreenshot:
    async def test_success_returns_base64_png(self, connection, make_page, fast_config):
        page = make_page()
        handler = ScreenshotHandler(PageGuardian(connection, page), fast_config)

        assert handler.try_begin()
        outcome = await handler.capture()

        assert outcome == CaptureOutcome(data=base64.b64encode(page.screenshot.return_value).decode())
        assert handler.lock.held is False

    async def test_viewport_png_capture(self, connection, make_page, fast_config):
        page = make_page()
        handler = ScreenshotHandler(PageGuardian(connection, page), fast_config)

        handler.try_begin()
        await handler.capture()

        page.screenshot.assert_called_once_with(type="png", full_page=False)

    async def test_second_begin_is_refused_while_held(self, connection, make_page, fast_config):
        handler = ScreenshotHandler(PageGuardian(connection, make_page()), fast_config)

        assert handler.try_begin() is True
        assert handler.try_begin() is False

    async def test_capture_error_returns_placeholder_and_releases(self, connection, make_page, fast_config):
        page = make_page()
        page.screenshot = AsyncMock(side_effect=Exception("Protocol error: Unable to capture"))
        handler = ScreenshotHandler(PageGuardian(connection, page), fast_config)

        handler.try_begin()
        outcome = await handler.capture()

        assert outcome.data == BLANK_PNG_BASE64
        assert outcome.degraded is True
        assert handler.lock.held is False
        connection.new_page.assert_not_awaited()

    async def test_timeout_returns_placeholder_and_releases(self, connection, make_page, fast_config):
        page = make_page()
        page.screenshot = AsyncMock(side_effect=_hang)
        handler = ScreenshotHandler(PageGuardian(connection, page), fast_config)

        handler.try_begin()
        outcome = await asyncio.wait_for(handler.capture(), timeout=2)

        assert outcome.data == BLANK_PNG_BASE64
        assert "timed out" in outcome.error
        assert handler.lock.held is False
        assert handler.try_begin() is True

    async def test_empty_capture_returns_placeholder(self, connection, make_page, fast_config):
        page = make_page(png=b"")
        handler = ScreenshotHandler(PageGuardian(connection, page), fast_config)

        handler.try_begin()
        outcome = await handler.capture()

        assert outcome.data == BLANK_PNG_BASE64
        assert handler.lock.held is False

    @pytest.mark.parametrize("message", ["Target closed", "Protocol error: Session closed. Most likely the page"])
    async def test_teardown_error_recreates_page(self, connection, make_page, fast_config, message):
        page = make_page()
        page.screenshot = AsyncMock(side_effect=Exception(message))
        guardian = PageGuardian(connection, page)
        handler = ScreenshotHandler(guardian, fast_config)

        handler.try_begin()
        outcome = await handler.capture()

        assert outcome.data == BLANK_PNG_BASE64
        connection.new_page.assert_awaited_once()
        assert guardian.page is not page

    async def test_recreate_failure_is_not_surfaced(self, connection, make_page, fast_config):
        page = make_page()
        page.screenshot = AsyncMock(side_effect=Exception("Target closed"))
        connection.new_page = AsyncMock(side_effect=Exception("Browser has been closed"))
        handler = ScreenshotHandler(PageGuardian(connection, page), fast_config)

        handler.try_begin()
        outcome = await handler.capture()

        assert outcome.data == BLANK_PNG_BASE64
        assert handler.lock.held is False

    async def test_dead_page_is_recreated_before_capture(self, connection, make_page, fast_config):
        dead = make_page(closed=True)
        guardian = PageGuardian(connection, dead)
        handler = ScreenshotHandler(guardian, fast_config)

        handler.try_begin()
        outcome = await handler.capture()

        dead.screenshot.assert_not_called()
        assert outcome.degraded is False
        assert guardian.page.screenshot.await_count == 1

    async def test_ensure_usable_failure_returns_placeholder(self, connection, make_page, fast_config):
        connection.new_page = AsyncMock(side_effect=Exception("Connection closed"))
        handler = ScreenshotHandler(PageGuardian(connection, make_page(closed=True)), fast_config)

        handler.try_begin()
        outcome = await handler.capture()

        assert outcome.data == BLANK_PNG_BASE64
        assert handler.lock.held is False

    async def test_hung_page_recreation_returns_placeholder(self, connection, make_page, fast_config):
        connection.new_page = AsyncMock(side_effect=_hang)
        handler = ScreenshotHandler(PageGuardian(connection, make_page(closed=True)), fast_config)

        handler.try_begin()
        outcome = await asyncio.wait_for(handler.capture(), timeout=2)

        assert outcome.data == BLANK_PNG_BASE64
        assert outcome.degraded is True
        assert handler.lock.held is False

    async def test_recreation_time_comes_out_of_capture_budget(self, connection, make_page, fast_config):
        fresh = make_page()

        async def _slow_new_page():
            await asyncio.sleep(0.1)
            return fresh

        async def _slow_shot(**kwargs):
            await asyncio.sleep(0.15)
            return b"\x89PNG late"

        connection.new_page = AsyncMock(side_effect=_slow_new_page)
        fresh.screenshot = AsyncMock(side_effect=_slow_shot)
        handler = ScreenshotHandler(PageGuardian(connection, make_page(closed=True)), fast_config)

        handler.try_begin()
        outcome = await handler.capture()

        assert outcome.data == BLANK_PNG_BASE64
        assert "Screenshot timed out" in outcome.error

    async def test_abandoned_capture_is_cancelled(self, connection, make_page, fast_config):
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def _slow(**kwargs):
            started.set()
            try:
                await asyncio.sleep(100)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        page = make_page()
        page.screenshot = AsyncMock(side_effect=_slow)
        handler = ScreenshotHandler(PageGuardian(connection, page), fast_config)

        handler.try_begin()
        await handler.capture()
        await asyncio.wait_for(cancelled.wait(), timeout=1)

        assert started.is_set()
        assert handler.lock.held is False


class TestDiscardResult:
    async def test_consumes_exception(self):
        async def _boom():
            raise RuntimeError("late failure")

        task = asyncio.ensure_future(_boom())
        await asyncio.gather(task, return_exceptions=True)
        _discard_result(task)

    async def test_ignores_cancelled(self):
        task = asyncio.ensure_future(asyncio.sleep(10))
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        _discard_result(task)
