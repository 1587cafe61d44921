# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Navigate and Screenshot handlers.

Both handlers degrade instead of failing: a navigation always reports the
URL the page ended up at, a capture always yields valid PNG bytes (the
blank placeholder when the real capture is unavailable). The underlying
failure is caught once here and recorded to diagnostics.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .config import ControllerConfig
from .errors import CaptureError, CaptureTimeout, NavigationError, is_target_closed_error
from .protocol import BLANK_PNG_BASE64

if TYPE_CHECKING:
    from playwright.async_api import Page

    from .page_guardian import PageGuardian

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NavigationOutcome:
    """Where the page is after a navigate command."""

    url: str
    degraded: bool = False
    error: str | None = None


@dataclass(frozen=True, slots=True)
class CaptureOutcome:
    """Base64 PNG produced by a screenshot command."""

    data: str
    degraded: bool = False
    error: str | None = None


def _safe_url(page: Page | None) -> str:
    if page is None:
        return ""
    try:
        return page.url
    except Exception:
        return ""


class NavigateHandler:
    """Single bounded page load, then report the current URL."""

    def __init__(self, guardian: PageGuardian, config: ControllerConfig | None = None) -> None:
        self._guardian = guardian
        self.config = config or ControllerConfig()

    async def navigate(self, url: str | None) -> NavigationOutcome:
        page: Page | None = None
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            page = await self._page_within_budget()
            # recreation and the load share one navigate budget
            spent_ms = int((loop.time() - started) * 1000)
            await self._load(page, url, max(1, self.config.navigate_timeout_ms - spent_ms))
        except Exception as exc:
            # Redirects, timeouts and load errors all degrade the same way
            logger.warning("Navigation error: %s", exc)
            if page is None:
                page = self._guardian.page
            return NavigationOutcome(url=_safe_url(page), degraded=True, error=str(exc))
        current = page.url
        logger.info("Navigated: %s", current)
        return NavigationOutcome(url=current)

    async def _page_within_budget(self) -> Page:
        timeout = self.config.navigate_timeout_ms / 1000
        try:
            return await self._guardian.ensure_usable(timeout=timeout)
        except TimeoutError as exc:
            raise NavigationError(f"Page recreation timed out after {timeout}s") from exc

    async def _load(self, page: Page, url: str | None, timeout_ms: int) -> None:
        if not url:
            raise NavigationError("navigate command has no url")
        logger.info("Starting navigation to: %s", url)
        # hard bound even if the driver never fires its own timeout
        await asyncio.wait_for(
            page.goto(url, wait_until=self.config.wait_until, timeout=timeout_ms),
            timeout=timeout_ms / 1000,
        )
        await asyncio.sleep(self.config.settle_delay_s)


class ScreenshotLock:
    """Single-permit, non-blocking flag scoped to one controller instance."""

    __slots__ = ("_held",)

    def __init__(self) -> None:
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    def release(self) -> None:
        if not self._held:
            raise RuntimeError("ScreenshotLock released while not held")
        self._held = False


def _discard_result(task: asyncio.Task) -> None:
    """Consume the outcome of an abandoned capture so it is never reported."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned capture finished with error: %s", exc)


class ScreenshotHandler:
    """At most one capture in flight; bounded by a timeout; placeholder on failure."""

    def __init__(self, guardian: PageGuardian, config: ControllerConfig | None = None) -> None:
        self._guardian = guardian
        self.config = config or ControllerConfig()
        self.lock = ScreenshotLock()

    def try_begin(self) -> bool:
        """Take the Screenshot Lock. False means the caller must answer ``busy``."""
        acquired = self.lock.try_acquire()
        if acquired:
            logger.debug("Screenshot lock acquired")
        else:
            logger.warning("Screenshot lock is active, skipping")
        return acquired

    async def capture(self) -> CaptureOutcome:
        """Run one capture. Must be preceded by a successful ``try_begin()``.

        Releases the lock exactly once, whatever happens.
        """
        try:
            try:
                loop = asyncio.get_running_loop()
                deadline = loop.time() + self.config.screenshot_timeout_s
                page = await self._page_within_budget()
                logger.info("Taking screenshot of: %s", _safe_url(page))
                raw = await self._capture_within_timeout(page, max(0.0, deadline - loop.time()))
            except Exception as exc:
                logger.warning("Screenshot failed: %s", exc)
                if is_target_closed_error(exc):
                    await self._recover_page()
                return CaptureOutcome(data=BLANK_PNG_BASE64, degraded=True, error=str(exc))
            data = base64.b64encode(raw).decode("ascii")
            logger.info("Screenshot captured (%d chars)", len(data))
            return CaptureOutcome(data=data)
        finally:
            self.lock.release()
            logger.debug("Screenshot lock released")

    async def _page_within_budget(self) -> Page:
        timeout = self.config.screenshot_timeout_s
        try:
            return await self._guardian.ensure_usable(timeout=timeout)
        except TimeoutError as exc:
            raise CaptureTimeout(f"Page recreation timed out after {timeout}s", timeout=timeout) from exc

    async def _recover_page(self) -> None:
        logger.warning("Page session lost, recreating page")
        try:
            await asyncio.wait_for(self._guardian.recover(), timeout=self.config.screenshot_timeout_s)
        except TimeoutError:
            logger.error("Page recreation timed out after %ss", self.config.screenshot_timeout_s)

    async def _capture_within_timeout(self, page: Page, timeout: float) -> bytes:
        shot = asyncio.ensure_future(page.screenshot(type="png", full_page=False))
        try:
            done, _pending = await asyncio.wait({shot}, timeout=timeout)
        except asyncio.CancelledError:
            shot.cancel()
            raise
        if shot not in done:
            shot.cancel()
            shot.add_done_callback(_discard_result)
            raise CaptureTimeout(f"Screenshot timed out after {timeout:.1f}s", timeout=timeout)
        raw = shot.result()
        if not isinstance(raw, bytes | bytearray) or not raw:
            raise CaptureError("Screenshot returned no image data")
        return bytes(raw)
