# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Attachment to a remote browser over its CDP endpoint.

The controller owns its attachment, never the browser: ``disconnect()``
drops the CDP link and leaves the remote Chromium running.
"""

from __future__ import annotations

import logging
from contextlib import suppress

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .config import ControllerConfig
from .errors import ConnectError

logger = logging.getLogger(__name__)


class BrowserConnection:
    """Zero-or-one live attachment to a Session Endpoint."""

    def __init__(
        self,
        endpoint: str,
        config: ControllerConfig | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.config = config or ControllerConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

    @classmethod
    async def attach(cls, endpoint: str, config: ControllerConfig | None = None) -> tuple[BrowserConnection, Page]:
        """Attach to ``endpoint``, close every pre-existing page, open one fresh page.

        Returns the connection and its first Active Page.

        Raises:
            ConnectError: endpoint is empty, or the attach itself failed.
        """
        if not endpoint:
            raise ConnectError("No browser endpoint provided")
        conn = cls(endpoint, config)
        try:
            await conn.connect()
            await conn.close_existing_pages()
            page = await conn.new_page()
        except ConnectError:
            await conn.disconnect()
            raise
        except Exception as exc:
            await conn.disconnect()
            raise ConnectError(str(exc)) from exc
        logger.info("Created new page: %s", page.url)
        return conn, page

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def connect(self) -> None:
        """Open the CDP link and pick the browser's default context."""
        logger.info("Connecting to browser: %s", self.endpoint)
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.connect_over_cdp(
            self.endpoint,
            timeout=self.config.connect_timeout_ms,
        )
        contexts = self._browser.contexts
        if contexts:
            self._context = contexts[0]
        else:
            self._context = await self._browser.new_context(viewport=self.config.viewport)
        logger.info("Connected to browser (contexts=%d)", len(contexts))

    def list_pages(self) -> list[Page]:
        """All pages currently open on the remote side, across contexts."""
        if self._browser is None:
            return []
        return [page for context in self._browser.contexts for page in context.pages]

    async def close_existing_pages(self) -> int:
        """Close every open page; individual failures are logged and skipped.

        Returns the number of pages closed.
        """
        pages = self.list_pages()
        logger.info("Found %d existing pages", len(pages))
        closed = 0
        for page in pages:
            url = page.url
            try:
                await page.close()
            except Exception as exc:
                logger.warning("Error closing page %s: %s", url, exc)
                continue
            closed += 1
            logger.info("Closed existing page: %s", url)
        return closed

    async def new_page(self) -> Page:
        """Create a page in the attached context with the fixed viewport."""
        if self._context is None:
            raise ConnectError("Browser connection not attached")
        page = await self._context.new_page()
        await page.set_viewport_size(self.config.viewport)
        return page

    async def disconnect(self) -> None:
        """Drop the attachment. Safe to call twice and on a dead connection."""
        if self._browser is not None:
            # For CDP-attached browsers close() detaches and leaves Chromium running
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        self._context = None
        if self._playwright is not None:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
            logger.info("Browser disconnected")
