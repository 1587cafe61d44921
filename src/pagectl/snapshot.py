# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""One-shot capture of a page that is already open in a remote browser.

Unlike the controller this attaches without closing anything: it picks the
most relevant existing page, prints its viewport PNG as base64 on stdout
and detaches.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import sys
from typing import TYPE_CHECKING, TextIO
from urllib.parse import urlsplit, urlunsplit

from .browser_connection import BrowserConnection
from .config import ControllerConfig

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger(__name__)

_BLANK_URLS = ("", "about:blank")


def browser_root_endpoint(endpoint: str) -> str:
    """Strip a page-specific ``/devtools/...`` path to reach the browser root.

    A bare ``ws://host:port`` root is rewritten to ``http://host:port`` so
    the driver can discover the browser WebSocket through ``/json/version``.
    """
    root = endpoint.split("/devtools")[0]
    if root == endpoint:
        return endpoint
    parts = urlsplit(root)
    scheme = {"ws": "http", "wss": "https"}.get(parts.scheme, parts.scheme)
    return urlunsplit((scheme, parts.netloc, parts.path, "", ""))


def pick_page(pages: list[Page]) -> Page | None:
    """First page showing real content, else the last page, else None."""
    for page in pages:
        url = page.url
        if url not in _BLANK_URLS and not url.startswith("chrome://"):
            return page
    if pages:
        logger.warning("All pages blank, using last page")
        return pages[-1]
    return None


async def capture_existing_page(endpoint: str, config: ControllerConfig | None = None) -> str | None:
    """Return a base64 PNG of the most relevant open page, or None if there is none."""
    config = config or ControllerConfig()
    conn = BrowserConnection(browser_root_endpoint(endpoint), config)
    try:
        await conn.connect()
        pages = conn.list_pages()
        logger.info("Found %d pages", len(pages))
        for i, page in enumerate(pages, 1):
            logger.info("  Page %d: %s", i, page.url)
        page = pick_page(pages)
        if page is None:
            return None
        logger.info("Taking screenshot of: %s", page.url)
        raw = await asyncio.wait_for(
            page.screenshot(type="png", full_page=False),
            timeout=config.screenshot_timeout_s,
        )
        return base64.b64encode(raw).decode("ascii")
    finally:
        await conn.disconnect()


async def run_snapshot(
    endpoint: str,
    config: ControllerConfig | None = None,
    *,
    output: TextIO | None = None,
) -> int:
    """CLI body for ``pagectl --snapshot``. Returns the process exit code."""
    output = output or sys.stdout
    try:
        data = await capture_existing_page(endpoint, config)
    except Exception as exc:
        logger.error("Screenshot error: %s", exc, exc_info=True)
        return 1
    if data is None:
        logger.error("No pages found")
        return 1
    logger.info("Screenshot captured (%d chars)", len(data))
    output.write(data + "\n")
    output.flush()
    return 0
