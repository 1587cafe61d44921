# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Guardian: keeps the single Active Page usable.

Every handler calls ``ensure_usable()`` before touching the page. The state
check is explicit and synchronous with respect to the dispatcher, which runs
one page-mutating command at a time.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from playwright.async_api import Page

    from .browser_connection import BrowserConnection

logger = logging.getLogger(__name__)


class PageState(enum.Enum):
    ACTIVE = "active"
    STALE = "stale"  # reference exists but the remote side closed it
    ABSENT = "absent"


class PageGuardian:
    """Owns the Active Page reference and replaces it when it dies."""

    def __init__(self, connection: BrowserConnection, page: Page | None = None) -> None:
        self._connection = connection
        self._page = page
        self.replacements = 0

    @property
    def page(self) -> Page | None:
        return self._page

    def state(self) -> PageState:
        if self._page is None:
            return PageState.ABSENT
        if self._page.is_closed():
            return PageState.STALE
        return PageState.ACTIVE

    async def ensure_usable(self, timeout: float | None = None) -> Page:
        """Return the Active Page, recreating it first if it is stale or absent.

        Raises:
            TimeoutError: recreation took longer than ``timeout`` seconds.
        """
        state = self.state()
        if state is PageState.ACTIVE:
            return self._page
        logger.warning("Active page is %s, creating new page", state.value)
        return await asyncio.wait_for(self._replace(), timeout=timeout)

    async def recover(self) -> Page | None:
        """Best-effort replacement after a teardown error.

        The old page is closed if it still claims to be open. Failures are
        logged and None is returned; the next ``ensure_usable()`` retries.
        """
        old = self._page
        if old is not None and not old.is_closed():
            with suppress(Exception):
                await old.close()
        try:
            return await self._replace()
        except Exception as exc:
            logger.error("Failed to recreate page: %s", exc)
            self._page = None
            return None

    async def _replace(self) -> Page:
        page = await self._connection.new_page()
        self._page = page
        self.replacements += 1
        logger.info("Created replacement page (replacements=%d)", self.replacements)
        return page
