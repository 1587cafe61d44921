# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Command Dispatcher: one Response Record per command, in request order.

State machine::

    IDLE ──navigate──▶ PROCESSING ──▶ IDLE
    IDLE ──screenshot─▶ BUSY (capture in flight) ──▶ IDLE
    any  ──close/EOF──▶ TERMINATED

``navigate`` and ``close`` run to completion before the next line is read.
A screenshot capture runs as the single in-flight task while reading
continues, so a second ``screenshot`` can be answered ``busy`` without a
second capture. Anything resolved during a capture is written after the
capture's own response; ``navigate``/``close`` wait for the capture so the
Active Page is never mutated under it. A ``navigate`` arriving mid-capture
can therefore answer up to ``screenshot_timeout_s`` later than its own
budget, which is measured from when the navigate handler starts.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING

import structlog

from . import protocol
from .config import ControllerConfig
from .errors import ProtocolError
from .handlers import NavigateHandler, ScreenshotHandler

if TYPE_CHECKING:
    from .browser_connection import BrowserConnection
    from .page_guardian import PageGuardian
    from .transport import Transport

logger = logging.getLogger(__name__)


class ControllerState(enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    BUSY = "busy"
    TERMINATED = "terminated"


class SessionController:
    """Reads Command Records from a Transport and dispatches them to handlers."""

    def __init__(
        self,
        transport: Transport,
        connection: BrowserConnection,
        guardian: PageGuardian,
        config: ControllerConfig | None = None,
    ) -> None:
        self.config = config or ControllerConfig()
        self._transport = transport
        self._connection = connection
        self.navigator = NavigateHandler(guardian, self.config)
        self.screenshots = ScreenshotHandler(guardian, self.config)
        self.state = ControllerState.IDLE
        self._capture: asyncio.Task | None = None
        self._pending_read: asyncio.Task | None = None
        self._deferred: list[dict] = []
        self._seq = 0

    async def serve(self) -> None:
        """Emit ``ready`` and process commands until ``close`` or end of input."""
        self._transport.write(protocol.ready())
        logger.info("Sent 'ready' signal, listening for commands")
        try:
            while self.state is not ControllerState.TERMINATED:
                try:
                    line = await self._next_line()
                except ProtocolError as exc:
                    logger.error("Unreadable command line: %s", exc)
                    self._respond(protocol.error(str(exc)))
                    continue
                if line is None:
                    logger.info("End of input, closing")
                    await self._close()
                    break
                await self._handle_line(line)
        finally:
            await self._abandon_tasks()

    # ── Reading ──────────────────────────────────────────────────────

    async def _next_line(self) -> str | None:
        if self._pending_read is None:
            self._pending_read = asyncio.ensure_future(self._transport.read_line())
        while self._capture is not None and not self._pending_read.done():
            await asyncio.wait(
                {self._pending_read, self._capture},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if self._capture.done():
                self._finish_capture()
        read, self._pending_read = self._pending_read, None
        return await read

    async def _handle_line(self, line: str) -> None:
        self._seq += 1
        logger.debug("Received command #%d: %.200s", self._seq, line)
        try:
            command = protocol.parse_command(line)
        except ProtocolError as exc:
            logger.error("Command processing error: %s", exc)
            self._respond(protocol.error(str(exc)))
            return
        if not command.is_known:
            logger.warning("Ignoring unknown action: %s", command.action)
            return
        with structlog.contextvars.bound_contextvars(action=command.action, seq=self._seq):
            await self._dispatch(command)

    async def _dispatch(self, command: protocol.Command) -> None:
        if command.action == protocol.ACTION_SCREENSHOT:
            self._start_capture()
        elif command.action == protocol.ACTION_NAVIGATE:
            await self._drain_capture()
            self.state = ControllerState.PROCESSING
            outcome = await self.navigator.navigate(command.url)
            self._respond(protocol.navigated(outcome.url))
            self.state = ControllerState.IDLE
        elif command.action == protocol.ACTION_CLOSE:
            await self._close()

    # ── Screenshot in flight ─────────────────────────────────────────

    def _start_capture(self) -> None:
        if not self.screenshots.try_begin():
            self._respond(protocol.busy())
            return
        self.state = ControllerState.BUSY
        self._capture = asyncio.ensure_future(self.screenshots.capture())

    def _finish_capture(self) -> None:
        task, self._capture = self._capture, None
        outcome = task.result()
        self._transport.write(protocol.screenshot(outcome.data))
        deferred, self._deferred = self._deferred, []
        for record in deferred:
            self._transport.write(record)
        self.state = ControllerState.IDLE

    async def _drain_capture(self) -> None:
        if self._capture is not None:
            await asyncio.wait({self._capture})
            self._finish_capture()

    def _respond(self, record: dict) -> None:
        if self._capture is not None:
            self._deferred.append(record)
        else:
            self._transport.write(record)

    # ── Shutdown ─────────────────────────────────────────────────────

    async def _close(self) -> None:
        await self._drain_capture()
        logger.info("Closing: disconnecting from browser")
        await self._connection.disconnect()
        self.state = ControllerState.TERMINATED

    async def _abandon_tasks(self) -> None:
        for task in (self._pending_read, self._capture):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._pending_read = None
        self._capture = None
