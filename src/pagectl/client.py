# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Caller side of the line protocol: spawn and drive one controller process.

Used by whatever owns the session registry. One ``ControllerProcess`` per
session; commands are strictly one at a time (``asyncio.Lock``), each
waiting for exactly one Response Record.

    ctl = await ControllerProcess.spawn("ws://127.0.0.1:9222/devtools/browser/...")
    url = await ctl.navigate("https://example.com")
    png = await ctl.screenshot()
    await ctl.close()
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import suppress

from . import protocol
from .errors import ControllerBusy, ControllerError

logger = logging.getLogger(__name__)

READY_TIMEOUT = 10.0
COMMAND_TIMEOUT = 30.0
CLOSE_TIMEOUT = 5.0
# base64 screenshots of large viewports run to several MiB per line
MAX_RESPONSE_LINE_BYTES = 10 * 1024 * 1024
_RESPONSE_BUFFER = 10


class ControllerProcess:
    """Handle on a running ``python -m pagectl <endpoint>`` child process."""

    def __init__(self, process: asyncio.subprocess.Process, *, session_id: str = "") -> None:
        self._process = process
        self.session_id = session_id
        self._lock = asyncio.Lock()
        self._responses: asyncio.Queue[dict | None] = asyncio.Queue(maxsize=_RESPONSE_BUFFER)
        self._readers: list[asyncio.Task] = []

    @classmethod
    async def spawn(
        cls,
        endpoint: str,
        *,
        session_id: str = "",
        ready_timeout: float = READY_TIMEOUT,
        python: str | None = None,
        env: dict[str, str] | None = None,
    ) -> ControllerProcess:
        """Start a controller for ``endpoint`` and wait for its ``ready`` record.

        Raises:
            ControllerError: the process reported an error or was not ready in time
                (it is killed in that case).
        """
        try:
            process = await asyncio.create_subprocess_exec(
                python or sys.executable,
                "-m",
                "pagectl",
                endpoint,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=MAX_RESPONSE_LINE_BYTES,
                env=env,
            )
        except OSError as exc:
            raise ControllerError(f"failed to start controller: {exc}") from exc

        ctl = cls(process, session_id=session_id)
        ctl.start_readers()
        try:
            await ctl.wait_ready(ready_timeout)
        except BaseException:
            await ctl.kill()
            raise
        logger.info("Controller connected for session %s", session_id[:8])
        return ctl

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def start_readers(self) -> None:
        self._readers.append(asyncio.ensure_future(self._read_stdout()))
        if self._process.stderr is not None:
            self._readers.append(asyncio.ensure_future(self._read_stderr()))

    async def wait_ready(self, timeout: float = READY_TIMEOUT) -> None:
        try:
            record = await asyncio.wait_for(self._responses.get(), timeout=timeout)
        except TimeoutError:
            raise ControllerError("controller startup timeout") from None
        if record is None:
            raise ControllerError("controller exited before it was ready")
        if record.get("status") != protocol.STATUS_READY:
            raise ControllerError(f"controller failed to initialize: {record.get('message', record)}")

    async def send(self, command: dict, timeout: float = COMMAND_TIMEOUT) -> dict:
        """Write one Command Record and wait for its Response Record.

        Raises:
            ControllerError: write failed, no response within ``timeout``,
                the process exited, or the response status is ``error``.
        """
        async with self._lock:
            self._discard_stale()
            await self._write(command)
            try:
                record = await asyncio.wait_for(self._responses.get(), timeout=timeout)
            except TimeoutError:
                raise ControllerError("command timeout") from None
            if record is None:
                self._mark_exited()
                raise ControllerError("controller exited")
        if record.get("status") == protocol.STATUS_ERROR:
            raise ControllerError(f"controller error: {record.get('message', '')}")
        return record

    async def navigate(self, url: str, timeout: float = COMMAND_TIMEOUT) -> str:
        """Navigate the session's page; returns the URL the page ended up at."""
        record = await self.send({"action": protocol.ACTION_NAVIGATE, "url": url}, timeout)
        return record.get("url", "")

    async def screenshot(self, timeout: float = COMMAND_TIMEOUT) -> bytes:
        """Capture the session's viewport as PNG bytes.

        Raises:
            ControllerBusy: another capture is still in flight; retry later.
        """
        record = await self.send({"action": protocol.ACTION_SCREENSHOT}, timeout)
        if record.get("status") == protocol.STATUS_BUSY:
            raise ControllerBusy("screenshot already in progress")
        return protocol.decode_image(record.get("data", ""))

    async def close(self, timeout: float = CLOSE_TIMEOUT) -> int | None:
        """Ask the controller to disconnect and wait for it to exit."""
        logger.info("Closing controller for session %s", self.session_id[:8])
        async with self._lock:
            with suppress(ControllerError):
                await self._write({"action": protocol.ACTION_CLOSE})
            try:
                await asyncio.wait_for(self._process.wait(), timeout=timeout)
            except TimeoutError:
                logger.warning("Controller did not exit within %ss, killing", timeout)
                await self.kill(timeout)
        await self._stop_readers()
        return self._process.returncode

    async def kill(self, timeout: float = CLOSE_TIMEOUT) -> None:
        if self._process.returncode is None:
            with suppress(ProcessLookupError):
                self._process.kill()
            with suppress(Exception):
                await asyncio.wait_for(self._process.wait(), timeout=timeout)
        await self._stop_readers()

    async def _write(self, command: dict) -> None:
        stdin = self._process.stdin
        if stdin is None:
            raise ControllerError("controller stdin is not a pipe")
        try:
            stdin.write((json.dumps(command) + "\n").encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise ControllerError(f"failed to send command: {exc}") from exc

    def _discard_stale(self) -> None:
        """Drop responses left over from commands that already timed out."""
        while not self._responses.empty():
            record = self._responses.get_nowait()
            if record is None:
                self._mark_exited()
                return
            logger.warning("Discarding stale response: status=%s", record.get("status"))

    def _mark_exited(self) -> None:
        # Keep the EOF marker visible to every later send()
        with suppress(asyncio.QueueFull):
            self._responses.put_nowait(None)

    async def _read_stdout(self) -> None:
        stdout = self._process.stdout
        while True:
            try:
                line = await stdout.readline()
            except ValueError:
                logger.warning("Oversized response line from %s dropped", self.session_id[:8])
                continue
            if not line:
                break
            try:
                record = json.loads(line)
            except ValueError:
                logger.warning("Non-JSON output from controller: %.200s", line)
                continue
            if not isinstance(record, dict):
                continue
            try:
                self._responses.put_nowait(record)
            except asyncio.QueueFull:
                logger.warning("Response buffer full for %s", self.session_id)
        self._mark_exited()

    async def _read_stderr(self) -> None:
        stderr = self._process.stderr
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                continue
            if not line:
                break
            logger.info("CONTROLLER[%s] %s", self.session_id[:8], line.decode(errors="replace").rstrip())

    async def _stop_readers(self) -> None:
        readers, self._readers = self._readers, []
        for task in readers:
            if not task.done():
                task.cancel()
        if readers:
            await asyncio.gather(*readers, return_exceptions=True)
