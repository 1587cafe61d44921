# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Transport Channel: newline-delimited records over stdin/stdout.

No business logic. Input lines are handed over raw; Response Records are
written one per line and flushed immediately so the caller never waits on
a buffered response. Diagnostics never go through here (see logging_config).
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TextIO

from .errors import ProtocolError
from .protocol import encode_response

logger = logging.getLogger(__name__)

MAX_COMMAND_LINE_BYTES = 1024 * 1024


class Transport:
    """Line-oriented channel over an asyncio reader and a text output stream."""

    def __init__(self, reader: asyncio.StreamReader, output: TextIO) -> None:
        self._reader = reader
        self._output = output
        self.lines_read = 0
        self.records_written = 0

    async def read_line(self) -> str | None:
        """Return the next input line without its terminator, or None at end of input.

        Raises:
            ProtocolError: the line exceeds the reader limit or is not UTF-8.
        """
        try:
            raw = await self._reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            raw = exc.partial
        except asyncio.LimitOverrunError as exc:
            self.lines_read += 1
            dropped = await self._skip_rest_of_line(exc.consumed)
            raise ProtocolError(f"command line too long: dropped {dropped} bytes") from exc
        if not raw:
            return None
        self.lines_read += 1
        try:
            return raw.decode("utf-8").rstrip("\r\n")
        except UnicodeDecodeError as exc:
            raise ProtocolError(str(exc)) from exc

    async def _skip_rest_of_line(self, consumed: int) -> int:
        # The rest of the line may still be arriving in pipe-sized pieces
        dropped = 0
        while True:
            dropped += len(await self._reader.readexactly(consumed))
            try:
                dropped += len(await self._reader.readuntil(b"\n"))
                return dropped
            except asyncio.IncompleteReadError as exc:
                return dropped + len(exc.partial)
            except asyncio.LimitOverrunError as exc:
                consumed = exc.consumed

    def write(self, record: dict) -> None:
        """Write one Response Record as a single line and flush."""
        self._output.write(encode_response(record) + "\n")
        self._output.flush()
        self.records_written += 1
        logger.debug("Response written: status=%s", record.get("status"))


async def open_stdio() -> Transport:
    """Build a Transport over the process's stdin and stdout."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=MAX_COMMAND_LINE_BYTES)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return Transport(reader, sys.stdout)
