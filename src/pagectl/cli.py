# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""pagectl entry point: one controller process per remote browser session.

Usage:
    pagectl <endpoint> [--log-level LEVEL] [--json-logs]
    pagectl --snapshot <endpoint>

Exit codes: 0 after ``close`` or end of input, 1 on a fatal startup error
(missing endpoint, attach failure).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import suppress
from dataclasses import replace

from . import protocol
from .browser_connection import BrowserConnection
from .config import ControllerConfig
from .controller import SessionController
from .errors import ConnectError
from .logging_config import configure as configure_logging
from .page_guardian import PageGuardian
from .transport import Transport, open_stdio

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pagectl",
        description="Drive one remote headless-browser session over a line-oriented JSON protocol.",
    )
    parser.add_argument(
        "endpoint",
        nargs="?",
        default="",
        help="Remote browser debugging endpoint (ws://... or http://...)",
    )
    parser.add_argument(
        "--snapshot",
        action="store_true",
        default=False,
        help="Print a base64 PNG of the most relevant existing page and exit",
    )
    parser.add_argument("--log-level", default=None, help="Diagnostics level (default: INFO)")
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=None,
        help="Write diagnostics as JSON lines on stderr",
    )
    return parser.parse_args(argv)


def _install_signal_handlers(task: asyncio.Future) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, task.cancel)


async def run_controller(
    endpoint: str,
    config: ControllerConfig | None = None,
    *,
    transport: Transport | None = None,
) -> int:
    """Attach, announce ``ready``, serve commands. Returns the process exit code."""
    config = config or ControllerConfig()
    if transport is None:
        transport = await open_stdio()

    try:
        connection, page = await BrowserConnection.attach(endpoint, config)
    except ConnectError as exc:
        logger.error("Fatal error: %s", exc)
        transport.write(protocol.error(str(exc)))
        return EXIT_FATAL

    controller = SessionController(transport, connection, PageGuardian(connection, page), config)
    serve = asyncio.ensure_future(controller.serve())
    _install_signal_handlers(serve)
    try:
        await serve
    except asyncio.CancelledError:
        logger.info("Interrupted, shutting down")
    except Exception:
        logger.exception("Controller stopped unexpectedly")
        return EXIT_FATAL
    finally:
        await connection.disconnect()
    logger.info("Browser disconnected, exiting")
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    config = ControllerConfig.from_env()
    if args.log_level:
        config = replace(config, log_level=args.log_level.upper())
    if args.json_logs:
        config = replace(config, json_logs=True)
    configure_logging(json_output=config.json_logs, level=config.log_level)

    endpoint = args.endpoint.strip()
    if not endpoint:
        logger.error("No browser endpoint provided")
        print("Usage: pagectl <endpoint>", file=sys.stderr)
        sys.exit(EXIT_FATAL)

    if args.snapshot:
        from .snapshot import run_snapshot

        sys.exit(asyncio.run(run_snapshot(endpoint, config)))

    sys.exit(asyncio.run(run_controller(endpoint, config)))


if __name__ == "__main__":
    main()
