"""
Command-line consumer of the live-reload channel.

Usage:
    python -m signup_service.watch
    python -m signup_service.watch --url ws://localhost:3000/ws --command "make restart"

Each ``reload`` broadcast prints a notice and, after the notice delay, runs the
configured command (or only logs when no command is given).
"""

import argparse
import asyncio
import logging
import shlex
import sys
from typing import List, Optional, Set

from .channel_client import ClientStatus, ReloadChannelClient
from .config import get_settings
from .logging_setup import configure_logging

logger = logging.getLogger("signup.watch")


async def run_command(argv: List[str]) -> int:
    proc = await asyncio.create_subprocess_exec(*argv)
    returncode = await proc.wait()
    logger.info("reload_command_done returncode=%s", returncode)
    return returncode


def make_reload_action(command: Optional[str]):
    """Reload callback for the channel client; the command runs as a task so the loop keeps serving the socket."""
    argv: List[str] = shlex.split(command) if command else []
    running: Set[asyncio.Task] = set()

    def _finished(task: asyncio.Task) -> None:
        running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("reload_command_error command=%s error=%s", argv[0], repr(exc))

    def _reload(data: dict) -> None:
        if not argv:
            logger.info("reload_requested reason=%s source=%s", data.get("reason"), data.get("source"))
            return
        logger.info("reload_command_start command=%s reason=%s", argv[0], data.get("reason"))
        task = asyncio.get_running_loop().create_task(run_command(argv))
        running.add(task)
        task.add_done_callback(_finished)

    _reload.running = running
    return _reload


def _print_notice(message: str) -> None:
    print(f"🔄 {message}", file=sys.stderr, flush=True)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    client = ReloadChannelClient(
        args.url or settings.reload_ws_url,
        reload_action=make_reload_action(args.command),
        max_reconnect_attempts=args.max_attempts if args.max_attempts is not None else settings.reload_max_attempts,
        base_delay=settings.reload_base_delay,
        reload_delay=settings.reload_notice_delay,
        notice=_print_notice,
    )
    done = asyncio.Event()

    def _on_disconnected(_data) -> None:
        if client.failed:
            done.set()

    client.on("welcome", lambda data: logger.info("watch_welcome client_id=%s", data.get("clientId")))
    client.on("connected", lambda _data: client.ping())
    client.on("disconnected", _on_disconnected)

    client.connect()
    try:
        await done.wait()
    finally:
        client.close()
    return 0 if client.status == ClientStatus.CONNECTED else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Listen for live-reload broadcasts")
    parser.add_argument("--url", help="WebSocket endpoint (default: RELOAD_WS_URL)")
    parser.add_argument("--command", help="Command to run on each reload")
    parser.add_argument("--max-attempts", type=int, default=None, help="Reconnect attempts before giving up")
    args = parser.parse_args(argv)

    configure_logging()
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
