# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Subprocess and socket helpers for driving the daemon."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

STRAY_KILL_SETTLE = 0.5


async def spawn_tor(binary: str, torrc_path: Path) -> asyncio.subprocess.Process:
    """Launch the daemon with its generated config, capturing both streams."""
    return await asyncio.create_subprocess_exec(
        binary,
        "-f",
        str(torrc_path),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


async def kill_stray_processes(binary_name: str, settle: float = STRAY_KILL_SETTLE) -> None:
    """Kill leftover daemon processes from an earlier run.

    Best effort: missing tools and "no process matched" are ignored.
    """
    if sys.platform == "win32":
        return

    for command in (["pkill", "-9", "-x", binary_name], ["killall", "-9", binary_name]):
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError:
            continue
        if await proc.wait() == 0:
            logger.debug(f"Stray {binary_name} processes killed via {command[0]}")
            break

    await asyncio.sleep(settle)


async def probe_port(host: str, port: int, timeout: float = 1.0) -> bool:
    """Whether something accepts TCP connections on ``host:port``."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except (OSError, TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def terminate(process: asyncio.subprocess.Process, timeout: float = 5.0) -> int | None:
    """Terminate a process, escalating to kill if it lingers."""
    if process.returncode is not None:
        return process.returncode
    try:
        process.terminate()
    except ProcessLookupError:
        return process.returncode
    try:
        return await asyncio.wait_for(process.wait(), timeout)
    except TimeoutError:
        logger.warning(f"Process {process.pid} ignored SIGTERM, killing")
        try:
            process.kill()
        except ProcessLookupError:
            pass
        return await process.wait()
