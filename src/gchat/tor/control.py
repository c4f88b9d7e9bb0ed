# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Control-port client that republishes circuit statistics.

Speaks just enough of the control protocol to authenticate with an empty
password and poll ``GETINFO circuit-status``. Connection problems end the
monitor quietly; the supervisor starts a fresh one after the next restart.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..core.exceptions import TransientNetworkError

logger = logging.getLogger(__name__)

_BUILT_RE = re.compile(r"\bBUILT\b")
_GUARD_RE = re.compile(r"GUARD")


@dataclass(frozen=True)
class CircuitStats:
    """Circuit and guard counts from one poll."""

    circuits: int
    guards: int

    def to_dict(self) -> dict[str, Any]:
        return {"circuits": self.circuits, "guards": self.guards, "status": "Active"}


def parse_circuit_status(lines: list[str]) -> CircuitStats:
    """Count built circuits and guard mentions in a circuit-status reply."""
    text = "\n".join(lines)
    return CircuitStats(
        circuits=len(_BUILT_RE.findall(text)),
        guards=len(_GUARD_RE.findall(text)),
    )


async def read_reply(reader: asyncio.StreamReader) -> tuple[str, list[str]]:
    """Read one control reply, returning its status code and all lines.

    Handles ``250-`` continuation lines and ``250+`` data blocks terminated
    by a single ``.``.
    """
    lines: list[str] = []
    while True:
        raw = await reader.readline()
        if not raw:
            raise ConnectionResetError("control connection closed")
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        lines.append(line)
        if len(line) < 4 or not line[:3].isdigit():
            continue
        marker = line[3]
        if marker == " ":
            return line[:3], lines
        if marker == "+":
            while True:
                data = await reader.readline()
                if not data:
                    raise ConnectionResetError("control connection closed")
                text = data.decode("utf-8", errors="replace").rstrip("\r\n")
                if text == ".":
                    break
                lines.append(text)


class ControlPortMonitor:
    """Polls the control port and reports :class:`CircuitStats`."""

    def __init__(
        self,
        port: int,
        on_stats: Callable[[CircuitStats], None],
        interval: float = 5.0,
        host: str = "127.0.0.1",
        open_connection: Callable[..., Awaitable[tuple[asyncio.StreamReader, Any]]] | None = None,
    ):
        self.host = host
        self.port = port
        self.interval = interval
        self._on_stats = on_stats
        self._open_connection = open_connection or asyncio.open_connection
        self._task: asyncio.Task | None = None
        self._running = False
        self.polls = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _command(self, reader: asyncio.StreamReader, writer: Any, command: str) -> tuple[str, list[str]]:
        writer.write(f"{command}\r\n".encode())
        await writer.drain()
        return await read_reply(reader)

    async def _run(self) -> None:
        try:
            reader, writer = await self._open_connection(self.host, self.port)
        except OSError as e:
            logger.debug(f"Control port {self.port} unavailable: {e}")
            return

        try:
            code, lines = await self._command(reader, writer, 'AUTHENTICATE ""')
            if code != "250":
                raise TransientNetworkError(f"Control authentication rejected: {' '.join(lines)}")
            logger.info(f"Control port {self.port} authenticated")

            while self._running:
                code, lines = await self._command(reader, writer, "GETINFO circuit-status")
                if code == "250":
                    self.polls += 1
                    self._on_stats(parse_circuit_status(lines))
                await asyncio.sleep(self.interval)
        except (OSError, TransientNetworkError) as e:
            logger.debug(f"Control monitor stopped: {e}")
        finally:
            writer.close()
