# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Two-phase shutdown.

The first termination signal sets the shutdown flag and, if UI clients are
connected, asks them to say goodbye to peers; the node then waits for
their confirmation or the grace period. A second signal skips the wait.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

logger = logging.getLogger(__name__)


class ShutdownPhase(StrEnum):
    RUNNING = "running"
    DRAINING = "draining"
    COMPLETE = "complete"


class ShutdownCoordinator:
    """Tracks the shutdown handshake with connected UI clients."""

    def __init__(
        self,
        connected_clients: Callable[[], int],
        notify: Callable[[], Awaitable[None]],
        grace_period: float = 35.0,
        on_begin: Callable[[], None] | None = None,
    ):
        self._connected_clients = connected_clients
        self._notify = notify
        self.grace_period = grace_period
        self._on_begin = on_begin or (lambda: None)

        self.phase = ShutdownPhase.RUNNING
        self.reason: str | None = None
        self._done = asyncio.Event()
        self._ack = asyncio.Event()
        self._drain_task: asyncio.Task | None = None

    @property
    def complete(self) -> bool:
        return self.phase == ShutdownPhase.COMPLETE

    def _begin(self) -> None:
        self.phase = ShutdownPhase.DRAINING
        self._on_begin()

    def _finish(self, reason: str) -> None:
        if self.phase == ShutdownPhase.COMPLETE:
            return
        self.phase = ShutdownPhase.COMPLETE
        self.reason = reason
        self._done.set()
        task = self._drain_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        logger.info(f"Shutdown complete ({reason})")

    def signal(self) -> None:
        """Handle a termination signal (SIGINT/SIGTERM)."""
        if self.phase == ShutdownPhase.COMPLETE:
            return
        if self.phase == ShutdownPhase.DRAINING:
            logger.warning("Second signal received, forcing shutdown")
            self._finish("forced")
            return

        self._begin()
        clients = self._connected_clients()
        if clients == 0:
            self._finish("no clients")
            return

        logger.warning(f"Shutdown requested; waiting up to {self.grace_period:.0f}s for {clients} client(s)")
        self._drain_task = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        try:
            await self._notify()
        except Exception as e:
            logger.warning(f"Failed to notify clients of shutdown: {e}")
        try:
            await asyncio.wait_for(self._ack.wait(), self.grace_period)
        except TimeoutError:
            self._finish("timeout")
            return
        self._finish("acknowledged")

    def prepare(self) -> None:
        """A client announced it is about to shut down; stop retrying."""
        self._on_begin()

    def acknowledge(self) -> None:
        """A client finished notifying its peers."""
        logger.warning("Graceful shutdown confirmed")
        self._ack.set()
        if self.phase == ShutdownPhase.RUNNING:
            # Client-initiated shutdown with no prior signal
            self._begin()
            self._finish("confirmed")

    async def wait(self) -> str | None:
        await self._done.wait()
        return self.reason
