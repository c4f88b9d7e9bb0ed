# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Minimal publish/subscribe channel.

Publishers never wait on subscribers: coroutine handlers are scheduled as
tasks and handler failures are logged, not raised.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscribers(Generic[T]):
    """A list of handlers that receive every published value."""

    def __init__(self) -> None:
        self._handlers: list[Callable[[T], Awaitable[None] | None]] = []
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: Callable[[T], Awaitable[None] | None]) -> Callable[[], None]:
        """Register a handler and return a callable that unregisters it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, value: T) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(value)
            except Exception as e:
                logger.warning(f"Subscriber {handler!r} failed: {e}")
                continue
            if inspect.isawaitable(result):
                self._schedule(result)

    def _schedule(self, awaitable: Awaitable[None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Published from outside the event loop; nothing can run it
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Async subscriber failed: {exc}")

    async def drain(self) -> None:
        """Wait for all scheduled coroutine handlers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
