# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Local control channel between UI clients and the node.

Protocol (JSON text frames over ``GET /ws``):

- request:  ``{"id": ..., "op": "kv:get", "args": {...}}``
- response: ``{"type": "response", "id": ..., "success": true, ...}``
- failure:  ``{"type": "response", "id": ..., "success": false, "error": "..."}``
- event:    ``{"type": "event", "event": "tor-status", "data": {...}}``

Requests are dispatched concurrently, so responses can arrive out of
order; clients match them by ``id``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import WSMsgType, web

from ..core.exceptions import GchatError

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any] | None]]

GENERIC_ERROR = "Internal error"


class ControlChannel:
    """aiohttp WebSocket server that routes operations to registered handlers."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 3001,
        welcome: Callable[[], list[tuple[str, Any]]] | None = None,
    ):
        self.host = host
        self.port = port
        self._welcome = welcome or (lambda: [])
        self._handlers: dict[str, Handler] = {}
        self._clients: set[web.WebSocketResponse] = set()
        self._tasks: set[asyncio.Task] = set()

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._running = False

        # Stats
        self.requests_handled = 0
        self.requests_failed = 0
        self.events_sent = 0

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def operations(self) -> list[str]:
        return sorted(self._handlers)

    def register(self, op: str, handler: Handler) -> None:
        if op in self._handlers:
            raise ValueError(f"Operation already registered: {op}")
        self._handlers[op] = handler

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self.handle_websocket)
        app.router.add_get("/health", self.handle_health)
        return app

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "clients": self.client_count})

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30)
        await ws.prepare(request)
        self._clients.add(ws)
        logger.info(f"Control client connected ({self.client_count} total)")

        try:
            for event, data in self._welcome():
                await ws.send_json(_event(event, data))

            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.warning("Received invalid JSON on control channel")
                        await ws.send_json(_failure(None, "Invalid JSON"))
                        continue
                    if not isinstance(data, dict):
                        await ws.send_json(_failure(None, "Request must be an object"))
                        continue
                    self._spawn(self._respond(ws, data))

                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"Control channel error: {ws.exception()}")
                    break

        finally:
            self._clients.discard(ws)
            logger.info(f"Control client disconnected ({self.client_count} remaining)")

        return ws

    # -------------------------------------------------------------------------
    # DISPATCH
    # -------------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _respond(self, ws: web.WebSocketResponse, request: dict[str, Any]) -> None:
        response = await self.dispatch(request)
        if ws.closed:
            return
        try:
            await ws.send_json(response)
        except ConnectionResetError as e:
            logger.debug(f"Client went away before response to {request.get('op')}: {e}")

    async def dispatch(self, request: dict[str, Any]) -> dict[str, Any]:
        """Run one request and build its response message."""
        request_id = request.get("id")
        op = request.get("op")
        args = request.get("args")
        if args is None:
            args = {}

        handler = self._handlers.get(op) if isinstance(op, str) else None
        if handler is None:
            self.requests_failed += 1
            return _failure(request_id, f"Unknown operation: {op}")
        if not isinstance(args, dict):
            self.requests_failed += 1
            return _failure(request_id, "Arguments must be an object")

        try:
            result = await handler(args)
        except GchatError as e:
            self.requests_failed += 1
            logger.warning(f"Operation {op} failed: {e.message}")
            return _failure(request_id, e.message)
        except Exception:
            self.requests_failed += 1
            logger.exception(f"Unexpected error in operation {op}")
            return _failure(request_id, GENERIC_ERROR)

        self.requests_handled += 1
        return {"type": "response", "id": request_id, "success": True, **(result or {})}

    async def broadcast(self, event: str, data: Any = None) -> int:
        """Push an event to every connected client; returns how many got it."""
        message = _event(event, data)
        delivered = 0
        for ws in list(self._clients):
            if ws.closed:
                self._clients.discard(ws)
                continue
            try:
                await ws.send_json(message)
                delivered += 1
            except ConnectionResetError as e:
                # Logged below INFO so debug-log events cannot feed back into here
                logger.debug(f"Dropping client during {event} broadcast: {e}")
                self._clients.discard(ws)
        self.events_sent += delivered
        return delivered

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.warning("Control channel already running")
            return

        self._app = self.create_app()
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        self._running = True
        logger.info(f"Control channel listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        for ws in list(self._clients):
            try:
                await ws.close()
            except ConnectionResetError:
                pass
        self._clients.clear()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.info("Control channel stopped")

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "clients": self.client_count,
            "requests_handled": self.requests_handled,
            "requests_failed": self.requests_failed,
            "events_sent": self.events_sent,
        }


def _event(event: str, data: Any) -> dict[str, Any]:
    return {"type": "event", "event": event, "data": data}


def _failure(request_id: Any, error: str) -> dict[str, Any]:
    return {"type": "response", "id": request_id, "success": False, "error": error}
