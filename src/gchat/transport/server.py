# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Inbound peer endpoint.

The rendezvous service forwards peer traffic to this server on
``127.0.0.1:<incoming_port>``.

Protocol:
- GET /gchat/health (and /health) - liveness plus this node's address
- POST /gchat/packet (and /packet) - packet ingestion, republished locally
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..core.events import Subscribers

logger = logging.getLogger(__name__)

MAX_PACKET_SIZE = 50 * 1024 * 1024


class PeerServer:
    """aiohttp application serving peer health checks and packet ingestion."""

    def __init__(
        self,
        get_node_id: Callable[[], str | None],
        host: str = "127.0.0.1",
        port: int = 3456,
    ):
        self.host = host
        self.port = port
        self._get_node_id = get_node_id
        self.packets: Subscribers[dict[str, Any]] = Subscribers()

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._running = False

        # Stats
        self.packets_received = 0
        self.packets_rejected = 0

    def create_app(self) -> web.Application:
        app = web.Application(client_max_size=MAX_PACKET_SIZE)
        for path in ("/gchat/health", "/health"):
            app.router.add_get(path, self.handle_health)
        for path in ("/gchat/packet", "/packet"):
            app.router.add_post(path, self.handle_packet)
        return app

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "online", "nodeId": self._get_node_id()})

    async def handle_packet(self, request: web.Request) -> web.Response:
        """Accept a JSON packet and hand it to subscribers without waiting on them."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            self.packets_rejected += 1
            return web.json_response({"status": "error", "code": "invalid_json"}, status=400)

        self.packets_received += 1
        if isinstance(body, dict):
            logger.info(
                f"Packet received from {request.remote}",
                extra={"extra_data": {"type": body.get("type"), "sender": body.get("senderId")}},
            )
        self.packets.publish(body)
        return web.json_response({"status": "received"})

    async def start(self) -> None:
        if self._running:
            logger.warning("Peer server already running")
            return

        self._app = self.create_app()
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        self._running = True
        logger.info(f"Peer server listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.info("Peer server stopped")

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "packets_received": self.packets_received,
            "packets_rejected": self.packets_rejected,
        }
