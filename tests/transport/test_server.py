"""Tests for gchat.transport.server - the inbound peer endpoint."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from gchat.transport.server import PeerServer


@pytest.fixture
def server():
    return PeerServer(get_node_id=lambda: "abcdefghijklmnop.onion", port=0)


def _request(body=None, error: Exception | None = None) -> MagicMock:
    request = MagicMock()
    request.remote = "127.0.0.1"
    request.json = AsyncMock(side_effect=error) if error else AsyncMock(return_value=body)
    return request


class TestRoutes:
    """Tests for the application's routes."""

    def test_paths(self, server):
        app = server.create_app()
        paths = {route.resource.canonical for route in app.router.routes()}
        assert {"/gchat/health", "/health", "/gchat/packet", "/packet"} <= paths


class TestHealth:
    """Tests for GET /gchat/health."""

    @pytest.mark.asyncio
    async def test_reports_node_id(self, server):
        response = await server.handle_health(MagicMock())

        assert response.status == 200
        assert json.loads(response.text) == {"status": "online", "nodeId": "abcdefghijklmnop.onion"}

    @pytest.mark.asyncio
    async def test_node_id_unknown(self):
        server = PeerServer(get_node_id=lambda: None)

        response = await server.handle_health(MagicMock())

        assert json.loads(response.text)["nodeId"] is None


class TestPacket:
    """Tests for POST /gchat/packet."""

    @pytest.mark.asyncio
    async def test_publishes_packet(self, server):
        received = []
        server.packets.subscribe(received.append)
        packet = {"type": "CHAT_MESSAGE", "senderId": "peer"}

        response = await server.handle_packet(_request(packet))

        assert response.status == 200
        assert json.loads(response.text) == {"status": "received"}
        assert received == [packet]
        assert server.packets_received == 1

    @pytest.mark.asyncio
    async def test_invalid_json(self, server):
        received = []
        server.packets.subscribe(received.append)

        response = await server.handle_packet(_request(error=json.JSONDecodeError("bad", "{", 0)))

        assert response.status == 400
        assert json.loads(response.text)["code"] == "invalid_json"
        assert received == []
        assert server.packets_rejected == 1

    @pytest.mark.asyncio
    async def test_slow_subscriber_does_not_block(self, server):
        started = []

        async def slow(packet):
            started.append(packet)
            await asyncio.sleep(0)

        server.packets.subscribe(slow)

        response = await server.handle_packet(_request({"type": "X"}))

        assert response.status == 200
        await server.packets.drain()
        assert started == [{"type": "X"}]


class TestLifecycle:
    """Tests for start()/stop()."""

    @pytest.mark.asyncio
    async def test_start_stop(self, server):
        await server.start()
        assert server.get_stats()["running"] is True

        await server.stop()
        assert server.get_stats() == {"running": False, "packets_received": 0, "packets_rejected": 0}

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, server):
        await server.stop()
        assert server.get_stats()["running"] is False
