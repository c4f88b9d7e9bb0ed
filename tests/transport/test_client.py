"""Tests for gchat.transport.client - per-class retries through httpx.

Tests cover:
- peer_url() normalization
- Success and non-2xx responses as completed exchanges
- CONTROL retries with growing delays, BULK single attempt
- Shutdown aborts and max_attempts caps
- Whole-attempt timeouts against peers that trickle their response
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from unittest.mock import AsyncMock

import httpx
import pytest

from gchat.core.exceptions import RetryExhausted
from gchat.transport.client import HEALTH_PATH, PacketTransport, SendResult, TransportClients, peer_url
from gchat.transport.policy import BULK_POLICY, CONTROL_POLICY, TrafficClass

ADDRESS = "abcdefghijklmnopqrstuvwxyz234567abcdefghijklmnopqrstuvw"


class Recorder:
    """httpx.MockTransport handler that fails a configured number of times."""

    def __init__(self, failures: int = 0, status: int = 200):
        self.failures = failures
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.requests) <= self.failures:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.status, json={"status": "received"})


class TrickleStream(httpx.AsyncByteStream):
    """Response body that arrives one byte every 0.1s."""

    def __init__(self, chunks: int = 10):
        self.chunks = chunks

    async def __aiter__(self):
        for _ in range(self.chunks):
            await asyncio.sleep(0.1)
            yield b"x"


def trickle(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, stream=TrickleStream())


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
async def clients(recorder):
    clients = TransportClients.create("socks5://127.0.0.1:9990", transport=httpx.MockTransport(recorder))
    yield clients
    await clients.aclose()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def transport(clients, sleep):
    return PacketTransport(clients, sleep=sleep, rand=lambda: 0.0)


# =============================================================================
# TESTS
# =============================================================================


class TestPeerUrl:
    """Tests for peer_url()."""

    def test_bare_address(self):
        assert peer_url(ADDRESS, "/gchat/packet") == f"http://{ADDRESS}.onion/gchat/packet"

    def test_suffixed_address(self):
        assert peer_url(f"{ADDRESS}.onion", "gchat/health") == f"http://{ADDRESS}.onion/gchat/health"

    def test_scheme_and_slash_stripped(self):
        assert peer_url(f" http://{ADDRESS}.onion/ ", "/x") == f"http://{ADDRESS}.onion/x"


class TestTransportClients:
    """Tests for TransportClients."""

    @pytest.mark.asyncio
    async def test_separate_pools(self, clients):
        assert clients.control is not clients.bulk
        assert clients.for_class(TrafficClass.CONTROL) is clients.control
        assert clients.for_class(TrafficClass.BULK) is clients.bulk

    @pytest.mark.asyncio
    async def test_timeouts_per_class(self, clients):
        assert clients.control.timeout.read == 30.0
        assert clients.bulk.timeout.read == 600.0


class TestSend:
    """Tests for PacketTransport.send()."""

    @pytest.mark.asyncio
    async def test_success(self, transport, recorder):
        result = await transport.send_packet(ADDRESS, {"type": "CHAT_MESSAGE"})

        assert result == SendResult(ok=True, status=200, attempts=1)
        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"http://{ADDRESS}.onion/gchat/packet"
        assert json.loads(request.content) == {"type": "CHAT_MESSAGE"}

    @pytest.mark.asyncio
    async def test_http_error_is_completed_exchange(self, transport, recorder, sleep):
        recorder.status = 503

        result = await transport.send_packet(ADDRESS, {"type": "PING"})

        assert result.ok is False
        assert result.status == 503
        assert len(recorder.requests) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_control_retries_with_backoff(self, transport, recorder, sleep):
        recorder.failures = 2

        result = await transport.send_packet(ADDRESS, {"type": "PING"})

        assert result.ok
        assert result.attempts == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
        assert transport.retries == 2

    @pytest.mark.asyncio
    async def test_control_exhausted(self, transport, recorder):
        recorder.failures = 10

        with pytest.raises(RetryExhausted) as exc_info:
            await transport.send_packet(ADDRESS, {"type": "PING"})

        assert exc_info.value.attempts == 3
        assert len(recorder.requests) == 3
        assert transport.failures == 1

    @pytest.mark.asyncio
    async def test_bulk_single_attempt(self, transport, recorder, sleep):
        recorder.failures = 1

        with pytest.raises(RetryExhausted):
            await transport.send_packet(ADDRESS, {"type": "MEDIA"}, traffic=TrafficClass.BULK)

        assert len(recorder.requests) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_max_attempts_caps_policy(self, transport, recorder):
        recorder.failures = 10

        with pytest.raises(RetryExhausted):
            await transport.send_packet(ADDRESS, {"type": "PING"}, max_attempts=1)

        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_max_attempts_never_exceeds_policy(self, transport, recorder):
        recorder.failures = 10

        with pytest.raises(RetryExhausted):
            await transport.send_packet(ADDRESS, {"type": "PING"}, max_attempts=10)

        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_aborts_during_shutdown(self, clients, recorder, sleep):
        transport = PacketTransport(clients, is_shutting_down=lambda: True, sleep=sleep)
        recorder.failures = 10

        result = await transport.send_packet(ADDRESS, {"type": "PING"})

        assert result.aborted
        assert result.ok is False
        assert len(recorder.requests) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ping_uses_get(self, transport, recorder):
        result = await transport.ping(ADDRESS)

        assert result.ok
        assert recorder.requests[0].method == "GET"
        assert recorder.requests[0].url.path == HEALTH_PATH

    @pytest.mark.asyncio
    async def test_stats(self, transport, recorder):
        recorder.failures = 1
        await transport.send_packet(ADDRESS, {"type": "PING"})

        assert transport.get_stats() == {"requests_sent": 2, "retries": 1, "failures": 0}

    def test_result_to_dict(self):
        assert SendResult(ok=True, status=200, attempts=1).to_dict() == {
            "ok": True,
            "status": 200,
            "attempts": 1,
            "aborted": False,
        }


class TestAttemptTimeout:
    """The class timeout bounds a whole attempt, not each read."""

    @pytest.fixture
    def policies(self):
        return {
            TrafficClass.CONTROL: replace(CONTROL_POLICY, timeout=0.2),
            TrafficClass.BULK: replace(BULK_POLICY, timeout=0.2),
        }

    @pytest.fixture
    async def slow_clients(self, policies):
        clients = TransportClients.create(
            "socks5://127.0.0.1:9990", policies=policies, transport=httpx.MockTransport(trickle)
        )
        yield clients
        await clients.aclose()

    @pytest.mark.asyncio
    async def test_trickling_peer_exhausts_retries(self, slow_clients, policies, sleep):
        transport = PacketTransport(slow_clients, policies=policies, sleep=sleep, rand=lambda: 0.0)
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(RetryExhausted) as exc_info:
            await transport.send_packet(ADDRESS, {"type": "PING"})

        # Each attempt would take a full second without the deadline
        assert loop.time() - started < 1.5
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.cause, TimeoutError)
        assert "TimeoutError" in exc_info.value.message
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_trickling_ping_reports_failure(self, slow_clients, policies, sleep):
        transport = PacketTransport(slow_clients, policies=policies, sleep=sleep)

        with pytest.raises(RetryExhausted) as exc_info:
            await transport.ping(ADDRESS)

        assert exc_info.value.attempts == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_during_shutdown_aborts(self, slow_clients, policies, sleep):
        transport = PacketTransport(slow_clients, policies=policies, is_shutting_down=lambda: True, sleep=sleep)

        result = await transport.send_packet(ADDRESS, {"type": "PING"})

        assert result.aborted
        assert result.attempts == 1
