"""Global test fixtures for the gchat test suite."""

from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from gchat.core.config import NodeSettings, clear_settings_cache
from gchat.node import GchatNode
from gchat.storage.store import InMemoryNodeStore
from gchat.tor.supervisor import SupervisorState, SupervisorStatus
from gchat.transport.client import TransportClients


@pytest.fixture(autouse=True)
def reset_settings():
    """Never let one test's settings leak into another."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all GCHAT_ environment variables."""
    for key in list(os.environ.keys()):
        if key.startswith("GCHAT_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings(tmp_path: Path) -> NodeSettings:
    """Settings rooted in a temporary data directory with fast polling."""
    return NodeSettings(
        data_root=tmp_path / "gchat",
        tor_binary="/opt/tor/tor",
        socks_wait_attempts=3,
        socks_wait_interval=0.0,
        address_poll_attempts=3,
        address_poll_interval=0.0,
        port_conflict_backoff=0.0,
        circuit_poll_interval=0.01,
        shutdown_grace_period=0.2,
    )


@pytest.fixture
def store() -> InMemoryNodeStore:
    return InMemoryNodeStore()


class FakeSeedCodec:
    """Seed codec that accepts any phrase and hashes it to a seed."""

    def __init__(self, valid: bool = True):
        self.valid = valid

    def validate(self, words) -> bool:
        return self.valid

    def to_seed(self, words) -> bytes:
        return hashlib.sha256(" ".join(words).encode("utf-8")).digest()


@pytest.fixture
def fake_codec() -> FakeSeedCodec:
    return FakeSeedCodec()


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way the test found it."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    filters = {handler: handler.filters[:] for handler in handlers}
    level = root.level
    yield root
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        handler.filters = filters[handler]
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


# =============================================================================
# NODE FIXTURES
# =============================================================================


class PeerNetwork:
    """httpx.MockTransport handler standing in for every remote peer."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.offline: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host.removesuffix(".onion") in self.offline:
            raise httpx.ConnectError("host unreachable", request=request)
        if request.method == "GET":
            return httpx.Response(200, json={"status": "online"})
        return httpx.Response(200, json={"status": "received"})

    def packets_to(self, address: str) -> list[dict]:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.method == "POST" and r.url.host == f"{address}.onion"
        ]


@pytest.fixture
def network() -> PeerNetwork:
    return PeerNetwork()


@pytest.fixture
def supervisor():
    """A TorSupervisor double in the ACTIVE state."""
    sup = MagicMock()
    sup.address = "selfaddress"
    sup.status = SupervisorStatus(SupervisorState.ACTIVE, address="selfaddress", circuits=3, guards=1)
    sup.shutting_down = False
    sup.get_service_keys.return_value = {"hostname": b"selfaddress.onion\n"}
    sup.get_bridges.return_value = ""
    sup.restore_service_keys = AsyncMock()
    sup.save_bridges = AsyncMock()
    sup.factory_reset = AsyncMock()
    sup.start = AsyncMock()
    sup.stop = AsyncMock()
    return sup


@pytest.fixture
async def node(settings, store, supervisor, network):
    clients = TransportClients.create(settings.socks_proxy_url, transport=httpx.MockTransport(network))
    node = GchatNode(settings=settings, store=store, supervisor=supervisor, clients=clients)
    node.transport._sleep = AsyncMock()
    node.media.prepare()
    yield node
    await clients.aclose()
