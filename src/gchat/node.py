# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""GchatNode - wires the node's components together.

Inbound packet path::

    PeerServer.packets -> Firewall.ingest -> Firewall.accepted -> node
        MEDIA_RELAY_REQUEST  handled here (relay routing)
        everything else      pushed to UI clients as ``tor-packet``

Supervisor snapshots are diffed into ``onion-address``, ``tor-status``
and ``tor-stats`` events.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .core.config import NodeSettings, get_settings
from .core.exceptions import GchatError, RetryExhausted, ValidationError
from .core.logging import LogBroadcastHandler, install_node_handlers
from .identity.ownership import NodeOwnership
from .migration.package import MigrationService
from .policy.firewall import Firewall, PacketType, TrustedPeers, packet_sender
from .policy.relay import FetchPlan, RelayAction, RelayRequest, RelayRouter, relay_packet
from .server.channel import ControlChannel
from .server.handlers import ControlHandlers
from .shutdown import ShutdownCoordinator
from .storage.media import MediaStore
from .storage.store import JsonFileNodeStore, NodeStore
from .tor.supervisor import SupervisorStatus, TorSupervisor
from .transport.client import PacketTransport, TransportClients
from .transport.server import PeerServer

logger = logging.getLogger(__name__)

FACTORY_RESET_EXIT_DELAY = 0.5


class GchatNode:
    """A running node: daemon supervisor, peer endpoints and the control channel."""

    def __init__(
        self,
        settings: NodeSettings | None = None,
        store: NodeStore | None = None,
        supervisor: TorSupervisor | None = None,
        clients: TransportClients | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or JsonFileNodeStore(self.settings.data_root)
        self.media = MediaStore(self.settings.media_dir, self.store, self.settings.cache_max_age_days)
        self.supervisor = supervisor or TorSupervisor(self.settings)

        self.clients = clients or TransportClients.create(self.settings.socks_proxy_url)
        self.transport = PacketTransport(self.clients, is_shutting_down=lambda: self.supervisor.shutting_down)

        self.trusted = TrustedPeers()
        self.firewall = Firewall(self.trusted)
        self.relay = RelayRouter(self.trusted)
        self.ownership = NodeOwnership(self.store)
        self.migration = MigrationService(self.store, keys=self.supervisor)

        self.peer_server = PeerServer(
            get_node_id=lambda: self.supervisor.address,
            host="127.0.0.1",
            port=self.settings.incoming_port,
        )
        self.channel = ControlChannel(
            host=self.settings.api_host,
            port=self.settings.api_port,
            welcome=self._welcome,
        )
        self.shutdown = ShutdownCoordinator(
            connected_clients=lambda: self.channel.client_count,
            notify=self._notify_shutdown,
            grace_period=self.settings.shutdown_grace_period,
            on_begin=self.supervisor.begin_shutdown,
        )
        ControlHandlers(self).register(self.channel)

        self.peer_server.packets.subscribe(self.firewall.ingest)
        self.firewall.accepted.subscribe(self._on_packet)
        self.supervisor.subscribe_status(self._on_status)

        self.log_broadcast: LogBroadcastHandler | None = None
        self.exit_code = 0
        self._exit = asyncio.Event()
        self._last_status = SupervisorStatus()
        self._supervisor_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.warning("Node already running")
            return

        self.log_broadcast = install_node_handlers(lambda: self.supervisor.shutting_down)
        self.log_broadcast.entries.subscribe(lambda entry: self.channel.broadcast("debug-log", entry))

        await self.store.init()
        await asyncio.to_thread(self.media.prepare)
        await self.peer_server.start()
        await self.channel.start()
        self._running = True

        self._supervisor_task = asyncio.create_task(self._start_supervisor())
        logger.info(f"Node started (data root {self.settings.data_root})")

    async def _start_supervisor(self) -> None:
        try:
            await self.supervisor.start()
        except GchatError as e:
            logger.error(f"Tor failed to start: {e.message}")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.supervisor.begin_shutdown()

        if self._supervisor_task and not self._supervisor_task.done():
            self._supervisor_task.cancel()
            try:
                await self._supervisor_task
            except asyncio.CancelledError:
                pass
        self._supervisor_task = None

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        await self.supervisor.stop()
        await self.channel.stop()
        await self.peer_server.stop()
        await self.clients.aclose()

        if self.log_broadcast is not None:
            root = logging.getLogger()
            root.removeHandler(self.log_broadcast)
            self.log_broadcast = None
        logger.info("Node stopped")

    def request_exit(self, code: int = 0) -> None:
        self.exit_code = code
        self._exit.set()

    async def run_until_shutdown(self) -> int:
        """Wait for shutdown to complete or an exit request; returns the exit code."""
        waiters = [
            asyncio.create_task(self.shutdown.wait()),
            asyncio.create_task(self._exit.wait()),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await self.stop()
        return self.exit_code

    async def factory_reset(self) -> None:
        """Wipe everything and exit so the launcher can start a fresh node."""
        await self.supervisor.factory_reset()
        loop = asyncio.get_running_loop()
        # Let the reply reach the client before the servers go down
        loop.call_later(FACTORY_RESET_EXIT_DELAY, self.request_exit, 0)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "supervisor": self.supervisor.get_stats(),
            "transport": self.transport.get_stats(),
            "firewall": self.firewall.get_stats(),
            "peer_server": self.peer_server.get_stats(),
            "channel": self.channel.get_stats(),
            "shutdown": self.shutdown.phase.value,
        }

    # -------------------------------------------------------------------------
    # EVENTS
    # -------------------------------------------------------------------------

    def _welcome(self) -> list[tuple[str, Any]]:
        status = self.supervisor.status
        events: list[tuple[str, Any]] = []
        if status.address:
            events.append(("onion-address", status.address))
        events.append(("tor-status", {"status": "connected" if status.connected else "disconnected"}))
        return events

    async def _on_status(self, status: SupervisorStatus) -> None:
        # Diff synchronously so scheduled handlers see snapshots in publish order
        previous, self._last_status = self._last_status, status
        events: list[tuple[str, Any]] = []
        if status.address and status.address != previous.address:
            events.append(("onion-address", status.address))
        if status.connected != previous.connected:
            events.append(("tor-status", {"status": "connected" if status.connected else "disconnected"}))
        if (status.circuits, status.guards) != (previous.circuits, previous.guards):
            events.append(("tor-stats", {"circuits": status.circuits, "guards": status.guards, "status": "Active"}))
        for event, data in events:
            await self.channel.broadcast(event, data)

    async def _notify_shutdown(self) -> None:
        await self.channel.broadcast("system-shutdown-scheduled", {"gracePeriod": self.shutdown.grace_period})

    async def _on_packet(self, packet: dict[str, Any]) -> None:
        if packet.get("type") == PacketType.MEDIA_RELAY_REQUEST:
            await self._handle_relay_request(packet)
            return
        await self.channel.broadcast("tor-packet", packet)

    # -------------------------------------------------------------------------
    # RELAY
    # -------------------------------------------------------------------------

    async def plan_fetch(self, request: RelayRequest, source: str | None) -> FetchPlan:
        """Plan a media fetch and, for untrusted sources, fan out relay requests."""
        my_address = self.supervisor.address
        if not my_address:
            raise GchatError("Node address not available yet")
        plan = self.relay.plan_fetch(my_address, request, source)
        if plan.relay_packet is not None:
            for peer in plan.relay_peers:
                self._spawn(self._send_quietly(peer, plan.relay_packet))
        return plan

    async def complete_relay(self, request: RelayRequest) -> int:
        """Tell every node waiting on ``request.media_id`` that it is available here."""
        listeners = self.relay.complete(request.media_id)
        my_address = self.supervisor.address
        if not my_address:
            return 0
        found = relay_packet(my_address, request, PacketType.MEDIA_RECOVERY_FOUND)
        for listener in listeners:
            self._spawn(self._send_quietly(listener, found))
        return len(listeners)

    async def _handle_relay_request(self, packet: dict[str, Any]) -> None:
        sender = packet_sender(packet)
        try:
            request = RelayRequest.from_payload(packet.get("payload") or {})
            has_local = self.media.exists(request.media_id)
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Malformed relay request from {sender}: {e}")
            return
        can_serve = has_local and await self.media.verify(request.media_id, request.access_key)

        decision = self.relay.decide(sender, request, has_local, can_serve)
        if decision.action == RelayAction.PROXY_FROM_ORIGIN:
            if await self._reachable(decision.target):
                await self.channel.broadcast(
                    "relay-proxy",
                    {"target": decision.target, "requester": sender, "request": request.to_payload()},
                )
                return
            logger.info(f"Origin {decision.target} unreachable; falling back to relay")
            decision = self.relay.decide(sender, request, has_local, can_serve, try_origin=False)

        my_address = self.supervisor.address
        if decision.action == RelayAction.SERVE_LOCAL and my_address:
            found = relay_packet(my_address, request, PacketType.MEDIA_RECOVERY_FOUND)
            await self._send_quietly(sender, found)
        elif decision.action == RelayAction.FORWARD and my_address:
            forward = relay_packet(my_address, request)
            for peer in decision.peers:
                self._spawn(self._send_quietly(peer, forward))
        else:
            logger.debug(f"Relay request for {request.media_id} from {sender} dropped: {decision.reason}")

    async def _reachable(self, target: str | None) -> bool:
        if not target:
            return False
        try:
            result = await self.transport.ping(target)
        except RetryExhausted:
            return False
        return result.ok

    async def _send_quietly(self, target: str, packet: dict[str, Any]) -> None:
        try:
            await self.transport.send_packet(target, packet, max_attempts=1)
        except RetryExhausted as e:
            logger.info(f"Relay packet to {target} not delivered: {e.message}")
