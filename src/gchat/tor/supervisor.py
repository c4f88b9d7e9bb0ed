# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Tor supervisor - owns the daemon subprocess and the rendezvous service.

Lifecycle::

    STOPPED -> STARTING -> WAITING_FOR_SOCKS_PORT -> BOOTSTRAPPED -> ACTIVE
    ACTIVE -> RESTARTING -> STARTING
    any -> STOPPED (daemon exit, stop(), factory reset)

All process-wide daemon state (subprocess handle, current address,
shutdown flag) lives on :class:`TorSupervisor`. Other components read it
through :meth:`TorSupervisor.subscribe_status` snapshots.

Lifecycle transitions are serialized by an asyncio lock. ``restart()``
aborts an in-flight ``start()`` before taking the lock, so a start that is
still waiting for bootstrap never outlives the restart that replaced it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import shutil
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum, StrEnum
from pathlib import Path
from typing import Any

from ..core.config import NodeSettings
from ..core.events import Subscribers
from ..core.exceptions import ConfigError, GchatError, ValidationError
from ..storage.media import check_plain_name
from .control import CircuitStats, ControlPortMonitor
from .process import kill_stray_processes, probe_port, spawn_tor, terminate
from .torrc import find_tor_binary, write_torrc

logger = logging.getLogger(__name__)

BOOTSTRAP_MARKER = "Bootstrapped 100%"
SERVICE_KEY_FILES = ("hostname", "hs_ed25519_secret_key", "hs_ed25519_public_key")


class SupervisorState(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    WAITING_FOR_SOCKS_PORT = "waiting_for_socks_port"
    BOOTSTRAPPED = "bootstrapped"
    ACTIVE = "active"
    RESTARTING = "restarting"


class SpawnOutcome(Enum):
    """How a single daemon launch ended its startup phase."""

    BOOTSTRAPPED = "bootstrapped"
    PORT_IN_USE = "port_in_use"
    EXITED = "exited"
    ABORTED = "aborted"


@dataclass(frozen=True)
class SupervisorStatus:
    """Immutable snapshot published to subscribers."""

    state: SupervisorState = SupervisorState.STOPPED
    address: str | None = None
    circuits: int = 0
    guards: int = 0

    @property
    def connected(self) -> bool:
        return self.state in (SupervisorState.BOOTSTRAPPED, SupervisorState.ACTIVE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "status": "connected" if self.connected else "disconnected",
            "address": self.address,
            "circuits": self.circuits,
            "guards": self.guards,
        }


def _secure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    if sys.platform != "win32":
        try:
            os.chmod(path, 0o700)
        except OSError as e:
            logger.warning(f"Could not restrict permissions on {path}: {e}")


class TorSupervisor:
    """Starts, watches and restarts the daemon.

    Collaborators that touch the OS (spawning, port probes, killing strays,
    sleeping) are injectable so the lifecycle can be exercised without a
    real daemon.
    """

    def __init__(
        self,
        settings: NodeSettings,
        tor_binary: str | None = None,
        spawn: Callable[[str, Path], Awaitable[Any]] | None = None,
        port_probe: Callable[[str, int], Awaitable[bool]] | None = None,
        kill_strays: Callable[[str], Awaitable[None]] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        control_monitor_factory: Callable[..., ControlPortMonitor] | None = None,
    ):
        self.settings = settings
        self._tor_binary = tor_binary
        self._spawn = spawn or spawn_tor
        self._port_probe = port_probe or probe_port
        self._kill_strays = kill_strays or kill_stray_processes
        self._sleep = sleep or asyncio.sleep
        self._control_monitor_factory = control_monitor_factory or ControlPortMonitor

        self._status = SupervisorStatus()
        self._subscribers: Subscribers[SupervisorStatus] = Subscribers()

        self._lifecycle_lock = asyncio.Lock()
        self._generation = 0
        self._process: Any = None
        self._watch_task: asyncio.Task | None = None
        self._outcome: asyncio.Future[SpawnOutcome] | None = None
        self._monitor: ControlPortMonitor | None = None
        self._restart_task: asyncio.Task | None = None
        self._restarting = False
        self._shutting_down = False

        # Stats
        self.starts = 0
        self.port_conflicts = 0

    # -------------------------------------------------------------------------
    # SNAPSHOTS
    # -------------------------------------------------------------------------

    @property
    def status(self) -> SupervisorStatus:
        return self._status

    @property
    def state(self) -> SupervisorState:
        return self._status.state

    @property
    def address(self) -> str | None:
        return self._status.address

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def tor_binary(self) -> str:
        if self._tor_binary is None:
            self._tor_binary = find_tor_binary(self.settings)
        return self._tor_binary

    def subscribe_status(self, handler: Callable[[SupervisorStatus], Any]) -> Callable[[], None]:
        """Receive a snapshot on every transition; returns an unsubscribe callable."""
        return self._subscribers.subscribe(handler)

    def _publish(self, **changes: Any) -> None:
        self._status = dataclasses.replace(self._status, **changes)
        self._subscribers.publish(self._status)

    def _set_state(self, state: SupervisorState) -> None:
        if state != self._status.state:
            logger.debug(f"Supervisor state: {self._status.state} -> {state}")
            self._publish(state=state)

    def begin_shutdown(self) -> None:
        """Set the shutdown flag; no further restarts or retries are scheduled."""
        if not self._shutting_down:
            logger.info("Shutdown flag set")
        self._shutting_down = True

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._status.to_dict(),
            "starts": self.starts,
            "port_conflicts": self.port_conflicts,
            "pid": getattr(self._process, "pid", None),
            "shutting_down": self._shutting_down,
        }

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the daemon and wait for it to become reachable."""
        async with self._lifecycle_lock:
            await self._start_locked(self._generation)

    async def restart(self) -> None:
        """Kill the current daemon (aborting any start in flight) and start again."""
        if self._shutting_down:
            logger.info("Restart ignored during shutdown")
            return

        self._restarting = True
        try:
            self._generation += 1
            generation = self._generation
            self._set_state(SupervisorState.RESTARTING)
            self._abort_pending()
            await self._stop_monitor()
            await self._terminate_process()

            async with self._lifecycle_lock:
                if generation != self._generation:
                    return
                await self._start_locked(generation)
        finally:
            self._restarting = False

    def request_restart(self) -> asyncio.Task:
        """Schedule :meth:`restart` without waiting for the new bootstrap."""
        self._restart_task = asyncio.create_task(self.restart())
        self._restart_task.add_done_callback(self._log_restart_failure)
        return self._restart_task

    @staticmethod
    def _log_restart_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Restart failed: {exc}")

    async def stop(self) -> None:
        """Stop the daemon. Safe to call in any state."""
        self._generation += 1
        self._abort_pending()
        await self._stop_monitor()
        await self._terminate_process()
        if self._restart_task and not self._restart_task.done():
            self._restart_task.cancel()
        self._publish(state=SupervisorState.STOPPED, circuits=0, guards=0)

    async def _start_locked(self, generation: int) -> None:
        if self._shutting_down:
            logger.info("Start skipped: shutting down")
            return

        binary = self.tor_binary
        conflicts = 0
        while True:
            # Every attempt, retries included, clears daemons left by earlier runs
            await self._kill_strays(Path(binary).name)
            if generation != self._generation:
                return

            _secure_dir(self.settings.tor_data_dir)
            _secure_dir(self.settings.service_dir)

            self._set_state(SupervisorState.STARTING)
            torrc_path = write_torrc(self.settings, binary)
            outcome = await self._launch(binary, torrc_path, generation)

            if outcome == SpawnOutcome.BOOTSTRAPPED:
                break
            if outcome == SpawnOutcome.ABORTED:
                return
            if outcome == SpawnOutcome.EXITED:
                logger.error("Tor exited before bootstrapping")
                await self._terminate_process()
                self._set_state(SupervisorState.STOPPED)
                return

            # Port already bound, most likely by a daemon that is still dying
            self.port_conflicts += 1
            conflicts += 1
            logger.error(f"SOCKS port {self.settings.socks_port} in use")
            await self._terminate_process()
            if conflicts > self.settings.port_conflict_max_retries:
                logger.error("Giving up after repeated SOCKS port conflicts")
                self._set_state(SupervisorState.STOPPED)
                return
            await self._sleep(self.settings.port_conflict_backoff)
            if generation != self._generation or self._shutting_down:
                return

        logger.info("Tor bootstrapped 100%")
        self._set_state(SupervisorState.WAITING_FOR_SOCKS_PORT)
        if not await self._wait_for_socks_port(generation):
            if generation == self._generation:
                logger.error(f"SOCKS port {self.settings.socks_port} never opened")
            return

        self._set_state(SupervisorState.BOOTSTRAPPED)
        await self._poll_address(generation)
        if generation != self._generation:
            return

        self._start_monitor()
        self._set_state(SupervisorState.ACTIVE)

    async def _launch(self, binary: str, torrc_path: Path, generation: int) -> SpawnOutcome:
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[SpawnOutcome] = loop.create_future()
        self._outcome = outcome

        try:
            process = await self._spawn(binary, torrc_path)
        except OSError as e:
            self._outcome = None
            self._set_state(SupervisorState.STOPPED)
            raise ConfigError(f"Failed to launch tor: {e}", path=binary) from e

        if generation != self._generation:
            await terminate(process)
            return SpawnOutcome.ABORTED

        self.starts += 1
        self._process = process
        logger.info(f"Tor launched (pid {getattr(process, 'pid', '?')})")
        self._watch_task = asyncio.create_task(self._watch(process, outcome))
        try:
            return await outcome
        finally:
            if self._outcome is outcome:
                self._outcome = None

    def _abort_pending(self) -> None:
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(SpawnOutcome.ABORTED)

    async def _terminate_process(self) -> None:
        process, self._process = self._process, None
        watch_task, self._watch_task = self._watch_task, None
        if process is not None:
            await terminate(process)
        if watch_task is not None:
            watch_task.cancel()
            try:
                await watch_task
            except asyncio.CancelledError:
                pass

    # -------------------------------------------------------------------------
    # PROCESS OUTPUT
    # -------------------------------------------------------------------------

    async def _watch(self, process: Any, outcome: asyncio.Future[SpawnOutcome]) -> None:
        await asyncio.gather(
            self._read_stream(process.stdout, outcome, is_stderr=False),
            self._read_stream(process.stderr, outcome, is_stderr=True),
        )
        code = await process.wait()
        if not outcome.done():
            # Still starting up; _start_locked decides what happens next
            outcome.set_result(SpawnOutcome.EXITED)
            return
        if outcome.result() != SpawnOutcome.BOOTSTRAPPED:
            return
        if process is self._process and not self._restarting:
            logger.warning(f"Tor exited with code {code}")
            self._process = None
            await self._stop_monitor()
            self._publish(state=SupervisorState.STOPPED, circuits=0, guards=0)

    async def _read_stream(
        self,
        stream: asyncio.StreamReader | None,
        outcome: asyncio.Future[SpawnOutcome],
        is_stderr: bool,
    ) -> None:
        if stream is None:
            return
        conflict_marker = f"Could not bind to 127.0.0.1:{self.settings.socks_port}"
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            if BOOTSTRAP_MARKER in line:
                if not outcome.done():
                    outcome.set_result(SpawnOutcome.BOOTSTRAPPED)
            elif conflict_marker in line:
                if not outcome.done():
                    outcome.set_result(SpawnOutcome.PORT_IN_USE)
            elif is_stderr and not ("NOTICE" in line and "error" not in line.lower()):
                logger.warning(f"tor stderr: {line}")
            else:
                logger.debug(f"tor: {line}")

    # -------------------------------------------------------------------------
    # POST-BOOTSTRAP
    # -------------------------------------------------------------------------

    async def _wait_for_socks_port(self, generation: int) -> bool:
        for _ in range(self.settings.socks_wait_attempts):
            if generation != self._generation:
                return False
            if await self._port_probe("127.0.0.1", self.settings.socks_port):
                return True
            await self._sleep(self.settings.socks_wait_interval)
        return False

    def read_address(self) -> str | None:
        hostname = self.settings.service_dir / "hostname"
        try:
            address = hostname.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        return address or None

    async def _poll_address(self, generation: int) -> str | None:
        for _ in range(self.settings.address_poll_attempts):
            if generation != self._generation:
                return None
            address = self.read_address()
            if address:
                if address != self._status.address:
                    logger.info(f"Service address: {address}")
                self._publish(address=address)
                return address
            await self._sleep(self.settings.address_poll_interval)
        logger.warning("Service hostname was not generated in time")
        return None

    def _start_monitor(self) -> None:
        self._monitor = self._control_monitor_factory(
            port=self.settings.control_port,
            on_stats=self._on_circuit_stats,
            interval=self.settings.circuit_poll_interval,
        )
        self._monitor.start()

    async def _stop_monitor(self) -> None:
        monitor, self._monitor = self._monitor, None
        if monitor is not None:
            await monitor.stop()

    def _on_circuit_stats(self, stats: CircuitStats) -> None:
        self._publish(circuits=stats.circuits, guards=stats.guards)

    # -------------------------------------------------------------------------
    # SERVICE KEYS AND BRIDGES
    # -------------------------------------------------------------------------

    def get_service_keys(self) -> dict[str, bytes]:
        """Export the rendezvous-service key files that exist."""
        keys: dict[str, bytes] = {}
        for name in SERVICE_KEY_FILES:
            path = self.settings.service_dir / name
            if path.is_file():
                keys[name] = path.read_bytes()
        return keys

    def write_service_keys(self, keys: dict[str, bytes]) -> None:
        """Write key files with owner-only permissions.

        Raises:
            ValidationError: If a file name is not a plain file name.
        """
        for name in keys:
            check_plain_name(name, field="filename")
            if name not in SERVICE_KEY_FILES:
                logger.warning(f"Restoring unexpected service file: {name}")

        service_dir = self.settings.service_dir
        _secure_dir(service_dir)
        for name, content in keys.items():
            if not isinstance(content, (bytes, bytearray)):
                raise ValidationError("Key material must be bytes", field=name)
            path = service_dir / name
            path.write_bytes(bytes(content))
            if sys.platform != "win32":
                os.chmod(path, 0o600)
        logger.info(f"Restored {len(keys)} service key file(s)")

    async def restore_service_keys(self, keys: dict[str, bytes]) -> asyncio.Task:
        """Replace the service identity and restart so the daemon picks it up.

        Returns the scheduled restart task.
        """
        await asyncio.to_thread(self.write_service_keys, keys)
        # The address derives from the new key material; forget the old one
        self._publish(address=None)
        return self.request_restart()

    def get_bridges(self) -> str:
        path = self.settings.bridges_path
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    async def save_bridges(self, text: str) -> asyncio.Task:
        """Persist bridge lines and restart to apply them."""
        self.settings.data_root.mkdir(parents=True, exist_ok=True)
        self.settings.bridges_path.write_text(text.strip(), encoding="utf-8")
        logger.info("Bridge configuration saved")
        return self.request_restart()

    # -------------------------------------------------------------------------
    # FACTORY RESET
    # -------------------------------------------------------------------------

    async def factory_reset(self) -> None:
        """Stop the daemon and wipe the whole data root.

        The caller is expected to exit the process afterwards; nothing held
        in memory is valid once this returns.
        """
        logger.warning("FACTORY RESET INITIATED")
        await self.stop()
        try:
            binary_name = Path(self.tor_binary).name
        except ConfigError:
            binary_name = "tor"
        await self._kill_strays(binary_name)

        data_root = self.settings.data_root
        if data_root.exists():
            try:
                await asyncio.to_thread(shutil.rmtree, data_root)
            except OSError as e:
                raise GchatError(f"Failed to wipe data directory: {e}", {"path": str(data_root)}) from e
        self._publish(address=None)
        logger.info("Data directory wiped")
