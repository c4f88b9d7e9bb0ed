# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Anonymity daemon supervision."""

from .control import CircuitStats, ControlPortMonitor, parse_circuit_status
from .supervisor import (
    SERVICE_KEY_FILES,
    SupervisorState,
    SupervisorStatus,
    TorSupervisor,
)
from .torrc import build_torrc, find_tor_binary

__all__ = [
    "CircuitStats",
    "ControlPortMonitor",
    "parse_circuit_status",
    "SERVICE_KEY_FILES",
    "SupervisorState",
    "SupervisorStatus",
    "TorSupervisor",
    "build_torrc",
    "find_tor_binary",
]
