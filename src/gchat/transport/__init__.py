# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Peer packet transport over the daemon's SOCKS proxy."""

from .client import (
    HEALTH_PATH,
    PACKET_PATH,
    PacketTransport,
    SendResult,
    TransportClients,
    peer_url,
)
from .policy import (
    BULK_POLICY,
    CONTROL_POLICY,
    DEFAULT_POLICIES,
    TrafficClass,
    TrafficPolicy,
)
from .server import PeerServer

__all__ = [
    "HEALTH_PATH",
    "PACKET_PATH",
    "PacketTransport",
    "SendResult",
    "TransportClients",
    "peer_url",
    "BULK_POLICY",
    "CONTROL_POLICY",
    "DEFAULT_POLICIES",
    "TrafficClass",
    "TrafficPolicy",
    "PeerServer",
]
