# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Trust and privacy policy: firewall, media access, relay routing."""

from .firewall import UNTRUSTED_ALLOWED, Firewall, PacketType, TrustedPeers, packet_sender
from .media import is_access_allowed
from .relay import FetchPlan, RelayAction, RelayDecision, RelayRequest, RelayRouter, relay_packet

__all__ = [
    "UNTRUSTED_ALLOWED",
    "Firewall",
    "PacketType",
    "TrustedPeers",
    "packet_sender",
    "is_access_allowed",
    "FetchPlan",
    "RelayAction",
    "RelayDecision",
    "RelayRequest",
    "RelayRouter",
    "relay_packet",
]
