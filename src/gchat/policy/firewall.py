# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Inbound packet firewall.

Only packets from trusted peers (contacts' home nodes and manual
connections) pass. A handful of packet types are exempt because their
handlers authenticate them on their own terms.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import StrEnum
from typing import Any

from ..core.events import Subscribers

logger = logging.getLogger(__name__)


class PacketType(StrEnum):
    CONNECTION_REQUEST = "CONNECTION_REQUEST"
    MEDIA_REQUEST = "MEDIA_REQUEST"
    MEDIA_CHUNK = "MEDIA_CHUNK"
    MEDIA_RELAY_REQUEST = "MEDIA_RELAY_REQUEST"
    MEDIA_RECOVERY_FOUND = "MEDIA_RECOVERY_FOUND"


# CONNECTION_REQUEST establishes trust; MEDIA_REQUEST is checked against the
# object's access key; MEDIA_CHUNK must belong to an active download.
UNTRUSTED_ALLOWED: frozenset[str] = frozenset(
    {
        PacketType.CONNECTION_REQUEST,
        PacketType.MEDIA_REQUEST,
        PacketType.MEDIA_CHUNK,
    }
)


def packet_sender(packet: Any) -> str | None:
    if not isinstance(packet, dict):
        return None
    sender = packet.get("senderId") or packet.get("sender")
    return sender if isinstance(sender, str) and sender else None


class TrustedPeers:
    """The local trusted-contact set plus an owner id to home node directory."""

    def __init__(self, peers: Iterable[str] = ()):
        self._peers: set[str] = set(peers)
        self._directory: dict[str, str] = {}

    def __contains__(self, address: object) -> bool:
        return address in self._peers

    def __len__(self) -> int:
        return len(self._peers)

    @property
    def peers(self) -> frozenset[str]:
        return frozenset(self._peers)

    def add(self, address: str) -> None:
        self._peers.add(address)

    def remove(self, address: str) -> bool:
        if address in self._peers:
            self._peers.discard(address)
            logger.info(f"Removed trusted peer: {address}")
            return True
        return False

    def sync_peers(self, addresses: Iterable[str]) -> None:
        """Merge addresses into the set, keeping manual connections."""
        addresses = list(addresses)
        self._peers.update(addresses)
        logger.info(f"Synced {len(addresses)} trusted peers. Total: {len(self._peers)}")

    def sync_contacts(self, contacts: Iterable[dict[str, Any]]) -> None:
        """Trust each contact's first home node and remember it for relay lookups."""
        count = 0
        for contact in contacts:
            count += 1
            home_nodes = contact.get("homeNodes") or []
            if not home_nodes:
                continue
            home = home_nodes[0]
            self._peers.add(home)
            if contact.get("id"):
                self._directory[contact["id"]] = home
        logger.info(f"Synced {count} contacts to directory")

    def home_node(self, owner_id: str | None) -> str | None:
        if not owner_id:
            return None
        return self._directory.get(owner_id)

    def to_dict(self) -> dict[str, Any]:
        return {"peers": sorted(self._peers), "directory": dict(self._directory)}


class Firewall:
    """Filters inbound packets before they reach any handler."""

    def __init__(self, trusted: TrustedPeers):
        self.trusted = trusted
        self.accepted: Subscribers[dict[str, Any]] = Subscribers()
        self.packets_accepted = 0
        self.packets_dropped = 0

    def allows(self, packet: Any) -> bool:
        sender = packet_sender(packet)
        if sender is None:
            return False
        if sender in self.trusted:
            return True
        return packet.get("type") in UNTRUSTED_ALLOWED

    def ingest(self, packet: Any) -> bool:
        """Publish an allowed packet to ``accepted``; drop anything else."""
        if not self.allows(packet):
            self.packets_dropped += 1
            ptype = packet.get("type") if isinstance(packet, dict) else None
            logger.warning(f"Blocked packet {ptype} from untrusted source {packet_sender(packet)}")
            return False
        self.packets_accepted += 1
        self.accepted.publish(packet)
        return True

    def get_stats(self) -> dict[str, int]:
        return {
            "trusted_peers": len(self.trusted),
            "packets_accepted": self.packets_accepted,
            "packets_dropped": self.packets_dropped,
        }
