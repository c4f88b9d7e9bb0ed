# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Trusted relay routing for media fetches.

A node never fetches directly from an untrusted origin. Instead it asks its
trusted peers with a ``MEDIA_RELAY_REQUEST``; a peer that has the object
(or can reach the origin) serves it, so the origin only ever sees the
relaying contact's address.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .firewall import PacketType, TrustedPeers

logger = logging.getLogger(__name__)

RELAY_SUPPRESSION_WINDOW = 60.0


class RelayAction(StrEnum):
    SERVE_LOCAL = "serve_local"
    PROXY_FROM_ORIGIN = "proxy_from_origin"
    FORWARD = "forward"
    DROP = "drop"


@dataclass(frozen=True)
class RelayRequest:
    media_id: str
    origin_node: str | None = None
    owner_id: str | None = None
    access_key: str | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> RelayRequest:
        return cls(
            media_id=payload["mediaId"],
            origin_node=payload.get("originNode"),
            owner_id=payload.get("ownerId"),
            access_key=payload.get("accessKey"),
            metadata=payload.get("metadata"),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "mediaId": self.media_id,
            "originNode": self.origin_node,
            "ownerId": self.owner_id,
            "accessKey": self.access_key,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class RelayDecision:
    action: RelayAction
    target: str | None = None
    peers: tuple[str, ...] = ()
    reason: str = ""


@dataclass(frozen=True)
class FetchPlan:
    """How to fetch an object: directly, or through trusted relays."""

    direct: str | None
    relay_peers: tuple[str, ...] = ()
    relay_packet: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "direct": self.direct,
            "relayPeers": list(self.relay_peers),
            "relayPacket": self.relay_packet,
        }


def relay_packet(sender: str, request: RelayRequest, packet_type: str = PacketType.MEDIA_RELAY_REQUEST) -> dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "type": str(packet_type),
        "senderId": sender,
        "payload": request.to_payload(),
    }


@dataclass
class _RelayState:
    metadata: dict[str, Any]
    listeners: set[str] = field(default_factory=set)


class RelayRouter:
    """Decides how to route outbound fetches and inbound relay requests."""

    def __init__(
        self,
        trusted: TrustedPeers,
        suppression_window: float = RELAY_SUPPRESSION_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.trusted = trusted
        self.suppression_window = suppression_window
        self._clock = clock
        self._history: dict[str, float] = {}
        self._relays: dict[str, _RelayState] = {}

    def plan_fetch(self, my_address: str, request: RelayRequest, source: str | None) -> FetchPlan:
        """Plan an outbound fetch of ``request.media_id`` offered by ``source``."""
        if source and source in self.trusted:
            return FetchPlan(direct=source)

        if source:
            logger.info(f"Refusing direct download from untrusted {source}; using trusted relays")
        peers = tuple(sorted(p for p in self.trusted.peers if p != source))
        return FetchPlan(
            direct=None,
            relay_peers=peers,
            relay_packet=relay_packet(my_address, request),
        )

    def decide(
        self,
        sender: str,
        request: RelayRequest,
        has_local: bool,
        can_serve: bool,
        try_origin: bool = True,
    ) -> RelayDecision:
        """Decide what to do with a relay request from ``sender``.

        Args:
            sender: Address the request came from.
            request: The parsed relay request.
            has_local: Whether this node holds the object.
            can_serve: Whether the request's access key opens the object.
            try_origin: Set False after the origin proved unreachable.
        """
        if has_local:
            if can_serve:
                return RelayDecision(RelayAction.SERVE_LOCAL, target=sender)
            return RelayDecision(RelayAction.DROP, reason="access denied")

        if try_origin and request.metadata:
            target = request.origin_node or self.trusted.home_node(request.owner_id)
            if target and target != sender:
                logger.info(f"Proxy: fetching {request.media_id} from {target} for {sender}")
                return RelayDecision(RelayAction.PROXY_FROM_ORIGIN, target=target)

        now = self._clock()
        key = f"{request.media_id}_{sender}"
        last_seen = self._history.get(key)
        if last_seen is not None and now - last_seen < self.suppression_window:
            return RelayDecision(RelayAction.DROP, reason="duplicate")
        self._history[key] = now
        self._prune_history(now)

        state = self._relays.get(request.media_id)
        is_new = state is None
        if state is None:
            if not request.metadata:
                return RelayDecision(RelayAction.DROP, reason="no metadata")
            state = _RelayState(metadata=request.metadata)
            self._relays[request.media_id] = state

        if sender in state.listeners:
            return RelayDecision(RelayAction.DROP, reason="already listening")
        state.listeners.add(sender)
        logger.info(f"Relay: added {sender} to waiting list for {request.media_id}")

        if not is_new:
            return RelayDecision(RelayAction.DROP, reason="relay in progress")

        peers = tuple(sorted(p for p in self.trusted.peers if p != sender))
        if not peers:
            return RelayDecision(RelayAction.DROP, reason="no trusted peers")
        logger.info(f"Relay: forwarding request for {request.media_id} to {len(peers)} peers")
        return RelayDecision(RelayAction.FORWARD, peers=peers)

    def listeners(self, media_id: str) -> frozenset[str]:
        state = self._relays.get(media_id)
        return frozenset(state.listeners) if state else frozenset()

    def complete(self, media_id: str) -> frozenset[str]:
        """Forget a finished relay and return who was waiting for it."""
        state = self._relays.pop(media_id, None)
        return frozenset(state.listeners) if state else frozenset()

    def _prune_history(self, now: float) -> None:
        expired = [k for k, ts in self._history.items() if now - ts >= self.suppression_window]
        for key in expired:
            del self._history[key]
