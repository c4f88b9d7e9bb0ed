# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Node ownership: the first identity on a node owns it, later ones are guests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..storage.store import NodeStore

logger = logging.getLogger(__name__)

OWNER_KEY = "gchat_node_owner"
PROFILE_REGISTRY_KEY = "gchat_profile_registry"


class OwnershipRole(StrEnum):
    OWNER = "owner"
    GUEST = "guest"
    UNSET = "unset"


def resolve_ownership(public_id: str, owner_id: str | None) -> OwnershipRole:
    """Compare a freshly derived identity against the stored owner slot."""
    if not owner_id:
        return OwnershipRole.UNSET
    if owner_id == public_id:
        return OwnershipRole.OWNER
    return OwnershipRole.GUEST


@dataclass
class OwnershipResult:
    """Outcome of logging an identity into this node."""

    role: OwnershipRole
    owner_id: str | None
    claimed: bool = False
    guest_name: str | None = None

    @property
    def is_owner(self) -> bool:
        return self.role == OwnershipRole.OWNER

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "ownerId": self.owner_id,
            "claimed": self.claimed,
            "guestName": self.guest_name,
        }


class NodeOwnership:
    """Create-once, compare-afterwards owner slot backed by the node store."""

    def __init__(self, store: NodeStore):
        self.store = store

    async def get_owner(self) -> str | None:
        owner = await self.store.kv_get(OWNER_KEY)
        return owner if isinstance(owner, str) and owner else None

    async def login(self, public_id: str, claim: bool = True) -> OwnershipResult:
        """Resolve ``public_id`` and claim the slot when it is empty.

        Guests get the display name they last used on this node, if the
        profile registry has one.
        """
        owner_id = await self.get_owner()
        role = resolve_ownership(public_id, owner_id)

        if role == OwnershipRole.UNSET:
            if not claim:
                return OwnershipResult(role=role, owner_id=None)
            await self.store.kv_set(OWNER_KEY, public_id)
            logger.info(f"Node ownership claimed by {public_id[:12]}...")
            return OwnershipResult(role=OwnershipRole.OWNER, owner_id=public_id, claimed=True)

        if role == OwnershipRole.GUEST:
            return OwnershipResult(
                role=role,
                owner_id=owner_id,
                guest_name=await self.guest_name(public_id),
            )

        return OwnershipResult(role=role, owner_id=owner_id)

    async def guest_name(self, public_id: str) -> str | None:
        registry = await self.store.kv_get(PROFILE_REGISTRY_KEY) or {}
        if not isinstance(registry, dict):
            return None
        entry = registry.get(public_id)
        if isinstance(entry, dict):
            name = entry.get("displayName")
            return name if isinstance(name, str) else None
        return None

    async def release(self) -> None:
        """Clear the owner slot (used before re-onboarding a node)."""
        await self.store.kv_delete(OWNER_KEY)
