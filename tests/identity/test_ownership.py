"""Tests for gchat.identity.ownership - owner vs guest resolution."""

from __future__ import annotations

import pytest

from gchat.identity.ownership import (
    OWNER_KEY,
    PROFILE_REGISTRY_KEY,
    NodeOwnership,
    OwnershipRole,
    resolve_ownership,
)

ALICE = "YWxpY2UtcHVibGljLWtleS0zMi1ieXRlcy1sb25nLi4="
BOB = "Ym9iLXB1YmxpYy1rZXktMzItYnl0ZXMtbG9uZy4uLi4="


@pytest.fixture
def ownership(store):
    return NodeOwnership(store)


class TestResolveOwnership:
    """Tests for the pure resolution function."""

    def test_unset(self):
        assert resolve_ownership(ALICE, None) == OwnershipRole.UNSET
        assert resolve_ownership(ALICE, "") == OwnershipRole.UNSET

    def test_owner(self):
        assert resolve_ownership(ALICE, ALICE) == OwnershipRole.OWNER

    def test_guest(self):
        assert resolve_ownership(BOB, ALICE) == OwnershipRole.GUEST


class TestNodeOwnership:
    """Tests for the create-once, compare-afterwards slot."""

    @pytest.mark.asyncio
    async def test_first_login_claims(self, ownership, store):
        result = await ownership.login(ALICE)

        assert result.role == OwnershipRole.OWNER
        assert result.claimed
        assert result.is_owner
        assert await store.kv_get(OWNER_KEY) == ALICE

    @pytest.mark.asyncio
    async def test_second_login_same_identity(self, ownership):
        await ownership.login(ALICE)
        result = await ownership.login(ALICE)

        assert result.role == OwnershipRole.OWNER
        assert not result.claimed

    @pytest.mark.asyncio
    async def test_other_identity_is_guest(self, ownership, store):
        await ownership.login(ALICE)
        result = await ownership.login(BOB)

        assert result.role == OwnershipRole.GUEST
        assert result.owner_id == ALICE
        assert result.guest_name is None
        assert await store.kv_get(OWNER_KEY) == ALICE

    @pytest.mark.asyncio
    async def test_guest_name_from_registry(self, ownership, store):
        await ownership.login(ALICE)
        await store.kv_set(PROFILE_REGISTRY_KEY, {BOB: {"displayName": "Bob"}})

        result = await ownership.login(BOB)

        assert result.guest_name == "Bob"
        assert result.to_dict()["guestName"] == "Bob"

    @pytest.mark.asyncio
    async def test_malformed_registry_is_ignored(self, ownership, store):
        await ownership.login(ALICE)
        await store.kv_set(PROFILE_REGISTRY_KEY, ["not", "a", "dict"])

        assert (await ownership.login(BOB)).guest_name is None

    @pytest.mark.asyncio
    async def test_no_claim(self, ownership, store):
        result = await ownership.login(ALICE, claim=False)

        assert result.role == OwnershipRole.UNSET
        assert await store.kv_get(OWNER_KEY) is None

    @pytest.mark.asyncio
    async def test_release(self, ownership):
        await ownership.login(ALICE)
        await ownership.release()

        assert await ownership.get_owner() is None
        assert (await ownership.login(BOB)).claimed
