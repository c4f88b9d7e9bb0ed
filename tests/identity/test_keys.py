"""Tests for gchat.identity.keys.

Tests cover:
- Deterministic keypair derivation from a seed
- Tripcode shape and determinism
- Rendezvous address derivation and checksum verification
- Shallow canonicalization
- Detached sign/verify, including tamper detection
"""

from __future__ import annotations

import base64
import hashlib
import re

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from gchat.core.exceptions import InvalidSeed
from gchat.identity.keys import (
    base32_lower,
    canonicalize,
    derive_rendezvous_address,
    identity_from_seed,
    keys_from_seed,
    sign,
    tripcode,
    verify,
    verify_rendezvous_address,
)

# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def seed():
    return hashlib.sha256(b"gchat test seed").digest()


@pytest.fixture
def identity(seed):
    return identity_from_seed(seed)


@pytest.fixture
def other_identity():
    return identity_from_seed(hashlib.sha256(b"someone else").digest())


# =============================================================================
# DERIVATION
# =============================================================================


class TestKeyDerivation:
    """Tests for keys_from_seed / identity_from_seed."""

    def test_deterministic(self, seed):
        assert keys_from_seed(seed) == keys_from_seed(seed)
        assert identity_from_seed(seed) == identity_from_seed(seed)

    def test_public_id_is_signing_public_key(self, identity):
        assert identity.public_id == identity.signing.public_key
        assert len(base64.b64decode(identity.public_id)) == 32

    def test_signing_secret_is_seed_plus_public(self, seed, identity):
        secret = base64.b64decode(identity.signing.secret_key)
        assert secret[:32] == seed
        assert secret[32:] == base64.b64decode(identity.public_id)

    def test_encryption_secret_derives_from_hashed_seed(self, seed, identity):
        assert base64.b64decode(identity.encryption.secret_key) == hashlib.sha512(seed).digest()[:32]

    def test_keypairs_differ(self, identity):
        assert identity.signing.public_key != identity.encryption.public_key

    def test_different_seeds_differ(self, identity, other_identity):
        assert identity.public_id != other_identity.public_id

    @pytest.mark.parametrize("size", [0, 16, 31, 33, 64])
    def test_wrong_seed_size(self, size):
        with pytest.raises(InvalidSeed):
            keys_from_seed(b"\x00" * size)

    def test_to_dict_is_camel_case(self, identity):
        data = identity.to_dict()
        assert set(data) == {"signing", "encryption", "publicId", "tripcode"}
        assert set(data["signing"]) == {"publicKey", "secretKey"}


# =============================================================================
# TRIPCODE
# =============================================================================


class TestTripcode:
    """Tests for tripcode()."""

    def test_shape(self, identity):
        code = tripcode(identity.public_id)
        assert re.fullmatch(r"[a-z2-7]{6}", code)

    def test_matches_definition(self, identity):
        digest = hashlib.sha3_256(base64.b64decode(identity.public_id)).digest()
        expected = base64.b32encode(digest).decode().lower()[:6]
        assert tripcode(identity.public_id) == expected

    def test_identity_carries_tripcode(self, identity):
        assert identity.tripcode == tripcode(identity.public_id)

    def test_deterministic(self, identity):
        assert tripcode(identity.public_id) == tripcode(identity.public_id)


# =============================================================================
# RENDEZVOUS ADDRESS
# =============================================================================


class TestRendezvousAddress:
    """Tests for derive_rendezvous_address / verify_rendezvous_address."""

    def test_shape(self, identity):
        address = derive_rendezvous_address(identity.public_id)
        assert len(address) == 56
        assert re.fullmatch(r"[a-z2-7]{56}", address)
        assert address.endswith("d")  # version byte 0x03

    def test_checksum_verifies(self, identity):
        address = derive_rendezvous_address(identity.public_id)
        assert verify_rendezvous_address(address)
        assert verify_rendezvous_address(f"{address}.onion")

    def test_embeds_public_key(self, identity):
        address = derive_rendezvous_address(identity.public_id)
        raw = base64.b32decode(address.upper())
        assert raw[:32] == base64.b64decode(identity.public_id)
        assert raw[34:] == b"\x03"

    def test_checksum_matches_definition(self, identity):
        public_key = base64.b64decode(identity.public_id)
        checksum = hashlib.sha3_256(b".onion checksum" + public_key + b"\x03").digest()[:2]
        expected = base32_lower(public_key + checksum + b"\x03")
        assert derive_rendezvous_address(identity.public_id) == expected

    def test_tampered_address_fails(self, identity):
        address = derive_rendezvous_address(identity.public_id)
        flipped = ("b" if address[0] != "b" else "c") + address[1:]
        assert not verify_rendezvous_address(flipped)

    @pytest.mark.parametrize("address", ["", "not-base32!", "abcd", "a" * 56])
    def test_garbage_fails(self, address):
        assert not verify_rendezvous_address(address)

    def test_rejects_short_key(self):
        with pytest.raises(ValueError):
            derive_rendezvous_address(base64.b64encode(b"short").decode())


# =============================================================================
# SIGNATURES
# =============================================================================


class TestCanonicalize:
    """Tests for canonicalize()."""

    def test_top_level_keys_sorted(self):
        assert canonicalize({"b": 1, "a": 2}) == b'{"a":2,"b":1}'

    def test_nested_order_preserved(self):
        assert canonicalize({"z": {"y": 1, "x": 2}}) == b'{"z":{"y":1,"x":2}}'

    def test_non_ascii_kept(self):
        assert canonicalize({"name": "Zoë"}) == '{"name":"Zoë"}'.encode()

    def test_non_dict_payload(self):
        assert canonicalize([3, 1]) == b"[3,1]"


class TestSignVerify:
    """Tests for sign() / verify()."""

    def test_round_trip(self, identity):
        payload = {"type": "POST", "body": "hello"}
        signature = sign(payload, identity.signing.secret_key)
        assert verify(payload, signature, identity.public_id)

    def test_key_order_does_not_matter_at_top_level(self, identity):
        signature = sign({"a": 1, "b": 2}, identity.signing.secret_key)
        assert verify({"b": 2, "a": 1}, signature, identity.public_id)

    def test_nested_order_matters(self, identity):
        signature = sign({"a": {"x": 1, "y": 2}}, identity.signing.secret_key)
        assert not verify({"a": {"y": 2, "x": 1}}, signature, identity.public_id)

    def test_signature_is_standard_ed25519(self, identity):
        payload = {"k": "v"}
        signature = base64.b64decode(sign(payload, identity.signing.secret_key))
        key = Ed25519PublicKey.from_public_bytes(base64.b64decode(identity.public_id))
        key.verify(signature, canonicalize(payload))

    def test_accepts_bare_32_byte_secret(self, seed, identity):
        payload = {"k": "v"}
        bare = base64.b64encode(seed).decode()
        assert sign(payload, bare) == sign(payload, identity.signing.secret_key)

    def test_tampered_payload(self, identity):
        signature = sign({"n": 1}, identity.signing.secret_key)
        assert not verify({"n": 2}, signature, identity.public_id)

    def test_tampered_signature(self, identity):
        raw = bytearray(base64.b64decode(sign({"n": 1}, identity.signing.secret_key)))
        raw[0] ^= 0x01
        assert not verify({"n": 1}, base64.b64encode(bytes(raw)).decode(), identity.public_id)

    def test_wrong_key(self, identity, other_identity):
        signature = sign({"n": 1}, identity.signing.secret_key)
        assert not verify({"n": 1}, signature, other_identity.public_id)

    @pytest.mark.parametrize(
        "signature,public_key",
        [
            ("not base64!!", None),
            ("", None),
            (None, "not base64!!"),
            (None, base64.b64encode(b"short").decode()),
        ],
    )
    def test_malformed_input_returns_false(self, identity, signature, public_key):
        good_signature = sign({"n": 1}, identity.signing.secret_key)
        assert not verify(
            {"n": 1},
            good_signature if signature is None else signature,
            identity.public_id if public_key is None else public_key,
        )
