# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Deterministic identity keys, handles and rendezvous addresses.

A 32-byte seed yields two keypairs:

- an Ed25519 signing keypair created directly from the seed, and
- an X25519 encryption keypair whose secret is the first 32 bytes of
  ``sha512(seed)``.

Keys travel as base64 strings. The signing secret is exported as the
64-byte ``seed || public`` form so it interoperates with NaCl peers.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from ..core.exceptions import InvalidSeed

SEED_SIZE = 32
TRIPCODE_LENGTH = 6

# Rendezvous (v3 onion) address constants
ADDRESS_CHECKSUM_PREFIX = b".onion checksum"
ADDRESS_VERSION = b"\x03"


# =============================================================================
# DATA MODEL
# =============================================================================


@dataclass(frozen=True)
class KeyPair:
    """A base64-encoded keypair."""

    public_key: str
    secret_key: str

    def to_dict(self) -> dict[str, str]:
        return {"publicKey": self.public_key, "secretKey": self.secret_key}


@dataclass(frozen=True)
class Identity:
    """Everything derived from one seed phrase."""

    signing: KeyPair
    encryption: KeyPair
    public_id: str
    tripcode: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "signing": self.signing.to_dict(),
            "encryption": self.encryption.to_dict(),
            "publicId": self.public_id,
            "tripcode": self.tripcode,
        }


# =============================================================================
# HELPERS
# =============================================================================


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: str) -> bytes:
    return base64.b64decode(value, validate=True)


def base32_lower(data: bytes) -> str:
    """Unpadded lowercase RFC 4648 base32."""
    return base64.b32encode(data).decode("ascii").rstrip("=").lower()


def _raw_public(key: Ed25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _signing_key_from_secret(secret_key: str) -> Ed25519PrivateKey:
    raw = _unb64(secret_key)
    # Accept both the 64-byte NaCl form and a bare 32-byte seed
    if len(raw) not in (SEED_SIZE, 2 * SEED_SIZE):
        raise ValueError(f"Signing secret must be 32 or 64 bytes, got {len(raw)}")
    return Ed25519PrivateKey.from_private_bytes(raw[:SEED_SIZE])


# =============================================================================
# DERIVATION
# =============================================================================


def keys_from_seed(seed: bytes) -> tuple[KeyPair, KeyPair]:
    """Derive ``(signing, encryption)`` keypairs from a 32-byte seed."""
    if len(seed) != SEED_SIZE:
        raise InvalidSeed(f"Seed must be {SEED_SIZE} bytes, got {len(seed)}")

    sign_sk = Ed25519PrivateKey.from_private_bytes(seed)
    sign_pk = _raw_public(sign_sk.public_key())
    signing = KeyPair(public_key=_b64(sign_pk), secret_key=_b64(seed + sign_pk))

    enc_seed = hashlib.sha512(seed).digest()[:SEED_SIZE]
    box_sk = X25519PrivateKey.from_private_bytes(enc_seed)
    box_pk = box_sk.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    encryption = KeyPair(public_key=_b64(box_pk), secret_key=_b64(enc_seed))
    return signing, encryption


def identity_from_seed(seed: bytes) -> Identity:
    signing, encryption = keys_from_seed(seed)
    return Identity(
        signing=signing,
        encryption=encryption,
        public_id=signing.public_key,
        tripcode=tripcode(signing.public_key),
    )


def tripcode(public_id: str) -> str:
    """Six lowercase base32 characters of ``sha3_256(public key bytes)``.

    Only meant to tell similar display names apart; it is not a security
    boundary.
    """
    digest = hashlib.sha3_256(_unb64(public_id)).digest()
    return base32_lower(digest)[:TRIPCODE_LENGTH]


def _address_checksum(public_key: bytes) -> bytes:
    return hashlib.sha3_256(ADDRESS_CHECKSUM_PREFIX + public_key + ADDRESS_VERSION).digest()[:2]


def derive_rendezvous_address(public_id: str) -> str:
    """Derive the 56-character rendezvous address (without ``.onion``)."""
    public_key = _unb64(public_id)
    if len(public_key) != 32:
        raise ValueError(f"Public key must be 32 bytes, got {len(public_key)}")
    return base32_lower(public_key + _address_checksum(public_key) + ADDRESS_VERSION)


def verify_rendezvous_address(address: str) -> bool:
    """Check the embedded checksum and version of a rendezvous address."""
    label = address.lower().removesuffix(".onion")
    try:
        raw = base64.b32decode(label.upper())
    except (binascii.Error, ValueError):
        return False
    if len(raw) != 35:
        return False
    public_key, checksum, version = raw[:32], raw[32:34], raw[34:]
    return version == ADDRESS_VERSION and checksum == _address_checksum(public_key)


# =============================================================================
# SIGNATURES
# =============================================================================


def canonicalize(payload: Any) -> bytes:
    """Serialize a payload with its top-level keys sorted.

    Nested objects keep their insertion order. Existing peers sign the
    same shallow form, so changing this breaks verification across
    versions.
    """
    if isinstance(payload, dict):
        payload = {key: payload[key] for key in sorted(payload)}
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign(payload: Any, secret_key: str) -> str:
    """Return a base64 detached Ed25519 signature over the canonical payload."""
    key = _signing_key_from_secret(secret_key)
    return _b64(key.sign(canonicalize(payload)))


def verify(payload: Any, signature: str, public_key: str) -> bool:
    """Verify a detached signature. Never raises."""
    try:
        key = Ed25519PublicKey.from_public_bytes(_unb64(public_key))
        key.verify(_unb64(signature), canonicalize(payload))
        return True
    except (InvalidSignature, ValueError, TypeError, binascii.Error):
        return False
