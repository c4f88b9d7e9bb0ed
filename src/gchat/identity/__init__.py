# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Identity derivation, signatures and node ownership."""

from .keys import (
    Identity,
    KeyPair,
    canonicalize,
    derive_rendezvous_address,
    identity_from_seed,
    keys_from_seed,
    sign,
    tripcode,
    verify,
    verify_rendezvous_address,
)
from .ownership import NodeOwnership, OwnershipResult, OwnershipRole, resolve_ownership
from .seed import Bip39SeedCodec, SeedPhraseCodec, derive_keys

__all__ = [
    "Identity",
    "KeyPair",
    "canonicalize",
    "derive_rendezvous_address",
    "identity_from_seed",
    "keys_from_seed",
    "sign",
    "tripcode",
    "verify",
    "verify_rendezvous_address",
    "NodeOwnership",
    "OwnershipResult",
    "OwnershipRole",
    "resolve_ownership",
    "Bip39SeedCodec",
    "SeedPhraseCodec",
    "derive_keys",
]
