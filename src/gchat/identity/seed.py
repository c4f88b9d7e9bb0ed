# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Seed phrase handling.

The wordlist algorithm lives behind :class:`SeedPhraseCodec`; this module
only enforces the phrase shape and turns a validated phrase into keys.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from ..core.exceptions import InvalidSeed
from .keys import SEED_SIZE, Identity, identity_from_seed

SEED_WORD_COUNT = 12


@runtime_checkable
class SeedPhraseCodec(Protocol):
    """Wordlist-backed phrase validation and seed extraction."""

    def validate(self, words: Sequence[str]) -> bool: ...

    def to_seed(self, words: Sequence[str]) -> bytes: ...


class Bip39SeedCodec:
    """BIP39 codec backed by the ``mnemonic`` package.

    The signing seed is the first 32 bytes of the BIP39 seed (empty
    passphrase).
    """

    def __init__(self, language: str = "english") -> None:
        from mnemonic import Mnemonic

        self._mnemonic = Mnemonic(language)

    def validate(self, words: Sequence[str]) -> bool:
        return bool(self._mnemonic.check(" ".join(words)))

    def to_seed(self, words: Sequence[str]) -> bytes:
        return self._mnemonic.to_seed(" ".join(words))[:SEED_SIZE]

    def generate(self) -> list[str]:
        """Generate a fresh 12-word phrase (128 bits of entropy)."""
        return self._mnemonic.generate(strength=128).split()


def normalize_words(words: Sequence[str] | str) -> list[str]:
    if isinstance(words, str):
        words = words.split()
    return [w.strip().lower() for w in words if w.strip()]


def derive_keys(words: Sequence[str] | str, codec: SeedPhraseCodec) -> Identity:
    """Derive a full identity from a 12-word seed phrase.

    Raises:
        InvalidSeed: If the phrase is not 12 words or the codec rejects it.
    """
    normalized = normalize_words(words)
    if len(normalized) != SEED_WORD_COUNT:
        raise InvalidSeed(
            f"Seed phrase must have {SEED_WORD_COUNT} words, got {len(normalized)}",
            {"word_count": len(normalized)},
        )
    if not codec.validate(normalized):
        raise InvalidSeed("Seed phrase failed wordlist validation")

    seed = codec.to_seed(normalized)
    if len(seed) < SEED_SIZE:
        raise InvalidSeed(f"Codec produced a {len(seed)}-byte seed")
    return identity_from_seed(bytes(seed[:SEED_SIZE]))
