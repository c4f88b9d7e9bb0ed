"""Tests for gchat.identity.seed.

Tests cover:
- Phrase shape enforcement (exactly 12 words)
- Delegation to the wordlist codec
- Deterministic derivation with the BIP39 adapter
"""

from __future__ import annotations

import hashlib

import pytest

from gchat.core.exceptions import InvalidSeed
from gchat.identity.keys import identity_from_seed
from gchat.identity.seed import SeedPhraseCodec, derive_keys, normalize_words

ABANDON_PHRASE = ["abandon"] * 11 + ["about"]


class TestNormalizeWords:
    """Tests for normalize_words()."""

    def test_splits_string(self):
        assert normalize_words("  Alpha beta\tGAMMA ") == ["alpha", "beta", "gamma"]

    def test_drops_blank_entries(self):
        assert normalize_words(["a", " ", "B "]) == ["a", "b"]


class TestDeriveKeys:
    """Tests for derive_keys() with a fake codec."""

    def test_fake_codec_satisfies_protocol(self, fake_codec):
        assert isinstance(fake_codec, SeedPhraseCodec)

    def test_deterministic(self, fake_codec):
        words = [f"w{i}" for i in range(12)]
        assert derive_keys(words, fake_codec) == derive_keys(words, fake_codec)

    def test_uses_codec_seed(self, fake_codec):
        words = [f"w{i}" for i in range(12)]
        expected = identity_from_seed(hashlib.sha256(" ".join(words).encode()).digest())
        assert derive_keys(words, fake_codec) == expected

    def test_accepts_string_phrase(self, fake_codec):
        words = [f"w{i}" for i in range(12)]
        assert derive_keys(" ".join(words), fake_codec) == derive_keys(words, fake_codec)

    @pytest.mark.parametrize("count", [0, 11, 13, 24])
    def test_wrong_word_count(self, fake_codec, count):
        with pytest.raises(InvalidSeed) as exc_info:
            derive_keys(["word"] * count, fake_codec)
        assert exc_info.value.details == {"word_count": count}

    def test_codec_rejection(self, fake_codec):
        fake_codec.valid = False
        with pytest.raises(InvalidSeed):
            derive_keys(["word"] * 12, fake_codec)

    def test_short_codec_seed(self, fake_codec):
        fake_codec.to_seed = lambda words: b"\x00" * 16
        with pytest.raises(InvalidSeed):
            derive_keys(["word"] * 12, fake_codec)


class TestBip39SeedCodec:
    """Tests for the BIP39 adapter over the mnemonic package."""

    @pytest.fixture
    def codec(self):
        pytest.importorskip("mnemonic")
        from gchat.identity.seed import Bip39SeedCodec

        return Bip39SeedCodec()

    def test_abandon_phrase_is_valid(self, codec):
        assert codec.validate(ABANDON_PHRASE)

    def test_bad_checksum_is_rejected(self, codec):
        assert not codec.validate(["abandon"] * 12)

    def test_same_identity_across_derivations(self, codec):
        first = derive_keys(ABANDON_PHRASE, codec)
        second = derive_keys(list(ABANDON_PHRASE), codec)

        assert first.public_id == second.public_id
        assert first.tripcode == second.tripcode

    def test_seed_is_bip39_prefix(self, codec):
        from mnemonic import Mnemonic

        full = Mnemonic.to_seed(" ".join(ABANDON_PHRASE))
        assert codec.to_seed(ABANDON_PHRASE) == full[:32]

    def test_generate_yields_valid_phrase(self, codec):
        words = codec.generate()
        assert len(words) == 12
        assert codec.validate(words)
        derive_keys(words, codec)

    def test_invalid_phrase_raises(self, codec):
        with pytest.raises(InvalidSeed):
            derive_keys(["abandon"] * 12, codec)
