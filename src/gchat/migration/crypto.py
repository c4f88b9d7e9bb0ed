# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Password-based encryption for migration packages.

PBKDF2-HMAC-SHA256 (100k iterations, 16-byte salt) derives an AES-256-GCM
key; each package gets a fresh salt and a fresh 12-byte IV. Ciphertext is
``ciphertext || tag`` as produced by WebCrypto, so packages built by
browser nodes decrypt here and vice versa.
"""

from __future__ import annotations

import base64
import binascii
import os
import secrets
import string
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..core.exceptions import CryptoError

PBKDF2_ITERATIONS = 100_000
SALT_SIZE = 16
IV_SIZE = 12
KEY_SIZE = 32

PASSPHRASE_LENGTH = 20
PASSPHRASE_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class PasswordEnvelope:
    """Base64 fields as stored in the package manifest."""

    encrypted: str
    salt: str
    iv: str


def generate_passphrase(length: int = PASSPHRASE_LENGTH) -> str:
    return "".join(secrets.choice(PASSPHRASE_ALPHABET) for _ in range(length))


def derive_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt_with_password(data: bytes, password: str) -> PasswordEnvelope:
    salt = os.urandom(SALT_SIZE)
    iv = os.urandom(IV_SIZE)
    ciphertext = AESGCM(derive_key(password, salt)).encrypt(iv, data, None)
    return PasswordEnvelope(
        encrypted=base64.b64encode(ciphertext).decode("ascii"),
        salt=base64.b64encode(salt).decode("ascii"),
        iv=base64.b64encode(iv).decode("ascii"),
    )


def decrypt_with_password(envelope: PasswordEnvelope, password: str) -> bytes:
    """Decrypt an envelope.

    Raises:
        CryptoError: On a wrong password, tampering or malformed fields. The
            message is the same in every case.
    """
    try:
        salt = base64.b64decode(envelope.salt, validate=True)
        iv = base64.b64decode(envelope.iv, validate=True)
        ciphertext = base64.b64decode(envelope.encrypted, validate=True)
        return AESGCM(derive_key(password, salt)).decrypt(iv, ciphertext, None)
    except (InvalidTag, binascii.Error, ValueError, TypeError) as e:
        raise CryptoError() from e
