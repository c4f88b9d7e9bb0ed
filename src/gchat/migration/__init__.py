# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Encrypted state migration packages."""

from .crypto import (
    PasswordEnvelope,
    decrypt_with_password,
    encrypt_with_password,
    generate_passphrase,
)
from .package import (
    MANIFEST_V1,
    MANIFEST_V2,
    BuiltPackage,
    MigrationPackage,
    MigrationService,
    RestoreReport,
    read_archive,
    write_archive,
)

__all__ = [
    "PasswordEnvelope",
    "decrypt_with_password",
    "encrypt_with_password",
    "generate_passphrase",
    "MANIFEST_V1",
    "MANIFEST_V2",
    "BuiltPackage",
    "MigrationPackage",
    "MigrationService",
    "RestoreReport",
    "read_archive",
    "write_archive",
]
