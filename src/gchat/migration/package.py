# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Encrypted, portable node migration packages.

A package is a zip archive holding one JSON manifest::

    gchat_migration_v2.json  {version, timestamp, encryptedData, salt, iv}

The decrypted payload carries the owner's configuration subset, every
typed store's records for that owner, and the rendezvous-service key
files. Version 1 packages (``gchat_migration.json``) carry configuration
only and remain restorable.

Restore never leaves a half-applied node: everything that can fail on bad
input (archive, password, payload shape) is checked before the wipe, and a
failure while writing re-seeds the pre-restore snapshot.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import json
import logging
import time
import zipfile
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..core.exceptions import CryptoError, GchatError, MigrationError, StateCorruptionRisk
from ..identity.ownership import OWNER_KEY
from ..storage.store import STORE_NAMES, NodeStore, StoredItem
from .crypto import PasswordEnvelope, decrypt_with_password, encrypt_with_password, generate_passphrase

logger = logging.getLogger(__name__)

MANIFEST_V2 = "gchat_migration_v2.json"
MANIFEST_V1 = "gchat_migration.json"
FORMAT_VERSION = 2
CONFIG_KEY_PREFIX = "gchat_"


class ServiceKeyHolder(Protocol):
    """Whatever owns the rendezvous-service key files (the supervisor)."""

    def get_service_keys(self) -> dict[str, bytes]: ...

    async def restore_service_keys(self, keys: dict[str, bytes]) -> Any: ...


# =============================================================================
# DATA MODEL
# =============================================================================


@dataclass(frozen=True)
class MigrationPackage:
    """The manifest stored inside the archive."""

    version: int
    timestamp: int
    encrypted_data: str
    salt: str
    iv: str

    def to_manifest(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "encryptedData": self.encrypted_data,
            "salt": self.salt,
            "iv": self.iv,
        }

    @classmethod
    def from_manifest(cls, data: dict[str, Any], default_version: int) -> MigrationPackage:
        try:
            return cls(
                version=int(data.get("version", default_version)),
                timestamp=int(data.get("timestamp", 0)),
                encrypted_data=data["encryptedData"],
                salt=data["salt"],
                iv=data["iv"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MigrationError(f"Invalid migration manifest: {e}") from e

    @property
    def envelope(self) -> PasswordEnvelope:
        return PasswordEnvelope(encrypted=self.encrypted_data, salt=self.salt, iv=self.iv)


@dataclass
class BuiltPackage:
    archive: bytes
    passphrase: str
    package: MigrationPackage


@dataclass
class RestoreReport:
    version: int
    owner_id: str | None
    config_keys: int = 0
    records: dict[str, int] = field(default_factory=dict)
    service_keys_restored: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "ownerId": self.owner_id,
            "configKeys": self.config_keys,
            "records": dict(self.records),
            "serviceKeysRestored": self.service_keys_restored,
        }


@dataclass
class _Snapshot:
    kv: dict[str, Any]
    items: list[StoredItem]


# =============================================================================
# ARCHIVE HELPERS
# =============================================================================


def write_archive(package: MigrationPackage) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(MANIFEST_V2, json.dumps(package.to_manifest(), indent=2))
    return buffer.getvalue()


def read_archive(archive: bytes) -> MigrationPackage:
    """Locate and parse the manifest, preferring the version 2 name."""
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            names = set(zf.namelist())
            if MANIFEST_V2 in names:
                name, version = MANIFEST_V2, 2
            elif MANIFEST_V1 in names:
                name, version = MANIFEST_V1, 1
            else:
                raise MigrationError("Invalid migration file format.")
            raw = zf.read(name)
    except zipfile.BadZipFile as e:
        raise MigrationError("Invalid migration file format.") from e

    try:
        manifest = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MigrationError("Invalid migration manifest.") from e
    if not isinstance(manifest, dict):
        raise MigrationError("Invalid migration manifest.")
    return MigrationPackage.from_manifest(manifest, default_version=version)


def _decode_service_keys(raw: Any) -> dict[str, bytes]:
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise MigrationError("Invalid service key section")
    try:
        return {name: base64.b64decode(value, validate=True) for name, value in raw.items()}
    except (binascii.Error, TypeError, ValueError) as e:
        raise MigrationError("Invalid service key encoding") from e


# =============================================================================
# SERVICE
# =============================================================================


class MigrationService:
    """Builds and restores migration packages against a node store."""

    def __init__(
        self,
        store: NodeStore,
        keys: ServiceKeyHolder | None = None,
        store_names: tuple[str, ...] = STORE_NAMES,
    ):
        self.store = store
        self.keys = keys
        self.store_names = store_names

    async def _owner_id(self) -> str:
        owner = await self.store.kv_get(OWNER_KEY)
        if not isinstance(owner, str) or not owner:
            raise MigrationError("No active node owner found.")
        return owner

    async def _config_subset(self, owner_id: str) -> dict[str, Any]:
        config = {}
        for key in await self.store.kv_keys():
            if key.startswith(CONFIG_KEY_PREFIX) or owner_id in key:
                config[key] = await self.store.kv_get(key)
        return config

    def _export_service_keys(self) -> dict[str, str]:
        if self.keys is None:
            return {}
        try:
            keys = self.keys.get_service_keys()
        except Exception as e:
            logger.warning(f"Could not export service keys; node address will change on restore: {e}")
            return {}
        return {name: base64.b64encode(content).decode("ascii") for name, content in keys.items()}

    async def build(self, passphrase: str | None = None) -> BuiltPackage:
        """Snapshot the owner's state into an encrypted archive.

        Raises:
            MigrationError: If the node has no owner yet.
        """
        passphrase = passphrase or generate_passphrase()
        owner_id = await self._owner_id()

        payload = {
            "localStorage": await self._config_subset(owner_id),
            "torKeys": self._export_service_keys(),
            "idbData": {name: await self.store.get_items(name, owner_id) for name in self.store_names},
            "ownerId": owner_id,
        }
        plaintext = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
        # PBKDF2 runs in a worker thread
        envelope = await asyncio.to_thread(encrypt_with_password, plaintext, passphrase)

        package = MigrationPackage(
            version=FORMAT_VERSION,
            timestamp=int(time.time() * 1000),
            encrypted_data=envelope.encrypted,
            salt=envelope.salt,
            iv=envelope.iv,
        )
        total = sum(len(items) for items in payload["idbData"].values())
        logger.info(f"Migration package built: {len(payload['localStorage'])} config keys, {total} records")
        return BuiltPackage(archive=write_archive(package), passphrase=passphrase, package=package)

    async def restore(self, archive: bytes, passphrase: str) -> RestoreReport:
        """Replace this node's state with the package contents.

        Raises:
            MigrationError: Bad archive, or writing failed (prior state re-seeded).
            CryptoError: Wrong passphrase or corrupted ciphertext.
            StateCorruptionRisk: The wipe failed before anything was written.
        """
        package = read_archive(archive)
        plaintext = await asyncio.to_thread(decrypt_with_password, package.envelope, passphrase)
        try:
            payload = json.loads(plaintext)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CryptoError() from e
        if not isinstance(payload, dict):
            raise CryptoError()

        config = payload.get("localStorage") or {}
        if not isinstance(config, dict):
            raise MigrationError("Invalid configuration section")
        service_keys = _decode_service_keys(payload.get("torKeys"))
        owner_id = payload.get("ownerId")
        records: dict[str, list[dict[str, Any]]] = {}
        if package.version >= 2 and owner_id and isinstance(payload.get("idbData"), dict):
            records = {name: list(payload["idbData"].get(name) or []) for name in self.store_names}

        snapshot = await self._snapshot()
        try:
            await self._wipe()
        except Exception as e:
            logger.error(f"Wipe failed before restore: {e}")
            await self._reseed(snapshot)
            raise StateCorruptionRisk("Could not clear existing state; restore aborted") from e

        report = RestoreReport(version=package.version, owner_id=owner_id)
        try:
            for key, value in config.items():
                await self.store.kv_set(key, value)
            report.config_keys = len(config)
            for name, items in records.items():
                await self.store.sync_items(name, items, owner_id)
                report.records[name] = len(items)
            if service_keys and self.keys is not None:
                await self.keys.restore_service_keys(service_keys)
                report.service_keys_restored = True
        except Exception as e:
            logger.error(f"Restore failed while writing, re-seeding previous state: {e}")
            await self._reseed(snapshot)
            if isinstance(e, GchatError):
                raise MigrationError(f"Restore failed: {e.message}") from e
            raise MigrationError(f"Restore failed: {e}") from e

        logger.info(f"Migration restored (v{package.version}): {report.config_keys} config keys")
        return report

    async def _snapshot(self) -> _Snapshot:
        kv = {key: await self.store.kv_get(key) for key in await self.store.kv_keys()}
        return _Snapshot(kv=kv, items=await self.store.all_items())

    async def _wipe(self) -> None:
        await self.store.clear_items()
        await self.store.kv_clear()

    async def _reseed(self, snapshot: _Snapshot) -> None:
        """Put the pre-restore state back. Best effort; failures are logged."""
        try:
            await self._wipe()
            for key, value in snapshot.kv.items():
                await self.store.kv_set(key, value)
            for item in snapshot.items:
                await self.store.save_item(item.store_name, item.data, item.owner_id)
        except Exception as e:
            logger.critical(f"Could not re-seed pre-restore state: {e}")
