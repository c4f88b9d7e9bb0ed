# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Persisted node state: key-value config, owner-scoped records, media metadata.

The node only depends on the :class:`NodeStore` protocol. Two backends are
provided:

- :class:`InMemoryNodeStore` keeps everything in dictionaries (tests).
- :class:`JsonFileNodeStore` persists to three JSON files in the data root.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from ..core.exceptions import ValidationError

logger = logging.getLogger(__name__)

KV_FILE = "gchat_kv.json"
STORE_FILE = "gchat_store.json"
MEDIA_FILE = "gchat_media.json"

# Typed stores holding owner-scoped bulk records
STORE_NAMES: tuple[str, ...] = (
    "posts",
    "messages",
    "contacts",
    "groups",
    "notifications",
    "requests",
)


@dataclass
class StoredItem:
    """One bulk record with its scope."""

    id: str
    store_name: str
    owner_id: str
    data: dict[str, Any]
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "storeName": self.store_name,
            "ownerId": self.owner_id,
            "data": self.data,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredItem:
        return cls(
            id=str(data["id"]),
            store_name=data["storeName"],
            owner_id=data["ownerId"],
            data=data["data"],
            created_at=int(data.get("createdAt", 0)),
        )


def _item_id(item: dict[str, Any]) -> str:
    if not isinstance(item, dict) or item.get("id") in (None, ""):
        raise ValidationError("Record must be an object with an 'id'", field="id")
    return str(item["id"])


# =============================================================================
# PROTOCOL
# =============================================================================


@runtime_checkable
class NodeStore(Protocol):
    """Storage backend used by the node."""

    async def init(self) -> None: ...

    # Key-value configuration (JSON values)
    async def kv_get(self, key: str) -> Any: ...
    async def kv_set(self, key: str, value: Any) -> None: ...
    async def kv_delete(self, key: str) -> None: ...
    async def kv_keys(self) -> list[str]: ...
    async def kv_clear(self) -> None: ...

    # Owner-scoped bulk records
    async def save_item(self, store_name: str, item: dict[str, Any], owner_id: str) -> None: ...
    async def sync_items(self, store_name: str, items: list[dict[str, Any]], owner_id: str) -> None: ...
    async def get_items(self, store_name: str, owner_id: str) -> list[dict[str, Any]]: ...
    async def delete_item(self, store_name: str, item_id: str) -> None: ...
    async def clear_store(self, store_name: str) -> None: ...
    async def clear_items(self) -> None: ...
    async def all_items(self) -> list[StoredItem]: ...

    # Media metadata
    async def save_media_metadata(self, meta: dict[str, Any]) -> None: ...
    async def get_media_metadata(self, media_id: str) -> dict[str, Any] | None: ...
    async def delete_media_metadata(self, media_id: str) -> None: ...


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================


class InMemoryNodeStore:
    """Dictionary-backed store. State is lost when the process exits."""

    def __init__(self) -> None:
        self.kv: dict[str, Any] = {}
        self.items: list[StoredItem] = []
        self.media: dict[str, dict[str, Any]] = {}

    async def init(self) -> None:
        return None

    async def _persist(self, kind: str) -> None:
        """Hook for subclasses that write state out after each mutation."""
        return None

    # -- kv --------------------------------------------------------------

    async def kv_get(self, key: str) -> Any:
        return copy.deepcopy(self.kv.get(key))

    async def kv_set(self, key: str, value: Any) -> None:
        self.kv[key] = copy.deepcopy(value)
        await self._persist("kv")

    async def kv_delete(self, key: str) -> None:
        self.kv.pop(key, None)
        await self._persist("kv")

    async def kv_keys(self) -> list[str]:
        return list(self.kv)

    async def kv_clear(self) -> None:
        self.kv.clear()
        await self._persist("kv")

    # -- records ---------------------------------------------------------

    def _upsert(self, store_name: str, item: dict[str, Any], owner_id: str) -> None:
        record = StoredItem(
            id=_item_id(item),
            store_name=store_name,
            owner_id=owner_id,
            data=copy.deepcopy(item),
        )
        for idx, existing in enumerate(self.items):
            if existing.id == record.id and existing.store_name == store_name:
                self.items[idx] = record
                return
        self.items.append(record)

    async def save_item(self, store_name: str, item: dict[str, Any], owner_id: str) -> None:
        self._upsert(store_name, item, owner_id)
        await self._persist("store")

    async def sync_items(self, store_name: str, items: list[dict[str, Any]], owner_id: str) -> None:
        """Make ``items`` the complete set of ``store_name`` records for ``owner_id``."""
        new_ids = {_item_id(item) for item in items}
        self.items = [
            i
            for i in self.items
            if not (i.store_name == store_name and i.owner_id == owner_id and i.id not in new_ids)
        ]
        for item in items:
            self._upsert(store_name, item, owner_id)
        await self._persist("store")

    async def get_items(self, store_name: str, owner_id: str) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(i.data)
            for i in self.items
            if i.store_name == store_name and i.owner_id == owner_id
        ]

    async def delete_item(self, store_name: str, item_id: str) -> None:
        self.items = [i for i in self.items if not (i.store_name == store_name and i.id == item_id)]
        await self._persist("store")

    async def clear_store(self, store_name: str) -> None:
        self.items = [i for i in self.items if i.store_name != store_name]
        await self._persist("store")

    async def clear_items(self) -> None:
        self.items = []
        await self._persist("store")

    async def all_items(self) -> list[StoredItem]:
        return copy.deepcopy(self.items)

    # -- media -----------------------------------------------------------

    async def save_media_metadata(self, meta: dict[str, Any]) -> None:
        if not meta.get("id"):
            raise ValidationError("Media metadata requires an 'id'", field="id")
        self.media[meta["id"]] = {**meta, "createdAt": int(time.time() * 1000)}
        await self._persist("media")

    async def get_media_metadata(self, media_id: str) -> dict[str, Any] | None:
        meta = self.media.get(media_id)
        return dict(meta) if meta is not None else None

    async def delete_media_metadata(self, media_id: str) -> None:
        self.media.pop(media_id, None)
        await self._persist("media")


# =============================================================================
# JSON FILE BACKEND
# =============================================================================


class JsonFileNodeStore(InMemoryNodeStore):
    """Store persisted as JSON files under ``data_dir``.

    Writes are serialized through an asyncio lock and performed in a worker
    thread so the event loop keeps running while the file is written.
    """

    def __init__(self, data_dir: Path) -> None:
        super().__init__()
        self.data_dir = Path(data_dir)
        self.kv_path = self.data_dir / KV_FILE
        self.store_path = self.data_dir / STORE_FILE
        self.media_path = self.data_dir / MEDIA_FILE
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        kv = await asyncio.to_thread(self._load, self.kv_path, {})
        store = await asyncio.to_thread(self._load, self.store_path, [])
        media = await asyncio.to_thread(self._load, self.media_path, {})

        self.kv = kv if isinstance(kv, dict) else {}
        self.items = []
        for raw in store if isinstance(store, list) else []:
            try:
                self.items.append(StoredItem.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed stored record: {e}")
        self.media = media if isinstance(media, dict) else {}
        logger.info(f"JSON storage initialized at {self.data_dir}")

    @staticmethod
    def _load(path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load {path.name}: {e}")
            return default

    @staticmethod
    def _write(path: Path, payload: str) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(path)

    async def _persist(self, kind: str) -> None:
        if kind == "kv":
            path, payload = self.kv_path, json.dumps(self.kv, indent=2)
        elif kind == "store":
            path, payload = self.store_path, json.dumps([i.to_dict() for i in self.items])
        elif kind == "media":
            path, payload = self.media_path, json.dumps(self.media, indent=2)
        else:
            raise ValueError(f"Unknown storage kind: {kind}")

        async with self._write_lock:
            await asyncio.to_thread(self._write, path, payload)
