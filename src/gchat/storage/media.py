# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Media blob storage.

Layout under ``<data_root>/media``::

    local/   content this node's users uploaded
    cache/   content fetched from peers, pruned after a few days

Files are keyed by media id; metadata (mime type, access key, owner) lives
in the :class:`~gchat.storage.store.NodeStore`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..core.exceptions import NotFoundError, ValidationError
from ..policy.media import is_access_allowed
from .store import NodeStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def check_plain_name(name: str, field: str = "id") -> str:
    """Reject names that could escape their directory."""
    if (
        not isinstance(name, str)
        or not name
        or name in (".", "..")
        or "/" in name
        or "\\" in name
        or "\x00" in name
    ):
        raise ValidationError(f"Invalid file name: {name!r}", field=field, value=name)
    return name


@dataclass
class MediaBlob:
    """A downloaded media file with its metadata."""

    id: str
    data: bytes
    metadata: dict[str, Any] | None
    cached: bool


class MediaStore:
    """Media files on disk plus their metadata in the node store."""

    def __init__(self, media_dir: Path, store: NodeStore, cache_max_age_days: int = 7):
        self.media_dir = Path(media_dir)
        self.local_dir = self.media_dir / "local"
        self.cache_dir = self.media_dir / "cache"
        self.store = store
        self.cache_max_age_days = cache_max_age_days

    def prepare(self) -> None:
        """Create the layout, migrate legacy files and prune the cache."""
        self.local_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.migrate_legacy()
        self.prune_cache()

    def migrate_legacy(self) -> int:
        """Move files stored directly under ``media/`` into ``media/local/``."""
        moved = 0
        try:
            for path in self.media_dir.iterdir():
                if path.is_file() and not path.is_symlink():
                    path.rename(self.local_dir / path.name)
                    moved += 1
        except OSError as e:
            logger.warning(f"Legacy media migration incomplete: {e}")
        if moved:
            logger.info(f"Moved {moved} legacy media file(s) into {self.local_dir}")
        return moved

    def prune_cache(self, now: float | None = None) -> int:
        """Delete cache entries older than ``cache_max_age_days``."""
        now = time.time() if now is None else now
        max_age = self.cache_max_age_days * SECONDS_PER_DAY
        pruned = 0
        try:
            for path in self.cache_dir.iterdir():
                if path.is_file() and now - path.stat().st_mtime > max_age:
                    path.unlink()
                    pruned += 1
                    logger.info(f"Pruned old cache file: {path.name}")
        except OSError as e:
            logger.warning(f"Cache pruning incomplete: {e}")
        return pruned

    def _locate(self, media_id: str) -> tuple[Path, bool] | None:
        check_plain_name(media_id)
        local = self.local_dir / media_id
        if local.is_file():
            return local, False
        cached = self.cache_dir / media_id
        if cached.is_file():
            return cached, True
        return None

    async def upload(
        self,
        media_id: str,
        data: bytes,
        metadata: dict[str, Any] | None = None,
        is_cache: bool = False,
    ) -> None:
        check_plain_name(media_id)
        target_dir = self.cache_dir if is_cache else self.local_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread((target_dir / media_id).write_bytes, data)

        meta = dict(metadata or {})
        meta.setdefault("id", media_id)
        meta.setdefault("size", len(data))
        await self.store.save_media_metadata(meta)

    async def download(self, media_id: str) -> MediaBlob:
        """Read a media file, preferring local content over the cache.

        Raises:
            NotFoundError: If neither directory has the file.
        """
        found = self._locate(media_id)
        if found is None:
            raise NotFoundError("media", media_id)
        path, cached = found
        data = await asyncio.to_thread(path.read_bytes)
        metadata = await self.store.get_media_metadata(media_id)
        return MediaBlob(id=media_id, data=data, metadata=metadata, cached=cached)

    def exists(self, media_id: str) -> bool:
        return self._locate(media_id) is not None

    async def verify(self, media_id: str, provided_key: str | None) -> bool:
        """Whether ``provided_key`` grants access to ``media_id``."""
        try:
            metadata = await self.store.get_media_metadata(media_id)
        except Exception as e:
            logger.error(f"Media verify failed for {media_id}: {e}")
            return False
        return is_access_allowed(metadata, provided_key)
