# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Persisted node state and media files."""

from .media import MediaBlob, MediaStore, check_plain_name
from .store import (
    STORE_NAMES,
    InMemoryNodeStore,
    JsonFileNodeStore,
    NodeStore,
    StoredItem,
)

__all__ = [
    "MediaBlob",
    "MediaStore",
    "check_plain_name",
    "STORE_NAMES",
    "InMemoryNodeStore",
    "JsonFileNodeStore",
    "NodeStore",
    "StoredItem",
]
