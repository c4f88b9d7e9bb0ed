# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Media access contract."""

from __future__ import annotations

import hmac
from typing import Any


def is_access_allowed(metadata: dict[str, Any] | None, provided_key: str | None) -> bool:
    """Decide whether a fetch with ``provided_key`` may read an object.

    A missing object is always denied. An object without an access key is
    public; otherwise the supplied key must match exactly.
    """
    if not metadata:
        return False
    access_key = metadata.get("accessKey")
    if not access_key:
        return True
    if not isinstance(provided_key, str):
        return False
    return hmac.compare_digest(str(access_key).encode("utf-8"), provided_key.encode("utf-8"))
