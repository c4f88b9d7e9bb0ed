# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Shared plumbing: configuration, logging, errors and pub/sub."""

from .config import NodeSettings, clear_settings_cache, get_settings, set_settings
from .events import Subscribers
from .exceptions import (
    ConfigError,
    CryptoError,
    GchatError,
    InvalidSeed,
    MigrationError,
    NotFoundError,
    RetryExhausted,
    StateCorruptionRisk,
    TransientNetworkError,
    ValidationError,
)

__all__ = [
    "NodeSettings",
    "get_settings",
    "clear_settings_cache",
    "set_settings",
    "Subscribers",
    "GchatError",
    "ConfigError",
    "ValidationError",
    "NotFoundError",
    "InvalidSeed",
    "TransientNetworkError",
    "RetryExhausted",
    "CryptoError",
    "StateCorruptionRisk",
    "MigrationError",
]
