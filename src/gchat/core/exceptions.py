# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Exception hierarchy for the gchat node.

Every error raised by the node derives from :class:`GchatError` so the
control channel can turn it into a ``{success: false, error: ...}`` reply
without leaking internals.
"""

from __future__ import annotations

from typing import Any


class GchatError(Exception):
    """Base exception for all gchat errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(GchatError):
    """Exception for configuration errors.

    Raised when:
    - The anonymity daemon binary cannot be located
    - The bridge file cannot be read
    - Settings are inconsistent
    """

    def __init__(self, message: str, path: str | None = None):
        details = {}
        if path:
            details["path"] = path
        super().__init__(message, details)
        self.path = path


class ValidationError(GchatError):
    """Exception for malformed input (bad file names, missing fields)."""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class NotFoundError(GchatError):
    """Exception for resource not found errors."""

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidSeed(GchatError):  # noqa: N818
    """Raised when a seed phrase has the wrong length or fails its wordlist check."""


class TransientNetworkError(GchatError):
    """A recoverable daemon or network hiccup (port in use, control auth)."""


class RetryExhausted(GchatError):  # noqa: N818
    """A transport call failed after every attempt its traffic class allows."""

    def __init__(
        self,
        target: str,
        attempts: int,
        cause: BaseException | None = None,
        status: int | None = None,
    ):
        reason = (str(cause) or type(cause).__name__) if cause is not None else f"HTTP {status}"
        message = f"Request to {target} failed after {attempts} attempt(s): {reason}"
        details: dict[str, Any] = {"target": target, "attempts": attempts}
        if status is not None:
            details["status"] = status
        super().__init__(message, details)
        self.target = target
        self.attempts = attempts
        self.cause = cause
        self.status = status


class CryptoError(GchatError):
    """Decryption or verification failed.

    The message is deliberately generic; it never says which step failed.
    """

    def __init__(self, message: str = "Decryption failed. Check password."):
        super().__init__(message)


class StateCorruptionRisk(GchatError):  # noqa: N818
    """Wiping existing state failed before a restore wrote anything."""


class MigrationError(GchatError):
    """Migration package could not be built or applied."""
