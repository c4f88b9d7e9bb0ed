# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Traffic classes and their timeout/retry policies."""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum


class TrafficClass(StrEnum):
    """Control traffic is small and latency-sensitive; bulk carries media."""

    CONTROL = "control"
    BULK = "bulk"


@dataclass(frozen=True)
class TrafficPolicy:
    """Timeout, retry and pooling settings for one traffic class.

    ``timeout`` bounds a whole attempt, response body included.
    ``keepalive_interval`` is how often a peer is expected to see traffic on
    a live connection; pooled connections stay open for ``idle_expiry``
    seconds between requests so they are actually reused.
    """

    timeout: float
    attempts: int
    keepalive_interval: float
    log_retries: bool
    idle_expiry: float = 60.0
    backoff_base: float = 1.0
    jitter_max: float = 0.5

    def backoff(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Delay before retry number ``attempt + 1`` (``attempt`` is zero-based)."""
        return self.backoff_base * (2**attempt) + rand() * self.jitter_max


CONTROL_POLICY = TrafficPolicy(timeout=30.0, attempts=3, keepalive_interval=1.0, log_retries=True)

# Bulk callers retry at chunk level themselves
BULK_POLICY = TrafficPolicy(timeout=600.0, attempts=1, keepalive_interval=5.0, log_retries=False)

DEFAULT_POLICIES: dict[TrafficClass, TrafficPolicy] = {
    TrafficClass.CONTROL: CONTROL_POLICY,
    TrafficClass.BULK: BULK_POLICY,
}
