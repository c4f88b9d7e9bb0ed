# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Local control channel for UI clients."""

from .channel import ControlChannel
from .handlers import ControlHandlers

__all__ = ["ControlChannel", "ControlHandlers"]
