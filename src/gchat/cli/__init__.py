# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Command-line entry points."""
