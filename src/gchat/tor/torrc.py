# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Daemon binary discovery and torrc generation."""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path

from ..core.config import NodeSettings
from ..core.exceptions import ConfigError

logger = logging.getLogger(__name__)

TERMUX_BIN = Path("/data/data/com.termux/files/usr/bin")

_EXE_SUFFIX = ".exe" if sys.platform == "win32" else ""
TOR_BINARY_NAME = f"tor{_EXE_SUFFIX}"
OBFS4_BINARY_NAME = f"obfs4proxy{_EXE_SUFFIX}"


def find_tor_binary(settings: NodeSettings) -> str:
    """Locate the tor binary.

    Order: explicit setting, Termux prefix, ``<data_root>/bin``, then PATH.

    Raises:
        ConfigError: If no binary can be found.
    """
    if settings.tor_binary:
        if Path(settings.tor_binary).is_file() or shutil.which(settings.tor_binary):
            return settings.tor_binary
        raise ConfigError("Configured tor binary does not exist", path=settings.tor_binary)

    candidates = [
        TERMUX_BIN / TOR_BINARY_NAME,
        settings.data_root / "bin" / TOR_BINARY_NAME,
    ]
    for candidate in candidates:
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)

    found = shutil.which("tor")
    if found:
        return found
    raise ConfigError("tor binary not found; install tor or set GCHAT_TOR_BINARY")


def find_obfs4proxy(tor_binary: str) -> Path | None:
    """Look for the obfs4 plugin next to the tor binary."""
    bin_dir = Path(tor_binary).parent
    for candidate in (
        bin_dir / OBFS4_BINARY_NAME,
        bin_dir / "PluggableTransports" / OBFS4_BINARY_NAME,
    ):
        if candidate.is_file():
            return candidate
    return None


def bridge_lines(text: str) -> list[str]:
    """Normalize pasted bridge definitions into ``Bridge ...`` lines."""
    lines = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if not line.startswith("Bridge "):
            line = f"Bridge {line}"
        lines.append(line)
    return lines


def read_bridges(path: Path) -> str:
    """Contents of the bridge file, or ``""`` if it does not exist."""
    if not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read bridge file: {e}", path=str(path)) from e


def build_torrc(
    settings: NodeSettings,
    obfs4_path: Path | None = None,
    bridges_text: str = "",
) -> str:
    """Render the daemon configuration."""
    lines = [
        f"SocksPort {settings.socks_port}",
        f"ControlPort {settings.control_port}",
        "CookieAuthentication 0",
        f"DataDirectory {settings.tor_data_dir}",
        f"HiddenServiceDir {settings.service_dir}",
        f"HiddenServicePort {settings.hidden_service_port} 127.0.0.1:{settings.incoming_port}",
    ]

    if obfs4_path is not None:
        lines.append(f"ClientTransportPlugin obfs4 exec {obfs4_path}")
        bridges = bridge_lines(bridges_text)
        if bridges:
            logger.info("Using configured bridges from bridges.txt")
            lines.append("UseBridges 1")
            lines.extend(bridges)
    elif bridges_text.strip():
        logger.warning("obfs4proxy not found; configured bridges are ignored")

    return "\n".join(lines) + "\n"


def write_torrc(settings: NodeSettings, tor_binary: str) -> Path:
    """Generate the torrc for ``tor_binary`` and write it into the data dir."""
    obfs4_path = find_obfs4proxy(tor_binary)
    if obfs4_path is None:
        logger.warning("obfs4proxy not found. Bridges unavailable.")

    try:
        bridges_text = read_bridges(settings.bridges_path)
    except ConfigError as e:
        logger.error(f"{e.message}; continuing without bridges")
        bridges_text = ""

    content = build_torrc(settings, obfs4_path, bridges_text)
    settings.tor_data_dir.mkdir(parents=True, exist_ok=True)
    settings.torrc_path.write_text(content, encoding="utf-8")
    return settings.torrc_path
