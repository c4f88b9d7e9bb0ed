# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Node configuration - centralized settings for the gchat package.

All environment-based configuration flows through this module.

Usage:
    from gchat.core.config import get_settings
    settings = get_settings()

    socks_port = settings.socks_port
    service_dir = settings.service_dir
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_DIR_NAME = "gchat"


def default_data_root() -> Path:
    """Platform user-data directory for the node."""
    appdata = os.environ.get("APPDATA")
    if appdata:
        base = Path(appdata)
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Preferences"
    else:
        base = Path.home() / ".local" / "share"
    return base / APP_DIR_NAME


class NodeSettings(BaseSettings):
    """Configuration settings for a gchat node.

    Settings can be configured via environment variables with the
    ``GCHAT_`` prefix (e.g. ``GCHAT_SOCKS_PORT=9050``).
    """

    model_config = SettingsConfigDict(
        env_prefix="GCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # STORAGE
    # ==========================================================================

    data_root: Path = Field(
        default_factory=default_data_root,
        description="Root directory for daemon state, media and the local store",
    )

    # ==========================================================================
    # ANONYMITY DAEMON
    # ==========================================================================

    tor_binary: str | None = Field(
        default=None,
        description="Explicit path to the tor binary (auto-detected if unset)",
    )
    socks_port: int = Field(default=9990, description="Local SOCKS port the daemon listens on")
    control_port: int = Field(default=9991, description="Local control port the daemon listens on")
    hidden_service_port: int = Field(default=80, description="Virtual port published on the rendezvous address")

    socks_wait_attempts: int = Field(default=20, description="SOCKS port probes after bootstrap")
    socks_wait_interval: float = Field(default=1.0, description="Seconds between SOCKS port probes")
    address_poll_attempts: int = Field(default=30, description="Reads of the generated hostname file")
    address_poll_interval: float = Field(default=1.0, description="Seconds between hostname reads")
    port_conflict_backoff: float = Field(default=2.0, description="Wait before restarting after a SOCKS port conflict")
    port_conflict_max_retries: int = Field(default=5, description="Consecutive port-conflict restarts before giving up")
    circuit_poll_interval: float = Field(default=5.0, description="Seconds between circuit-status polls")

    # ==========================================================================
    # LOCAL SERVERS
    # ==========================================================================

    incoming_port: int = Field(default=3456, description="Port the rendezvous service forwards peer traffic to")
    api_host: str = Field(default="127.0.0.1", description="Host for the local control channel")
    api_port: int = Field(default=3001, description="Port for the local control channel")

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    shutdown_grace_period: float = Field(
        default=35.0,
        description="Seconds to wait for UI acknowledgement before forcing shutdown",
    )
    cache_max_age_days: int = Field(default=7, description="Age after which fetched media is pruned")

    # ==========================================================================
    # LOGGING
    # ==========================================================================

    log_level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    log_format: str = Field(default="", description="Log format: 'json', 'text', or '' (auto-detect)")
    log_file: str | None = Field(
        default=None,
        description="Log file path (defaults to debug_backend.log in the data root)",
    )

    # ==========================================================================
    # COMPUTED PATHS
    # ==========================================================================

    @property
    def tor_dir(self) -> Path:
        return self.data_root / "tor"

    @property
    def service_dir(self) -> Path:
        """Rendezvous-service key directory (owner-only permissions)."""
        return self.tor_dir / "service"

    @property
    def tor_data_dir(self) -> Path:
        """Daemon working directory; also holds the generated torrc."""
        return self.tor_dir / "data"

    @property
    def torrc_path(self) -> Path:
        return self.tor_data_dir / "torrc"

    @property
    def bridges_path(self) -> Path:
        return self.data_root / "bridges.txt"

    @property
    def media_dir(self) -> Path:
        return self.data_root / "media"

    @property
    def media_local_dir(self) -> Path:
        return self.media_dir / "local"

    @property
    def media_cache_dir(self) -> Path:
        return self.media_dir / "cache"

    @property
    def debug_log_path(self) -> Path:
        return self.data_root / "debug_backend.log"

    @property
    def socks_proxy_url(self) -> str:
        return f"socks5://127.0.0.1:{self.socks_port}"


# ==========================================================================
# GLOBAL SETTINGS INSTANCE (lazy loaded)
# ==========================================================================

_settings: NodeSettings | None = None


def get_settings() -> NodeSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = NodeSettings()
    return _settings


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    global _settings
    _settings = None


def set_settings(settings: NodeSettings) -> None:
    """Install an explicitly built settings instance (CLI overrides)."""
    global _settings
    _settings = settings
