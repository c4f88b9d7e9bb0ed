"""Tests for gchat.core.logging module.

Tests cover:
- Area mapping from logger names
- JSON and standard formatters
- Shutdown noise filter
- Broadcast handler for UI clients
- configure_logging / install_node_handlers / log_client_entry
"""

from __future__ import annotations

import json
import logging

import pytest

from gchat.core.config import NodeSettings, set_settings
from gchat.core.logging import (
    AREA_BACKEND,
    AREA_CLIENT,
    AREA_CRYPTO,
    AREA_NETWORK,
    AREA_TOR,
    JSONFormatter,
    LogBroadcastHandler,
    ShutdownNoiseFilter,
    StandardFormatter,
    area_for,
    configure_logging,
    install_node_handlers,
    log_client_entry,
    record_area,
)


def _record(name: str = "gchat.node", level: int = logging.INFO, msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(name, level, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ============================================================================
# Areas
# ============================================================================


class TestAreas:
    """Tests for logger name to area mapping."""

    @pytest.mark.parametrize(
        "name,area",
        [
            ("gchat.tor.supervisor", AREA_TOR),
            ("gchat.tor", AREA_TOR),
            ("gchat.transport.client", AREA_NETWORK),
            ("gchat.policy.firewall", AREA_NETWORK),
            ("gchat.identity.keys", AREA_CRYPTO),
            ("gchat.migration.package", AREA_CRYPTO),
            ("gchat.client", AREA_CLIENT),
            ("gchat.node", AREA_BACKEND),
            ("aiohttp.server", AREA_BACKEND),
            ("gchat.torrent", AREA_BACKEND),
        ],
    )
    def test_area_for(self, name, area):
        assert area_for(name) == area

    def test_explicit_area_wins(self):
        assert record_area(_record("gchat.node", area=AREA_TOR)) == AREA_TOR


# ============================================================================
# Formatters
# ============================================================================


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record("gchat.tor.process", msg="spawned")))

        assert data["level"] == "INFO"
        assert data["area"] == AREA_TOR
        assert data["logger"] == "gchat.tor.process"
        assert data["message"] == "spawned"
        assert "source" not in data

    def test_warning_includes_source(self):
        data = json.loads(JSONFormatter().format(_record(level=logging.WARNING)))
        assert data["source"]["line"] == 10

    def test_extra_data(self):
        data = json.loads(JSONFormatter().format(_record(extra_data={"type": "PING"})))
        assert data["extra"] == {"type": "PING"}


class TestStandardFormatter:
    """Tests for StandardFormatter."""

    def test_includes_area(self):
        output = StandardFormatter(use_colors=False).format(_record("gchat.transport.server", msg="up"))
        assert "[NETWORK]" in output
        assert "up" in output

    def test_does_not_mutate_record(self):
        record = _record(level=logging.ERROR)
        StandardFormatter(use_colors=True).format(record)
        assert record.levelname == "ERROR"


# ============================================================================
# Shutdown filter
# ============================================================================


class TestShutdownNoiseFilter:
    """Tests for ShutdownNoiseFilter."""

    def test_passes_everything_before_shutdown(self):
        f = ShutdownNoiseFilter(lambda: False)
        assert f.filter(_record("gchat.transport.client", logging.ERROR))

    def test_drops_network_warnings_during_shutdown(self):
        f = ShutdownNoiseFilter(lambda: True)
        assert not f.filter(_record("gchat.transport.client", logging.WARNING))
        assert not f.filter(_record("gchat.policy.relay", logging.ERROR))

    def test_keeps_info_and_other_areas_during_shutdown(self):
        f = ShutdownNoiseFilter(lambda: True)
        assert f.filter(_record("gchat.transport.client", logging.INFO))
        assert f.filter(_record("gchat.tor.supervisor", logging.ERROR))


# ============================================================================
# Broadcast
# ============================================================================


class TestLogBroadcastHandler:
    """Tests for LogBroadcastHandler."""

    def test_publishes_entries(self):
        handler = LogBroadcastHandler()
        entries = []
        handler.entries.subscribe(entries.append)

        handler.emit(_record("gchat.tor.supervisor", logging.WARNING, "port busy", extra_data={"port": 9990}))

        assert len(entries) == 1
        entry = entries[0]
        assert entry["level"] == "WARNING"
        assert entry["area"] == AREA_TOR
        assert entry["message"] == "port busy"
        assert entry["details"] == {"port": 9990}
        assert "timestamp" in entry

    def test_does_not_echo_client_entries(self):
        handler = LogBroadcastHandler()
        entries = []
        handler.entries.subscribe(entries.append)

        handler.emit(_record("gchat.client", logging.ERROR, "from ui"))

        assert entries == []

    def test_default_level_is_info(self):
        assert LogBroadcastHandler().level == logging.INFO


# ============================================================================
# Configuration
# ============================================================================


class TestConfigureLogging:
    """Tests for configure_logging and install_node_handlers."""

    def test_writes_json_debug_log(self, tmp_path, restore_root_logger):
        set_settings(NodeSettings(data_root=tmp_path))
        configure_logging(level="DEBUG", json_format=False)

        logging.getLogger("gchat.tor.supervisor").info("hello file")
        for handler in restore_root_logger.handlers:
            handler.flush()

        lines = (tmp_path / "debug_backend.log").read_text().strip().splitlines()
        data = json.loads(lines[-1])
        assert data["message"] == "hello file"
        assert data["area"] == AREA_TOR

    def test_sets_level(self, tmp_path, restore_root_logger):
        set_settings(NodeSettings(data_root=tmp_path))
        configure_logging(level="WARNING")
        assert restore_root_logger.level == logging.WARNING

    def test_install_node_handlers(self, tmp_path, restore_root_logger):
        set_settings(NodeSettings(data_root=tmp_path))
        configure_logging(level="INFO")
        shutting_down = False

        broadcast = install_node_handlers(lambda: shutting_down)
        entries = []
        broadcast.entries.subscribe(entries.append)

        logging.getLogger("gchat.transport.client").warning("peer gone")
        shutting_down = True
        logging.getLogger("gchat.transport.client").warning("peer gone again")

        assert [e["message"] for e in entries] == ["peer gone"]


class TestClientLog:
    """Tests for log_client_entry."""

    def test_relogs_under_client_logger(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="gchat.client"):
            log_client_entry("error", "render failed", {"view": "feed"})

        record = caplog.records[-1]
        assert record.name == "gchat.client"
        assert record.levelno == logging.ERROR
        assert record.extra_data == {"view": "feed"}

    def test_unknown_level_falls_back_to_info(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="gchat.client"):
            log_client_entry("verbose", "hi")

        assert caplog.records[-1].levelno == logging.INFO
