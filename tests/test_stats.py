"""Tests for statistics and logging setup."""
import logging

import pytest

from roomchatd.config import RelayRuntimeConfig
from roomchatd.logging_config import PACKAGE_LOGGER, configure_logging, level_from_name
from roomchatd.registry import ConnectionRecord, Registry
from roomchatd.stats import StatsManager


def test_counters_and_snapshot() -> None:
    """Counters increment and snapshots are copies."""
    stats = StatsManager()
    stats.inc("joins")
    stats.inc("deliveries", 3)

    assert stats.get("joins") == 1
    assert stats.get("deliveries") == 3
    assert stats.get("not_a_counter") == 0

    snap = stats.snapshot()
    snap["joins"] = 100
    assert stats.get("joins") == 1


def test_format_stats_includes_registry_summary(conn_factory) -> None:
    """The stats summary includes registry figures."""
    registry = Registry(RelayRuntimeConfig())
    alice, _ = conn_factory()
    bob, _ = conn_factory()
    registry.register(alice, "alice")
    registry.register(bob, "bob")
    registry.join_room(alice, "games")

    stats = StatsManager(registry)
    stats.set_start_time()
    stats.inc("msgs_relayed", 2)

    text = stats.format_stats()
    assert text.startswith("roomchatd ")
    assert "clients=2 in_lobby=1" in text
    assert "top_rooms=games:1" in text
    assert "msgs_relayed=2" in text
    assert "started=" in text


def test_format_stats_before_start() -> None:
    """Without a start time only the uptime placeholder is shown."""
    text = StatsManager().format_stats()
    assert "uptime_s=0.0" in text
    assert "started=" not in text


def test_connection_record_online_seconds() -> None:
    """Time online is measured from registration and never negative."""
    record = ConnectionRecord(handle=None, name="alice", connected_at=100.0)
    assert record.online_seconds(now=130.5) == 30.5
    assert record.online_seconds(now=90.0) == 0.0


def test_level_from_name() -> None:
    """Level names, aliases and numbers map to logging levels."""
    assert level_from_name("debug") == logging.DEBUG
    assert level_from_name(" WARN ") == logging.WARNING
    assert level_from_name("15") == 15
    assert level_from_name("") == logging.INFO
    assert level_from_name("loud") == logging.INFO
    assert level_from_name(None) == logging.INFO


@pytest.fixture
def package_logger():
    pkg = logging.getLogger(PACKAGE_LOGGER)
    saved = (list(pkg.handlers), pkg.level, pkg.propagate)
    yield pkg
    for h in list(pkg.handlers):
        pkg.removeHandler(h)
        h.close()
    handlers, level, propagate = saved
    for h in handlers:
        pkg.addHandler(h)
    pkg.setLevel(level)
    pkg.propagate = propagate
    logging.captureWarnings(False)


def test_configure_logging_routes_components_to_file(tmp_path, package_logger) -> None:
    """Component loggers write through the package handlers to the log file."""
    log_path = tmp_path / "logs" / "roomchatd.log"
    logging.getLogger("roomchatd.session").setLevel(logging.ERROR)
    root_handlers = list(logging.getLogger().handlers)

    pkg = configure_logging(
        RelayRuntimeConfig(log_console=False, log_level="DEBUG", log_file=str(log_path))
    )
    logging.getLogger("roomchatd.session").debug("hello file")
    for h in pkg.handlers:
        h.flush()

    assert pkg is package_logger
    assert pkg.level == logging.DEBUG
    assert pkg.propagate is False
    assert logging.getLogger().handlers == root_handlers
    assert logging.getLogger("roomchatd.session").level == logging.NOTSET
    text = log_path.read_text(encoding="utf-8")
    assert "roomchatd.session" in text
    assert "hello file" in text


def test_configure_logging_replaces_only_its_own_handlers(tmp_path, package_logger) -> None:
    """A second call swaps the installed handlers and keeps foreign ones."""
    foreign = logging.NullHandler()
    package_logger.addHandler(foreign)

    configure_logging(RelayRuntimeConfig(log_console=False, log_file=str(tmp_path / "a.log")))
    configure_logging(RelayRuntimeConfig(log_console=True, log_file=None))

    kinds = [type(h) for h in package_logger.handlers]
    assert foreign in package_logger.handlers
    assert kinds.count(logging.StreamHandler) == 1
    assert logging.FileHandler not in kinds


def test_configure_logging_without_handlers_propagates(package_logger) -> None:
    """With console and file both off, records fall through to the root logger."""
    configure_logging(RelayRuntimeConfig(log_console=False, log_file=None))
    assert package_logger.propagate is True
