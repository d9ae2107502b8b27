"""Tests for gamecore.logging_config: JSON formatting and file handlers."""

import json
import logging
import sys
from decimal import Decimal
from unittest.mock import patch

import pytest

from gamecore.logging_config import JsonFormatter, _TradeLogFilter, setup, setup_from_config


def _record(name="gamecore.portfolio_engine", level=logging.INFO, msg="BUY %s", args=("GOLD",), **extra):
    record = logging.LogRecord(name, level, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_core_fields(self):
        entry = json.loads(JsonFormatter().format(_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "gamecore.portfolio_engine"
        assert entry["message"] == "BUY GOLD"
        assert "timestamp" in entry

    def test_extras_keep_exact_money(self):
        entry = json.loads(JsonFormatter().format(_record(player="Asha", cost=Decimal("1234.50"))))
        assert entry["player"] == "Asha"
        assert entry["cost"] == "1234.50"

    def test_unserialisable_extra_is_stringified(self):
        entry = json.loads(JsonFormatter().format(_record(when=object())))
        assert entry["when"].startswith("<object")

    def test_exception_info(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        entry = json.loads(JsonFormatter().format(record))
        assert entry["exception"]["type"] == "ValueError"
        assert entry["exception"]["message"] == "boom"


class TestTradeLogFilter:
    @pytest.mark.parametrize("name,passes", [
        ("gamecore.portfolio_engine", True),
        ("multiplayer.sync", True),
        ("multiplayer.player_session", True),
        ("multiplayer.channel", False),
        ("market.price_feed", False),
    ])
    def test_prefixes(self, name, passes):
        assert _TradeLogFilter().filter(_record(name=name)) is passes


class TestSetup:
    def test_creates_log_dir_and_handlers(self, tmp_path):
        root = logging.getLogger()
        saved, saved_level = root.handlers[:], root.level
        root.handlers = []
        try:
            setup(log_dir=str(tmp_path / "logs"), level="debug")
            assert (tmp_path / "logs").is_dir()
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 4
            setup(log_dir=str(tmp_path / "logs"))
            assert len(root.handlers) == 4
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers = saved
            root.setLevel(saved_level)

    def test_trades_log_only_gets_trade_loggers(self, tmp_path):
        root = logging.getLogger()
        saved, saved_level = root.handlers[:], root.level
        root.handlers = []
        try:
            setup(log_dir=str(tmp_path), level="INFO")
            logging.getLogger("gamecore.portfolio_engine").info("BUY %s", "GOLD", extra={"cost": Decimal("10.50")})
            logging.getLogger("market.price_feed").info("loaded")
            for handler in root.handlers:
                handler.flush()
            trades = [json.loads(line) for line in (tmp_path / "trades.log").read_text().splitlines()]
            assert [t["message"] for t in trades] == ["BUY GOLD"]
            assert trades[0]["cost"] == "10.50"
            assert "loaded" in (tmp_path / "app.log").read_text()
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers = saved
            root.setLevel(saved_level)


class TestSetupFromConfig:
    def test_rotation_settings_come_from_config(self, tmp_path):
        section = {"dir": str(tmp_path), "level": "WARNING", "max_file_mb": 2, "backup_count": 1}
        with patch("gamecore.config.get_section", return_value=section), \
                patch("gamecore.logging_config.setup") as mock_setup:
            setup_from_config()
        mock_setup.assert_called_once_with(
            log_dir=str(tmp_path), level="WARNING", max_bytes=2 * 1024 * 1024, backups=1,
        )
