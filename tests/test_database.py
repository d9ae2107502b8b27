"""Tests for gamecore.database: game-end records and activity uploads."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from gamecore.database import GameLogDatabase, GameLogSink
from gamecore.models import CashTransaction, CashTransactionType, OperationKind, TradeOperation
from gamecore.networth import build_game_end_record


@pytest.fixture
def db(tmp_path):
    return GameLogDatabase(str(tmp_path / "nested" / "games.db"))


@pytest.fixture
def record(state, settings, price_lookup):
    return build_game_end_record(state, price_lookup, settings, "multiplayer", 3.5, "ROOM42-7")


class TestGameLogDatabase:
    def test_save_and_read_game_end(self, db, record):
        row_id = db.save_game_end(record)
        logs = db.get_game_logs()
        assert len(logs) == 1
        log = logs[0]
        assert log["id"] == row_id
        assert log["player_name"] == "Asha"
        assert log["mode"] == "multiplayer"
        assert log["final_networth"] == Decimal("100000.00")
        assert log["profit_loss"] == Decimal("0.00")
        assert log["portfolio_breakdown"]["total"] == "100000.00"
        assert log["admin_settings"]["initial_pocket_cash"] == "100000.00"
        assert log["session_id"] == "ROOM42-7"

    def test_logs_newest_first(self, db, record):
        db.save_game_end(record)
        db.save_game_end(record)
        ids = [log["id"] for log in db.get_game_logs(limit=5)]
        assert ids == sorted(ids, reverse=True)
        assert len(db.get_game_logs(limit=1)) == 1

    def test_activity_upload_kinds(self, db):
        ops = [
            TradeOperation(kind=OperationKind.DEPOSIT, amount=Decimal("100")),
            TradeOperation(kind=OperationKind.BUY, symbol="NIFTYBEES", quantity=Decimal("2"), price=Decimal("50")),
        ]
        txs = [CashTransaction(
            kind=CashTransactionType.RECURRING_INCOME, amount=Decimal("50000"), game_year=1, game_month=6,
        )]
        assert db.save_activity("S1", "Asha", ops, txs) == 3
        db.save_activity("S2", "Ravi", ops[:1])

        rows = db.get_activity("S1")
        assert [r["kind"] for r in rows] == ["banking", "trade", "cash"]
        assert rows[1]["payload"] == {"kind": "buy", "symbol": "NIFTYBEES", "quantity": "2", "price": "50"}
        assert rows[2]["payload"]["kind"] == "recurring_income"
        assert len(db.get_activity("S2")) == 1


class TestGameLogSink:
    def test_success(self, db, record):
        sink = GameLogSink(db=db)
        assert sink.record_game_end(record)
        assert sink.upload_activity("S1", "Asha", [TradeOperation(kind=OperationKind.DEPOSIT, amount=Decimal("1"))])
        assert len(db.get_game_logs()) == 1

    def test_storage_failure_is_swallowed(self, record, caplog):
        broken = MagicMock()
        broken.save_game_end.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))
        broken.save_activity.side_effect = OSError("read-only file system")
        sink = GameLogSink(db=broken)
        assert sink.record_game_end(record) is False
        assert sink.upload_activity("S1", "Asha", []) is False
        assert "Failed to store game-end record" in caplog.text

    def test_lazy_database_from_path(self, tmp_path, record):
        sink = GameLogSink(db_path=str(tmp_path / "lazy.db"))
        assert not (tmp_path / "lazy.db").exists()
        assert sink.record_game_end(record)
        assert (tmp_path / "lazy.db").exists()
