"""SQLAlchemy + SQLite storage for end-of-game records and activity uploads."""

import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from sqlalchemy import Column, DateTime, Float, Integer, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from gamecore.config import load_config
from gamecore.models import CashTransaction, TradeOperation
from gamecore.networth import GameEndRecord

logger = logging.getLogger(__name__)


class _SafeEncoder(json.JSONEncoder):
    """JSON encoder for Decimal money and enum/datetime values."""

    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def _dumps(obj: Any) -> str:
    return json.dumps(obj, cls=_SafeEncoder, sort_keys=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


Base = declarative_base()


class GameLogRow(Base):
    __tablename__ = "game_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, default="", index=True)
    created_at = Column(DateTime, nullable=False, index=True)
    player_name = Column(String(100), nullable=False)
    mode = Column(String(20), nullable=False)
    final_networth = Column(String(32), nullable=False)  # Decimal as text
    cagr = Column(Float, nullable=False)
    profit_loss = Column(String(32), nullable=False)
    portfolio_breakdown = Column(Text, default="{}")
    admin_settings = Column(Text, default="{}")
    duration_minutes = Column(Float, default=0.0)


class ActivityUploadRow(Base):
    __tablename__ = "activity_uploads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, index=True)
    player_name = Column(String(100), nullable=False)
    kind = Column(String(20), nullable=False)  # 'trade' | 'banking' | 'cash'
    created_at = Column(DateTime, nullable=False)
    payload = Column(Text, default="{}")


_BANKING_KINDS = {"deposit", "withdraw", "create_fd", "break_fd", "collect_fd"}


class GameLogDatabase:
    def __init__(self, db_path: str | None = None):
        if db_path is None:
            config = load_config()
            db_path = str(Path(__file__).resolve().parent.parent / config["database"]["path"])
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(f"sqlite:///{db_path}", echo=False)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def save_game_end(self, record: GameEndRecord) -> int:
        with self.SessionLocal() as session:
            row = GameLogRow(
                session_id=record.session_id,
                created_at=_utcnow(),
                player_name=record.player_name,
                mode=record.mode,
                final_networth=str(record.final_networth),
                cagr=record.cagr,
                profit_loss=str(record.profit_loss),
                portfolio_breakdown=_dumps(record.portfolio_breakdown),
                admin_settings=_dumps(record.admin_settings),
                duration_minutes=record.duration_minutes,
            )
            session.add(row)
            session.commit()
            return row.id

    def save_activity(
        self,
        session_id: str,
        player_name: str,
        operations: list[TradeOperation],
        cash_transactions: list[CashTransaction] | None = None,
    ) -> int:
        """Bulk upload of a player's operations. Returns rows written."""
        now = _utcnow()
        written = 0
        with self.SessionLocal() as session:
            for op in operations:
                kind = "banking" if op.kind.value in _BANKING_KINDS else "trade"
                session.add(ActivityUploadRow(
                    session_id=session_id,
                    player_name=player_name,
                    kind=kind,
                    created_at=now,
                    payload=_dumps(op.model_dump(mode="json", exclude_none=True)),
                ))
                written += 1
            for tx in cash_transactions or []:
                session.add(ActivityUploadRow(
                    session_id=session_id,
                    player_name=player_name,
                    kind="cash",
                    created_at=now,
                    payload=_dumps(tx.model_dump(mode="json")),
                ))
                written += 1
            session.commit()
        return written

    def get_game_logs(self, limit: int = 50) -> list[dict[str, Any]]:
        with self.SessionLocal() as session:
            rows = (
                session.query(GameLogRow)
                .order_by(GameLogRow.id.desc())
                .limit(limit)
                .all()
            )
            return [
                {
                    "id": r.id,
                    "session_id": r.session_id,
                    "player_name": r.player_name,
                    "mode": r.mode,
                    "final_networth": Decimal(r.final_networth),
                    "cagr": r.cagr,
                    "profit_loss": Decimal(r.profit_loss),
                    "portfolio_breakdown": json.loads(r.portfolio_breakdown),
                    "admin_settings": json.loads(r.admin_settings),
                    "duration_minutes": r.duration_minutes,
                }
                for r in rows
            ]

    def get_activity(self, session_id: str) -> list[dict[str, Any]]:
        with self.SessionLocal() as session:
            rows = (
                session.query(ActivityUploadRow)
                .filter(ActivityUploadRow.session_id == session_id)
                .order_by(ActivityUploadRow.id.asc())
                .all()
            )
            return [
                {"player_name": r.player_name, "kind": r.kind, "payload": json.loads(r.payload)}
                for r in rows
            ]


class GameLogSink:
    """Fire-and-forget front for :class:`GameLogDatabase`.

    Storage failures are logged and swallowed; a broken disk must never
    stop or roll back a running game.
    """

    def __init__(self, db: GameLogDatabase | None = None, db_path: str | None = None):
        self._db = db
        self._db_path = db_path

    def _database(self) -> GameLogDatabase:
        if self._db is None:
            self._db = GameLogDatabase(self._db_path)
        return self._db

    def record_game_end(self, record: GameEndRecord) -> bool:
        try:
            row_id = self._database().save_game_end(record)
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "Failed to store game-end record for %s: %s", record.player_name, e,
                extra={"record": asdict(record)},
            )
            return False
        logger.info("Stored game-end record %d for %s", row_id, record.player_name)
        return True

    def upload_activity(
        self,
        session_id: str,
        player_name: str,
        operations: list[TradeOperation],
        cash_transactions: list[CashTransaction] | None = None,
    ) -> bool:
        try:
            written = self._database().save_activity(session_id, player_name, operations, cash_transactions)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Activity upload failed for %s/%s: %s", session_id, player_name, e)
            return False
        logger.debug("Uploaded %d activity rows for %s/%s", written, session_id, player_name)
        return True
