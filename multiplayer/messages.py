"""Wire models exchanged between host and clients."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from gamecore.catalog import AssetCategory
from gamecore.models import PlayerFinancialState, TradeOperation


class EnvelopeKind(str, Enum):
    KEY_REQUEST = "key_request"
    KEY_RESPONSE = "key_response"
    TICK = "tick"
    RESYNC_REQUEST = "resync_request"
    RESYNC = "resync"
    TRADE_REQUEST = "trade_request"
    TRADE_ACK = "trade_ack"
    QUIZ_COMPLETE = "quiz_complete"
    GAME_END = "game_end"


class Envelope(BaseModel):
    """Transport frame. ``recipient=None`` means every subscriber."""

    kind: EnvelopeKind
    sender: str
    recipient: str | None = None
    body: dict[str, Any] = Field(default_factory=dict)


class BroadcastMessage(BaseModel):
    """Decrypted body of a TICK. Prices are positional against the room's symbol list."""

    seq: int
    tick: int
    game_year: int
    game_month: int
    calendar_year: int
    calendar_month: int
    phase: str
    prices: list[str | None]
    quiz_categories: list[str] = Field(default_factory=list)

    def price_map(self, symbols: list[str]) -> dict[str, Decimal | None]:
        return {
            sym: (Decimal(raw) if raw is not None else None)
            for sym, raw in zip(symbols, self.prices)
        }


class TradeRequest(BaseModel):
    request_id: str
    player: str
    operation: TradeOperation


class TradeAck(BaseModel):
    request_id: str
    accepted: bool
    error: str | None = None
    error_type: str | None = None
    state: PlayerFinancialState | None = None


class QuizComplete(BaseModel):
    player: str
    category: AssetCategory


class ResyncPayload(BaseModel):
    tick: BroadcastMessage | None = None
    state: PlayerFinancialState | None = None
