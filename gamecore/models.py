"""Pydantic models for per-player financial state.

Money is fixed-point: every cash field is a ``Decimal`` quantised to paise
with banker's rounding, so two replicas applying the same operation always
serialise to the same JSON.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_EVEN, Decimal, InvalidOperation
from enum import Enum
from typing import Union

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from gamecore.catalog import AssetCategory

MONEY = Decimal("0.01")
PRICE = Decimal("0.0001")
ZERO = Decimal("0.00")

FD_DURATIONS = (3, 12, 24, 36)

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert user/wire input to Decimal. Floats go through ``str`` so 0.1 stays 0.1."""
    from gamecore.error_types import ValidationError

    if isinstance(value, bool):
        raise ValidationError(f"not a number: {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"not a number: {value!r}") from e
    if not result.is_finite():
        raise ValidationError(f"not a finite number: {value!r}")
    return result


def money(value: Number, rounding: str = ROUND_HALF_EVEN) -> Decimal:
    return to_decimal(value).quantize(MONEY, rounding=rounding)


def cost_of(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """Trade cost in paise, rounded up. A buy never pays less than qty x price."""
    return money(quantity * unit_price, ROUND_CEILING)


def proceeds_of(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """Sale proceeds in paise, rounded down."""
    return money(quantity * unit_price, ROUND_FLOOR)


def price(value: Number) -> Decimal:
    return to_decimal(value).quantize(PRICE, rounding=ROUND_HALF_EVEN)


def month_index(year: int, month: int) -> int:
    """Months since game (1, 1). Monotonic in (year, month)."""
    return (year - 1) * 12 + (month - 1)


def add_months(year: int, month: int, months: int) -> tuple[int, int]:
    total = month_index(year, month) + months
    return total // 12 + 1, total % 12 + 1


# ---------------------------------------------------------------------------
# Admin settings
# ---------------------------------------------------------------------------

class AdminSettings(BaseModel):
    """Session parameters chosen by the admin/host. Read-only during a game."""

    game_start_year: int = Field(ge=1990, le=2025, default=2005)
    initial_pocket_cash: Decimal = Field(gt=0, default=Decimal("100000"))
    recurring_income: Decimal = Field(ge=0, default=Decimal("50000"))
    selected_categories: list[AssetCategory] = Field(
        default_factory=lambda: [
            AssetCategory.BANKING,
            AssetCategory.GOLD,
            AssetCategory.COMMODITIES,
            AssetCategory.STOCKS,
            AssetCategory.INDEX_FUND,
            AssetCategory.MUTUAL_FUND,
            AssetCategory.REIT,
        ],
    )
    enable_quiz: bool = True
    hide_current_year: bool = False
    events_count: int = Field(ge=1, le=20, default=3)
    month_duration_ms: int = Field(ge=100, le=60_000, default=5000)

    @field_validator("initial_pocket_cash", "recurring_income")
    @classmethod
    def quantise_money(cls, v: Decimal) -> Decimal:
        return money(v)

    @field_validator("selected_categories")
    @classmethod
    def banking_always_selected(cls, v: list[AssetCategory]) -> list[AssetCategory]:
        # Banking is unconditional; keep selection order stable and unique
        ordered = [AssetCategory.BANKING] + [c for c in v if c != AssetCategory.BANKING]
        return list(dict.fromkeys(ordered))

    class Config:
        frozen = True


# ---------------------------------------------------------------------------
# Banking instruments
# ---------------------------------------------------------------------------

class SavingsAccount(BaseModel):
    balance: Decimal = ZERO
    interest_rate: Decimal = Decimal("0.025")  # annual, fraction
    total_deposited: Decimal = ZERO


class FixedDeposit(BaseModel):
    """A term deposit. ``interest_rate_annual_pct`` is snapshotted at creation."""

    id: str
    amount: Decimal
    duration_months: int
    interest_rate_annual_pct: Decimal
    start_year: int
    start_month: int
    maturity_year: int
    maturity_month: int
    is_matured: bool = False

    @field_validator("duration_months")
    @classmethod
    def validate_duration(cls, v: int) -> int:
        if v not in FD_DURATIONS:
            raise ValueError(f"duration_months must be one of {FD_DURATIONS}, got {v}")
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def maturity_value(self) -> Decimal:
        interest = (
            self.amount * self.interest_rate_annual_pct / Decimal(100)
            * Decimal(self.duration_months) / Decimal(12)
        )
        return money(self.amount + interest)


class Holding(BaseModel):
    quantity: Decimal = Field(ge=0)
    avg_price: Decimal = Field(ge=0)
    total_invested: Decimal = Field(ge=0)

    @model_validator(mode="after")
    def empty_holding_has_no_cost(self) -> "Holding":
        if self.quantity == 0 and self.total_invested != 0:
            raise ValueError("holding with zero quantity must have zero total_invested")
        return self


# ---------------------------------------------------------------------------
# Cash flows
# ---------------------------------------------------------------------------

class CashTransactionType(str, Enum):
    RECURRING_INCOME = "recurring_income"
    LIFE_EVENT_GAIN = "life_event_gain"
    LIFE_EVENT_LOSS = "life_event_loss"


class CashTransaction(BaseModel):
    kind: CashTransactionType
    amount: Decimal
    game_year: int
    game_month: int
    note: str = ""


class LifeEvent(BaseModel):
    """A scheduled windfall or expense for one player."""

    id: str
    message: str
    amount: Decimal
    game_year: int = Field(ge=1)
    game_month: int = Field(ge=1, le=12)
    triggered: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_gain(self) -> bool:
        return self.amount >= 0


# ---------------------------------------------------------------------------
# Root state
# ---------------------------------------------------------------------------

class PlayerFinancialState(BaseModel):
    """Everything one player owns, plus their view of the game clock."""

    player_name: str = ""
    pocket_cash: Decimal = ZERO
    pocket_cash_received_total: Decimal = ZERO
    savings_account: SavingsAccount = Field(default_factory=SavingsAccount)
    fixed_deposits: list[FixedDeposit] = Field(default_factory=list)
    holdings: dict[str, Holding] = Field(default_factory=dict)
    completed_quizzes: list[AssetCategory] = Field(default_factory=list)
    quiz_question_indices: dict[AssetCategory, int] = Field(default_factory=dict)
    current_year: int = Field(ge=1, le=20, default=1)
    current_month: int = Field(ge=1, le=12, default=1)
    is_paused: bool = False
    is_started: bool = False
    game_over: bool = False
    fd_sequence: int = 0
    cash_transactions: list[CashTransaction] = Field(default_factory=list)
    life_events: list[LifeEvent] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_in_debt(self) -> bool:
        return self.pocket_cash < 0

    @property
    def months_elapsed(self) -> int:
        return month_index(self.current_year, self.current_month)

    def find_fd(self, fd_id: str) -> FixedDeposit | None:
        for fd in self.fixed_deposits:
            if fd.id == fd_id:
                return fd
        return None


# ---------------------------------------------------------------------------
# Recorded operations (replay / host-client replication)
# ---------------------------------------------------------------------------

class OperationKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    CREATE_FD = "create_fd"
    BREAK_FD = "break_fd"
    COLLECT_FD = "collect_fd"
    BUY = "buy"
    SELL = "sell"


_REQUIRED_FIELDS: dict[OperationKind, tuple[str, ...]] = {
    OperationKind.DEPOSIT: ("amount",),
    OperationKind.WITHDRAW: ("amount",),
    OperationKind.CREATE_FD: ("amount", "duration_months"),
    OperationKind.BREAK_FD: ("fd_id",),
    OperationKind.COLLECT_FD: ("fd_id",),
    OperationKind.BUY: ("symbol", "quantity", "price"),
    OperationKind.SELL: ("symbol", "quantity", "price"),
}


class TradeOperation(BaseModel):
    """One engine call, serialisable so it can be shipped to the host or replayed."""

    kind: OperationKind
    amount: Decimal | None = None
    duration_months: int | None = None
    rate_pct: Decimal | None = None
    fd_id: str | None = None
    symbol: str | None = None
    quantity: Decimal | None = None
    price: Decimal | None = None

    @model_validator(mode="after")
    def check_required_fields(self) -> "TradeOperation":
        missing = [f for f in _REQUIRED_FIELDS[self.kind] if getattr(self, f) is None]
        if missing:
            raise ValueError(f"{self.kind.value} requires {', '.join(missing)}")
        return self

    class Config:
        frozen = True
