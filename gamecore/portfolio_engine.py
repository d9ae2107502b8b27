"""Pure business logic for player portfolios.

All functions take a ``PlayerFinancialState`` in and return a new one out.
The input is never mutated: every operation validates against the original,
then applies its changes to a deep copy. A raised error therefore means
nothing happened, and two replicas fed the same (state, operation, price)
produce byte-identical results.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from gamecore.config import load_config
from gamecore.error_types import (
    AccountInDebt,
    AlreadyMatured,
    GameEnded,
    InsufficientBalance,
    InsufficientFunds,
    InsufficientHoldings,
    MaxFDReached,
    NotFound,
    NotYetMatured,
    ValidationError,
)
from gamecore.catalog import AssetCategory
from gamecore.models import (
    FD_DURATIONS,
    ZERO,
    AdminSettings,
    CashTransaction,
    CashTransactionType,
    FixedDeposit,
    Holding,
    LifeEvent,
    Number,
    OperationKind,
    PlayerFinancialState,
    SavingsAccount,
    TradeOperation,
    add_months,
    cost_of,
    money,
    month_index,
    price as to_price,
    proceeds_of,
    to_decimal,
)

logger = logging.getLogger(__name__)

RECURRING_INCOME_MONTHS = (6, 12)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def _game_cfg() -> dict:
    return load_config().get("game", {})


def _max_fixed_deposits() -> int:
    return _game_cfg().get("max_fixed_deposits", 3)


def _total_years() -> int:
    return _game_cfg().get("total_years", 20)


def _break_penalty_pct() -> Decimal:
    return to_decimal(_game_cfg().get("fd_break_penalty_pct", 1.0))


def fd_rate_for(duration_months: int) -> Decimal:
    """Current configured annual rate (%) for an FD term."""
    rates = _game_cfg().get("fd_rates", {})
    if duration_months not in rates:
        raise ValidationError(f"no FD rate configured for {duration_months} months")
    return to_decimal(rates[duration_months])


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

def _ensure_active(state: PlayerFinancialState) -> None:
    if state.game_over:
        raise GameEnded("game has ended; state is read-only")


def _positive_money(amount: Number, what: str = "amount") -> Decimal:
    value = money(amount)
    if value <= 0:
        raise ValidationError(f"{what} must be positive, got {amount}")
    return value


def _positive(value: Number, what: str) -> Decimal:
    result = to_decimal(value)
    if result <= 0:
        raise ValidationError(f"{what} must be positive, got {value}")
    return result


# ---------------------------------------------------------------------------
# Session setup
# ---------------------------------------------------------------------------

def new_player_state(
    settings: AdminSettings,
    player_name: str = "",
    quiz_question_indices: dict[AssetCategory, int] | None = None,
    life_events: list[LifeEvent] | None = None,
) -> PlayerFinancialState:
    """Fresh state at game (1, 1) with the admin's starting cash."""
    rate = to_decimal(_game_cfg().get("savings_interest_rate", 0.025))
    return PlayerFinancialState(
        player_name=player_name,
        pocket_cash=settings.initial_pocket_cash,
        pocket_cash_received_total=settings.initial_pocket_cash,
        savings_account=SavingsAccount(interest_rate=rate),
        quiz_question_indices=dict(quiz_question_indices or {}),
        life_events=[e.model_copy() for e in (life_events or [])],
        is_started=True,
    )


# ---------------------------------------------------------------------------
# Savings account
# ---------------------------------------------------------------------------

def deposit(state: PlayerFinancialState, amount: Number) -> PlayerFinancialState:
    """Move cash from pocket to savings. Blocked while in debt."""
    _ensure_active(state)
    value = _positive_money(amount)
    if state.pocket_cash < 0:
        raise AccountInDebt(f"cannot deposit while pocket cash is {state.pocket_cash}")
    if state.pocket_cash < value:
        raise InsufficientFunds(f"deposit {value} exceeds pocket cash {state.pocket_cash}")

    new = state.model_copy(deep=True)
    new.pocket_cash = money(new.pocket_cash - value)
    new.savings_account.balance = money(new.savings_account.balance + value)
    new.savings_account.total_deposited = money(new.savings_account.total_deposited + value)
    logger.info("Deposit %s to savings", value, extra={"player": state.player_name, "amount": value})
    return new


def withdraw(state: PlayerFinancialState, amount: Number) -> PlayerFinancialState:
    """Move cash from savings to pocket. Allowed even while in debt."""
    _ensure_active(state)
    value = _positive_money(amount)
    if state.savings_account.balance < value:
        raise InsufficientBalance(
            f"withdraw {value} exceeds savings balance {state.savings_account.balance}"
        )

    new = state.model_copy(deep=True)
    new.savings_account.balance = money(new.savings_account.balance - value)
    new.pocket_cash = money(new.pocket_cash + value)
    logger.info("Withdraw %s from savings", value, extra={"player": state.player_name, "amount": value})
    return new


# ---------------------------------------------------------------------------
# Fixed deposits
# ---------------------------------------------------------------------------

def create_fixed_deposit(
    state: PlayerFinancialState,
    amount: Number,
    duration_months: int,
    rate_pct: Number | None = None,
    max_deposits: int | None = None,
) -> PlayerFinancialState:
    """Lock ``amount`` for ``duration_months`` at the rate in force right now."""
    _ensure_active(state)
    value = _positive_money(amount)
    if duration_months not in FD_DURATIONS:
        raise ValidationError(f"duration must be one of {FD_DURATIONS}, got {duration_months}")
    rate = fd_rate_for(duration_months) if rate_pct is None else to_decimal(rate_pct)
    if rate < 0:
        raise ValidationError(f"rate must be >= 0, got {rate_pct}")
    if state.pocket_cash < 0:
        raise AccountInDebt(f"cannot open FD while pocket cash is {state.pocket_cash}")
    if state.pocket_cash < value:
        raise InsufficientFunds(f"FD {value} exceeds pocket cash {state.pocket_cash}")
    cap = _max_fixed_deposits() if max_deposits is None else max_deposits
    if len(state.fixed_deposits) >= cap:
        raise MaxFDReached(f"already holding {len(state.fixed_deposits)} of {cap} fixed deposits")

    new = state.model_copy(deep=True)
    new.fd_sequence += 1
    maturity_year, maturity_month = add_months(state.current_year, state.current_month, duration_months)
    fd = FixedDeposit(
        id=f"FD-{new.fd_sequence}",
        amount=value,
        duration_months=duration_months,
        interest_rate_annual_pct=rate,
        start_year=state.current_year,
        start_month=state.current_month,
        maturity_year=maturity_year,
        maturity_month=maturity_month,
    )
    new.fixed_deposits.append(fd)
    new.pocket_cash = money(new.pocket_cash - value)
    logger.info(
        "Opened %s: %s for %d months at %s%%", fd.id, value, duration_months, rate,
        extra={"player": state.player_name, "fd_id": fd.id},
    )
    return new


def break_fixed_deposit(state: PlayerFinancialState, fd_id: str) -> PlayerFinancialState:
    """Close an FD early. Returns principal less the break penalty."""
    _ensure_active(state)
    fd = state.find_fd(fd_id)
    if fd is None:
        raise NotFound(f"fixed deposit {fd_id} not found")
    if fd.is_matured:
        raise AlreadyMatured(f"fixed deposit {fd_id} has matured; collect it instead")

    penalty = money(fd.amount * _break_penalty_pct() / Decimal(100))
    payout = money(fd.amount - penalty)

    new = state.model_copy(deep=True)
    new.fixed_deposits = [d for d in new.fixed_deposits if d.id != fd_id]
    new.pocket_cash = money(new.pocket_cash + payout)
    logger.info(
        "Broke %s early: payout %s (penalty %s)", fd_id, payout, penalty,
        extra={"player": state.player_name, "fd_id": fd_id},
    )
    return new


def collect_fixed_deposit(state: PlayerFinancialState, fd_id: str) -> PlayerFinancialState:
    """Pay out a matured FD: principal plus simple annual interest pro-rated by term."""
    _ensure_active(state)
    fd = state.find_fd(fd_id)
    if fd is None:
        raise NotFound(f"fixed deposit {fd_id} not found")
    if not fd.is_matured:
        raise NotYetMatured(
            f"fixed deposit {fd_id} matures at ({fd.maturity_year}, {fd.maturity_month})"
        )

    payout = fd.maturity_value
    new = state.model_copy(deep=True)
    new.fixed_deposits = [d for d in new.fixed_deposits if d.id != fd_id]
    new.pocket_cash = money(new.pocket_cash + payout)
    logger.info("Collected %s: %s", fd_id, payout, extra={"player": state.player_name, "fd_id": fd_id})
    return new


def fd_current_value(fd: FixedDeposit, current_year: int, current_month: int) -> Decimal:
    """Display value of an FD: principal plus interest accrued so far.

    Accrual is linear over the term and clamps at the full maturity value.
    """
    elapsed = month_index(current_year, current_month) - month_index(fd.start_year, fd.start_month)
    elapsed = max(0, min(elapsed, fd.duration_months))
    full_interest = (
        fd.amount * fd.interest_rate_annual_pct / Decimal(100)
        * Decimal(fd.duration_months) / Decimal(12)
    )
    accrued = full_interest * Decimal(elapsed) / Decimal(fd.duration_months)
    return money(fd.amount + accrued)


# ---------------------------------------------------------------------------
# Trading
# ---------------------------------------------------------------------------

def buy(
    state: PlayerFinancialState, symbol: str, quantity: Number, unit_price: Number,
) -> PlayerFinancialState:
    """Buy ``quantity`` units at ``unit_price``; avg price becomes cost-weighted."""
    _ensure_active(state)
    if not symbol:
        raise ValidationError("symbol is required")
    qty = _positive(quantity, "quantity")
    px = _positive(unit_price, "price")
    cost = cost_of(qty, px)
    if state.pocket_cash < cost:
        raise InsufficientFunds(f"buy cost {cost} exceeds pocket cash {state.pocket_cash}")

    new = state.model_copy(deep=True)
    old = new.holdings.get(symbol)
    if old is None:
        holding = Holding(quantity=qty, avg_price=to_price(px), total_invested=cost)
    else:
        new_qty = old.quantity + qty
        avg = (old.quantity * old.avg_price + qty * px) / new_qty
        holding = Holding(
            quantity=new_qty,
            avg_price=to_price(avg),
            total_invested=money(old.total_invested + cost),
        )
    new.holdings[symbol] = holding
    new.pocket_cash = money(new.pocket_cash - cost)
    logger.info(
        "BUY %s x %s @ %s", symbol, qty, px,
        extra={"player": state.player_name, "symbol": symbol, "cost": cost},
    )
    return new


def sell(
    state: PlayerFinancialState, symbol: str, quantity: Number, unit_price: Number,
) -> PlayerFinancialState:
    """Sell part or all of a holding. Avg price is left unchanged."""
    _ensure_active(state)
    qty = _positive(quantity, "quantity")
    px = _positive(unit_price, "price")
    held = state.holdings.get(symbol)
    if held is None or qty > held.quantity:
        have = held.quantity if held is not None else ZERO
        raise InsufficientHoldings(f"sell {qty} {symbol} exceeds holding {have}")

    proceeds = proceeds_of(qty, px)
    new = state.model_copy(deep=True)
    remaining = held.quantity - qty
    if remaining == 0:
        del new.holdings[symbol]
    else:
        new.holdings[symbol] = Holding(
            quantity=remaining,
            avg_price=held.avg_price,
            total_invested=money(held.total_invested * (1 - qty / held.quantity)),
        )
    new.pocket_cash = money(new.pocket_cash + proceeds)
    logger.info(
        "SELL %s x %s @ %s", symbol, qty, px,
        extra={"player": state.player_name, "symbol": symbol, "proceeds": proceeds},
    )
    return new


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def apply_operation(state: PlayerFinancialState, op: TradeOperation) -> PlayerFinancialState:
    """Apply a recorded operation. Same op + same state => same result everywhere."""
    if op.kind == OperationKind.DEPOSIT:
        return deposit(state, op.amount)
    if op.kind == OperationKind.WITHDRAW:
        return withdraw(state, op.amount)
    if op.kind == OperationKind.CREATE_FD:
        return create_fixed_deposit(state, op.amount, op.duration_months, op.rate_pct)
    if op.kind == OperationKind.BREAK_FD:
        return break_fixed_deposit(state, op.fd_id)
    if op.kind == OperationKind.COLLECT_FD:
        return collect_fixed_deposit(state, op.fd_id)
    if op.kind == OperationKind.BUY:
        return buy(state, op.symbol, op.quantity, op.price)
    if op.kind == OperationKind.SELL:
        return sell(state, op.symbol, op.quantity, op.price)
    raise ValidationError(f"unknown operation kind: {op.kind}")


def mark_quiz_completed(state: PlayerFinancialState, category: AssetCategory) -> PlayerFinancialState:
    if category in state.completed_quizzes:
        return state
    new = state.model_copy(deep=True)
    new.completed_quizzes.append(category)
    return new


# ---------------------------------------------------------------------------
# Clock step
# ---------------------------------------------------------------------------

def advance_month(
    state: PlayerFinancialState,
    recurring_income: Number = ZERO,
    total_years: int | None = None,
) -> PlayerFinancialState:
    """Move one month forward and settle everything that happens on that tick.

    Order: clock, savings interest, FD maturity, recurring income (months 6
    and 12), life events. Advancing past the final month ends the game and
    leaves the clock on the last month.
    """
    _ensure_active(state)
    last_year = _total_years() if total_years is None else total_years
    if (state.current_year, state.current_month) >= (last_year, 12):
        return close_game(state)

    new = state.model_copy(deep=True)
    year, month = add_months(state.current_year, state.current_month, 1)
    new.current_year, new.current_month = year, month

    savings = new.savings_account
    if savings.balance > 0 and savings.interest_rate > 0:
        interest = money(savings.balance * savings.interest_rate / Decimal(12))
        savings.balance = money(savings.balance + interest)

    for fd in new.fixed_deposits:
        if not fd.is_matured and (year, month) >= (fd.maturity_year, fd.maturity_month):
            fd.is_matured = True

    income = money(recurring_income)
    if income > 0 and month in RECURRING_INCOME_MONTHS:
        new.pocket_cash = money(new.pocket_cash + income)
        new.pocket_cash_received_total = money(new.pocket_cash_received_total + income)
        new.cash_transactions.append(CashTransaction(
            kind=CashTransactionType.RECURRING_INCOME,
            amount=income, game_year=year, game_month=month,
            note="Recurring income",
        ))

    for event in new.life_events:
        if event.triggered or (event.game_year, event.game_month) != (year, month):
            continue
        amount = money(event.amount)
        new.pocket_cash = money(new.pocket_cash + amount)
        event.triggered = True
        new.cash_transactions.append(CashTransaction(
            kind=CashTransactionType.LIFE_EVENT_GAIN if amount >= 0 else CashTransactionType.LIFE_EVENT_LOSS,
            amount=amount, game_year=year, game_month=month,
            note=event.message,
        ))
        logger.info("Life event '%s': %s", event.message, amount, extra={"player": state.player_name})

    return new


def close_game(state: PlayerFinancialState) -> PlayerFinancialState:
    """Freeze the state where it stands. Used at the final month and when the host ends early."""
    if state.game_over:
        return state
    new = state.model_copy(deep=True)
    new.is_started = False
    new.game_over = True
    logger.info("Game over for %s", state.player_name or "player")
    return new
