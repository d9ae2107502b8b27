"""Net worth, category breakdown and return metrics for a player.

Pure functions over ``(PlayerFinancialState, price_lookup)``. The lookup
returns ``None`` when a symbol has no price for the current month; such
holdings are valued at cost so a missing tick never reads as a crash to zero.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Callable

from gamecore.catalog import INSTRUMENTS, AssetCategory
from gamecore.models import ZERO, AdminSettings, PlayerFinancialState, money
from gamecore.portfolio_engine import fd_current_value

logger = logging.getLogger(__name__)

PriceLookup = Callable[[str], "Decimal | None"]

MIN_YEARS = Decimal(1) / Decimal(12)

_BUCKETS: dict[AssetCategory, str] = {
    AssetCategory.GOLD: "gold",
    AssetCategory.COMMODITIES: "commodities",
    AssetCategory.STOCKS: "stocks",
    AssetCategory.INDEX_FUND: "index_funds",
    AssetCategory.MUTUAL_FUND: "mutual_funds",
    AssetCategory.REIT: "reits",
    AssetCategory.CRYPTO: "crypto",
    AssetCategory.FOREX: "forex",
}


@dataclass
class PortfolioBreakdown:
    cash: Decimal = ZERO
    savings: Decimal = ZERO
    fixed_deposits: Decimal = ZERO
    gold: Decimal = ZERO
    commodities: Decimal = ZERO
    stocks: Decimal = ZERO
    index_funds: Decimal = ZERO
    mutual_funds: Decimal = ZERO
    reits: Decimal = ZERO
    crypto: Decimal = ZERO
    forex: Decimal = ZERO
    other: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return money(sum(asdict(self).values(), ZERO))

    def to_dict(self) -> dict[str, str]:
        out = {k: str(v) for k, v in asdict(self).items()}
        out["total"] = str(self.total)
        return out


def holding_value(symbol: str, quantity: Decimal, total_invested: Decimal, price_lookup: PriceLookup) -> Decimal:
    px = price_lookup(symbol)
    if px is None:
        logger.debug("No price for %s, valuing at cost", symbol)
        return money(total_invested)
    return money(quantity * px)


def portfolio_breakdown(state: PlayerFinancialState, price_lookup: PriceLookup) -> PortfolioBreakdown:
    """Group a player's wealth by asset bucket at current prices."""
    bd = PortfolioBreakdown(
        cash=money(state.pocket_cash),
        savings=money(state.savings_account.balance),
        fixed_deposits=money(sum(
            (fd_current_value(fd, state.current_year, state.current_month) for fd in state.fixed_deposits),
            ZERO,
        )),
    )
    for symbol, holding in state.holdings.items():
        inst = INSTRUMENTS.get(symbol)
        bucket = _BUCKETS.get(inst.category, "other") if inst is not None else "other"
        value = holding_value(symbol, holding.quantity, holding.total_invested, price_lookup)
        setattr(bd, bucket, money(getattr(bd, bucket) + value))
    return bd


def calculate_networth(state: PlayerFinancialState, price_lookup: PriceLookup) -> Decimal:
    """cash + savings + FD accrued values + holdings at current prices."""
    return portfolio_breakdown(state, price_lookup).total


def elapsed_years(state: PlayerFinancialState) -> Decimal:
    return Decimal(state.months_elapsed) / Decimal(12)


def calculate_cagr(net_worth: Decimal, total_capital: Decimal, years: Decimal | float) -> float:
    """Compound annual growth rate in percent.

    ``years`` is floored at one month so the first tick does not divide by
    zero. A wiped-out portfolio reports -100.
    """
    if total_capital <= 0:
        return 0.0
    if net_worth <= 0:
        return -100.0
    y = max(Decimal(str(years)), MIN_YEARS)
    ratio = float(net_worth / total_capital)
    return round((ratio ** (1.0 / float(y)) - 1.0) * 100.0, 2)


def profit_loss(net_worth: Decimal, total_capital: Decimal) -> Decimal:
    return money(net_worth - total_capital)


def player_summary(state: PlayerFinancialState, price_lookup: PriceLookup) -> dict[str, Any]:
    """Leaderboard row: net worth plus return metrics."""
    nw = calculate_networth(state, price_lookup)
    capital = state.pocket_cash_received_total
    return {
        "player_name": state.player_name,
        "networth": nw,
        "cagr": calculate_cagr(nw, capital, elapsed_years(state)),
        "profit_loss": profit_loss(nw, capital),
        "year": state.current_year,
        "month": state.current_month,
    }


# ---------------------------------------------------------------------------
# End-of-game record
# ---------------------------------------------------------------------------

@dataclass
class GameEndRecord:
    player_name: str
    mode: str
    final_networth: Decimal
    cagr: float
    profit_loss: Decimal
    portfolio_breakdown: dict[str, str]
    admin_settings: dict[str, Any]
    duration_minutes: float
    session_id: str = ""


def build_game_end_record(
    state: PlayerFinancialState,
    price_lookup: PriceLookup,
    settings: AdminSettings,
    mode: str,
    duration_minutes: float,
    session_id: str = "",
) -> GameEndRecord:
    bd = portfolio_breakdown(state, price_lookup)
    nw = bd.total
    capital = state.pocket_cash_received_total
    return GameEndRecord(
        player_name=state.player_name,
        mode=mode,
        final_networth=nw,
        cagr=calculate_cagr(nw, capital, elapsed_years(state)),
        profit_loss=profit_loss(nw, capital),
        portfolio_breakdown=bd.to_dict(),
        admin_settings=settings.model_dump(mode="json"),
        duration_minutes=round(duration_minutes, 2),
        session_id=session_id,
    )
