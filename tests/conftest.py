"""Shared test fixtures for the investing game core."""

from decimal import Decimal

import pytest

from gamecore.catalog import AssetCategory
from gamecore.config import reset_config
from gamecore.models import AdminSettings
from gamecore.portfolio_engine import new_player_state
from market.price_feed import StaticPriceFeed


@pytest.fixture(autouse=True)
def _fresh_config():
    """Every test starts from the checked-in config.yaml."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def settings() -> AdminSettings:
    """Defaults with a 2005 start and quizzes on."""
    return AdminSettings(
        game_start_year=2005,
        initial_pocket_cash=Decimal("100000"),
        recurring_income=Decimal("50000"),
        events_count=1,
        month_duration_ms=100,
    )


@pytest.fixture
def quiet_settings() -> AdminSettings:
    """Quizzes off so the clock never pauses."""
    return AdminSettings(
        game_start_year=2005,
        initial_pocket_cash=Decimal("100000"),
        recurring_income=Decimal("50000"),
        enable_quiz=False,
        events_count=1,
        month_duration_ms=100,
    )


@pytest.fixture
def state(settings):
    """Fresh player at (1, 1) with 100,000 cash and no life events."""
    return new_player_state(settings, player_name="Asha")


@pytest.fixture
def flat_prices() -> dict[str, Decimal]:
    return {
        "Physical_Gold": Decimal("1000"),
        "NIFTYBEES": Decimal("50"),
        "BTC": Decimal("20000"),
    }


@pytest.fixture
def price_lookup(flat_prices):
    return flat_prices.get


@pytest.fixture
def static_feed() -> StaticPriceFeed:
    """Every tradeable symbol of the default categories priced from 2000 onward.

    Each series starts at 100 in its first data month and rises by 1 every
    January after that.
    """
    from gamecore.catalog import CATEGORY_INSTRUMENTS, INSTRUMENTS

    prices = {}
    for category in (
        AssetCategory.GOLD,
        AssetCategory.COMMODITIES,
        AssetCategory.STOCKS,
        AssetCategory.INDEX_FUND,
        AssetCategory.MUTUAL_FUND,
        AssetCategory.REIT,
    ):
        for symbol in CATEGORY_INSTRUMENTS[category]:
            first_year, first_month = INSTRUMENTS[symbol].first_data
            by_month = {(first_year, first_month): Decimal(100)}
            for year in range(first_year + 1, 2031):
                by_month[(year, 1)] = Decimal(100 + year - first_year)
            prices[symbol] = by_month
    return StaticPriceFeed(prices)
