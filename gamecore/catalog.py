"""Asset categories and the instrument table.

Every tradeable instrument is listed here with the calendar month its price
data starts. The unlock schedule never exposes an instrument before that
month, so this table is the single source for "does data exist yet".
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple


class AssetCategory(str, Enum):
    BANKING = "BANKING"
    GOLD = "GOLD"
    COMMODITIES = "COMMODITIES"
    STOCKS = "STOCKS"
    INDEX_FUND = "INDEX_FUND"
    MUTUAL_FUND = "MUTUAL_FUND"
    REIT = "REIT"
    CRYPTO = "CRYPTO"
    FOREX = "FOREX"


class Instrument(NamedTuple):
    symbol: str
    category: AssetCategory
    first_year: int
    first_month: int
    tradeable: bool = True

    @property
    def first_data(self) -> tuple[int, int]:
        return (self.first_year, self.first_month)


SAVINGS_ACCOUNT = "SAVINGS_AC"
FIXED_DEPOSIT = "FIXED_DEPOSIT"
PHYSICAL_GOLD = "Physical_Gold"
DIGITAL_GOLD = "Digital_Gold"
ANCHOR_INDEX_FUND = "NIFTYBEES"


def _banking(symbol: str) -> Instrument:
    return Instrument(symbol, AssetCategory.BANKING, 1900, 1, tradeable=False)


def _stock(symbol: str, year: int, month: int) -> Instrument:
    return Instrument(symbol, AssetCategory.STOCKS, year, month)


_TABLE: list[Instrument] = [
    _banking(SAVINGS_ACCOUNT),
    _banking(FIXED_DEPOSIT),

    # -- gold --
    Instrument(PHYSICAL_GOLD, AssetCategory.GOLD, 2000, 8),
    Instrument(DIGITAL_GOLD, AssetCategory.GOLD, 2009, 1),

    # -- commodities --
    Instrument("ALUMINIUM", AssetCategory.COMMODITIES, 2014, 5),
    Instrument("BRENT", AssetCategory.COMMODITIES, 2007, 7),
    Instrument("COPPER", AssetCategory.COMMODITIES, 2000, 8),
    Instrument("COTTON", AssetCategory.COMMODITIES, 2000, 1),
    Instrument("CRUDEOIL_WTI", AssetCategory.COMMODITIES, 2000, 8),
    Instrument("NATURALGAS", AssetCategory.COMMODITIES, 2000, 8),
    Instrument("SILVER", AssetCategory.COMMODITIES, 2000, 8),
    Instrument("WHEAT", AssetCategory.COMMODITIES, 2000, 7),

    # -- index funds --
    Instrument("NIFTYBEES", AssetCategory.INDEX_FUND, 2009, 1),
    Instrument("SETFNIF50", AssetCategory.INDEX_FUND, 2015, 7),
    Instrument("UTINIFTETF", AssetCategory.INDEX_FUND, 2015, 9),
    Instrument("HDFCNIFETF", AssetCategory.INDEX_FUND, 2015, 12),
    Instrument("ICICIB22", AssetCategory.INDEX_FUND, 2019, 12),

    # -- mutual funds --
    Instrument("Axis_Midcap", AssetCategory.MUTUAL_FUND, 2017, 12),
    Instrument("HDFC_SmallCap", AssetCategory.MUTUAL_FUND, 2018, 1),
    Instrument("ICICI_Bluechip", AssetCategory.MUTUAL_FUND, 2017, 12),
    Instrument("Kotak_Emerging", AssetCategory.MUTUAL_FUND, 2017, 12),
    Instrument("Nippon_SmallCap", AssetCategory.MUTUAL_FUND, 2017, 12),
    Instrument("PGIM_Midcap", AssetCategory.MUTUAL_FUND, 2017, 12),
    Instrument("SBI_Bluechip", AssetCategory.MUTUAL_FUND, 2017, 12),

    # -- REITs --
    Instrument("EMBASSY", AssetCategory.REIT, 2019, 3),
    Instrument("MINDSPACE", AssetCategory.REIT, 2020, 8),

    # -- crypto --
    Instrument("BTC", AssetCategory.CRYPTO, 2014, 9),
    Instrument("ETH", AssetCategory.CRYPTO, 2017, 11),

    # -- forex --
    Instrument("EURINR", AssetCategory.FOREX, 2003, 11),
    Instrument("GBPINR", AssetCategory.FOREX, 2006, 5),
    Instrument("USDINR", AssetCategory.FOREX, 2003, 11),

    # -- stocks --
    _stock("5PAISA", 2017, 11),
    _stock("ADANIENT", 2002, 6),
    _stock("ADANIPORTS", 2007, 11),
    _stock("ADANIPOWER", 2009, 8),
    _stock("APOLLOHOSP", 2002, 6),
    _stock("ASHOKLEY", 2002, 6),
    _stock("ASIANPAINT", 2002, 6),
    _stock("AXISBANK", 1998, 11),
    _stock("BAJAJ-AUTO", 2002, 6),
    _stock("BAJAJFINSV", 2002, 8),
    _stock("BAJFINANCE", 2002, 6),
    _stock("BCG", 2015, 5),
    _stock("BEL", 2002, 6),
    _stock("BHARTIARTL", 2002, 6),
    _stock("CESC", 2002, 6),
    _stock("DISHTV", 2007, 4),
    _stock("EASEMYTRIP", 2021, 3),
    _stock("GAIL", 1997, 4),
    _stock("GRASIM", 2002, 6),
    _stock("GVKPIL", 2006, 2),
    _stock("HCC", 1995, 12),
    _stock("HCLTECH", 2002, 8),
    _stock("HDFCBANK", 1995, 12),
    _stock("HEROMOTOCO", 2002, 6),
    _stock("HFCL", 2002, 8),
    _stock("HINDALCO", 1995, 12),
    _stock("HINDCOPPER", 2010, 1),
    _stock("HINDUNILVR", 1995, 12),
    _stock("HONASA", 2023, 11),
    _stock("IBREALEST", 2004, 9),
    _stock("ICICIBANK", 2002, 6),
    _stock("IDEA", 2007, 3),
    _stock("INDIGO", 2015, 11),
    _stock("INDOSTAR", 2018, 5),
    _stock("INDUSINDBK", 2002, 6),
    _stock("INFY", 1995, 12),
    _stock("IRB", 2008, 2),
    _stock("ITC", 1995, 12),
    _stock("ITI", 2002, 6),
    _stock("JPPOWER", 2005, 4),
    _stock("JSL", 2003, 11),
    _stock("JSWSTEEL", 2003, 5),
    _stock("KOTAKBANK", 2001, 7),
    _stock("KSOLVES", 2020, 8),
    _stock("LT", 2002, 6),
    _stock("MANAPPURAM", 2010, 6),
    _stock("MARUTI", 2003, 7),
    _stock("M&M", 1995, 12),
    _stock("MTARTECH", 2021, 3),
    _stock("NACLIND", 2017, 4),
    _stock("NESTLEIND", 2002, 8),
    _stock("NIPPOBATRY", 2002, 6),
    _stock("NTPC", 2004, 11),
    _stock("ONGC", 1995, 12),
    _stock("PAYTM", 2021, 11),
    _stock("PNBHOUSING", 2016, 11),
    _stock("POWERGRID", 2007, 10),
    _stock("QUICKHEAL", 2016, 2),
    _stock("RAILTEL", 2021, 2),
    _stock("RELIANCE", 1995, 12),
    _stock("RPOWER", 2008, 2),
    _stock("RTNINDIA", 2012, 7),
    _stock("RTNPOWER", 2009, 10),
    _stock("SAKSOFT", 2005, 5),
    _stock("SANGINITA", 2017, 3),
    _stock("SBILIFE", 2017, 10),
    _stock("SBIN", 1995, 12),
    _stock("SHRIRAMFIN", 2002, 6),
    _stock("SPCENET", 2013, 11),
    _stock("SUBEXLTD", 2003, 9),
    _stock("SUNPHARMA", 1995, 12),
    _stock("SUZLON", 2005, 10),
    _stock("TATACONSUM", 1995, 12),
    _stock("TATASTEEL", 1995, 12),
    _stock("TCS", 2002, 8),
    _stock("TECHM", 2006, 8),
    _stock("TITAN", 1995, 12),
    _stock("TRENT", 2002, 6),
    _stock("TRIDENT", 2002, 6),
    _stock("UCOBANK", 2003, 10),
    _stock("UJJIVANSFB", 2019, 12),
    _stock("ULTRACEMCO", 2002, 8),
    _stock("VAKRANGEE", 2006, 4),
    _stock("VERTOZ", 2017, 11),
    _stock("VINNY", 2018, 10),
    _stock("WEBELSOLAR", 2007, 5),
    _stock("WEIZMANIND", 2002, 7),
    _stock("WIPRO", 1995, 12),
    _stock("YESBANK", 2005, 7),
    _stock("ZEEL", 2002, 6),
]

INSTRUMENTS: dict[str, Instrument] = {inst.symbol: inst for inst in _TABLE}

CATEGORY_INSTRUMENTS: dict[AssetCategory, tuple[str, ...]] = {
    category: tuple(sorted(i.symbol for i in _TABLE if i.category == category))
    for category in AssetCategory
}

# Every category must own at least one instrument; a category added to the
# enum without table rows fails at import rather than silently never unlocking.
_missing = [c.value for c, symbols in CATEGORY_INSTRUMENTS.items() if not symbols]
if _missing:
    raise RuntimeError(f"categories without instruments: {_missing}")
if len(INSTRUMENTS) != len(_TABLE):
    raise RuntimeError("duplicate symbols in instrument table")


def instrument(symbol: str) -> Instrument:
    """Look up an instrument by symbol. Raises KeyError for unknown symbols."""
    return INSTRUMENTS[symbol]


def category_of(symbol: str) -> AssetCategory:
    return INSTRUMENTS[symbol].category


def tradeable_symbols(category: AssetCategory) -> tuple[str, ...]:
    return tuple(s for s in CATEGORY_INSTRUMENTS[category] if INSTRUMENTS[s].tradeable)


def has_data(symbol: str, calendar_year: int, calendar_month: int) -> bool:
    """True once the instrument's price series has started."""
    return (calendar_year, calendar_month) >= INSTRUMENTS[symbol].first_data
