"""Monthly price lookup over historical series.

A price for (symbol, calendar_year, calendar_month) is the last observation
on or before the first day of that month. If the series starts partway
through the requested month its first observation is used; before that
month there is no price. After the series ends the last price carries
forward.

Results are cached per ``(symbol, "YYYY-MM")`` so repeated lookups (every
player's net worth every tick) never rescan the frame.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path
from typing import Protocol

import pandas as pd

from gamecore.models import price as to_price

logger = logging.getLogger(__name__)

ZERO_PRICE = Decimal("0")


class PriceSource(Protocol):
    def get_price(self, symbol: str, calendar_year: int, calendar_month: int) -> Decimal | None: ...

    def get_price_history(
        self, symbol: str, calendar_year: int, calendar_month: int, months: int,
    ) -> list[Decimal]: ...


def month_key(calendar_year: int, calendar_month: int) -> str:
    return f"{calendar_year:04d}-{calendar_month:02d}"


def trailing_months(calendar_year: int, calendar_month: int, months: int) -> list[tuple[int, int]]:
    """``months`` (year, month) pairs ending at the given month, oldest first."""
    end = calendar_year * 12 + (calendar_month - 1)
    return [((i // 12), (i % 12) + 1) for i in range(end - months + 1, end + 1)]


class _HistoryMixin:
    def get_price_history(
        self, symbol: str, calendar_year: int, calendar_month: int, months: int,
    ) -> list[Decimal]:
        """Fixed-length history, most recent last. Months without data read 0."""
        if months <= 0:
            return []
        out = []
        for y, m in trailing_months(calendar_year, calendar_month, months):
            px = self.get_price(symbol, y, m)
            out.append(px if px is not None else ZERO_PRICE)
        return out


class HistoricalPriceFeed(_HistoryMixin):
    """Price source backed by a long-format DataFrame.

    Expected columns: ``symbol``, ``date`` (anything ``pd.to_datetime``
    accepts) and ``price``.
    """

    def __init__(self, frame: pd.DataFrame):
        missing = {"symbol", "date", "price"} - set(frame.columns)
        if missing:
            raise ValueError(f"price frame missing columns: {sorted(missing)}")
        df = frame.loc[:, ["symbol", "date", "price"]].copy()
        df["date"] = pd.to_datetime(df["date"])
        df = df.dropna(subset=["price"])
        df = df[df["price"] > 0]
        self._series: dict[str, pd.Series] = {
            str(sym): grp.sort_values("date").set_index("date")["price"]
            for sym, grp in df.groupby("symbol")
        }
        self._cache: dict[tuple[str, str], Decimal | None] = {}
        logger.info("Loaded price history for %d symbols", len(self._series))

    @classmethod
    def from_csv_dir(cls, data_dir: str | Path) -> "HistoricalPriceFeed":
        """Load ``<SYMBOL>.csv`` files with ``Date`` and ``Close`` (or ``Price``) columns."""
        frames = []
        for path in sorted(Path(data_dir).glob("*.csv")):
            raw = pd.read_csv(path)
            cols = {c.lower(): c for c in raw.columns}
            price_col = cols.get("close") or cols.get("price")
            date_col = cols.get("date")
            if price_col is None or date_col is None:
                logger.warning("Skipping %s: needs Date and Close/Price columns", path.name)
                continue
            frames.append(pd.DataFrame({
                "symbol": path.stem,
                "date": raw[date_col],
                "price": pd.to_numeric(raw[price_col], errors="coerce"),
            }))
        if not frames:
            logger.warning("No price CSVs found in %s", data_dir)
            return cls(pd.DataFrame(columns=["symbol", "date", "price"]))
        return cls(pd.concat(frames, ignore_index=True))

    @property
    def symbols(self) -> list[str]:
        return sorted(self._series)

    def get_price(self, symbol: str, calendar_year: int, calendar_month: int) -> Decimal | None:
        key = (symbol, month_key(calendar_year, calendar_month))
        if key in self._cache:
            return self._cache[key]
        result = self._lookup(symbol, calendar_year, calendar_month)
        self._cache[key] = result
        return result

    def _lookup(self, symbol: str, calendar_year: int, calendar_month: int) -> Decimal | None:
        series = self._series.get(symbol)
        if series is None or series.empty:
            return None
        month_start = pd.Timestamp(year=calendar_year, month=calendar_month, day=1)
        first = series.index[0]
        if (first.year, first.month) > (calendar_year, calendar_month):
            return None
        if first > month_start:
            # Series begins inside this month
            return to_price(repr(float(series.iloc[0])))
        value = series.asof(month_start)
        if pd.isna(value):
            return None
        return to_price(repr(float(value)))


class StaticPriceFeed(_HistoryMixin):
    """Dict-backed price source: ``{symbol: {(year, month): price}}``.

    Missing months fall back to the most recent earlier month, mirroring
    the carry-forward rule of :class:`HistoricalPriceFeed`.
    """

    def __init__(self, prices: dict[str, dict[tuple[int, int], Decimal | int | float | str]]):
        self._prices = {
            sym: dict(sorted(((int(y), int(m)), to_price(v)) for (y, m), v in by_month.items()))
            for sym, by_month in prices.items()
        }

    @property
    def symbols(self) -> list[str]:
        return sorted(self._prices)

    def get_price(self, symbol: str, calendar_year: int, calendar_month: int) -> Decimal | None:
        by_month = self._prices.get(symbol)
        if not by_month:
            return None
        target = (calendar_year, calendar_month)
        found = None
        for when, px in by_month.items():
            if when > target:
                break
            found = px
        return found
