"""
Quote providers.

Two interchangeable implementations of the QuoteProvider interface:
    - FixtureQuoteProvider: deterministic quotes and history derived from the
      asset universe. No network access.
    - YahooQuoteProvider: live data through yfinance. Failures raise QuoteError.

`make_quote_provider(settings)` picks one from the `market_data.provider` key.
"""

import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np
import pandas as pd
import yfinance as yf
from loguru import logger

from engine.assets import AssetUniverse, build_asset_universe


class QuoteError(Exception):
    """A quote or price history could not be obtained."""


@dataclass(frozen=True)
class Quote:
    symbol: str
    name: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    currency: str = "$"

    @property
    def previous_close(self) -> float:
        return self.price - self.change

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "price": self.price,
            "currency": self.currency,
            "change": self.change,
            "changePercent": self.change_percent,
        }


@dataclass(frozen=True)
class MarketStatus:
    status: str              # "Bullish" or "Bearish"
    benchmark: str
    price: float
    change: float
    change_percent: float

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "benchmark": self.benchmark,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
        }


def _make_quote(symbol: str, name: str, price: float, previous_close: float) -> Quote:
    change = price - previous_close
    change_percent = change / previous_close * 100 if previous_close else 0.0
    return Quote(
        symbol=symbol,
        name=name,
        price=round(float(price), 2),
        change=round(float(change), 2),
        change_percent=round(float(change_percent), 2),
    )


class QuoteProvider(ABC):
    """Source of quotes, close-price history and market status."""

    def __init__(self, universe: Optional[AssetUniverse] = None, benchmark: str = "SPY"):
        self.universe = universe if universe is not None else build_asset_universe()
        self.benchmark = benchmark.upper()

    @abstractmethod
    def get_quote(self, symbol: str) -> Quote:
        raise NotImplementedError

    @abstractmethod
    def get_history(self, symbol: str, days: int = 365) -> pd.Series:
        """Daily closes over the last `days` calendar days, indexed by date."""
        raise NotImplementedError

    def get_quotes(self, symbols: Iterable[str]) -> dict[str, Quote]:
        """Quotes for several symbols. Symbols that fail are logged and left out."""
        quotes = {}
        for symbol in symbols:
            try:
                quotes[symbol.upper()] = self.get_quote(symbol)
            except QuoteError as e:
                logger.warning(f"Quote for {symbol} unavailable: {e}")
        return quotes

    def get_market_status(self) -> MarketStatus:
        """Bullish when the benchmark trades above its previous close."""
        quote = self.get_quote(self.benchmark)
        return MarketStatus(
            status="Bullish" if quote.price > quote.previous_close else "Bearish",
            benchmark=quote.symbol,
            price=quote.price,
            change=quote.change,
            change_percent=quote.change_percent,
        )

    def search(self, query: str, limit: int = 10) -> list[dict]:
        """Case-insensitive match on ticker or name over the asset catalog."""
        q = query.strip().lower()
        if not q:
            return []
        hits = [
            {"symbol": a.ticker, "name": a.name, "sector": a.sector}
            for a in self.universe.assets
            if q in a.ticker.lower() or q in a.name.lower()
        ]
        return hits[:limit]

    def display_name(self, symbol: str) -> str:
        asset = self.universe.get_asset_by_ticker(symbol.upper())
        return asset.name if asset is not None else symbol.upper()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(benchmark={self.benchmark})"


class FixtureQuoteProvider(QuoteProvider):
    """
    Deterministic offline provider.

    Prices come from the asset catalog; daily moves and history are generated
    from a per-ticker seed, so repeated calls return identical data.
    """

    def _seed(self, symbol: str) -> int:
        return zlib.crc32(symbol.upper().encode("utf-8"))

    def _asset(self, symbol: str):
        asset = self.universe.get_asset_by_ticker(symbol.upper())
        if asset is None:
            raise QuoteError(f"No fixture data for {symbol.upper()}")
        return asset

    def get_quote(self, symbol: str) -> Quote:
        asset = self._asset(symbol)
        # Daily move in [-2%, +2%]
        move = ((self._seed(asset.ticker) % 401) - 200) / 10000
        previous_close = asset.price / (1 + move)
        return _make_quote(asset.ticker, asset.name, asset.price, previous_close)

    def get_history(self, symbol: str, days: int = 365) -> pd.Series:
        if days < 1:
            raise ValueError(f"days must be positive, got {days}")
        asset = self._asset(symbol)
        end = pd.Timestamp.today().normalize()
        index = pd.bdate_range(end=end, periods=max(int(days * 252 / 365), 2))

        rng = np.random.default_rng(self._seed(asset.ticker))
        dt = 1.0 / 252
        steps = asset.metrics.momentum_12m * dt + asset.metrics.volatility * np.sqrt(dt) * rng.standard_normal(len(index))
        log_path = np.cumsum(steps)
        # Anchor the last close on the catalog price
        closes = asset.price * np.exp(log_path - log_path[-1])
        return pd.Series(closes, index=index, name=asset.ticker)


class YahooQuoteProvider(QuoteProvider):
    """Live quotes and history from Yahoo Finance via yfinance."""

    def _history(self, symbol: str, period: str) -> pd.DataFrame:
        try:
            hist = yf.Ticker(symbol.upper()).history(period=period)
        except Exception as e:
            raise QuoteError(f"Yahoo request for {symbol.upper()} failed: {e}") from e
        if hist is None or hist.empty or "Close" not in hist:
            raise QuoteError(f"No data returned for {symbol.upper()}")
        return hist

    def get_quote(self, symbol: str) -> Quote:
        logger.debug(f"Fetching quote for {symbol.upper()}")
        closes = self._history(symbol, "5d")["Close"].dropna()
        if closes.empty:
            raise QuoteError(f"No closing prices for {symbol.upper()}")
        price = float(closes.iloc[-1])
        previous_close = float(closes.iloc[-2]) if len(closes) > 1 else price
        return _make_quote(symbol.upper(), self.display_name(symbol), price, previous_close)

    def get_history(self, symbol: str, days: int = 365) -> pd.Series:
        if days < 1:
            raise ValueError(f"days must be positive, got {days}")
        closes = self._history(symbol, f"{int(days)}d")["Close"].dropna()
        closes.name = symbol.upper()
        return closes


PROVIDERS = {
    "fixture": FixtureQuoteProvider,
    "yahoo": YahooQuoteProvider,
}


def make_quote_provider(settings: Optional[dict] = None,
                        universe: Optional[AssetUniverse] = None) -> QuoteProvider:
    """Build the provider named by settings['market_data']['provider'] (default: fixture)."""
    md = (settings or {}).get("market_data") or {}
    name = str(md.get("provider", "fixture")).lower()
    if name not in PROVIDERS:
        raise ValueError(f"Unknown quote provider '{name}'. Available: {list(PROVIDERS.keys())}")
    provider = PROVIDERS[name](universe=universe, benchmark=md.get("benchmark", "SPY"))
    logger.debug(f"Quote provider: {provider!r}")
    return provider
