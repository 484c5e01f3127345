"""
In-memory price cache over a QuoteProvider.

Entries older than the TTL are refreshed on access. A failed refresh keeps
the previous entry (flagged stale) and logs a warning; only a symbol that has
never been fetched propagates the QuoteError.
"""

import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from loguru import logger
from tqdm import tqdm

from market_data.quotes import Quote, QuoteError, QuoteProvider


DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_BATCH_SIZE = 5


@dataclass(frozen=True)
class CachedPrice:
    quote: Quote
    fetched_at: float
    age_seconds: float = 0.0
    stale: bool = False

    def to_dict(self) -> dict:
        return {
            **self.quote.to_dict(),
            "cached": True,
            "ageMinutes": round(self.age_seconds / 60),
            "stale": self.stale,
        }


class PriceCache:
    def __init__(
        self,
        provider: QuoteProvider,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.provider = provider
        self.ttl_seconds = ttl_seconds
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.clock = clock
        self._entries: dict[str, tuple[Quote, float]] = {}
        self.last_refresh: Optional[float] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, symbol: str) -> bool:
        return symbol.upper() in self._entries

    def _view(self, symbol: str) -> Optional[CachedPrice]:
        entry = self._entries.get(symbol)
        if entry is None:
            return None
        quote, fetched_at = entry
        age = self.clock() - fetched_at
        return CachedPrice(quote=quote, fetched_at=fetched_at, age_seconds=age,
                           stale=age > self.ttl_seconds)

    def get_cached(self, symbol: str) -> Optional[CachedPrice]:
        """The cached entry as-is (possibly stale), without touching the provider."""
        return self._view(symbol.upper())

    def update(self, symbol: str) -> bool:
        """Fetch one symbol. Returns False (keeping any old entry) when the provider fails."""
        symbol = symbol.upper()
        try:
            quote = self.provider.get_quote(symbol)
        except QuoteError as e:
            if symbol in self._entries:
                logger.warning(f"Could not update {symbol}, keeping cached data: {e}")
            else:
                logger.warning(f"Could not update {symbol}: {e}")
            return False
        self._entries[symbol] = (quote, self.clock())
        logger.debug(f"Updated {symbol}: {quote.price} ({quote.change_percent:+.2f}%)")
        return True

    def get_price(self, symbol: str) -> CachedPrice:
        """
        Fresh-enough quote for a symbol, refreshing it past the TTL.

        Raises:
            QuoteError: the symbol was never cached and the provider failed.
        """
        symbol = symbol.upper()
        view = self._view(symbol)
        if view is not None and not view.stale:
            return view
        if not self.update(symbol) and view is None:
            raise QuoteError(f"No price available for {symbol}")
        return self._view(symbol)

    def get_prices(self, symbols: Iterable[str]) -> dict[str, CachedPrice]:
        """Cached prices for the symbols that have an entry after refreshing."""
        prices = {}
        for symbol in symbols:
            try:
                prices[symbol.upper()] = self.get_price(symbol)
            except QuoteError:
                continue
        return prices

    def refresh(self, symbols: Iterable[str], progress: bool = False) -> int:
        """Update symbols in batches of `batch_size`. Returns the number updated."""
        symbols = list(dict.fromkeys(s.upper() for s in symbols))
        batches = [symbols[i:i + self.batch_size] for i in range(0, len(symbols), self.batch_size)]
        logger.info(f"Updating prices for {len(symbols)} symbols in {len(batches)} batches")

        updated = 0
        for i, batch in enumerate(tqdm(batches, desc="Refreshing", unit="batch", disable=not progress)):
            updated += sum(self.update(symbol) for symbol in batch)
            if self.batch_delay > 0 and i < len(batches) - 1:
                time.sleep(self.batch_delay)

        self.last_refresh = self.clock()
        logger.info(f"Price cache refresh done: {updated}/{len(symbols)} updated")
        return updated

    def force_update(self, symbol: str) -> Optional[CachedPrice]:
        self.update(symbol)
        return self.get_cached(symbol)

    def status(self) -> dict:
        views = [self._view(s) for s in self._entries]
        return {
            "entries": len(views),
            "stale": sum(v.stale for v in views),
            "ttlSeconds": self.ttl_seconds,
            "batchSize": self.batch_size,
            "lastRefresh": self.last_refresh,
        }
