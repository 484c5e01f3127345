"""Tests for quote providers and the price cache."""

import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

import market_data.quotes as quotes
from market_data.cache import PriceCache
from market_data.quotes import (
    FixtureQuoteProvider,
    Quote,
    QuoteError,
    QuoteProvider,
    YahooQuoteProvider,
    make_quote_provider,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FlakyProvider(QuoteProvider):
    """Serves increasing prices and fails for symbols in `failing`."""

    def __init__(self):
        super().__init__()
        self.calls = []
        self.failing = set()

    def get_quote(self, symbol):
        symbol = symbol.upper()
        self.calls.append(symbol)
        if symbol in self.failing:
            raise QuoteError(f"{symbol} down")
        return Quote(symbol=symbol, name=symbol, price=100.0 + len(self.calls))

    def get_history(self, symbol, days=365):
        raise QuoteError("no history")


class TestFixtureProvider:
    @pytest.fixture
    def provider(self):
        return FixtureQuoteProvider()

    def test_quote_from_catalog(self, provider):
        q = provider.get_quote("spy")
        assert q.symbol == "SPY"
        assert q.price == 589.67
        assert -2.0 <= q.change_percent <= 2.0

    def test_deterministic(self, provider):
        assert provider.get_quote("AAPL") == FixtureQuoteProvider().get_quote("AAPL")
        h1 = provider.get_history("AAPL", 200)
        h2 = FixtureQuoteProvider().get_history("AAPL", 200)
        assert h1.to_numpy().tolist() == h2.to_numpy().tolist()

    def test_unknown_symbol(self, provider):
        with pytest.raises(QuoteError):
            provider.get_quote("ZZZZ")

    def test_get_quotes_skips_failures(self, provider):
        result = provider.get_quotes(["SPY", "ZZZZ", "bnd"])
        assert set(result) == {"SPY", "BND"}

    def test_history(self, provider):
        h = provider.get_history("NVDA", 365)
        assert isinstance(h, pd.Series)
        assert len(h) > 200
        assert h.iloc[-1] == pytest.approx(875.28)
        assert (h > 0).all()
        assert h.index.is_monotonic_increasing

    def test_market_status(self, provider):
        status = provider.get_market_status()
        q = provider.get_quote("SPY")
        assert status.benchmark == "SPY"
        assert status.status == ("Bullish" if q.change > 0 else "Bearish")

    def test_search(self, provider):
        assert [h["symbol"] for h in provider.search("apple")] == ["AAPL"]
        assert len(provider.search("Inc", limit=3)) == 3
        assert provider.search("   ") == []


class TestYahooProvider:
    def test_quote(self, monkeypatch):
        class FakeTicker:
            def __init__(self, symbol):
                self.symbol = symbol

            def history(self, period):
                return pd.DataFrame({"Close": [98.0, 100.0, 102.0]})

        monkeypatch.setattr(quotes.yf, "Ticker", FakeTicker)
        q = YahooQuoteProvider().get_quote("msft")
        assert q.symbol == "MSFT"
        assert q.name == "Microsoft Corporation"
        assert q.price == 102.0
        assert q.change == 2.0
        assert q.change_percent == pytest.approx(2.0)

    def test_empty_history_raises(self, monkeypatch):
        class EmptyTicker:
            def __init__(self, symbol):
                pass

            def history(self, period):
                return pd.DataFrame()

        monkeypatch.setattr(quotes.yf, "Ticker", EmptyTicker)
        with pytest.raises(QuoteError):
            YahooQuoteProvider().get_quote("MSFT")

    def test_network_error_raises(self, monkeypatch):
        class BrokenTicker:
            def __init__(self, symbol):
                pass

            def history(self, period):
                raise ConnectionError("offline")

        monkeypatch.setattr(quotes.yf, "Ticker", BrokenTicker)
        with pytest.raises(QuoteError):
            YahooQuoteProvider().get_history("MSFT", 30)


class TestProviderFactory:
    def test_default_fixture(self):
        assert isinstance(make_quote_provider({}), FixtureQuoteProvider)

    def test_yahoo(self):
        provider = make_quote_provider({"market_data": {"provider": "yahoo", "benchmark": "qqq"}})
        assert isinstance(provider, YahooQuoteProvider)
        assert provider.benchmark == "QQQ"

    def test_unknown(self):
        with pytest.raises(ValueError):
            make_quote_provider({"market_data": {"provider": "bloomberg"}})


class TestPriceCache:
    def test_fresh_hit(self):
        provider, clock = FlakyProvider(), FakeClock()
        cache = PriceCache(provider, ttl_seconds=300, clock=clock)
        first = cache.get_price("spy")
        clock.now += 100
        second = cache.get_price("SPY")
        assert provider.calls == ["SPY"]
        assert second.quote == first.quote
        assert second.age_seconds == 100
        assert not second.stale

    def test_expired_refetched(self):
        provider, clock = FlakyProvider(), FakeClock()
        cache = PriceCache(provider, ttl_seconds=300, clock=clock)
        first = cache.get_price("SPY")
        clock.now += 301
        second = cache.get_price("SPY")
        assert len(provider.calls) == 2
        assert second.quote.price > first.quote.price

    def test_failed_refresh_keeps_stale(self):
        provider, clock = FlakyProvider(), FakeClock()
        cache = PriceCache(provider, ttl_seconds=300, clock=clock)
        first = cache.get_price("SPY")
        provider.failing.add("SPY")
        clock.now += 600
        stale = cache.get_price("SPY")
        assert stale.quote == first.quote
        assert stale.stale
        assert stale.to_dict()["ageMinutes"] == 10

    def test_never_cached_failure_raises(self):
        provider = FlakyProvider()
        provider.failing.add("SPY")
        cache = PriceCache(provider, clock=FakeClock())
        with pytest.raises(QuoteError):
            cache.get_price("SPY")
        assert cache.get_prices(["SPY"]) == {}

    def test_batched_refresh(self):
        provider = FlakyProvider()
        provider.failing.add("C")
        cache = PriceCache(provider, batch_size=2, clock=FakeClock())
        updated = cache.refresh(["a", "b", "c", "d", "e", "A"])
        assert updated == 4
        assert provider.calls == ["A", "B", "C", "D", "E"]
        assert len(cache) == 4
        assert "C" not in cache
        assert cache.status()["entries"] == 4

    def test_force_update(self):
        provider, clock = FlakyProvider(), FakeClock()
        cache = PriceCache(provider, clock=clock)
        cache.get_price("SPY")
        refreshed = cache.force_update("SPY")
        assert len(provider.calls) == 2
        assert refreshed.quote.price == 102.0

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            PriceCache(FlakyProvider(), ttl_seconds=0)
        with pytest.raises(ValueError):
            PriceCache(FlakyProvider(), batch_size=0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
