"""Tests for strategy assembly."""

import re
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from engine.assets import AssetWeight, BONDS, build_asset_universe
from engine.builder import (
    NAME_TEMPLATES,
    StrategyAssembler,
    calculate_allocation_breakdown,
    generate_narrative,
    generate_strategy,
    generate_strategy_name,
    get_standard_60_40,
)
from engine.filters import UserIntent
from engine.metrics import calculate_portfolio_stats
from engine.regime import FixedRegimeDetector, MarketRegime, MarketTrendRegimeDetector
from market_data.quotes import FixtureQuoteProvider


@pytest.fixture(scope="module")
def universe():
    return build_asset_universe()


def weights_of(universe, **tickers):
    return [AssetWeight(universe.get_asset_by_ticker(t), w) for t, w in tickers.items()]


class TestAllocationBreakdown:
    def test_simple(self, universe):
        alloc = calculate_allocation_breakdown(weights_of(universe, MSFT=0.5, BND=0.3, SPY=0.2))
        assert alloc.to_dict() == {"stocks": 50, "bonds": 30, "crypto": 0, "etfs": 20}

    def test_crypto_proxy(self, universe):
        alloc = calculate_allocation_breakdown(weights_of(universe, NVDA=0.25, MSFT=0.75))
        assert alloc.crypto == 25
        assert alloc.stocks == 75

    def test_largest_remainder_sums_to_100(self, universe):
        third = 1 / 3
        alloc = calculate_allocation_breakdown(weights_of(universe, MSFT=third, BND=third, SPY=third))
        assert alloc.total == 100
        assert alloc.to_dict() == {"stocks": 34, "bonds": 33, "crypto": 0, "etfs": 33}

    def test_empty(self):
        assert calculate_allocation_breakdown([]).total == 0


class TestNaming:
    def test_name_uses_template(self):
        rng = np.random.default_rng(0)
        name = generate_strategy_name(UserIntent.GROWTH, 80, MarketRegime.BULL, rng)
        candidates = [t.format(risk="Aggressive", regime="Momentum") for t in NAME_TEMPLATES[UserIntent.GROWTH]]
        assert name in candidates

    def test_narrative(self, universe):
        alloc = calculate_allocation_breakdown(weights_of(universe, MSFT=0.6, BND=0.4))
        text = generate_narrative(UserIntent.INCOME, 20, MarketRegime.BEAR, alloc)
        assert text.startswith("Optimized for bear market conditions using defensive positioning factors.")
        assert "This conservative income strategy allocates 60% to growth stocks, 40% to bonds." in text
        assert text.endswith("Emphasizes dividend-paying assets and yield generation.")


class TestGenerateStrategy:
    def test_pipeline(self, universe):
        assembler = StrategyAssembler(universe=universe,
                                      detector=FixedRegimeDetector(MarketRegime.BULL), seed=1)
        s = assembler.generate("Growth", 80)
        assert s.intent is UserIntent.GROWTH
        assert s.market_regime is MarketRegime.BULL
        assert s.risk_score == 80
        assert re.fullmatch(r"strategy_growth_80_\d+", s.id)
        assert sum(w.weight for w in s.assets) == pytest.approx(1.0)
        assert s.allocation.total == 100
        assert "bull market conditions" in s.narrative

    def test_stats_derived_from_assets(self, universe):
        s = generate_strategy(UserIntent.STABILITY, 50, universe=universe,
                              detector=FixedRegimeDetector("Sideways"), rng=np.random.default_rng(2))
        assert s.stats == calculate_portfolio_stats(s.assets)

    def test_seeded_reproducible(self, universe):
        def make():
            return StrategyAssembler(universe=universe, seed=42).generate("Income", 35)
        a, b = make(), make()
        assert a.name == b.name
        assert a.market_regime == b.market_regime
        assert a.assets == b.assets

    def test_optimizer_fallback_note(self):
        # X survives both filters but fits no low-risk bucket
        records = [{
            "ticker": "X", "name": "X Corp", "sector": "Consumer", "price": 10.0,
            "momentum_12m": 0.25, "earnings_growth": 0.2, "volatility": 0.15, "dividend_yield": 0.0,
        }, {
            "ticker": "BND", "name": "Bond fund", "sector": BONDS, "price": 70.0,
            "momentum_12m": 0.02, "volatility": 0.05, "dividend_yield": 0.04,
        }]
        u = build_asset_universe(records)
        s = StrategyAssembler(universe=u, detector=FixedRegimeDetector("Bull"), seed=0).generate("Growth", 10)
        assert [(w.asset.ticker, w.weight) for w in s.assets] == [("BND", pytest.approx(1.0))]
        assert len(s.notes) == 1
        assert "full universe" in s.notes[0]

    def test_filter_fallback_note(self):
        # Neither asset passes the Bull regime filter
        records = [{
            "ticker": "KO", "name": "Coca-Cola", "sector": "Consumer", "price": 60.0,
            "momentum_12m": 0.05, "volatility": 0.15, "dividend_yield": 0.03,
        }, {
            "ticker": "BND", "name": "Bond fund", "sector": BONDS, "price": 70.0,
            "momentum_12m": 0.02, "volatility": 0.05, "dividend_yield": 0.04,
        }]
        u = build_asset_universe(records)
        s = StrategyAssembler(universe=u, detector=FixedRegimeDetector("Bull"), seed=0).generate("Growth", 90)
        assert s.assets
        assert sum(w.weight for w in s.assets) == pytest.approx(1.0)
        assert len(s.notes) >= 1

    def test_regime_fallback_note(self, universe):
        detector = MarketTrendRegimeDetector(FixtureQuoteProvider(), benchmark="ZZZZ")
        s = StrategyAssembler(universe=universe, detector=detector, seed=0).generate("Growth", 60)
        assert s.market_regime is MarketRegime.SIDEWAYS
        assert "ZZZZ" in s.notes[0]

    def test_invalid_inputs(self, universe):
        assembler = StrategyAssembler(universe=universe, seed=0)
        with pytest.raises(ValueError):
            assembler.generate("Growth", 101)
        with pytest.raises(ValueError):
            assembler.generate("Lottery", 50)

    def test_to_dict(self, universe):
        s = StrategyAssembler(universe=universe, detector=FixedRegimeDetector("Bear"), seed=3).generate("Stability", 40)
        d = s.to_dict()
        assert d["marketRegime"] == "Bear"
        assert d["riskScore"] == 40
        assert set(d["stats"]) == {"meanReturn", "volatility", "maxDrawdown"}
        assert sum(d["allocation"].values()) == 100


class TestSixtyForty:
    def test_baseline(self, universe):
        s = get_standard_60_40(universe)
        assert s.id == "standard_60_40"
        assert [(w.asset.ticker, w.weight) for w in s.assets] == [("SPY", 0.6), ("BND", 0.4)]
        assert s.intent is UserIntent.STABILITY
        assert s.risk_score == 50
        assert s.market_regime is MarketRegime.SIDEWAYS
        assert s.allocation.to_dict() == {"stocks": 60, "bonds": 40, "crypto": 0, "etfs": 0}
        assert s.stats.volatility == pytest.approx(0.0951, abs=1e-3)

    def test_missing_tickers(self):
        u = build_asset_universe([{"ticker": "X", "sector": "Other", "price": 1.0,
                                   "momentum_12m": 0.1, "volatility": 0.1}])
        with pytest.raises(ValueError):
            get_standard_60_40(u)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
