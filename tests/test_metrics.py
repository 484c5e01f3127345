"""Tests for the metrics module."""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from engine.assets import AssetWeight, build_asset_universe
from engine.filters import UserIntent
from engine.metrics import (
    PortfolioStats,
    ZERO_STATS,
    calculate_portfolio_stats,
    drawdown_probability,
    equal_weight_metrics,
    generate_risk_metrics,
    portfolio_yield,
    sharpe_ratio,
)
from engine.optimizer import optimize_mix


@pytest.fixture(scope="module")
def universe():
    return build_asset_universe()


def weights_of(universe, **tickers):
    return [AssetWeight(universe.get_asset_by_ticker(t), w) for t, w in tickers.items()]


class TestPortfolioStats:
    def test_sixty_forty(self, universe):
        stats = calculate_portfolio_stats(weights_of(universe, SPY=0.6, BND=0.4))
        expected_var = 0.6**2 * 0.16**2 + 0.4**2 * 0.05**2 + 2 * 0.6 * 0.4 * 0.16 * 0.05 * (-0.15)
        assert stats.volatility == pytest.approx(np.sqrt(expected_var), rel=1e-12)
        assert stats.volatility == pytest.approx(0.0959, abs=1e-3)
        assert stats.mean_return == pytest.approx(0.6 * 0.26 + 0.4 * 0.05)
        assert stats.max_drawdown == pytest.approx(0.6 * 0.32 + 0.4 * 0.10)

    def test_single_asset(self, universe):
        stats = calculate_portfolio_stats(weights_of(universe, NVDA=1.0))
        assert stats.volatility == pytest.approx(0.45)
        assert stats.mean_return == pytest.approx(1.89)

    def test_drawdown_capped(self, universe):
        stats = calculate_portfolio_stats(weights_of(universe, TSLA=1.0))
        assert stats.max_drawdown == 0.95

    def test_empty(self):
        assert calculate_portfolio_stats([]) == ZERO_STATS

    def test_volatility_non_negative(self, universe):
        for risk in range(0, 101, 10):
            stats = calculate_portfolio_stats(optimize_mix(universe.assets, risk))
            assert stats.volatility >= 0.0
            assert 0.0 <= stats.max_drawdown <= 0.95

    def test_diversification_lowers_volatility(self, universe):
        stats = calculate_portfolio_stats(weights_of(universe, NVDA=0.5, BND=0.5))
        assert stats.volatility < 0.5 * 0.45 + 0.5 * 0.05

    def test_to_dict_keys(self, universe):
        d = calculate_portfolio_stats(weights_of(universe, SPY=1.0)).to_dict()
        assert set(d) == {"meanReturn", "volatility", "maxDrawdown"}


class TestRiskMetrics:
    def test_sharpe(self):
        assert sharpe_ratio(0.13, 0.2) == pytest.approx(0.5)
        assert sharpe_ratio(0.13, 0.0) == 0.0
        assert sharpe_ratio(0.14, 0.2, risk_free=0.04) == pytest.approx(0.5)

    def test_drawdown_probability(self):
        assert drawdown_probability(PortfolioStats(0.1, 0.2, 0.4)) == 0.3
        assert drawdown_probability(PortfolioStats(0.1, 1.5, 0.95)) == 0.95

    def test_generate_risk_metrics(self):
        m = generate_risk_metrics(PortfolioStats(0.10, 0.20, 0.40), UserIntent.GROWTH)
        assert m["typicalYear"] == "+10.0%"
        assert m["badYear"] == "-30.0%"
        assert m["vibe"] == "Growth Engine"
        assert m["sharpeRatio"] == "0.35"
        assert m["drawdownProb"] == "30%"

    @pytest.mark.parametrize("vol,intent,vibe", [
        (0.10, "Growth", "Defensive Shield"),
        (0.40, "Income", "Rocket Fuel"),
        (0.20, "Income", "Income Generator"),
        (0.20, "Stability", "Balanced"),
    ])
    def test_vibes(self, vol, intent, vibe):
        assert generate_risk_metrics(PortfolioStats(0.1, vol, 0.2), intent)["vibe"] == vibe

    def test_portfolio_yield(self, universe):
        assert portfolio_yield(weights_of(universe, BND=0.5, SO=0.5)) == pytest.approx(0.04)


class TestEqualWeightMetrics:
    def test_basket(self, universe):
        m = equal_weight_metrics(["SPY", "BND"], universe)
        assert m["expected_return"] == pytest.approx(0.155)
        assert m["beta"] == pytest.approx(0.425)
        assert m["sharpe_ratio"] == pytest.approx((0.155 - 0.04) / m["volatility"])

    def test_unknown_tickers_ignored(self, universe):
        assert equal_weight_metrics(["SPY", "NOPE"], universe)["expected_return"] == pytest.approx(0.26)

    def test_empty(self, universe):
        assert equal_weight_metrics(["NOPE"], universe)["volatility"] == 0.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
