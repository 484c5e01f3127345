"""
Portfolio statistics and risk metrics.

`calculate_portfolio_stats` is the single source of a portfolio's expected
return, volatility and drawdown proxy. Volatility uses the full
correlation-aware variance  σ² = Σᵢ Σⱼ wᵢ wⱼ σᵢ σⱼ ρᵢⱼ.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from engine.assets import AssetUniverse, AssetWeight


MAX_DRAWDOWN_CAP = 0.95
DRAWDOWN_VOL_MULTIPLIER = 2.0
DEFAULT_RISK_FREE = 0.03


@dataclass(frozen=True)
class PortfolioStats:
    mean_return: float
    volatility: float
    max_drawdown: float

    def to_dict(self) -> dict:
        return {
            "meanReturn": self.mean_return,
            "volatility": self.volatility,
            "maxDrawdown": self.max_drawdown,
        }


ZERO_STATS = PortfolioStats(mean_return=0.0, volatility=0.0, max_drawdown=0.0)


def correlation_submatrix(weights: Sequence[AssetWeight]) -> np.ndarray:
    """Pairwise correlations of the weighted assets, from each asset's universe row."""
    n = len(weights)
    corr = np.eye(n)
    for i in range(n):
        for j in range(n):
            if i != j:
                corr[i, j] = weights[i].asset.correlation_with(weights[j].asset.ticker)
    return corr


def portfolio_variance(weights: Sequence[AssetWeight]) -> float:
    """wᵀ Σ w, floored at 0 to absorb floating-point noise."""
    if not weights:
        return 0.0
    scaled = np.array([w.weight * w.asset.metrics.volatility for w in weights], dtype=np.float64)
    variance = float(scaled @ correlation_submatrix(weights) @ scaled)
    return max(variance, 0.0)


def calculate_portfolio_stats(weights: Sequence[AssetWeight]) -> PortfolioStats:
    """
    Aggregate weighted asset metrics into portfolio statistics.

    - mean_return: Σ wᵢ · momentum12Mᵢ
    - max_drawdown: Σ wᵢ · 2σᵢ, capped at 0.95
    - volatility: sqrt of the correlation-aware portfolio variance

    An empty weight list yields all-zero statistics.
    """
    if not weights:
        return ZERO_STATS

    mean_return = sum(w.weight * w.asset.metrics.momentum_12m for w in weights)
    drawdown = sum(w.weight * w.asset.metrics.volatility * DRAWDOWN_VOL_MULTIPLIER for w in weights)
    volatility = float(np.sqrt(portfolio_variance(weights)))

    return PortfolioStats(
        mean_return=float(mean_return),
        volatility=volatility,
        max_drawdown=float(min(drawdown, MAX_DRAWDOWN_CAP)),
    )


def portfolio_yield(weights: Iterable[AssetWeight]) -> float:
    """Weighted average dividend yield."""
    return float(sum(w.weight * w.asset.metrics.dividend_yield for w in weights))


def sharpe_ratio(mean_return: float, volatility: float, risk_free: float = DEFAULT_RISK_FREE) -> float:
    """Excess return per unit of volatility; 0 for a riskless portfolio."""
    if volatility <= 0:
        return 0.0
    return float((mean_return - risk_free) / volatility)


def drawdown_probability(stats: PortfolioStats) -> float:
    """Rough probability of a significant drawdown, in [0, 0.95]."""
    prob = min(MAX_DRAWDOWN_CAP, (stats.volatility + stats.max_drawdown) / 2)
    return round(prob, 2)


def risk_vibe(stats: PortfolioStats, intent: Optional[str] = None) -> str:
    if stats.volatility < 0.15:
        return "Defensive Shield"
    if stats.volatility > 0.30:
        return "Rocket Fuel"
    if intent == "Growth":
        return "Growth Engine"
    if intent == "Income":
        return "Income Generator"
    return "Balanced"


def generate_risk_metrics(stats: PortfolioStats, intent: Optional[str] = None,
                          risk_free: float = DEFAULT_RISK_FREE) -> dict:
    """Display-ready risk summary: typical/bad year, vibe, Sharpe, drawdown odds."""
    intent = getattr(intent, "value", intent)
    bad_year = stats.mean_return - 2 * stats.volatility
    return {
        "typicalYear": f"+{stats.mean_return * 100:.1f}%",
        "badYear": f"{bad_year * 100:.1f}%",
        "vibe": risk_vibe(stats, intent),
        "sharpeRatio": f"{sharpe_ratio(stats.mean_return, stats.volatility, risk_free):.2f}",
        "drawdownProb": f"{drawdown_probability(stats) * 100:.0f}%",
    }


def equal_weight_metrics(tickers: Sequence[str], universe: AssetUniverse,
                         risk_free: float = 0.04) -> dict:
    """
    Metrics for an equal-weight basket of tickers. Unknown tickers are ignored;
    an empty basket returns zeros.
    """
    assets = [a for a in (universe.get_asset_by_ticker(t) for t in tickers) if a is not None]
    if not assets:
        return {
            "expected_return": 0.0,
            "volatility": 0.0,
            "sharpe_ratio": 0.0,
            "beta": 0.0,
            "dividend_yield": 0.0,
        }

    w = 1.0 / len(assets)
    weights = [AssetWeight(asset=a, weight=w) for a in assets]
    expected_return = sum(w * a.metrics.momentum_12m for a in assets)
    volatility = float(np.sqrt(portfolio_variance(weights)))
    return {
        "expected_return": float(expected_return),
        "volatility": volatility,
        "sharpe_ratio": sharpe_ratio(expected_return, volatility, risk_free),
        "beta": float(sum(w * a.metrics.beta for a in assets)),
        "dividend_yield": float(sum(w * a.metrics.dividend_yield for a in assets)),
    }
