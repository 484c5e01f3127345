"""
Allocation Optimizer.

Turns a filtered asset list and a risk score into normalized weights using
three risk bands, each with fixed category buckets:

    risk < 30   : 60% bonds (≤3)      + 40% stable dividend stocks (≤4)
    risk > 70   : 70% momentum (≤6)   + 20% tech (≤2)  + 10% bonds (≤1)
    otherwise   : 60% balanced (≤5)   + 25% bonds (≤2) + 15% ETFs (≤2)

Deterministic: no randomness, same input → same output.
"""

from dataclasses import dataclass
from numbers import Integral
from typing import Optional, Sequence

from loguru import logger

from engine.assets import Asset, AssetWeight, BONDS, ETF, TECHNOLOGY
from engine.filters import low_volatility, top_momentum


@dataclass
class AllocationConfig:
    """Risk-band thresholds and bucket targets."""
    low_risk_threshold: int = 30      # risk < this → conservative band
    high_risk_threshold: int = 70     # risk > this → aggressive band

    # Conservative band
    low_bond_weight: float = 0.60
    low_bond_count: int = 3
    low_stable_weight: float = 0.40
    low_stable_count: int = 4
    low_stable_min_yield: float = 0.02

    # Aggressive band
    high_growth_weight: float = 0.70
    high_growth_count: int = 6
    high_growth_min_momentum: float = 0.30
    high_tech_weight: float = 0.20
    high_tech_count: int = 2
    high_bond_weight: float = 0.10
    high_bond_count: int = 1

    # Balanced band
    mid_stock_weight: float = 0.60
    mid_stock_count: int = 5
    mid_stock_min_momentum: float = 0.10
    mid_stock_max_volatility: float = 0.35
    mid_bond_weight: float = 0.25
    mid_bond_count: int = 2
    mid_etf_weight: float = 0.15
    mid_etf_count: int = 2


def validate_risk_score(risk_score) -> int:
    """Risk scores are integers in [0, 100]; anything else is a caller error."""
    if isinstance(risk_score, bool) or not isinstance(risk_score, Integral):
        raise ValueError(f"Risk score must be an integer in [0, 100], got {risk_score!r}")
    if not 0 <= risk_score <= 100:
        raise ValueError(f"Risk score must be in [0, 100], got {risk_score}")
    return int(risk_score)


def risk_band(risk_score: int, config: Optional[AllocationConfig] = None) -> str:
    """'low', 'high' or 'mid'."""
    if config is None:
        config = AllocationConfig()
    if risk_score < config.low_risk_threshold:
        return "low"
    if risk_score > config.high_risk_threshold:
        return "high"
    return "mid"


def _spread(assets: Sequence[Asset], total: float) -> list[AssetWeight]:
    if not assets:
        return []
    w = total / len(assets)
    return [AssetWeight(asset=a, weight=w) for a in assets]


def normalize_weights(weights: list[AssetWeight]) -> list[AssetWeight]:
    """Rescale weights to sum to 1. A zero total is returned unchanged."""
    total = sum(w.weight for w in weights)
    if total <= 0:
        return list(weights)
    return [AssetWeight(asset=w.asset, weight=w.weight / total) for w in weights]


def optimize_mix(
    assets: Sequence[Asset],
    risk_score: int,
    config: Optional[AllocationConfig] = None,
) -> list[AssetWeight]:
    """
    Build the bucketed allocation for a risk score.

    Buckets with no qualifying asset are skipped and the rest renormalized,
    so the weights always sum to 1 unless nothing qualified at all (empty list).
    """
    risk_score = validate_risk_score(risk_score)
    if config is None:
        config = AllocationConfig()
    c = config

    band = risk_band(risk_score, c)
    weights: list[AssetWeight] = []

    if band == "low":
        bonds = [a for a in assets if a.sector == BONDS][:c.low_bond_count]
        stable = low_volatility(
            [a for a in assets if a.sector != BONDS and a.metrics.dividend_yield > c.low_stable_min_yield],
            c.low_stable_count,
        )
        weights += _spread(bonds, c.low_bond_weight)
        weights += _spread(stable, c.low_stable_weight)

    elif band == "high":
        growth = top_momentum(
            [a for a in assets if a.sector != BONDS and a.metrics.momentum_12m > c.high_growth_min_momentum],
            c.high_growth_count,
        )
        tech = [a for a in assets if a.sector == TECHNOLOGY][:c.high_tech_count]
        bonds = [a for a in assets if a.sector == BONDS][:c.high_bond_count]
        weights += _spread(growth, c.high_growth_weight)
        weights += _spread(tech, c.high_tech_weight)
        weights += _spread(bonds, c.high_bond_weight)

    else:
        balanced = [
            a for a in assets
            if a.sector != BONDS
            and a.metrics.momentum_12m > c.mid_stock_min_momentum
            and a.metrics.volatility < c.mid_stock_max_volatility
        ][:c.mid_stock_count]
        bonds = [a for a in assets if a.sector == BONDS][:c.mid_bond_count]
        etfs = [a for a in assets if a.sector == ETF][:c.mid_etf_count]
        weights += _spread(balanced, c.mid_stock_weight)
        weights += _spread(bonds, c.mid_bond_weight)
        weights += _spread(etfs, c.mid_etf_weight)

    weights = normalize_weights(weights)
    logger.debug(
        f"optimize_mix(risk={risk_score}, band={band}): {len(weights)} positions from {len(assets)} assets"
    )
    return weights
