"""
Asset filters.

Narrow the universe by market regime, by user intent, and (for the custom
builder) by factor tags. Filters never mutate their input.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Sequence, Union

from loguru import logger

from engine.assets import Asset, BONDS, ETF, REAL_ESTATE, TECHNOLOGY, UTILITIES
from engine.regime import MarketRegime, parse_regime


class UserIntent(str, Enum):
    GROWTH = "Growth"
    INCOME = "Income"
    STABILITY = "Stability"


def parse_intent(value: Union[str, UserIntent]) -> UserIntent:
    if isinstance(value, UserIntent):
        return value
    for intent in UserIntent:
        if value.lower() in (intent.value.lower(), intent.name.lower()):
            return intent
    raise ValueError(f"Unknown intent '{value}'. Available: {[i.value for i in UserIntent]}")


BUILDER_FACTORS = ("Momentum", "Tech", "Dividends", "Growth", "Value", "International")


# ─── Sorting helpers ────────────────────────────────────────────────────────

def top_momentum(assets: Iterable[Asset], n: int) -> list[Asset]:
    return sorted(assets, key=lambda a: a.metrics.momentum_12m, reverse=True)[:n]


def top_yield(assets: Iterable[Asset], n: int) -> list[Asset]:
    return sorted(assets, key=lambda a: a.metrics.dividend_yield, reverse=True)[:n]


def low_volatility(assets: Iterable[Asset], n: int) -> list[Asset]:
    return sorted(assets, key=lambda a: a.metrics.volatility)[:n]


# ─── Regime / intent ────────────────────────────────────────────────────────

def filter_by_regime(assets: Sequence[Asset], regime: Union[str, MarketRegime]) -> list[Asset]:
    """Keep the assets suited to the regime, sorted by the regime's priority."""
    regime = parse_regime(regime)

    if regime is MarketRegime.BEAR:
        # Defensive first: low volatility, bonds, ETFs (gold), utilities, high yield
        kept = [
            a for a in assets
            if a.metrics.volatility < 0.30
            or a.sector in (BONDS, ETF, UTILITIES)
            or a.metrics.dividend_yield > 0.03
        ]
        return sorted(kept, key=lambda a: a.metrics.volatility)

    if regime is MarketRegime.BULL:
        kept = [a for a in assets if a.metrics.momentum_12m > 0.20 or a.sector == TECHNOLOGY]
        return sorted(kept, key=lambda a: a.metrics.momentum_12m, reverse=True)

    # Sideways: dividend payers with moderate volatility
    kept = [a for a in assets if a.metrics.dividend_yield > 0.02 and a.metrics.volatility < 0.35]
    return sorted(kept, key=lambda a: a.metrics.dividend_yield, reverse=True)


def filter_by_intent(assets: Sequence[Asset], intent: Union[str, UserIntent]) -> list[Asset]:
    """Keep the assets matching the user's intent, preserving order."""
    intent = parse_intent(intent)

    if intent is UserIntent.GROWTH:
        return [
            a for a in assets
            if a.metrics.momentum_12m > 0.25
            or a.sector == TECHNOLOGY
            or a.metrics.earnings_growth > 0.15
        ]
    if intent is UserIntent.INCOME:
        return [
            a for a in assets
            if a.metrics.dividend_yield > 0.02
            or a.sector in (BONDS, UTILITIES, REAL_ESTATE)
        ]
    return [a for a in assets if a.metrics.volatility < 0.30 and a.metrics.beta < 1.2]


@dataclass
class FilterResult:
    assets: list[Asset]
    fell_back: bool = False
    notes: list[str] = field(default_factory=list)


def select_assets(
    universe_assets: Sequence[Asset],
    regime: Union[str, MarketRegime],
    intent: Union[str, UserIntent],
) -> FilterResult:
    """
    Regime filter, then intent filter. An empty intersection falls back to
    the unfiltered universe.
    """
    regime = parse_regime(regime)
    intent = parse_intent(intent)

    by_regime = filter_by_regime(universe_assets, regime)
    selected = filter_by_intent(by_regime, intent)
    logger.debug(
        f"Filtered {len(universe_assets)} → {len(by_regime)} ({regime.value}) "
        f"→ {len(selected)} ({intent.value})"
    )

    if not selected:
        note = (
            f"No assets matched the {regime.value} regime and {intent.value} intent; "
            f"using the full universe instead."
        )
        logger.info(note)
        return FilterResult(assets=list(universe_assets), fell_back=True, notes=[note])

    return FilterResult(assets=selected)


# ─── Builder factors ────────────────────────────────────────────────────────

def _factor_predicate(factor: str):
    if factor == "Momentum":
        return lambda a: a.metrics.momentum_12m > 0.30
    if factor == "Tech":
        return lambda a: a.sector == TECHNOLOGY or a.ticker == "QQQ"
    if factor == "Dividends":
        return lambda a: a.metrics.dividend_yield > 0.025
    if factor == "Growth":
        return lambda a: a.metrics.momentum_12m > 0.15 or a.metrics.earnings_growth > 0.10
    if factor == "Value":
        return lambda a: a.metrics.volatility < 0.25 and a.metrics.dividend_yield > 0.02
    if factor == "International":
        return lambda a: a.sector == "International" or a.ticker in ("VEA", "VWO")
    return None


def filter_by_factors(assets: Sequence[Asset], factors: Iterable[str]) -> list[Asset]:
    """
    Apply each selected factor filter in catalog order. Unknown tags are
    ignored; an empty result falls back to the full input.
    """
    factors = set(factors)
    unknown = factors.difference(BUILDER_FACTORS)
    if unknown:
        logger.warning(f"Ignoring unknown factor tags: {sorted(unknown)}")

    filtered = list(assets)
    for factor in BUILDER_FACTORS:
        if factor in factors:
            predicate = _factor_predicate(factor)
            filtered = [a for a in filtered if predicate(a)]

    if not filtered:
        logger.info(f"No assets match factors {sorted(factors)}, using all {len(assets)} assets")
        return list(assets)
    return filtered
