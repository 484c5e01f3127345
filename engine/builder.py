"""
Strategy Assembler.

Orchestrates one strategy synthesis:
    detect regime → filter (regime, then intent) → optimize mix → statistics
    → allocation breakdown → name → narrative

Also provides the fixed 60/40 reference strategy used as a baseline.
"""

import time
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
from loguru import logger

from engine.assets import AssetCategory, AssetUniverse, AssetWeight, build_asset_universe
from engine.filters import UserIntent, parse_intent, select_assets
from engine.metrics import PortfolioStats, calculate_portfolio_stats
from engine.optimizer import AllocationConfig, optimize_mix, risk_band, validate_risk_score
from engine.regime import MarketRegime, RandomRegimeDetector, RegimeDetector


BREAKDOWN_ORDER = (
    AssetCategory.STOCK,
    AssetCategory.BOND,
    AssetCategory.CRYPTO_PROXY,
    AssetCategory.ETF,
)

RISK_LEVEL_NAMES = {"low": "Conservative", "mid": "Balanced", "high": "Aggressive"}

REGIME_ADJECTIVES = {
    MarketRegime.BULL: "Momentum",
    MarketRegime.BEAR: "Defensive",
    MarketRegime.SIDEWAYS: "Adaptive",
}

REGIME_DESCRIPTIONS = {
    MarketRegime.BULL: "bullish momentum",
    MarketRegime.BEAR: "defensive positioning",
    MarketRegime.SIDEWAYS: "market-neutral approach",
}

NAME_TEMPLATES = {
    UserIntent.GROWTH: ("{risk} Growth Engine", "{regime} Growth Strategy", "Tech {risk} Portfolio"),
    UserIntent.INCOME: ("{risk} Income Generator", "Dividend {regime} Strategy", "Yield {risk} Portfolio"),
    UserIntent.STABILITY: ("{risk} Stability Fund", "{regime} Balanced Strategy", "Core {risk} Portfolio"),
}

INTENT_CLOSERS = {
    UserIntent.GROWTH: "Focuses on high-momentum assets with strong growth potential.",
    UserIntent.INCOME: "Emphasizes dividend-paying assets and yield generation.",
    UserIntent.STABILITY: "Prioritizes capital preservation with moderate growth.",
}


@dataclass(frozen=True)
class AllocationBreakdown:
    """Integer percentages per category; sums to 100 for any non-empty portfolio."""
    stocks: int = 0
    bonds: int = 0
    crypto: int = 0
    etfs: int = 0

    @property
    def total(self) -> int:
        return self.stocks + self.bonds + self.crypto + self.etfs

    def to_dict(self) -> dict:
        return {"stocks": self.stocks, "bonds": self.bonds, "crypto": self.crypto, "etfs": self.etfs}


@dataclass(frozen=True)
class StrategyDNA:
    id: str
    name: str
    intent: UserIntent
    risk_score: int
    market_regime: MarketRegime
    assets: tuple[AssetWeight, ...]
    narrative: str
    allocation: AllocationBreakdown
    notes: tuple[str, ...] = ()

    @property
    def stats(self) -> PortfolioStats:
        return calculate_portfolio_stats(self.assets)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "intent": self.intent.value,
            "riskScore": self.risk_score,
            "marketRegime": self.market_regime.value,
            "assets": [w.to_dict() for w in self.assets],
            "stats": self.stats.to_dict(),
            "narrative": self.narrative,
            "allocation": self.allocation.to_dict(),
            "notes": list(self.notes),
        }

    def summary(self) -> str:
        s = self.stats
        lines = [
            f"{'=' * 70}",
            f"  {self.name}  [{self.intent.value} | risk {self.risk_score} | {self.market_regime.value}]",
            f"  Return: {s.mean_return:.1%}  |  Vol: {s.volatility:.1%}  |  MaxDD: {s.max_drawdown:.1%}",
            f"  Allocation: " + ", ".join(f"{k} {v}%" for k, v in self.allocation.to_dict().items()),
            f"{'=' * 70}",
        ]
        for w in self.assets:
            lines.append(f"  {w.weight:>6.1%}  {w.asset.ticker:<6} {w.asset.name:<36} {w.asset.sector}")
        for note in self.notes:
            lines.append(f"  note: {note}")
        lines.append(f"{'=' * 70}")
        return "\n".join(lines)


def calculate_allocation_breakdown(weights: Sequence[AssetWeight]) -> AllocationBreakdown:
    """
    Category breakdown in integer percentages.

    Uses largest-remainder rounding so the four values always add up to 100
    (ties go to the earlier category in BREAKDOWN_ORDER). Empty → all zeros.
    """
    totals = {c: 0.0 for c in BREAKDOWN_ORDER}
    for w in weights:
        totals[w.asset.category] += w.weight
    grand = sum(totals.values())
    if grand <= 0:
        return AllocationBreakdown()

    raw = {c: totals[c] / grand * 100.0 for c in BREAKDOWN_ORDER}
    pct = {c: int(np.floor(raw[c] + 1e-9)) for c in BREAKDOWN_ORDER}
    remainder = 100 - sum(pct.values())
    by_fraction = sorted(BREAKDOWN_ORDER, key=lambda c: raw[c] - pct[c], reverse=True)
    for c in by_fraction[:remainder]:
        pct[c] += 1

    return AllocationBreakdown(
        stocks=pct[AssetCategory.STOCK],
        bonds=pct[AssetCategory.BOND],
        crypto=pct[AssetCategory.CRYPTO_PROXY],
        etfs=pct[AssetCategory.ETF],
    )


def generate_strategy_name(intent: UserIntent, risk_score: int, regime: MarketRegime,
                           rng: Optional[np.random.Generator] = None,
                           config: Optional[AllocationConfig] = None) -> str:
    if rng is None:
        rng = np.random.default_rng()
    templates = NAME_TEMPLATES[intent]
    template = templates[int(rng.integers(len(templates)))]
    return template.format(
        risk=RISK_LEVEL_NAMES[risk_band(risk_score, config)],
        regime=REGIME_ADJECTIVES[regime],
    )


def generate_narrative(intent: UserIntent, risk_score: int, regime: MarketRegime,
                       allocation: AllocationBreakdown,
                       config: Optional[AllocationConfig] = None) -> str:
    risk_level = RISK_LEVEL_NAMES[risk_band(risk_score, config)].lower()
    narrative = (
        f"Optimized for {regime.value.lower()} market conditions using "
        f"{REGIME_DESCRIPTIONS[regime]} factors. "
        f"This {risk_level} {intent.value.lower()} strategy allocates "
    )

    parts = []
    if allocation.stocks > 0:
        parts.append(f"{allocation.stocks}% to growth stocks")
    if allocation.bonds > 0:
        parts.append(f"{allocation.bonds}% to bonds")
    if allocation.crypto > 0:
        parts.append(f"{allocation.crypto}% to cryptocurrency")
    if allocation.etfs > 0:
        parts.append(f"{allocation.etfs}% to diversified ETFs")

    return narrative + ", ".join(parts) + ". " + INTENT_CLOSERS[intent]


class StrategyAssembler:
    """
    Holds the universe, the regime detector and the random source used for
    strategy synthesis.
    """

    def __init__(
        self,
        universe: Optional[AssetUniverse] = None,
        detector: Optional[RegimeDetector] = None,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
        allocation_config: Optional[AllocationConfig] = None,
    ):
        self.universe = universe if universe is not None else build_asset_universe()
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.detector = detector if detector is not None else RandomRegimeDetector(rng=self.rng)
        self.allocation_config = allocation_config or AllocationConfig()

    def generate(self, intent: Union[str, UserIntent], risk_score: int) -> StrategyDNA:
        intent = parse_intent(intent)
        risk_score = validate_risk_score(risk_score)

        regime = self.detector.detect()
        selection = select_assets(self.universe.assets, regime, intent)
        notes = list(selection.notes)
        fallback_note = getattr(self.detector, "fallback_note", None)
        if fallback_note:
            notes.insert(0, fallback_note)

        weights = optimize_mix(selection.assets, risk_score, self.allocation_config)
        if not weights:
            note = (
                f"No filtered asset fits the risk-{risk_score} allocation buckets; "
                f"optimized over the full universe instead."
            )
            logger.info(note)
            notes.append(note)
            weights = optimize_mix(self.universe.assets, risk_score, self.allocation_config)

        allocation = calculate_allocation_breakdown(weights)
        strategy = StrategyDNA(
            id=f"strategy_{intent.value.lower()}_{risk_score}_{int(time.time() * 1000)}",
            name=generate_strategy_name(intent, risk_score, regime, self.rng, self.allocation_config),
            intent=intent,
            risk_score=risk_score,
            market_regime=regime,
            assets=tuple(weights),
            narrative=generate_narrative(intent, risk_score, regime, allocation, self.allocation_config),
            allocation=allocation,
            notes=tuple(notes),
        )

        s = strategy.stats
        logger.info(
            f"Generated '{strategy.name}' ({intent.value}, risk={risk_score}, {regime.value}): "
            f"{len(weights)} positions, ret={s.mean_return:.1%}, vol={s.volatility:.1%}"
        )
        return strategy

    def standard_60_40(self) -> StrategyDNA:
        return get_standard_60_40(self.universe)


def generate_strategy(
    intent: Union[str, UserIntent],
    risk_score: int,
    universe: Optional[AssetUniverse] = None,
    detector: Optional[RegimeDetector] = None,
    rng: Optional[np.random.Generator] = None,
) -> StrategyDNA:
    """Functional form of StrategyAssembler.generate."""
    return StrategyAssembler(universe=universe, detector=detector, rng=rng).generate(intent, risk_score)


def get_standard_60_40(universe: Optional[AssetUniverse] = None) -> StrategyDNA:
    """Traditional 60% SPY / 40% BND reference portfolio."""
    if universe is None:
        universe = build_asset_universe()
    spy = universe.get_asset_by_ticker("SPY")
    bnd = universe.get_asset_by_ticker("BND")
    if spy is None or bnd is None:
        raise ValueError("The 60/40 baseline needs SPY and BND in the asset universe")

    return StrategyDNA(
        id="standard_60_40",
        name="Standard 60/40 Portfolio",
        intent=UserIntent.STABILITY,
        risk_score=50,
        market_regime=MarketRegime.SIDEWAYS,
        assets=(AssetWeight(asset=spy, weight=0.6), AssetWeight(asset=bnd, weight=0.4)),
        narrative=(
            "Traditional balanced portfolio with 60% stocks (SPY) and 40% bonds (BND). "
            "Provides moderate growth with lower volatility."
        ),
        allocation=AllocationBreakdown(stocks=60, bonds=40, crypto=0, etfs=0),
    )
