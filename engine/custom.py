"""
Custom builder calculation path.

The manual builder lets the user pick a {stocks, crypto, bonds} split and a
set of factor tags. This module turns that choice into concrete positions,
statistics and a Monte Carlo projection:

    apply_constraints → filter_by_factors → fill buckets → stats → simulate
"""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from loguru import logger

from engine.assets import AssetUniverse, AssetWeight, BONDS, TECHNOLOGY, build_asset_universe
from engine.constraints import BuilderGoal, BuilderState, ConstraintResult, apply_constraints
from engine.filters import UserIntent, filter_by_factors, top_momentum, top_yield
from engine.metrics import PortfolioStats, calculate_portfolio_stats, portfolio_yield, sharpe_ratio
from engine.optimizer import normalize_weights
from engine.simulation import DEFAULT_ITERATIONS, MonteCarloResult, SeedLike, run_monte_carlo


DIVERSIFICATION_FACTOR = 0.8
RISK_FREE_RATE = 0.03

MAX_STOCKS = 8
MAX_CRYPTO_PROXIES = 2
MAX_BONDS = 3

BOND_TICKERS = ("BND", "TLT")

GOAL_INTENTS = {
    BuilderGoal.GROW: UserIntent.GROWTH,
    BuilderGoal.BALANCE: UserIntent.STABILITY,
    BuilderGoal.PRESERVE: UserIntent.INCOME,
}


@dataclass(frozen=True)
class CustomPortfolio:
    mean_return: float
    volatility: float            # after the diversification haircut
    max_drawdown: float
    sharpe_ratio: float
    assets: tuple[AssetWeight, ...]
    notes: tuple[str, ...] = ()

    @property
    def stats(self) -> PortfolioStats:
        return PortfolioStats(self.mean_return, self.volatility, self.max_drawdown)

    def to_dict(self) -> dict:
        return {
            "meanReturn": self.mean_return,
            "volatility": self.volatility,
            "maxDrawdown": self.max_drawdown,
            "sharpeRatio": self.sharpe_ratio,
            "assets": [w.to_dict() for w in self.assets],
            "notes": list(self.notes),
        }


@dataclass
class CalculationResult:
    state: BuilderState                  # state after constraints
    constraints: ConstraintResult
    portfolio: CustomPortfolio
    monte_carlo: MonteCarloResult
    metrics: dict = field(default_factory=dict)

    def to_dict(self, include_paths: bool = False) -> dict:
        return {
            "goal": self.state.goal.value,
            "risk": self.state.risk,
            "factors": sorted(self.state.factors),
            "constraints": self.constraints.to_dict(),
            "stats": self.portfolio.to_dict(),
            "monteCarloResult": self.monte_carlo.to_dict(include_paths=include_paths),
            "metrics": dict(self.metrics),
        }


def _spread(assets, total: float) -> list[AssetWeight]:
    if not assets or total <= 0:
        return []
    w = total / len(assets)
    return [AssetWeight(asset=a, weight=w) for a in assets]


def calculate_custom_portfolio(
    allocation: Mapping[str, int],
    factors: Iterable[str] = (),
    universe: Optional[AssetUniverse] = None,
) -> CustomPortfolio:
    """
    Fill the stocks / crypto / bonds buckets from the factor-filtered universe.

    Stocks: up to 8 non-bond assets, by momentum (or by yield when Dividends is
    selected without Momentum). Crypto: up to 2 Technology names as proxies.
    Bonds: up to 3 bond assets. A bucket with no candidate is dropped and the
    remaining weights rescaled to sum to 1.
    """
    if universe is None:
        universe = build_asset_universe()
    factors = set(factors)
    notes: list[str] = []

    candidates = filter_by_factors(universe.assets, factors)
    stocks_pct = allocation.get("stocks", 0) / 100
    crypto_pct = allocation.get("crypto", 0) / 100
    bonds_pct = allocation.get("bonds", 0) / 100

    non_bond = [a for a in candidates if a.sector != BONDS]
    if "Dividends" in factors and "Momentum" not in factors:
        stock_pick = top_yield(non_bond, MAX_STOCKS)
    else:
        stock_pick = top_momentum(non_bond, MAX_STOCKS)
    tech_pick = [a for a in candidates if a.sector == TECHNOLOGY][:MAX_CRYPTO_PROXIES]
    bond_pick = [a for a in candidates if a.sector == BONDS or a.ticker in BOND_TICKERS][:MAX_BONDS]

    weights: list[AssetWeight] = []
    for bucket, pct, pick in (("stocks", stocks_pct, stock_pick),
                              ("crypto", crypto_pct, tech_pick),
                              ("bonds", bonds_pct, bond_pick)):
        if pct > 0 and not pick:
            note = f"No {bucket} candidates for factors {sorted(factors)}; its {pct:.0%} was redistributed"
            logger.info(note)
            notes.append(note)
        weights += _spread(pick, pct)

    weights = normalize_weights(weights)
    raw = calculate_portfolio_stats(weights)
    volatility = raw.volatility * DIVERSIFICATION_FACTOR

    portfolio = CustomPortfolio(
        mean_return=raw.mean_return,
        volatility=volatility,
        max_drawdown=raw.max_drawdown,
        sharpe_ratio=sharpe_ratio(raw.mean_return, volatility, RISK_FREE_RATE),
        assets=tuple(weights),
        notes=tuple(notes),
    )
    logger.debug(
        f"Custom portfolio {dict(allocation)} {sorted(factors)}: {len(weights)} positions, "
        f"ret={portfolio.mean_return:.1%}, vol={portfolio.volatility:.1%}"
    )
    return portfolio


def calculate_full_portfolio(
    state: BuilderState,
    initial_investment: float = 10000,
    time_horizon: int = 10,
    iterations: int = DEFAULT_ITERATIONS,
    seed: SeedLike = None,
    universe: Optional[AssetUniverse] = None,
    n_jobs: int = 1,
) -> CalculationResult:
    """Constrain the builder state, build the portfolio and project it forward."""
    constraints = apply_constraints(state)
    constrained = state.with_allocation(constraints.allocation)

    portfolio = calculate_custom_portfolio(constrained.allocation, constrained.factors, universe)
    mc = run_monte_carlo(portfolio, initial_investment, time_horizon,
                         iterations=iterations, seed=seed, n_jobs=n_jobs)

    bad_year = portfolio.mean_return - 2 * portfolio.volatility
    metrics = {
        "typicalYear": f"+{portfolio.mean_return * 100:.1f}%",
        "badYear": f"{bad_year * 100:.1f}%",
        "yield": f"{portfolio_yield(portfolio.assets) * 100:.1f}%",
        "intent": GOAL_INTENTS[constrained.goal].value,
    }

    logger.info(
        f"Custom {constrained.goal.value} build {constrained.allocation}: "
        f"median final value {mc.final_values.p50:,.0f} after {time_horizon}y"
    )
    return CalculationResult(state=constrained, constraints=constraints,
                             portfolio=portfolio, monte_carlo=mc, metrics=metrics)


def describe_strategy(state: BuilderState) -> str:
    if state.goal is BuilderGoal.GROW:
        description = "Aggressive Growth Strategy"
    elif state.goal is BuilderGoal.BALANCE:
        description = "Balanced Growth Strategy"
    else:
        description = "Conservative Preservation Strategy"

    if state.factors:
        description += " focused on " + ", ".join(sorted(state.factors))

    parts = []
    if state.allocation["stocks"] > 0:
        parts.append(f"{state.allocation['stocks']}% Stocks")
    if state.allocation["crypto"] > 0:
        parts.append(f"{state.allocation['crypto']}% Crypto")
    if state.allocation["bonds"] > 0:
        parts.append(f"{state.allocation['bonds']}% Bonds")
    if parts:
        description += f" with {', '.join(parts)} allocation"

    return description + "."


def generate_failure_mode(state: BuilderState) -> str:
    """Plain-language list of the scenarios this mix is most exposed to."""
    alloc = state.allocation
    risks = []
    if alloc["crypto"] > 15:
        risks.append("high cryptocurrency volatility")
    if "Tech" in state.factors:
        risks.append("technology sector concentration")
    if "Momentum" in state.factors:
        risks.append("momentum reversals in bear markets")
    if alloc["bonds"] < 20:
        risks.append("lack of defensive assets during market stress")
    if "Growth" in state.factors and alloc["bonds"] < 30:
        risks.append("growth stock underperformance during rising interest rates")

    if not risks:
        return "This balanced strategy has moderate risk across multiple scenarios."
    return f"This strategy may underperform due to {', '.join(risks)}."
