"""
Monte Carlo Simulator.

Projects portfolio value with discretized geometric Brownian motion:

    V(t + dt) = V(t) · exp(μ·dt + σ·√dt·Z),   Z ~ N(0, 1) via Box-Muller

Only year-boundary values are kept. Paths are generated in fixed-size chunks,
each with its own child seed, so a seeded run gives the same result whatever
the number of joblib workers.
"""

from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from loguru import logger
from tqdm import tqdm


TRADING_DAYS_PER_YEAR = 252
DEFAULT_ITERATIONS = 500
CHUNK_SIZE = 100
PERCENTILES = {"p10": 0.10, "p50": 0.50, "p90": 0.90}

# 60/40 reference used for the baseline curve
BASELINE_RETURN = 0.07
BASELINE_VOLATILITY = 0.10

SeedLike = Union[None, int, np.random.SeedSequence, np.random.Generator]


@dataclass(frozen=True)
class SimulationPoint:
    year: int
    value: float

    def to_dict(self) -> dict:
        return {"year": self.year, "value": self.value}


@dataclass(frozen=True)
class FinalValueStats:
    p10: float
    p50: float
    p90: float
    mean: float

    def to_dict(self) -> dict:
        return {"p10": self.p10, "p50": self.p50, "p90": self.p90, "mean": self.mean}


def _validate_inputs(initial_value: float, volatility: float, years: int,
                     steps_per_year: int, iterations: int = 1):
    if not initial_value > 0:
        raise ValueError(f"Initial value must be positive, got {initial_value}")
    if volatility < 0:
        raise ValueError(f"Volatility must be non-negative, got {volatility}")
    if int(years) != years or years < 1:
        raise ValueError(f"Time horizon must be a positive integer number of years, got {years}")
    if int(steps_per_year) != steps_per_year or steps_per_year < 1:
        raise ValueError(f"steps_per_year must be a positive integer, got {steps_per_year}")
    if int(iterations) != iterations or iterations < 1:
        raise ValueError(f"Iteration count must be a positive integer, got {iterations}")


def box_muller(rng: np.random.Generator, size) -> np.ndarray:
    """Standard normal draws from pairs of uniforms (u1 taken from (0, 1])."""
    u1 = 1.0 - rng.random(size)
    u2 = rng.random(size)
    return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)


def simulate_values(
    initial_value: float,
    mean_return: float,
    volatility: float,
    years: int,
    n_paths: int,
    steps_per_year: int = TRADING_DAYS_PER_YEAR,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Simulate a batch of GBM paths.

    Returns:
        (n_paths, years + 1) array of values at years 0..years.
    """
    _validate_inputs(initial_value, volatility, years, steps_per_year, n_paths)
    if rng is None:
        rng = np.random.default_rng()
    years, steps_per_year = int(years), int(steps_per_year)

    dt = 1.0 / steps_per_year
    z = box_muller(rng, (n_paths, years * steps_per_year))
    log_steps = mean_return * dt + volatility * np.sqrt(dt) * z
    log_path = np.cumsum(log_steps, axis=1)

    values = np.empty((n_paths, years + 1), dtype=np.float64)
    values[:, 0] = initial_value
    # Column k*steps-1 holds the value after step k*steps, i.e. the end of year k
    values[:, 1:] = initial_value * np.exp(log_path[:, steps_per_year - 1::steps_per_year])
    return values


def simulate_path(
    initial_value: float,
    mean_return: float,
    volatility: float,
    years: int,
    steps_per_year: int = TRADING_DAYS_PER_YEAR,
    rng: Optional[np.random.Generator] = None,
) -> list[SimulationPoint]:
    """One GBM trial as (year, value) points, year 0 included."""
    row = simulate_values(initial_value, mean_return, volatility, years, 1, steps_per_year, rng)[0]
    return [SimulationPoint(year=y, value=float(v)) for y, v in enumerate(row)]


def percentile_index(n: int, p: float) -> int:
    """Index into an ascending sample of size n: floor(n·p)."""
    return min(int(np.floor(n * p)), n - 1)


def calculate_percentiles(values: np.ndarray) -> dict[str, list[SimulationPoint]]:
    """Per-year p10/p50/p90 across the cross-section of paths."""
    ordered = np.sort(values, axis=0)
    n = ordered.shape[0]
    bands = {}
    for name, p in PERCENTILES.items():
        row = ordered[percentile_index(n, p)]
        bands[name] = [SimulationPoint(year=y, value=float(v)) for y, v in enumerate(row)]
    return bands


def calculate_final_value_stats(values: np.ndarray) -> FinalValueStats:
    final = np.sort(values[:, -1])
    n = len(final)
    return FinalValueStats(
        p10=float(final[percentile_index(n, PERCENTILES["p10"])]),
        p50=float(final[percentile_index(n, PERCENTILES["p50"])]),
        p90=float(final[percentile_index(n, PERCENTILES["p90"])]),
        mean=float(np.mean(final)),
    )


@dataclass(frozen=True, eq=False)
class MonteCarloResult:
    """All simulated paths plus their percentile bands and final-value summary."""
    values: np.ndarray                               # (iterations, years + 1)
    percentiles: dict[str, list[SimulationPoint]]
    final_values: FinalValueStats

    @property
    def iterations(self) -> int:
        return self.values.shape[0]

    @property
    def years(self) -> int:
        return self.values.shape[1] - 1

    def path(self, i: int) -> list[SimulationPoint]:
        return [SimulationPoint(year=y, value=float(v)) for y, v in enumerate(self.values[i])]

    @property
    def paths(self) -> list[list[SimulationPoint]]:
        return [self.path(i) for i in range(self.iterations)]

    def to_frame(self) -> pd.DataFrame:
        """Percentile bands indexed by year."""
        frame = pd.DataFrame({
            name: [pt.value for pt in band] for name, band in self.percentiles.items()
        })
        frame.index.name = "year"
        return frame

    def to_dict(self, include_paths: bool = True) -> dict:
        out = {
            "percentiles": {
                name: [pt.to_dict() for pt in band] for name, band in self.percentiles.items()
            },
            "finalValues": self.final_values.to_dict(),
        }
        if include_paths:
            out["paths"] = [
                [{"year": y, "value": float(v)} for y, v in enumerate(row)]
                for row in self.values
            ]
        return out


def build_result(values: np.ndarray) -> MonteCarloResult:
    return MonteCarloResult(
        values=values,
        percentiles=calculate_percentiles(values),
        final_values=calculate_final_value_stats(values),
    )


def _root_seed(seed: SeedLike) -> np.random.SeedSequence:
    if isinstance(seed, np.random.SeedSequence):
        return seed
    if isinstance(seed, np.random.Generator):
        return np.random.SeedSequence(int(seed.integers(0, 2**63 - 1)))
    return np.random.SeedSequence(seed)


def _chunk_sizes(iterations: int, chunk_size: int) -> list[int]:
    sizes = [chunk_size] * (iterations // chunk_size)
    if iterations % chunk_size:
        sizes.append(iterations % chunk_size)
    return sizes


def _simulate_chunk(seed_seq, n_paths, initial_value, mean_return, volatility, years, steps_per_year):
    rng = np.random.default_rng(seed_seq)
    return simulate_values(initial_value, mean_return, volatility, years, n_paths, steps_per_year, rng)


def simulate_portfolio(
    mean_return: float,
    volatility: float,
    initial_investment: float,
    years: int,
    iterations: int = DEFAULT_ITERATIONS,
    steps_per_year: int = TRADING_DAYS_PER_YEAR,
    seed: SeedLike = None,
    n_jobs: int = 1,
    chunk_size: int = CHUNK_SIZE,
    progress: bool = False,
) -> MonteCarloResult:
    """
    Run `iterations` independent GBM paths for raw (μ, σ) parameters.

    Args:
        seed: int / SeedSequence / Generator for reproducible runs, None for fresh entropy
        n_jobs: joblib workers for the path chunks (1 = in-process)
        progress: show a tqdm bar over chunks (in-process runs only)
    """
    _validate_inputs(initial_investment, volatility, years, steps_per_year, iterations)
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    sizes = _chunk_sizes(int(iterations), chunk_size)
    children = _root_seed(seed).spawn(len(sizes))
    args = (initial_investment, mean_return, volatility, int(years), int(steps_per_year))

    logger.debug(
        f"Monte Carlo: {iterations} paths × {years}y × {steps_per_year} steps "
        f"(μ={mean_return:.4f}, σ={volatility:.4f}, chunks={len(sizes)}, n_jobs={n_jobs})"
    )

    if n_jobs == 1:
        chunks = [
            _simulate_chunk(child, size, *args)
            for child, size in tqdm(list(zip(children, sizes)), desc="Simulating",
                                    unit="chunk", disable=not progress)
        ]
    else:
        chunks = Parallel(n_jobs=n_jobs)(
            delayed(_simulate_chunk)(child, size, *args) for child, size in zip(children, sizes)
        )

    result = build_result(np.vstack(chunks))
    logger.debug(
        f"Final values: p10={result.final_values.p10:,.0f} "
        f"p50={result.final_values.p50:,.0f} p90={result.final_values.p90:,.0f}"
    )
    return result


def run_monte_carlo(
    strategy,
    initial_investment: float,
    years: int,
    iterations: int = DEFAULT_ITERATIONS,
    steps_per_year: int = TRADING_DAYS_PER_YEAR,
    seed: SeedLike = None,
    n_jobs: int = 1,
    progress: bool = False,
) -> MonteCarloResult:
    """
    Monte Carlo projection of a strategy using its mean return and volatility.

    `strategy` is anything with a `stats` attribute (StrategyDNA) or a
    PortfolioStats itself.
    """
    stats = getattr(strategy, "stats", strategy)
    return simulate_portfolio(
        stats.mean_return,
        stats.volatility,
        initial_investment,
        years,
        iterations=iterations,
        steps_per_year=steps_per_year,
        seed=seed,
        n_jobs=n_jobs,
        progress=progress,
    )


def generate_baseline_simulation(
    initial_investment: float,
    years: int,
    iterations: int = 100,
    seed: SeedLike = None,
) -> list[SimulationPoint]:
    """Median path of the standard 60/40 reference (7% return, 10% volatility)."""
    result = simulate_portfolio(
        BASELINE_RETURN, BASELINE_VOLATILITY, initial_investment, years,
        iterations=iterations, seed=seed,
    )
    return result.percentiles["p50"]
