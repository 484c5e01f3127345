"""
Settings loading.

`config/settings.yaml` is the single configuration file. String values of the
form ${VAR} are replaced from the environment (after .env is loaded). The
*_from_settings helpers build typed config objects, falling back to the
dataclass defaults for any missing key.
"""

import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from engine.optimizer import AllocationConfig
from engine.regime import (
    DEFAULT_REGIME_WEIGHTS,
    FixedRegimeDetector,
    MarketRegime,
    MarketTrendRegimeDetector,
    RandomRegimeDetector,
    TrendRegimeConfig,
    normalize_regime_weights,
)
from engine.simulation import CHUNK_SIZE, DEFAULT_ITERATIONS, TRADING_DAYS_PER_YEAR

load_dotenv()

DEFAULT_SETTINGS_PATH = Path(__file__).resolve().parent.parent / "config" / "settings.yaml"

_ENV_PATTERN = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


def _resolve_env(value):
    if isinstance(value, dict):
        return {k: _resolve_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env(v) for v in value]
    if isinstance(value, str):
        match = _ENV_PATTERN.match(value.strip())
        if match:
            return os.environ.get(match.group(1), "")
    return value


def load_settings(config_path: Optional[str] = None) -> dict:
    """Load project settings from YAML config."""
    path = Path(config_path) if config_path else DEFAULT_SETTINGS_PATH
    if not path.exists():
        if config_path:
            raise FileNotFoundError(f"Settings file not found: {path}")
        logger.warning(f"No settings file at {path}, using built-in defaults")
        return {}
    with open(path, "r") as f:
        settings = yaml.safe_load(f) or {}
    return _resolve_env(settings)


@dataclass
class SimulationConfig:
    """Monte Carlo run parameters."""
    iterations: int = DEFAULT_ITERATIONS
    steps_per_year: int = TRADING_DAYS_PER_YEAR
    initial_investment: float = 10000.0
    years: int = 10
    seed: Optional[int] = None
    n_jobs: int = 1
    chunk_size: int = CHUNK_SIZE


@dataclass
class MarketDataConfig:
    provider: str = "fixture"          # "fixture" or "yahoo"
    benchmark: str = "SPY"             # market status / trend regime reference
    cache_ttl_seconds: float = 300.0
    batch_size: int = 5
    history_days: int = 365


def _section(settings: dict, key: str) -> dict:
    return (settings or {}).get(key) or {}


def _build(cls, values: dict):
    known = {f.name for f in fields(cls)}
    unknown = set(values).difference(known)
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**{k: v for k, v in values.items() if k in known})


def simulation_config_from_settings(settings: dict) -> SimulationConfig:
    return _build(SimulationConfig, _section(settings, "simulation"))


def allocation_config_from_settings(settings: dict) -> AllocationConfig:
    return _build(AllocationConfig, _section(settings, "allocation"))


def market_data_config_from_settings(settings: dict) -> MarketDataConfig:
    return _build(MarketDataConfig, _section(settings, "market_data"))


def trend_config_from_settings(settings: dict) -> TrendRegimeConfig:
    return _build(TrendRegimeConfig, _section(_section(settings, "regime"), "trend"))


def regime_weights_from_settings(settings: dict) -> dict:
    weights = _section(settings, "regime").get("weights")
    if not weights:
        return dict(DEFAULT_REGIME_WEIGHTS)
    return normalize_regime_weights(weights)


def regime_detector_from_settings(settings: dict, provider=None, rng=None):
    """Build the configured regime detector ("random", "trend" or a fixed regime name)."""
    regime_cfg = _section(settings, "regime")
    kind = str(regime_cfg.get("detector", "random")).lower()

    if kind == "random":
        return RandomRegimeDetector(
            weights=regime_weights_from_settings(settings),
            seed=regime_cfg.get("seed"),
            rng=rng,
        )
    if kind == "trend":
        if provider is None:
            raise ValueError("The trend regime detector needs a quote provider")
        md = market_data_config_from_settings(settings)
        fallback = RandomRegimeDetector(
            weights=regime_weights_from_settings(settings),
            seed=regime_cfg.get("seed"),
            rng=rng,
        )
        return MarketTrendRegimeDetector(provider, benchmark=md.benchmark, days=md.history_days,
                                         config=trend_config_from_settings(settings), fallback=fallback)
    if kind in {r.value.lower() for r in MarketRegime}:
        return FixedRegimeDetector(kind)
    raise ValueError(f"Unknown regime detector '{kind}'. Available: ['random', 'trend', 'bull', 'bear', 'sideways']")
