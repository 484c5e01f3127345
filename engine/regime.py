"""
Market Regime Detection Module.

Classifies current market conditions into one of three regimes:
    - BULL: momentum-led market → favour growth / high-momentum assets
    - BEAR: falling or stressed market → favour low-volatility, defensive assets
    - SIDEWAYS: no clear direction → favour income and moderate volatility

Detectors implement the same `detect() -> MarketRegime` contract:
    - RandomRegimeDetector: weighted categorical draw (no live feed needed)
    - TrendRegimeDetector: indicator-driven classification of a price series
    - MarketTrendRegimeDetector: the same over a provider's benchmark history,
      with a fallback detector when the provider fails
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Union

import numpy as np
from loguru import logger

from market_data.quotes import QuoteError


class MarketRegime(str, Enum):
    BULL = "Bull"
    BEAR = "Bear"
    SIDEWAYS = "Sideways"


REGIME_ORDER = (MarketRegime.BULL, MarketRegime.BEAR, MarketRegime.SIDEWAYS)

# Bull market bias
DEFAULT_REGIME_WEIGHTS: dict[MarketRegime, float] = {
    MarketRegime.BULL: 0.6,
    MarketRegime.BEAR: 0.2,
    MarketRegime.SIDEWAYS: 0.2,
}


def parse_regime(value: Union[str, MarketRegime]) -> MarketRegime:
    """Accept enum members or their (case-insensitive) names/values."""
    if isinstance(value, MarketRegime):
        return value
    for regime in MarketRegime:
        if value.lower() in (regime.value.lower(), regime.name.lower()):
            return regime
    raise ValueError(f"Unknown market regime '{value}'. Available: {[r.value for r in MarketRegime]}")


def normalize_regime_weights(
    weights: Optional[Mapping[Union[str, MarketRegime], float]] = None,
) -> dict[MarketRegime, float]:
    """Validate regime weights and rescale them to sum to 1."""
    if weights is None:
        return dict(DEFAULT_REGIME_WEIGHTS)

    parsed = {regime: 0.0 for regime in REGIME_ORDER}
    for key, w in weights.items():
        w = float(w)
        if w < 0 or not np.isfinite(w):
            raise ValueError(f"Regime weight for {key} must be a non-negative number, got {w}")
        parsed[parse_regime(key)] = w

    total = sum(parsed.values())
    if total <= 0:
        raise ValueError("Regime weights must sum to a positive number")
    return {regime: w / total for regime, w in parsed.items()}


def detect_market_regime(
    rng: Optional[np.random.Generator] = None,
    weights: Optional[Mapping[Union[str, MarketRegime], float]] = None,
) -> MarketRegime:
    """
    Draw a regime from a weighted categorical distribution.

    Args:
        rng: random source; a fresh unseeded generator when omitted
        weights: per-regime weights, default Bull 0.6 / Bear 0.2 / Sideways 0.2
    """
    if rng is None:
        rng = np.random.default_rng()
    probs = normalize_regime_weights(weights)

    draw = rng.random()
    cumulative = 0.0
    for regime in REGIME_ORDER:
        cumulative += probs[regime]
        if draw < cumulative:
            return regime
    return MarketRegime.BULL


class RegimeDetector(ABC):
    """Pluggable regime classifier."""

    # Set by detectors that had to fall back during the last detect()
    fallback_note: Optional[str] = None

    @abstractmethod
    def detect(self) -> MarketRegime:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class RandomRegimeDetector(RegimeDetector):
    """Weighted random draw, used in the absence of a live market feed."""

    def __init__(
        self,
        weights: Optional[Mapping[Union[str, MarketRegime], float]] = None,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.weights = normalize_regime_weights(weights)
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def detect(self) -> MarketRegime:
        regime = detect_market_regime(self.rng, self.weights)
        logger.debug(f"Random regime draw: {regime.value}")
        return regime

    def __repr__(self) -> str:
        w = ", ".join(f"{r.value}={p:.2f}" for r, p in self.weights.items())
        return f"RandomRegimeDetector({w})"


class FixedRegimeDetector(RegimeDetector):
    """Always returns the same regime. Useful to pin a scenario."""

    def __init__(self, regime: Union[str, MarketRegime]):
        self.regime = parse_regime(regime)

    def detect(self) -> MarketRegime:
        return self.regime

    def __repr__(self) -> str:
        return f"FixedRegimeDetector({self.regime.value})"


@dataclass
class TrendRegimeConfig:
    """Thresholds for the indicator-driven classifier (daily closes)."""
    lookback: int = 126               # trailing return window (~6M)
    ma_window: int = 200              # trend filter
    drawdown_lookback: int = 252      # peak lookback for drawdown
    bull_return: float = 0.05         # trailing return > this (and above MA) → bull
    bear_return: float = -0.05        # trailing return < this → bear
    bear_drawdown: float = 0.15       # drawdown deeper than this → bear


def classify_trend(close: np.ndarray, config: Optional[TrendRegimeConfig] = None) -> MarketRegime:
    """
    Classify the latest point of a close-price series.

    BEAR on a deep drawdown or a negative trailing return, BULL on a positive
    trailing return with price above its moving average, SIDEWAYS otherwise.
    Series too short for the lookback classify as SIDEWAYS.
    """
    if config is None:
        config = TrendRegimeConfig()

    close = np.asarray(close, dtype=np.float64)
    close = close[np.isfinite(close) & (close > 0)]
    if len(close) <= config.lookback:
        logger.debug(f"Only {len(close)} closes (need > {config.lookback}), defaulting to SIDEWAYS")
        return MarketRegime.SIDEWAYS

    last = close[-1]
    trailing_return = last / close[-1 - config.lookback] - 1.0
    sma = np.mean(close[-config.ma_window:])
    peak = np.max(close[-config.drawdown_lookback:])
    drawdown = last / peak - 1.0

    if drawdown < -config.bear_drawdown or trailing_return < config.bear_return:
        regime = MarketRegime.BEAR
    elif trailing_return > config.bull_return and last > sma:
        regime = MarketRegime.BULL
    else:
        regime = MarketRegime.SIDEWAYS

    logger.debug(
        f"Trend regime: ret={trailing_return:.2%}, dd={drawdown:.2%}, "
        f"above_ma={last > sma} → {regime.value}"
    )
    return regime


class TrendRegimeDetector(RegimeDetector):
    """Classifies a fixed close-price series."""

    def __init__(self, close: np.ndarray, config: Optional[TrendRegimeConfig] = None):
        self.close = np.asarray(close, dtype=np.float64)
        self.config = config or TrendRegimeConfig()

    def detect(self) -> MarketRegime:
        return classify_trend(self.close, self.config)


class MarketTrendRegimeDetector(RegimeDetector):
    """
    Pulls a benchmark's history from a quote provider and classifies it.

    When the provider fails, the regime comes from `fallback` (Sideways by
    default) and `fallback_note` says why.
    """

    def __init__(self, provider, benchmark: str = "SPY", days: int = 365,
                 config: Optional[TrendRegimeConfig] = None,
                 fallback: Optional[RegimeDetector] = None):
        self.provider = provider
        self.benchmark = benchmark
        self.days = days
        self.config = config or TrendRegimeConfig()
        self.fallback = fallback or FixedRegimeDetector(MarketRegime.SIDEWAYS)

    def detect(self) -> MarketRegime:
        self.fallback_note = None
        try:
            history = self.provider.get_history(self.benchmark, self.days)
        except QuoteError as e:
            regime = self.fallback.detect()
            self.fallback_note = (
                f"No {self.benchmark} history for regime detection ({e}); "
                f"used {regime.value} from {self.fallback!r}."
            )
            logger.warning(self.fallback_note)
            return regime
        regime = classify_trend(history.to_numpy(), self.config)
        logger.info(f"Regime from {self.benchmark} ({len(history)} closes): {regime.value}")
        return regime

    def __repr__(self) -> str:
        return f"MarketTrendRegimeDetector({self.benchmark}, {self.provider!r})"
