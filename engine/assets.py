"""
Asset Universe & Correlation Model.

Static catalog of the investable instruments with their return/risk metrics,
plus the pairwise correlation matrix derived from a canonical sector-pair table.

The universe is built once by `build_asset_universe()` and is immutable:
    - assets are frozen dataclasses
    - the correlation matrix is a read-only numpy array
    - each asset carries its matrix row as a read-only mapping
Pass the universe explicitly to every consumer; there is no module-level cache.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

import numpy as np
import pandas as pd
from loguru import logger


TECHNOLOGY = "Technology"
HEALTHCARE = "Healthcare"
FINANCIAL = "Financial"
ENERGY = "Energy"
CONSUMER = "Consumer"
UTILITIES = "Utilities"
REAL_ESTATE = "Real Estate"
BONDS = "Bonds"
ETF = "ETF"
OTHER = "Other"

SECTORS = (
    TECHNOLOGY, HEALTHCARE, FINANCIAL, ENERGY, CONSUMER,
    UTILITIES, REAL_ESTATE, BONDS, ETF,
)

# Technology names above this volatility stand in for the missing crypto sleeve
CRYPTO_PROXY_VOLATILITY = 0.40

DEFAULT_CORRELATION = 0.2
SENTINEL_PRICE = 1.0
SELF_CORRELATION_TOLERANCE = 0.001


class AssetCategory(str, Enum):
    """Allocation bucket an asset is reported under. Values are breakdown keys."""
    STOCK = "stocks"
    BOND = "bonds"
    ETF = "etfs"
    CRYPTO_PROXY = "crypto"


def classify_asset(sector: str, volatility: float) -> AssetCategory:
    """Map a sector/volatility pair to its allocation category."""
    if sector == BONDS:
        return AssetCategory.BOND
    if sector == ETF:
        return AssetCategory.ETF
    if sector == TECHNOLOGY and volatility > CRYPTO_PROXY_VOLATILITY:
        return AssetCategory.CRYPTO_PROXY
    return AssetCategory.STOCK


@dataclass(frozen=True)
class AssetMetrics:
    """Quantitative factors, all expressed as decimals."""
    momentum_12m: float       # trailing 12M return, used as expected-return proxy
    earnings_growth: float    # YoY earnings growth
    volatility: float         # annualized std dev
    beta: float               # market sensitivity
    dividend_yield: float     # annual yield


@dataclass(frozen=True)
class Asset:
    ticker: str
    name: str
    sector: str
    price: float
    metrics: AssetMetrics
    correlations: Mapping[str, float] = field(default_factory=dict, compare=False, repr=False)
    category: Optional[AssetCategory] = None

    def __post_init__(self):
        if self.category is None:
            object.__setattr__(
                self, "category", classify_asset(self.sector, self.metrics.volatility)
            )

    def correlation_with(self, ticker: str) -> float:
        """Correlation to another ticker; 1.0 for itself, 0.0 when unknown."""
        if ticker == self.ticker:
            return 1.0
        return float(self.correlations.get(ticker, 0.0))

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "name": self.name,
            "sector": self.sector,
            "price": self.price,
            "category": self.category.value,
            "metrics": {
                "momentum12M": self.metrics.momentum_12m,
                "earningsGrowth": self.metrics.earnings_growth,
                "volatility": self.metrics.volatility,
                "beta": self.metrics.beta,
                "dividendYield": self.metrics.dividend_yield,
            },
        }


@dataclass(frozen=True)
class AssetWeight:
    asset: Asset
    weight: float   # 0..1

    def to_dict(self) -> dict:
        return {"ticker": self.asset.ticker, "weight": self.weight, "asset": self.asset.to_dict()}


# ─── Sector correlation table ───────────────────────────────────────────────

def _pair_key(sector_a: str, sector_b: str) -> tuple[str, str]:
    return tuple(sorted((sector_a, sector_b)))


def _canonical_table(raw: Mapping[tuple[str, str], float]) -> dict[tuple[str, str], float]:
    table = {}
    for (a, b), rho in raw.items():
        key = _pair_key(a, b)
        if key in table and table[key] != rho:
            raise ValueError(f"Conflicting correlations for sector pair {key}")
        table[key] = rho
    return table


SECTOR_CORRELATIONS: dict[tuple[str, str], float] = _canonical_table({
    (TECHNOLOGY, TECHNOLOGY): 0.8,
    (HEALTHCARE, HEALTHCARE): 0.75,
    (FINANCIAL, FINANCIAL): 0.85,
    (ENERGY, ENERGY): 0.9,
    (CONSUMER, CONSUMER): 0.7,
    (UTILITIES, UTILITIES): 0.8,
    (REAL_ESTATE, REAL_ESTATE): 0.85,
    (BONDS, BONDS): 0.9,
    (ETF, ETF): 0.6,
    (TECHNOLOGY, HEALTHCARE): 0.2,
    (TECHNOLOGY, FINANCIAL): 0.3,
    (TECHNOLOGY, ENERGY): 0.1,
    (TECHNOLOGY, CONSUMER): 0.25,
    (TECHNOLOGY, UTILITIES): 0.15,
    (TECHNOLOGY, REAL_ESTATE): 0.2,
    (TECHNOLOGY, BONDS): -0.2,
    (TECHNOLOGY, ETF): 0.4,
    (HEALTHCARE, FINANCIAL): 0.25,
    (HEALTHCARE, ENERGY): 0.15,
    (HEALTHCARE, CONSUMER): 0.3,
    (HEALTHCARE, UTILITIES): 0.2,
    (HEALTHCARE, REAL_ESTATE): 0.15,
    (HEALTHCARE, BONDS): -0.1,
    (HEALTHCARE, ETF): 0.3,
    (FINANCIAL, ENERGY): 0.4,
    (FINANCIAL, CONSUMER): 0.35,
    (FINANCIAL, UTILITIES): 0.25,
    (FINANCIAL, REAL_ESTATE): 0.5,
    (FINANCIAL, BONDS): -0.3,
    (FINANCIAL, ETF): 0.45,
    (ENERGY, CONSUMER): 0.2,
    (ENERGY, UTILITIES): 0.3,
    (ENERGY, REAL_ESTATE): 0.25,
    (ENERGY, BONDS): -0.2,
    (ENERGY, ETF): 0.3,
    (CONSUMER, UTILITIES): 0.4,
    (CONSUMER, REAL_ESTATE): 0.3,
    (CONSUMER, BONDS): -0.1,
    (CONSUMER, ETF): 0.35,
    (UTILITIES, REAL_ESTATE): 0.4,
    (UTILITIES, BONDS): 0.1,
    (UTILITIES, ETF): 0.25,
    (REAL_ESTATE, BONDS): 0.05,
    (REAL_ESTATE, ETF): 0.4,
    (BONDS, ETF): -0.15,
})


def sector_correlation(
    sector_a: str,
    sector_b: str,
    table: Optional[Mapping[tuple[str, str], float]] = None,
    default: float = DEFAULT_CORRELATION,
) -> float:
    """Correlation between two (distinct) assets of the given sectors."""
    if table is None:
        table = SECTOR_CORRELATIONS
    return float(table.get(_pair_key(sector_a, sector_b), default))


def _clamp_correlation(rho: float, label: str = "") -> float:
    if not np.isfinite(rho):
        logger.warning(f"Correlation {rho} not finite{label}, replaced by {DEFAULT_CORRELATION}")
        return DEFAULT_CORRELATION
    if rho < -1.0 or rho > 1.0:
        clamped = max(-1.0, min(1.0, rho))
        logger.warning(f"Correlation {rho} out of range{label}, clamped to {clamped}")
        return clamped
    return rho


def build_correlation_matrix(
    sectors: list[str],
    table: Optional[Mapping[tuple[str, str], float]] = None,
    default: float = DEFAULT_CORRELATION,
) -> np.ndarray:
    """
    Build the N×N correlation matrix for assets of the given sectors.

    Each unordered pair is looked up once and written to both (i, j) and (j, i),
    so the matrix is symmetric by construction. The diagonal is exactly 1.0.
    The returned array is read-only.
    """
    if table is not None:
        table = _canonical_table(table)
    n = len(sectors)
    matrix = np.eye(n, dtype=np.float64)
    for i in range(n):
        for j in range(i + 1, n):
            rho = sector_correlation(sectors[i], sectors[j], table, default)
            rho = _clamp_correlation(rho, f" for {sectors[i]}/{sectors[j]}")
            matrix[i, j] = rho
            matrix[j, i] = rho
    matrix.setflags(write=False)
    return matrix


# ─── Cleaning / validation ──────────────────────────────────────────────────

def clean_asset_record(record: Mapping) -> dict:
    """
    Return a cleaned copy of a raw asset record.

    Negative or non-finite volatility / dividend yield become 0, non-finite
    return factors become 0 and a non-positive or non-finite price is replaced
    by SENTINEL_PRICE. Never raises for bad values.
    """
    cleaned = dict(record)
    ticker = cleaned.get("ticker", "?")

    for key in ("volatility", "dividend_yield"):
        value = cleaned.get(key, 0.0)
        if not np.isfinite(value) or value < 0:
            logger.warning(f"{ticker}: invalid {key} {value} replaced by 0")
            cleaned[key] = 0.0
    for key in ("momentum_12m", "earnings_growth", "beta"):
        if key in cleaned and not np.isfinite(cleaned[key]):
            logger.warning(f"{ticker}: non-finite {key} {cleaned[key]} replaced by 0")
            cleaned[key] = 0.0
    price = cleaned.get("price", SENTINEL_PRICE)
    if not np.isfinite(price) or price <= 0:
        logger.warning(f"{ticker}: invalid price {price} replaced by {SENTINEL_PRICE}")
        cleaned["price"] = SENTINEL_PRICE

    return cleaned


def clean_asset(asset: Asset) -> Asset:
    """Cleaned copy of an already-built Asset, including its correlation row."""
    record = clean_asset_record({
        "ticker": asset.ticker,
        "price": asset.price,
        "volatility": asset.metrics.volatility,
        "dividend_yield": asset.metrics.dividend_yield,
    })
    correlations = {
        ticker: _clamp_correlation(rho, f" for {asset.ticker}/{ticker}")
        for ticker, rho in asset.correlations.items()
    }
    correlations[asset.ticker] = 1.0
    metrics = replace(
        asset.metrics,
        volatility=record["volatility"],
        dividend_yield=record["dividend_yield"],
    )
    return replace(
        asset,
        price=record["price"],
        metrics=metrics,
        correlations=MappingProxyType(correlations),
        category=classify_asset(asset.sector, metrics.volatility),
    )


def validate_correlations(asset: Asset) -> bool:
    """Self-correlation is 1.0 and every coefficient lies in [-1, 1]."""
    if abs(asset.correlations.get(asset.ticker, 0.0) - 1.0) > SELF_CORRELATION_TOLERANCE:
        return False
    return all(-1.0 <= rho <= 1.0 for rho in asset.correlations.values())


# ─── Universe ───────────────────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class AssetUniverse:
    """Immutable, ordered asset catalog with its aligned correlation matrix."""
    assets: tuple[Asset, ...]
    matrix: np.ndarray
    index: Mapping[str, int]

    def __len__(self) -> int:
        return len(self.assets)

    def __iter__(self):
        return iter(self.assets)

    def __contains__(self, ticker: str) -> bool:
        return ticker in self.index

    @property
    def tickers(self) -> list[str]:
        return [a.ticker for a in self.assets]

    def get_asset_universe(self) -> list[Asset]:
        return list(self.assets)

    def get_asset_by_ticker(self, ticker: str) -> Optional[Asset]:
        i = self.index.get(ticker)
        return self.assets[i] if i is not None else None

    def get_assets_by_sector(self, sector: str) -> list[Asset]:
        return [a for a in self.assets if a.sector == sector]

    def get_correlation_matrix(self) -> np.ndarray:
        return self.matrix

    def correlation(self, ticker_a: str, ticker_b: str) -> float:
        i = self.index.get(ticker_a)
        j = self.index.get(ticker_b)
        if i is None or j is None:
            return 0.0
        return float(self.matrix[i, j])

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "ticker": a.ticker,
                "name": a.name,
                "sector": a.sector,
                "category": a.category.value,
                "price": a.price,
                "momentum_12m": a.metrics.momentum_12m,
                "earnings_growth": a.metrics.earnings_growth,
                "volatility": a.metrics.volatility,
                "beta": a.metrics.beta,
                "dividend_yield": a.metrics.dividend_yield,
            }
            for a in self.assets
        ]
        return pd.DataFrame(rows).set_index("ticker")

    def correlation_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.matrix, index=self.tickers, columns=self.tickers)


def validate_universe(universe: AssetUniverse) -> bool:
    """Every asset passes validate_correlations and the matrix is symmetric."""
    if not all(validate_correlations(a) for a in universe.assets):
        return False
    m = universe.matrix
    return bool(np.array_equal(m, m.T) and np.all(np.diag(m) == 1.0))


def build_asset_universe(
    records: Optional[Iterable[Mapping]] = None,
    sector_correlations: Optional[Mapping[tuple[str, str], float]] = None,
) -> AssetUniverse:
    """
    Build the immutable asset universe.

    Args:
        records: raw asset records (dicts with ticker, name, sector, price and
            the five metrics). Defaults to the built-in catalog.
        sector_correlations: optional replacement sector-pair table.

    Raises:
        ValueError: duplicate tickers in the records.
    """
    if records is None:
        records = ASSET_RECORDS
    cleaned = [clean_asset_record(r) for r in records]

    index: dict[str, int] = {}
    for i, r in enumerate(cleaned):
        if r["ticker"] in index:
            raise ValueError(f"Duplicate ticker '{r['ticker']}' in asset records")
        index[r["ticker"]] = i

    tickers = [r["ticker"] for r in cleaned]
    matrix = build_correlation_matrix([r.get("sector", OTHER) for r in cleaned], sector_correlations)

    assets = []
    for i, r in enumerate(cleaned):
        row = MappingProxyType({t: float(matrix[i, j]) for j, t in enumerate(tickers)})
        metrics = AssetMetrics(
            momentum_12m=float(r["momentum_12m"]),
            earnings_growth=float(r.get("earnings_growth", 0.0)),
            volatility=float(r["volatility"]),
            beta=float(r.get("beta", 1.0)),
            dividend_yield=float(r.get("dividend_yield", 0.0)),
        )
        assets.append(Asset(
            ticker=r["ticker"],
            name=r.get("name", r["ticker"]),
            sector=r.get("sector", OTHER),
            price=float(r["price"]),
            metrics=metrics,
            correlations=row,
        ))

    universe = AssetUniverse(
        assets=tuple(assets),
        matrix=matrix,
        index=MappingProxyType(index),
    )
    logger.debug(f"Built asset universe: {len(universe)} assets, {len(set(r['sector'] for r in cleaned))} sectors")
    return universe


def _record(ticker, name, sector, price, momentum, earnings, vol, beta, dy) -> dict:
    return {
        "ticker": ticker, "name": name, "sector": sector, "price": price,
        "momentum_12m": momentum, "earnings_growth": earnings,
        "volatility": vol, "beta": beta, "dividend_yield": dy,
    }


ASSET_RECORDS: tuple[dict, ...] = (
    # Technology: high growth, high volatility
    _record("NVDA", "NVIDIA Corporation", TECHNOLOGY, 875.28, 1.89, 1.26, 0.45, 1.68, 0.003),
    _record("AMD", "Advanced Micro Devices", TECHNOLOGY, 142.56, 0.75, 0.89, 0.42, 1.55, 0.0),
    _record("MSFT", "Microsoft Corporation", TECHNOLOGY, 415.26, 0.28, 0.15, 0.22, 0.89, 0.007),
    _record("GOOGL", "Alphabet Inc Class A", TECHNOLOGY, 175.32, 0.31, 0.42, 0.25, 1.05, 0.0),
    _record("META", "Meta Platforms Inc", TECHNOLOGY, 563.92, 0.73, 0.35, 0.35, 1.18, 0.004),
    _record("AMZN", "Amazon.com Inc", TECHNOLOGY, 195.12, 0.44, 0.52, 0.30, 1.15, 0.0),
    _record("TSLA", "Tesla Inc", TECHNOLOGY, 248.98, -0.15, 0.25, 0.55, 2.31, 0.0),
    _record("AAPL", "Apple Inc", TECHNOLOGY, 229.87, 0.22, 0.11, 0.25, 1.24, 0.004),
    # Healthcare: defensive growth
    _record("JNJ", "Johnson & Johnson", HEALTHCARE, 155.43, 0.08, 0.06, 0.16, 0.68, 0.029),
    _record("UNH", "UnitedHealth Group Inc", HEALTHCARE, 595.21, 0.18, 0.14, 0.20, 0.75, 0.013),
    _record("PFE", "Pfizer Inc", HEALTHCARE, 25.89, -0.12, -0.25, 0.22, 0.52, 0.061),
    # Financial: cyclical value
    _record("JPM", "JPMorgan Chase & Co", FINANCIAL, 231.52, 0.35, 0.22, 0.28, 1.15, 0.021),
    _record("BAC", "Bank of America Corp", FINANCIAL, 45.67, 0.41, 0.18, 0.32, 1.28, 0.024),
    _record("V", "Visa Inc", FINANCIAL, 312.45, 0.19, 0.12, 0.20, 0.98, 0.007),
    # Energy
    _record("XOM", "Exxon Mobil Corporation", ENERGY, 118.92, 0.12, 0.45, 0.35, 1.42, 0.034),
    _record("CVX", "Chevron Corporation", ENERGY, 158.73, 0.08, 0.38, 0.30, 1.25, 0.031),
    # Consumer: defensive / staples
    _record("KO", "The Coca-Cola Company", CONSUMER, 62.84, 0.15, 0.08, 0.15, 0.58, 0.030),
    _record("PG", "Procter & Gamble", CONSUMER, 165.23, 0.12, 0.05, 0.14, 0.45, 0.024),
    _record("WMT", "Walmart Inc", CONSUMER, 95.12, 0.58, 0.07, 0.17, 0.52, 0.023),
    _record("HD", "The Home Depot Inc", CONSUMER, 412.67, 0.24, 0.09, 0.22, 0.98, 0.024),
    # Utilities: defensive income
    _record("NEE", "NextEra Energy Inc", UTILITIES, 78.45, 0.22, 0.08, 0.18, 0.68, 0.028),
    _record("SO", "The Southern Company", UTILITIES, 89.23, 0.31, 0.06, 0.15, 0.42, 0.038),
    # Real Estate
    _record("VNO", "Vornado Realty Trust", REAL_ESTATE, 28.67, -0.08, -0.15, 0.25, 1.12, 0.065),
    _record("VNQ", "Vanguard Real Estate ETF", REAL_ESTATE, 92.34, 0.18, 0.12, 0.22, 0.95, 0.035),
    # Bonds / ETFs
    _record("BND", "Vanguard Total Bond Market ETF", BONDS, 72.45, 0.05, 0.0, 0.05, -0.15, 0.042),
    _record("SPY", "SPDR S&P 500 ETF Trust", ETF, 589.67, 0.26, 0.12, 0.16, 1.0, 0.013),
    _record("QQQ", "Invesco QQQ Trust", ETF, 512.89, 0.29, 0.18, 0.22, 1.15, 0.006),
    _record("GLD", "SPDR Gold Trust", ETF, 245.12, 0.28, 0.0, 0.18, -0.05, 0.0),
    _record("TLT", "iShares 20+ Year Treasury Bond ETF", BONDS, 89.23, 0.02, 0.0, 0.12, -0.25, 0.038),
    _record("VYM", "Vanguard High Dividend Yield ETF", ETF, 125.67, 0.14, 0.08, 0.15, 0.85, 0.029),
)
