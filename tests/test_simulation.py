"""Tests for the Monte Carlo simulator."""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from engine.metrics import PortfolioStats
from engine.simulation import (
    box_muller,
    calculate_final_value_stats,
    calculate_percentiles,
    generate_baseline_simulation,
    percentile_index,
    run_monte_carlo,
    simulate_path,
    simulate_portfolio,
    simulate_values,
)


class TestPaths:
    def test_shape(self):
        path = simulate_path(10000, 0.07, 0.1, 5, rng=np.random.default_rng(0))
        assert [pt.year for pt in path] == [0, 1, 2, 3, 4, 5]
        assert path[0].value == 10000

    def test_zero_volatility_is_deterministic_growth(self):
        path = simulate_path(1000, 0.05, 0.0, 5)
        for pt in path:
            assert pt.value == pytest.approx(1000 * np.exp(0.05 * pt.year), rel=1e-9)

    def test_values_positive(self):
        values = simulate_values(100, -0.5, 0.9, 3, 200, steps_per_year=52, rng=np.random.default_rng(1))
        assert values.shape == (200, 4)
        assert np.all(values > 0)

    def test_box_muller_standard_normal(self):
        z = box_muller(np.random.default_rng(3), 100_000)
        assert np.all(np.isfinite(z))
        assert z.mean() == pytest.approx(0.0, abs=0.02)
        assert z.std() == pytest.approx(1.0, abs=0.02)

    @pytest.mark.parametrize("kwargs", [
        {"initial_value": 0},
        {"initial_value": -100},
        {"volatility": -0.1},
        {"years": 0},
        {"years": 2.5},
        {"steps_per_year": 0},
    ])
    def test_invalid_inputs(self, kwargs):
        params = {"initial_value": 1000, "mean_return": 0.05, "volatility": 0.1, "years": 3,
                  "steps_per_year": 12}
        params.update(kwargs)
        with pytest.raises(ValueError):
            simulate_path(**params)


class TestPercentiles:
    def test_index(self):
        assert percentile_index(10, 0.1) == 1
        assert percentile_index(10, 0.5) == 5
        assert percentile_index(10, 0.9) == 9
        assert percentile_index(1, 0.9) == 0

    def test_known_values(self):
        values = np.column_stack([np.full(10, 100.0), np.arange(10, dtype=float)])
        bands = calculate_percentiles(values)
        assert [pt.value for pt in bands["p10"]] == [100.0, 1.0]
        assert [pt.value for pt in bands["p50"]] == [100.0, 5.0]
        assert [pt.value for pt in bands["p90"]] == [100.0, 9.0]
        final = calculate_final_value_stats(values)
        assert final.mean == pytest.approx(4.5)

    def test_ordering_every_year(self):
        result = simulate_portfolio(0.08, 0.25, 10000, 10, iterations=300, steps_per_year=52, seed=5)
        for lo, mid, hi in zip(result.percentiles["p10"], result.percentiles["p50"], result.percentiles["p90"]):
            assert lo.value <= mid.value <= hi.value
        fv = result.final_values
        assert fv.p10 <= fv.p50 <= fv.p90


class TestMonteCarlo:
    def test_median_sanity_band(self):
        stats = PortfolioStats(mean_return=0.07, volatility=0.10, max_drawdown=0.2)
        result = run_monte_carlo(stats, 10000, 10, iterations=1000, seed=42)
        assert 15000 <= result.final_values.p50 <= 24000

    def test_result_shape(self):
        result = simulate_portfolio(0.05, 0.1, 5000, 4, iterations=250, steps_per_year=12, seed=1)
        assert result.iterations == 250
        assert result.years == 4
        assert len(result.paths) == 250
        assert len(result.path(0)) == 5
        frame = result.to_frame()
        assert list(frame.columns) == ["p10", "p50", "p90"]
        assert len(frame) == 5

    def test_to_dict(self):
        result = simulate_portfolio(0.05, 0.1, 5000, 2, iterations=10, steps_per_year=12, seed=1)
        d = result.to_dict()
        assert set(d) == {"percentiles", "finalValues", "paths"}
        assert len(d["paths"]) == 10
        assert d["percentiles"]["p50"][0] == {"year": 0, "value": 5000.0}
        assert "paths" not in result.to_dict(include_paths=False)

    def test_seed_reproducible(self):
        a = simulate_portfolio(0.07, 0.2, 1000, 3, iterations=150, steps_per_year=12, seed=9)
        b = simulate_portfolio(0.07, 0.2, 1000, 3, iterations=150, steps_per_year=12, seed=9)
        assert np.array_equal(a.values, b.values)

    def test_independent_of_workers(self):
        kwargs = dict(iterations=250, steps_per_year=12, seed=11, chunk_size=50)
        serial = simulate_portfolio(0.07, 0.2, 1000, 3, n_jobs=1, **kwargs)
        parallel = simulate_portfolio(0.07, 0.2, 1000, 3, n_jobs=2, **kwargs)
        assert np.array_equal(serial.values, parallel.values)

    def test_different_seeds_differ(self):
        a = simulate_portfolio(0.07, 0.2, 1000, 3, iterations=50, steps_per_year=12, seed=1)
        b = simulate_portfolio(0.07, 0.2, 1000, 3, iterations=50, steps_per_year=12, seed=2)
        assert not np.array_equal(a.values, b.values)

    def test_invalid_iterations(self):
        with pytest.raises(ValueError):
            simulate_portfolio(0.07, 0.2, 1000, 3, iterations=0)

    def test_baseline(self):
        path = generate_baseline_simulation(10000, 5, seed=3)
        assert len(path) == 6
        assert path[0].value == 10000
        assert path[-1].value > 10000


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
