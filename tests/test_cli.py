"""CLI smoke tests."""

import json
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner
from loguru import logger

sys.path.insert(0, str(Path(__file__).parent.parent))

from main import cli


@pytest.fixture
def runner(tmp_path, monkeypatch):
    # Log files go under the current directory
    monkeypatch.chdir(tmp_path)
    yield CliRunner()
    logger.remove()


def invoke_json(runner, args):
    result = runner.invoke(cli, args + ["--json"])
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


class TestStrategyCommands:
    def test_strategy(self, runner):
        data = invoke_json(runner, ["strategy", "-i", "Growth", "-r", "80", "--seed", "1", "--regime", "Bull"])
        assert data["marketRegime"] == "Bull"
        assert data["riskScore"] == 80
        assert sum(a["weight"] for a in data["assets"]) == pytest.approx(1.0)
        assert sum(data["allocation"].values()) == 100
        assert "vibe" in data["riskMetrics"]

    def test_invalid_risk(self, runner):
        result = runner.invoke(cli, ["strategy", "--risk", "150"])
        assert result.exit_code == 2

    def test_trend_regime_without_benchmark_data(self, runner, tmp_path):
        config = tmp_path / "settings.yaml"
        config.write_text(
            "regime:\n  detector: trend\n"
            "market_data:\n  provider: fixture\n  benchmark: ZZZZ\n"
        )
        data = invoke_json(runner, ["--config", str(config), "strategy", "--seed", "1"])
        assert data["marketRegime"] in {"Bull", "Bear", "Sideways"}
        assert "ZZZZ" in data["notes"][0]

    def test_simulate(self, runner):
        data = invoke_json(runner, ["simulate", "-i", "Income", "-r", "30", "-y", "3", "-n", "50",
                                    "--seed", "2", "--regime", "Sideways"])
        bands = data["monteCarloResult"]["percentiles"]
        assert len(bands["p50"]) == 4
        assert "paths" not in data["monteCarloResult"]

    def test_compare(self, runner):
        data = invoke_json(runner, ["compare", "-y", "2", "-n", "50", "--seed", "3"])
        assert data["baseline"]["id"] == "standard_60_40"
        assert len(data["referenceMedian"]) == 3

    def test_build_preset(self, runner):
        data = invoke_json(runner, ["build", "--preset", "tech-titans", "-y", "2", "--seed", "4"])
        assert data["goal"] == "Grow"
        assert sum(data["constraints"]["allocation"].values()) == 100
        assert data["failureMode"].startswith("This strategy may underperform")

    def test_build_clamps(self, runner):
        data = invoke_json(runner, ["build", "-g", "Preserve", "-r", "50", "--stocks", "80",
                                    "--crypto", "10", "--bonds", "10", "-y", "2", "--seed", "5"])
        assert data["constraints"]["allocation"] == {"stocks": 40, "crypto": 5, "bonds": 55}

    def test_unknown_preset(self, runner):
        result = runner.invoke(cli, ["build", "--preset", "moonshot"])
        assert result.exit_code == 2


class TestInfoCommands:
    def test_presets(self, runner):
        data = invoke_json(runner, ["presets"])
        assert [p["id"] for p in data] == ["tech-titans", "dividend-kings", "balanced-core"]

    def test_quote(self, runner):
        data = invoke_json(runner, ["quote", "SPY", "zzzz"])
        assert data["SPY"]["price"] == 589.67
        assert data["ZZZZ"] is None

    def test_universe(self, runner):
        result = runner.invoke(cli, ["universe", "--sector", "Bonds"])
        assert result.exit_code == 0

    def test_status(self, runner):
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0

    def test_missing_config(self, runner):
        result = runner.invoke(cli, ["--config", "nope.yaml", "status"])
        assert result.exit_code == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
