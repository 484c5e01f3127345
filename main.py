"""
Stratlab — portfolio strategy synthesis and Monte Carlo projection.
Main entry point with CLI interface.
"""

import json
import sys
from pathlib import Path

import click
import numpy as np
from loguru import logger

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from engine.assets import build_asset_universe
from engine.builder import StrategyAssembler, get_standard_60_40
from engine.config import (
    allocation_config_from_settings,
    load_settings,
    market_data_config_from_settings,
    regime_detector_from_settings,
    simulation_config_from_settings,
)
from engine.constraints import BuilderState, get_constraint_summary
from engine.custom import calculate_full_portfolio, describe_strategy, generate_failure_mode
from engine.metrics import generate_risk_metrics
from engine.presets import get_preset, list_presets
from engine.regime import FixedRegimeDetector
from engine.simulation import generate_baseline_simulation, run_monte_carlo
from market_data.cache import PriceCache
from market_data.quotes import QuoteError, make_quote_provider


def setup_logging(level: str = "INFO", log_file: str = "logs/stratlab.log", rotation: str = "10 MB"):
    """Configure loguru logging."""
    logger.remove()
    logger.add(sys.stderr, level=level, format="{time:HH:mm:ss} | {level:<7} | {message}")
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logger.add(log_file, level="DEBUG", rotation=rotation)


def _emit_json(payload):
    click.echo(json.dumps(payload, indent=2))


def _fail(e: Exception):
    raise click.UsageError(str(e))


def _assembler(ctx, seed, regime):
    settings = ctx.obj["settings"]
    universe = build_asset_universe()
    rng = np.random.default_rng(seed)
    if regime:
        detector = FixedRegimeDetector(regime)
    else:
        provider = make_quote_provider(settings, universe)
        detector = regime_detector_from_settings(settings, provider=provider, rng=rng)
    return StrategyAssembler(universe=universe, detector=detector, rng=rng,
                             allocation_config=allocation_config_from_settings(settings))


def _final_values_line(label: str, fv) -> str:
    return f"  {label:<28} p10={fv.p10:>12,.0f}  p50={fv.p50:>12,.0f}  p90={fv.p90:>12,.0f}  mean={fv.mean:>12,.0f}"


intent_option = click.option("--intent", "-i", default="Growth",
                             type=click.Choice(["Growth", "Income", "Stability"], case_sensitive=False),
                             help="Investment intent")
risk_option = click.option("--risk", "-r", default=50, type=int, help="Risk score 0-100")
seed_option = click.option("--seed", default=None, type=int, help="Seed for reproducible runs")
regime_option = click.option("--regime", default=None,
                             type=click.Choice(["Bull", "Bear", "Sideways"], case_sensitive=False),
                             help="Pin the market regime instead of detecting it")
json_option = click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a summary")


@click.group()
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Settings YAML (default: config/settings.yaml)")
@click.option("--log-level", default=None, help="Console log level (overrides settings)")
@click.pass_context
def cli(ctx, config_path, log_level):
    """Stratlab — portfolio strategy synthesis and Monte Carlo projection."""
    try:
        settings = load_settings(config_path)
    except FileNotFoundError as e:
        raise click.BadParameter(str(e), param_hint="--config")
    log_cfg = settings.get("logging") or {}
    setup_logging(
        level=log_level or log_cfg.get("level", "INFO"),
        log_file=log_cfg.get("file", "logs/stratlab.log"),
        rotation=log_cfg.get("rotation", "10 MB"),
    )
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@intent_option
@risk_option
@seed_option
@regime_option
@json_option
@click.pass_context
def strategy(ctx, intent, risk, seed, regime, as_json):
    """Generate a strategy for an intent and risk score."""
    try:
        dna = _assembler(ctx, seed, regime).generate(intent, risk)
    except ValueError as e:
        _fail(e)

    if as_json:
        _emit_json({**dna.to_dict(), "riskMetrics": generate_risk_metrics(dna.stats, dna.intent)})
        return
    logger.info(f"\n{dna.summary()}")
    logger.info(dna.narrative)
    for key, value in generate_risk_metrics(dna.stats, dna.intent).items():
        logger.info(f"  {key}: {value}")


@cli.command()
@intent_option
@risk_option
@click.option("--initial", default=None, type=float, help="Initial investment")
@click.option("--years", "-y", default=None, type=int, help="Horizon in years")
@click.option("--iterations", "-n", default=None, type=int, help="Number of simulated paths")
@click.option("--n-jobs", default=None, type=int, help="joblib workers")
@seed_option
@regime_option
@json_option
@click.pass_context
def simulate(ctx, intent, risk, initial, years, iterations, n_jobs, seed, regime, as_json):
    """Generate a strategy and project it with Monte Carlo."""
    sim = simulation_config_from_settings(ctx.obj["settings"])
    seed = seed if seed is not None else sim.seed
    try:
        dna = _assembler(ctx, seed, regime).generate(intent, risk)
        result = run_monte_carlo(
            dna,
            initial if initial is not None else sim.initial_investment,
            years if years is not None else sim.years,
            iterations=iterations if iterations is not None else sim.iterations,
            steps_per_year=sim.steps_per_year,
            seed=seed,
            n_jobs=n_jobs if n_jobs is not None else sim.n_jobs,
            progress=not as_json,
        )
    except ValueError as e:
        _fail(e)

    if as_json:
        _emit_json({"strategy": dna.to_dict(), "monteCarloResult": result.to_dict(include_paths=False)})
        return
    logger.info(f"\n{dna.summary()}")
    logger.info(f"Percentile bands ({result.iterations} paths):\n{result.to_frame().round(0).to_string()}")
    logger.info(_final_values_line("Final value", result.final_values))


@cli.command()
@intent_option
@risk_option
@click.option("--initial", default=None, type=float, help="Initial investment")
@click.option("--years", "-y", default=None, type=int, help="Horizon in years")
@click.option("--iterations", "-n", default=None, type=int, help="Number of simulated paths")
@seed_option
@regime_option
@json_option
@click.pass_context
def compare(ctx, intent, risk, initial, years, iterations, seed, regime, as_json):
    """Compare a generated strategy against the 60/40 baseline."""
    sim = simulation_config_from_settings(ctx.obj["settings"])
    seed = seed if seed is not None else sim.seed
    initial = initial if initial is not None else sim.initial_investment
    years = years if years is not None else sim.years
    iterations = iterations if iterations is not None else sim.iterations
    try:
        assembler = _assembler(ctx, seed, regime)
        dna = assembler.generate(intent, risk)
        baseline = assembler.standard_60_40()
        seeds = np.random.SeedSequence(seed).spawn(2)
        ours = run_monte_carlo(dna, initial, years, iterations=iterations,
                               steps_per_year=sim.steps_per_year, seed=seeds[0])
        theirs = run_monte_carlo(baseline, initial, years, iterations=iterations,
                                 steps_per_year=sim.steps_per_year, seed=seeds[1])
        reference = generate_baseline_simulation(initial, years, seed=seed)
    except ValueError as e:
        _fail(e)

    if as_json:
        _emit_json({
            "strategy": {"id": dna.id, "name": dna.name, "stats": dna.stats.to_dict(),
                         "finalValues": ours.final_values.to_dict()},
            "baseline": {"id": baseline.id, "name": baseline.name, "stats": baseline.stats.to_dict(),
                         "finalValues": theirs.final_values.to_dict()},
            "referenceMedian": [pt.to_dict() for pt in reference],
        })
        return
    logger.info(f"Comparing over {years}y from {initial:,.0f} ({iterations} paths each):")
    logger.info(_final_values_line(dna.name, ours.final_values))
    logger.info(_final_values_line(baseline.name, theirs.final_values))
    edge = ours.final_values.p50 - theirs.final_values.p50
    logger.info(f"  Median edge vs 60/40: {edge:+,.0f}")


@cli.command()
@click.option("--goal", "-g", default="Balance",
              type=click.Choice(["Grow", "Balance", "Preserve"], case_sensitive=False))
@risk_option
@click.option("--stocks", default=60, type=int, help="Requested stock percentage")
@click.option("--crypto", default=0, type=int, help="Requested crypto percentage")
@click.option("--bonds", default=40, type=int, help="Requested bond percentage")
@click.option("--factor", "-f", "factors", multiple=True,
              type=click.Choice(["Momentum", "Tech", "Dividends", "Growth", "Value", "International"]),
              help="Factor tag (repeatable)")
@click.option("--preset", "-p", default=None, help="Start from a preset (overrides goal/risk/allocation)")
@click.option("--initial", default=None, type=float, help="Initial investment")
@click.option("--years", "-y", default=None, type=int, help="Horizon in years")
@seed_option
@json_option
@click.pass_context
def build(ctx, goal, risk, stocks, crypto, bonds, factors, preset, initial, years, seed, as_json):
    """Custom builder: constrain an allocation and project it."""
    sim = simulation_config_from_settings(ctx.obj["settings"])
    try:
        if preset:
            state = get_preset(preset).to_builder_state()
        else:
            state = BuilderState(goal=goal, risk=risk, factors=frozenset(factors),
                                 allocation={"stocks": stocks, "crypto": crypto, "bonds": bonds})
        calc = calculate_full_portfolio(
            state,
            initial_investment=initial if initial is not None else sim.initial_investment,
            time_horizon=years if years is not None else sim.years,
            iterations=sim.iterations,
            seed=seed if seed is not None else sim.seed,
        )
    except ValueError as e:
        _fail(e)

    if as_json:
        _emit_json({
            **calc.to_dict(),
            "description": describe_strategy(calc.state),
            "failureMode": generate_failure_mode(calc.state),
            "activeConstraints": get_constraint_summary(calc.state),
        })
        return
    logger.info(describe_strategy(calc.state))
    for v, a in zip(calc.constraints.violations, calc.constraints.adjustments):
        logger.warning(f"  {v} → {a}")
    for note in calc.constraints.notes + list(calc.portfolio.notes):
        logger.info(f"  note: {note}")
    for w in calc.portfolio.assets:
        logger.info(f"  {w.weight:>6.1%}  {w.asset.ticker:<6} {w.asset.name}")
    logger.info(f"  Metrics: {calc.metrics}")
    logger.info(_final_values_line("Final value", calc.monte_carlo.final_values))
    logger.info(generate_failure_mode(calc.state))


@cli.command()
@click.option("--sector", "-s", default=None, help="Only show one sector")
def universe(sector):
    """Show the asset universe."""
    u = build_asset_universe()
    frame = u.to_frame()
    if sector:
        frame = frame[frame["sector"].str.lower() == sector.lower()]
    logger.info(f"Asset universe ({len(frame)} assets):\n{frame.to_string()}")


@cli.command()
@click.option("--category", "-c", default=None,
              type=click.Choice(["Growth", "Income", "Stability"], case_sensitive=False))
@json_option
def presets(category, as_json):
    """List the curated presets."""
    items = list_presets(category)
    if as_json:
        _emit_json([p.to_dict() for p in items])
        return
    for p in items:
        logger.info(f"  - {p.id}: {p.title} ({p.category.value}, {p.risk_level} risk) {p.allocation}")


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@json_option
@click.pass_context
def quote(ctx, symbols, as_json):
    """Quotes for one or more symbols."""
    settings = ctx.obj["settings"]
    md = market_data_config_from_settings(settings)
    cache = PriceCache(make_quote_provider(settings), ttl_seconds=md.cache_ttl_seconds,
                       batch_size=md.batch_size)
    cache.refresh(symbols)
    prices = {s.upper(): cache.get_cached(s) for s in symbols}

    if as_json:
        _emit_json({s: (p.to_dict() if p else None) for s, p in prices.items()})
        return
    for s, p in prices.items():
        if p is None:
            logger.warning(f"  {s}: unavailable")
        else:
            q = p.quote
            logger.info(f"  {s:<6} {q.price:>10.2f} {q.change:>+8.2f} ({q.change_percent:+.2f}%)  {q.name}")


@cli.command()
@click.pass_context
def status(ctx):
    """Show settings and market status."""
    settings = ctx.obj["settings"]
    project = settings.get("project") or {}
    sim = simulation_config_from_settings(settings)
    md = market_data_config_from_settings(settings)

    logger.info(f"Project: {project.get('name', 'stratlab')} v{project.get('version', '?')}")
    logger.info(f"Simulation: {sim.iterations} paths, {sim.steps_per_year} steps/yr, "
                f"{sim.years}y from {sim.initial_investment:,.0f}, n_jobs={sim.n_jobs}")
    logger.info(f"Quote provider: {md.provider} (benchmark {md.benchmark})")

    try:
        market = make_quote_provider(settings).get_market_status()
    except QuoteError as e:
        logger.error(f"Market status unavailable: {e}")
        return
    logger.info(f"Market: {market.status} ({market.benchmark} {market.price:,.2f}, "
                f"{market.change_percent:+.2f}%)")


if __name__ == "__main__":
    cli()
