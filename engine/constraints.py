"""
Constraint Engine for the custom (manual) builder.

Takes the user's raw {stocks, crypto, bonds} split and enforces goal- and
risk-based bounds, then renormalizes to exactly 100. Every clamp is recorded
in `violations` / `adjustments`; these are audit trails, not errors.

Rules, applied in order:
    Preserve : crypto ≤ 5,  stocks ≤ 40, bonds ≥ 50
    Balance  : crypto ≤ 15, stocks ≤ 70
    Grow     : crypto ≤ 25
    risk < 30: bonds ≥ 50,  crypto ≤ 5,  stocks ≤ 45
    risk > 70: bonds ≤ 30   (not applied with Preserve: conflicts with its bond floor)

The output satisfies every active bound, so applying the engine to its own
output changes nothing.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from loguru import logger

from engine.optimizer import validate_risk_score


BUCKETS = ("stocks", "crypto", "bonds")
# Order in which leftover percentage points are placed / removed
FILL_ORDER = ("stocks", "bonds", "crypto")


class BuilderGoal(str, Enum):
    GROW = "Grow"
    BALANCE = "Balance"
    PRESERVE = "Preserve"


def parse_goal(value: Union[str, BuilderGoal]) -> BuilderGoal:
    if isinstance(value, BuilderGoal):
        return value
    for goal in BuilderGoal:
        if value.lower() in (goal.value.lower(), goal.name.lower()):
            return goal
    raise ValueError(f"Unknown goal '{value}'. Available: {[g.value for g in BuilderGoal]}")


@dataclass
class BuilderState:
    goal: BuilderGoal
    risk: int
    factors: frozenset = field(default_factory=frozenset)
    allocation: dict = field(default_factory=lambda: {"stocks": 60, "crypto": 0, "bonds": 40})

    def __post_init__(self):
        self.goal = parse_goal(self.goal)
        self.risk = validate_risk_score(self.risk)
        self.factors = frozenset(self.factors)
        self.allocation = {k: int(self.allocation.get(k, 0)) for k in BUCKETS}

    def with_allocation(self, allocation: dict) -> "BuilderState":
        return BuilderState(goal=self.goal, risk=self.risk, factors=self.factors,
                            allocation=dict(allocation))


@dataclass
class ConstraintResult:
    allocation: dict
    violations: list[str] = field(default_factory=list)
    adjustments: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "allocation": dict(self.allocation),
            "violations": list(self.violations),
            "adjustments": list(self.adjustments),
            "notes": list(self.notes),
        }


@dataclass(frozen=True)
class _Rule:
    bucket: str
    kind: str        # "max" or "min"
    limit: int
    violation: str
    adjustment: str


def _goal_rules(goal: BuilderGoal) -> list[_Rule]:
    if goal is BuilderGoal.PRESERVE:
        return [
            _Rule("crypto", "max", 5, "Crypto allocation too high for Preserve goal",
                  "Crypto capped at 5% for capital preservation"),
            _Rule("stocks", "max", 40, "Stock allocation too high for Preserve goal",
                  "Stocks capped at 40% for capital preservation"),
            _Rule("bonds", "min", 50, "Bond allocation too low for Preserve goal",
                  "Bonds increased to 50% minimum for preservation"),
        ]
    if goal is BuilderGoal.BALANCE:
        return [
            _Rule("crypto", "max", 15, "Crypto allocation too high for Balance goal",
                  "Crypto capped at 15% for balanced approach"),
            _Rule("stocks", "max", 70, "Stock allocation too high for Balance goal",
                  "Stocks capped at 70% for balanced approach"),
        ]
    return [
        _Rule("crypto", "max", 25, "Crypto allocation exceeds prudent limits",
              "Crypto capped at 25% for risk management"),
    ]


def _risk_rules(goal: BuilderGoal, risk: int, notes: list[str]) -> list[_Rule]:
    if risk < 30:
        return [
            _Rule("bonds", "min", 50, "Bond allocation too low for low risk tolerance",
                  "Bonds increased to 50% minimum for low risk"),
            _Rule("crypto", "max", 5, "Crypto allocation too high for low risk tolerance",
                  "Crypto limited to 5% for low risk tolerance"),
            _Rule("stocks", "max", 45, "Stock allocation too high for low risk tolerance",
                  "Stocks limited to 45% for low risk tolerance"),
        ]
    if risk > 70:
        if goal is BuilderGoal.PRESERVE:
            notes.append("High-risk bond cap (30%) not applied: Preserve goal requires at least 50% bonds")
            return []
        return [
            _Rule("bonds", "max", 30, "Bond allocation too high for aggressive risk tolerance",
                  "Bonds capped at 30% for aggressive growth"),
        ]
    return []


def _bounds(rules: list[_Rule]) -> tuple[dict, dict]:
    lo = {b: 0 for b in BUCKETS}
    hi = {b: 100 for b in BUCKETS}
    for r in rules:
        if r.kind == "max":
            hi[r.bucket] = min(hi[r.bucket], r.limit)
        else:
            lo[r.bucket] = max(lo[r.bucket], r.limit)
    return lo, hi


def _rescale(alloc: dict, total: int) -> dict:
    """Proportional scaling to 100 with the rounding remainder on stocks."""
    if total <= 0:
        return {b: 0 for b in BUCKETS}
    factor = 100 / total
    scaled = {b: int(round(alloc[b] * factor)) for b in BUCKETS}
    scaled["stocks"] += 100 - sum(scaled.values())
    return scaled


def _fit_to_bounds(alloc: dict, lo: dict, hi: dict) -> dict:
    """Clamp into [lo, hi] and move the residual to buckets with headroom."""
    fitted = {b: min(max(alloc[b], lo[b]), hi[b]) for b in BUCKETS}
    residual = 100 - sum(fitted.values())
    for b in FILL_ORDER:
        if residual == 0:
            break
        if residual > 0:
            step = min(hi[b] - fitted[b], residual)
        else:
            step = -min(fitted[b] - lo[b], -residual)
        fitted[b] += step
        residual -= step
    return fitted


def apply_constraints(state: BuilderState) -> ConstraintResult:
    """
    Enforce goal and risk bounds on the requested allocation.

    Returns the corrected allocation (integers summing to 100) together with
    the violations, adjustments and informational notes. Never raises for an
    out-of-policy allocation.
    """
    goal = parse_goal(state.goal)
    violations: list[str] = []
    adjustments: list[str] = []
    notes: list[str] = []

    alloc = {b: int(state.allocation.get(b, 0)) for b in BUCKETS}

    for b in BUCKETS:
        if alloc[b] < 0:
            violations.append(f"Negative {b} allocation requested")
            adjustments.append(f"{b.capitalize()} raised from {alloc[b]}% to 0%")
            alloc[b] = 0

    rules = _goal_rules(goal) + _risk_rules(goal, state.risk, notes)
    for r in rules:
        value = alloc[r.bucket]
        broken = value > r.limit if r.kind == "max" else value < r.limit
        if broken:
            violations.append(r.violation)
            adjustments.append(r.adjustment)
            alloc[r.bucket] = r.limit

    total = sum(alloc.values())
    if total != 100:
        lo, hi = _bounds(rules)
        alloc = _fit_to_bounds(_rescale(alloc, total), lo, hi)
        adjustments.append("Allocations normalized to sum to 100%")

    if adjustments:
        logger.debug(f"Constraints ({goal.value}, risk={state.risk}): {adjustments}")

    return ConstraintResult(allocation=alloc, violations=violations,
                            adjustments=adjustments, notes=notes)


def get_constraint_summary(state: BuilderState) -> list[str]:
    """Human-readable list of the constraints active for a state."""
    goal = parse_goal(state.goal)
    summary = []

    if goal is BuilderGoal.PRESERVE:
        summary += ["Risk Cap: Conservative", "Crypto Limit: 5%", "Bond Minimum: 50%"]
    elif goal is BuilderGoal.BALANCE:
        summary += ["Risk Cap: Moderate", "Crypto Limit: 15%", "Equity Limit: 70%"]
    else:
        summary += ["Risk Cap: High", "Crypto Limit: 25%", "Growth Focus: Enabled"]

    if state.risk < 30:
        summary.append("Low Risk: Bond Heavy")
    elif state.risk > 70:
        summary.append("High Risk: Growth Heavy")

    return summary
