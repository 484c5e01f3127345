"""
Preset registry — curated starting points for the custom builder.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from engine.constraints import BuilderGoal, BuilderState
from engine.filters import UserIntent, parse_intent


# Builder goal and risk score a preset opens the builder with
CATEGORY_GOALS = {
    UserIntent.GROWTH: BuilderGoal.GROW,
    UserIntent.INCOME: BuilderGoal.PRESERVE,
    UserIntent.STABILITY: BuilderGoal.BALANCE,
}
RISK_LEVEL_SCORES = {"Low": 20, "Medium": 50, "High": 80}


@dataclass(frozen=True)
class Preset:
    id: str
    title: str
    description: str
    category: UserIntent
    risk_level: str
    allocation: dict = field(default_factory=dict)
    expected_return: str = ""
    time_horizon: str = ""

    def to_builder_state(self) -> BuilderState:
        return BuilderState(
            goal=CATEGORY_GOALS[self.category],
            risk=RISK_LEVEL_SCORES[self.risk_level],
            allocation=dict(self.allocation),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "riskLevel": self.risk_level,
            "allocation": dict(self.allocation),
            "expectedReturn": self.expected_return,
            "timeHorizon": self.time_horizon,
        }


PRESET_REGISTRY: dict[str, Preset] = {
    "tech-titans": Preset(
        id="tech-titans",
        title="Tech Titans",
        description=(
            "High-growth technology stocks with cryptocurrency exposure for maximum growth "
            "potential. Perfect for aggressive investors seeking substantial returns."
        ),
        category=UserIntent.GROWTH,
        risk_level="High",
        allocation={"stocks": 80, "crypto": 20, "bonds": 0},
        expected_return="12-18% annually",
        time_horizon="5+ years",
    ),
    "dividend-kings": Preset(
        id="dividend-kings",
        title="Dividend Kings",
        description=(
            "Established dividend-paying companies combined with stable bonds for consistent "
            "income generation. Ideal for retirement planning."
        ),
        category=UserIntent.INCOME,
        risk_level="Low",
        allocation={"stocks": 60, "crypto": 0, "bonds": 40},
        expected_return="6-9% annually",
        time_horizon="3+ years",
    ),
    "balanced-core": Preset(
        id="balanced-core",
        title="Balanced Core",
        description=(
            "Equal mix of growth stocks and stable bonds providing moderate growth with "
            "reduced volatility. Great for first-time investors."
        ),
        category=UserIntent.STABILITY,
        risk_level="Medium",
        allocation={"stocks": 50, "crypto": 0, "bonds": 50},
        expected_return="8-12% annually",
        time_horizon="3-7 years",
    ),
}


def get_preset(preset_id: str) -> Preset:
    """Get a preset by id."""
    if preset_id not in PRESET_REGISTRY:
        available = list(PRESET_REGISTRY.keys())
        raise ValueError(f"Unknown preset '{preset_id}'. Available: {available}")
    return PRESET_REGISTRY[preset_id]


def list_presets(category: Optional[Union[str, UserIntent]] = None) -> list[Preset]:
    """All presets, optionally restricted to one category."""
    if category is None:
        return list(PRESET_REGISTRY.values())
    category = parse_intent(category)
    return [p for p in PRESET_REGISTRY.values() if p.category is category]
