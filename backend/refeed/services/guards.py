"""
Guards - Conditions under which no refeed is recommended.

Guards are deterministic and override the readiness score: a fever-like
temperature or a sudden weight gain suppresses the recommendation no matter
how ready the score says the user is.
"""
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from refeed.schemas.enums import MetricKey
from refeed.schemas.metrics import DailyMetricRecord
from refeed.services.scoring_config import GuardConfig, get_scoring_config
from refeed.services.statistics import present_values


@dataclass
class GuardRuleResult:
    rule_id: str
    rule_name: str
    description: str = ""
    triggered: bool = False


@dataclass
class GuardFlags:
    fever_like: bool = False
    acute_weight_gain: bool = False
    triggered_rules: list[GuardRuleResult] = field(default_factory=list)

    @property
    def any_triggered(self) -> bool:
        return self.fever_like or self.acute_weight_gain

    def to_dict(self) -> dict:
        return {
            "fever_like": self.fever_like,
            "acute_weight_gain": self.acute_weight_gain,
        }


def evaluate_fever_guard(
    latest: Optional[DailyMetricRecord],
    config: Optional[GuardConfig] = None,
) -> GuardRuleResult:
    """
    G1 - Fever-like temperature
    Temperature on the evaluated day >= threshold
    """
    if config is None:
        config = get_scoring_config().guards

    result = GuardRuleResult(rule_id="G1", rule_name="Fever-like temperature")

    temp = latest.temp_c if latest is not None else None
    if temp and temp >= config.fever_temp_c:
        result.triggered = True
        result.description = f"Temperature {temp:.1f}°C suggests illness. Refeed is not recommended today."

    return result


def evaluate_weight_gain_guard(
    history: Sequence[DailyMetricRecord],
    config: Optional[GuardConfig] = None,
) -> GuardRuleResult:
    """
    G2 - Acute weight gain
    Weight up by >= 1.5% across the last 3 weigh-ins
    """
    if config is None:
        config = get_scoring_config().guards

    result = GuardRuleResult(rule_id="G2", rule_name="Acute weight gain")

    weights = present_values(history, MetricKey.WEIGHT)[-config.weight_gain_points:]
    if len(weights) < config.weight_gain_points:
        return result

    start, end = weights[0], weights[-1]
    if start > 0 and (end - start) / start >= config.weight_gain_ratio:
        result.triggered = True
        result.description = (
            f"Weight rose from {start:.1f} kg to {end:.1f} kg over the last "
            f"{config.weight_gain_points} weigh-ins. Likely water retention; refeed is not recommended."
        )

    return result


def evaluate_guard_flags(
    latest: Optional[DailyMetricRecord],
    history: Sequence[DailyMetricRecord],
    config: Optional[GuardConfig] = None,
) -> GuardFlags:
    """Evaluate all guards for the latest record against its history."""
    if config is None:
        config = get_scoring_config().guards

    fever = evaluate_fever_guard(latest, config)
    weight_gain = evaluate_weight_gain_guard(history, config)

    return GuardFlags(
        fever_like=fever.triggered,
        acute_weight_gain=weight_gain.triggered,
        triggered_rules=[rule for rule in (fever, weight_gain) if rule.triggered],
    )


def should_suppress_recommendation(flags: GuardFlags) -> bool:
    return flags.any_triggered
