"""
Behavioral signal detectors: weight plateau, deficit streak, training load.

All detectors are causal: they only look at the records they are given,
which end at the day being scored.
"""
import math
from collections.abc import Sequence
from typing import Optional

from refeed.schemas.enums import MetricKey
from refeed.schemas.metrics import DailyMetricRecord
from refeed.services.scoring_config import (
    DeficitConfig,
    PlateauConfig,
    TrainingLoadConfig,
    get_scoring_config,
)
from refeed.services.statistics import clamp, finite_or_none, present_values, running_sum


def seven_day_slope(values: Sequence[float]) -> float:
    """Least-squares slope of values against their index (0, 1, 2, ...)."""
    n = len(values)
    xs = range(n)
    sum_x = sum(xs)
    sum_y = running_sum(values)
    sum_xy = running_sum(x * y for x, y in zip(xs, values))
    sum_x2 = sum(x ** 2 for x in xs)

    denominator = n * sum_x2 - sum_x ** 2
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def weekly_drop_percent(weights: Sequence[float], config: Optional[PlateauConfig] = None) -> float:
    """
    Percent drop from the previous week's mean weight to the latest week's.

    Positive when weight went down. Returns -inf when there are not enough
    weigh-ins to compare two weeks.
    """
    if config is None:
        config = get_scoring_config().plateau

    window = config.min_points
    if len(weights) < config.comparison_points:
        return -math.inf

    previous = weights[-2 * window:-window]
    latest = weights[-window:]
    prev_avg = running_sum(previous) / len(previous)
    current_avg = running_sum(latest) / len(latest)
    if prev_avg <= 0:
        return -math.inf
    return ((prev_avg - current_avg) / prev_avg) * 100


def calculate_plateau_flag(
    records: Sequence[DailyMetricRecord],
    config: Optional[PlateauConfig] = None,
) -> bool:
    """
    True when weight has stopped going down.

    Requires a flat-or-rising 7 point trend AND a week-over-week comparison;
    with fewer than 14 weigh-ins the weekly term is -inf, so the flag can
    never be raised on short histories.
    """
    if config is None:
        config = get_scoring_config().plateau

    weights = present_values(records, MetricKey.WEIGHT)
    if len(weights) < config.min_points:
        return False

    last_week = weights[-config.min_points:]
    slope = seven_day_slope(last_week)
    avg_weight = running_sum(last_week) / len(last_week)
    slope_fraction_per_day = slope / avg_weight if avg_weight > 0 else 0.0

    slope_condition = slope_fraction_per_day >= config.slope_threshold
    weekly_drop_condition = weekly_drop_percent(weights, config) > config.weekly_drop_threshold

    return slope_condition and weekly_drop_condition


def compute_deficit_streak(
    records: Sequence[DailyMetricRecord],
    estimated_tdee: Optional[float] = None,
    config: Optional[DeficitConfig] = None,
) -> int:
    """Count consecutive deficit days ending today."""
    if config is None:
        config = get_scoring_config().deficit

    estimated_tdee = finite_or_none(estimated_tdee)
    streak = 0

    for record in reversed(records):
        expenditure = record.energy_expenditure_kcal
        target = expenditure if expenditure is not None else estimated_tdee
        intake = record.calorie_intake_kcal
        # A zero reading is as good as a missing one
        if not target or not intake:
            break

        if target - intake > config.threshold_kcal:
            streak += 1
        else:
            break

    return streak


def compute_training_load_factor(
    records: Sequence[DailyMetricRecord],
    config: Optional[TrainingLoadConfig] = None,
) -> float:
    """Average of the latest 7 recorded loads, normalised to [0, 1]."""
    if config is None:
        config = get_scoring_config().training_load

    loads = present_values(records, MetricKey.TRAINING_LOAD)[-config.window:]
    if not loads:
        return 0.0

    # Summed newest first
    average_load = running_sum(reversed(loads)) / len(loads)
    return clamp(average_load / config.normaliser, 0.0, 1.0)
