"""
Readiness Score (v1) - Baseline refeed readiness.

Fixed linear combination of MAS, plateau, deficit streak and training load,
mapped to (0, 1) by a logistic curve. Stateless: the score for a day depends
only on the history up to and including that day.
"""
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from refeed.schemas.metrics import DailyMetricRecord, sort_records
from refeed.services.composite_index import compute_mas
from refeed.services.scoring_config import ScoringConfig, SigmoidConfig, get_scoring_config
from refeed.services.signals import (
    calculate_plateau_flag,
    compute_deficit_streak,
    compute_training_load_factor,
)


@dataclass
class ScoreResult:
    """Aggregated signals and v1 readiness for one day."""
    mas: float = 0.0
    rrs: float = 0.0
    plateau_flag: bool = False
    deficit_streak: int = 0
    training_load_factor: float = 0.0
    z_scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "mas": self.mas,
            "rrs": self.rrs,
            "plateau_flag": self.plateau_flag,
            "deficit_streak": self.deficit_streak,
            "training_load_factor": self.training_load_factor,
            "z_scores": dict(self.z_scores),
        }


def sigmoid(x: float, config: Optional[SigmoidConfig] = None) -> float:
    """Logistic curve with steepness k and midpoint x0."""
    if config is None:
        config = get_scoring_config().sigmoid

    try:
        return 1 / (1 + math.exp(-config.k * (x - config.x0)))
    except OverflowError:
        return 0.0


def normalized_deficit(deficit_streak: float, saturation_days: int) -> float:
    return min(deficit_streak / saturation_days, 1.0)


def readiness_v1(
    mas: float,
    plateau_flag: bool,
    deficit_streak: int,
    training_load_factor: float,
    config: Optional[ScoringConfig] = None,
) -> float:
    """Refeed readiness from one day's aggregated signals."""
    cfg = config or get_scoring_config()
    coefficients = cfg.readiness_v1

    score_input = (
        coefficients.mas * mas
        + coefficients.plateau * (1 if plateau_flag else 0)
        + coefficients.deficit * normalized_deficit(deficit_streak, cfg.deficit.saturation_days)
        + coefficients.training * training_load_factor
    )
    return sigmoid(score_input, cfg.sigmoid)


def calculate_scores(
    records: Sequence[DailyMetricRecord],
    estimated_tdee: Optional[float] = None,
    body_weight_kg: Optional[float] = None,
    config: Optional[ScoringConfig] = None,
) -> ScoreResult:
    """
    Score the last day of a user's history.

    `body_weight_kg` is accepted for parity with the refeed target call and
    does not influence the score.
    """
    cfg = config or get_scoring_config()
    ordered = sort_records(records)

    composite = compute_mas(ordered, cfg.composite)
    plateau_flag = calculate_plateau_flag(ordered, cfg.plateau)
    deficit_streak = compute_deficit_streak(ordered, estimated_tdee, cfg.deficit)
    training_load_factor = compute_training_load_factor(ordered, cfg.training_load)

    rrs = readiness_v1(
        composite.mas,
        plateau_flag,
        deficit_streak,
        training_load_factor,
        cfg,
    )

    return ScoreResult(
        mas=composite.mas,
        rrs=rrs,
        plateau_flag=plateau_flag,
        deficit_streak=deficit_streak,
        training_load_factor=training_load_factor,
        z_scores=composite.z_scores,
    )
