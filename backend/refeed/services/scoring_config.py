"""
Scoring Configuration - Fixed coefficients and thresholds for readiness scoring.

All "magic numbers" of the pipeline are centralized here. Every section is a
frozen dataclass, so a loaded configuration can be shared freely between
calls and users without anyone mutating it underneath.
"""
from dataclasses import asdict, dataclass, field, fields
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml

from refeed.config import get_settings
from refeed.schemas.enums import MetricKey


@dataclass(frozen=True)
class MetricWeight:
    """Contribution of one metric to the composite adaptation index."""
    weight: float
    polarity: int  # +1: rising is maladaptive, -1: falling is maladaptive
    sd_floor: float  # Minimum scale for the robust z-score


@dataclass(frozen=True)
class CompositeIndexConfig:
    """Metabolic adaptation score (MAS) configuration."""
    temp_c: MetricWeight = MetricWeight(weight=0.35, polarity=-1, sd_floor=0.1)
    rhr_bpm: MetricWeight = MetricWeight(weight=0.25, polarity=1, sd_floor=2.0)
    hrv_ms: MetricWeight = MetricWeight(weight=0.15, polarity=-1, sd_floor=10.0)
    sleep_min: MetricWeight = MetricWeight(weight=0.15, polarity=-1, sd_floor=30.0)
    fatigue_1_5: MetricWeight = MetricWeight(weight=0.10, polarity=1, sd_floor=0.5)

    # Robust baseline
    window_size: int = 28  # Trailing values used for median/MAD
    mad_scale: float = 1.4826  # MAD -> sd under normality
    z_clamp: float = 2.5
    index_clamp: float = 3.0

    def metric_weight(self, key: MetricKey) -> MetricWeight:
        return getattr(self, key.value)

    @classmethod
    def from_dict(cls, data: dict) -> "CompositeIndexConfig":
        kwargs = {}
        for key, value in data.items():
            if isinstance(value, dict):
                kwargs[key] = MetricWeight(**value)
            else:
                kwargs[key] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class PlateauConfig:
    """Weight plateau detection configuration."""
    min_points: int = 7  # Weights needed for the slope
    comparison_points: int = 14  # Weights needed for the week-over-week drop
    slope_threshold: float = -0.0002  # Fraction of mean weight per day (-0.02%/day)
    weekly_drop_threshold: float = -0.5  # Percent


@dataclass(frozen=True)
class DeficitConfig:
    """Caloric deficit streak configuration."""
    threshold_kcal: float = 300.0  # Deficit must exceed this to count
    saturation_days: int = 14  # Streak length mapped to 1.0


@dataclass(frozen=True)
class TrainingLoadConfig:
    """Training load factor configuration."""
    window: int = 7  # Most recent values with data
    normaliser: float = 500.0  # Average load mapped to 1.0


@dataclass(frozen=True)
class SigmoidConfig:
    """Logistic transform shared by both readiness engines."""
    k: float = 2.0  # Steepness
    x0: float = 0.5  # Midpoint


@dataclass(frozen=True)
class ReadinessV1Config:
    """Baseline readiness score coefficients."""
    mas: float = 1.2
    plateau: float = 0.8
    deficit: float = 0.5
    training: float = 0.3


@dataclass(frozen=True)
class ReadinessV2Config:
    """Refeed-aware readiness score configuration."""
    # Coefficients
    mas: float = 1.0
    plateau: float = 0.7
    deficit: float = 0.3
    training: float = 0.2
    cooldown: float = 1.6
    response: float = 0.6

    # Refeed timing (days)
    min_gap_days: int = 3  # Hard lock below this
    default_effect_window: int = 9
    window_extension_days: int = 2  # Added when the response cannot be measured yet
    dampening_days: int = 3  # Deficit streak halved below this
    dampening_factor: float = 0.5

    # Response measurement
    pre_window_days: int = 2  # [refeed - 2, refeed]
    post_window_days: int = 3  # [refeed + 1, refeed + 3]
    baseline_window: int = 28
    min_observed_days: int = 2
    temp_normaliser: float = 0.3
    rhr_normaliser: float = 0.5
    temp_weight: float = 0.6
    rhr_weight: float = 0.4
    gain_clamp: float = 2.0
    response_clamp: float = 0.5

    # Display / suppression
    lock_penalty: float = 2.5
    threshold_on: float = 0.71
    threshold_off: float = 0.65
    threshold_delta: float = 0.03
    display_margin: float = 0.01


@dataclass(frozen=True)
class GuardConfig:
    """Safety guards that suppress a recommendation."""
    fever_temp_c: float = 37.5
    weight_gain_ratio: float = 0.015  # 1.5% gain ...
    weight_gain_points: int = 3  # ... across the last 3 weigh-ins


@dataclass(frozen=True)
class RefeedTargetConfig:
    """Macronutrient targets for a refeed day."""
    default_multiplier: float = 0.2  # Calories above TDEE
    carb_share_of_surplus: float = 0.8
    protein_g_per_kg: float = 2.0
    protein_share_of_tdee: float = 0.25  # Used without a body weight
    fat_floor_share: float = 0.1
    kcal_per_g_carb: float = 4.0
    kcal_per_g_protein: float = 4.0
    kcal_per_g_fat: float = 9.0


@dataclass(frozen=True)
class RecommendationConfig:
    """When a recommendation is written for a day."""
    action_threshold: float = 0.65
    duration_days: int = 1


@dataclass(frozen=True)
class ScoringConfig:
    """Master configuration for all readiness scoring parameters."""
    composite: CompositeIndexConfig = field(default_factory=CompositeIndexConfig)
    plateau: PlateauConfig = field(default_factory=PlateauConfig)
    deficit: DeficitConfig = field(default_factory=DeficitConfig)
    training_load: TrainingLoadConfig = field(default_factory=TrainingLoadConfig)
    sigmoid: SigmoidConfig = field(default_factory=SigmoidConfig)
    readiness_v1: ReadinessV1Config = field(default_factory=ReadinessV1Config)
    readiness_v2: ReadinessV2Config = field(default_factory=ReadinessV2Config)
    guards: GuardConfig = field(default_factory=GuardConfig)
    refeed_targets: RefeedTargetConfig = field(default_factory=RefeedTargetConfig)
    recommendation: RecommendationConfig = field(default_factory=RecommendationConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ScoringConfig":
        """Load configuration from a YAML file. Missing keys keep their defaults."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        unknown = set(data) - {section.name for section in fields(cls)}
        if unknown:
            raise TypeError(f"Unknown scoring config sections: {', '.join(sorted(unknown))}")

        sections = {}

        if "composite" in data:
            sections["composite"] = CompositeIndexConfig.from_dict(data["composite"])
        if "plateau" in data:
            sections["plateau"] = PlateauConfig(**data["plateau"])
        if "deficit" in data:
            sections["deficit"] = DeficitConfig(**data["deficit"])
        if "training_load" in data:
            sections["training_load"] = TrainingLoadConfig(**data["training_load"])
        if "sigmoid" in data:
            sections["sigmoid"] = SigmoidConfig(**data["sigmoid"])
        if "readiness_v1" in data:
            sections["readiness_v1"] = ReadinessV1Config(**data["readiness_v1"])
        if "readiness_v2" in data:
            sections["readiness_v2"] = ReadinessV2Config(**data["readiness_v2"])
        if "guards" in data:
            sections["guards"] = GuardConfig(**data["guards"])
        if "refeed_targets" in data:
            sections["refeed_targets"] = RefeedTargetConfig(**data["refeed_targets"])
        if "recommendation" in data:
            sections["recommendation"] = RecommendationConfig(**data["recommendation"])

        return cls(**sections)

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return asdict(self)


@lru_cache
def get_scoring_config() -> ScoringConfig:
    """Get the process-wide scoring configuration (SCORING_CONFIG_PATH or defaults)."""
    path: Optional[str] = get_settings().scoring_config_path
    if path:
        return ScoringConfig.from_yaml(path)
    return ScoringConfig()
