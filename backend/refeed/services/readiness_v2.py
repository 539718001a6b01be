"""
Refeed-Aware Readiness (v2) - Readiness with cooldown, hard lock and response.

The state is derived per call from the days elapsed since the last executed
refeed:

- no history: no executed refeed yet, behaves like steady state
- hard locked: fewer than `min_gap_days` since the refeed, readiness is 0
- cooldown: within the effect window, readiness is penalised linearly
- expired: past the effect window, steady state again

The physiological response to the last refeed (temperature up, resting heart
rate down) nudges readiness up or down once enough post-refeed days exist.
"""
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

from refeed.schemas.enums import RESPONSE_METRICS, MetricKey, RefeedState
from refeed.schemas.metrics import DailyMetricRecord, sort_records
from refeed.services.readiness import normalized_deficit, sigmoid
from refeed.services.scoring_config import ReadinessV2Config, ScoringConfig, get_scoring_config
from refeed.services.statistics import clamp, finite_or_none, mean_sd_baseline, running_sum

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ZPoint:
    date: str
    z: float


@dataclass
class WindowAverage:
    value: Optional[float] = None
    count: int = 0


@dataclass
class RefeedResponse:
    """Measured response to a refeed."""
    response: float = 0.0
    observed_days: int = 0
    window_extension: int = 0


@dataclass
class RefeedReadinessInput:
    """Inputs for one evaluation day."""
    today: str
    mas: float
    plateau_flag: bool
    deficit_streak: float
    training_load_factor: float
    last_refeed_date: Optional[str] = None
    refeed_effect_window: Optional[float] = None
    records: Sequence[DailyMetricRecord] = field(default_factory=list)
    # Precomputed z-series per metric; takes precedence over `records`
    z_series: Optional[dict[str, list[ZPoint]]] = None


@dataclass
class RefeedReadiness:
    """Result of the refeed-aware readiness engine."""
    rrs: float
    rrs_input: float
    cooldown: float
    response: float
    hard_locked: bool
    effective_window: float
    observed_days: int
    display_rrs: float
    effective_rrs: float
    threshold_on: float
    threshold_off: float
    threshold_delta: float
    days_since_refeed: Optional[int] = None

    @property
    def state(self) -> RefeedState:
        if self.days_since_refeed is None:
            return RefeedState.NO_HISTORY
        if self.hard_locked:
            return RefeedState.HARD_LOCKED
        if self.cooldown > 0:
            return RefeedState.COOLDOWN
        return RefeedState.EXPIRED

    def to_dict(self) -> dict:
        return {
            "rrs": self.rrs,
            "rrs_input": self.rrs_input,
            "cooldown": self.cooldown,
            "response": self.response,
            "hard_locked": self.hard_locked,
            "effective_window": self.effective_window,
            "observed_days": self.observed_days,
            "display_rrs": self.display_rrs,
            "effective_rrs": self.effective_rrs,
            "threshold_on": self.threshold_on,
            "threshold_off": self.threshold_off,
            "threshold_delta": self.threshold_delta,
            "state": self.state.value,
        }


def _as_iso(value) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return value


def days_between(start: str, end: str) -> int:
    """Whole calendar days from start to end."""
    return (date.fromisoformat(_as_iso(end)) - date.fromisoformat(_as_iso(start))).days


def offset_date(base: str, days: int) -> str:
    return (date.fromisoformat(_as_iso(base)) + timedelta(days=days)).isoformat()


def build_z_series(
    records: Sequence[DailyMetricRecord],
    key: MetricKey,
    window: int = 28,
) -> list[ZPoint]:
    """z-score of every recorded value against the trailing-window mean/sd."""
    ordered = sort_records(records)
    values = [v for v in (finite_or_none(r.value(key)) for r in ordered) if v is not None]
    baseline = mean_sd_baseline(values[-window:])
    if baseline is None:
        return []

    sd = baseline.sd or 1.0
    series = []
    for record in ordered:
        raw = finite_or_none(record.value(key))
        if raw is None:
            continue
        series.append(ZPoint(date=record.date, z=(raw - baseline.mean) / sd))
    return series


def window_average(series: Sequence[ZPoint], start: str, end: str) -> WindowAverage:
    """Mean z over the inclusive date range [start, end]."""
    points = [point.z for point in series if start <= point.date <= end]
    if not points:
        return WindowAverage()
    return WindowAverage(value=running_sum(points) / len(points), count=len(points))


def measure_refeed_response(
    z_series: dict[str, list[ZPoint]],
    refeed_date: str,
    config: Optional[ReadinessV2Config] = None,
) -> RefeedResponse:
    """
    Compare temperature and resting heart rate before and after a refeed.

    Until at least `min_observed_days` post-refeed days are recorded the
    response is 0 and the effect window is extended instead.
    """
    if config is None:
        config = get_scoring_config().readiness_v2

    pre_start = offset_date(refeed_date, -config.pre_window_days)
    pre_end = _as_iso(refeed_date)
    post_start = offset_date(refeed_date, 1)
    post_end = offset_date(refeed_date, config.post_window_days)

    temp_series = z_series.get(MetricKey.TEMP.value, [])
    rhr_series = z_series.get(MetricKey.RHR.value, [])

    pre_temp = window_average(temp_series, pre_start, pre_end)
    post_temp = window_average(temp_series, post_start, post_end)
    pre_rhr = window_average(rhr_series, pre_start, pre_end)
    post_rhr = window_average(rhr_series, post_start, post_end)

    observed_days = max(post_temp.count, post_rhr.count)
    if observed_days < config.min_observed_days:
        return RefeedResponse(
            response=0.0,
            observed_days=observed_days,
            window_extension=config.window_extension_days,
        )

    delta_temp = 0.0
    if post_temp.value is not None and pre_temp.value is not None:
        delta_temp = post_temp.value - pre_temp.value
    delta_rhr = 0.0
    if post_rhr.value is not None and pre_rhr.value is not None:
        delta_rhr = post_rhr.value - pre_rhr.value

    # Warmer is good, a lower resting heart rate is good
    g_temp = clamp(delta_temp / config.temp_normaliser, -config.gain_clamp, config.gain_clamp)
    g_rhr = clamp(-delta_rhr / config.rhr_normaliser, -config.gain_clamp, config.gain_clamp)

    weighted = (config.temp_weight * g_temp + config.rhr_weight * g_rhr) / (
        config.temp_weight + config.rhr_weight
    )
    response = clamp(weighted, -config.response_clamp, config.response_clamp)

    return RefeedResponse(response=response, observed_days=observed_days, window_extension=0)


def _z_series_for(inputs: RefeedReadinessInput, window: int) -> dict[str, list[ZPoint]]:
    series: dict[str, list[ZPoint]] = {}
    existing = inputs.z_series or {}
    for key in RESPONSE_METRICS:
        if existing.get(key.value):
            series[key.value] = list(existing[key.value])
        else:
            series[key.value] = build_z_series(inputs.records, key, window)
    return series


def _effect_window(override: Optional[float], default: int) -> float:
    window = finite_or_none(override)
    if window is None or window <= 0:
        return default
    return window


def compute_rrs_v2(
    inputs: RefeedReadinessInput,
    config: Optional[ScoringConfig] = None,
) -> RefeedReadiness:
    """Evaluate refeed-aware readiness for `inputs.today`."""
    cfg = config or get_scoring_config()
    v2 = cfg.readiness_v2

    mas = finite_or_none(inputs.mas) or 0.0
    deficit_streak = finite_or_none(inputs.deficit_streak) or 0.0
    training_load_factor = finite_or_none(inputs.training_load_factor) or 0.0

    has_refeed = bool(inputs.last_refeed_date)
    base_window = _effect_window(inputs.refeed_effect_window, v2.default_effect_window)
    effective_window = base_window

    days_since_refeed: Optional[int] = None
    if has_refeed:
        # A refeed dated after today counts as today
        days_since_refeed = max(days_between(inputs.last_refeed_date, inputs.today), 0)

    hard_locked = has_refeed and days_since_refeed < v2.min_gap_days
    cooldown = clamp(1 - days_since_refeed / base_window, 0.0, 1.0) if has_refeed else 0.0

    response = 0.0
    observed_days = 0
    if has_refeed:
        measured = measure_refeed_response(
            _z_series_for(inputs, v2.baseline_window),
            inputs.last_refeed_date,
            v2,
        )
        response = measured.response
        observed_days = measured.observed_days
        effective_window += measured.window_extension

    deficit_used = deficit_streak
    if has_refeed and 0 <= days_since_refeed < v2.dampening_days:
        deficit_used *= v2.dampening_factor
    deficit_norm = clamp(normalized_deficit(deficit_used, cfg.deficit.saturation_days), 0.0, 1.0)

    base_input = (
        v2.mas * mas
        + v2.plateau * (1 if inputs.plateau_flag else 0)
        + v2.deficit * deficit_norm
        + v2.training * training_load_factor
    )
    adjusted = base_input - v2.cooldown * cooldown + v2.response * response

    rrs = 0.0 if hard_locked else sigmoid(adjusted, cfg.sigmoid)
    in_cooldown = cooldown > 0
    display_rrs = min(rrs, v2.threshold_on - v2.display_margin) if in_cooldown else rrs

    effective_input = adjusted - v2.lock_penalty if in_cooldown else adjusted
    effective_rrs = 0.0 if hard_locked else sigmoid(effective_input, cfg.sigmoid)

    logger.debug(
        "Refeed readiness evaluated",
        extra={
            "today": inputs.today,
            "last_refeed_date": inputs.last_refeed_date,
            "days_since_refeed": days_since_refeed,
            "hard_locked": hard_locked,
            "cooldown": cooldown,
            "response": response,
            "rrs_input": adjusted,
        },
    )

    return RefeedReadiness(
        rrs=rrs,
        rrs_input=adjusted,
        cooldown=cooldown,
        response=response,
        hard_locked=hard_locked,
        effective_window=effective_window,
        observed_days=observed_days,
        display_rrs=display_rrs,
        effective_rrs=effective_rrs,
        threshold_on=v2.threshold_on,
        threshold_off=v2.threshold_off,
        threshold_delta=v2.threshold_delta,
        days_since_refeed=days_since_refeed,
    )
