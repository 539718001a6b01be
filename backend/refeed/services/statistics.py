"""
Statistics utilities shared by the readiness engines.

Baselines are computed per call over the user's own history; nothing here is
persisted. All helpers are total: missing or non-finite inputs never raise.
"""
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from refeed.schemas.metrics import DailyMetricRecord

VARIANCE_FLOOR = 1e-6
SINGLETON_SD_RATIO = 0.05  # sd of a one-value baseline, relative to the value
OUTLIER_SD = 3.0
MIN_OUTLIER_SAMPLE = 4


@dataclass(frozen=True)
class Baseline:
    """Mean / standard deviation baseline."""
    mean: float
    sd: float


@dataclass(frozen=True)
class RobustBaseline:
    """Median / scaled MAD baseline."""
    median: float
    scaled_mad: float


def finite_or_none(value) -> Optional[float]:
    """Return value as float, or None when absent or not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def running_sum(values: Iterable[float]) -> float:
    """Left-to-right float sum (builtin sum() compensates on Python 3.12+)."""
    total = 0.0
    for value in values:
        total += value
    return total


def mean_sd_baseline(values: Sequence[float]) -> Optional[Baseline]:
    """
    Sample mean and Bessel-corrected standard deviation.

    A single value gets a synthetic sd of 5% of its magnitude so that a
    one-point history never divides by zero.
    """
    if len(values) == 0:
        return None

    if len(values) == 1:
        value = values[0]
        return Baseline(mean=value, sd=max(abs(value) * SINGLETON_SD_RATIO, VARIANCE_FLOOR))

    mean = running_sum(values) / len(values)
    variance = running_sum((value - mean) ** 2 for value in values) / (len(values) - 1)
    sd = math.sqrt(max(variance, VARIANCE_FLOOR))
    return Baseline(mean=mean, sd=sd)


def trim_outliers(values: Sequence[float]) -> list[float]:
    """Drop values more than 3 sd away from the mean (needs at least 4 values)."""
    if len(values) < MIN_OUTLIER_SAMPLE:
        return list(values)
    stats = mean_sd_baseline(values)
    if stats is None:
        return list(values)

    threshold = OUTLIER_SD * stats.sd
    return [value for value in values if abs(value - stats.mean) <= threshold]


def calculate_z(value: Optional[float], baseline: Optional[Baseline]) -> float:
    """Plain z-score against a mean/sd baseline; 0 when either side is missing."""
    value = finite_or_none(value)
    if value is None or baseline is None:
        return 0.0
    sd = baseline.sd or 1.0
    z = (value - baseline.mean) / sd
    return z if math.isfinite(z) else 0.0


def trimmed_z(values: Sequence[float], value: Optional[float]) -> float:
    """z-score of value against the outlier-trimmed mean/sd of values."""
    clean = [v for v in (finite_or_none(v) for v in values) if v is not None]
    return calculate_z(value, mean_sd_baseline(trim_outliers(clean)))


def median_of(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def mad_of(values: Sequence[float], center: float) -> float:
    """Median absolute deviation around center."""
    if len(values) == 0:
        return 0.0
    return median_of([abs(value - center) for value in values])


def robust_baseline(values: Sequence[float], window: int = 28, mad_scale: float = 1.4826) -> Optional[RobustBaseline]:
    """Median and scaled MAD of the trailing `window` values."""
    if len(values) == 0:
        return None
    window_values = list(values)[-window:]
    med = median_of(window_values)
    return RobustBaseline(median=med, scaled_mad=mad_scale * mad_of(window_values, med))


def present_values(records: Sequence[DailyMetricRecord], key) -> list[float]:
    """Non-null values of one metric, in record order."""
    values = []
    for record in records:
        value = finite_or_none(record.value(key))
        if value is not None:
            values.append(value)
    return values


def robust_z(
    records: Sequence[DailyMetricRecord],
    key,
    sd_floor: float,
    window: int = 28,
    mad_scale: float = 1.4826,
    z_clamp: float = 2.5,
) -> Optional[float]:
    """
    Robust z-score of today's value against the user's own history.

    `records` must be date ordered and end at "today". The latest record
    decides: if it has no value for `key`, there is no z-score even when older
    days have data.
    """
    baseline = robust_baseline(present_values(records, key), window, mad_scale)
    if baseline is None:
        return None

    latest = finite_or_none(records[-1].value(key))
    if latest is None:
        return None

    scale = max(baseline.scaled_mad, sd_floor)
    if scale == 0:
        return 0.0
    raw_z = (latest - baseline.median) / scale
    if not math.isfinite(raw_z):
        return 0.0
    return clamp(raw_z, -z_clamp, z_clamp)


def round_fixed(value: float, digits: int) -> float:
    """Round like JavaScript Number(x.toFixed(digits)): exact binary value, ties away from zero."""
    return float(format_fixed(value, digits))


def format_fixed(value: float, digits: int) -> str:
    """Format like JavaScript x.toFixed(digits)."""
    if value == 0:
        value = 0.0  # -0 prints without a sign
    quantum = Decimal(1).scaleb(-digits)
    return str(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))
