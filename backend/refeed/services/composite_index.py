"""
Composite Index - Metabolic adaptation score (MAS).

Combines robust per-metric z-scores into a single polarity-adjusted index.
A positive MAS means the body is drifting towards its maladaptive direction
(cooler, higher resting heart rate, lower HRV, less sleep, more fatigue).
"""
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from refeed.schemas.enums import COMPOSITE_METRICS, MetricKey
from refeed.schemas.metrics import DailyMetricRecord
from refeed.services.scoring_config import CompositeIndexConfig, get_scoring_config
from refeed.services.statistics import clamp, robust_z


@dataclass
class CompositeIndex:
    """MAS with the per-metric inputs that produced it."""
    mas: float = 0.0
    z_scores: dict[str, float] = field(default_factory=dict)
    weights: dict[str, float] = field(default_factory=dict)  # Renormalized, 0 when missing

    @property
    def contributing_metrics(self) -> list[str]:
        return [key for key, weight in self.weights.items() if weight > 0]


def compute_mas(
    records: Sequence[DailyMetricRecord],
    config: Optional[CompositeIndexConfig] = None,
) -> CompositeIndex:
    """
    Compute the composite index for the last day of a date-ordered series.

    Metrics without a value today are dropped and the remaining weights are
    renormalized to sum to 1, so missing data lowers confidence rather than
    pulling the index towards zero.
    """
    if config is None:
        config = get_scoring_config().composite

    result = CompositeIndex()
    if not records:
        return result

    present: dict[MetricKey, float] = {}
    active_weight_sum = 0.0

    for key in COMPOSITE_METRICS:
        metric = config.metric_weight(key)
        z = robust_z(
            records,
            key,
            metric.sd_floor,
            window=config.window_size,
            mad_scale=config.mad_scale,
            z_clamp=config.z_clamp,
        )
        result.z_scores[key.value] = z if z is not None else 0.0
        if z is not None:
            present[key] = z
            active_weight_sum += metric.weight

    mas = 0.0
    for key in COMPOSITE_METRICS:
        metric = config.metric_weight(key)
        if key in present and active_weight_sum > 0:
            normalized_weight = metric.weight / active_weight_sum
            mas += normalized_weight * metric.polarity * present[key]
        else:
            normalized_weight = 0.0
        result.weights[key.value] = normalized_weight

    result.mas = clamp(mas, -config.index_clamp, config.index_clamp)
    return result
