"""
Trends - Week-over-week comparison of a single metric.
"""
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Optional

from refeed.schemas.metrics import DailyMetricRecord, sort_records
from refeed.services.statistics import present_values, running_sum


@dataclass
class WeeklyComparison:
    last_avg: Optional[float] = None
    prev_avg: Optional[float] = None
    delta: Optional[float] = None


def _average(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return running_sum(values) / len(values)


def compare_weekly_averages(
    records: Sequence[DailyMetricRecord],
    key,
    days: int = 7,
) -> WeeklyComparison:
    """Average of the last `days` records versus the `days` before them."""
    ordered = sort_records(records)
    last_week = ordered[-days:]
    previous_week = ordered[-2 * days:-days]

    last_avg = _average(present_values(last_week, key))
    prev_avg = _average(present_values(previous_week, key))

    if last_avg is None or prev_avg is None:
        return WeeklyComparison(last_avg=last_avg, prev_avg=prev_avg)
    return WeeklyComparison(last_avg=last_avg, prev_avg=prev_avg, delta=last_avg - prev_avg)
