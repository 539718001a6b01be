import math
import re
from collections.abc import Iterable
from datetime import date as date_type
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _to_finite(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class DailyMetricRecord(BaseModel):
    """One day of biometrics for one user.

    Every numeric field is optional. Missing, empty, unparsable and
    non-finite inputs are all stored as None so that downstream code only
    has to deal with a single notion of "absent".
    """
    model_config = ConfigDict(frozen=True, from_attributes=True)

    date: str
    weight_kg: Optional[float] = None
    rhr_bpm: Optional[float] = None
    temp_c: Optional[float] = None
    hrv_ms: Optional[float] = None
    sleep_min: Optional[float] = None
    fatigue_1_5: Optional[float] = None
    training_load: Optional[float] = None
    calorie_intake_kcal: Optional[float] = None
    energy_expenditure_kcal: Optional[float] = None

    @field_validator("date", mode="before")
    @classmethod
    def canonical_date(cls, value):
        if isinstance(value, date_type):
            return value.isoformat()
        if not isinstance(value, str) or not DATE_PATTERN.match(value):
            raise ValueError("date must be YYYY-MM-DD")
        # Rejects 2025-02-30 and similar
        date_type.fromisoformat(value)
        return value

    @field_validator(
        "weight_kg",
        "rhr_bpm",
        "temp_c",
        "hrv_ms",
        "sleep_min",
        "fatigue_1_5",
        "training_load",
        "calorie_intake_kcal",
        "energy_expenditure_kcal",
        mode="before",
    )
    @classmethod
    def finite_or_none(cls, value):
        return _to_finite(value)

    def value(self, key) -> Optional[float]:
        """Read a numeric field by name or MetricKey."""
        return getattr(self, getattr(key, "value", key))


def sort_records(records: Iterable[DailyMetricRecord]) -> list[DailyMetricRecord]:
    """Order records by date (ISO strings sort chronologically)."""
    return sorted(records, key=lambda record: record.date)


def upsert_record(
    records: Iterable[DailyMetricRecord],
    record: DailyMetricRecord,
) -> list[DailyMetricRecord]:
    """Return a new ordered series with `record` replacing any same-date entry."""
    kept = [existing for existing in records if existing.date != record.date]
    kept.append(record)
    return sort_records(kept)
