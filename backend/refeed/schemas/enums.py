from enum import Enum


class MetricKey(str, Enum):
    """Numeric columns of a daily metric record."""
    WEIGHT = "weight_kg"
    RHR = "rhr_bpm"
    TEMP = "temp_c"
    HRV = "hrv_ms"
    SLEEP = "sleep_min"
    FATIGUE = "fatigue_1_5"
    TRAINING_LOAD = "training_load"
    CALORIE_INTAKE = "calorie_intake_kcal"
    ENERGY_EXPENDITURE = "energy_expenditure_kcal"


class RefeedState(str, Enum):
    """Where a day sits relative to the last executed refeed."""
    NO_HISTORY = "no_history"
    HARD_LOCKED = "hard_locked"
    COOLDOWN = "cooldown"
    EXPIRED = "expired"


# Metrics that feed the composite adaptation index, in weighting order
COMPOSITE_METRICS = [
    MetricKey.TEMP,
    MetricKey.RHR,
    MetricKey.HRV,
    MetricKey.SLEEP,
    MetricKey.FATIGUE,
]

# Metrics used to measure the physiological response to a refeed
RESPONSE_METRICS = [
    MetricKey.TEMP,
    MetricKey.RHR,
]
