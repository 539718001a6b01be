"""
Refeed Targets - Calorie and macronutrient targets for a refeed day.

Calories are raised above the estimated TDEE; most of the surplus goes to
carbohydrate, protein is anchored to body weight and fat takes the rest.
"""
import math
from typing import Optional

from refeed.schemas.score import RefeedTargets
from refeed.services.scoring_config import RefeedTargetConfig, get_scoring_config
from refeed.services.statistics import finite_or_none


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 going up (JavaScript Math.round)."""
    floor = math.floor(value)
    return floor + 1 if value - floor >= 0.5 else floor


def compute_refeed_targets(
    estimated_tdee: Optional[float],
    body_weight_kg: Optional[float] = None,
    multiplier: Optional[float] = None,
    config: Optional[RefeedTargetConfig] = None,
) -> Optional[RefeedTargets]:
    """Return refeed day targets, or None when the TDEE is unknown."""
    if config is None:
        config = get_scoring_config().refeed_targets

    tdee = finite_or_none(estimated_tdee)
    if not tdee:
        return None
    if multiplier is None:
        multiplier = config.default_multiplier
    body_weight_kg = finite_or_none(body_weight_kg)

    total_kcal = round_half_up(tdee * (1 + multiplier))
    extra_kcal = total_kcal - tdee
    extra_carb_kcal = round_half_up(extra_kcal * config.carb_share_of_surplus)
    carb_grams = round_half_up(extra_carb_kcal / config.kcal_per_g_carb)

    if body_weight_kg and body_weight_kg > 0:
        protein_grams = round_half_up(body_weight_kg * config.protein_g_per_kg)
    else:
        protein_grams = round_half_up((tdee * config.protein_share_of_tdee) / config.kcal_per_g_protein)

    protein_kcal = protein_grams * config.kcal_per_g_protein
    carb_kcal = carb_grams * config.kcal_per_g_carb
    remaining_kcal = max(
        total_kcal - protein_kcal - carb_kcal,
        round_half_up(total_kcal * config.fat_floor_share),
    )
    fat_grams = round_half_up(remaining_kcal / config.kcal_per_g_fat)

    return RefeedTargets(
        kcal_total=total_kcal,
        carb_g=carb_grams,
        protein_g=protein_grams,
        fat_g=fat_grams,
    )
