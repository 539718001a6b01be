from pydantic import BaseModel, ConfigDict, Field


class ScoreRecord(BaseModel):
    """Persisted output of the scoring pipeline for one user and day."""
    model_config = ConfigDict(from_attributes=True)

    date: str
    mas: float = Field(..., ge=-3, le=3)
    rrs: float = Field(..., ge=0, le=1)
    plateau_flag: bool
    deficit_streak: int = Field(..., ge=0)
    training_load_factor: float = Field(..., ge=0, le=1)

    rrs_v2: float = Field(..., ge=0, le=1)
    rrs_display: float = Field(..., ge=0, le=1)
    rrs_effective: float = Field(..., ge=0, le=1)
    refeed_cooldown: float = Field(0.0, ge=0, le=1)
    refeed_response: float = Field(0.0, ge=-0.5, le=0.5)
    hard_locked: bool = False
    effective_window: float | None = None
    observed_days: int = Field(0, ge=0)


class RefeedTargets(BaseModel):
    """Macronutrient targets for a single refeed day."""
    kcal_total: int
    carb_g: int
    protein_g: int
    fat_g: int
