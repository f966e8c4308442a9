from pydantic import BaseModel, Field, model_validator

from ..settings import DEFAULT_DRY_RAW, DEFAULT_WET_RAW, DEFAULT_LOWER_PCT, DEFAULT_UPPER_PCT


class CalibrationUpdate(BaseModel):
    dry_raw: int = Field(DEFAULT_DRY_RAW, ge=0)
    wet_raw: int = Field(DEFAULT_WET_RAW, ge=0)

    @model_validator(mode="after")
    def bounds_differ(self):
        if self.dry_raw == self.wet_raw:
            raise ValueError("dry_raw and wet_raw must differ")
        return self


class ThresholdUpdate(BaseModel):
    lower_pct: int = Field(DEFAULT_LOWER_PCT, ge=0, le=100)
    upper_pct: int = Field(DEFAULT_UPPER_PCT, ge=0, le=100)

    @model_validator(mode="after")
    def ordered(self):
        if self.lower_pct > self.upper_pct:
            raise ValueError("lower_pct must not exceed upper_pct")
        return self
