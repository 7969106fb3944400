import os
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field


class Margins(BaseModel):
    """Fractional plotting margins of a screenshot-style chart.

    Heuristic, not measured: axis labels usually sit on the left/right edges,
    a header on top and the date axis at the bottom.
    """
    model_config = ConfigDict(frozen=True)

    left: float = 0.08
    right: float = 0.92
    top: float = 0.05
    bottom: float = 0.88


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # validation
    level_min_distance: float = 0.05
    level_max_ratio: float = 10.0
    max_levels: int = 3
    target_cap_multiplier: float = 2.5

    # planning
    zone_band_pct: float = 0.005
    zone_opacity: Dict[str, float] = Field(
        default_factory=lambda: {"strong": 0.25, "moderate": 0.18, "weak": 0.12}
    )
    max_marks: int = 9

    # geometry / rendering
    range_padding: float = 0.15
    margins: Margins = Field(default_factory=Margins)
    story_max_chars: int = 100
    story_truncate_chars: int = 80


DEFAULT_ENGINE = EngineConfig()


class Settings(BaseModel):
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    default_theme: str = os.getenv("DEFAULT_THEME", "dark")
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

    max_marks: int = int(os.getenv("MAX_MARKS", "9"))
    target_cap_multiplier: float = float(os.getenv("TARGET_CAP_MULTIPLIER", "2.5"))
    level_min_distance: float = float(os.getenv("LEVEL_MIN_DISTANCE", "0.05"))
    zone_band_pct: float = float(os.getenv("ZONE_BAND_PCT", "0.005"))

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            max_marks=self.max_marks,
            target_cap_multiplier=self.target_cap_multiplier,
            level_min_distance=self.level_min_distance,
            zone_band_pct=self.zone_band_pct,
        )

settings = Settings()
