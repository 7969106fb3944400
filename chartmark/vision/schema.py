from __future__ import annotations

from typing import List, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    # Upstream JSON is camelCase; Python side stays snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----------------------------
# Validated analysis
# ----------------------------
Trend = Literal["uptrend", "downtrend", "range", "breakout", "breakdown", "unclear"]
LevelKind = Literal["support", "resistance"]
Strength = Literal["weak", "moderate", "strong"]
Recency = Literal["recent", "older", "unknown"]
Direction = Literal["bullish", "bearish"]
ConfidenceLevel = Literal["low", "medium", "high"]


class Regime(_Model):
    trend: Trend = "unclear"
    strength: str = ""
    description: str = ""


class Level(_Model):
    price: float
    kind: LevelKind
    label: str = ""
    touch_count: int = 0
    recency: Recency = "unknown"
    strength: Strength = "moderate"


class Pivot(_Model):
    price: float = 0.0
    label: str = ""
    significance: str = ""


class Scenario(_Model):
    direction: Direction
    trigger: str = ""
    target: float = 0.0
    target_reason: str = ""
    invalidation: float = 0.0
    invalidation_reason: str = ""


class ScenarioPair(_Model):
    bullish: Scenario = Field(default_factory=lambda: Scenario(direction="bullish"))
    bearish: Scenario = Field(default_factory=lambda: Scenario(direction="bearish"))


class Confidence(_Model):
    overall: ConfidenceLevel = "low"
    reasons: List[str] = Field(default_factory=list)


class Analysis(_Model):
    regime: Regime = Field(default_factory=Regime)
    levels: List[Level] = Field(default_factory=list)   # 0–3
    pivot: Pivot = Field(default_factory=Pivot)
    scenarios: ScenarioPair = Field(default_factory=ScenarioPair)
    confidence: Confidence = Field(default_factory=Confidence)
    summary: str = ""
    current_price: float = 0.0

    success: bool = True
    error: Optional[str] = None


# ----------------------------
# Annotation plan (renderer input)
# ----------------------------
MarkType = Literal["zone", "line", "arrow", "label", "circle", "range_box", "pivot", "fakeout"]
MarkRole = Literal[
    "support",
    "resistance",
    "pivot",
    "target",
    "invalidation",
    "bull_path",
    "bear_path",
    "current_price",
]
LineStyle = Literal["solid", "dashed"]
Theme = Literal["dark", "light"]


class AnnotationMark(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: MarkType
    role: MarkRole
    price: Optional[float] = None
    price_high: Optional[float] = None
    price_low: Optional[float] = None
    text: Optional[str] = None
    style: Optional[LineStyle] = None
    opacity: Optional[float] = None


class AnnotationPlan(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    theme: Theme = "dark"
    story: str
    marks: tuple[AnnotationMark, ...] = ()


# ----------------------------
# Pipeline output
# ----------------------------
ImageSource = Literal["rendered", "ai", "base"]


class AnnotationResult(_Model):
    analysis: Analysis
    plan: AnnotationPlan
    image: bytes
    source: ImageSource = "rendered"
    media_type: str = "image/png"
    rendered: bool = True
    error: Optional[str] = None
