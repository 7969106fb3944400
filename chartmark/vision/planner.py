from __future__ import annotations

import re
from typing import List, Optional

from ..core.config import DEFAULT_ENGINE, EngineConfig
from .schema import Analysis, AnnotationMark, AnnotationPlan, Level

# Descriptions a model emits when it has nothing to say.
_GENERIC_STORIES = {
    "",
    "n/a",
    "na",
    "none",
    "null",
    "unknown",
    "unclear",
    "no clear trend",
    "no clear structure",
    "no description",
    "uptrend",
    "downtrend",
    "range",
    "breakout",
    "breakdown",
}

_STORY_TEMPLATES = {
    "uptrend": "Uptrend: buyers in control, pullbacks into support are being bought.",
    "downtrend": "Downtrend: sellers in control, bounces into resistance are being sold.",
    "range": "Range-bound: price is rotating between support and resistance.",
    "breakout": "Breakout: price is pushing through resistance, watch for a hold above.",
    "breakdown": "Breakdown: price is losing support, watch for a failed reclaim.",
    "unclear": "No clear structure: wait for price to pick a direction.",
}


def format_price(p: float) -> str:
    if p >= 1000:
        return f"{p:,.0f}"
    if p >= 1:
        return f"{p:,.2f}"
    return f"{p:.4g}"


def select_theme(preference: Optional[str]) -> str:
    return "light" if (preference or "").strip().lower() == "light" else "dark"


def build_story(analysis: Analysis) -> str:
    desc = (analysis.regime.description or "").strip()
    norm = " ".join(re.sub(r"[^\w/\s]", "", desc.casefold()).split())
    if norm not in _GENERIC_STORIES:
        return desc
    return _STORY_TEMPLATES.get(analysis.regime.trend, _STORY_TEMPLATES["unclear"])


def _level_marks(lv: Level, cfg: EngineConfig) -> tuple[AnnotationMark, AnnotationMark]:
    band = lv.price * cfg.zone_band_pct
    zone = AnnotationMark(
        type="zone",
        role=lv.kind,
        price=lv.price,
        price_high=lv.price + band,
        price_low=lv.price - band,
        opacity=cfg.zone_opacity.get(lv.strength, cfg.zone_opacity.get("moderate", 0.18)),
    )
    label = AnnotationMark(
        type="label",
        role=lv.kind,
        price=lv.price,
        text="Support" if lv.kind == "support" else "Resistance",
    )
    return zone, label


def _enforce_budget(marks: List[AnnotationMark], level_labels: List[AnnotationMark], budget: int) -> List[AnnotationMark]:
    """Drop level labels (last level first), then the tail, until the budget holds."""
    if len(marks) <= budget:
        return marks
    drop: set[int] = set()
    for lbl in reversed(level_labels):
        if len(marks) - len(drop) <= budget:
            break
        drop.add(id(lbl))
    kept = [m for m in marks if id(m) not in drop]
    return kept[: max(budget, 0)]


def plan_annotations(
    analysis: Analysis,
    theme: Optional[str] = "dark",
    config: Optional[EngineConfig] = None,
) -> AnnotationPlan:
    """
    Turn a validated analysis into an ordered, bounded list of marks.

    Order is draw order: zones and labels first, then the pivot, the current
    price marker and finally the scenario paths on top.
    """
    cfg = config or DEFAULT_ENGINE
    cp = analysis.current_price

    marks: List[AnnotationMark] = []
    level_labels: List[AnnotationMark] = []

    # 1) levels
    for lv in analysis.levels:
        zone, label = _level_marks(lv, cfg)
        marks.extend((zone, label))
        level_labels.append(label)

    # 2) pivot
    pivot = analysis.pivot
    if pivot.price > 0:
        marks.append(AnnotationMark(type="line", role="pivot", price=pivot.price, style="dashed"))
        marks.append(AnnotationMark(type="label", role="pivot", price=pivot.price, text="Pivot"))

    # 3) current price
    if cp > 0:
        marks.append(AnnotationMark(type="circle", role="current_price", price=cp))

    # 4/5) scenario paths
    bull = analysis.scenarios.bullish.target
    if cp > 0 and bull > cp:
        marks.append(AnnotationMark(
            type="arrow",
            role="bull_path",
            price=bull,
            price_low=cp,
            price_high=bull,
            style="solid",
            text=f"Bull target {format_price(bull)}",
        ))

    bear = analysis.scenarios.bearish.target
    if cp > 0 and 0 < bear < cp:
        marks.append(AnnotationMark(
            type="arrow",
            role="bear_path",
            price=bear,
            price_low=bear,
            price_high=cp,
            style="dashed",
            text=f"Bear target {format_price(bear)}",
        ))

    marks = _enforce_budget(marks, level_labels, cfg.max_marks)

    return AnnotationPlan(theme=select_theme(theme), story=build_story(analysis), marks=tuple(marks))
