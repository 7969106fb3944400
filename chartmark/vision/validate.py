from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Optional

from ..core.config import DEFAULT_ENGINE, EngineConfig
from .schema import (
    Analysis,
    Confidence,
    Level,
    Pivot,
    Regime,
    Scenario,
    ScenarioPair,
)

logger = logging.getLogger(__name__)

_TRENDS = ("uptrend", "downtrend", "range", "breakout", "breakdown")
_TREND_ALIASES = {
    "up": "uptrend",
    "bullish": "uptrend",
    "down": "downtrend",
    "bearish": "downtrend",
    "ranging": "range",
    "sideways": "range",
    "consolidation": "range",
}
_STRENGTHS = ("weak", "moderate", "strong")
_RECENCY = ("recent", "older", "unknown")
_CONFIDENCE = ("low", "medium", "high")
_DIRECTION_ALIASES = {
    "bullish": "bullish",
    "up": "bullish",
    "long": "bullish",
    "bearish": "bearish",
    "down": "bearish",
    "short": "bearish",
}


def _strip_code_fences(text: str) -> str:
    if "```" not in text:
        return text.strip()
    return text.replace("```json", "").replace("```", "").strip()


def _num(x: Any) -> Optional[float]:
    """Finite float or None. Booleans are not prices."""
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, str):
        x = x.strip().replace(",", "").lstrip("$")
        if x == "":
            return None
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def _price(x: Any) -> float:
    v = _num(x)
    return v if v is not None and v > 0 else 0.0


def _text(x: Any) -> str:
    return x.strip() if isinstance(x, str) else ""


def _get(d: dict, *keys: str) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return None


def _choice(x: Any, allowed, default: str, aliases: Optional[dict] = None) -> str:
    s = _text(x).lower().replace("-", "_").replace(" ", "_")
    if aliases and s in aliases:
        return aliases[s]
    return s if s in allowed else default


# ----------------------------
# Field parsers
# ----------------------------
def _parse_regime(raw: Any) -> Regime:
    if isinstance(raw, str):
        return Regime(trend=_choice(raw, _TRENDS, "unclear", _TREND_ALIASES))
    if not isinstance(raw, dict):
        return Regime()
    return Regime(
        trend=_choice(_get(raw, "trend", "type"), _TRENDS, "unclear", _TREND_ALIASES),
        strength=_text(raw.get("strength")),
        description=_text(_get(raw, "description", "summary")),
    )


def _raw_level_items(data: dict) -> List[tuple[Any, Optional[str]]]:
    """(item, kind hint) for every level-ish entry in the upstream payload."""
    items: List[tuple[Any, Optional[str]]] = []
    levels = _get(data, "levels", "keyLevels", "key_levels")
    if isinstance(levels, list):
        items.extend((lv, None) for lv in levels)
    for kind in ("support", "resistance"):
        single = data.get(kind)
        if isinstance(single, dict):
            items.append((single, kind))
        elif isinstance(single, list):
            items.extend((lv, kind) for lv in single)
    return items


def _parse_level(item: Any, hint: Optional[str], current_price: float) -> Optional[Level]:
    if isinstance(item, dict):
        price = _num(item.get("price"))
        raw_kind = _get(item, "kind", "type")
        label = _text(item.get("label"))
        touches = _num(_get(item, "touchCount", "touch_count", "touches"))
        recency = _choice(item.get("recency"), _RECENCY, "unknown")
        strength = _choice(item.get("strength"), _STRENGTHS, "moderate")
    else:
        price = _num(item)
        raw_kind, label, touches, recency, strength = None, "", None, "unknown", "moderate"

    if price is None or price <= 0:
        return None

    kind = _choice(raw_kind, ("support", "resistance"), "") or hint or ""
    if current_price > 0 and price != current_price:
        side = "support" if price < current_price else "resistance"
        if kind and kind != side:
            logger.debug("Level %s labeled %s sits on the %s side of price %s", price, kind, side, current_price)
        kind = side
    elif not kind:
        return None

    return Level(
        price=price,
        kind=kind,
        label=label,
        touch_count=max(0, int(touches)) if touches is not None else 0,
        recency=recency,
        strength=strength,
    )


def _within_reach(price: float, current_price: float, cfg: EngineConfig) -> bool:
    if current_price <= 0 or price <= 0:
        return True
    return current_price / cfg.level_max_ratio <= price <= current_price * cfg.level_max_ratio


def _parse_levels(data: dict, current_price: float, cfg: EngineConfig) -> List[Level]:
    """All structurally sound levels, before the distance-to-price filter."""
    out: List[Level] = []
    seen: set[float] = set()
    for item, hint in _raw_level_items(data):
        lv = _parse_level(item, hint, current_price)
        if lv is None or lv.price in seen:
            continue
        if not _within_reach(lv.price, current_price, cfg):
            logger.debug("Dropping level %s: unreasonably far from price %s", lv.price, current_price)
            continue
        seen.add(lv.price)
        out.append(lv)
    return out


def _filter_levels(levels: List[Level], current_price: float, cfg: EngineConfig) -> List[Level]:
    """Drop levels that are really just the current price."""
    if current_price <= 0:
        return levels[: cfg.max_levels]

    kept: List[Level] = []
    for lv in levels:
        dist = abs(lv.price - current_price) / current_price
        if dist <= cfg.level_min_distance:
            logger.debug("Dropping level %s: %.2f%% from price %s", lv.price, dist * 100, current_price)
            continue
        kept.append(lv)
    return kept[: cfg.max_levels]


def _parse_pivot(raw: Any) -> Pivot:
    if isinstance(raw, dict):
        return Pivot(
            price=_price(raw.get("price")),
            label=_text(raw.get("label")),
            significance=_text(_get(raw, "significance", "reason")),
        )
    return Pivot(price=_price(raw))


def _parse_scenario(raw: Any, direction: str) -> Scenario:
    if not isinstance(raw, dict):
        return Scenario(direction=direction)
    return Scenario(
        direction=direction,
        trigger=_text(raw.get("trigger")),
        target=_price(raw.get("target")),
        target_reason=_text(_get(raw, "targetReason", "target_reason")),
        invalidation=_price(_get(raw, "invalidation", "stopLoss", "stop_loss")),
        invalidation_reason=_text(_get(raw, "invalidationReason", "invalidation_reason", "stopReason")),
    )


def _parse_scenarios(data: dict) -> dict[str, Scenario]:
    found: dict[str, Any] = {}
    raw = _get(data, "scenarios", "breakScenarios", "break_scenarios")
    if isinstance(raw, dict):
        for key in ("bullish", "bearish"):
            if isinstance(raw.get(key), dict):
                found[key] = raw[key]
    elif isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict):
                continue
            d = _DIRECTION_ALIASES.get(_text(item.get("direction")).lower())
            if d and d not in found:
                found[d] = item
    return {d: _parse_scenario(found.get(d), d) for d in ("bullish", "bearish")}


def _parse_confidence(data: dict) -> Confidence:
    raw = data.get("confidence")
    if isinstance(raw, dict):
        overall = _choice(raw.get("overall"), _CONFIDENCE, "low")
        reasons: List[str] = []
        if isinstance(raw.get("reasons"), list):
            reasons = [_text(r) for r in raw["reasons"] if _text(r)]
        if not reasons and _text(raw.get("reason")):
            reasons = [_text(raw.get("reason"))]
        return Confidence(overall=overall, reasons=reasons)

    overall = _choice(raw, _CONFIDENCE, "")
    reason = _text(_get(data, "confidenceReason", "confidence_reason"))
    if not overall:
        return Confidence(overall="low", reasons=[reason] if reason else ["Confidence not reported."])
    return Confidence(overall=overall, reasons=[reason] if reason else [])


# ----------------------------
# Numeric sanity
# ----------------------------
def _gate(price: float, what: str, current_price: float, cfg: EngineConfig) -> float:
    """Zero out a price that is unreasonably far from current price."""
    if _within_reach(price, current_price, cfg):
        return price
    logger.debug("Dropping %s %s: unreasonably far from price %s", what, price, current_price)
    return 0.0


def _gate_scenario(s: Scenario, current_price: float, cfg: EngineConfig) -> Scenario:
    return s.model_copy(update={
        "target": _gate(s.target, f"{s.direction} target", current_price, cfg),
        "invalidation": _gate(s.invalidation, f"{s.direction} invalidation", current_price, cfg),
    })


def _nearest_on_side(levels: List[Level], current_price: float, above: bool) -> Optional[Level]:
    side = [lv for lv in levels if (lv.price > current_price if above else lv.price < current_price)]
    if not side:
        return None
    return min(side, key=lambda lv: abs(lv.price - current_price))


def cap_target(scenario: Scenario, structural: List[Level], current_price: float, cfg: EngineConfig) -> Scenario:
    """
    Clamp a scenario target to `target_cap_multiplier` times the distance to the
    nearest structural level on the scenario's side of price.
    Without such a level there is nothing to anchor the cap to; the target
    passes through unmodified.
    """
    if scenario.target <= 0 or current_price <= 0:
        return scenario

    nearest = _nearest_on_side(structural, current_price, above=(scenario.direction == "bullish"))
    if nearest is None:
        return scenario

    limit = cfg.target_cap_multiplier * abs(nearest.price - current_price)
    offset = scenario.target - current_price
    if abs(offset) <= limit:
        return scenario

    capped = current_price + math.copysign(limit, offset)
    logger.info(
        "Capped %s target %s -> %s (anchor %s @ %s)",
        scenario.direction, scenario.target, capped, nearest.kind, nearest.price,
    )
    return scenario.model_copy(update={"target": capped})


def _downgrade_confidence(conf: Confidence, scenarios: ScenarioPair) -> Confidence:
    missing = [s.direction for s in (scenarios.bullish, scenarios.bearish) if s.invalidation <= 0]
    if not missing:
        return conf
    reasons = list(conf.reasons)
    for d in missing:
        reasons.append(f"{d.capitalize()} scenario has no invalidation level.")
    return Confidence(overall="low", reasons=reasons)


# ----------------------------
# Entry point
# ----------------------------
def failed_analysis(error: str) -> Analysis:
    return Analysis(
        success=False,
        error=error,
        confidence=Confidence(overall="low", reasons=[error]),
    )


def validate_analysis(raw: Any, config: Optional[EngineConfig] = None) -> Analysis:
    """
    Sanitize raw model output into an Analysis.

    Never raises. Only input that is not an object at all yields success=False;
    numeric problems (tautological levels, runaway targets, missing
    invalidations) are corrected in place.
    """
    cfg = config or DEFAULT_ENGINE

    data = raw
    if isinstance(raw, (bytes, bytearray)):
        data = raw.decode("utf-8", errors="replace")
    if isinstance(data, str):
        try:
            data = json.loads(_strip_code_fences(data))
        except (ValueError, RecursionError) as e:
            logger.info("Analysis JSON parse failed: %s", type(e).__name__)
            return failed_analysis(f"Analysis JSON parse failed: {type(e).__name__}")
    if not isinstance(data, dict):
        return failed_analysis("Analysis response is not an object")

    current_price = _price(_get(data, "currentPrice", "current_price"))

    structural = _parse_levels(data, current_price, cfg)
    levels = _filter_levels(structural, current_price, cfg)

    parsed = {d: _gate_scenario(s, current_price, cfg) for d, s in _parse_scenarios(data).items()}
    scenarios = ScenarioPair(
        bullish=cap_target(parsed["bullish"], structural, current_price, cfg),
        bearish=cap_target(parsed["bearish"], structural, current_price, cfg),
    )

    pivot = _parse_pivot(data.get("pivot"))
    pivot = pivot.model_copy(update={"price": _gate(pivot.price, "pivot", current_price, cfg)})

    regime = _parse_regime(data.get("regime"))
    confidence = _downgrade_confidence(_parse_confidence(data), scenarios)

    return Analysis(
        regime=regime,
        levels=levels,
        pivot=pivot,
        scenarios=scenarios,
        confidence=confidence,
        summary=_text(_get(data, "summary", "story", "conversationalResponse")),
        current_price=current_price,
    )
