from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional

from ..core.config import DEFAULT_ENGINE, Margins
from .schema import Analysis


@dataclass(frozen=True)
class ChartArea:
    left: float
    right: float
    top: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top


@dataclass(frozen=True)
class PriceRange:
    min: float
    max: float


def _collect_prices(a: Analysis) -> List[float]:
    s = a.scenarios
    candidates = [a.current_price, a.pivot.price]
    candidates += [lv.price for lv in a.levels]
    candidates += [s.bullish.target, s.bullish.invalidation, s.bearish.target, s.bearish.invalidation]
    return [p for p in candidates if p > 0 and math.isfinite(p)]


def price_range(analysis: Analysis, padding: Optional[float] = None) -> PriceRange:
    """Visible price range: every referenced price, padded on both ends."""
    pad = DEFAULT_ENGINE.range_padding if padding is None else padding
    prices = _collect_prices(analysis)
    if not prices:
        return PriceRange(0.0, 100.0)
    lo, hi = min(prices), max(prices)
    span = (hi - lo) * pad
    return PriceRange(lo - span, hi + span)


def chart_area(width: int, height: int, margins: Optional[Margins] = None) -> ChartArea:
    m = margins or DEFAULT_ENGINE.margins
    return ChartArea(
        left=width * m.left,
        right=width * m.right,
        top=height * m.top,
        bottom=height * m.bottom,
    )


class CoordinateMapper:
    """price -> vertical pixel inside the plotting area (pixel Y grows downward)."""

    def __init__(self, area: ChartArea, prices: PriceRange):
        self.area = area
        lo, hi = prices.min, prices.max
        if hi == lo:
            lo, hi = lo - 1.0, hi + 1.0
        self.prices = PriceRange(lo, hi)

    def to_y(self, price: float) -> float:
        lo, hi = self.prices.min, self.prices.max
        return self.area.bottom - ((price - lo) / (hi - lo)) * self.area.height
