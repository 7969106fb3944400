from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, Optional, Tuple, get_args

from PIL import Image, ImageDraw, ImageFont

from ..core.config import DEFAULT_ENGINE, EngineConfig
from .coords import ChartArea, CoordinateMapper, chart_area, price_range
from .preprocess import decode_image, encode_png
from .schema import Analysis, AnnotationMark, AnnotationPlan, MarkType

logger = logging.getLogger(__name__)

RGBA = Tuple[int, int, int, int]

# Zones keep low alpha so candles stay visible through them.
COLORS: Dict[str, Dict[str, RGBA]] = {
    "dark": {
        "support": (34, 197, 94, 204),
        "resistance": (239, 68, 68, 204),
        "pivot": (59, 130, 246, 230),
        "current_price": (250, 204, 21, 230),
        "bull_path": (34, 197, 94, 230),
        "bear_path": (239, 68, 68, 230),
        "target": (250, 204, 21, 230),
        "invalidation": (249, 115, 22, 230),
        "range_box": (59, 130, 246, 255),
        "range_border": (59, 130, 246, 128),
        "fakeout": (251, 191, 36, 204),
        "label": (255, 255, 255, 242),
        "label_bg": (0, 0, 0, 179),
    },
    "light": {
        "support": (22, 163, 74, 230),
        "resistance": (220, 38, 38, 230),
        "pivot": (37, 99, 235, 230),
        "current_price": (202, 138, 4, 230),
        "bull_path": (22, 163, 74, 230),
        "bear_path": (220, 38, 38, 230),
        "target": (202, 138, 4, 230),
        "invalidation": (234, 88, 12, 230),
        "range_box": (59, 130, 246, 255),
        "range_border": (59, 130, 246, 102),
        "fakeout": (245, 158, 11, 204),
        "label": (0, 0, 0, 230),
        "label_bg": (255, 255, 255, 217),
    },
}

DASH = (6, 4)
LINE_WIDTH = 2
MARKER_RADIUS = 6
LABEL_PAD = 4
ARROW_INSET = 36


class MarkSkipped(Exception):
    """A mark's coordinates cannot be placed on the image."""


@dataclass(frozen=True)
class _Ctx:
    mapper: CoordinateMapper
    area: ChartArea
    colors: Dict[str, RGBA]
    height: int
    arrow_x: float

    def y(self, price: Optional[float]) -> float:
        if price is None:
            raise MarkSkipped("no price")
        y = self.mapper.to_y(price)
        if not math.isfinite(y) or y < -10 * self.height or y > 11 * self.height:
            raise MarkSkipped(f"y={y} out of bounds")
        return y


@lru_cache(maxsize=8)
def _font(size: int):
    return ImageFont.load_default(size=size)


def _with_alpha(c: RGBA, alpha: float) -> RGBA:
    return (c[0], c[1], c[2], max(0, min(255, int(round(255 * alpha)))))


# ----------------------------
# Primitives
# ----------------------------
def _dashed_line(draw: ImageDraw.ImageDraw, p0, p1, fill: RGBA, width: int = LINE_WIDTH, dash=DASH) -> None:
    (x0, y0), (x1, y1) = p0, p1
    length = math.hypot(x1 - x0, y1 - y0)
    if length == 0:
        return
    ux, uy = (x1 - x0) / length, (y1 - y0) / length
    on, off = dash
    pos = 0.0
    while pos < length:
        end = min(pos + on, length)
        draw.line([(x0 + ux * pos, y0 + uy * pos), (x0 + ux * end, y0 + uy * end)], fill=fill, width=width)
        pos += on + off


def _line(draw, p0, p1, fill: RGBA, dashed: bool, width: int = LINE_WIDTH) -> None:
    if dashed:
        _dashed_line(draw, p0, p1, fill, width)
    else:
        draw.line([p0, p1], fill=fill, width=width)


def _triangle(draw, x: float, y: float, up: bool, fill: RGBA) -> None:
    if up:
        pts = [(x, y - 8), (x - 6, y + 4), (x + 6, y + 4)]
    else:
        pts = [(x, y + 8), (x - 6, y - 4), (x + 6, y - 4)]
    draw.polygon(pts, fill=fill)


def _text_box(draw, x: float, cy: float, text: str, font, fg: RGBA, bg: RGBA) -> float:
    """Text with a background box; left edge at x, vertically centered on cy."""
    w = draw.textlength(text, font=font)
    l, t, r, b = draw.textbbox((0, 0), text, font=font)
    h = b - t
    draw.rectangle([x - LABEL_PAD, cy - h / 2 - LABEL_PAD, x + w + LABEL_PAD, cy + h / 2 + LABEL_PAD], fill=bg)
    draw.text((x, cy - h / 2 - t), text, font=font, fill=fg)
    return w


def _role_color(ctx: _Ctx, role: str) -> RGBA:
    return ctx.colors.get(role, ctx.colors["label"])


def _label_column(draw, plan: AnnotationPlan) -> float:
    """Width taken by right-edge labels; arrows are drawn left of it."""
    widths = [draw.textlength(m.text, font=_font(11)) for m in plan.marks if m.type == "label" and m.text]
    return max(widths, default=0.0)


# ----------------------------
# Per-type drawers
# ----------------------------
def _draw_zone(draw, mark: AnnotationMark, ctx: _Ctx) -> None:
    y1 = ctx.y(mark.price_high if mark.price_high is not None else mark.price)
    y2 = ctx.y(mark.price_low if mark.price_low is not None else mark.price)
    top, bottom = min(y1, y2), max(y1, y2)
    color = _role_color(ctx, mark.role)
    opacity = mark.opacity if mark.opacity is not None else 0.18

    draw.rectangle([ctx.area.left, top, ctx.area.right, bottom], fill=_with_alpha(color, opacity))
    cy = (y1 + y2) / 2
    draw.line([(ctx.area.left, cy), (ctx.area.right, cy)], fill=color, width=LINE_WIDTH)


def _draw_line(draw, mark: AnnotationMark, ctx: _Ctx) -> None:
    y = ctx.y(mark.price)
    _line(draw, (ctx.area.left, y), (ctx.area.right, y), _role_color(ctx, mark.role), mark.style == "dashed")


def _draw_label(draw, mark: AnnotationMark, ctx: _Ctx) -> None:
    y = ctx.y(mark.price)
    text = mark.text or ""
    if not text:
        return
    font = _font(11)
    w = draw.textlength(text, font=font)
    fg = ctx.colors[mark.role] if mark.role in ("support", "resistance") else ctx.colors["label"]
    _text_box(draw, ctx.area.right - w - 20, y, text, font, fg, ctx.colors["label_bg"])


def _draw_range_box(draw, mark: AnnotationMark, ctx: _Ctx) -> None:
    y1 = ctx.y(mark.price_high)
    y2 = ctx.y(mark.price_low)
    top, bottom = min(y1, y2), max(y1, y2)
    left, right = ctx.area.left, ctx.area.right
    opacity = mark.opacity if mark.opacity is not None else 0.08

    draw.rectangle([left, top, right, bottom], fill=_with_alpha(ctx.colors["range_box"], opacity))
    border = ctx.colors["range_border"]
    for p0, p1 in (((left, top), (right, top)), ((right, top), (right, bottom)),
                   ((right, bottom), (left, bottom)), ((left, bottom), (left, top))):
        _dashed_line(draw, p0, p1, border, width=1, dash=(4, 4))
    draw.text((left + 8, top + 4), mark.text or "RANGE", font=_font(10), fill=border)


def _draw_marker(draw, mark: AnnotationMark, ctx: _Ctx) -> None:
    y = ctx.y(mark.price)
    x = ctx.area.right - 12 if mark.role == "current_price" else ctx.area.right - 60
    color = _role_color(ctx, mark.role)
    r = MARKER_RADIUS
    draw.ellipse([x - r, y - r, x + r, y + r], fill=color)
    if mark.text:
        _text_box(draw, x + r + 8, y, mark.text, _font(10), color, ctx.colors["label_bg"])


def _draw_arrow(draw, mark: AnnotationMark, ctx: _Ctx) -> None:
    up = mark.role != "bear_path"
    y_from = ctx.y(mark.price_low if up else mark.price_high)
    y_to = ctx.y(mark.price_high if up else mark.price_low)
    x = ctx.arrow_x
    color = _role_color(ctx, mark.role)

    _line(draw, (x, y_from), (x, y_to), color, mark.style == "dashed")
    _triangle(draw, x, y_to, up, color)
    if mark.text:
        font = _font(10)
        w = draw.textlength(mark.text, font=font)
        _text_box(draw, x - 14 - w, y_to, mark.text, font, color, ctx.colors["label_bg"])


def _draw_fakeout(draw, mark: AnnotationMark, ctx: _Ctx) -> None:
    y = ctx.y(mark.price)
    above = mark.role != "support"
    x = ctx.area.left + 40
    color = ctx.colors["fakeout"]
    _triangle(draw, x, y, above, color)
    text = mark.text or ("FAKEOUT ABOVE" if above else "FAKEOUT BELOW")
    _text_box(draw, x + 12, y, text, _font(9), color, ctx.colors["label_bg"])


_DRAWERS: Dict[str, Callable[[ImageDraw.ImageDraw, AnnotationMark, _Ctx], None]] = {
    "zone": _draw_zone,
    "line": _draw_line,
    "label": _draw_label,
    "range_box": _draw_range_box,
    "pivot": _draw_marker,
    "circle": _draw_marker,
    "arrow": _draw_arrow,
    "fakeout": _draw_fakeout,
}

_missing = set(get_args(MarkType)) - set(_DRAWERS)
if _missing:
    raise RuntimeError(f"No drawer registered for mark types: {sorted(_missing)}")


# ----------------------------
# Story caption
# ----------------------------
def _draw_story(draw, story: str, ctx: _Ctx, cfg: EngineConfig) -> None:
    if not story or len(story) >= cfg.story_max_chars:
        return
    n = cfg.story_truncate_chars
    text = story[:n] + ("..." if len(story) > n else "")
    font = _font(13)
    w = min(draw.textlength(text, font=font), ctx.area.width - 40)
    x, y = ctx.area.left + 10, ctx.area.top + 10
    draw.rectangle([x, y, x + w + 16, y + 22], fill=ctx.colors["label_bg"])
    l, t, r, b = draw.textbbox((0, 0), text, font=font)
    draw.text((x + 8, y + 11 - (b - t) / 2 - t), text, font=font, fill=ctx.colors["label"])


# ----------------------------
# Entry point
# ----------------------------
def render_on_image(
    img: Image.Image,
    plan: AnnotationPlan,
    analysis: Analysis,
    config: Optional[EngineConfig] = None,
) -> Image.Image:
    cfg = config or DEFAULT_ENGINE
    base = img.convert("RGBA")
    width, height = base.size

    area = chart_area(width, height, cfg.margins)
    ctx = _Ctx(
        mapper=CoordinateMapper(area, price_range(analysis, cfg.range_padding)),
        area=area,
        colors=COLORS.get(plan.theme, COLORS["dark"]),
        height=height,
        arrow_x=area.right - ARROW_INSET - _label_column(ImageDraw.Draw(base), plan),
    )

    for i, mark in enumerate(plan.marks):
        layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
        try:
            _DRAWERS[mark.type](ImageDraw.Draw(layer), mark, ctx)
        except MarkSkipped as e:
            logger.debug("Skipping mark %d (%s/%s): %s", i, mark.type, mark.role, e)
            continue
        base = Image.alpha_composite(base, layer)

    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    _draw_story(ImageDraw.Draw(layer), plan.story, ctx, cfg)
    return Image.alpha_composite(base, layer)


def render_annotations(
    base_image: bytes,
    plan: AnnotationPlan,
    analysis: Analysis,
    config: Optional[EngineConfig] = None,
) -> bytes:
    """
    Draw the plan over the base chart and return PNG bytes.

    Raises ImageDecodeError when the base image cannot be decoded; every other
    problem is local to a single mark, which is skipped.
    """
    img = decode_image(base_image)
    return encode_png(render_on_image(img, plan, analysis, config))
