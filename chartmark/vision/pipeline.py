from __future__ import annotations

import logging
from typing import Any, Optional

from ..core.config import DEFAULT_ENGINE, EngineConfig
from .planner import plan_annotations
from .preprocess import ImageDecodeError, image_mime
from .render import render_annotations
from .schema import AnnotationResult
from .validate import validate_analysis

logger = logging.getLogger(__name__)

RENDER_FAILED = "could not render annotations"


def annotate_chart(
    base_image: bytes,
    raw_analysis: Any,
    theme: Optional[str] = "dark",
    ai_image: Optional[bytes] = None,
    config: Optional[EngineConfig] = None,
) -> AnnotationResult:
    """
    raw analysis -> validated analysis -> plan -> image.

    The plan is always produced so the UI can show it as a structured summary.
    A previously AI-drawn image, when supplied and decodable, is returned
    untouched. If the base chart cannot be decoded the original bytes come
    back unannotated with an error message.
    """
    cfg = config or DEFAULT_ENGINE
    analysis = validate_analysis(raw_analysis, cfg)
    plan = plan_annotations(analysis, theme, cfg)

    if ai_image:
        try:
            mime = image_mime(ai_image)
        except ImageDecodeError:
            logger.info("AI-drawn image unusable, rendering overlay instead")
        else:
            return AnnotationResult(analysis=analysis, plan=plan, image=ai_image, source="ai", media_type=mime)

    try:
        png = render_annotations(base_image, plan, analysis, cfg)
    except ImageDecodeError as e:
        logger.info("Render failed: %s", e)
        return AnnotationResult(
            analysis=analysis,
            plan=plan,
            image=base_image,
            source="base",
            media_type="application/octet-stream",
            rendered=False,
            error=RENDER_FAILED,
        )

    return AnnotationResult(analysis=analysis, plan=plan, image=png, source="rendered")
