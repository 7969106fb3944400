from typing import Any, Optional

from fastapi import APIRouter, UploadFile, File, Form, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from pydantic import BaseModel

from ..core.config import settings
from ..vision.pipeline import annotate_chart, RENDER_FAILED
from ..vision.planner import plan_annotations
from ..vision.preprocess import to_data_url
from ..vision.validate import validate_analysis

router = APIRouter(prefix="/v1", tags=["annotate"])


class PlanRequest(BaseModel):
    analysis: Any = None
    theme: Optional[str] = None


async def _read_upload(f: UploadFile, name: str, required: bool = True) -> Optional[bytes]:
    raw = await f.read()
    if not raw:
        if not required:
            return None
        raise HTTPException(400, f"Empty image upload ({name})")
    if len(raw) > settings.max_upload_bytes:
        raise HTTPException(413, f"Image too large ({name})")
    return raw


async def _run(image: UploadFile, ai_image: Optional[UploadFile], analysis: str, theme: Optional[str]):
    raw = await _read_upload(image, "image")
    ai_raw = None
    if ai_image is not None:
        ai_raw = await _read_upload(ai_image, "ai_image", required=False)

    return await run_in_threadpool(
        annotate_chart,
        raw,
        analysis,
        theme or settings.default_theme,
        ai_raw,
        settings.engine_config(),
    )


@router.post("/plan")
def plan(req: PlanRequest):
    cfg = settings.engine_config()
    analysis = validate_analysis(req.analysis, cfg)
    p = plan_annotations(analysis, req.theme or settings.default_theme, cfg)
    return {
        "analysis": analysis.model_dump(by_alias=True),
        "plan": p.model_dump(by_alias=True, exclude_none=True),
    }


@router.post("/annotate")
async def annotate(
    image: UploadFile = File(...),
    ai_image: UploadFile | None = File(None),
    analysis: str = Form(...),
    theme: str | None = Form(None),
):
    res = await _run(image, ai_image, analysis, theme)
    return {
        "rendered": res.rendered,
        "source": res.source,
        "error": res.error,
        "analysis": res.analysis.model_dump(by_alias=True),
        "plan": res.plan.model_dump(by_alias=True, exclude_none=True),
        # "base" fallback returns whatever the client uploaded, not necessarily PNG
        "image": to_data_url(res.image, res.media_type) if res.source != "base" else None,
    }


@router.post("/annotate.png")
async def annotate_png(
    image: UploadFile = File(...),
    ai_image: UploadFile | None = File(None),
    analysis: str = Form(...),
    theme: str | None = Form(None),
):
    res = await _run(image, ai_image, analysis, theme)
    if not res.rendered:
        raise HTTPException(422, RENDER_FAILED)
    return Response(content=res.image, media_type=res.media_type)
