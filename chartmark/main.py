import logging

from fastapi import FastAPI

from .api.annotate import router as annotate_router
from .core.config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="ChartMark API")
app.include_router(annotate_router)


@app.get("/")
def root():
    return {"status": "ChartMark API running"}


@app.get("/health")
def health():
    return {"ok": True}
