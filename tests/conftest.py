import io

import pytest
from PIL import Image


def make_png(width: int = 800, height: int = 500, color=(18, 18, 24)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def chart_png() -> bytes:
    return make_png()


@pytest.fixture
def raw_analysis() -> dict:
    """Model-shaped payload with three drawable levels and both scenarios."""
    return {
        "regime": {"trend": "range", "strength": "moderate", "description": "Chopping between 90k and 102k after the pump."},
        "levels": [
            {"price": 90000, "type": "support", "label": "Bounced 3x", "touchCount": 3, "recency": "recent", "strength": "strong"},
            {"price": 102000, "type": "resistance", "label": "Pump high", "touchCount": 2, "strength": "moderate"},
            {"price": 85000, "type": "support", "label": "Breakout base", "touchCount": 1, "recency": "older", "strength": "weak"},
        ],
        "pivot": {"price": 95000, "label": "Mid-range", "significance": "Bulls above, bears below"},
        "scenarios": {
            "bullish": {
                "trigger": "Daily close above 102k",
                "target": 110000,
                "targetReason": "Measured move",
                "invalidation": 94000,
                "invalidationReason": "Back below pivot",
            },
            "bearish": {
                "trigger": "Loses 90k",
                "target": 70000,
                "targetReason": "Gap fill",
                "invalidation": 97000,
                "invalidationReason": "Reclaims pivot",
            },
        },
        "confidence": {"overall": "medium", "reasons": ["Clear range"]},
        "summary": "Range between 90k support and 102k resistance.",
        "currentPrice": 96200,
    }
