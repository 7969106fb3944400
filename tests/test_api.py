import io
import json

from fastapi.testclient import TestClient
from PIL import Image

from chartmark.core.config import Settings, settings
from chartmark.main import app


client = TestClient(app)


def test_health():
    assert client.get("/health").json() == {"ok": True}
    assert client.get("/").status_code == 200


def test_plan_endpoint(raw_analysis):
    r = client.post("/v1/plan", json={"analysis": raw_analysis, "theme": "light"})
    assert r.status_code == 200
    data = r.json()
    assert data["plan"]["theme"] == "light"
    assert data["plan"]["story"]
    assert data["analysis"]["currentPrice"] == 96200
    zone = data["plan"]["marks"][0]
    assert zone["type"] == "zone"
    assert "priceHigh" in zone and "priceLow" in zone
    assert "text" not in zone


def test_plan_endpoint_malformed_analysis():
    r = client.post("/v1/plan", json={"analysis": "nope"})
    assert r.status_code == 200
    data = r.json()
    assert data["analysis"]["success"] is False
    assert data["plan"]["marks"] == []


def test_annotate_returns_data_url(chart_png, raw_analysis):
    r = client.post(
        "/v1/annotate",
        files={"image": ("chart.png", chart_png, "image/png")},
        data={"analysis": json.dumps(raw_analysis), "theme": "dark"},
    )
    assert r.status_code == 200
    data = r.json()
    assert data["rendered"] is True
    assert data["source"] == "rendered"
    assert data["image"].startswith("data:image/png;base64,")
    assert len(data["plan"]["marks"]) <= 9


def test_annotate_bad_image_reports_failure(raw_analysis):
    r = client.post(
        "/v1/annotate",
        files={"image": ("chart.png", b"nope", "image/png")},
        data={"analysis": json.dumps(raw_analysis)},
    )
    assert r.status_code == 200
    data = r.json()
    assert data["rendered"] is False
    assert data["error"] == "could not render annotations"
    assert data["image"] is None


def test_annotate_png(chart_png, raw_analysis):
    r = client.post(
        "/v1/annotate.png",
        files={"image": ("chart.png", chart_png, "image/png")},
        data={"analysis": json.dumps(raw_analysis)},
    )
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert r.content[:8] == b"\x89PNG\r\n\x1a\n"


def test_annotate_png_bad_image_is_422(raw_analysis):
    r = client.post(
        "/v1/annotate.png",
        files={"image": ("chart.png", b"nope", "image/png")},
        data={"analysis": json.dumps(raw_analysis)},
    )
    assert r.status_code == 422


def test_empty_upload_is_400(raw_analysis):
    r = client.post(
        "/v1/annotate",
        files={"image": ("chart.png", b"", "image/png")},
        data={"analysis": json.dumps(raw_analysis)},
    )
    assert r.status_code == 400


def _jpeg() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (320, 200), (200, 10, 10)).save(buf, format="JPEG")
    return buf.getvalue()


def test_ai_jpeg_keeps_its_content_type(chart_png, raw_analysis):
    ai = _jpeg()
    files = {"image": ("chart.png", chart_png, "image/png"), "ai_image": ("ai.jpg", ai, "image/jpeg")}
    form = {"analysis": json.dumps(raw_analysis)}

    data = client.post("/v1/annotate", files=files, data=form).json()
    assert data["source"] == "ai"
    assert data["image"].startswith("data:image/jpeg;base64,")

    r = client.post("/v1/annotate.png", files=files, data=form)
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/jpeg"
    assert r.content == ai


def test_empty_ai_image_is_ignored(chart_png, raw_analysis):
    r = client.post(
        "/v1/annotate",
        files={"image": ("chart.png", chart_png, "image/png"), "ai_image": ("ai.png", b"", "image/png")},
        data={"analysis": json.dumps(raw_analysis)},
    )
    assert r.status_code == 200
    assert r.json()["source"] == "rendered"


def test_oversized_uploads_are_413(monkeypatch, chart_png, raw_analysis):
    monkeypatch.setattr(settings, "max_upload_bytes", len(chart_png))
    form = {"analysis": json.dumps(raw_analysis)}

    r = client.post("/v1/annotate", files={"image": ("chart.png", chart_png + b"\0", "image/png")}, data=form)
    assert r.status_code == 413

    big_ai = chart_png + b"\0"
    r = client.post(
        "/v1/annotate",
        files={"image": ("chart.png", chart_png, "image/png"), "ai_image": ("ai.png", big_ai, "image/png")},
        data=form,
    )
    assert r.status_code == 413


def test_settings_flow_into_engine_config():
    cfg = Settings(max_marks=4, target_cap_multiplier=1.5, level_min_distance=0.02, zone_band_pct=0.01).engine_config()
    assert cfg.max_marks == 4
    assert cfg.target_cap_multiplier == 1.5
    assert cfg.level_min_distance == 0.02
    assert cfg.zone_band_pct == 0.01
    # untouched knobs keep engine defaults
    assert cfg.max_levels == 3


def test_engine_settings_change_the_plan(monkeypatch, raw_analysis):
    monkeypatch.setattr(settings, "max_marks", 3)
    r = client.post("/v1/plan", json={"analysis": raw_analysis})
    assert len(r.json()["plan"]["marks"]) == 3
