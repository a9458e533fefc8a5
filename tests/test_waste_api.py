# tests/test_waste_api.py
"""
Waste form JSON API (portal.app + portal.waste_api + portal.ocr_health).

The pipeline runs for real against a scripted OCR engine, so no tesseract
binary is needed.

Covers:
  Health:
  - GET /api/health -> status ok + message
  - GET /api/ocr/health -> engine + tesseract check

  Items:
  - GET /api/waste-form/items -> both categories
  - broken item list -> 500

  POST /api/waste-form/process:
  - success -> ScanResult with reconciled rows
  - missing file / empty name / unsupported type / unreadable image -> 400
  - image over the pixel limit -> 400
  - Pass 1 engine failure -> 502
  - no tables -> 422
  - oversized upload -> 413
  - uploaded file removed on success and on failure

  Progress flow:
  - process-with-progress -> sessionId
  - progress polled to 1.0, result fetched once, then 404
  - failed session -> error surfaced once via /result
  - unknown session -> 404

  POST /api/waste-form/submit:
  - valid -> 200 success
  - invalid -> 400 with errors
  - non-JSON -> 400
"""

import io
import sys
import time
from pathlib import Path

import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import FakeEngine, five_col_fragments, frag
from portal.app import create_app
from wasteform.config import Settings
from wasteform.pipeline import WasteFormPipeline
from wasteform.sessions import SessionStore


def _png_bytes(size=(1000, 600)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, "white").save(buf, format="PNG")
    return buf.getvalue()


def _upload(data: bytes = None, filename: str = "form.png"):
    return {"image": (io.BytesIO(data if data is not None else _png_bytes()), filename)}


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def store():
    return SessionStore(ttl_seconds=900)


@pytest.fixture
def make_client(upload_dir, store, matcher):
    def _make(engine=None, **settings_kw):
        settings = Settings(upload_dir=upload_dir, **settings_kw)
        pipeline = None
        if engine is not None:
            pipeline = WasteFormPipeline(engine=engine, matcher=matcher)
        app = create_app(settings=settings, pipeline=pipeline, store=store, start_sweeper=False)
        app.config["TESTING"] = True
        return app.test_client()
    return _make


@pytest.fixture
def client(make_client):
    return make_client(FakeEngine(five_col_fragments()))


def _uploads_left(upload_dir):
    return list(upload_dir.iterdir()) if upload_dir.exists() else []


def _wait_done(client, session_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/api/waste-form/progress/{session_id}").get_json()
        if data["progress"] >= 1.0:
            return data
        time.sleep(0.02)
    pytest.fail("session never finished")


# ==================================================================
# Health + items
# ==================================================================

class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "ok"
        assert data["message"] == "Waste Form API is running"
        assert data["time"].endswith("Z")

    def test_ocr_health(self, client, monkeypatch):
        import portal.ocr_health as health_mod
        monkeypatch.setattr(health_mod, "check_tesseract", lambda cmd=None: {"found_on_disk": False, "version": None})
        data = client.get("/api/ocr/health").get_json()
        assert data["engine"] == "tesseract"
        assert data["tesseract"]["found_on_disk"] is False


class TestItems:
    def test_items(self, client):
        resp = client.get("/api/waste-form/items")
        assert resp.status_code == 200
        data = resp.get_json()
        assert "Reg Bun" in data["rawWaste"]
        assert "Bacon" in data["completedWaste"]

    def test_broken_item_list(self, make_client, tmp_path, monkeypatch):
        import wasteform.pipeline as pipeline_mod
        monkeypatch.setattr(pipeline_mod, "make_engine", lambda settings: FakeEngine([]))
        c = make_client(items_path=tmp_path / "missing.json")
        resp = c.get("/api/waste-form/items")
        assert resp.status_code == 500
        assert "Item list unavailable" in resp.get_json()["error"]


# ==================================================================
# Synchronous processing
# ==================================================================

class TestProcess:
    def test_success(self, client, upload_dir):
        resp = client.post("/api/waste-form/process", data=_upload(), content_type="multipart/form-data")
        assert resp.status_code == 200
        result = resp.get_json()

        assert result["itemsDetected"] == 2
        (table,) = result["tables"]
        assert table["tableName"] == "Table_1_RawWaste_5Column"
        assert table["tableType"] == "RAW_WASTE_5COL"
        reg_bun, frappe = table["rows"]
        assert reg_bun["item"] == "Reg Bun"
        assert reg_bun["open"] == {"value": "45", "isEmpty": False, "needsReview": False, "issue": ""}
        assert reg_bun["size"]["value"] == "Each"
        assert frappe["item"] == "Coffee Frappe"
        assert frappe["close"]["value"] == "12"
        assert result["totalFields"] == 6
        assert result["emptyFields"] == 4

        assert _uploads_left(upload_dir) == []

    def test_missing_file(self, client):
        resp = client.post("/api/waste-form/process", data={}, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "No file field 'image' provided"

    def test_empty_filename(self, client):
        resp = client.post("/api/waste-form/process", data=_upload(filename=""),
                           content_type="multipart/form-data")
        assert resp.status_code == 400

    def test_unsupported_type(self, client, upload_dir):
        resp = client.post("/api/waste-form/process", data=_upload(filename="form.gif"),
                           content_type="multipart/form-data")
        assert resp.status_code == 400
        assert "Unsupported file type" in resp.get_json()["error"]
        assert _uploads_left(upload_dir) == []

    def test_unreadable_image(self, client, upload_dir):
        resp = client.post("/api/waste-form/process", data=_upload(b"not an image"),
                           content_type="multipart/form-data")
        assert resp.status_code == 400
        assert "Unreadable image" in resp.get_json()["error"]
        assert _uploads_left(upload_dir) == []

    def test_decompression_bomb(self, client, upload_dir, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
        resp = client.post("/api/waste-form/process", data=_upload(), content_type="multipart/form-data")
        assert resp.status_code == 400
        assert "Unreadable image" in resp.get_json()["error"]
        assert _uploads_left(upload_dir) == []

    def test_engine_failure(self, make_client, upload_dir):
        c = make_client(FakeEngine([], fail_pass1=True))
        resp = c.post("/api/waste-form/process", data=_upload(), content_type="multipart/form-data")
        assert resp.status_code == 502
        assert resp.get_json()["error"] == "OCR engine failed: quota exceeded"
        assert _uploads_left(upload_dir) == []

    def test_no_tables(self, make_client):
        c = make_client(FakeEngine([frag("Waste", 100, 40), frag("Sheet", 200, 40)]))
        resp = c.post("/api/waste-form/process", data=_upload(), content_type="multipart/form-data")
        assert resp.status_code == 422
        assert resp.get_json()["error"] == "No tables found on the form"

    def test_too_large(self, make_client):
        c = make_client(FakeEngine(five_col_fragments()), max_upload_mb=1)
        resp = c.post("/api/waste-form/process", data=_upload(b"0" * (2 * 1024 * 1024)),
                      content_type="multipart/form-data")
        assert resp.status_code == 413
        assert "too large" in resp.get_json()["error"]


# ==================================================================
# Progress flow
# ==================================================================

class TestProgressFlow:
    def test_full_flow(self, client, upload_dir):
        resp = client.post("/api/waste-form/process-with-progress", data=_upload(),
                           content_type="multipart/form-data")
        assert resp.status_code == 200
        sid = resp.get_json()["sessionId"]

        done = _wait_done(client, sid)
        assert done["message"] == "Complete"

        first = client.get(f"/api/waste-form/result/{sid}")
        assert first.status_code == 200
        assert first.get_json()["itemsDetected"] == 2

        again = client.get(f"/api/waste-form/result/{sid}")
        assert again.status_code == 404
        assert client.get(f"/api/waste-form/progress/{sid}").status_code == 404
        assert _uploads_left(upload_dir) == []

    def test_failed_session(self, make_client, upload_dir):
        c = make_client(FakeEngine([], fail_pass1=True))
        sid = c.post("/api/waste-form/process-with-progress", data=_upload(),
                     content_type="multipart/form-data").get_json()["sessionId"]

        done = _wait_done(c, sid)
        assert done["message"].startswith("Error:")

        resp = c.get(f"/api/waste-form/result/{sid}")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "quota exceeded"
        assert c.get(f"/api/waste-form/result/{sid}").get_json()["error"] == \
            "Result not ready or session not found"
        assert _uploads_left(upload_dir) == []

    def test_rejected_upload_creates_no_session(self, client, store):
        resp = client.post("/api/waste-form/process-with-progress", data={},
                           content_type="multipart/form-data")
        assert resp.status_code == 400
        assert len(store) == 0

    def test_unknown_session(self, client):
        resp = client.get("/api/waste-form/progress/nope")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Session not found"}
        assert client.get("/api/waste-form/result/nope").status_code == 404


# ==================================================================
# Submit
# ==================================================================

def _field(v):
    return {"value": v, "isEmpty": v == "", "needsReview": False, "issue": ""}


def _reviewed(open_value="4"):
    field = _field
    return {"tables": [{
        "tableName": "Table_1_RawWaste_5Column",
        "tableType": "RAW_WASTE_5COL",
        "rows": [{"item": "Reg Bun", "open": field(open_value), "swing": field("1"),
                  "close": field("2"), "size": field("Each"), "count": field(""),
                  "comments": ""}],
    }]}


class TestSubmit:
    def test_valid(self, client):
        resp = client.post("/api/waste-form/submit", json=_reviewed())
        assert resp.status_code == 200
        assert resp.get_json() == {
            "success": True,
            "message": "Waste form validated successfully",
            "warnings": [],
        }

    def test_invalid(self, client):
        resp = client.post("/api/waste-form/submit", json=_reviewed("4S"))
        assert resp.status_code == 400
        data = resp.get_json()
        assert data["success"] is False
        assert data["errors"] == ["Invalid value '4S' for Reg Bun OPEN (must be numeric)"]

    def test_warning_passes(self, client):
        resp = client.post("/api/waste-form/submit", json=_reviewed("5000"))
        assert resp.status_code == 200
        assert resp.get_json()["warnings"] == ["Large value (5000) for Reg Bun OPEN - is this correct?"]

    def test_not_json(self, client):
        resp = client.post("/api/waste-form/submit", data="tables=1", content_type="text/plain")
        assert resp.status_code == 400
        assert resp.get_json()["errors"] == ["Request body must be JSON"]
