# portal/waste_api.py
"""
Waste form JSON API.

  GET  /api/waste-form/items                      master item list
  POST /api/waste-form/process                    image → ScanResult (sync)
  POST /api/waste-form/process-with-progress      image → {"sessionId"}
  GET  /api/waste-form/progress/<sid>             {"progress", "message"} | 404
  GET  /api/waste-form/result/<sid>               ScanResult once | 404
  POST /api/waste-form/submit                     reviewed ScanResult → validation

Uploads are saved under the upload dir and removed once the pipeline is done
with them, on every exit path.
"""
from __future__ import annotations

import logging
import threading
import uuid
from pathlib import Path

from flask import Blueprint, jsonify, request
from werkzeug.utils import secure_filename

from portal.contracts import validate_waste_form
from portal.services import services
from wasteform.errors import (
    ImageInputError,
    OCREngineError,
    PipelineError,
    VocabularyError,
    WasteFormError,
)
from wasteform.pipeline import WasteFormPipeline
from wasteform.sessions import SessionStore

log = logging.getLogger(__name__)

bp = Blueprint("waste_api", __name__, url_prefix="/api/waste-form")

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "bmp", "tif", "tiff", "webp"}


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def _save_upload() -> Path:
    if "image" not in request.files:
        raise ImageInputError("No file field 'image' provided")
    file = request.files["image"]
    if not file.filename:
        raise ImageInputError("Empty filename")
    if not allowed_file(file.filename):
        raise ImageInputError("Unsupported file type. Allowed: " + ", ".join(sorted(ALLOWED_EXTENSIONS)))

    upload_dir = services().upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)
    base_name = secure_filename(file.filename) or "upload"
    save_path = upload_dir / f"{uuid.uuid4().hex[:8]}_{base_name}"
    file.save(str(save_path))
    return save_path


def remove_upload(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        log.warning("Could not delete upload %s", path, exc_info=True)


def _error_response(e: WasteFormError):
    if isinstance(e, ImageInputError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, PipelineError):
        return jsonify({"error": str(e)}), 422
    if isinstance(e, OCREngineError):
        return jsonify({"error": f"OCR engine failed: {e}"}), 502
    if isinstance(e, VocabularyError):
        return jsonify({"error": f"Item list unavailable: {e}"}), 500
    return jsonify({"error": str(e)}), 500


def run_session(pipeline: WasteFormPipeline, store: SessionStore, session_id: str, image_path: Path) -> None:
    """Background worker: run the pipeline, remove the upload, then publish the outcome."""
    result = None
    error = None
    try:
        result = pipeline.process_path(
            image_path,
            progress=lambda value, message: store.update_progress(session_id, value, message),
        )
    except WasteFormError as e:
        log.warning("Session %s failed: %s", session_id, e)
        error = str(e)
    except Exception as e:  # worker thread: the poller must always see an outcome
        log.exception("Session %s crashed", session_id)
        error = f"Unexpected error: {e}"
    finally:
        remove_upload(image_path)

    if error is not None:
        store.fail(session_id, error)
    else:
        store.complete(session_id, result)


# ------------------------
# Routes
# ------------------------

@bp.get("/items")
def items():
    try:
        matcher = services().pipeline().matcher
    except WasteFormError as e:
        return _error_response(e)
    return jsonify(matcher.export_for_frontend())


@bp.post("/process")
def process():
    try:
        pipeline = services().pipeline()
        image_path = _save_upload()
    except WasteFormError as e:
        return _error_response(e)

    try:
        result = pipeline.process_path(image_path)
    except WasteFormError as e:
        log.warning("Scan failed: %s", e)
        return _error_response(e)
    finally:
        remove_upload(image_path)
    return jsonify(result)


@bp.post("/process-with-progress")
def process_with_progress():
    svc = services()
    try:
        pipeline = svc.pipeline()
        image_path = _save_upload()
    except WasteFormError as e:
        return _error_response(e)

    session_id = svc.store.create()
    svc.store.update_progress(session_id, 0.05, "Image received")
    t = threading.Thread(
        target=run_session,
        args=(pipeline, svc.store, session_id, image_path),
        daemon=True,
    )
    t.start()
    return jsonify({"sessionId": session_id})


@bp.get("/progress/<session_id>")
def progress(session_id: str):
    data = services().store.get_progress(session_id)
    if data is None:
        return jsonify({"error": "Session not found"}), 404
    return jsonify(data)


@bp.get("/result/<session_id>")
def result(session_id: str):
    store = services().store
    data = store.pop_result(session_id)
    if data is not None:
        return jsonify(data)

    error = store.get_error(session_id)
    if error is not None:
        store.discard(session_id)
        return jsonify({"error": error}), 404
    return jsonify({"error": "Result not ready or session not found"}), 404


@bp.post("/submit")
def submit():
    payload = request.get_json(silent=True)
    if payload is None:
        return jsonify({"success": False, "errors": ["Request body must be JSON"], "warnings": []}), 400

    validation = validate_waste_form(payload, max_value=services().settings.max_value)
    if not validation.is_valid:
        log.info("Submit rejected: %d errors", len(validation.errors))
        return jsonify({
            "success": False,
            "errors": validation.errors,
            "warnings": validation.warnings,
        }), 400

    return jsonify({
        "success": True,
        "message": "Waste form validated successfully",
        "warnings": validation.warnings,
    })
