from __future__ import annotations
from datetime import datetime, timezone

from flask import Blueprint, jsonify

from wasteform.ocr_engine import check_tesseract
from portal.services import services

bp = Blueprint("ocr_health", __name__)


@bp.route("/api/health", methods=["GET"])
def health():
    return jsonify({
        "status": "ok",
        "message": "Waste Form API is running",
        "time": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
    })


@bp.route("/api/ocr/health", methods=["GET"])
def ocr_health():
    settings = services().settings
    return jsonify({
        "engine": settings.engine,
        "tesseract": check_tesseract(settings.tesseract_cmd),
    })
