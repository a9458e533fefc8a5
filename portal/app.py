# portal/app.py
"""
Waste Form OCR web app.

  flask --app portal.app run          (factory discovered automatically)
  python -m portal.app
"""
from __future__ import annotations

import logging
from typing import Optional

from flask import Flask, jsonify
from werkzeug.exceptions import RequestEntityTooLarge

from portal import ocr_health, waste_api
from portal.services import EXTENSION_KEY, WasteFormServices
from wasteform.config import Settings
from wasteform.ocr_engine import configure_tesseract
from wasteform.pipeline import WasteFormPipeline
from wasteform.sessions import SessionStore

log = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 60.0


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[WasteFormPipeline] = None,
    store: Optional[SessionStore] = None,
    start_sweeper: bool = True,
) -> Flask:
    settings = settings or Settings.from_env()

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_mb * 1024 * 1024

    if settings.engine == "tesseract":
        configure_tesseract(settings.tesseract_cmd)

    store = store or SessionStore(ttl_seconds=settings.session_ttl)
    if start_sweeper:
        store.start_sweeper(SWEEP_INTERVAL_SECONDS)
    app.extensions[EXTENSION_KEY] = WasteFormServices(settings, store, pipeline)

    app.register_blueprint(ocr_health.bp)
    app.register_blueprint(waste_api.bp)

    @app.errorhandler(RequestEntityTooLarge)
    def _too_large(_e):
        return jsonify({"error": "File too large. Try a smaller image or raise WASTEFORM_MAX_UPLOAD_MB."}), 413

    log.info("[App] Waste Form API ready (engine=%s, upload_dir=%s)", settings.engine, settings.upload_dir)
    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    create_app().run(host="0.0.0.0", port=5000, debug=False)
