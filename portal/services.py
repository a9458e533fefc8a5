# portal/services.py
"""
Per-app service container, stored on app.extensions["wasteform"].

Holds the settings, the session store (explicit, passed by reference rather
than a module global) and the pipeline, built once on first use so a broken
vocabulary file fails the request that needed it.
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from flask import current_app

from wasteform.config import Settings
from wasteform.pipeline import WasteFormPipeline
from wasteform.sessions import SessionStore

log = logging.getLogger(__name__)

EXTENSION_KEY = "wasteform"


class WasteFormServices:
    def __init__(
        self,
        settings: Settings,
        store: SessionStore,
        pipeline: Optional[WasteFormPipeline] = None,
    ):
        self.settings = settings
        self.store = store
        self._pipeline = pipeline
        self._lock = threading.Lock()

    @property
    def upload_dir(self) -> Path:
        return Path(self.settings.upload_dir)

    def pipeline(self) -> WasteFormPipeline:
        with self._lock:
            if self._pipeline is None:
                self._pipeline = WasteFormPipeline.from_settings(self.settings)
                log.info("Pipeline ready (engine=%s, pass3=%s, pass2=%s)",
                         self.settings.engine, self.settings.enable_pass3,
                         self.settings.pass2_mode)
            return self._pipeline


def services() -> WasteFormServices:
    return current_app.extensions[EXTENSION_KEY]
