"""
Waste Form OCR engines -- image in, positioned words out.

Every engine returns raw TextFragments (text exactly as recognised, box in the
pixel space of the image it was given). Text cleanup and misread correction
belong to the caller, since the passes treat them differently.

Engines:
  TesseractEngine   pytesseract.image_to_data (default, local)
  VisionEngine      Google Cloud Vision document_text_detection
                    (optional extra: pip install .[vision])

Any engine failure surfaces as OCREngineError.
"""

from __future__ import annotations

import io
import logging
import os
from typing import Any, Dict, List, Optional, Protocol

import pytesseract
from PIL import Image

from .config import Settings
from .errors import OCREngineError
from .ocr_types import TextFragment

log = logging.getLogger(__name__)

LOW_CONF_DROP = -1.0   # tesseract marks non-word boxes with conf -1


class OCREngine(Protocol):
    name: str

    def detect(self, image: Image.Image) -> List[TextFragment]:
        ...


# =============================
# Tesseract
# =============================

def configure_tesseract(cmd: Optional[str] = None) -> None:
    cmd = cmd or os.environ.get("TESSERACT_CMD")
    if cmd and os.path.isfile(cmd):
        pytesseract.pytesseract.tesseract_cmd = cmd


def check_tesseract(cmd: Optional[str] = None) -> dict:
    try:
        configure_tesseract(cmd)
        ver = pytesseract.get_tesseract_version()
        return {"found_on_disk": True, "version": str(ver)}
    except (pytesseract.TesseractNotFoundError, OSError) as e:
        return {"found_on_disk": False, "version": None, "error": str(e)}


def _make_fragment(i: int, data: Dict[str, List], conf_floor: float) -> Optional[TextFragment]:
    raw = (data["text"][i] or "").strip()
    if not raw:
        return None
    try:
        conf = float(data["conf"][i])
    except (TypeError, ValueError):
        conf = -1.0
    if conf <= conf_floor:
        return None

    try:
        x, y = int(data["left"][i]), int(data["top"][i])
        w, h = int(data["width"][i]), int(data["height"][i])
    except (TypeError, ValueError):
        return None

    w, h = max(w, 0), max(h, 0)
    # Skip zero / 1-pixel "ghost" words
    if w <= 1 or h <= 1:
        return None
    return TextFragment(raw, x, y, w, h)


class TesseractEngine:
    name = "tesseract"

    def __init__(
        self,
        lang: str = "eng",
        config: str = "--oem 3 --psm 11",
        cmd: Optional[str] = None,
        conf_floor: float = LOW_CONF_DROP,
    ):
        self.lang = lang
        self.config = config
        self.conf_floor = conf_floor
        configure_tesseract(cmd)

    def detect(self, image: Image.Image) -> List[TextFragment]:
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.lang,
                config=self.config,
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError, RuntimeError, OSError) as e:
            raise OCREngineError(f"Tesseract failed: {e}", engine=self.name) from e

        out: List[TextFragment] = []
        for i in range(len(data.get("text", []))):
            frag = _make_fragment(i, data, self.conf_floor)
            if frag is not None:
                out.append(frag)
        log.debug("[tesseract] %d fragments", len(out))
        return out


# =============================
# Google Cloud Vision
# =============================

def _vertex_box(vertices: Any) -> Optional[tuple]:
    xs = [int(getattr(v, "x", 0) or 0) for v in vertices]
    ys = [int(getattr(v, "y", 0) or 0) for v in vertices]
    if not xs or not ys:
        return None
    return min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys)


class VisionEngine:
    name = "vision"

    def __init__(self, client: Any = None):
        try:
            from google.cloud import vision
        except ImportError as e:
            raise OCREngineError(
                "google-cloud-vision is not installed (pip install .[vision])",
                engine=self.name,
            ) from e
        self._vision = vision
        try:
            self._client = client or vision.ImageAnnotatorClient()
        except Exception as e:  # credential / transport setup
            raise OCREngineError(f"Vision client init failed: {e}", engine=self.name) from e

    def detect(self, image: Image.Image) -> List[TextFragment]:
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        try:
            response = self._client.document_text_detection(
                image=self._vision.Image(content=buf.getvalue())
            )
        except Exception as e:  # transport / quota
            raise OCREngineError(f"Vision request failed: {e}", engine=self.name) from e
        if response.error.message:
            raise OCREngineError(f"Vision error: {response.error.message}", engine=self.name)

        out: List[TextFragment] = []
        for page in response.full_text_annotation.pages:
            for block in page.blocks:
                for paragraph in block.paragraphs:
                    for word in paragraph.words:
                        text = "".join(s.text for s in word.symbols).strip()
                        box = _vertex_box(word.bounding_box.vertices)
                        if not text or box is None:
                            continue
                        x, y, w, h = box
                        out.append(TextFragment(text, x, y, w, h))
        log.debug("[vision] %d fragments", len(out))
        return out


def make_engine(settings: Settings) -> OCREngine:
    if settings.engine == "vision":
        return VisionEngine()
    if settings.engine != "tesseract":
        log.warning("Unknown WASTEFORM_ENGINE %r, using tesseract", settings.engine)
    return TesseractEngine(
        lang=settings.tesseract_lang,
        config=settings.tesseract_config,
        cmd=settings.tesseract_cmd,
    )


__all__ = [
    "OCREngine",
    "configure_tesseract",
    "check_tesseract",
    "TesseractEngine",
    "VisionEngine",
    "make_engine",
]
