"""
Waste Form pipeline facade.

  image ─► Pass 1 OCR ─► cleanup ─► Table Segmenter ─► Row Reconciler
        ─► Recovery passes (2, optional 3) ─► Result Assembler ─► ScanResult

Single synchronous run per image. Pass 1 engine failure and "no tables" are
fatal for the request; everything after Pass 1 degrades gracefully.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from PIL import Image

from .config import DEFAULT_LAYOUT, PASS1, PASS2, PASS3, FormLayout, PassThresholds, Settings
from .errors import PipelineError
from .image_transforms import load_image
from .item_matcher import ItemMatcher, clean_ocr_text, load_matcher
from .ocr_engine import OCREngine, make_engine
from .ocr_types import TextFragment
from .recovery import RecoveryOrchestrator
from .result_assembler import assemble_result
from .row_reconciler import reconcile_page
from .table_segmenter import segment_tables

log = logging.getLogger(__name__)

ProgressFn = Callable[[float, str], None]


def _noop_progress(_value: float, _message: str) -> None:
    return None


def clean_fragments(fragments: Sequence[TextFragment]) -> List[TextFragment]:
    out: List[TextFragment] = []
    for f in fragments:
        text = clean_ocr_text(f.text)
        if text:
            out.append(f if text == f.text else f.with_text(text))
    return out


class WasteFormPipeline:
    def __init__(
        self,
        engine: OCREngine,
        matcher: ItemMatcher,
        layout: FormLayout = DEFAULT_LAYOUT,
        pass1: PassThresholds = PASS1,
        pass2: PassThresholds = PASS2,
        pass3: PassThresholds = PASS3,
        enable_pass3: bool = False,
        pass2_mode: str = "masked",
    ):
        self.engine = engine
        self.matcher = matcher
        self.layout = layout
        self.pass1 = pass1
        self.pass2 = pass2
        self.pass3 = pass3
        self.enable_pass3 = enable_pass3
        self.pass2_mode = pass2_mode

    @classmethod
    def from_settings(cls, settings: Settings, engine: Optional[OCREngine] = None) -> "WasteFormPipeline":
        return cls(
            engine=engine or make_engine(settings),
            matcher=load_matcher(str(settings.items_path)),
            enable_pass3=settings.enable_pass3,
            pass2_mode=settings.pass2_mode,
        )

    def process_image(self, image: Image.Image, progress: Optional[ProgressFn] = None) -> Dict[str, Any]:
        report = progress or _noop_progress

        report(0.1, "Reading text...")
        fragments = clean_fragments(self.engine.detect(image))
        log.info("Pass 1: %d fragments", len(fragments))

        report(0.3, "Detecting tables...")
        tables = segment_tables(fragments, self.layout)
        if not tables:
            raise PipelineError("No tables found on the form")

        report(0.45, "Matching items...")
        rows = reconcile_page(tables, self.matcher, self.pass1)

        recovery = RecoveryOrchestrator(
            self.engine,
            pass2=self.pass2,
            pass3=self.pass3,
            enable_pass3=self.enable_pass3,
            pass2_mode=self.pass2_mode,
            progress=report,
        )
        recovery.run(image, tables, rows, fragments)

        report(0.9, "Building results...")
        result = assemble_result(tables, rows)
        log.info("ScanResult: %d tables, %d fields, %d empty, %d need review",
                 len(result["tables"]), result["totalFields"],
                 result["emptyFields"], result["fieldsNeedingReview"])
        return result

    def process_path(self, path: Union[str, Path], progress: Optional[ProgressFn] = None) -> Dict[str, Any]:
        return self.process_image(load_image(path), progress)


__all__ = ["clean_fragments", "WasteFormPipeline"]
