"""
Multi-Pass Recovery -- re-OCR derived images to fill fields Pass 1 missed.

  Pass 2 (masked, default)
      black out every non-numeric Pass-1 fragment (quantity headers kept) and
      each raw-waste table's item-name zone, upscale 2.0x, OCR again
  Pass 2 (sharpen, minimal-filtering variant)
      3x3 sharpen kernel on the whole page, no masking, upscale, OCR again;
      numbers already seen in Pass 1 (within 50px) are skipped
  Pass 3 (flagged)
      black canvas exposing only the empty quantity cells around each row
      anchor, upscale 2.5x, OCR again, tighter distance gate

Recovered coordinates are divided by the measured scale to land back in
original-image space. Only ASCII ^[0-9]+$ text (after misread correction) is used,
only raw-waste tables are touched, and fields are filled only if empty.

Passes run in order and each is isolated: an engine or transform failure is
logged and the rows keep whatever earlier passes produced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import cv2
from PIL import Image

from .config import PASS2, PASS3, PassThresholds
from .errors import OCREngineError
from .fill_policy import fill_if_empty, nearest_row
from .image_transforms import (
    Rect,
    expose_regions,
    mask_regions,
    sharpen,
    unsharp,
    upscale,
    verify_uniform_scale,
)
from .item_matcher import clean_ocr_text
from .ocr_engine import OCREngine
from .ocr_types import QUANTITY_COLUMNS, ColumnName, Table, TextFragment, ValidatedRow
from .table_segmenter import closest_column

log = logging.getLogger(__name__)

ProgressFn = Callable[[float, str], None]

MASK_PADDING = 8
ITEM_ZONE_GAP = 100        # item zone ends this far left of the first quantity header
DUPLICATE_RADIUS = 50      # sharpen variant: same number already seen in Pass 1
CELL_PAD_X = 10
CELL_ABOVE = 20
CELL_BELOW = 40

# Whole-token corrections for handwriting digits the engines read as letters.
COMMON_MISREADS: Dict[str, str] = {
    "TO": "10",
    "O": "0",
    "l": "1",
    "I": "1",
    "S": "5",
    "B": "8",
    "Z": "2",
    "G": "6",
    "AT": "41",
    "at": "91",
    "F": "7",
    "A": "4",
    "R": "",
    "C": "",
    "H": "",
    "09": "60",
    "416": "46",
    "RRRR": "",
    "SSSS": "",
    "TAIR": "",
    "༡༡": "22",   # Tibetan digit one, twice
    "प": "9",          # Devanagari pa
}

_RECOVERY_ERRORS = (OCREngineError, OSError, ValueError, cv2.error)


def correct_misread(text: str) -> str:
    stripped = (text or "").strip()
    return COMMON_MISREADS.get(stripped, stripped)


@dataclass
class PassReport:
    name: str
    fragments: int = 0
    numeric: int = 0
    filled: int = 0
    skipped: bool = False
    error: Optional[str] = None


@dataclass
class RecoveryReport:
    rows: Dict[int, List[ValidatedRow]]
    passes: List[PassReport] = field(default_factory=list)

    @property
    def filled(self) -> int:
        return sum(p.filled for p in self.passes)


# ────────────────────────────────────────────────
# Derived images
# ────────────────────────────────────────────────

def _is_quantity_header(fragment: TextFragment) -> bool:
    name = ColumnName.from_header(fragment.text)
    return name is not None and name in QUANTITY_COLUMNS


def masked_regions(image: Image.Image, tables: Sequence[Table], fragments: Sequence[TextFragment]) -> List[Rect]:
    rects: List[Rect] = []
    for f in fragments:
        if f.is_numeric or _is_quantity_header(f):
            continue
        rects.append((f.x - MASK_PADDING, f.y - MASK_PADDING,
                      f.right + MASK_PADDING, f.bottom + MASK_PADDING))

    for table in tables:
        qty_x = [h.x for h in table.header_fragments if _is_quantity_header(h)]
        if qty_x:
            rects.append((table.x_start, table.y_start, min(qty_x) - ITEM_ZONE_GAP, image.height))
    return rects


def cell_regions(tables: Sequence[Table], rows: Dict[int, List[ValidatedRow]]) -> List[Rect]:
    rects: List[Rect] = []
    for i, table in enumerate(tables):
        if not table.type.is_raw_waste:
            continue
        for row in rows.get(i, []):
            for column in table.type.quantity_fields:
                boundary = table.column_boundaries.get(column)
                if boundary is None or not row.is_empty(column):
                    continue
                rects.append((
                    boundary.x_start - CELL_PAD_X, row.anchor_y - CELL_ABOVE,
                    boundary.x_end + CELL_PAD_X, row.anchor_y + CELL_BELOW,
                ))
    return rects


# ────────────────────────────────────────────────
# Attachment of recovered numbers
# ────────────────────────────────────────────────

def _owning_table(tables: Sequence[Table], fragment: TextFragment) -> Optional[int]:
    best: Optional[int] = None
    best_distance = float("inf")
    for i, table in enumerate(tables):
        if not table.type.is_raw_waste:
            continue
        if fragment.y <= table.data_y_start or not (table.x_start <= fragment.x <= table.x_end):
            continue
        distance = abs(fragment.center_x - table.center_x)
        if distance < best_distance:
            best, best_distance = i, distance
    return best


def attach_recovered(
    fragments: Sequence[TextFragment],
    tables: Sequence[Table],
    rows: Dict[int, List[ValidatedRow]],
    thresholds: PassThresholds,
) -> int:
    filled = 0
    for fragment in fragments:
        idx = _owning_table(tables, fragment)
        if idx is None or not rows.get(idx):
            continue
        table = tables[idx]
        column, col_distance = closest_column(
            table, fragment.center_x, columns=frozenset(table.type.quantity_fields)
        )
        if column is None or col_distance > thresholds.column_ceiling:
            continue
        row = nearest_row(rows[idx], fragment.y)
        if row is None:
            continue
        distance = int(abs(fragment.y - row.anchor_y))
        decision = fill_if_empty(
            row, column, fragment.text, distance, thresholds.quantity, thresholds.issue_template
        )
        if decision.filled:
            filled += 1
            log.debug("[%s] %s %s <- %s (%dpx)", thresholds.name, row.item_name,
                      column.value, fragment.text, distance)
    return filled


# ────────────────────────────────────────────────
# Orchestrator
# ────────────────────────────────────────────────

class RecoveryOrchestrator:
    def __init__(
        self,
        engine: OCREngine,
        pass2: PassThresholds = PASS2,
        pass3: PassThresholds = PASS3,
        enable_pass3: bool = False,
        pass2_mode: str = "masked",
        progress: Optional[ProgressFn] = None,
    ):
        if pass2_mode not in ("masked", "sharpen"):
            raise ValueError(f"pass2_mode must be 'masked' or 'sharpen', got {pass2_mode!r}")
        self.engine = engine
        self.pass2 = pass2
        self.pass3 = pass3
        self.enable_pass3 = enable_pass3
        self.pass2_mode = pass2_mode
        self._progress = progress

    def _report_progress(self, value: float, message: str) -> None:
        if self._progress is not None:
            self._progress(value, message)

    def _ocr_numbers(self, original: Image.Image, derived: Image.Image, factor: float, report: PassReport) -> List[TextFragment]:
        sx, sy = verify_uniform_scale(original, derived, factor)
        raw = self.engine.detect(derived)
        report.fragments = len(raw)
        out: List[TextFragment] = []
        for f in raw:
            text = clean_ocr_text(correct_misread(f.text))
            if not text:
                continue
            mapped = f.scaled(sx, sy).with_text(text)
            if mapped.is_numeric:
                out.append(mapped)
        report.numeric = len(out)
        return out

    def run_pass2(
        self,
        image: Image.Image,
        tables: Sequence[Table],
        rows: Dict[int, List[ValidatedRow]],
        pass1_fragments: Sequence[TextFragment],
    ) -> PassReport:
        report = PassReport(name=f"{self.pass2.name}-{self.pass2_mode}")
        if self.pass2_mode == "sharpen":
            base = sharpen(image)
        else:
            base = mask_regions(image, masked_regions(image, tables, pass1_fragments))
        derived = upscale(base, self.pass2.upscale)
        numbers = self._ocr_numbers(image, derived, self.pass2.upscale, report)

        if self.pass2_mode == "sharpen":
            seen = [f for f in pass1_fragments if f.is_numeric]
            numbers = [
                n for n in numbers
                if not any(abs(n.x - p.x) < DUPLICATE_RADIUS and abs(n.y - p.y) < DUPLICATE_RADIUS for p in seen)
            ]

        report.filled = attach_recovered(numbers, tables, rows, self.pass2)
        return report

    def run_pass3(
        self,
        image: Image.Image,
        tables: Sequence[Table],
        rows: Dict[int, List[ValidatedRow]],
    ) -> PassReport:
        report = PassReport(name=self.pass3.name)
        rects = cell_regions(tables, rows)
        if not rects:
            report.skipped = True
            return report
        derived = unsharp(upscale(expose_regions(image, rects), self.pass3.upscale))
        numbers = self._ocr_numbers(image, derived, self.pass3.upscale, report)
        report.filled = attach_recovered(numbers, tables, rows, self.pass3)
        return report

    def run(
        self,
        image: Image.Image,
        tables: Sequence[Table],
        rows: Dict[int, List[ValidatedRow]],
        pass1_fragments: Sequence[TextFragment],
    ) -> RecoveryReport:
        result = RecoveryReport(rows=rows)

        self._report_progress(0.6, "Recovering missed numbers (pass 2)...")
        result.passes.append(self._isolated(
            self.pass2.name, lambda: self.run_pass2(image, tables, rows, pass1_fragments)
        ))

        if self.enable_pass3:
            self._report_progress(0.75, "Recovering missed numbers (pass 3)...")
            result.passes.append(self._isolated(
                self.pass3.name, lambda: self.run_pass3(image, tables, rows)
            ))

        for p in result.passes:
            log.info("[recovery] %s fragments=%d numeric=%d filled=%d%s", p.name, p.fragments,
                     p.numeric, p.filled, f" error={p.error}" if p.error else "")
        return result

    @staticmethod
    def _isolated(name: str, fn: Callable[[], PassReport]) -> PassReport:
        try:
            return fn()
        except _RECOVERY_ERRORS as e:
            log.warning("Recovery %s failed; keeping earlier results", name, exc_info=True)
            return PassReport(name=name, error=str(e))


__all__ = [
    "COMMON_MISREADS",
    "correct_misread",
    "PassReport",
    "RecoveryReport",
    "masked_regions",
    "cell_regions",
    "attach_recovered",
    "RecoveryOrchestrator",
]
