"""
Waste Form OCR -- configuration.

Two layers:
  1) Tunables that are part of the algorithm (distance gates per pass, expected
     form layout). Frozen dataclasses so a test can build its own and pass it in.
  2) Process settings read from the environment (.env honoured via python-dotenv),
     mirroring how the OCR paths are picked up at web-app start.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional, Tuple

from dotenv import load_dotenv

from .ocr_types import ColumnName

ROOT = Path(__file__).resolve().parents[1]
PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_ITEMS_PATH = PACKAGE_DIR / "data" / "master_items.json"

load_dotenv(ROOT / ".env")


# -----------------------------
# Distance gates
# -----------------------------

@dataclass(frozen=True)
class DistanceGate:
    """Vertical distance policy: reject beyond the ceiling, flag beyond review."""
    reject_ceiling: int
    review_threshold: int

    def allows(self, distance: int) -> bool:
        return distance <= self.reject_ceiling

    def needs_review(self, distance: int) -> bool:
        return distance > self.review_threshold


@dataclass(frozen=True)
class PassThresholds:
    name: str
    column_ceiling: int
    quantity: DistanceGate
    size: DistanceGate
    upscale: float = 1.0
    issue_template: str = "Distance: {d}px"


PASS1 = PassThresholds(
    name="pass1",
    column_ceiling=200,
    quantity=DistanceGate(reject_ceiling=110, review_threshold=65),
    size=DistanceGate(reject_ceiling=110, review_threshold=65),
)

PASS2 = PassThresholds(
    name="pass2",
    column_ceiling=150,
    quantity=DistanceGate(reject_ceiling=120, review_threshold=65),
    size=DistanceGate(reject_ceiling=120, review_threshold=65),
    upscale=2.0,
    issue_template="Auto-filled (distance: {d}px)",
)

PASS3 = PassThresholds(
    name="pass3",
    column_ceiling=150,
    quantity=DistanceGate(reject_ceiling=80, review_threshold=50),
    size=DistanceGate(reject_ceiling=80, review_threshold=50),
    upscale=2.5,
    issue_template="Auto-filled (distance: {d}px)",
)


# -----------------------------
# Form layout descriptor
# -----------------------------

_C = ColumnName


@dataclass(frozen=True)
class FormLayout:
    """
    Expected table shapes, left to right. Used by the Segmenter repair step
    when OCR merged two tables (a missed or misread ITEM header).
    """
    name: str
    table_shapes: Tuple[FrozenSet[ColumnName], ...]

    @property
    def expected_tables(self) -> int:
        return len(self.table_shapes)

    def is_single_shape(self, headers: FrozenSet[ColumnName]) -> bool:
        return headers in self.table_shapes


DEFAULT_LAYOUT = FormLayout(
    name="daily-waste-sheet",
    table_shapes=(
        frozenset({_C.ITEM}),
        frozenset({_C.ITEM}),
        frozenset({_C.ITEM, _C.SIZE, _C.OPEN, _C.SWING, _C.CLOSE}),
        frozenset({_C.ITEM, _C.SIZE, _C.COUNT}),
        frozenset({_C.ITEM, _C.SIZE, _C.COUNT}),
    ),
)


# -----------------------------
# Environment settings
# -----------------------------

def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw not in (None, "") else default
    except ValueError:
        return default


@dataclass
class Settings:
    tesseract_cmd: Optional[str] = None
    tesseract_lang: str = "eng"
    tesseract_config: str = "--oem 3 --psm 11"
    engine: str = "tesseract"
    enable_pass3: bool = False
    pass2_mode: str = "masked"          # "masked" | "sharpen"
    upload_dir: Path = field(default_factory=lambda: ROOT / "uploads")
    max_upload_mb: int = 20
    session_ttl: int = 900              # seconds
    items_path: Path = DEFAULT_ITEMS_PATH
    max_value: int = 999

    @classmethod
    def from_env(cls) -> "Settings":
        upload_dir = os.getenv("WASTEFORM_UPLOAD_DIR")
        items_path = os.getenv("WASTEFORM_ITEMS_PATH")
        return cls(
            tesseract_cmd=os.getenv("TESSERACT_CMD") or None,
            tesseract_lang=os.getenv("TESSERACT_LANG") or "eng",
            tesseract_config=os.getenv("TESSERACT_CONFIG") or "--oem 3 --psm 11",
            engine=(os.getenv("WASTEFORM_ENGINE") or "tesseract").lower(),
            enable_pass3=_env_bool("WASTEFORM_ENABLE_PASS3"),
            pass2_mode=(os.getenv("WASTEFORM_PASS2_MODE") or "masked").lower(),
            upload_dir=Path(upload_dir) if upload_dir else ROOT / "uploads",
            max_upload_mb=_env_int("WASTEFORM_MAX_UPLOAD_MB", 20),
            session_ttl=_env_int("WASTEFORM_SESSION_TTL", 900),
            items_path=Path(items_path) if items_path else DEFAULT_ITEMS_PATH,
            max_value=_env_int("WASTEFORM_MAX_VALUE", 999),
        )


__all__ = [
    "ROOT",
    "DEFAULT_ITEMS_PATH",
    "DistanceGate",
    "PassThresholds",
    "PASS1",
    "PASS2",
    "PASS3",
    "FormLayout",
    "DEFAULT_LAYOUT",
    "Settings",
]
