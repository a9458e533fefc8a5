"""
Waste Form OCR Types

Geometry-first dataclasses shared by every pipeline stage:
- TextFragment: one OCR word with its top-left box (immutable, one pass only).
- ColumnName / TableType / WasteCategory: closed enums, never raw strings.
- ColumnBoundary / Table: Segmenter output.
- ValidatedRow: the reconciled item row that every later pass fills in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

_NUMERIC_RE = re.compile(r"^[0-9]+$")


# ────────────────────────────────────────────────
# 🔤 OCR primitive
# ────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class TextFragment:
    text: str
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2.0

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2.0

    @property
    def is_numeric(self) -> bool:
        return bool(_NUMERIC_RE.match(self.text))

    def scaled(self, sx: float, sy: float) -> "TextFragment":
        """Map a fragment from an upscaled image back by dividing by (sx, sy)."""
        return TextFragment(
            text=self.text,
            x=int(round(self.x / sx)),
            y=int(round(self.y / sy)),
            width=int(round(self.width / sx)),
            height=int(round(self.height / sy)),
        )

    def with_text(self, text: str) -> "TextFragment":
        return TextFragment(text, self.x, self.y, self.width, self.height)


# ────────────────────────────────────────────────
# 🏷️ Closed vocabularies
# ────────────────────────────────────────────────

class ColumnName(str, Enum):
    ITEM = "ITEM"
    SIZE = "SIZE"
    OPEN = "OPEN"
    SWING = "SWING"
    CLOSE = "CLOSE"
    COUNT = "COUNT"

    @classmethod
    def from_header(cls, text: str) -> Optional["ColumnName"]:
        """Case-insensitive header lookup; None for anything else."""
        try:
            return cls(text.strip().upper())
        except ValueError:
            return None

    @property
    def is_quantity(self) -> bool:
        return self in QUANTITY_COLUMNS

    @property
    def field_key(self) -> str:
        """camelCase key used by the external row schema."""
        return self.value.lower()


QUANTITY_COLUMNS: FrozenSet[ColumnName] = frozenset(
    {ColumnName.OPEN, ColumnName.SWING, ColumnName.CLOSE, ColumnName.COUNT}
)


class WasteCategory(str, Enum):
    COMPLETED_WASTE = "completedWaste"
    RAW_WASTE = "rawWaste"


class TableType(str, Enum):
    RAW_WASTE_5COL = "RAW_WASTE_5COL"
    RAW_WASTE_3COL = "RAW_WASTE_3COL"
    COMPLETED_WASTE_2COL = "COMPLETED_WASTE_2COL"
    UNKNOWN = "UNKNOWN"

    @property
    def category(self) -> WasteCategory:
        if self is TableType.COMPLETED_WASTE_2COL:
            return WasteCategory.COMPLETED_WASTE
        return WasteCategory.RAW_WASTE

    @property
    def is_raw_waste(self) -> bool:
        return self in (TableType.RAW_WASTE_5COL, TableType.RAW_WASTE_3COL)

    @property
    def populated_fields(self) -> FrozenSet[ColumnName]:
        """Fields the external row schema may carry for this table type."""
        if self is TableType.RAW_WASTE_5COL:
            return frozenset({ColumnName.OPEN, ColumnName.SWING, ColumnName.CLOSE, ColumnName.SIZE})
        if self is TableType.RAW_WASTE_3COL:
            return frozenset({ColumnName.COUNT, ColumnName.SIZE})
        if self is TableType.COMPLETED_WASTE_2COL:
            return frozenset({ColumnName.COUNT})
        return frozenset({ColumnName.COUNT, ColumnName.SIZE})

    @property
    def quantity_fields(self) -> List[ColumnName]:
        """Quantity fields in left-to-right form order."""
        if self is TableType.RAW_WASTE_5COL:
            return [ColumnName.OPEN, ColumnName.SWING, ColumnName.CLOSE]
        return [ColumnName.COUNT]


# ────────────────────────────────────────────────
# 🧱 Segmenter output
# ────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class ColumnBoundary:
    header_x: float
    x_start: int
    x_end: int

    def contains(self, x: float) -> bool:
        return self.x_start <= x < self.x_end


@dataclass
class Table:
    name: str
    type: TableType
    x_start: int
    x_end: int
    y_start: int
    header_fragments: List[TextFragment] = field(default_factory=list)
    column_boundaries: Dict[ColumnName, ColumnBoundary] = field(default_factory=dict)
    data_fragments: List[TextFragment] = field(default_factory=list)

    @property
    def center_x(self) -> float:
        return (self.x_start + self.x_end) / 2.0

    @property
    def data_y_start(self) -> int:
        """First y below the header row that may carry data."""
        return self.y_start + 50

    def header_for(self, column: ColumnName) -> Optional[TextFragment]:
        for h in self.header_fragments:
            if ColumnName.from_header(h.text) is column:
                return h
        return None

    @property
    def header_names(self) -> FrozenSet[ColumnName]:
        names = (ColumnName.from_header(h.text) for h in self.header_fragments)
        return frozenset(n for n in names if n is not None)


# ────────────────────────────────────────────────
# 🧾 Reconciled rows
# ────────────────────────────────────────────────

@dataclass
class FieldReview:
    needs_review: bool = False
    issue: str = ""


@dataclass
class ValidatedRow:
    item_name: str
    anchor_y: int
    size: Optional[str] = None
    open: Optional[str] = None
    swing: Optional[str] = None
    close: Optional[str] = None
    count: Optional[str] = None
    reviews: Dict[ColumnName, FieldReview] = field(default_factory=dict)

    def get(self, column: ColumnName) -> Optional[str]:
        if column is ColumnName.ITEM:
            return self.item_name
        return getattr(self, column.field_key)

    def is_empty(self, column: ColumnName) -> bool:
        value = self.get(column)
        return value is None or value == ""

    def review(self, column: ColumnName) -> FieldReview:
        return self.reviews.get(column) or FieldReview()


__all__ = [
    "TextFragment",
    "ColumnName",
    "QUANTITY_COLUMNS",
    "WasteCategory",
    "TableType",
    "ColumnBoundary",
    "Table",
    "FieldReview",
    "ValidatedRow",
]
