"""
Fill policy shared by Pass B and every recovery pass.

A field is written at most once. The review flag / issue recorded for a field
belongs to the fill that wrote it; later candidates for a filled field are
ignored entirely.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import DistanceGate
from .ocr_types import ColumnName, FieldReview, ValidatedRow


class FillOutcome(str, Enum):
    FILLED = "filled"
    FILLED_FOR_REVIEW = "filled_for_review"
    ALREADY_FILLED = "already_filled"
    TOO_FAR = "too_far"


@dataclass(frozen=True)
class FillDecision:
    outcome: FillOutcome
    column: ColumnName
    distance: int

    @property
    def filled(self) -> bool:
        return self.outcome in (FillOutcome.FILLED, FillOutcome.FILLED_FOR_REVIEW)


def fill_if_empty(
    row: ValidatedRow,
    column: ColumnName,
    value: str,
    distance: int,
    gate: DistanceGate,
    issue_template: str = "Distance: {d}px",
) -> FillDecision:
    if column is ColumnName.ITEM:
        raise ValueError("ITEM is set by anchor discovery, not filled")

    if not gate.allows(distance):
        return FillDecision(FillOutcome.TOO_FAR, column, distance)
    if not row.is_empty(column):
        return FillDecision(FillOutcome.ALREADY_FILLED, column, distance)

    setattr(row, column.field_key, value)

    # SIZE is pre-printed; it never carries a review flag.
    if column is not ColumnName.SIZE and gate.needs_review(distance):
        row.reviews[column] = FieldReview(True, issue_template.format(d=distance))
        return FillDecision(FillOutcome.FILLED_FOR_REVIEW, column, distance)

    row.reviews.pop(column, None)
    return FillDecision(FillOutcome.FILLED, column, distance)


def nearest_row(rows, y: float) -> Optional[ValidatedRow]:
    """Row whose anchorY is closest to y; the upper row wins an exact tie."""
    best: Optional[ValidatedRow] = None
    best_distance = float("inf")
    for row in rows:
        distance = abs(y - row.anchor_y)
        if distance < best_distance:
            best, best_distance = row, distance
    return best


__all__ = ["FillOutcome", "FillDecision", "fill_if_empty", "nearest_row"]
