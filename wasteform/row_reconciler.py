"""
Row Reconciler -- rebuild item rows for one table from its data fragments.

Two strictly ordered passes, no iteration:

Pass A (anchor discovery)
  * keep fragments whose center-x is closer to the ITEM header than to any
    other header (header proximity, so "Coffee Frappe" is never cut by a fixed
    boundary); numbers, section labels and size words are skipped
  * group them into lines (|y - running average y| <= 25px), join each line
    left to right, validate the text with the ItemMatcher
  * every matched line becomes a ValidatedRow(itemName, anchorY=average y)

Pass B (data attachment)
  * every fragment not consumed by Pass A goes to the column whose header is
    nearest (left column on a tie), if within the column ceiling
  * quantity columns take ASCII ^[0-9]+$ only; SIZE takes any text
  * the nearest anchor row wins; the distance gate decides fill / review /
    reject; a filled field is never overwritten
  * completed-waste (2-col) tables: any number in the right half is COUNT

Nothing here raises on bad fragments: rejections are counted and logged.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Set, Tuple

from .config import PASS1, PassThresholds
from .fill_policy import FillOutcome, fill_if_empty, nearest_row
from .item_matcher import ItemMatcher, is_size_keyword, is_sub_header
from .ocr_types import ColumnName, Table, TableType, TextFragment, ValidatedRow
from .table_segmenter import closest_column

log = logging.getLogger(__name__)

ROW_CLUSTER_TOLERANCE = 25   # px, same physical line


@dataclass
class ItemLine:
    fragments: List[TextFragment] = field(default_factory=list)
    average_y: int = 0

    def add(self, fragment: TextFragment) -> None:
        self.fragments.append(fragment)
        self.average_y = sum(f.y for f in self.fragments) // len(self.fragments)

    @property
    def text(self) -> str:
        return " ".join(f.text for f in sorted(self.fragments, key=lambda f: f.x))


@dataclass
class ReconcileOutcome:
    table: Table
    rows: List[ValidatedRow]
    consumed: Set[TextFragment] = field(default_factory=set)
    rejected: Counter = field(default_factory=Counter)
    filled: int = 0


# ────────────────────────────────────────────────
# Pass A
# ────────────────────────────────────────────────

def _closest_to_item(table: Table, center_x: float) -> bool:
    item = table.column_boundaries.get(ColumnName.ITEM)
    if item is None:
        return False
    to_item = abs(center_x - item.header_x)
    for name, boundary in table.column_boundaries.items():
        if name is ColumnName.ITEM:
            continue
        if abs(center_x - boundary.header_x) <= to_item:
            return False
    return True


def item_candidates(table: Table) -> List[TextFragment]:
    out = [
        f for f in table.data_fragments
        if f.y > table.data_y_start
        and not f.is_numeric
        and not is_sub_header(f.text)
        and not is_size_keyword(f.text)
        and _closest_to_item(table, f.center_x)
    ]
    out.sort(key=lambda f: (f.y, f.x))
    return out


def group_lines(fragments: Sequence[TextFragment]) -> List[ItemLine]:
    """Fragments must already be sorted by y."""
    lines: List[ItemLine] = []
    current = ItemLine()
    for fragment in fragments:
        if current.fragments and abs(fragment.y - current.average_y) > ROW_CLUSTER_TOLERANCE:
            lines.append(current)
            current = ItemLine()
        current.add(fragment)
    if current.fragments:
        lines.append(current)
    return lines


def discover_anchors(
    table: Table, matcher: ItemMatcher
) -> Tuple[List[ValidatedRow], Set[TextFragment]]:
    rows: List[ValidatedRow] = []
    consumed: Set[TextFragment] = set()
    category = table.type.category

    for line in group_lines(item_candidates(table)):
        match = matcher.match_item(line.text, category)
        if not match:
            log.debug("[%s] no item match for %r at y=%d", table.name, line.text, line.average_y)
            continue
        rows.append(ValidatedRow(item_name=match, anchor_y=line.average_y))
        consumed.update(line.fragments)

    rows.sort(key=lambda r: r.anchor_y)
    return rows, consumed


# ────────────────────────────────────────────────
# Pass B
# ────────────────────────────────────────────────

def _target_column(
    table: Table, fragment: TextFragment, thresholds: PassThresholds
) -> Tuple[ColumnName, str]:
    """Returns (column, "") or (ITEM, reject reason)."""
    if table.type is TableType.COMPLETED_WASTE_2COL:
        if not fragment.is_numeric:
            return ColumnName.ITEM, "non_numeric"
        if fragment.x <= table.center_x:
            return ColumnName.ITEM, "left_half"
        return ColumnName.COUNT, ""

    column, distance = closest_column(table, fragment.center_x)
    if column is None or distance > thresholds.column_ceiling:
        return ColumnName.ITEM, "no_column"
    if column is ColumnName.ITEM:
        return ColumnName.ITEM, "item_column"
    if column.is_quantity and not fragment.is_numeric:
        return ColumnName.ITEM, "non_numeric"
    return column, ""


def attach_data(
    table: Table,
    rows: List[ValidatedRow],
    consumed: Set[TextFragment],
    thresholds: PassThresholds = PASS1,
) -> Tuple[int, Counter]:
    filled = 0
    rejected: Counter = Counter()

    for fragment in table.data_fragments:
        if fragment in consumed or fragment.y <= table.data_y_start or is_sub_header(fragment.text):
            continue
        if not (table.x_start <= fragment.x <= table.x_end):
            rejected["out_of_bounds"] += 1
            continue

        column, reason = _target_column(table, fragment, thresholds)
        if reason:
            rejected[reason] += 1
            continue

        row = nearest_row(rows, fragment.y)
        if row is None:
            rejected["no_row"] += 1
            continue

        distance = int(abs(fragment.y - row.anchor_y))
        gate = thresholds.size if column is ColumnName.SIZE else thresholds.quantity
        decision = fill_if_empty(
            row, column, fragment.text.strip(), distance, gate, thresholds.issue_template
        )
        if decision.filled:
            filled += 1
        else:
            rejected[decision.outcome.value] += 1

    return filled, rejected


# ────────────────────────────────────────────────
# Entry points
# ────────────────────────────────────────────────

def reconcile_table(
    table: Table,
    matcher: ItemMatcher,
    thresholds: PassThresholds = PASS1,
) -> ReconcileOutcome:
    rows, consumed = discover_anchors(table, matcher)
    filled, rejected = attach_data(table, rows, consumed, thresholds)

    log.info("[%s] %d rows, %d fields filled", table.name, len(rows), filled)
    if rejected:
        log.debug("[%s] dropped fragments: %s", table.name, dict(rejected))
    return ReconcileOutcome(table, rows, consumed, rejected, filled)


def reconcile_page(
    tables: Sequence[Table],
    matcher: ItemMatcher,
    thresholds: PassThresholds = PASS1,
) -> Dict[int, List[ValidatedRow]]:
    """Rows per table index (tables keep the Segmenter's left-to-right order)."""
    return {
        i: reconcile_table(table, matcher, thresholds).rows
        for i, table in enumerate(tables)
    }


__all__ = [
    "ItemLine",
    "ReconcileOutcome",
    "item_candidates",
    "group_lines",
    "discover_anchors",
    "attach_data",
    "reconcile_table",
    "reconcile_page",
]
