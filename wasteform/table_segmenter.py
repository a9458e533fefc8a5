"""
Table Segmenter -- turn one page of OCR fragments into typed tables.

Steps:
  1. Header detection: fragments whose text is one of ITEM / SIZE / OPEN /
     SWING / CLOSE / COUNT (case-insensitive), sorted left to right.
  2. Clustering: a new cluster starts at every ITEM header once the current
     cluster holds anything (each table has exactly one ITEM column).
  3. Repair: if OCR merged tables (fewer clusters than the FormLayout
     expects), oversized clusters are split where a column name repeats or
     an internal ITEM appears.
  4. Classification + bounds + column boundaries per table type.
  5. Adjacent tables share the midpoint between them as a cutoff.
  6. Every non-header fragment is assigned to at most one table.

Never raises on malformed input: an unclassifiable cluster still becomes an
UNKNOWN table so the caller gets a best-effort page.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from .config import DEFAULT_LAYOUT, FormLayout
from .ocr_types import ColumnBoundary, ColumnName, Table, TableType, TextFragment

log = logging.getLogger(__name__)

# ────────────────────────────────────────────────
# Geometry constants (px, original-image space)
# ────────────────────────────────────────────────

TABLE_MARGIN = 50                 # header cluster → table bounds
FIVE_COL_TAIL = 100               # CLOSE.right → table end
THREE_COL_TAIL = 80               # COUNT.right → table end
COMPLETED_ITEM_SHARE = 0.6        # ITEM column share of a 2-col table
COMPLETED_COUNT_OFFSET = 20       # synthetic COUNT header x after ITEM end

MIN_COLUMN_WIDTH: Dict[TableType, int] = {
    TableType.RAW_WASTE_5COL: 80,
    TableType.RAW_WASTE_3COL: 100,
    TableType.COMPLETED_WASTE_2COL: 80,
    TableType.UNKNOWN: 80,
}

_TYPE_SUFFIX: Dict[TableType, str] = {
    TableType.RAW_WASTE_5COL: "RawWaste_5Column",
    TableType.RAW_WASTE_3COL: "RawWaste_3Column",
    TableType.COMPLETED_WASTE_2COL: "CompletedWaste_2Column",
    TableType.UNKNOWN: "Unknown",
}

_SHIFT_COLUMNS = frozenset({ColumnName.OPEN, ColumnName.SWING, ColumnName.CLOSE})

HeaderCluster = List[TextFragment]


# -----------------------------
# Header detection + clustering
# -----------------------------

def is_header(fragment: TextFragment) -> bool:
    return bool(fragment.text) and ColumnName.from_header(fragment.text) is not None


def find_headers(fragments: Sequence[TextFragment]) -> List[TextFragment]:
    return sorted((f for f in fragments if is_header(f)), key=lambda f: (f.x, f.y))


def _name(fragment: TextFragment) -> Optional[ColumnName]:
    return ColumnName.from_header(fragment.text)


def cluster_headers(headers: Sequence[TextFragment]) -> List[HeaderCluster]:
    clusters: List[HeaderCluster] = []
    current: HeaderCluster = []
    for header in headers:
        if current and _name(header) is ColumnName.ITEM:
            clusters.append(current)
            current = []
        current.append(header)
    if current:
        clusters.append(current)
    return clusters


def _split_on_repeats(cluster: HeaderCluster) -> List[HeaderCluster]:
    """A table never carries the same column twice: a repeat opens a new table."""
    parts: List[HeaderCluster] = []
    current: HeaderCluster = []
    seen: set = set()
    for header in cluster:
        name = _name(header)
        if current and (name in seen or name is ColumnName.ITEM):
            parts.append(current)
            current, seen = [], set()
        current.append(header)
        seen.add(name)
    if current:
        parts.append(current)
    return parts


def repair_clusters(clusters: List[HeaderCluster], layout: FormLayout) -> List[HeaderCluster]:
    if len(clusters) >= layout.expected_tables:
        return clusters

    repaired: List[HeaderCluster] = []
    for cluster in clusters:
        names = frozenset(n for n in (_name(h) for h in cluster) if n is not None)
        if len(cluster) <= 2 or (len(names) == len(cluster) and layout.is_single_shape(names)):
            repaired.append(cluster)
            continue
        parts = _split_on_repeats(cluster)
        if len(parts) > 1:
            log.info("Split merged header cluster into %d tables: %s",
                     len(parts), [[h.text for h in p] for p in parts])
        repaired.extend(parts)

    if len(repaired) != layout.expected_tables:
        log.warning("Expected %d tables for layout %r, found %d",
                    layout.expected_tables, layout.name, len(repaired))
    return repaired


# -----------------------------
# Classification
# -----------------------------

def classify_table(header_names: FrozenSet[ColumnName]) -> TableType:
    if _SHIFT_COLUMNS <= header_names:
        return TableType.RAW_WASTE_5COL
    if {ColumnName.SIZE, ColumnName.COUNT} <= header_names and not (header_names & _SHIFT_COLUMNS):
        return TableType.RAW_WASTE_3COL
    if header_names == frozenset({ColumnName.ITEM}):
        return TableType.COMPLETED_WASTE_2COL
    return TableType.UNKNOWN


# -----------------------------
# Column boundaries
# -----------------------------

def _unique_headers(table: Table) -> List[Tuple[ColumnName, TextFragment]]:
    out: List[Tuple[ColumnName, TextFragment]] = []
    seen: set = set()
    for h in sorted(table.header_fragments, key=lambda f: f.x):
        name = _name(h)
        if name is None or name in seen:
            continue
        seen.add(name)
        out.append((name, h))
    return out


def _anchor_table_end(table: Table) -> None:
    """xEnd follows the last data-bearing header, not trailing whitespace."""
    if table.type is TableType.RAW_WASTE_5COL:
        close = table.header_for(ColumnName.CLOSE)
        if close is not None:
            table.x_end = close.right + FIVE_COL_TAIL
    elif table.type is TableType.RAW_WASTE_3COL:
        count = table.header_for(ColumnName.COUNT)
        if count is not None:
            table.x_end = count.right + THREE_COL_TAIL


def _partition(
    headers: List[Tuple[ColumnName, TextFragment]],
    x_start: int,
    x_end: int,
    min_width: int,
    grow_end: bool,
) -> Tuple[Dict[ColumnName, ColumnBoundary], int]:
    """
    Cut [x_start, x_end] at the midpoints of the gaps between consecutive
    headers. Each start is clamped to the previous end, so ranges never overlap.
    """
    bounds: Dict[ColumnName, ColumnBoundary] = {}
    prev_end = x_start
    last = len(headers) - 1
    for i, (name, header) in enumerate(headers):
        start = prev_end
        if i == last:
            end = x_end
        else:
            nxt = headers[i + 1][1]
            end = (header.right + nxt.x) // 2
        if end - start < min_width:
            end = start + min_width
        if not grow_end:
            end = min(end, x_end)
        end = max(end, start)
        bounds[name] = ColumnBoundary(header_x=float(header.x), x_start=start, x_end=end)
        prev_end = end
    return bounds, max(x_end, prev_end)


def compute_column_boundaries(table: Table, anchor_end: bool = True) -> None:
    """
    (Re)build table.column_boundaries in place.

    anchor_end=True on first build (xEnd snapped to CLOSE/COUNT + margin, the
    last column may grow the table); False when bounds were fixed by the
    inter-table cutoff and must not move.
    """
    if anchor_end:
        _anchor_table_end(table)

    headers = _unique_headers(table)
    min_width = MIN_COLUMN_WIDTH[table.type]

    if not headers:
        table.column_boundaries = {
            ColumnName.ITEM: ColumnBoundary(float(table.x_start), table.x_start, table.x_end)
        }
        return

    if table.type is TableType.COMPLETED_WASTE_2COL:
        item = headers[0][1]
        item_end = table.x_start + int((table.x_end - table.x_start) * COMPLETED_ITEM_SHARE)
        table.column_boundaries = {
            ColumnName.ITEM: ColumnBoundary(float(item.x), table.x_start, item_end),
            ColumnName.COUNT: ColumnBoundary(
                float(item_end + COMPLETED_COUNT_OFFSET), item_end, table.x_end
            ),
        }
        return

    bounds, new_end = _partition(headers, table.x_start, table.x_end, min_width, grow_end=anchor_end)
    table.column_boundaries = bounds
    table.x_end = new_end


# -----------------------------
# Table construction
# -----------------------------

def _build_table(index: int, cluster: HeaderCluster) -> Table:
    names = frozenset(n for n in (_name(h) for h in cluster) if n is not None)
    table_type = classify_table(names)
    table = Table(
        name=f"Table_{index}_{_TYPE_SUFFIX[table_type]}",
        type=table_type,
        x_start=min(h.x for h in cluster) - TABLE_MARGIN,
        x_end=max(h.right for h in cluster) + TABLE_MARGIN,
        y_start=min(h.y for h in cluster),
        header_fragments=sorted(cluster, key=lambda f: f.x),
    )
    compute_column_boundaries(table, anchor_end=True)
    if table_type is TableType.UNKNOWN:
        log.warning("Unclassified table %s with headers %s",
                    table.name, [h.text for h in table.header_fragments])
    return table


def resolve_inter_table_boundaries(tables: List[Table]) -> None:
    """Adjacent tables share the midpoint between them as the cutoff."""
    for prev, table in zip(tables, tables[1:]):
        cutoff = (prev.x_end + table.x_start) // 2
        prev.x_end = max(cutoff, prev.x_start)
        table.x_start = min(prev.x_end, table.x_end)
        compute_column_boundaries(prev, anchor_end=False)
        compute_column_boundaries(table, anchor_end=False)


def assign_data(fragments: Sequence[TextFragment], tables: List[Table]) -> int:
    """Attach each non-header fragment to one table. Returns the dropped count."""
    dropped = 0
    for fragment in fragments:
        if not fragment.text or is_header(fragment):
            continue
        best: Optional[Table] = None
        best_distance = float("inf")
        for table in tables:
            if fragment.y <= table.data_y_start:
                continue
            if not (table.x_start <= fragment.x <= table.x_end):
                continue
            distance = abs(fragment.center_x - table.center_x)
            if distance < best_distance:
                best, best_distance = table, distance
        if best is None:
            dropped += 1
        else:
            best.data_fragments.append(fragment)
    return dropped


def segment_tables(
    fragments: Sequence[TextFragment],
    layout: FormLayout = DEFAULT_LAYOUT,
) -> List[Table]:
    headers = find_headers(fragments)
    if not headers:
        log.warning("No column headers found among %d fragments", len(fragments))
        return []

    clusters = repair_clusters(cluster_headers(headers), layout)
    tables = [_build_table(i + 1, c) for i, c in enumerate(clusters)]
    resolve_inter_table_boundaries(tables)
    dropped = assign_data(fragments, tables)

    for t in tables:
        log.info("%s x=[%d-%d] y=%d headers=%s data=%d", t.name, t.x_start, t.x_end,
                 t.y_start, [h.text for h in t.header_fragments], len(t.data_fragments))
    if dropped:
        log.debug("Segmenter dropped %d unassignable fragments", dropped)
    return tables


# -----------------------------
# Column lookup (shared by reconciler + recovery)
# -----------------------------

def closest_column(
    table: Table,
    x: float,
    columns: Optional[FrozenSet[ColumnName]] = None,
) -> Tuple[Optional[ColumnName], float]:
    """
    Column whose header x is nearest to x. Exact ties go to the left column.
    Returns (None, inf) when the table has no eligible column.
    """
    best: Optional[ColumnName] = None
    best_header_x = float("inf")
    best_distance = float("inf")
    for name, boundary in table.column_boundaries.items():
        if columns is not None and name not in columns:
            continue
        distance = abs(x - boundary.header_x)
        if distance < best_distance or (
            distance == best_distance and boundary.header_x < best_header_x
        ):
            best, best_distance, best_header_x = name, distance, boundary.header_x
    return best, best_distance


__all__ = [
    "is_header",
    "find_headers",
    "cluster_headers",
    "repair_clusters",
    "classify_table",
    "compute_column_boundaries",
    "resolve_inter_table_boundaries",
    "assign_data",
    "segment_tables",
    "closest_column",
]
