# tests/test_table_segmenter.py
"""
Table Segmenter -- OCR fragments -> typed tables.

Covers:
  Headers:
  - case-insensitive header detection, sorted left to right
  - one cluster per ITEM header

  Classification:
  - OPEN+SWING+CLOSE -> RAW_WASTE_5COL
  - SIZE+COUNT (no shift columns) -> RAW_WASTE_3COL
  - ITEM only -> COMPLETED_WASTE_2COL
  - anything else -> UNKNOWN (never raises)

  Bounds:
  - 5-col xEnd anchored at CLOSE.right + 100, 3-col at COUNT.right + 80
  - column ranges are contiguous and never overlap
  - adjacent tables share the midpoint cutoff
  - 2-col tables split 60/40 with a synthetic COUNT header

  Repair:
  - a merged cluster (missed ITEM header) splits on the repeated column

  Data assignment:
  - each fragment lands in at most one table
  - header-row fragments and headers themselves are not data
  - no headers at all -> []
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import FIVE_COL_HEADERS, frag
from wasteform.config import DEFAULT_LAYOUT
from wasteform.ocr_types import ColumnName, TableType
from wasteform.table_segmenter import (
    classify_table,
    closest_column,
    cluster_headers,
    find_headers,
    repair_clusters,
    segment_tables,
)

C = ColumnName


# ==================================================================
# Headers + clustering
# ==================================================================

class TestHeaders:
    def test_find_headers_case_insensitive(self):
        frags = [frag("size", 300, 40), frag("Item", 100, 40), frag("Bacon", 80, 200)]
        headers = find_headers(frags)
        assert [h.text for h in headers] == ["Item", "size"]

    def test_cluster_per_item(self, full_page):
        clusters = cluster_headers(find_headers(full_page))
        assert len(clusters) == 5
        assert [len(c) for c in clusters] == [1, 1, 5, 3, 3]


# ==================================================================
# Classification
# ==================================================================

class TestClassification:
    def test_five_col(self):
        assert classify_table(frozenset({C.ITEM, C.SIZE, C.OPEN, C.SWING, C.CLOSE})) is TableType.RAW_WASTE_5COL

    def test_three_col(self):
        assert classify_table(frozenset({C.ITEM, C.SIZE, C.COUNT})) is TableType.RAW_WASTE_3COL

    def test_two_col(self):
        assert classify_table(frozenset({C.ITEM})) is TableType.COMPLETED_WASTE_2COL

    def test_unknown(self):
        assert classify_table(frozenset({C.ITEM, C.SIZE})) is TableType.UNKNOWN
        assert classify_table(frozenset({C.SIZE, C.COUNT, C.OPEN})) is TableType.UNKNOWN

    def test_unknown_table_is_still_built(self):
        tables = segment_tables([frag("ITEM", 100, 40), frag("SIZE", 300, 40)])
        assert len(tables) == 1
        assert tables[0].type is TableType.UNKNOWN
        assert tables[0].name == "Table_1_Unknown"


# ==================================================================
# Bounds
# ==================================================================

class TestBounds:
    def test_five_col_anchor(self):
        (table,) = segment_tables(list(FIVE_COL_HEADERS))
        assert table.type is TableType.RAW_WASTE_5COL
        assert table.x_start == 50
        assert table.x_end == 960
        assert table.column_boundaries[C.ITEM].x_end == 230
        assert table.column_boundaries[C.CLOSE].x_start == 755
        assert table.column_boundaries[C.CLOSE].x_end == 960

    def test_three_col_anchor(self):
        headers = [frag("ITEM", 100, 40), frag("SIZE", 300, 40), frag("COUNT", 500, 40)]
        (table,) = segment_tables(headers)
        assert table.type is TableType.RAW_WASTE_3COL
        assert table.x_end == 560 + 80

    def test_full_page_types_and_names(self, full_page):
        tables = segment_tables(full_page)
        assert [t.type for t in tables] == [
            TableType.COMPLETED_WASTE_2COL,
            TableType.COMPLETED_WASTE_2COL,
            TableType.RAW_WASTE_5COL,
            TableType.RAW_WASTE_3COL,
            TableType.RAW_WASTE_3COL,
        ]
        assert tables[0].name == "Table_1_CompletedWaste_2Column"
        assert tables[2].name == "Table_3_RawWaste_5Column"
        assert tables[4].name == "Table_5_RawWaste_3Column"

    def test_shared_cutoff(self, full_page):
        tables = segment_tables(full_page)
        for prev, nxt in zip(tables, tables[1:]):
            assert prev.x_end == nxt.x_start
        assert tables[0].x_end == 330
        assert tables[2].x_end == 1805

    def test_columns_partition_table(self, full_page):
        for table in segment_tables(full_page):
            bounds = sorted(table.column_boundaries.values(), key=lambda b: b.x_start)
            assert bounds[0].x_start == table.x_start
            assert bounds[-1].x_end == table.x_end
            for a, b in zip(bounds, bounds[1:]):
                assert a.x_end == b.x_start
            for x in range(table.x_start, table.x_end):
                assert sum(1 for b in bounds if b.contains(x)) == 1

    def test_two_col_split(self, full_page):
        t1 = segment_tables(full_page)[0]
        item = t1.column_boundaries[C.ITEM]
        count = t1.column_boundaries[C.COUNT]
        assert (item.x_start, item.x_end) == (50, 218)
        assert (count.x_start, count.x_end) == (218, 330)
        assert count.header_x == 238


# ==================================================================
# Repair
# ==================================================================

class TestRepair:
    def test_split_merged_cluster(self, full_page):
        # last table's ITEM header was not read
        frags = [f for f in full_page if not (f.text == "ITEM" and f.x == 2600)]
        clusters = cluster_headers(find_headers(frags))
        assert len(clusters) == 4

        repaired = repair_clusters(clusters, DEFAULT_LAYOUT)
        assert len(repaired) == 5
        assert [h.text for h in repaired[4]] == ["SIZE", "COUNT"]

        tables = segment_tables(frags)
        assert len(tables) == 5
        assert tables[4].type is TableType.RAW_WASTE_3COL

    def test_complete_page_untouched(self, full_page):
        clusters = cluster_headers(find_headers(full_page))
        assert repair_clusters(clusters, DEFAULT_LAYOUT) == clusters


# ==================================================================
# Data assignment
# ==================================================================

class TestAssignment:
    def test_each_fragment_in_one_table(self, full_page):
        tables = segment_tables(full_page)
        seen = [f for t in tables for f in t.data_fragments]
        assert len(seen) == len(set(seen))
        assert "Bacon" in [f.text for f in tables[0].data_fragments]
        assert "45" in [f.text for f in tables[2].data_fragments]
        assert "Mayo" in [f.text for f in tables[3].data_fragments]

    def test_headers_not_data(self, full_page):
        for table in segment_tables(full_page):
            assert not any(ColumnName.from_header(f.text) for f in table.data_fragments)

    def test_header_row_band_excluded(self):
        frags = list(FIVE_COL_HEADERS) + [frag("Waste Sheet", 300, 60)]
        (table,) = segment_tables(frags)
        assert table.data_fragments == []

    def test_no_headers(self):
        assert segment_tables([frag("Bacon", 80, 100), frag("12", 250, 105)]) == []
        assert segment_tables([]) == []


# ==================================================================
# Column lookup
# ==================================================================

class TestClosestColumn:
    def test_nearest_header(self):
        (table,) = segment_tables(list(FIVE_COL_HEADERS))
        assert closest_column(table, 520) == (C.OPEN, 20)

    def test_tie_goes_left(self):
        (table,) = segment_tables(list(FIVE_COL_HEADERS))
        column, distance = closest_column(table, 575)
        assert column is C.OPEN
        assert distance == 75

    def test_restricted_columns(self):
        (table,) = segment_tables(list(FIVE_COL_HEADERS))
        column, _ = closest_column(table, 120, columns=frozenset({C.OPEN, C.SWING, C.CLOSE}))
        assert column is C.OPEN

    @pytest.mark.parametrize("x", [0, 10_000])
    def test_always_returns_a_column(self, x):
        (table,) = segment_tables(list(FIVE_COL_HEADERS))
        column, _ = closest_column(table, x)
        assert column is not None
