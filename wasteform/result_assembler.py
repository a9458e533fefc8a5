"""
Result Assembler -- ValidatedRows → ScanResult JSON (and back).

ScanResult:
  {
    "totalFields": int, "fieldsNeedingReview": int, "emptyFields": int,
    "itemsDetected": int, "itemsUnmatched": int, "accuracy": float,
    "tables": [
      {"tableName": str, "tableType": str,
       "rows": [{"item": str, "comments": str,
                 "open"|"swing"|"close"|"size"|"count":
                     {"value": str, "isEmpty": bool, "needsReview": bool, "issue": str}}]}
    ]
  }

Structural contract per table type (enforced here, not left to absence):
  RAW_WASTE_5COL        open / swing / close / size
  RAW_WASTE_3COL        count / size
  COMPLETED_WASTE_2COL  count
Every other field is emitted empty.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from .ocr_types import ColumnName, FieldReview, Table, TableType, ValidatedRow

ROW_FIELDS = (
    ColumnName.OPEN,
    ColumnName.SWING,
    ColumnName.CLOSE,
    ColumnName.SIZE,
    ColumnName.COUNT,
)


def field_data(value: Optional[str], needs_review: bool = False, issue: Optional[str] = None) -> Dict[str, Any]:
    return {
        "value": value if value is not None else "",
        "isEmpty": value is None or value == "",
        "needsReview": bool(needs_review),
        "issue": issue or "",
    }


def row_to_waste_row(row: ValidatedRow, table_type: TableType) -> Dict[str, Any]:
    allowed = table_type.populated_fields
    out: Dict[str, Any] = {"item": row.item_name}
    for column in ROW_FIELDS:
        if column in allowed:
            review = row.review(column)
            out[column.field_key] = field_data(row.get(column), review.needs_review, review.issue)
        else:
            out[column.field_key] = field_data(None)
    out["comments"] = ""
    return out


def waste_row_to_row(payload: Mapping[str, Any], anchor_y: int = 0) -> ValidatedRow:
    row = ValidatedRow(item_name=str(payload.get("item") or ""), anchor_y=anchor_y)
    for column in ROW_FIELDS:
        data = payload.get(column.field_key) or {}
        value = data.get("value")
        if value is not None and value != "":
            setattr(row, column.field_key, str(value))
        if data.get("needsReview") or data.get("issue"):
            row.reviews[column] = FieldReview(bool(data.get("needsReview")), str(data.get("issue") or ""))
    return row


def accuracy(items_detected: int, items_unmatched: int) -> float:
    """Share of detected rows that matched the vocabulary, as a percentage."""
    if items_detected == 0:
        return 0.0
    return (items_detected - items_unmatched) / items_detected * 100.0


def assemble_result(
    tables: Sequence[Table],
    rows: Mapping[int, List[ValidatedRow]],
) -> Dict[str, Any]:
    total = needing_review = empty = items = 0
    tables_out: List[Dict[str, Any]] = []

    for i, table in enumerate(tables):
        table_rows = rows.get(i, [])
        quantity = table.type.quantity_fields
        rows_out = []
        for row in table_rows:
            rows_out.append(row_to_waste_row(row, table.type))
            items += 1
            for column in quantity:
                total += 1
                if row.is_empty(column):
                    empty += 1
                if row.review(column).needs_review:
                    needing_review += 1
        tables_out.append({
            "tableName": table.name,
            "tableType": table.type.value,
            "rows": rows_out,
        })

    return {
        "totalFields": total,
        "fieldsNeedingReview": needing_review,
        "emptyFields": empty,
        "itemsDetected": items,
        # rows only exist for matched items
        "itemsUnmatched": 0,
        "accuracy": accuracy(items, 0),
        "tables": tables_out,
    }


__all__ = [
    "ROW_FIELDS",
    "field_data",
    "row_to_waste_row",
    "waste_row_to_row",
    "accuracy",
    "assemble_result",
]
