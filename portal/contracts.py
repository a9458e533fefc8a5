# portal/contracts.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from wasteform.ocr_types import ColumnName, TableType

_DIGITS = re.compile(r"^[0-9]+$")

DEFAULT_MAX_VALUE = 999
LOW_FILL_RATIO = 0.05

# Form order for UNKNOWN / missing tableType: check whatever quantity fields are present.
_ALL_QUANTITY = [ColumnName.OPEN, ColumnName.SWING, ColumnName.CLOSE, ColumnName.COUNT]


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def _table_type(table: Mapping[str, Any]) -> TableType:
    try:
        return TableType(str(table.get("tableType") or "").upper())
    except ValueError:
        return TableType.UNKNOWN


def _item_name(row: Mapping[str, Any]) -> str:
    item = row.get("item")
    if isinstance(item, Mapping):
        item = item.get("value")
    return str(item) if item not in (None, "") else "(unnamed item)"


def _field_value(row: Mapping[str, Any], column: ColumnName) -> Optional[str]:
    data = row.get(column.field_key)
    if isinstance(data, Mapping):
        value = data.get("value")
    else:
        value = data
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _fields_for(table_type: TableType, row: Mapping[str, Any]) -> Sequence[ColumnName]:
    if table_type is TableType.UNKNOWN:
        return [c for c in _ALL_QUANTITY if c.field_key in row]
    return table_type.quantity_fields


def validate_waste_form(payload: Any, max_value: int = DEFAULT_MAX_VALUE) -> ValidationResult:
    """
    Check a reviewed ScanResult before it is accepted. Collects every problem
    (no fail-fast). Quantity fields must be digits only; values above
    max_value are a warning, not an error. Never mutates the payload.
    """
    result = ValidationResult()

    tables = payload.get("tables") if isinstance(payload, Mapping) else None
    if not isinstance(tables, list):
        result.errors.append("No tables found in reviewed data")
        return result

    total = filled = 0
    for table in tables:
        if not isinstance(table, Mapping):
            continue
        table_type = _table_type(table)
        rows = table.get("rows")
        if not isinstance(rows, list):
            continue

        for row in rows:
            if not isinstance(row, Mapping):
                continue
            item = _item_name(row)
            for column in _fields_for(table_type, row):
                total += 1
                value = _field_value(row, column)
                if value is None:
                    continue
                filled += 1
                if not _DIGITS.match(value):
                    result.errors.append(
                        f"Invalid value '{value}' for {item} {column.value} (must be numeric)"
                    )
                elif int(value) > max_value:
                    result.warnings.append(
                        f"Large value ({int(value)}) for {item} {column.value} - is this correct?"
                    )

    if filled == 0:
        result.warnings.append("No waste recorded - is this correct?")
    if total and (total - filled) > total * (1 - LOW_FILL_RATIO):
        result.warnings.append("Less than 5% of fields filled - is this correct?")
    return result
