"""Cell aggregation — sums raw contributions into the sparse cell map.

Two stages live here:

* ``CellAggregator`` folds (row, column, raw value) contributions into the
  value map.  Contributions to the same cell are summed, never overwritten.
  A non-numeric contribution only marks the cell as ``None`` when nothing
  numeric has landed yet; the raw map always keeps the latest raw value.
* ``auto_aggregate`` fills parent cells bottom-up from their children where
  the parent has no value of its own.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from statement_matrix.matrix.models import ColumnKey, RowNode, coerce_number

logger = logging.getLogger(__name__)


@dataclass
class CellMaps:
    """Mutable cell/raw/field maps filled while a model is being built."""

    values: dict[str, dict[str, float | None]] = field(default_factory=dict)
    raw: dict[str, dict[str, Any]] = field(default_factory=dict)
    row_fields: dict[str, dict[str, Any]] = field(default_factory=dict)
    column_fields: dict[str, dict[str, Any]] = field(default_factory=dict)
    cell_fields: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)


class CellAggregator:
    """Accumulates bound-data contributions for one rebuild."""

    def __init__(self, maps: CellMaps | None = None):
        self.maps = maps or CellMaps()
        self.contributions = 0

    def add(self, row_code: str, column: ColumnKey | str, raw_value: Any) -> None:
        key = column.key if isinstance(column, ColumnKey) else column
        number = coerce_number(raw_value)
        row_values = self.maps.values.setdefault(row_code, {})
        if not math.isnan(number):
            current = row_values.get(key)
            row_values[key] = number if current is None else current + number
        elif key not in row_values:
            row_values[key] = None
        self.maps.raw.setdefault(row_code, {})[key] = raw_value
        self.contributions += 1

    def set_value(self, row_code: str, column: ColumnKey | str, value: float | None, raw_value: Any = None) -> None:
        """Store an already-aggregated value (custom-table mode)."""
        key = column.key if isinstance(column, ColumnKey) else column
        self.maps.values.setdefault(row_code, {})[key] = value
        self.maps.raw.setdefault(row_code, {})[key] = value if raw_value is None else raw_value

    def add_fields(
        self,
        row_codes: list[str],
        levels_key: str,
        fields: dict[str, Any],
    ) -> None:
        """Record the last raw value of every bound field for rows, column and cell.

        *row_codes* is the leaf row plus its ancestors, so header formatting
        of parent rows can read fields too.
        """
        if not fields:
            return
        for code in row_codes:
            self.maps.row_fields.setdefault(code, {}).update(fields)
        self.maps.column_fields.setdefault(levels_key, {}).update(fields)
        if row_codes:
            cell = self.maps.cell_fields.setdefault(row_codes[0], {})
            cell.setdefault(levels_key, {}).update(fields)


def auto_aggregate(
    nodes: dict[str, RowNode],
    order: list[str],
    values: dict[str, dict[str, float | None]],
    columns: list[ColumnKey],
    blank_as_zero: bool = False,
) -> int:
    """Fill missing parent cells from their children, bottom-up.

    *order* is the pre-order traversal; walking it backwards visits every
    child before its parent, so one pass is enough.  Blank and calc rows are
    never filled.  Returns the number of cells written.
    """
    written = 0
    for code in reversed(order):
        node = nodes[code]
        if not node.children or node.type in ("blank", "calc"):
            continue
        row_values = values.setdefault(code, {})
        for col in columns:
            key = col.key
            if row_values.get(key) is not None:
                continue
            total = 0.0
            found = False
            for child in node.children:
                v = values.get(child, {}).get(key)
                if v is None:
                    continue
                total += v
                found = True
            if found:
                row_values[key] = total
            else:
                row_values[key] = 0.0 if blank_as_zero else None
            written += 1
    logger.debug("Auto-aggregated %d parent cells", written)
    return written
