"""Column hierarchy builder — deduplicated, sorted column keys."""

from __future__ import annotations

from statement_matrix.matrix.models import (
    PLACEHOLDER_MEASURE,
    ColumnKey,
    MatrixRecord,
    normalize_category,
)


def column_levels(columns: tuple) -> tuple[str, ...]:
    return tuple(normalize_category(v) for v in columns)


class ColumnHierarchyBuilder:
    """Collects (levels, leaf) pairs and emits a deterministic column list.

    Tuples normalizing to the same level sequence collapse into one
    ``ColumnKey`` per value field.  With no value field bound a single
    placeholder leaf is used so tuple-only matrices still get columns.
    """

    def __init__(self, value_fields: list[str] | None = None):
        self.value_fields = [f for f in (value_fields or []) if f] or [PLACEHOLDER_MEASURE]
        self._levels: dict[tuple[str, ...], None] = {}

    def add_tuple(self, columns: tuple) -> tuple[str, ...]:
        levels = column_levels(columns)
        self._levels.setdefault(levels, None)
        return levels

    def add_leaf(self, leaf: str) -> None:
        """Register an extra leaf label (custom-table value mappings)."""
        if leaf not in self.value_fields:
            if self.value_fields == [PLACEHOLDER_MEASURE]:
                self.value_fields = []
            self.value_fields.append(leaf)

    def build(self) -> list[ColumnKey]:
        levels = list(self._levels) or [()]
        keys = {ColumnKey(lv, leaf) for lv in levels for leaf in self.value_fields}
        return sorted(keys)


def build_columns(
    records: list[MatrixRecord], value_fields: list[str] | None = None
) -> list[ColumnKey]:
    builder = ColumnHierarchyBuilder(value_fields)
    for record in records:
        builder.add_tuple(record.columns)
    return builder.build()
