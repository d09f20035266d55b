"""Row hierarchy builder — turns row tuples plus a declarative layout into a forest.

Every tuple prefix becomes a row node (``"US"``, ``"US||East"``...).  Rows
declared in the layout always win over data-discovered label/parent; data
discovery only fills the gaps.  The forest is an arena: a dict from code to
``RowNode`` with parent/children expressed as codes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from statement_matrix.layout.layout_config import LayoutRow
from statement_matrix.matrix.models import (
    BLANK,
    GROUP_PREFIX,
    MatrixRecord,
    RowNode,
    RowStyle,
    join_key,
    normalize_category,
)

logger = logging.getLogger(__name__)


@dataclass
class RowHierarchy:
    """Result of a hierarchy build."""

    nodes: dict[str, RowNode]
    roots: list[str]
    order: list[str] = field(default_factory=list)  # pre-order, root to leaf
    has_group: bool = False
    max_depth: int = 0


def row_code(row: tuple[str, ...], group: str | None = None) -> str:
    """Code of the row identified by a full (normalized) tuple."""
    parts = tuple(row)
    if group is not None:
        parts = (group_code(group),) + parts
    return join_key(parts)


def group_code(group: str) -> str:
    return join_key((GROUP_PREFIX, group))


def sort_key(node: RowNode) -> tuple:
    """Explicit order first, then first-seen order; ties broken by label."""
    if node.order is not None:
        return (0, node.order, node.label, node.seen)
    return (1, node.seen, node.label)


def flatten(nodes: dict[str, RowNode], roots: list[str]) -> list[str]:
    """Pre-order traversal of the forest."""
    result: list[str] = []
    stack = list(reversed(roots))
    while stack:
        code = stack.pop()
        result.append(code)
        stack.extend(reversed(nodes[code].children))
    return result


def _style_from_dict(raw: dict | None) -> RowStyle | None:
    if not raw:
        return None
    return RowStyle(
        color=raw.get("color") or raw.get("fontColor") or None,
        background=raw.get("background") or raw.get("backgroundColor") or None,
        bold=raw.get("bold"),
        italic=raw.get("italic"),
        underline=raw.get("underline"),
    )


class RowHierarchyBuilder:
    """Builds the row forest for one model rebuild."""

    def __init__(
        self,
        layout_rows: list[LayoutRow] | None = None,
        formulas: dict[str, str] | None = None,
    ):
        self.layout_rows = list(layout_rows or [])
        self.formulas = dict(formulas or {})
        self._nodes: dict[str, RowNode] = {}
        self._seen = 0
        self._has_group = False

    # -- discovery ----------------------------------------------------------

    def _next_seen(self) -> int:
        self._seen += 1
        return self._seen

    def declare(self, row: LayoutRow) -> None:
        if row.code in self._nodes:
            logger.warning("Duplicate layout row code '%s' ignored", row.code)
            return
        formula = row.formula or self.formulas.get(row.code)
        self._nodes[row.code] = RowNode(
            code=row.code,
            label=row.label or row.code,
            parent=row.parent or None,
            type=row.type,
            order=row.order,
            formula=formula if row.type == "calc" else None,
            style=_style_from_dict(row.style),
            seen=self._next_seen(),
            declared=True,
        )

    def _discover(self, code: str, label: str, parent: str | None, level: int) -> None:
        node = self._nodes.get(code)
        if node is None:
            self._nodes[code] = RowNode(
                code=code,
                label=label,
                parent=parent,
                row_level=level,
                seen=self._next_seen(),
            )
            return
        # First-seen values are permanent; declared rows only get their gaps filled.
        if node.declared:
            if node.label == node.code:
                node.label = label
            if node.parent is None and parent is not None and parent != code:
                node.parent = parent
            node.row_level = level

    def add_tuple(self, row: tuple, group: str | None = None) -> str:
        """Register every prefix of *row*; returns the leaf code."""
        values = tuple(normalize_category(v) for v in row)
        if not values:
            values = (BLANK,)
        parent: str | None = None
        if group is not None:
            self._has_group = True
            g_code = group_code(group)
            self._discover(g_code, group, None, -1)
            parent = g_code
        code = parent or ""
        for i in range(len(values)):
            code = row_code(values[: i + 1], group)
            self._discover(code, values[i], parent, i)
            parent = code
        return code

    # -- linking ------------------------------------------------------------

    def _creates_cycle(self, code: str, parent: str) -> bool:
        """True only when *code* lies on the loop; chains merely reaching one are fine."""
        visited: set[str] = set()
        current: str | None = parent
        while current is not None and current not in visited:
            if current == code:
                return True
            visited.add(current)
            current = self._nodes[current].parent
        return False

    def _link(self) -> list[str]:
        for code, node in self._nodes.items():
            node.children = []
            if node.parent is None:
                continue
            if node.parent not in self._nodes:
                logger.warning(
                    "Row '%s' declares unknown parent '%s'; treating as root",
                    code, node.parent,
                )
                node.parent = None
        # Cycle breaking needs all unknown parents cleared first.
        for code, node in self._nodes.items():
            if node.parent is not None and self._creates_cycle(code, node.parent):
                logger.warning("Row '%s' is part of a parent cycle; treating as root", code)
                node.parent = None

        roots: list[str] = []
        for code, node in self._nodes.items():
            if node.parent is None:
                roots.append(code)
            else:
                self._nodes[node.parent].children.append(code)

        for node in self._nodes.values():
            node.children.sort(key=lambda c: sort_key(self._nodes[c]))
        # Group roots outrank ordinary rows.
        roots.sort(key=lambda c: (0 if self._nodes[c].is_group_root else 1, sort_key(self._nodes[c])))
        return roots

    def build(self) -> RowHierarchy:
        roots = self._link()
        order = flatten(self._nodes, roots)
        max_depth = 0
        for code in order:
            node = self._nodes[code]
            node.depth = 0 if node.parent is None else self._nodes[node.parent].depth + 1
            max_depth = max(max_depth, node.depth)
        return RowHierarchy(
            nodes=self._nodes,
            roots=roots,
            order=order,
            has_group=self._has_group,
            max_depth=max_depth,
        )


def build_row_hierarchy(
    records: list[MatrixRecord],
    layout_rows: list[LayoutRow] | None = None,
    formulas: dict[str, str] | None = None,
) -> RowHierarchy:
    """Declared rows first, then every tuple prefix found in *records*."""
    builder = RowHierarchyBuilder(layout_rows, formulas)
    for row in builder.layout_rows:
        builder.declare(row)
    for record in records:
        builder.add_tuple(record.row, record.group)
    return builder.build()

