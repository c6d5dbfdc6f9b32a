"""Dependency graph for formula cells with topological ordering."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from sheetops._range import DEFAULT_EDGE_STEP
from sheetops.calc._parser import all_references

if TYPE_CHECKING:
    from sheetops._workbook import Workbook


class DependencyGraph:
    """Tracks formula cell dependencies for evaluation ordering.

    All cell references use canonical "SheetName!A1" format.  With
    *max_cells* set, range references register only the sampled cells of
    :func:`sheetops._range.expand_range`.
    """

    __slots__ = ("dependencies", "dependents", "formulas", "max_cells", "edge_step")

    def __init__(self, max_cells: int | None = None, edge_step: int = DEFAULT_EDGE_STEP) -> None:
        # cell -> set of cells it reads from
        self.dependencies: dict[str, set[str]] = {}
        # cell -> set of cells that read from it (reverse edges)
        self.dependents: dict[str, set[str]] = {}
        # cell -> formula string
        self.formulas: dict[str, str] = {}
        self.max_cells = max_cells
        self.edge_step = edge_step

    def add_formula(self, cell_ref: str, formula: str, current_sheet: str) -> None:
        """Register a formula cell and its dependencies (replacing old ones)."""
        if cell_ref in self.formulas:
            self.remove_formula(cell_ref)
        self.formulas[cell_ref] = formula
        refs = all_references(formula, current_sheet, self.max_cells, self.edge_step)

        self.dependencies[cell_ref] = set(refs)

        for ref in refs:
            if ref not in self.dependents:
                self.dependents[ref] = set()
            self.dependents[ref].add(cell_ref)

    def remove_formula(self, cell_ref: str) -> None:
        """Forget a formula cell's outgoing edges.  Its dependents stay."""
        self.formulas.pop(cell_ref, None)
        for ref in self.dependencies.pop(cell_ref, set()):
            readers = self.dependents.get(ref)
            if readers is not None:
                readers.discard(cell_ref)
                if not readers:
                    del self.dependents[ref]

    def _kahn(self) -> tuple[list[str], set[str]]:
        formula_cells = set(self.formulas)

        # Compute in-degrees within formula cells only
        in_degree: dict[str, int] = {}
        for cell in formula_cells:
            in_degree[cell] = len(self.dependencies.get(cell, set()) & formula_cells)

        queue: deque[str] = deque(sorted(c for c in formula_cells if in_degree[c] == 0))
        order: list[str] = []
        while queue:
            cell = queue.popleft()
            order.append(cell)
            for dep in sorted(self.dependents.get(cell, set())):
                if dep in formula_cells:
                    in_degree[dep] -= 1
                    if in_degree[dep] == 0:
                        queue.append(dep)

        return order, formula_cells - set(order)

    def topological_order(self) -> list[str]:
        """Return formula cells in evaluation order (Kahn's algorithm).

        Raises ValueError if a circular reference is detected.
        """
        order, blocked = self._kahn()
        if blocked:
            raise ValueError(f"Circular reference detected involving: {blocked}")
        return order

    def evaluation_order(self) -> tuple[list[str], set[str]]:
        """Like :meth:`topological_order` but never raises.

        Returns ``(order, blocked)``: *blocked* holds the formula cells on a
        cycle or downstream of one, which have no valid evaluation order.
        """
        return self._kahn()

    def affected_cells(self, changed_cells: set[str]) -> list[str]:
        """Find all formula cells affected by changes, in evaluation order.

        Uses BFS on the dependents graph, then filters to topological order.
        Blocked cells (see :meth:`evaluation_order`) come last.
        """
        affected: set[str] = set()
        queue: deque[str] = deque(changed_cells)
        visited: set[str] = set(changed_cells)

        while queue:
            cell = queue.popleft()
            for dep in self.dependents.get(cell, set()):
                if dep not in visited:
                    visited.add(dep)
                    queue.append(dep)
                    if dep in self.formulas:
                        affected.add(dep)

        order, blocked = self._kahn()
        return [c for c in order if c in affected] + sorted(affected & blocked)

    @classmethod
    def from_workbook(
        cls,
        workbook: Workbook,
        max_cells: int | None = None,
        edge_step: int = DEFAULT_EDGE_STEP,
    ) -> DependencyGraph:
        """Build a dependency graph by scanning all sheets for formula cells."""
        graph = cls(max_cells, edge_step)
        for ws in workbook:
            for addr, cell in ws.formula_cells():
                graph.add_formula(f"{ws.title}!{addr}", cell.formula, ws.title)
        return graph
