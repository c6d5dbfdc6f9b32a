"""Worksheet: ``ws['A1']`` access over a sparse cell map."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from sheetops._cell import Cell, ScalarValue
from sheetops._config import settings
from sheetops._utils import Address, parse_address

if TYPE_CHECKING:
    from sheetops._workbook import Workbook


class Worksheet:
    """A single sheet in a Workbook.

    Cells are stored sparsely by ``(row, col)``.  ``row_count`` and
    ``col_count`` are bookkeeping for insert/delete bounds; they grow
    whenever a cell is written past them.
    """

    __slots__ = ("_workbook", "_title", "_cells", "hidden", "row_count", "col_count")

    def __init__(
        self,
        workbook: Workbook,
        title: str,
        row_count: int | None = None,
        col_count: int | None = None,
        hidden: bool = False,
    ) -> None:
        self._workbook = workbook
        self._title = title
        self._cells: dict[Address, Cell] = {}
        self.hidden = hidden
        self.row_count = row_count if row_count is not None else settings.default_row_count
        self.col_count = col_count if col_count is not None else settings.default_col_count

    @property
    def title(self) -> str:
        return self._title

    @title.setter
    def title(self, value: str) -> None:
        self._workbook.rename_sheet(self._title, value)

    @property
    def workbook(self) -> Workbook:
        return self._workbook

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    def __getitem__(self, key: str) -> Cell:
        """``ws['A1']`` -> Cell (created empty if absent)."""
        addr = parse_address(key)
        return self.cell(addr.row, addr.col)

    def __setitem__(self, key: str, value: ScalarValue) -> None:
        """``ws['A1'] = 42`` or ``ws['B1'] = '=A1*2'``."""
        cell = self[key]
        if isinstance(value, str) and value.startswith("="):
            cell.set_formula(value)
        else:
            cell.set_raw(value)

    def __contains__(self, key: str) -> bool:
        return parse_address(key) in self._cells

    def __len__(self) -> int:
        return len(self._cells)

    def cell(self, row: int, column: int) -> Cell:
        """Get or create a cell by 1-based (row, column)."""
        addr = Address(row, column)
        if addr not in self._cells:
            self.put(addr, Cell())
        return self._cells[addr]

    def get(self, addr: Address) -> Cell | None:
        return self._cells.get(addr)

    def put(self, addr: Address, cell: Cell) -> None:
        self._cells[addr] = cell
        if addr.row > self.row_count:
            self.row_count = addr.row
        if addr.col > self.col_count:
            self.col_count = addr.col

    def remove(self, addr: Address) -> Cell | None:
        return self._cells.pop(addr, None)

    def iter_cells(self) -> Iterator[tuple[Address, Cell]]:
        """Stored cells in row-major order."""
        for addr in sorted(self._cells):
            yield addr, self._cells[addr]

    def formula_cells(self) -> Iterator[tuple[Address, Cell]]:
        for addr, cell in self.iter_cells():
            if cell.formula is not None:
                yield addr, cell

    def max_row(self) -> int:
        return max((a.row for a in self._cells), default=0)

    def max_col(self) -> int:
        return max((a.col for a in self._cells), default=0)

    # ------------------------------------------------------------------
    # Structural shifts
    # ------------------------------------------------------------------

    def shift(self, axis: str, start: int, count: int, delete: bool = False) -> dict[Address, Cell]:
        """Move cells along ``"rows"`` or ``"cols"``.

        Insert (``delete=False``): cells at or after *start* move forward by
        *count*.  Delete: cells in ``[start, start+count)`` are dropped and
        returned; later cells move back by *count*.  Bookkeeping counts are
        adjusted either way.
        """
        by_row = axis == "rows"
        removed: dict[Address, Cell] = {}
        moved: dict[Address, Cell] = {}
        for addr, cell in self._cells.items():
            pos = addr.row if by_row else addr.col
            if delete:
                if start <= pos < start + count:
                    removed[addr] = cell
                    continue
                new_pos = pos - count if pos >= start + count else pos
            else:
                new_pos = pos + count if pos >= start else pos
            moved[Address(new_pos, addr.col) if by_row else Address(addr.row, new_pos)] = cell
        self._cells = moved

        delta = -count if delete else count
        if by_row:
            self.row_count = max(self.row_count + delta, self.max_row(), 1)
        else:
            self.col_count = max(self.col_count + delta, self.max_col(), 1)
        return removed

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self._title,
            "rowCount": self.row_count,
            "colCount": self.col_count,
            "cells": {str(addr): cell.to_dict() for addr, cell in self.iter_cells()},
        }
        if self.hidden:
            out["hidden"] = True
        return out

    @classmethod
    def from_dict(cls, workbook: Workbook, data: dict[str, Any]) -> Worksheet:
        ws = cls(
            workbook,
            data["name"],
            row_count=data.get("rowCount"),
            col_count=data.get("colCount"),
            hidden=bool(data.get("hidden", False)),
        )
        for ref, cell_data in (data.get("cells") or {}).items():
            ws.put(parse_address(ref), Cell.from_dict(cell_data or {}))
        return ws

    def __repr__(self) -> str:
        return f"<Worksheet {self._title!r} cells={len(self._cells)}>"
