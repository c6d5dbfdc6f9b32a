"""Detect computed values produced by a different engine build."""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from sheetops._cell import ComputedValue
    from sheetops._workbook import Workbook


class StaleCell(NamedTuple):
    sheet: str
    cell: str
    engine_version: str  # version that produced the cached value


def is_stale(computed: ComputedValue | None, engine_version: str) -> bool:
    """True when *computed* exists and came from another engine version."""
    return computed is not None and computed.engine_version != engine_version


def find_stale_cells(workbook: Workbook, engine_version: str) -> list[StaleCell]:
    """All formula cells whose cached value is stale, in sheet then row-major order.

    Formula cells with no cached value at all are not reported; they are
    pending rather than stale.
    """
    stale: list[StaleCell] = []
    for ws in workbook:
        for addr, cell in ws.formula_cells():
            if is_stale(cell.computed, engine_version):
                stale.append(StaleCell(ws.title, str(addr), cell.computed.engine_version))
    return stale
