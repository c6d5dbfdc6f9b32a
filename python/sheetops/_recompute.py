"""RecomputeAdapter: keeps cached computed values in step with the engine."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from sheetops._cell import ComputedValue
from sheetops._errors import EngineError
from sheetops._range import Range
from sheetops._utils import Address, parse_address
from sheetops.calc._functions import ExcelError
from sheetops.calc._parser import iter_references

if TYPE_CHECKING:
    from sheetops._cell import Cell
    from sheetops._workbook import Workbook
    from sheetops.calc._protocol import EvaluationEngine

logger = logging.getLogger(__name__)

RECOMPUTE_MODES = ("sync", "deferred")


def to_computed(value: Any, engine_version: str) -> ComputedValue:
    """Wrap an engine result as a :class:`ComputedValue`."""
    if isinstance(value, ExcelError):
        return ComputedValue(value=None, type="error", engine_version=engine_version, error=value.code)
    if isinstance(value, bool):
        return ComputedValue(value=value, type="boolean", engine_version=engine_version)
    if isinstance(value, (int, float)):
        return ComputedValue(value=value, type="number", engine_version=engine_version)
    if value is None:
        return ComputedValue(value=None, type="empty", engine_version=engine_version)
    return ComputedValue(value=str(value), type="string", engine_version=engine_version)


def _lookup(workbook: Workbook, cell_ref: str) -> Cell | None:
    sheet, a1 = cell_ref.rsplit("!", 1)
    if sheet not in workbook:
        return None
    return workbook[sheet].get(parse_address(a1))


class RecomputeAdapter:
    """Pushes edits into an :class:`EvaluationEngine` and caches its results.

    One adapter serves one workbook.  The engine is fully reloaded the
    first time it sees a workbook, after structural edits (cell addresses
    moved or sheets changed) and after a deferred sync left it behind.
    """

    def __init__(self, engine: EvaluationEngine) -> None:
        self.engine = engine
        self._loaded_for: Workbook | None = None
        self._dirty = False

    def sync(
        self,
        workbook: Workbook,
        edited: Iterable[str],
        mode: str = "sync",
        structural: bool = False,
    ) -> list[str]:
        """Bring computed caches up to date after *edited* cells changed.

        Returns the refs whose ``computed`` was written (sync) or cleared
        (deferred).
        """
        if mode not in RECOMPUTE_MODES:
            raise ValueError(f"Unknown recompute mode {mode!r}; expected one of {RECOMPUTE_MODES}")
        edited = list(dict.fromkeys(edited))
        if mode == "deferred":
            return self._invalidate(workbook, edited, structural)

        try:
            if self._needs_reload(workbook, structural):
                results = self._reload(workbook)
            else:
                results = self.engine.set_cells({ref: _lookup(workbook, ref) for ref in edited})
        except EngineError:
            raise
        except Exception as exc:
            raise EngineError(f"Evaluation engine failed: {exc}") from exc

        touched = self._store(workbook, results)
        for ref in edited:
            cell = _lookup(workbook, ref)
            if cell is not None and cell.formula is None and cell.computed is not None:
                cell.computed = None
                touched.append(ref)
        logger.debug("Recomputed %d cells for %d edits", len(touched), len(edited))
        return touched

    def reload(self, workbook: Workbook) -> list[str]:
        """Force a full reload and recompute of *workbook*."""
        return self._store(workbook, self._reload(workbook))

    def _needs_reload(self, workbook: Workbook, structural: bool) -> bool:
        return structural or self._dirty or self._loaded_for is not workbook

    def _reload(self, workbook: Workbook) -> dict[str, Any]:
        self.engine.load(workbook)
        self._loaded_for = workbook
        self._dirty = False
        values: dict[str, Any] = {}
        for ws in workbook:
            for addr, _cell in ws.formula_cells():
                ref = f"{ws.title}!{addr}"
                values[ref] = self.engine.value(ref)
        return values

    def _store(self, workbook: Workbook, results: dict[str, Any]) -> list[str]:
        version = self.engine.version
        touched: list[str] = []
        for ref, value in results.items():
            cell = _lookup(workbook, ref)
            if cell is None or cell.formula is None:
                continue
            cell.computed = to_computed(value, version)
            touched.append(ref)
        return touched

    def _invalidate(self, workbook: Workbook, edited: list[str], structural: bool) -> list[str]:
        self._dirty = True
        if structural:
            targets = [
                f"{ws.title}!{addr}" for ws in workbook for addr, _ in ws.formula_cells()
            ]
        else:
            targets = edited + _dependents(workbook, edited)

        cleared: list[str] = []
        for ref in dict.fromkeys(targets):
            cell = _lookup(workbook, ref)
            if cell is not None and cell.computed is not None:
                cell.computed = None
                cleared.append(ref)
        logger.debug("Deferred recompute: cleared %d computed values", len(cleared))
        return cleared


def _dependents(workbook: Workbook, edited: list[str]) -> list[str]:
    """Formula cells that read *edited*, directly or transitively.

    Ranges are tested by containment and never expanded, so a formula over
    a huge range costs the same as one over a single cell.
    """
    reads: dict[str, list[tuple[str, Range]]] = {}
    for ws in workbook:
        for addr, cell in ws.formula_cells():
            reads[f"{ws.title}!{addr}"] = [
                (ref.sheet, Range(ref.start, ref.end or ref.start).normalized())
                for ref in iter_references(cell.formula, ws.title)
            ]

    found: dict[str, None] = {}
    frontier = edited
    while frontier:
        changed = [_split(ref) for ref in frontier]
        frontier = []
        for ref, ranges in reads.items():
            if ref in found:
                continue
            if any(sheet == s and rng.contains(a) for sheet, rng in ranges for s, a in changed):
                found[ref] = None
                frontier.append(ref)
    return [ref for ref in found if ref not in edited]


def _split(cell_ref: str) -> tuple[str, Address]:
    sheet, a1 = cell_ref.rsplit("!", 1)
    return sheet, parse_address(a1)
