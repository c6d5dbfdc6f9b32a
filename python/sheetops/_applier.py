"""OperationApplier: partial-success batch application with diff capture.

Operations run in order against a workbook that is mutated in place.  Each
handler validates everything it needs before its first write, so a failing
operation leaves the workbook untouched; its error is recorded and the
batch moves on.  The workbook version is bumped once per batch that
applied at least one operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from sheetops._cell import Cell, is_scalar
from sheetops._config import Settings, settings as default_settings
from sheetops._errors import InvalidAddress, OperationError
from sheetops._operations import (
    OPERATION_KINDS,
    AddSheet,
    DeleteCols,
    DeleteRows,
    DeleteSheet,
    FillRange,
    FormatRange,
    InsertCols,
    InsertRows,
    Operation,
    RenameSheet,
    SetCell,
    SetRange,
    parse_operations,
)
from sheetops._range import Range, iter_range, parse_range
from sheetops._utils import Address, column_index_to_letter, parse_address
from sheetops._worksheet import Worksheet
from sheetops.calc._parser import shift_formula_references

if TYPE_CHECKING:
    from sheetops._workbook import Workbook
    from sheetops.calc._circular import CircularReferenceReport

logger = logging.getLogger(__name__)

_INVALID_SHEET_CHARS = frozenset("[]:*?/\\")
_CELL_KINDS = frozenset({"set_cell", "fill_range", "set_range", "format_range"})


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class DiffEntry(_WireModel):
    """Pre- and post-image of one change.

    Cell-level entries carry cell snapshots in ``before``/``after`` (None
    is an empty cell).  Structural entries leave ``cell`` unset; ``before``
    holds what is needed to reverse the operation.
    """

    op_index: int
    sheet: str | None
    kind: str
    cell: str | None = None
    before: Any = None
    after: Any = None


class OpError(_WireModel):
    op_index: int
    kind: str
    message: str


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of one batch."""

    workbook: Workbook
    success: bool
    applied_ops: int
    errors: tuple[OpError, ...]
    diff: tuple[DiffEntry, ...]
    version: int
    # canonical refs whose raw/formula changed, for recompute
    edited: tuple[str, ...] = ()
    structural: bool = False
    circular: CircularReferenceReport | None = None

    def with_circular(self, report: CircularReferenceReport | None) -> ApplyResult:
        return replace(self, circular=report)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "appliedOps": self.applied_ops,
            "errors": [e.to_payload() for e in self.errors],
            "diff": [d.to_payload() for d in self.diff],
            "version": self.version,
        }
        if self.circular is not None:
            payload["circular"] = self.circular.to_payload()
        return payload


class _OpContext:
    """Changes produced by one operation; merged into the batch on success."""

    __slots__ = ("index", "kind", "diff", "edited", "structural")

    def __init__(self, index: int, kind: str) -> None:
        self.index = index
        self.kind = kind
        self.diff: list[DiffEntry] = []
        self.edited: list[str] = []
        self.structural = False

    def record_cell(
        self,
        ws: Worksheet,
        addr: Address,
        before: dict[str, Any] | None,
        content_changed: bool = True,
    ) -> None:
        cell = ws.get(addr)
        if cell is not None and cell.is_empty():
            ws.remove(addr)
            cell = None
        self.diff.append(DiffEntry(
            op_index=self.index,
            sheet=ws.title,
            kind=self.kind,
            cell=str(addr),
            before=before,
            after=cell.snapshot() if cell is not None else None,
        ))
        if content_changed:
            self.edited.append(f"{ws.title}!{addr}")

    def record_structure(self, sheet: str | None, before: Any, after: Any) -> None:
        self.structural = True
        self.diff.append(DiffEntry(
            op_index=self.index, sheet=sheet, kind=self.kind, before=before, after=after,
        ))


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _sheet(workbook: Workbook, name: str) -> Worksheet:
    if name not in workbook:
        raise OperationError(f"Sheet not found: {name}")
    return workbook[name]


def _content(kind: str, has_value: bool, value: Any, formula: str | None) -> tuple[str, Any]:
    """Resolve value/formula into ``("formula", text)`` or ``("raw", scalar)``.

    A formula wins when both are given.
    """
    if formula is not None:
        if not formula.startswith("=") or len(formula.strip()) < 2:
            raise OperationError(f'Formula must start with "=": {formula!r}')
        return "formula", formula
    if has_value:
        if not is_scalar(value):
            raise OperationError(
                f"Value must be a string, number, boolean or null, got {type(value).__name__}"
            )
        return "raw", value
    raise OperationError(f"{kind} requires a value or a formula")


def _fill_range(text: str, settings: Settings) -> Range:
    rng = parse_range(text).normalized()
    if rng.cell_count > settings.max_fill_cells:
        raise OperationError(
            f"Range {text} has {rng.cell_count} cells (limit {settings.max_fill_cells})"
        )
    return rng


def _check_sheet_name(workbook: Workbook, name: str, settings: Settings) -> None:
    if not name or not name.strip():
        raise OperationError("Sheet name must not be empty")
    if len(name) > settings.max_sheet_name_length:
        raise OperationError(
            f"Sheet name longer than {settings.max_sheet_name_length} characters: {name!r}"
        )
    bad = sorted(set(name) & _INVALID_SHEET_CHARS)
    if bad:
        raise OperationError(f"Sheet name contains invalid characters {''.join(bad)!r}: {name!r}")
    if name in workbook:
        raise OperationError(f"Sheet already exists: {name}")


def _write_content(cell: Cell, content: tuple[str, Any]) -> None:
    what, payload = content
    if what == "formula":
        cell.set_formula(payload)
    else:
        cell.set_raw(payload)


# ---------------------------------------------------------------------------
# Structural helpers
# ---------------------------------------------------------------------------


def _rewrite_references(
    workbook: Workbook,
    target: Worksheet,
    axis: str,
    start: int,
    count: int,
    delete: bool,
) -> dict[str, str]:
    """Shift formula references into *target*; returns ref -> old formula."""
    by_row = axis == "rows"
    originals: dict[str, str] = {}
    for ws in workbook:
        for addr, cell in list(ws.formula_cells()):
            pos = addr.row if by_row else addr.col
            if delete and ws is target and start <= pos < start + count:
                continue  # removed with the band
            new = shift_formula_references(
                cell.formula, ws.title, target.title, axis, start, count, delete
            )
            if new != cell.formula:
                originals[f"{ws.title}!{addr}"] = cell.formula
                cell.set_formula(new)
    return originals


def _restore_formulas(workbook: Workbook, originals: dict[str, str]) -> None:
    for ref, formula in originals.items():
        sheet, a1 = ref.rsplit("!", 1)
        if sheet in workbook:
            addr = parse_address(a1)
            workbook[sheet].cell(addr.row, addr.col).set_formula(formula)


# ---------------------------------------------------------------------------
# Applier
# ---------------------------------------------------------------------------


class OperationApplier:
    """Applies operation batches to workbooks.

    Usage::

        applier = OperationApplier()
        result = applier.apply(workbook, [{"kind": "set_cell", ...}])
        result.to_payload()
    """

    _handlers: dict[str, Callable[[OperationApplier, Workbook, Any, _OpContext], None]]

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or default_settings

    def apply(self, workbook: Workbook, operations: list[Operation] | list[dict[str, Any]]) -> ApplyResult:
        """Apply *operations* in order; see the module docstring for semantics.

        Raises :class:`BatchError` (before any mutation) when the batch
        itself is malformed.
        """
        ops = parse_operations(operations)

        diff: list[DiffEntry] = []
        errors: list[OpError] = []
        edited: dict[str, None] = {}
        structural = False
        applied = 0

        for index, op in enumerate(ops):
            ctx = _OpContext(index, op.kind)
            try:
                self._handlers[op.kind](self, workbook, op, ctx)
            except (OperationError, InvalidAddress) as exc:
                logger.debug("Operation %d (%s) failed: %s", index, op.kind, exc)
                errors.append(OpError(op_index=index, kind=op.kind, message=str(exc)))
                continue
            applied += 1
            diff.extend(ctx.diff)
            edited.update(dict.fromkeys(ctx.edited))
            structural = structural or ctx.structural

        if applied:
            workbook.version += 1

        logger.info(
            "Applied %d/%d operations (%d errors), workbook version %d",
            applied, len(ops), len(errors), workbook.version,
        )
        return ApplyResult(
            workbook=workbook,
            success=not errors,
            applied_ops=applied,
            errors=tuple(errors),
            diff=tuple(diff),
            version=workbook.version,
            edited=tuple(edited),
            structural=structural,
        )

    # ------------------------------------------------------------------
    # Cell-level handlers
    # ------------------------------------------------------------------

    def _set_cell(self, workbook: Workbook, op: SetCell, ctx: _OpContext) -> None:
        ws = _sheet(workbook, op.sheet)
        addr = parse_address(op.cell)
        content = _content(op.kind, op.has_value, op.value, op.formula)

        existing = ws.get(addr)
        before = existing.snapshot() if existing is not None else None
        cell = ws.cell(addr.row, addr.col)
        _write_content(cell, content)
        if op.format:
            cell.merge_style(op.format)
        ctx.record_cell(ws, addr, before)

    def _fill_range(self, workbook: Workbook, op: FillRange, ctx: _OpContext) -> None:
        ws = _sheet(workbook, op.sheet)
        rng = _fill_range(op.range, self.settings)
        what, payload = _content(op.kind, op.has_value, op.value, op.formula)

        for addr in iter_range(rng):
            content: tuple[str, Any] = (what, payload)
            if what == "formula":
                content = (
                    what,
                    payload.replace("{row}", str(addr.row)).replace(
                        "{col}", column_index_to_letter(addr.col)
                    ),
                )
            existing = ws.get(addr)
            before = existing.snapshot() if existing is not None else None
            cell = ws.cell(addr.row, addr.col)
            _write_content(cell, content)
            if op.format:
                cell.merge_style(op.format)
            ctx.record_cell(ws, addr, before)

    def _set_range(self, workbook: Workbook, op: SetRange, ctx: _OpContext) -> None:
        ws = _sheet(workbook, op.sheet)
        rng = _fill_range(op.range, self.settings)
        rows = op.values
        if len(rows) != rng.n_rows or not all(isinstance(r, list) for r in rows):
            raise OperationError(
                f"values must be a list of {rng.n_rows} row lists for range {op.range}"
            )
        for i, row in enumerate(rows):
            if len(row) != rng.n_cols:
                raise OperationError(
                    f"Row {i} of values has {len(row)} items, range {op.range} needs {rng.n_cols}"
                )
            for value in row:
                if not is_scalar(value):
                    raise OperationError(
                        f"Value must be a string, number, boolean or null, got {type(value).__name__}"
                    )

        top, left = rng.start
        for i, row in enumerate(rows):
            for j, value in enumerate(row):
                addr = Address(top + i, left + j)
                existing = ws.get(addr)
                before = existing.snapshot() if existing is not None else None
                cell = ws.cell(addr.row, addr.col)
                if isinstance(value, str) and value.startswith("=") and len(value) > 1:
                    cell.set_formula(value)
                else:
                    cell.set_raw(value)
                ctx.record_cell(ws, addr, before)

    def _format_range(self, workbook: Workbook, op: FormatRange, ctx: _OpContext) -> None:
        ws = _sheet(workbook, op.sheet)
        rng = parse_range(op.range).normalized()
        for addr in iter_range(rng):
            existing = ws.get(addr)
            before = existing.snapshot() if existing is not None else None
            ws.cell(addr.row, addr.col).merge_style(op.format)
            ctx.record_cell(ws, addr, before, content_changed=False)

    # ------------------------------------------------------------------
    # Row / column handlers
    # ------------------------------------------------------------------

    def _insert(self, workbook: Workbook, sheet: str, before: int, count: int, axis: str, ctx: _OpContext) -> None:
        ws = _sheet(workbook, sheet)
        if count <= 0:
            raise OperationError(f"count must be positive, got {count}")
        if before < 1:
            raise OperationError(f"Invalid {axis[:-1]} number: {before}")

        undo = {"rowCount": ws.row_count, "colCount": ws.col_count}
        undo["formulas"] = _rewrite_references(workbook, ws, axis, before, count, delete=False)
        ws.shift(axis, before, count)
        ctx.record_structure(ws.title, undo, {"axis": axis, "start": before, "count": count})

    def _delete(self, workbook: Workbook, sheet: str, start: int, count: int, axis: str, ctx: _OpContext) -> None:
        ws = _sheet(workbook, sheet)
        if count <= 0:
            raise OperationError(f"count must be positive, got {count}")
        limit = ws.row_count if axis == "rows" else ws.col_count
        if start < 1 or start + count - 1 > limit:
            raise OperationError(
                f"Cannot delete {axis} {start}-{start + count - 1}: sheet {ws.title} has {limit} {axis}"
            )

        undo: dict[str, Any] = {"rowCount": ws.row_count, "colCount": ws.col_count}
        undo["formulas"] = _rewrite_references(workbook, ws, axis, start, count, delete=True)
        removed = ws.shift(axis, start, count, delete=True)
        undo["cells"] = {str(a): c.snapshot() for a, c in sorted(removed.items()) if not c.is_empty()}
        ctx.record_structure(ws.title, undo, {"axis": axis, "start": start, "count": count})

    def _insert_rows(self, workbook: Workbook, op: InsertRows, ctx: _OpContext) -> None:
        self._insert(workbook, op.sheet, op.before, op.count, "rows", ctx)

    def _insert_cols(self, workbook: Workbook, op: InsertCols, ctx: _OpContext) -> None:
        self._insert(workbook, op.sheet, op.before, op.count, "cols", ctx)

    def _delete_rows(self, workbook: Workbook, op: DeleteRows, ctx: _OpContext) -> None:
        self._delete(workbook, op.sheet, op.start, op.count, "rows", ctx)

    def _delete_cols(self, workbook: Workbook, op: DeleteCols, ctx: _OpContext) -> None:
        self._delete(workbook, op.sheet, op.start, op.count, "cols", ctx)

    # ------------------------------------------------------------------
    # Sheet handlers
    # ------------------------------------------------------------------

    def _add_sheet(self, workbook: Workbook, op: AddSheet, ctx: _OpContext) -> None:
        _check_sheet_name(workbook, op.name, self.settings)
        if len(workbook) >= self.settings.max_sheets:
            raise OperationError(f"Maximum number of sheets ({self.settings.max_sheets}) reached")
        workbook.create_sheet(
            op.name,
            row_count=self.settings.default_row_count,
            col_count=self.settings.default_col_count,
        )
        ctx.record_structure(op.name, None, {"name": op.name})

    def _rename_sheet(self, workbook: Workbook, op: RenameSheet, ctx: _OpContext) -> None:
        _sheet(workbook, op.old_name)
        if op.new_name != op.old_name:
            _check_sheet_name(workbook, op.new_name, self.settings)
        workbook.rename_sheet(op.old_name, op.new_name)
        ctx.record_structure(op.new_name, {"name": op.old_name}, {"name": op.new_name})

    def _delete_sheet(self, workbook: Workbook, op: DeleteSheet, ctx: _OpContext) -> None:
        _sheet(workbook, op.name)
        if len(workbook) == 1:
            raise OperationError("Cannot delete the last sheet")
        index = workbook.index(op.name)
        was_active = workbook.active_sheet == op.name
        ws = workbook.remove_sheet(op.name)
        ctx.record_structure(
            op.name,
            {"index": index, "active": was_active, "sheet": ws.to_dict()},
            None,
        )


OperationApplier._handlers = {
    "set_cell": OperationApplier._set_cell,
    "fill_range": OperationApplier._fill_range,
    "set_range": OperationApplier._set_range,
    "insert_rows": OperationApplier._insert_rows,
    "insert_cols": OperationApplier._insert_cols,
    "delete_rows": OperationApplier._delete_rows,
    "delete_cols": OperationApplier._delete_cols,
    "add_sheet": OperationApplier._add_sheet,
    "rename_sheet": OperationApplier._rename_sheet,
    "delete_sheet": OperationApplier._delete_sheet,
    "format_range": OperationApplier._format_range,
}

if set(OperationApplier._handlers) != OPERATION_KINDS:
    raise RuntimeError(
        "Operation handlers out of sync with the schema: "
        f"{sorted(OPERATION_KINDS.symmetric_difference(OperationApplier._handlers))}"
    )


def apply_operations(
    workbook: Workbook,
    operations: list[Operation] | list[dict[str, Any]],
    settings: Settings | None = None,
) -> ApplyResult:
    """Module-level shortcut for ``OperationApplier(settings).apply(...)``."""
    return OperationApplier(settings).apply(workbook, operations)


# ---------------------------------------------------------------------------
# Undo
# ---------------------------------------------------------------------------


def _revert_cell(workbook: Workbook, entry: DiffEntry) -> None:
    ws = workbook[entry.sheet]
    addr = parse_address(entry.cell)
    if entry.before is None:
        ws.remove(addr)
    else:
        ws.put(addr, Cell.from_snapshot(entry.before))


def _revert_shift(workbook: Workbook, entry: DiffEntry) -> None:
    ws = workbook[entry.sheet]
    undo, done = entry.before, entry.after
    axis, start, count = done["axis"], done["start"], done["count"]
    if entry.kind.startswith("insert"):
        ws.shift(axis, start, count, delete=True)
    else:
        ws.shift(axis, start, count)
        for a1, snap in undo.get("cells", {}).items():
            ws.put(parse_address(a1), Cell.from_snapshot(snap))
    _restore_formulas(workbook, undo["formulas"])
    ws.row_count = undo["rowCount"]
    ws.col_count = undo["colCount"]


def _revert_add_sheet(workbook: Workbook, entry: DiffEntry) -> None:
    workbook.remove_sheet(entry.after["name"])


def _revert_rename_sheet(workbook: Workbook, entry: DiffEntry) -> None:
    workbook.rename_sheet(entry.after["name"], entry.before["name"])


def _revert_delete_sheet(workbook: Workbook, entry: DiffEntry) -> None:
    undo = entry.before
    workbook.insert_sheet(Worksheet.from_dict(workbook, undo["sheet"]), undo["index"])
    if undo["active"]:
        workbook.active_sheet = undo["sheet"]["name"]


_REVERTERS: dict[str, Callable[[Workbook, DiffEntry], None]] = {
    "set_cell": _revert_cell,
    "fill_range": _revert_cell,
    "set_range": _revert_cell,
    "format_range": _revert_cell,
    "insert_rows": _revert_shift,
    "insert_cols": _revert_shift,
    "delete_rows": _revert_shift,
    "delete_cols": _revert_shift,
    "add_sheet": _revert_add_sheet,
    "rename_sheet": _revert_rename_sheet,
    "delete_sheet": _revert_delete_sheet,
}

if set(_REVERTERS) != OPERATION_KINDS:
    raise RuntimeError(
        "Diff reverters out of sync with the schema: "
        f"{sorted(OPERATION_KINDS.symmetric_difference(_REVERTERS))}"
    )


def revert_diff(workbook: Workbook, diff: list[DiffEntry] | tuple[DiffEntry, ...]) -> bool:
    """Undo a batch by replaying its diff backwards.

    Returns True when any entry was structural (the caller should reload
    its engine).  The workbook version is bumped once when *diff* is not
    empty, since an undo is itself a change.
    """
    structural = False
    for entry in reversed(diff):
        _REVERTERS[entry.kind](workbook, entry)
        structural = structural or entry.kind not in _CELL_KINDS
    if diff:
        workbook.version += 1
        logger.info("Reverted %d diff entries, workbook version %d", len(diff), workbook.version)
    return structural
