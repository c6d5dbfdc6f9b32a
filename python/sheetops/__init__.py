"""sheetops - batch edits, circular-reference checks and recompute for workbooks.

Usage::

    from sheetops import Workbook, WorkbookSession

    wb = Workbook()
    session = WorkbookSession(wb)
    session.apply([
        {"kind": "set_cell", "sheet": "Sheet1", "cell": "A1", "value": 10},
        {"kind": "set_cell", "sheet": "Sheet1", "cell": "B1", "formula": "=A1*2"},
    ])
    wb["Sheet1"]["B1"].value   # 20

    wb.save("book.json")
    wb = load_workbook("book.json")
"""

from __future__ import annotations

import json
import os

from sheetops._applier import (
    ApplyResult,
    DiffEntry,
    OperationApplier,
    OpError,
    apply_operations,
    revert_diff,
)
from sheetops._cell import Cell, ComputedValue
from sheetops._config import Settings, settings
from sheetops._errors import (
    BatchError,
    EngineError,
    InvalidAddress,
    OperationError,
    SheetOpsError,
)
from sheetops._operations import (
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
from sheetops._range import Range, expand_range, iter_range, parse_range
from sheetops._recompute import RecomputeAdapter
from sheetops._session import WorkbookSession
from sheetops._staleness import StaleCell, find_stale_cells, is_stale
from sheetops._utils import (
    Address,
    column_index_to_letter,
    column_letter_to_index,
    parse_address,
    to_address,
)
from sheetops._version import __version__
from sheetops._workbook import Workbook
from sheetops._worksheet import Worksheet
from sheetops.calc import (
    CircularReferenceGuard,
    CircularReferenceReport,
    FormulaEngine,
    detect_circular_references,
)

__all__ = [
    "__version__",
    "AddSheet",
    "Address",
    "ApplyResult",
    "BatchError",
    "Cell",
    "CircularReferenceGuard",
    "CircularReferenceReport",
    "ComputedValue",
    "DeleteCols",
    "DeleteRows",
    "DeleteSheet",
    "DiffEntry",
    "EngineError",
    "FillRange",
    "FormatRange",
    "FormulaEngine",
    "InsertCols",
    "InsertRows",
    "InvalidAddress",
    "OpError",
    "Operation",
    "OperationApplier",
    "OperationError",
    "Range",
    "RecomputeAdapter",
    "RenameSheet",
    "SetCell",
    "SetRange",
    "Settings",
    "SheetOpsError",
    "StaleCell",
    "Workbook",
    "WorkbookSession",
    "Worksheet",
    "apply_operations",
    "column_index_to_letter",
    "column_letter_to_index",
    "detect_circular_references",
    "expand_range",
    "find_stale_cells",
    "is_stale",
    "iter_range",
    "load_workbook",
    "parse_address",
    "parse_operations",
    "parse_range",
    "revert_diff",
    "settings",
    "to_address",
]


def load_workbook(filename: str | os.PathLike[str]) -> Workbook:
    """Open a workbook saved with :meth:`Workbook.save`."""
    with open(filename, encoding="utf-8") as fh:
        return Workbook.from_dict(json.load(fh))
