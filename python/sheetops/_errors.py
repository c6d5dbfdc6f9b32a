"""Exception types raised by sheetops.

Per-operation failures (:class:`OperationError`) are caught by the applier
and recorded in the batch result; they never escape ``apply``.  Everything
else propagates to the caller.
"""

from __future__ import annotations


class SheetOpsError(Exception):
    """Base class for all sheetops errors."""


class InvalidAddress(SheetOpsError, ValueError):
    """Raised when an A1 reference or range string cannot be parsed."""


class OperationError(SheetOpsError):
    """A structural validation error local to one operation.

    Examples: unknown sheet, bad address, formula without a leading ``=``,
    a list where a scalar is required, deleting the last sheet.
    """


class BatchError(SheetOpsError):
    """The operation list itself is malformed.

    Raised before any mutation happens, so the workbook is left untouched.
    """


class EngineError(SheetOpsError):
    """The evaluation engine could not load or recompute the workbook."""
