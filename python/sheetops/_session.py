"""WorkbookSession: one workbook paired with its evaluation engine."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sheetops._applier import ApplyResult, OperationApplier, revert_diff
from sheetops._config import Settings, settings as default_settings
from sheetops._recompute import RecomputeAdapter
from sheetops.calc._circular import CircularReferenceGuard
from sheetops.calc._evaluator import FormulaEngine

if TYPE_CHECKING:
    from sheetops._operations import Operation
    from sheetops._workbook import Workbook
    from sheetops.calc._protocol import EvaluationEngine

logger = logging.getLogger(__name__)


class WorkbookSession:
    """Runtime context for editing one workbook.

    Owns the engine handle, so two sessions never share evaluation state.
    Callers serialise access per workbook; there is no locking here.

    Usage::

        session = WorkbookSession(workbook)
        result = session.apply([{"kind": "set_cell", "sheet": "Sheet1",
                                 "cell": "A1", "value": 10}])
        workbook["Sheet1"]["B1"].value
    """

    def __init__(
        self,
        workbook: Workbook,
        engine: EvaluationEngine | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.workbook = workbook
        self.settings = settings or default_settings
        self.engine = engine if engine is not None else FormulaEngine(self.settings)
        self.applier = OperationApplier(self.settings)
        self.guard = CircularReferenceGuard(self.settings)
        self.adapter = RecomputeAdapter(self.engine)

    def apply(
        self,
        operations: list[Operation] | list[dict[str, Any]],
        recompute: str | None = None,
    ) -> ApplyResult:
        """Apply a batch, check for cycles, then update computed values.

        *recompute* is ``"sync"`` or ``"deferred"`` and defaults to
        ``settings.recompute_mode``.
        """
        mode = recompute or self.settings.recompute_mode
        result = self.applier.apply(self.workbook, operations)
        if not result.applied_ops:
            return result

        if self.settings.check_circular:
            result = result.with_circular(self.guard.detect(self.workbook))
        self.adapter.sync(self.workbook, result.edited, mode=mode, structural=result.structural)
        return result

    def undo(self, result: ApplyResult, recompute: str | None = None) -> None:
        """Revert the batch that produced *result* and resync computed values."""
        mode = recompute or self.settings.recompute_mode
        structural = revert_diff(self.workbook, result.diff)
        edited = list(result.edited)
        if not structural:
            edited = [f"{d.sheet}!{d.cell}" for d in result.diff if d.cell is not None]
        self.adapter.sync(self.workbook, edited, mode=mode, structural=structural)
        logger.debug("Undid batch at version %d", result.version)

    def recalculate(self) -> None:
        """Reload the engine and refresh every computed value."""
        self.adapter.reload(self.workbook)
