"""EvaluationEngine protocol."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sheetops._cell import Cell
    from sheetops._workbook import Workbook


@runtime_checkable
class EvaluationEngine(Protocol):
    """Protocol for formula evaluation engines.

    One engine instance serves one workbook.  Cell references use the
    canonical ``"SheetName!A1"`` form throughout.  Evaluation errors are
    returned as values (see :class:`sheetops.calc.ExcelError`); only a
    failure of the engine itself raises.
    """

    @property
    def version(self) -> str:
        """Build identifier stamped on every computed value."""
        ...

    def load(self, workbook: Workbook) -> None:
        """Replace the engine state with *workbook* and evaluate everything."""
        ...

    def set_cells(self, changes: Mapping[str, Cell | None]) -> dict[str, Any]:
        """Apply edited cells (None = cleared) and recompute incrementally.

        Returns cell_ref -> value for every edited formula cell and every
        transitive dependent formula cell.
        """
        ...

    def value(self, cell_ref: str) -> Any:
        """Current value of *cell_ref* (None when empty)."""
        ...
