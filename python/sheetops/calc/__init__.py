"""sheetops.calc - Formula evaluation and reference analysis for sheetops workbooks."""

from sheetops.calc._circular import (
    RECOVERY_ACTIONS,
    CircularChain,
    CircularReferenceGuard,
    CircularReferenceReport,
    detect_circular_references,
    find_cycles,
    recovery_operations,
)
from sheetops.calc._evaluator import ENGINE_VERSION, FormulaEngine
from sheetops.calc._functions import ExcelError, FunctionRegistry, RangeValue
from sheetops.calc._graph import DependencyGraph
from sheetops.calc._parser import (
    all_references,
    expand_range,
    parse_references,
    shift_formula_references,
)
from sheetops.calc._protocol import EvaluationEngine

__all__ = [
    "CircularChain",
    "CircularReferenceGuard",
    "CircularReferenceReport",
    "DependencyGraph",
    "ENGINE_VERSION",
    "EvaluationEngine",
    "ExcelError",
    "FormulaEngine",
    "FunctionRegistry",
    "RECOVERY_ACTIONS",
    "RangeValue",
    "all_references",
    "detect_circular_references",
    "expand_range",
    "find_cycles",
    "parse_references",
    "recovery_operations",
    "shift_formula_references",
]
