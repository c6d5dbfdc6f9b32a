"""FormulaEngine: recursive expression evaluator for spreadsheet formulas.

A recursive descent evaluator that handles balanced parentheses, operator
precedence, and arbitrarily nested expressions like
``=ROUND(SUM(A1:A5)*IF(B1>0,1.1,1.0),2)``.  Functions missing from the
builtin registry fall back to the ``formulas`` library's implementations.

Values are kept per canonical ``"Sheet!A1"`` reference; edits are applied
incrementally through :meth:`FormulaEngine.set_cells`, which re-evaluates
only the edited formulas and their transitive dependents.
"""

from __future__ import annotations

import inspect
import logging
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sheetops._config import Settings, settings as default_settings
from sheetops._version import __version__
from sheetops.calc._functions import (
    ERROR_AWARE,
    ERROR_CODES,
    ExcelError,
    FunctionRegistry,
    RangeValue,
    first_error,
    power,
)
from sheetops.calc._graph import DependencyGraph
from sheetops.calc._parser import expand_range, normalize_ref, range_shape

if TYPE_CHECKING:
    from sheetops._cell import Cell
    from sheetops._workbook import Workbook

logger = logging.getLogger(__name__)

ENGINE_VERSION = f"sheetops-calc/{__version__}"

_NUMBER_RE = re.compile(r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_INT_RE = re.compile(r"\d+")


class _Unsupported(Exception):
    """A function the builtin registry does not implement."""


# ---------------------------------------------------------------------------
# Expression parsing helpers
# ---------------------------------------------------------------------------


def _find_matching_paren(expr: str, start: int) -> int:
    """Index of the ``')'`` matching the ``'('`` at *expr[start]*, or -1."""
    depth = 1
    i = start + 1
    in_string = False
    while i < len(expr):
        ch = expr[i]
        if ch == '"':
            in_string = not in_string
        elif not in_string:
            if ch == '(':
                depth += 1
            elif ch == ')':
                depth -= 1
                if depth == 0:
                    return i
        i += 1
    return -1


def _match_function_call(expr: str) -> tuple[str, str] | None:
    """If *expr* is exactly ``FUNC(balanced_args)``, return ``(name, args_str)``.

    ``SUM(A1:A5)*2`` is NOT matched (there's trailing content after the
    close-paren).
    """
    m = re.match(r'^([A-Z][A-Z0-9_.]*)\s*\(', expr, re.IGNORECASE)
    if not m:
        return None
    open_idx = m.end() - 1
    close_idx = _find_matching_paren(expr, open_idx)
    if close_idx >= 0 and close_idx == len(expr) - 1:
        return (m.group(1), expr[open_idx + 1 : close_idx])
    return None


_PASSES: tuple[tuple[str, ...], ...] = (
    ("cmp",),
    ("+", "-"),
    ("&",),
    ("*", "/"),
    ("^",),
)


def _find_top_level_split(expr: str) -> tuple[str, str, str] | None:
    """Find the rightmost lowest-precedence binary operator at paren depth 0.

    Precedence (lowest to highest)::

        1. comparison     (>=, <=, <>, >, <, =)
        2. additive       (+, -)
        3. concatenation  (&)
        4. multiplicative (*, /)
        5. exponent       (^)

    Right-to-left scan produces left-to-right associativity.  Text inside
    double-quoted strings and single-quoted sheet names is skipped.
    Returns ``(left, op, right)`` or ``None``.
    """
    length = len(expr)

    for ops in _PASSES:
        depth = 0
        in_string = False
        in_sheet = False
        i = length - 1
        while i > 0:
            ch = expr[i]

            if ch == '"' and not in_sheet:
                in_string = not in_string
                i -= 1
                continue
            if ch == "'" and not in_string:
                in_sheet = not in_sheet
                i -= 1
                continue
            if in_string or in_sheet:
                i -= 1
                continue

            if ch == ')':
                depth += 1
                i -= 1
                continue
            if ch == '(':
                depth -= 1
                i -= 1
                continue
            if depth != 0:
                i -= 1
                continue

            matched_op: str | None = None
            op_start = i

            if ops == ("cmp",):
                if i >= 1 and expr[i - 1 : i + 1] in (">=", "<=", "<>"):
                    matched_op = expr[i - 1 : i + 1]
                    op_start = i - 1
                elif ch in ('>', '<'):
                    matched_op = ch
                elif ch == '=':
                    matched_op = ch
            elif ch in ops:
                matched_op = ch

            if matched_op is not None:
                if op_start <= 0:
                    i -= 1
                    continue
                # A binary operator needs an operand on its left
                j = op_start - 1
                while j >= 0 and expr[j] == ' ':
                    j -= 1
                if j < 0 or expr[j] in ('(', ',', '+', '-', '*', '/', '^', '&', '>', '<', '='):
                    i -= 1
                    continue
                # Skip +/- that are part of scientific notation (e.g. 2.5e-1)
                if matched_op in ('+', '-') and j >= 1 and expr[j] in ('e', 'E'):
                    if expr[j - 1].isdigit():
                        i -= 1
                        continue

                left = expr[:op_start].strip()
                right = expr[op_start + len(matched_op) :].strip()
                if left and right:
                    return (left, matched_op, right)

            i -= 1

    return None


def _has_top_level_colon(expr: str) -> bool:
    """``True`` when *expr* contains ``:`` at paren depth 0 (range ref)."""
    depth = 0
    in_string = False
    for ch in expr:
        if ch == '"':
            in_string = not in_string
        elif in_string:
            continue
        elif ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
        elif ch == ':' and depth == 0:
            return True
    return False


def _split_top_level_args(args_str: str) -> list[str]:
    """Split on commas at depth 0, respecting string literals."""
    args: list[str] = []
    depth = 0
    in_string = False
    current: list[str] = []
    for ch in args_str:
        if ch == '"':
            in_string = not in_string
        elif not in_string:
            if ch == '(':
                depth += 1
            elif ch == ')':
                depth -= 1
            elif ch == ',' and depth == 0:
                args.append("".join(current).strip())
                current = []
                continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail or args:
        args.append(tail)
    return args


def _to_number(value: Any) -> float | int | ExcelError:
    """Arithmetic coercion: empty -> 0, TRUE -> 1, numeric text -> number."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return ExcelError.VALUE
    return ExcelError.VALUE


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _binary_op(left: Any, op: str, right: Any) -> Any:
    """Evaluate an arithmetic or string binary operation."""
    err = first_error(left, right)
    if err is not None:
        return err
    if op == '&':
        return _text(left) + _text(right)
    lnum = _to_number(left)
    rnum = _to_number(right)
    err = first_error(lnum, rnum)
    if err is not None:
        return err
    if op == '+':
        return lnum + rnum
    if op == '-':
        return lnum - rnum
    if op == '*':
        return lnum * rnum
    if op == '/':
        return ExcelError.DIV0 if rnum == 0 else lnum / rnum
    if op == '^':
        return power(lnum, rnum)
    return ExcelError.VALUE


def _compare(left: Any, right: Any, op: str) -> Any:
    """Evaluate a comparison operation.

    Numbers compare numerically; text compares case-insensitively.  Empty
    cells compare as 0 against numbers and as "" against text.
    """
    err = first_error(left, right)
    if err is not None:
        return err
    if isinstance(left, (int, float)) and right is None:
        right = 0
    if isinstance(right, (int, float)) and left is None:
        left = 0
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        lv: Any = left
        rv: Any = right
    else:
        lv = _text(left).lower()
        rv = _text(right).lower()
    if op == '>':
        return lv > rv
    if op == '<':
        return lv < rv
    if op == '>=':
        return lv >= rv
    if op == '<=':
        return lv <= rv
    if op == '=':
        return lv == rv
    if op == '<>':
        return lv != rv
    return False


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class FormulaEngine:
    """Evaluates the formulas of one workbook.

    Usage::

        engine = FormulaEngine()
        engine.load(workbook)
        engine.set_cells({"Sheet1!A1": Cell(raw=42)})
        engine.value("Sheet1!B1")
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or default_settings
        self._cell_values: dict[str, Any] = {}
        self._graph = DependencyGraph()
        self._functions = FunctionRegistry()
        self._compiled_cache: dict[str, Any] = {}
        self._sheets: frozenset[str] | None = None
        self._loaded = False

    @property
    def version(self) -> str:
        return ENGINE_VERSION

    @property
    def functions(self) -> FunctionRegistry:
        return self._functions

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    def load(self, workbook: Workbook) -> None:
        """Scan workbook, store cell values, build dependency graph, evaluate."""
        self._cell_values.clear()
        self._graph = DependencyGraph()
        self._sheets = frozenset(workbook.sheetnames)

        for ws in workbook:
            for addr, cell in ws.iter_cells():
                cell_ref = f"{ws.title}!{addr}"
                if cell.formula is not None:
                    self._graph.add_formula(cell_ref, cell.formula, ws.title)
                elif cell.raw is not None:
                    self._cell_values[cell_ref] = cell.raw

        self._loaded = True
        self.calculate()
        logger.debug(
            "Loaded %d cells (%d formulas)", len(self._cell_values), len(self._graph.formulas)
        )

    def calculate(self) -> dict[str, Any]:
        """Evaluate all formulas in topological order.

        Returns dict of cell_ref -> computed value for formula cells.
        """
        if not self._loaded:
            raise RuntimeError("Call load() before calculate()")
        order, blocked = self._graph.evaluation_order()
        return self._evaluate_cells(order + sorted(blocked), blocked)

    def set_cells(self, changes: Mapping[str, Cell | None]) -> dict[str, Any]:
        """Apply edited cells and recompute what they affect."""
        if not self._loaded:
            raise RuntimeError("Call load() before set_cells()")

        edited_formulas: set[str] = set()
        for cell_ref, cell in changes.items():
            self._graph.remove_formula(cell_ref)
            self._cell_values.pop(cell_ref, None)
            if cell is None:
                continue
            if cell.formula is not None:
                self._graph.add_formula(cell_ref, cell.formula, self._sheet_from_ref(cell_ref))
                edited_formulas.add(cell_ref)
            elif cell.raw is not None:
                self._cell_values[cell_ref] = cell.raw

        order, blocked = self._graph.evaluation_order()
        targets = edited_formulas | set(self._graph.affected_cells(set(changes)))
        sequence = [c for c in order if c in targets] + sorted(targets & blocked)
        return self._evaluate_cells(sequence, blocked)

    def value(self, cell_ref: str) -> Any:
        return self._cell_values.get(cell_ref)

    def _evaluate_cells(self, sequence: list[str], blocked: set[str]) -> dict[str, Any]:
        results: dict[str, Any] = {}
        for cell_ref in sequence:
            if cell_ref in blocked:
                value: Any = ExcelError.CYCLE
            else:
                value = self._evaluate_formula(cell_ref, self._graph.formulas[cell_ref])
            self._cell_values[cell_ref] = value
            results[cell_ref] = value
        if blocked:
            logger.debug("%d formula cells blocked by circular references", len(blocked))
        return results

    # ------------------------------------------------------------------
    # Formula evaluation (recursive descent)
    # ------------------------------------------------------------------

    def evaluate(self, formula: str, sheet: str = "Sheet1") -> Any:
        """Evaluate a standalone formula against the loaded values."""
        return self._evaluate_formula(f"{sheet}!A1", formula)

    def _evaluate_formula(self, cell_ref: str, formula: str) -> Any:
        """Evaluate a single formula string (starting with ``=``).

        Tries the builtin recursive descent evaluator first.  Unsupported
        functions fall back to the ``formulas`` library.
        """
        body = formula.strip()
        if body.startswith('='):
            body = body[1:]
        sheet = self._sheet_from_ref(cell_ref)
        try:
            result = self._eval_expr(body.strip(), sheet)
        except _Unsupported as exc:
            if not self._settings.use_formulas_fallback:
                logger.debug("Unsupported function %s in %s", exc, cell_ref)
                return ExcelError.NAME
            result = self._formulas_fallback(formula, sheet)
            if result is None:
                logger.debug("Cannot evaluate formula %r in %s", formula, cell_ref)
                return ExcelError.NAME
            return result

        if isinstance(result, RangeValue):
            return result.values[0] if len(result) == 1 else ExcelError.VALUE
        # A formula that reads an empty cell shows 0
        return 0 if result is None else result

    def _eval_expr(self, expr: str, sheet: str) -> Any:
        """Recursively evaluate an expression (no leading ``=``).

        Dispatch order (first match wins):

        1. Binary/comparison split at top level (paren-aware, precedence-correct)
        2. Parenthesized sub-expression ``(...)``
        3. Function call ``FUNC(balanced_args)``
        4. Unary minus / plus
        5. Numeric literal
        6. String literal
        7. Boolean literal (error literals are checked up front)
        8. Range or cell reference
        """
        expr = expr.strip()
        if not expr:
            return None
        upper = expr.upper()
        if upper in ERROR_CODES:
            return ExcelError.of(upper)

        # 1. Binary split
        split = _find_top_level_split(expr)
        if split:
            left_str, op, right_str = split
            left_val = self._scalar(self._eval_expr(left_str, sheet))
            right_val = self._scalar(self._eval_expr(right_str, sheet))
            if op in ('+', '-', '*', '/', '&', '^'):
                return _binary_op(left_val, op, right_val)
            return _compare(left_val, right_val, op)

        # 2. Parenthesized sub-expression
        if expr.startswith('('):
            close = _find_matching_paren(expr, 0)
            if close == len(expr) - 1:
                return self._eval_expr(expr[1:close], sheet)

        # 3. Function call
        func = _match_function_call(expr)
        if func:
            return self._eval_function(func[0].upper(), func[1], sheet)

        # 4. Unary minus / plus
        if expr.startswith('-'):
            val = _to_number(self._scalar(self._eval_expr(expr[1:], sheet)))
            return val if isinstance(val, ExcelError) else -val
        if expr.startswith('+'):
            return self._eval_expr(expr[1:], sheet)

        # 5. Numeric literal
        if _NUMBER_RE.fullmatch(expr):
            return int(expr) if _INT_RE.fullmatch(expr) else float(expr)

        # 6. String literal
        if len(expr) >= 2 and expr[0] == '"' and expr[-1] == '"':
            return expr[1:-1].replace('""', '"')

        # 7. Boolean literal
        if upper == "TRUE":
            return True
        if upper == "FALSE":
            return False

        # 8. Reference
        if _has_top_level_colon(expr):
            return self._resolve_range_2d(expr, sheet)
        return self._resolve_cell_ref(expr, sheet)

    @staticmethod
    def _scalar(value: Any) -> Any:
        """Operators take the single value of a one-cell range."""
        if isinstance(value, RangeValue):
            return value.values[0] if len(value) == 1 else ExcelError.VALUE
        return value

    # ------------------------------------------------------------------
    # Reference resolution
    # ------------------------------------------------------------------

    def _resolve_cell_ref(self, expr: str, sheet: str) -> Any:
        """Resolve a cell reference string to its stored value."""
        ref = normalize_ref(expr, sheet)
        if ref is None or ':' in ref:
            # A bare word that is not a reference: unknown name
            return ExcelError.NAME
        if not self._has_sheet(ref):
            return ExcelError.REF
        return self._cell_values.get(ref)

    def _qualified_range(self, arg: str, sheet: str) -> str | None:
        ref = normalize_ref(arg, sheet)
        if ref is None or ':' not in ref:
            return None
        return ref

    def _resolve_range(self, arg: str, sheet: str) -> list[Any]:
        """Resolve a range like ``A1:A5`` to a flat list of cell values."""
        range_ref = self._qualified_range(arg, sheet)
        if range_ref is None:
            return []
        return [self._cell_values.get(c) for c in expand_range(range_ref)]

    def _resolve_range_2d(self, arg: str, sheet: str) -> RangeValue | ExcelError:
        """Resolve a range to a :class:`RangeValue` preserving 2D shape."""
        range_ref = self._qualified_range(arg, sheet)
        if range_ref is None:
            return ExcelError.REF if "#REF!" in arg.upper() else ExcelError.NAME
        if not self._has_sheet(range_ref):
            return ExcelError.REF
        n_rows, n_cols = range_shape(range_ref)
        values = [self._cell_values.get(c) for c in expand_range(range_ref)]
        return RangeValue(values=values, n_rows=n_rows, n_cols=n_cols)

    # ------------------------------------------------------------------
    # Function dispatch
    # ------------------------------------------------------------------

    def _eval_function(self, func_name: str, args_str: str, sheet: str) -> Any:
        """Evaluate a function call with resolved arguments.

        Error arguments short-circuit unless the function inspects errors
        itself (IF, IFERROR, ...).  A builtin raising ValueError yields
        ``#VALUE!``.
        """
        func = self._functions.get(func_name)
        if func is None:
            raise _Unsupported(func_name)
        args = [self._eval_expr(a, sheet) for a in _split_top_level_args(args_str)]
        if func_name not in ERROR_AWARE:
            err = first_error(*args)
            if err is not None:
                return err
        try:
            return func(args)
        except (ValueError, TypeError, IndexError, ZeroDivisionError) as e:
            logger.debug("Error evaluating %s: %s", func_name, e)
            return ExcelError.VALUE

    # ------------------------------------------------------------------
    # formulas library fallback
    # ------------------------------------------------------------------

    def _formulas_fallback(self, formula: str, sheet: str) -> Any:
        """Evaluate a formula via the ``formulas`` library.

        Compiles the formula into a callable, resolves its cell reference
        parameters from ``_cell_values``, and returns the scalar result.
        """
        import formulas as fm
        import numpy as np

        compiled = self._compiled_cache.get(formula)
        if compiled is None:
            try:
                result = fm.Parser().ast(formula)
                if result and len(result) > 1:
                    compiled = result[1].compile()
                    self._compiled_cache[formula] = compiled
            except Exception:
                logger.debug("formulas: cannot compile %r", formula)
                return None
        if compiled is None:
            return None

        # The compiled function's parameters name the references it reads
        try:
            params = list(inspect.signature(compiled).parameters.keys())
        except (ValueError, TypeError):
            params = []

        args: list[Any] = []
        for param in params:
            if ':' in param:
                range_ref = self._qualified_range(param, sheet)
                values = self._resolve_range(param, sheet)
                flat = np.array([v if v is not None else 0 for v in values])
                if range_ref is not None:
                    n_rows, n_cols = range_shape(range_ref)
                    if n_cols > 1 and flat.size == n_rows * n_cols:
                        flat = flat.reshape(n_rows, n_cols)
                args.append(flat)
            else:
                val = self._resolve_cell_ref(param, sheet)
                if isinstance(val, bool):
                    args.append(val)
                elif isinstance(val, (int, float)):
                    args.append(np.float64(val))
                elif val is None:
                    args.append(np.float64(0))
                else:
                    args.append(val)

        try:
            raw = compiled(*args)
        except Exception as e:
            logger.debug("formulas: error evaluating %r: %s", formula, e)
            return None
        return self._normalize_formulas_result(raw)

    @staticmethod
    def _normalize_formulas_result(raw: Any) -> Any:
        """Convert a ``formulas`` library result to a plain Python value."""
        if raw is None:
            return None
        if hasattr(raw, 'shape') and hasattr(raw, 'flat'):
            if raw.size != 1:
                return ExcelError.VALUE
            raw = raw.flat[0]
        if type(raw).__name__ == 'XlError':
            return ExcelError.of(str(raw))
        if hasattr(raw, 'item'):
            raw = raw.item()
        if isinstance(raw, float) and raw.is_integer():
            return int(raw)
        return raw

    def _has_sheet(self, ref: str) -> bool:
        return self._sheets is None or self._sheet_from_ref(ref) in self._sheets

    @staticmethod
    def _sheet_from_ref(cell_ref: str) -> str:
        """Extract sheet name from a canonical cell reference."""
        return cell_ref.rsplit('!', 1)[0]
