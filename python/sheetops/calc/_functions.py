"""Builtin function implementations for formula evaluation."""

from __future__ import annotations

import functools
import math
from dataclasses import dataclass
from typing import Any, Callable


# ---------------------------------------------------------------------------
# ExcelError: typed error values that propagate through formula chains
# ---------------------------------------------------------------------------


class ExcelError:
    """Spreadsheet error value that propagates through formula chains.

    Use ``ExcelError.of(code)`` to get a cached singleton for each error code.
    Errors compare equal to their string code (``ExcelError.NA == "#N/A"``).
    """

    __slots__ = ("code",)
    _cache: dict[str, ExcelError] = {}

    NA: ExcelError
    VALUE: ExcelError
    REF: ExcelError
    DIV0: ExcelError
    NUM: ExcelError
    NAME: ExcelError
    CYCLE: ExcelError

    def __init__(self, code: str) -> None:
        self.code = code

    @classmethod
    def of(cls, code: str) -> ExcelError:
        canon = code.upper()
        if canon not in cls._cache:
            cls._cache[canon] = cls(canon)
        return cls._cache[canon]

    def __repr__(self) -> str:
        return self.code

    def __str__(self) -> str:
        return self.code

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ExcelError):
            return self.code == other.code
        if isinstance(other, str):
            return self.code == other.upper()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.code)


# Singletons
ExcelError.NA = ExcelError.of("#N/A")
ExcelError.VALUE = ExcelError.of("#VALUE!")
ExcelError.REF = ExcelError.of("#REF!")
ExcelError.DIV0 = ExcelError.of("#DIV/0!")
ExcelError.NUM = ExcelError.of("#NUM!")
ExcelError.NAME = ExcelError.of("#NAME?")
# Formula sits on (or downstream of) a circular reference
ExcelError.CYCLE = ExcelError.of("#CYCLE!")

ERROR_CODES = frozenset(ExcelError._cache)


def is_error(val: Any) -> bool:
    """Return True if *val* is an ExcelError instance."""
    return isinstance(val, ExcelError)


def first_error(*values: Any) -> ExcelError | None:
    """Return the first ExcelError found in *values* (ranges included), or None."""
    for v in values:
        if isinstance(v, ExcelError):
            return v
        if isinstance(v, RangeValue):
            err = first_error(*v.values)
            if err is not None:
                return err
    return None


# ---------------------------------------------------------------------------
# RangeValue: shape-aware 2D range container
# ---------------------------------------------------------------------------


@dataclass
class RangeValue:
    """A resolved cell range that preserves 2D shape metadata."""

    values: list[Any]
    n_rows: int
    n_cols: int

    def get(self, row: int, col: int) -> Any:
        """Get value at 1-based (row, col) position."""
        if row < 1 or row > self.n_rows or col < 1 or col > self.n_cols:
            return None
        idx = (row - 1) * self.n_cols + (col - 1)
        return self.values[idx] if idx < len(self.values) else None

    def __iter__(self):
        return iter(self.values)

    def __len__(self):
        return len(self.values)


# ---------------------------------------------------------------------------
# Builtins.  Each takes the list of resolved argument values and raises
# ValueError on bad input, which the evaluator turns into #VALUE!.
# ---------------------------------------------------------------------------

_BUILTINS: dict[str, Callable[[list[Any]], Any]] = {}


def _builtin(
    *names: str, min_args: int = 1, max_args: int | None = 1
) -> Callable[[Callable[[list[Any]], Any]], Callable[[list[Any]], Any]]:
    """Register a builtin under *names*, checking the argument count first."""

    def register(func: Callable[[list[Any]], Any]) -> Callable[[list[Any]], Any]:
        @functools.wraps(func)
        def checked(args: list[Any]) -> Any:
            if len(args) < min_args or (max_args is not None and len(args) > max_args):
                raise ValueError(f"{names[0]}: wrong number of arguments ({len(args)})")
            return func(args)

        for name in names:
            _BUILTINS[name] = checked
        return checked

    return register


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _numbers(values: Any) -> list[float]:
    """Numeric arguments as floats.

    Literal booleans count as 1/0; inside ranges only real numbers count.
    Text, blanks and errors are skipped.
    """
    out: list[float] = []
    for v in values:
        if isinstance(v, RangeValue):
            out.extend(float(x) for x in v.values if _is_number(x))
        elif isinstance(v, (list, tuple)):
            out.extend(_numbers(v))
        elif isinstance(v, (bool, int, float)):
            out.append(float(v))
    return out


def _number_arg(args: list[Any], index: int, default: float | None = None) -> float:
    if index >= len(args) and default is not None:
        return default
    nums = _numbers(args[index : index + 1])
    if not nums:
        raise ValueError(f"argument {index + 1} is not a number")
    return nums[0]


def _cells(value: Any) -> list[Any]:
    if isinstance(value, (RangeValue, list, tuple)):
        return list(value)
    return [value]


# Math


@_builtin("SUM", min_args=0, max_args=None)
def _sum(args: list[Any]) -> float:
    return sum(_numbers(args))


@_builtin("PRODUCT", min_args=0, max_args=None)
def _product(args: list[Any]) -> float:
    nums = _numbers(args)
    return math.prod(nums) if nums else 0.0


@_builtin("ABS")
def _abs(args: list[Any]) -> float:
    return abs(_number_arg(args, 0))


@_builtin("INT")
def _int(args: list[Any]) -> float:
    return float(math.floor(_number_arg(args, 0)))


@_builtin("SIGN")
def _sign(args: list[Any]) -> float:
    value = _number_arg(args, 0)
    return float((value > 0) - (value < 0))


@_builtin("SQRT")
def _sqrt(args: list[Any]) -> float | ExcelError:
    value = _number_arg(args, 0)
    return ExcelError.NUM if value < 0 else math.sqrt(value)


@_builtin("MOD", min_args=2, max_args=2)
def _mod(args: list[Any]) -> float | ExcelError:
    number, divisor = _number_arg(args, 0), _number_arg(args, 1)
    if divisor == 0:
        return ExcelError.DIV0
    # sign follows the divisor
    return number - divisor * math.floor(number / divisor)


@_builtin("POWER", min_args=2, max_args=2)
def _power(args: list[Any]) -> float | ExcelError:
    return power(_number_arg(args, 0), _number_arg(args, 1))


def power(base: float, exponent: float) -> float | ExcelError:
    """``base ** exponent`` with spreadsheet error codes."""
    if base < 0 and not float(exponent).is_integer():
        return ExcelError.NUM
    if base == 0 and exponent < 0:
        return ExcelError.DIV0
    try:
        return base ** exponent
    except OverflowError:
        return ExcelError.NUM


def _rounding(step: Callable[[float], float]) -> Callable[[list[Any]], float]:
    """ROUND-style builtin applying *step* to the magnitude of the value."""

    def rounder(args: list[Any]) -> float:
        value = _number_arg(args, 0)
        factor = 10 ** int(_number_arg(args, 1, default=0))
        return math.copysign(step(abs(value) * factor) / factor, value)

    return rounder


# ROUND is half away from zero, not banker's rounding
_builtin("ROUND", max_args=2)(_rounding(lambda x: math.floor(x + 0.5)))
_builtin("ROUNDUP", max_args=2)(_rounding(math.ceil))
_builtin("ROUNDDOWN", max_args=2)(_rounding(math.floor))


# Logic


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        if value.upper() not in ("TRUE", "FALSE"):
            raise ValueError(f"Cannot use {value!r} as a condition")
        return value.upper() == "TRUE"
    if isinstance(value, (int, float)):
        return value != 0
    return bool(value)


def _conditions(args: list[Any]) -> list[bool]:
    return [_truthy(x) for a in args for x in _cells(a) if x is not None]


@_builtin("IF", min_args=2, max_args=3)
def _if(args: list[Any]) -> Any:
    if isinstance(args[0], ExcelError):
        return args[0]
    if _truthy(args[0]):
        return args[1]
    return args[2] if len(args) == 3 else False


@_builtin("IFERROR", min_args=2, max_args=2)
def _iferror(args: list[Any]) -> Any:
    value, fallback = args
    return fallback if isinstance(value, ExcelError) else value


@_builtin("ISERROR")
def _iserror(args: list[Any]) -> bool:
    return isinstance(args[0], ExcelError)


@_builtin("ISBLANK")
def _isblank(args: list[Any]) -> bool:
    return args[0] is None


@_builtin("AND", max_args=None)
def _and(args: list[Any]) -> bool:
    return all(_conditions(args))


@_builtin("OR", max_args=None)
def _or(args: list[Any]) -> bool:
    return any(_conditions(args))


@_builtin("NOT")
def _not(args: list[Any]) -> bool:
    return not _truthy(args[0])


# Statistics


@_builtin("COUNT", min_args=0, max_args=None)
def _count(args: list[Any]) -> float:
    return float(len(_numbers(args)))


@_builtin("COUNTA", min_args=0, max_args=None)
def _counta(args: list[Any]) -> float:
    return float(sum(1 for a in args for x in _cells(a) if x is not None))


@_builtin("MIN", min_args=0, max_args=None)
def _min(args: list[Any]) -> float:
    return min(_numbers(args), default=0.0)


@_builtin("MAX", min_args=0, max_args=None)
def _max(args: list[Any]) -> float:
    return max(_numbers(args), default=0.0)


@_builtin("AVERAGE", min_args=0, max_args=None)
def _average(args: list[Any]) -> float | ExcelError:
    nums = _numbers(args)
    return sum(nums) / len(nums) if nums else ExcelError.DIV0


# Text


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _slice_text(args: list[Any], side: str) -> str | ExcelError:
    text = _as_text(args[0])
    count = int(_number_arg(args, 1, default=1))
    if count < 0:
        return ExcelError.VALUE
    if side == "left":
        return text[:count]
    return text[max(len(text) - count, 0) :]


@_builtin("LEFT", max_args=2)
def _left(args: list[Any]) -> str | ExcelError:
    return _slice_text(args, "left")


@_builtin("RIGHT", max_args=2)
def _right(args: list[Any]) -> str | ExcelError:
    return _slice_text(args, "right")


@_builtin("MID", min_args=3, max_args=3)
def _mid(args: list[Any]) -> str | ExcelError:
    start, count = int(_number_arg(args, 1)), int(_number_arg(args, 2))
    if start < 1 or count < 0:
        return ExcelError.VALUE
    return _as_text(args[0])[start - 1 : start - 1 + count]


@_builtin("LEN")
def _len(args: list[Any]) -> float:
    return float(len(_as_text(args[0])))


@_builtin("CONCATENATE", "CONCAT", max_args=None)
def _concat(args: list[Any]) -> str:
    return "".join(_as_text(x) for a in args for x in _cells(a))


@_builtin("UPPER")
def _upper(args: list[Any]) -> str:
    return _as_text(args[0]).upper()


@_builtin("LOWER")
def _lower(args: list[Any]) -> str:
    return _as_text(args[0]).lower()


@_builtin("TRIM")
def _trim(args: list[Any]) -> str:
    """Strip the ends and collapse inner runs of spaces."""
    return " ".join(_as_text(args[0]).split())


# Functions that see error arguments instead of short-circuiting on them
ERROR_AWARE = frozenset({"IF", "IFERROR", "ISERROR", "ISBLANK", "COUNT", "COUNTA"})


class FunctionRegistry:
    """Registry of callable function implementations.

    Starts with builtins and can be extended with custom functions.
    """

    def __init__(self) -> None:
        self._functions: dict[str, Callable[..., Any]] = dict(_BUILTINS)

    def register(self, name: str, func: Callable[..., Any]) -> None:
        self._functions[name.upper()] = func

    def get(self, name: str) -> Callable[..., Any] | None:
        return self._functions.get(name.upper())

    def has(self, name: str) -> bool:
        return name.upper() in self._functions

    @property
    def supported_functions(self) -> frozenset[str]:
        return frozenset(self._functions.keys())
