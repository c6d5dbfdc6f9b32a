"""A1 address arithmetic.

Columns use bijective base-26 letters (A..Z, AA..AZ, BA.., ...) with no
upper bound.  Rows and columns are 1-based.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from sheetops._errors import InvalidAddress

_A1_RE = re.compile(r"^([A-Za-z]+)([0-9]+)$")
_ABS_A1_RE = re.compile(r"^\$?([A-Za-z]+)\$?([0-9]+)$")
_LETTERS_RE = re.compile(r"^[A-Za-z]+$")


class Address(NamedTuple):
    """A 1-based (row, col) coordinate.  Tuple ordering is row-major."""

    row: int
    col: int

    def __str__(self) -> str:
        return to_address(self.row, self.col)


def column_index_to_letter(index: int) -> str:
    """Convert a 1-based column index to letters (1 -> A, 27 -> AA)."""
    if index < 1:
        raise InvalidAddress(f"Column index must be positive, got {index}")
    chunks: list[str] = []
    current = index
    while current > 0:
        current, rem = divmod(current - 1, 26)
        chunks.append(chr(ord("A") + rem))
    return "".join(reversed(chunks))


def column_letter_to_index(letters: str) -> int:
    """Convert column letters to a 1-based index (A -> 1, AA -> 27)."""
    if not _LETTERS_RE.match(letters):
        raise InvalidAddress(f"Invalid column label: {letters!r}")
    index = 0
    for char in letters.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index


def to_address(row: int, col: int) -> str:
    """``(3, 28)`` -> ``"AB3"``."""
    if row < 1:
        raise InvalidAddress(f"Row must be positive, got {row}")
    return f"{column_index_to_letter(col)}{row}"


def parse_address(text: str, allow_absolute: bool = False) -> Address:
    """``"ab3"`` -> ``Address(row=3, col=28)``.

    Only ``[A-Za-z]+[0-9]+`` is accepted; with *allow_absolute* the ``$``
    markers of ``$A$1`` style references are tolerated and dropped.
    """
    if not isinstance(text, str):
        raise InvalidAddress(f"Cell reference must be a string, got {type(text).__name__}")
    pattern = _ABS_A1_RE if allow_absolute else _A1_RE
    m = pattern.fullmatch(text)
    if not m:
        raise InvalidAddress(f"Invalid cell reference: {text!r}")
    row = int(m.group(2))
    if row < 1:
        raise InvalidAddress(f"Invalid cell reference: {text!r} (rows start at 1)")
    return Address(row, column_letter_to_index(m.group(1)))
