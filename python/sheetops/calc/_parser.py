"""Formula reference extraction and rewriting.

References are located with a single regex over the formula text (string
literals masked out), so the same scan serves extraction, canonicalisation
and the row/column shifting done by structural operations.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from sheetops._range import DEFAULT_EDGE_STEP, Range
from sheetops._range import expand_range as _expand_addresses
from sheetops._utils import (
    Address,
    column_index_to_letter,
    column_letter_to_index,
    parse_address,
)

# ---------------------------------------------------------------------------
# Regex patterns for formula reference extraction
# ---------------------------------------------------------------------------

# Sheet prefix: 'Quoted Name'! (with '' escapes) or BareName!
_SHEET_PREFIX = r"(?:'((?:[^']|'')+)'|([A-Za-z0-9_.]+))!"
# Cell: A1, $A$1, $A1, A$1 -- any number of column letters
_CELL_REF = r"(\$?)([A-Za-z]+)(\$?)([1-9][0-9]*)"
_REF_RE = re.compile(
    rf"(?<![A-Za-z0-9_.$'!])(?:{_SHEET_PREFIX})?{_CELL_REF}(?:\s*:\s*{_CELL_REF})?(?![A-Za-z0-9_(!])"
)

# Strings in formulas ("" is an escaped quote)
_STRING_RE = re.compile(r'"(?:[^"]|"")*"')

REF_ERROR = "#REF!"


class Reference(NamedTuple):
    """One reference found in a formula.

    ``end`` is None for a single cell.  ``span`` is the (start, stop) slice
    of the formula text the reference occupies.
    """

    sheet: str
    start: Address
    end: Address | None
    span: tuple[int, int]

    @property
    def is_range(self) -> bool:
        return self.end is not None

    def canonical(self) -> str:
        """``"Sheet!A1"`` or ``"Sheet!A1:B5"`` (no ``$``, unquoted sheet)."""
        if self.end is None:
            return f"{self.sheet}!{self.start}"
        return f"{self.sheet}!{self.start}:{self.end}"


def _mask_strings(formula: str) -> str:
    """Blank out string literals, keeping every other character in place."""
    return _STRING_RE.sub(lambda m: '"' + " " * (len(m.group(0)) - 2) + '"', formula)


def _sheet_of(match: re.Match[str], current_sheet: str) -> str:
    if match.group(1) is not None:
        return match.group(1).replace("''", "'")
    return match.group(2) or current_sheet


def _address_of(match: re.Match[str], first_group: int) -> Address:
    return Address(
        int(match.group(first_group + 3)),
        column_letter_to_index(match.group(first_group + 1)),
    )


def iter_references(formula: str, current_sheet: str = "Sheet1") -> list[Reference]:
    """Every reference in *formula*, in textual order (duplicates kept)."""
    refs: list[Reference] = []
    for m in _REF_RE.finditer(_mask_strings(formula)):
        start = _address_of(m, 3)
        end = _address_of(m, 7) if m.group(8) is not None else None
        refs.append(Reference(_sheet_of(m, current_sheet), start, end, m.span()))
    return refs


# ---------------------------------------------------------------------------
# Reference extraction
# ---------------------------------------------------------------------------


def parse_references(formula: str, current_sheet: str = "Sheet1") -> list[str]:
    """Extract all single cell references from a formula.

    Returns canonical "SheetName!A1" strings (no dollar signs, unquoted).
    Does NOT include range references - use parse_range_references for those.
    """
    seen: dict[str, None] = {}
    for ref in iter_references(formula, current_sheet):
        if not ref.is_range:
            seen.setdefault(ref.canonical())
    return list(seen)


def parse_range_references(formula: str, current_sheet: str = "Sheet1") -> list[str]:
    """Extract all range references from a formula as "SheetName!A1:B5"."""
    seen: dict[str, None] = {}
    for ref in iter_references(formula, current_sheet):
        if ref.is_range:
            seen.setdefault(ref.canonical())
    return list(seen)


def split_ref(ref: str) -> tuple[str | None, str]:
    """``"Sheet!A1"`` -> ``("Sheet", "A1")``; no prefix gives ``(None, ref)``."""
    if "!" not in ref:
        return None, ref
    sheet, part = ref.rsplit("!", 1)
    if len(sheet) >= 2 and sheet[0] == "'" and sheet[-1] == "'":
        sheet = sheet[1:-1].replace("''", "'")
    return sheet, part


def normalize_ref(text: str, current_sheet: str) -> str | None:
    """Canonical form of a lone reference token, or None if it is not one."""
    stripped = text.strip()
    m = _REF_RE.fullmatch(stripped)
    if m is None:
        return None
    refs = iter_references(stripped, current_sheet)
    return refs[0].canonical() if refs else None


def _range_of(range_ref: str) -> tuple[str | None, Range]:
    sheet, part = split_ref(range_ref)
    corners = part.replace("$", "").split(":")
    if len(corners) != 2:
        raise ValueError(f"Invalid range: {range_ref!r}")
    return sheet, Range(parse_address(corners[0]), parse_address(corners[1]))


def range_shape(range_ref: str) -> tuple[int, int]:
    """``"Sheet!A1:C4"`` -> ``(4, 3)`` (rows, cols)."""
    _, rng = _range_of(range_ref)
    return rng.n_rows, rng.n_cols


def expand_range(
    range_ref: str,
    max_cells: int | None = None,
    edge_step: int = DEFAULT_EDGE_STEP,
) -> list[str]:
    """Expand a range like "A1:A5" into individual cell refs ["A1", ..., "A5"].

    The range_ref can be with or without sheet prefix; refs come back in the
    same form.  With *max_cells* set, large ranges are sampled.
    """
    sheet, rng = _range_of(range_ref)
    addrs = _expand_addresses(rng.start, rng.end, max_cells=max_cells, edge_step=edge_step)
    if sheet is None:
        return [str(a) for a in addrs]
    return [f"{sheet}!{a}" for a in addrs]


def all_references(
    formula: str,
    current_sheet: str = "Sheet1",
    max_cells: int | None = None,
    edge_step: int = DEFAULT_EDGE_STEP,
) -> list[str]:
    """Extract all cell references (single + range-expanded) from a formula.

    Returns canonical "SheetName!A1" strings.  Ranges are fully expanded
    unless *max_cells* asks for the sampled expansion.
    """
    seen: dict[str, None] = {}
    for ref in iter_references(formula, current_sheet):
        if ref.end is None:
            seen.setdefault(ref.canonical())
            continue
        for addr in _expand_addresses(ref.start, ref.end, max_cells=max_cells, edge_step=edge_step):
            seen.setdefault(f"{ref.sheet}!{addr}")
    return list(seen)


# ---------------------------------------------------------------------------
# Reference rewriting for inserted / deleted rows and columns
# ---------------------------------------------------------------------------


def _shift_pos(pos: int, start: int, count: int, delete: bool, upper: bool) -> int:
    """New coordinate along the shifted axis.

    *upper* marks the high corner of a range: when its coordinate lands in
    a deleted band it is pulled back to the row/col before the band.
    """
    if not delete:
        return pos + count if pos >= start else pos
    stop = start + count - 1
    if pos < start:
        return pos
    if pos > stop:
        return pos - count
    return start - 1 if upper else start


def shift_formula_references(
    formula: str,
    formula_sheet: str,
    target_sheet: str,
    axis: str,
    start: int,
    count: int,
    delete: bool = False,
) -> str:
    """Rewrite *formula* for rows/cols inserted into or deleted from *target_sheet*.

    *axis* is ``"rows"`` or ``"cols"``.  Only references that resolve to
    *target_sheet* move.  A single-cell reference into a deleted band, or a
    range wholly inside one, becomes ``#REF!``; ranges that straddle the
    band shrink.  ``$`` markers and sheet prefixes are preserved.
    """
    by_row = axis == "rows"
    masked = _mask_strings(formula)
    pieces: list[str] = []
    last = 0
    for m in _REF_RE.finditer(masked):
        if _sheet_of(m, formula_sheet) != target_sheet:
            continue
        prefix = formula[m.start() : m.start(3)]
        corners = [(3, _address_of(m, 3))]
        if m.group(8) is not None:
            corners.append((7, _address_of(m, 7)))

        positions = [a.row if by_row else a.col for _, a in corners]
        upper_idx = -1
        if len(positions) == 2:
            upper_idx = 0 if positions[0] > positions[1] else 1
        new_positions = [
            _shift_pos(pos, start, count, delete, upper=(i == upper_idx))
            for i, pos in enumerate(positions)
        ]
        dead = delete and start <= min(positions) and max(positions) <= start + count - 1

        if dead:
            replacement = REF_ERROR
        elif new_positions == positions:
            continue
        else:
            texts: list[str] = []
            for (group, addr), pos in zip(corners, new_positions):
                row, col = (pos, addr.col) if by_row else (addr.row, pos)
                texts.append(
                    f"{m.group(group)}{column_index_to_letter(col)}{m.group(group + 2)}{row}"
                )
            replacement = prefix + ":".join(texts)

        pieces.append(formula[last : m.start()])
        pieces.append(replacement)
        last = m.end()

    if not pieces:
        return formula
    pieces.append(formula[last:])
    return "".join(pieces)
