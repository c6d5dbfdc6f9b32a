"""Rectangular ranges and range expansion.

Small ranges expand to every cell.  Large ranges expand to a bounded,
deterministic sample (corners, strided edge points, centre) so that
dependency analysis stays fast however big the referenced block is.  The
sample is a heuristic: a dependency that lands strictly inside a huge
range and off the sampled points is not seen.
"""

from __future__ import annotations

import math
from collections.abc import Iterator
from typing import NamedTuple

from sheetops._errors import InvalidAddress
from sheetops._utils import Address, parse_address

DEFAULT_MAX_CELLS = 100
DEFAULT_EDGE_STEP = 10


class Range(NamedTuple):
    """A pair of corner addresses.  Corners may be given in any order."""

    start: Address
    end: Address

    def normalized(self) -> Range:
        top, bottom = sorted((self.start.row, self.end.row))
        left, right = sorted((self.start.col, self.end.col))
        return Range(Address(top, left), Address(bottom, right))

    @property
    def n_rows(self) -> int:
        return abs(self.end.row - self.start.row) + 1

    @property
    def n_cols(self) -> int:
        return abs(self.end.col - self.start.col) + 1

    @property
    def cell_count(self) -> int:
        return self.n_rows * self.n_cols

    def contains(self, addr: Address) -> bool:
        norm = self.normalized()
        return (
            norm.start.row <= addr.row <= norm.end.row
            and norm.start.col <= addr.col <= norm.end.col
        )

    def __str__(self) -> str:
        norm = self.normalized()
        return f"{norm.start}:{norm.end}"


def parse_range(text: str, allow_absolute: bool = False) -> Range:
    """Parse ``"A1:C3"`` (or a lone ``"B2"``) into a :class:`Range`."""
    if not isinstance(text, str):
        raise InvalidAddress(f"Range must be a string, got {type(text).__name__}")
    parts = text.split(":")
    if len(parts) == 1:
        addr = parse_address(parts[0], allow_absolute)
        return Range(addr, addr)
    if len(parts) != 2:
        raise InvalidAddress(f"Invalid range reference: {text!r}")
    try:
        return Range(
            parse_address(parts[0], allow_absolute),
            parse_address(parts[1], allow_absolute),
        )
    except InvalidAddress:
        raise InvalidAddress(f"Invalid range reference: {text!r}") from None


def iter_range(rng: Range) -> Iterator[Address]:
    """Every cell of *rng*, row-major."""
    norm = rng.normalized()
    for r in range(norm.start.row, norm.end.row + 1):
        for c in range(norm.start.col, norm.end.col + 1):
            yield Address(r, c)


def expand_range(
    start: Address,
    end: Address,
    max_cells: int | None = DEFAULT_MAX_CELLS,
    edge_step: int = DEFAULT_EDGE_STEP,
) -> list[Address]:
    """Expand the rectangle spanned by *start* and *end*.

    Ranges with at most *max_cells* cells (or any range when *max_cells* is
    None) are fully enumerated in row-major order.  Larger ranges return the
    sample described in :func:`_sample_range`.
    """
    rng = Range(start, end).normalized()
    if max_cells is None or rng.cell_count <= max_cells:
        return list(iter_range(rng))
    if max_cells < 1:
        raise ValueError("max_cells must be positive")
    return _sample_range(rng, max_cells, edge_step)


def _sample_range(rng: Range, max_cells: int, edge_step: int) -> list[Address]:
    """Corners, then edge points every *edge_step* cells, then the centre.

    The stride widens when an edge is long enough that stepping by
    *edge_step* would spend more than a quarter of the budget, so all four
    edges and the centre fit under *max_cells*.
    """
    top, left = rng.start
    bottom, right = rng.end
    per_edge = max(1, (max_cells - 5) // 4)

    picked: dict[Address, None] = {}
    for corner in (
        Address(top, left),
        Address(top, right),
        Address(bottom, left),
        Address(bottom, right),
    ):
        picked[corner] = None

    def stride_over(lo: int, hi: int) -> range:
        length = hi - lo + 1
        return range(lo, hi + 1, max(edge_step, math.ceil(length / per_edge)))

    for c in stride_over(left, right):
        picked[Address(top, c)] = None
    for c in stride_over(left, right):
        picked[Address(bottom, c)] = None
    for r in stride_over(top, bottom):
        picked[Address(r, left)] = None
    for r in stride_over(top, bottom):
        picked[Address(r, right)] = None
    picked[Address((top + bottom) // 2, (left + right) // 2)] = None

    return sorted(list(picked)[:max_cells])
