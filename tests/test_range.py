"""Tests for range parsing and bounded range expansion."""

from __future__ import annotations

import pytest
from sheetops._errors import InvalidAddress
from sheetops._range import Range, expand_range, iter_range, parse_range
from sheetops._utils import Address, parse_address


def _corners(start: str, end: str) -> tuple[Address, Address]:
    return parse_address(start), parse_address(end)


class TestParseRange:
    def test_pair(self) -> None:
        rng = parse_range("A1:C3")
        assert rng == Range(Address(1, 1), Address(3, 3))
        assert rng.cell_count == 9

    def test_single_cell(self) -> None:
        rng = parse_range("B2")
        assert rng.start == rng.end == Address(2, 2)

    def test_reversed_corners_normalize(self) -> None:
        rng = parse_range("C3:A1")
        assert rng.normalized() == Range(Address(1, 1), Address(3, 3))
        assert str(rng) == "A1:C3"

    @pytest.mark.parametrize("text", ["A1:", ":B2", "A1:B2:C3", "A1-B2", "", " A1:B2", "A1 :B2"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(InvalidAddress):
            parse_range(text)

    def test_contains(self) -> None:
        rng = parse_range("B2:D4")
        assert rng.contains(Address(3, 3))
        assert not rng.contains(Address(1, 1))


class TestExpandSmall:
    def test_single_cell(self) -> None:
        a, b = _corners("B2", "B2")
        assert expand_range(a, b) == [Address(2, 2)]

    def test_row_major_full_enumeration(self) -> None:
        a, b = _corners("A1", "B2")
        assert [str(x) for x in expand_range(a, b)] == ["A1", "B1", "A2", "B2"]

    def test_corner_order_symmetry(self) -> None:
        a, b = _corners("A1", "J10")
        assert expand_range(a, b) == expand_range(b, a)
        c, d = _corners("J1", "A10")
        assert expand_range(c, d) == expand_range(a, b)

    def test_exactly_max_cells_is_full(self) -> None:
        a, b = _corners("A1", "J10")
        cells = expand_range(a, b)
        assert len(cells) == 100
        assert cells == list(iter_range(Range(a, b)))

    def test_unbounded(self) -> None:
        a, b = _corners("A1", "A500")
        assert len(expand_range(a, b, max_cells=None)) == 500


class TestExpandSampled:
    def test_bounded_with_corners(self) -> None:
        a, b = _corners("A1", "Z1000")
        cells = expand_range(a, b)
        assert 4 <= len(cells) <= 100
        for corner in ("A1", "Z1", "A1000", "Z1000"):
            assert parse_address(corner) in cells

    def test_deterministic(self) -> None:
        a, b = _corners("A1", "CV500")
        assert expand_range(a, b) == expand_range(a, b)
        assert expand_range(a, b) == expand_range(b, a)

    def test_sorted_and_unique(self) -> None:
        a, b = _corners("C3", "AZ300")
        cells = expand_range(a, b)
        assert cells == sorted(set(cells))

    def test_inside_range(self) -> None:
        a, b = _corners("C3", "AZ300")
        rng = Range(a, b)
        assert all(rng.contains(c) for c in expand_range(a, b))

    def test_centre_included(self) -> None:
        a, b = _corners("A1", "A1001")
        assert Address(501, 1) in expand_range(a, b)

    def test_custom_budget(self) -> None:
        a, b = _corners("A1", "Z1000")
        assert len(expand_range(a, b, max_cells=20)) <= 20

    def test_101_cells_sampled(self) -> None:
        a, b = _corners("A1", "A101")
        cells = expand_range(a, b)
        assert len(cells) <= 100
        assert cells[0] == Address(1, 1)
        assert cells[-1] == Address(101, 1)
