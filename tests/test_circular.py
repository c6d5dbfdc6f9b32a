"""Tests for circular-reference detection and recovery operations."""

from __future__ import annotations

import logging

import pytest

from sheetops._applier import apply_operations
from sheetops._cell import ComputedValue
from sheetops._config import Settings
from sheetops._workbook import Workbook
from sheetops.calc import (
    RECOVERY_ACTIONS,
    CircularReferenceGuard,
    DependencyGraph,
    detect_circular_references,
    find_cycles,
    recovery_operations,
)


def _range_cycle_workbook() -> Workbook:
    """A1=SUM(B1:B3) and B2=A1*2 read each other through a range."""
    wb = Workbook()
    ws = wb["Sheet1"]
    ws["A1"] = "=SUM(B1:B3)"
    ws["B1"] = 1
    ws["B2"] = "=A1*2"
    ws["B3"] = 3
    return wb


def _ring(size: int) -> Workbook:
    """A1 -> A2 -> ... -> A<size> -> A1."""
    wb = Workbook()
    ws = wb["Sheet1"]
    for i in range(1, size + 1):
        nxt = i + 1 if i < size else 1
        ws[f"A{i}"] = f"=A{nxt}+1"
    return wb


class TestFindCycles:
    def test_acyclic(self) -> None:
        wb = Workbook()
        ws = wb["Sheet1"]
        ws["A1"] = 1
        ws["B1"] = "=A1*2"
        ws["C1"] = "=B1+A1"
        assert find_cycles(DependencyGraph.from_workbook(wb)) == []

    def test_two_cycles_share_a_cell(self) -> None:
        wb = Workbook()
        ws = wb["Sheet1"]
        ws["A1"] = "=B1+C1"
        ws["B1"] = "=A1"
        ws["C1"] = "=A1"
        cycles = find_cycles(DependencyGraph.from_workbook(wb))
        assert cycles == [("Sheet1!A1", "Sheet1!B1"), ("Sheet1!A1", "Sheet1!C1")]

    def test_rotation_deduplicated(self) -> None:
        cycles = find_cycles(DependencyGraph.from_workbook(_ring(4)))
        assert cycles == [("Sheet1!A1", "Sheet1!A2", "Sheet1!A3", "Sheet1!A4")]


class TestDetect:
    def test_cycle_through_range(self) -> None:
        report = detect_circular_references(_range_cycle_workbook())
        assert report.has_circular_references
        assert len(report.circular_chains) == 1
        chain = report.circular_chains[0]
        assert chain.cells == ("Sheet1!A1", "Sheet1!B2", "Sheet1!A1")
        assert chain.members == ("Sheet1!A1", "Sheet1!B2")
        assert chain.sheet == "Sheet1"
        assert chain.chain_type == "direct"
        assert chain.severity == "medium"

    def test_huge_range_corner_cycle_is_fast(self) -> None:
        wb = Workbook()
        wb["Sheet1"]["A1"] = "=SUM(B1:Z400000)"
        wb["Sheet1"]["Z400000"] = "=A1+1"
        report = detect_circular_references(wb)
        assert report.circular_chains[0].cells == ("Sheet1!A1", "Sheet1!Z400000", "Sheet1!A1")
        assert report.analysis_time_ms < 1000
        assert report.warnings == ()

    def test_no_cycles(self) -> None:
        wb = Workbook()
        wb["Sheet1"]["A1"] = "=1+1"
        report = detect_circular_references(wb)
        assert not report.has_circular_references
        assert report.circular_chains == ()
        assert report.analysis_time_ms >= 0

    def test_self_reference(self) -> None:
        wb = Workbook()
        wb["Sheet1"]["C3"] = "=C3+1"
        chain = detect_circular_references(wb).circular_chains[0]
        assert chain.cells == ("Sheet1!C3", "Sheet1!C3")
        assert chain.chain_type == "direct"
        assert chain.severity == "low"

    def test_long_self_reference_is_high(self) -> None:
        wb = Workbook()
        wb["Sheet1"]["A1"] = "=A1" + "+1" * 30
        assert detect_circular_references(wb).circular_chains[0].severity == "high"

    def test_ring_severity(self) -> None:
        nine = detect_circular_references(_ring(9)).circular_chains[0]
        assert len(nine.cells) == 10
        assert nine.chain_type == "indirect"
        assert nine.severity == "medium"
        ten = detect_circular_references(_ring(10)).circular_chains[0]
        assert ten.severity == "high"

    def test_independent_cycles_across_sheets(self) -> None:
        wb = Workbook(["Sheet1", "Sheet2"])
        wb["Sheet1"]["A1"] = "=B1"
        wb["Sheet1"]["B1"] = "=A1"
        wb["Sheet1"]["D1"] = "=A1+1"
        wb["Sheet2"]["C1"] = "=C1"
        chains = detect_circular_references(wb).circular_chains
        assert [c.cells for c in chains] == [
            ("Sheet1!A1", "Sheet1!B1", "Sheet1!A1"),
            ("Sheet2!C1", "Sheet2!C1"),
        ]
        assert [c.sheet for c in chains] == ["Sheet1", "Sheet2"]

    def test_cross_sheet_cycle(self) -> None:
        wb = Workbook(["Data", "Calc"])
        wb["Data"]["A1"] = "=Calc!A1"
        wb["Calc"]["A1"] = "=Data!A1*2"
        chain = detect_circular_references(wb).circular_chains[0]
        assert chain.cells == ("Calc!A1", "Data!A1", "Calc!A1")
        assert chain.sheet == "Calc"

    def test_does_not_mutate(self) -> None:
        wb = _range_cycle_workbook()
        before = wb.to_dict()
        detect_circular_references(wb)
        assert wb.to_dict() == before

    def test_payload(self) -> None:
        payload = detect_circular_references(_range_cycle_workbook()).to_payload()
        assert payload["hasCircularReferences"] is True
        assert payload["circularChains"] == [["Sheet1!A1", "Sheet1!B2", "Sheet1!A1"]]
        assert payload["chains"][0] == {
            "cells": ["Sheet1!A1", "Sheet1!B2", "Sheet1!A1"],
            "sheet": "Sheet1",
            "chainType": "direct",
            "severity": "medium",
        }
        assert payload["warnings"] == []

    def test_slow_analysis_warning(self) -> None:
        guard = CircularReferenceGuard(Settings(analysis_warn_ms=-1))
        report = guard.detect(_range_cycle_workbook())
        assert len(report.warnings) == 1
        assert "Circular reference analysis took" in report.warnings[0]

    def test_logs_found_chains(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="sheetops.calc._circular"):
            detect_circular_references(_range_cycle_workbook())
        assert "Sheet1!A1 -> Sheet1!B2 -> Sheet1!A1" in caplog.text


class TestRecoveryOperations:
    def _chain(self, wb: Workbook):
        return detect_circular_references(wb).circular_chains[0]

    def test_break_chain(self) -> None:
        wb = _range_cycle_workbook()
        ops = recovery_operations(wb, self._chain(wb), "break_chain")
        assert [(op.sheet, op.cell, op.value) for op in ops] == [("Sheet1", "A1", None)]

        result = apply_operations(wb, ops)
        assert result.success
        assert "A1" not in wb["Sheet1"]
        assert not detect_circular_references(wb).has_circular_references

    def test_convert_to_value(self) -> None:
        wb = _range_cycle_workbook()
        ws = wb["Sheet1"]
        ws["A1"].computed = ComputedValue(value=12, type="number", engine_version="x")
        ws["B2"].computed = ComputedValue(value=None, type="error", engine_version="x", error="#CYCLE!")
        ops = recovery_operations(wb, self._chain(wb), "convert_to_value")
        assert [(op.cell, op.value) for op in ops] == [("A1", 12), ("B2", None)]

        apply_operations(wb, ops)
        assert ws["A1"].formula is None
        assert ws["A1"].raw == 12
        assert "B2" not in ws

    def test_clear_formulas(self) -> None:
        wb = _ring(3)
        ops = recovery_operations(wb, self._chain(wb), "clear_formulas")
        assert [op.cell for op in ops] == ["A1", "A2", "A3"]
        assert all(op.value is None and op.has_value for op in ops)
        apply_operations(wb, ops)
        assert len(wb["Sheet1"]) == 0

    def test_ignore(self) -> None:
        wb = _range_cycle_workbook()
        assert recovery_operations(wb, self._chain(wb), "ignore") == []

    def test_unknown_action(self) -> None:
        wb = _range_cycle_workbook()
        with pytest.raises(ValueError, match="Unknown recovery action"):
            recovery_operations(wb, self._chain(wb), "explode")

    def test_actions(self) -> None:
        assert RECOVERY_ACTIONS == ("break_chain", "convert_to_value", "clear_formulas", "ignore")
