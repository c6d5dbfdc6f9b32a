"""Tests for the sheetops command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from sheetops import Workbook, load_workbook
from sheetops._cell import ComputedValue
from sheetops.cli import EXIT_BAD_INPUT, EXIT_FINDINGS, EXIT_OK, main


def _write(path: Path, data: object) -> str:
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


@pytest.fixture
def book(tmp_path: Path) -> str:
    wb = Workbook()
    wb["Sheet1"]["A1"] = 10
    path = tmp_path / "book.json"
    wb.save(path)
    return str(path)


class TestApplyCommand:
    def test_apply_and_write_output(self, book: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        ops = _write(tmp_path / "ops.json", [
            {"kind": "set_cell", "sheet": "Sheet1", "cell": "B1", "formula": "=A1*2"},
        ])
        out = tmp_path / "out.json"
        assert main(["apply", book, ops, "-o", str(out)]) == EXIT_OK

        payload = json.loads(capsys.readouterr().out)
        assert payload["success"] is True
        assert payload["appliedOps"] == 1
        assert payload["version"] == 1

        wb = load_workbook(out)
        assert wb["Sheet1"]["B1"].value == 20
        # input untouched when --output is given
        assert load_workbook(book).version == 0

    def test_in_place(self, book: str, tmp_path: Path) -> None:
        ops = _write(tmp_path / "ops.json", [{"kind": "set_cell", "sheet": "Sheet1", "cell": "A1", "value": 1}])
        assert main(["apply", book, ops]) == EXIT_OK
        assert load_workbook(book)["Sheet1"]["A1"].raw == 1

    def test_deferred(self, book: str, tmp_path: Path) -> None:
        ops = _write(tmp_path / "ops.json", [
            {"kind": "set_cell", "sheet": "Sheet1", "cell": "B1", "formula": "=A1*2"},
        ])
        assert main(["apply", book, ops, "--deferred"]) == EXIT_OK
        assert load_workbook(book)["Sheet1"]["B1"].computed is None

    def test_partial_failure(self, book: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        ops = _write(tmp_path / "ops.json", [
            {"kind": "set_cell", "sheet": "Sheet1", "cell": "A2", "value": 1},
            {"kind": "delete_sheet", "name": "Sheet1"},
        ])
        assert main(["apply", book, ops]) == EXIT_FINDINGS
        payload = json.loads(capsys.readouterr().out)
        assert payload["errors"] == [
            {"opIndex": 1, "kind": "delete_sheet", "message": "Cannot delete the last sheet"},
        ]

    def test_malformed_batch(self, book: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        ops = _write(tmp_path / "ops.json", {"kind": "set_cell"})
        assert main(["apply", book, ops]) == EXIT_BAD_INPUT
        assert "Operations must be a list" in capsys.readouterr().err
        assert load_workbook(book).version == 0

    def test_missing_file(self, tmp_path: Path) -> None:
        ops = _write(tmp_path / "ops.json", [])
        assert main(["apply", str(tmp_path / "nope.json"), ops]) == EXIT_BAD_INPUT

    def test_invalid_json(self, book: str, tmp_path: Path) -> None:
        ops = tmp_path / "ops.json"
        ops.write_text("[{", encoding="utf-8")
        assert main(["apply", book, str(ops)]) == EXIT_BAD_INPUT


class TestCheckCircularCommand:
    def test_cycle_found(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        wb = Workbook()
        wb["Sheet1"]["A1"] = "=B1"
        wb["Sheet1"]["B1"] = "=A1"
        wb.save(tmp_path / "c.json")
        assert main(["check-circular", str(tmp_path / "c.json")]) == EXIT_FINDINGS
        payload = json.loads(capsys.readouterr().out)
        assert payload["circularChains"] == [["Sheet1!A1", "Sheet1!B1", "Sheet1!A1"]]

    def test_clean(self, book: str, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["check-circular", book]) == EXIT_OK
        assert json.loads(capsys.readouterr().out)["hasCircularReferences"] is False


class TestScanStaleCommand:
    def test_reports_stale(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        wb = Workbook()
        wb["Sheet1"]["B1"] = "=1"
        wb["Sheet1"]["B1"].computed = ComputedValue(value=1, type="number", engine_version="old")
        path = tmp_path / "s.json"
        wb.save(path)

        assert main(["scan-stale", str(path), "--engine-version", "new"]) == EXIT_FINDINGS
        captured = capsys.readouterr()
        assert captured.out.splitlines() == [f"{path}\tSheet1!B1\told"]
        assert "1 stale cell(s) (engine new)" in captured.err

    def test_nothing_stale(self, book: str) -> None:
        assert main(["scan-stale", book]) == EXIT_OK


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == EXIT_BAD_INPUT
    assert "usage: sheetops" in capsys.readouterr().out
