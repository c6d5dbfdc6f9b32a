"""End-to-end tests for WorkbookSession: apply, guard, recompute, undo."""

from __future__ import annotations

import pytest

from sheetops import Settings, Workbook, WorkbookSession
from sheetops._errors import BatchError
from sheetops.calc import ENGINE_VERSION, FormulaEngine


def _set(cell: str, value: object = None, formula: str | None = None, sheet: str = "Sheet1") -> dict:
    if formula is not None:
        return {"kind": "set_cell", "sheet": sheet, "cell": cell, "formula": formula}
    return {"kind": "set_cell", "sheet": sheet, "cell": cell, "value": value}


class TestApply:
    def test_formula_follows_edits(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        result = session.apply([_set("A1", 10), _set("B1", formula="=A1*2")])
        assert result.success
        assert result.version == 1
        assert wb["Sheet1"]["B1"].value == 20

        session.apply([_set("A1", 50)])
        assert wb["Sheet1"]["B1"].value == 100
        assert wb.version == 2

    def test_chain(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        session.apply([
            _set("A1", 1),
            _set("A2", formula="=A1+1"),
            _set("A3", formula="=A2+1"),
            _set("A4", formula="=A3+1"),
        ])
        session.apply([_set("A1", 10)])
        assert [wb["Sheet1"][f"A{r}"].value for r in (2, 3, 4)] == [11, 12, 13]

    def test_diamond(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        session.apply([
            _set("A1", 2),
            _set("B1", formula="=A1*10"),
            _set("C1", formula="=A1+1"),
            _set("D1", formula="=B1+C1"),
        ])
        assert wb["Sheet1"]["D1"].value == 23
        session.apply([_set("A1", 3)])
        assert wb["Sheet1"]["D1"].value == 34

    def test_range_function(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        session.apply([
            {"kind": "fill_range", "sheet": "Sheet1", "range": "A1:A4", "value": 5},
            _set("B1", formula="=SUM(A1:A4)"),
        ])
        assert wb["Sheet1"]["B1"].value == 20

    def test_cross_sheet(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        session.apply([
            {"kind": "add_sheet", "name": "Data"},
            _set("A1", 7, sheet="Data"),
            _set("A1", formula="=Data!A1*3"),
        ])
        assert wb["Sheet1"]["A1"].value == 21

    def test_partial_failure_still_recomputes(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        session.apply([_set("A1", 1), _set("B1", formula="=A1+1")])
        result = session.apply([_set("A1", 5), _set("A1", 9, sheet="Nope")])
        assert not result.success
        assert result.applied_ops == 1
        assert wb["Sheet1"]["B1"].value == 6

    def test_nothing_applied(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        result = session.apply([_set("A1", 1, sheet="Nope")])
        assert result.applied_ops == 0
        assert result.circular is None
        assert wb.version == 0

    def test_malformed_batch(self) -> None:
        session = WorkbookSession(Workbook())
        with pytest.raises(BatchError):
            session.apply({"kind": "set_cell"})

    def test_circular_report_attached(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        result = session.apply([
            _set("A1", formula="=SUM(B1:B3)"),
            _set("B2", formula="=A1*2"),
        ])
        # advisory only: the batch still applies
        assert result.success
        assert result.circular.has_circular_references
        assert result.circular.circular_chains[0].cells == ("Sheet1!A1", "Sheet1!B2", "Sheet1!A1")
        assert result.to_payload()["circular"]["hasCircularReferences"] is True
        assert wb["Sheet1"]["A1"].computed.error == "#CYCLE!"

    def test_guard_disabled(self) -> None:
        session = WorkbookSession(Workbook(), settings=Settings(check_circular=False))
        result = session.apply([_set("A1", formula="=A1")])
        assert result.circular is None

    def test_structural_edit_recomputes(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        session.apply([
            _set("A1", 1),
            _set("A2", 2),
            _set("B1", formula="=SUM(A1:A2)"),
        ])
        session.apply([
            {"kind": "insert_rows", "sheet": "Sheet1", "before": 2},
            _set("A2", 100),
        ])
        ws = wb["Sheet1"]
        assert ws["B1"].formula == "=SUM(A1:A3)"
        assert ws["B1"].value == 103

        session.apply([{"kind": "delete_rows", "sheet": "Sheet1", "start": 2}])
        assert ws["B1"].formula == "=SUM(A1:A2)"
        assert ws["B1"].value == 3

    def test_deleted_reference_becomes_ref_error(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        session.apply([_set("A1", 1), _set("B2", formula="=A1+1")])
        session.apply([{"kind": "delete_rows", "sheet": "Sheet1", "start": 1}])
        ws = wb["Sheet1"]
        assert ws["B1"].formula == "=#REF!+1"
        assert ws["B1"].computed.error == "#REF!"

    def test_rename_breaks_references(self) -> None:
        wb = Workbook(["Data", "Calc"])
        session = WorkbookSession(wb)
        session.apply([_set("A1", 4, sheet="Data"), _set("A1", formula="=Data!A1", sheet="Calc")])
        assert wb["Calc"]["A1"].value == 4
        session.apply([{"kind": "rename_sheet", "oldName": "Data", "newName": "Input"}])
        assert wb["Calc"]["A1"].computed.error == "#REF!"

    def test_deferred(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        session.apply([_set("A1", 1), _set("B1", formula="=A1+1")])
        session.apply([_set("A1", 2)], recompute="deferred")
        assert wb["Sheet1"]["B1"].computed is None
        session.recalculate()
        assert wb["Sheet1"]["B1"].value == 3

    def test_deferred_from_settings(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb, settings=Settings(recompute_mode="deferred"))
        session.apply([_set("A1", 1), _set("B1", formula="=A1+1")])
        assert wb["Sheet1"]["B1"].computed is None

    def test_explicit_engine(self) -> None:
        engine = FormulaEngine()
        wb = Workbook()
        session = WorkbookSession(wb, engine=engine)
        session.apply([_set("A1", 3), _set("B1", formula="=A1*A1")])
        assert session.engine is engine
        assert engine.value("Sheet1!B1") == 9
        assert wb["Sheet1"]["B1"].computed.engine_version == ENGINE_VERSION


class TestUndo:
    def test_undo_cell_edits(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        session.apply([_set("A1", 10), _set("B1", formula="=A1*2")])
        result = session.apply([_set("A1", 50), _set("C1", "new")])
        assert wb["Sheet1"]["B1"].value == 100

        session.undo(result)
        ws = wb["Sheet1"]
        assert ws["A1"].raw == 10
        assert "C1" not in ws
        assert ws["B1"].value == 20
        assert wb.version == 3

    def test_undo_structural(self) -> None:
        wb = Workbook()
        session = WorkbookSession(wb)
        session.apply([_set("A1", 1), _set("A2", 2), _set("B1", formula="=A1+A2")])
        before = wb.to_dict()["sheets"]
        result = session.apply([
            {"kind": "delete_rows", "sheet": "Sheet1", "start": 2},
            _set("A5", 9),
        ])
        assert wb["Sheet1"]["B1"].formula == "=A1+#REF!"

        session.undo(result)
        assert wb["Sheet1"]["B1"].formula == "=A1+A2"
        assert wb["Sheet1"]["B1"].value == 3
        assert wb.to_dict()["sheets"] == before

    def test_undo_sheet_delete(self) -> None:
        wb = Workbook(["Data", "Calc"])
        session = WorkbookSession(wb)
        session.apply([_set("A1", 6, sheet="Data"), _set("A1", formula="=Data!A1/2", sheet="Calc")])
        result = session.apply([{"kind": "delete_sheet", "name": "Data"}])
        assert wb["Calc"]["A1"].computed.error == "#REF!"

        session.undo(result)
        assert wb.sheetnames == ["Data", "Calc"]
        assert wb["Calc"]["A1"].value == 3
