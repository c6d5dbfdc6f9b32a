"""Workbook: ordered sheets plus a batch version counter.

The document is plain in-memory state.  It knows nothing about formulas'
meaning or about the evaluation engine; see ``WorkbookSession`` for the
runtime context that pairs a workbook with its engine.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterator
from typing import Any

from sheetops._worksheet import Worksheet


class Workbook:
    """An ordered collection of worksheets."""

    def __init__(self, sheet_names: tuple[str, ...] | list[str] = ("Sheet1",)) -> None:
        """Create a workbook with the given sheets (one ``Sheet1`` by default)."""
        self._sheet_names: list[str] = []
        self._sheets: dict[str, Worksheet] = {}
        self.version: int = 0
        self.active_sheet: str | None = None
        self.theme: str | None = None
        for name in sheet_names:
            self.create_sheet(name)

    # ------------------------------------------------------------------
    # Sheet access
    # ------------------------------------------------------------------

    @property
    def sheetnames(self) -> list[str]:
        return list(self._sheet_names)

    @property
    def active(self) -> Worksheet | None:
        """The active sheet, falling back to the first one."""
        if self.active_sheet in self._sheets:
            return self._sheets[self.active_sheet]
        if self._sheet_names:
            return self._sheets[self._sheet_names[0]]
        return None

    def __getitem__(self, name: str) -> Worksheet:
        if name not in self._sheets:
            raise KeyError(f"Worksheet '{name}' does not exist")
        return self._sheets[name]

    def __contains__(self, name: object) -> bool:
        return name in self._sheets

    def __iter__(self) -> Iterator[Worksheet]:
        return (self._sheets[n] for n in self._sheet_names)

    def __len__(self) -> int:
        return len(self._sheet_names)

    def index(self, name: str) -> int:
        return self._sheet_names.index(name)

    # ------------------------------------------------------------------
    # Sheet management
    # ------------------------------------------------------------------

    def create_sheet(
        self,
        title: str,
        index: int | None = None,
        row_count: int | None = None,
        col_count: int | None = None,
    ) -> Worksheet:
        if title in self._sheets:
            raise ValueError(f"Sheet '{title}' already exists")
        ws = Worksheet(self, title, row_count=row_count, col_count=col_count)
        self.insert_sheet(ws, index)
        return ws

    def insert_sheet(self, ws: Worksheet, index: int | None = None) -> None:
        if ws.title in self._sheets:
            raise ValueError(f"Sheet '{ws.title}' already exists")
        if index is None:
            self._sheet_names.append(ws.title)
        else:
            self._sheet_names.insert(index, ws.title)
        self._sheets[ws.title] = ws
        if self.active_sheet is None:
            self.active_sheet = ws.title

    def remove_sheet(self, title: str) -> Worksheet:
        ws = self[title]
        self._sheet_names.remove(title)
        del self._sheets[title]
        if self.active_sheet == title:
            self.active_sheet = self._sheet_names[0] if self._sheet_names else None
        return ws

    def rename_sheet(self, old: str, new: str) -> None:
        if old == new:
            return
        if new in self._sheets:
            raise ValueError(f"Sheet '{new}' already exists")
        ws = self[old]
        idx = self._sheet_names.index(old)
        self._sheet_names[idx] = new
        self._sheets[new] = self._sheets.pop(old)
        ws._title = new  # noqa: SLF001
        if self.active_sheet == old:
            self.active_sheet = new

    # ------------------------------------------------------------------
    # Persistence blob
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"activeSheet": self.active_sheet}
        if self.theme is not None:
            metadata["theme"] = self.theme
        return {
            "version": self.version,
            "metadata": metadata,
            "sheets": [ws.to_dict() for ws in self],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Workbook:
        wb = cls(sheet_names=())
        for sheet_data in data.get("sheets") or []:
            wb.insert_sheet(Worksheet.from_dict(wb, sheet_data))
        wb.version = int(data.get("version", 0))
        metadata = data.get("metadata") or {}
        if metadata.get("activeSheet") in wb:
            wb.active_sheet = metadata["activeSheet"]
        wb.theme = metadata.get("theme")
        return wb

    def copy(self) -> Workbook:
        return Workbook.from_dict(self.to_dict())

    def save(self, filename: str | os.PathLike[str]) -> None:
        """Write the persistence blob as JSON to *filename*."""
        with open(filename, "w", encoding="utf-8") as fh:
            json.dump(self.to_dict(), fh, indent=2)
            fh.write("\n")

    def __repr__(self) -> str:
        return f"<Workbook v{self.version} sheets={self._sheet_names}>"
