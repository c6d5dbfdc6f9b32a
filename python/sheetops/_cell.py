"""Cell and computed-value containers."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Union

ScalarValue = Union[str, int, float, bool, None]

COMPUTED_TYPES = ("number", "string", "boolean", "error", "empty")


def is_scalar(value: Any) -> bool:
    """True for the cell value types: str, int, float, bool and None."""
    return value is None or isinstance(value, (str, int, float, bool))


@dataclass(frozen=True)
class ComputedValue:
    """Cached engine result for a formula cell.

    Derived state only: ``engine_version`` records which engine build
    produced it so stale caches can be found after an engine upgrade.
    """

    value: ScalarValue
    type: str
    engine_version: str
    error: str | None = None  # engine error code when type == "error"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "value": self.value,
            "type": self.type,
            "engineVersion": self.engine_version,
        }
        if self.error is not None:
            out["error"] = self.error
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComputedValue:
        return cls(
            value=data.get("value"),
            type=data.get("type", "empty"),
            engine_version=str(data.get("engineVersion", "")),
            error=data.get("error"),
        )


@dataclass
class Cell:
    """One cell: a raw scalar or a formula, plus cached result and style."""

    raw: ScalarValue = None
    formula: str | None = None
    computed: ComputedValue | None = None
    style: dict[str, Any] | None = None

    @property
    def is_formula(self) -> bool:
        return self.formula is not None

    @property
    def value(self) -> ScalarValue:
        """Display value: the computed result for formulas, else raw."""
        if self.formula is not None:
            return self.computed.value if self.computed is not None else None
        return self.raw

    def is_empty(self) -> bool:
        return self.raw is None and self.formula is None and not self.style

    def set_raw(self, value: ScalarValue) -> None:
        self.raw = value
        self.formula = None
        self.computed = None

    def set_formula(self, formula: str) -> None:
        self.formula = formula
        self.raw = None
        self.computed = None

    def merge_style(self, style: dict[str, Any]) -> None:
        merged = dict(self.style or {})
        merged.update(style)
        self.style = merged

    def snapshot(self) -> dict[str, Any] | None:
        """Authoritative state for diffs (computed cache excluded)."""
        if self.is_empty():
            return None
        out: dict[str, Any] = {}
        if self.formula is not None:
            out["formula"] = self.formula
        elif self.raw is not None:
            out["raw"] = self.raw
        if self.style:
            out["style"] = copy.deepcopy(self.style)
        return out

    @classmethod
    def from_snapshot(cls, snap: dict[str, Any]) -> Cell:
        formula = snap.get("formula")
        return cls(
            raw=None if formula is not None else snap.get("raw"),
            formula=formula,
            style=copy.deepcopy(snap.get("style")),
        )

    def to_dict(self) -> dict[str, Any]:
        out = self.snapshot() or {}
        if self.computed is not None:
            out["computed"] = self.computed.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Cell:
        cell = cls.from_snapshot(data)
        if data.get("computed") is not None:
            cell.computed = ComputedValue.from_dict(data["computed"])
        return cell
