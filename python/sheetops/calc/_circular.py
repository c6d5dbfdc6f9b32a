"""Circular-reference detection over workbook formulas.

Advisory only: the result is reported next to an applied batch and never
blocks it.  Range references are resolved through the sampled expansion,
so a cycle that only passes through unsampled interior cells of a very
large range can be missed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sheetops._config import Settings, settings as default_settings
from sheetops._operations import SetCell
from sheetops._utils import parse_address
from sheetops.calc._graph import DependencyGraph

if TYPE_CHECKING:
    from sheetops._workbook import Workbook

logger = logging.getLogger(__name__)

RECOVERY_ACTIONS = ("break_chain", "convert_to_value", "clear_formulas", "ignore")

# Closed chain lengths (first cell repeated at the end)
_HIGH_SEVERITY_LENGTH = 10
_LONG_FORMULA = 50


@dataclass(frozen=True)
class CircularChain:
    """One cycle.  ``cells`` is closed: the last element repeats the first."""

    cells: tuple[str, ...]
    sheet: str
    chain_type: str
    severity: str

    @property
    def members(self) -> tuple[str, ...]:
        """Distinct cells of the cycle, in chain order."""
        return self.cells[:-1]

    def to_payload(self) -> dict[str, Any]:
        return {
            "cells": list(self.cells),
            "sheet": self.sheet,
            "chainType": self.chain_type,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class CircularReferenceReport:
    has_circular_references: bool
    circular_chains: tuple[CircularChain, ...] = ()
    analysis_time_ms: float = 0.0
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_payload(self) -> dict[str, Any]:
        return {
            "hasCircularReferences": self.has_circular_references,
            "circularChains": [list(c.cells) for c in self.circular_chains],
            "chains": [c.to_payload() for c in self.circular_chains],
            "analysisTimeMs": self.analysis_time_ms,
            "warnings": list(self.warnings),
        }


def _canonical_rotation(cycle: list[str]) -> tuple[str, ...]:
    """Rotate an open cycle so it starts at its smallest member."""
    pivot = cycle.index(min(cycle))
    return tuple(cycle[pivot:] + cycle[:pivot])


def find_cycles(graph: DependencyGraph) -> list[tuple[str, ...]]:
    """Return every distinct cycle of *graph* as an open tuple of cells.

    Iterative DFS over formula cells in sorted order.  Each edge back to a
    node on the current path yields the path slice from that node.  Cycles
    are deduplicated by rotation.
    """
    formula_cells = set(graph.formulas)
    adjacency = {
        cell: sorted(graph.dependencies.get(cell, set()) & formula_cells)
        for cell in formula_cells
    }

    seen: dict[tuple[str, ...], None] = {}
    done: set[str] = set()

    for root in sorted(formula_cells):
        if root in done:
            continue
        path: list[str] = [root]
        position: dict[str, int] = {root: 0}
        stack: list[tuple[str, int]] = [(root, 0)]

        while stack:
            node, next_child = stack[-1]
            children = adjacency[node]
            if next_child >= len(children):
                stack.pop()
                path.pop()
                del position[node]
                done.add(node)
                continue
            stack[-1] = (node, next_child + 1)
            child = children[next_child]
            if child in position:
                seen.setdefault(_canonical_rotation(path[position[child]:]), None)
            elif child not in done:
                position[child] = len(path)
                path.append(child)
                stack.append((child, 0))

    return list(seen)


def _classify(cycle: tuple[str, ...], formulas: dict[str, str]) -> CircularChain:
    closed = cycle + (cycle[0],)
    sheet = cycle[0].rsplit("!", 1)[0]
    chain_type = "direct" if len(cycle) <= 2 else "indirect"
    if len(closed) > _HIGH_SEVERITY_LENGTH:
        severity = "high"
    elif len(closed) >= 3:
        severity = "medium"
    elif any(len(formulas.get(c, "")) > _LONG_FORMULA for c in cycle):
        severity = "high"
    else:
        severity = "low"
    return CircularChain(cells=closed, sheet=sheet, chain_type=chain_type, severity=severity)


class CircularReferenceGuard:
    """Finds reference cycles in a workbook.

    Usage::

        report = CircularReferenceGuard().detect(workbook)
        if report.has_circular_references:
            ...
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or default_settings

    def detect(self, workbook: Workbook) -> CircularReferenceReport:
        started = time.perf_counter()
        graph = DependencyGraph.from_workbook(
            workbook,
            max_cells=self.settings.sample_max_cells,
            edge_step=self.settings.edge_sample_step,
        )
        chains = tuple(_classify(c, graph.formulas) for c in find_cycles(graph))
        elapsed = (time.perf_counter() - started) * 1000.0

        warnings: list[str] = []
        if elapsed > self.settings.analysis_warn_ms:
            warnings.append(
                f"Circular reference analysis took {elapsed:.0f} ms "
                f"({len(graph.formulas)} formula cells)"
            )
        if chains:
            logger.warning(
                "Found %d circular reference chain(s): %s",
                len(chains), "; ".join(" -> ".join(c.cells) for c in chains),
            )
        return CircularReferenceReport(
            has_circular_references=bool(chains),
            circular_chains=chains,
            analysis_time_ms=round(elapsed, 3),
            warnings=tuple(warnings),
        )


def detect_circular_references(
    workbook: Workbook, settings: Settings | None = None
) -> CircularReferenceReport:
    return CircularReferenceGuard(settings).detect(workbook)


def recovery_operations(workbook: Workbook, chain: CircularChain, action: str) -> list[SetCell]:
    """Operations that resolve *chain*, to be run through the applier.

    ``break_chain`` clears the formula that closes the chain,
    ``convert_to_value`` freezes every member at its cached computed value
    (errors and missing values become empty), ``clear_formulas`` empties
    every member and ``ignore`` does nothing.
    """
    if action not in RECOVERY_ACTIONS:
        raise ValueError(f"Unknown recovery action {action!r}; expected one of {RECOVERY_ACTIONS}")
    if action == "ignore":
        return []

    targets = chain.members
    if action == "break_chain":
        targets = (chain.cells[-1],)

    ops: list[SetCell] = []
    for ref in targets:
        sheet, a1 = ref.rsplit("!", 1)
        value: Any = None
        if action == "convert_to_value" and sheet in workbook:
            cell = workbook[sheet].get(parse_address(a1))
            computed = cell.computed if cell is not None else None
            if computed is not None and computed.error is None:
                value = computed.value
        ops.append(SetCell(sheet=sheet, cell=a1, value=value))
    return ops
