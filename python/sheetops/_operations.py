"""Operation schema: a closed tagged union of workbook edits.

Wire names are camelCase (``oldName``); Python attributes are snake_case.
The schema checks shape only.  Addresses, ranges, formulas, scalar values
and counts are validated by the applier so that a bad one fails just its
own operation instead of the whole batch.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from sheetops._errors import BatchError


class _OperationBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """camelCase dict, omitting fields that were never set."""
        data = self.model_dump(by_alias=True, exclude_unset=True)
        data["kind"] = self.kind  # type: ignore[attr-defined]
        return data


class SetCell(_OperationBase):
    """Write a raw value or a formula into one cell."""

    kind: Literal["set_cell"] = "set_cell"
    sheet: str
    cell: str
    value: Any = None
    formula: str | None = None
    format: dict[str, Any] | None = None

    @property
    def has_value(self) -> bool:
        """True when ``value`` was supplied, even as null."""
        return "value" in self.model_fields_set


class FillRange(_OperationBase):
    """Write the same value or formula template into every cell of a range.

    Formula templates may use ``{row}`` (row number) and ``{col}`` (column
    letters) placeholders.
    """

    kind: Literal["fill_range"] = "fill_range"
    sheet: str
    range: str
    value: Any = None
    formula: str | None = None
    format: dict[str, Any] | None = None

    @property
    def has_value(self) -> bool:
        return "value" in self.model_fields_set


class SetRange(_OperationBase):
    """Write a rows x cols block of values; ``=``-prefixed strings are formulas."""

    kind: Literal["set_range"] = "set_range"
    sheet: str
    range: str
    values: list[Any]


class InsertRows(_OperationBase):
    kind: Literal["insert_rows"] = "insert_rows"
    sheet: str
    before: int
    count: int = 1


class InsertCols(_OperationBase):
    kind: Literal["insert_cols"] = "insert_cols"
    sheet: str
    before: int
    count: int = 1


class DeleteRows(_OperationBase):
    kind: Literal["delete_rows"] = "delete_rows"
    sheet: str
    start: int
    count: int = 1


class DeleteCols(_OperationBase):
    kind: Literal["delete_cols"] = "delete_cols"
    sheet: str
    start: int
    count: int = 1


class AddSheet(_OperationBase):
    kind: Literal["add_sheet"] = "add_sheet"
    name: str


class RenameSheet(_OperationBase):
    kind: Literal["rename_sheet"] = "rename_sheet"
    old_name: str
    new_name: str


class DeleteSheet(_OperationBase):
    kind: Literal["delete_sheet"] = "delete_sheet"
    name: str


class FormatRange(_OperationBase):
    """Merge a style payload onto every cell of a range."""

    kind: Literal["format_range"] = "format_range"
    sheet: str
    range: str
    format: dict[str, Any]


Operation = Annotated[
    Union[
        SetCell,
        FillRange,
        SetRange,
        InsertRows,
        InsertCols,
        DeleteRows,
        DeleteCols,
        AddSheet,
        RenameSheet,
        DeleteSheet,
        FormatRange,
    ],
    Field(discriminator="kind"),
]

OPERATION_TYPES: tuple[type[_OperationBase], ...] = get_args(get_args(Operation)[0])
OPERATION_KINDS: frozenset[str] = frozenset(
    t.model_fields["kind"].default for t in OPERATION_TYPES
)

_BATCH_ADAPTER = TypeAdapter(list[Operation])


def parse_operations(payload: Any) -> list[Operation]:
    """Validate a wire-form batch into typed operations.

    Already-typed operations pass through.  Raises :class:`BatchError`
    when *payload* is not a list or any item does not match the schema.
    """
    if not isinstance(payload, (list, tuple)):
        raise BatchError(f"Operations must be a list, got {type(payload).__name__}")
    items = [
        op.to_wire() if isinstance(op, _OperationBase) else op
        for op in payload
    ]
    try:
        return _BATCH_ADAPTER.validate_python(items)
    except ValidationError as exc:
        raise BatchError(f"Invalid operation batch: {exc.error_count()} error(s)\n{exc}") from exc
