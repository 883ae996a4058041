"""Table schemas for browsing, editing and raw SQL."""

import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from tablemin.field_kinds import FieldKind, field_kind
from tablemin.models import CommandResult, ColumnMetadata, Page, TableMetadata

# Values pydantic already writes as JSON
_JSON_READY = (
    str, int, float, bool, datetime.date, datetime.time, datetime.timedelta, Decimal, UUID,
)


def cell_value(value: Any) -> Any:
    """Database value as something JSON can carry; bytea in PostgreSQL hex form."""
    if value is None or isinstance(value, _JSON_READY):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [cell_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): cell_value(v) for k, v in value.items()}
    return str(value)


def json_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {name: cell_value(value) for name, value in row.items()}


class ColumnInfo(BaseModel):
    """Column information schema."""

    name: str
    type: str
    nullable: bool
    default: Optional[str] = None
    comment: Optional[str] = None
    position: int
    primary_key: bool = False
    server_generated: bool = False
    field_kind: FieldKind

    @classmethod
    def from_metadata(cls, column: ColumnMetadata, is_pk: bool) -> "ColumnInfo":
        return cls(
            name=column.name,
            type=column.data_type,
            nullable=column.nullable,
            default=column.default,
            comment=column.comment,
            position=column.ordinal_position,
            primary_key=is_pk,
            server_generated=column.server_generated,
            field_kind=field_kind(column.data_type),
        )


class TableInfo(BaseModel):
    """Table information schema."""

    name: str
    primary_key: Optional[str] = None
    columns: List[ColumnInfo]

    @classmethod
    def from_metadata(cls, meta: TableMetadata) -> "TableInfo":
        pk = meta.primary_key.name
        return cls(
            name=meta.name,
            primary_key=pk,
            columns=[ColumnInfo.from_metadata(c, c.name == pk) for c in meta.columns],
        )


class PageResponse(BaseModel):
    """One page of table rows."""

    table_name: str
    page: int
    page_size: int
    total_pages: int
    total_rows: int
    offset: int
    ordered: bool
    search: Optional[str] = None
    columns: List[str]
    data: List[Dict[str, Any]]

    @classmethod
    def from_page(cls, page: Page) -> "PageResponse":
        return cls(
            table_name=page.table,
            page=page.pager.clamped_page,
            page_size=page.page_size,
            total_pages=page.pager.total_pages,
            total_rows=page.total_rows,
            offset=page.pager.offset,
            ordered=page.ordered,
            search=page.term,
            columns=page.rows.columns,
            data=[json_row(r) for r in page.rows.rows],
        )


class CommandResponse(BaseModel):
    """Outcome of a write statement."""

    command: str
    row_count: int
    row: Optional[Dict[str, Any]] = None

    @classmethod
    def from_result(cls, result: CommandResult) -> "CommandResponse":
        row = None
        if result.returned is not None and result.returned.rows:
            row = json_row(result.returned.rows[0])
        return cls(command=result.command, row_count=result.row_count, row=row)


class RowValues(BaseModel):
    """Column values for insert or update."""

    values: Dict[str, Any] = Field(default_factory=dict)


class SqlRequest(BaseModel):
    """Raw SQL to execute."""

    sql: str = Field(..., min_length=1)


class SqlResponse(BaseModel):
    """Raw SQL outcome: rows for reads, command and count otherwise."""

    command: str
    row_count: int
    columns: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
