"""Pydantic schemas for request/response validation."""

from tablemin_api.schemas.table import (
    ColumnInfo,
    CommandResponse,
    PageResponse,
    RowValues,
    SqlRequest,
    SqlResponse,
    TableInfo,
)

__all__ = [
    "ColumnInfo",
    "CommandResponse",
    "PageResponse",
    "RowValues",
    "SqlRequest",
    "SqlResponse",
    "TableInfo",
]
