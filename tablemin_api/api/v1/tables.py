"""Table explorer endpoints."""

import io
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Query, status
from fastapi.responses import StreamingResponse

from tablemin_api.api.deps import TableSvc
from tablemin_api.schemas.table import (
    CommandResponse,
    PageResponse,
    RowValues,
    TableInfo,
    json_row,
)

router = APIRouter(prefix="/tables", tags=["tables"])


@router.get("/", response_model=List[str])
async def list_tables(service: TableSvc) -> List[str]:
    """List all tables in the configured schema."""
    return await service.list_tables()


@router.get("/{table_name}", response_model=TableInfo)
async def describe_table(table_name: str, service: TableSvc) -> TableInfo:
    """Get columns, field kinds and primary key of a table."""
    meta = await service.describe_table(table_name)
    return TableInfo.from_metadata(meta)


@router.get("/{table_name}/rows", response_model=PageResponse)
async def fetch_page(
    table_name: str,
    service: TableSvc,
    page: int = Query(default=1),
) -> PageResponse:
    """Page through a table."""
    result = await service.fetch_page(table_name, page)
    return PageResponse.from_page(result)


@router.get("/{table_name}/search", response_model=PageResponse)
async def search(
    table_name: str,
    service: TableSvc,
    q: str = Query(default=""),
    page: int = Query(default=1),
) -> PageResponse:
    """Rows where any column contains q, case-insensitively."""
    result = await service.search(table_name, q, page)
    return PageResponse.from_page(result)


@router.get("/{table_name}/export.csv")
async def export_table(
    table_name: str,
    service: TableSvc,
    q: Optional[str] = Query(default=None),
) -> StreamingResponse:
    """Export a table, or its search matches, as CSV."""
    frame = await service.load_table_as_dataframe(table_name, term=q)
    buffer = io.StringIO()
    frame.to_csv(buffer, index=False)
    buffer.seek(0)
    return StreamingResponse(
        buffer,
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(table_name, safe='')}.csv"
        },
    )


@router.get("/{table_name}/rows/{pk_value}")
async def get_row(table_name: str, pk_value: str, service: TableSvc) -> dict:
    """Get one row by primary key."""
    row = await service.get_row(table_name, pk_value)
    return json_row(row)


@router.post(
    "/{table_name}/rows",
    response_model=CommandResponse,
    status_code=status.HTTP_201_CREATED,
)
async def insert_row(
    table_name: str,
    body: RowValues,
    service: TableSvc,
) -> CommandResponse:
    """Insert a row; server-generated columns are filled by the database."""
    result = await service.insert(table_name, body.values)
    return CommandResponse.from_result(result)


@router.patch("/{table_name}/rows/{pk_value}", response_model=CommandResponse)
async def update_row(
    table_name: str,
    pk_value: str,
    body: RowValues,
    service: TableSvc,
) -> CommandResponse:
    """Update columns of one row."""
    result = await service.update(table_name, pk_value, body.values)
    return CommandResponse.from_result(result)


@router.delete("/{table_name}/rows/{pk_value}", response_model=CommandResponse)
async def delete_row(
    table_name: str,
    pk_value: str,
    service: TableSvc,
) -> CommandResponse:
    """Delete one row by primary key."""
    result = await service.delete(table_name, pk_value)
    return CommandResponse.from_result(result)
