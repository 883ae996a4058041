"""Raw SQL endpoint."""

import logging

from fastapi import APIRouter

from tablemin.models import CommandResult
from tablemin_api.api.deps import TableSvc
from tablemin_api.schemas.table import SqlRequest, SqlResponse, json_row

router = APIRouter(prefix="/sql", tags=["sql"])
logger = logging.getLogger(__name__)


@router.post("", response_model=SqlResponse)
async def run_sql(body: SqlRequest, service: TableSvc) -> SqlResponse:
    """
    Execute one SQL statement.

    When the database is read-only, every statement is rejected.
    """
    logger.info(f"Raw SQL requested ({len(body.sql)} chars)")
    result = await service.run_raw_sql(body.sql)

    if isinstance(result, CommandResult):
        return SqlResponse(command=result.command, row_count=result.row_count)

    command = body.sql.strip().split(None, 1)[0].upper()
    return SqlResponse(
        command=command,
        row_count=len(result),
        columns=result.columns,
        rows=[json_row(r) for r in result.rows],
    )
