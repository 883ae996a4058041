"""Shared endpoint dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from tablemin.service import TableService


def get_table_service(request: Request) -> TableService:
    """Service created in the application lifespan."""
    return request.app.state.table_service


TableSvc = Annotated[TableService, Depends(get_table_service)]
