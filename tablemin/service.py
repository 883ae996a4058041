"""Table browsing and editing service built on the catalog, builder and gateway."""

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Mapping, Optional, TypeVar, Union

import pandas as pd
from sqlalchemy.ext.asyncio import AsyncEngine

from tablemin import pager
from tablemin.catalog import SchemaCatalog
from tablemin.config import EngineConfig
from tablemin.errors import QUERY_CANCELED, ExecutionError, NotFound, ReadOnlyViolation
from tablemin.gateway import ConnectionGateway, is_pure_read
from tablemin.models import (
    CommandResult,
    Page,
    Predicate,
    PrimaryKey,
    RowSet,
    Statement,
    TableMetadata,
)
from tablemin.query_builder import QueryBuilder

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TableService:
    """
    Operations on arbitrary tables of one schema.

    Each call resolves the table through the catalog, builds a statement,
    executes it and maps the result. Every call accepts a timeout in seconds
    that bounds the whole call, catalog lookup included; None falls back to
    the configured statement timeout.
    """

    def __init__(
        self,
        gateway: ConnectionGateway,
        catalog: SchemaCatalog,
        config: EngineConfig,
        builder: Optional[QueryBuilder] = None,
    ):
        self.gateway = gateway
        self.catalog = catalog
        self.config = config
        self.builder = builder or QueryBuilder()

    @classmethod
    def from_engine(cls, engine: AsyncEngine, config: EngineConfig) -> "TableService":
        """Wire gateway, catalog and builder around an engine."""
        gateway = ConnectionGateway(
            engine,
            read_only=config.read_only,
            default_timeout=config.statement_timeout,
        )
        catalog = SchemaCatalog(gateway, schema=config.schema, ttl=config.cache_ttl)
        return cls(gateway, catalog, config)

    @property
    def read_only(self) -> bool:
        return self.config.read_only

    async def list_tables(self, timeout: Optional[float] = None) -> List[str]:
        return await self.catalog.list_tables(timeout)

    async def describe_table(
        self, table_name: str, timeout: Optional[float] = None
    ) -> TableMetadata:
        return await self.catalog.describe_table(table_name, timeout)

    async def primary_key_of(
        self, table_name: str, timeout: Optional[float] = None
    ) -> PrimaryKey:
        return await self.catalog.primary_key_of(table_name, timeout)

    async def fetch_page(
        self, table_name: str, page: int = 1, timeout: Optional[float] = None
    ) -> Page:
        """One page of a table, ordered by primary key when it has one."""
        return await self._bounded(self._fetch_page(table_name, page, timeout), timeout)

    async def search(
        self,
        table_name: str,
        term: Optional[str],
        page: int = 1,
        timeout: Optional[float] = None,
    ) -> Page:
        """Rows where any column, as text, contains term (case-insensitive)."""
        return await self._bounded(self._search(table_name, term, page, timeout), timeout)

    async def get_row(
        self, table_name: str, pk_value: Any, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """Single row by primary key value."""
        return await self._bounded(self._get_row(table_name, pk_value, timeout), timeout)

    async def insert(
        self,
        table_name: str,
        values: Mapping[str, Any],
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Insert a row; the result carries the stored row in `returned`."""
        self._ensure_writable("INSERT")
        return await self._bounded(self._insert(table_name, values, timeout), timeout)

    async def update(
        self,
        table_name: str,
        pk_value: Any,
        changes: Mapping[str, Any],
        timeout: Optional[float] = None,
    ) -> CommandResult:
        self._ensure_writable("UPDATE")
        return await self._bounded(
            self._update(table_name, pk_value, changes, timeout), timeout
        )

    async def delete(
        self, table_name: str, pk_value: Any, timeout: Optional[float] = None
    ) -> CommandResult:
        self._ensure_writable("DELETE")
        return await self._bounded(self._delete(table_name, pk_value, timeout), timeout)

    async def run_raw_sql(
        self, sql_text: str, timeout: Optional[float] = None
    ) -> Union[RowSet, CommandResult]:
        """
        Run admin-supplied SQL as a single statement.

        In read-only mode every raw statement is a ReadOnlyViolation raised
        before the database is contacted. Anything but a pure read may change
        the schema, so the catalog cache is dropped after it runs.
        """
        self._ensure_writable("SQL")
        statement = self.builder.prepare_raw_execute(sql_text)
        try:
            result = await self.gateway.execute(statement, timeout)
        except ExecutionError as exc:
            if exc.is_schema_mismatch:
                self.catalog.invalidate()
            raise
        if not is_pure_read(statement.sql):
            self.catalog.invalidate()
        return result

    async def load_table_as_dataframe(
        self,
        table_name: str,
        term: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> pd.DataFrame:
        """
        Load a table (or its search matches) as a DataFrame in chunks.

        Stops at export_max_rows. Tables without a primary key have no stable
        order, so chunks of a table that changes meanwhile may overlap.
        The timeout applies to each chunk query, not the whole export.
        """
        meta = await self.catalog.describe_table(table_name, timeout)
        chunk_size = self.config.export_chunk_size
        chunks = []
        loaded = 0
        page = 1

        while loaded < self.config.export_max_rows:
            if term is None:
                statement = self.builder.build_select_page(meta, page, chunk_size)
            else:
                statement = self.builder.build_search(meta, term, page, chunk_size)
            rows = await self._execute(meta, statement, timeout)
            if not rows.rows:
                break
            chunks.append(rows.to_dataframe())
            loaded += len(rows)
            if len(rows) < chunk_size:
                break
            page += 1

        logger.debug(f"Loaded {loaded} rows from '{table_name}' in {len(chunks)} chunks")
        if not chunks:
            return pd.DataFrame(columns=meta.column_names)
        frame = pd.concat(chunks, ignore_index=True)
        return frame.head(self.config.export_max_rows)

    async def _bounded(self, operation: Awaitable[T], timeout: Optional[float]) -> T:
        """Run a whole multi-statement operation within one deadline."""
        timeout = self.gateway.default_timeout if timeout is None else timeout
        if timeout is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Operation cancelled after {timeout}s")
            raise ExecutionError(
                f"Operation cancelled after {timeout}s", code=QUERY_CANCELED
            ) from None

    async def _fetch_page(
        self, table_name: str, page: int, timeout: Optional[float]
    ) -> Page:
        meta = await self.catalog.describe_table(table_name, timeout)
        statement = self.builder.build_select_page(meta, page, self.config.page_size)
        return await self._page(meta, statement, page, None, None, timeout)

    async def _search(
        self, table_name: str, term: Optional[str], page: int, timeout: Optional[float]
    ) -> Page:
        meta = await self.catalog.describe_table(table_name, timeout)
        predicate = self.builder.search_predicate(meta, term)
        statement = self.builder.build_search(meta, term, page, self.config.page_size)
        return await self._page(meta, statement, page, predicate, term, timeout)

    async def _get_row(
        self, table_name: str, pk_value: Any, timeout: Optional[float]
    ) -> Dict[str, Any]:
        meta = await self.catalog.describe_table(table_name, timeout)
        result = await self._execute(meta, self.builder.build_get_row(meta, pk_value), timeout)
        if not result.rows:
            raise NotFound(f"Row {pk_value!r} not found in '{table_name}'")
        return result.rows[0]

    async def _insert(
        self, table_name: str, values: Mapping[str, Any], timeout: Optional[float]
    ) -> CommandResult:
        meta = await self.catalog.describe_table(table_name, timeout)
        statement = self.builder.build_insert(meta, values)
        return await self._execute(meta, statement, timeout)

    async def _update(
        self,
        table_name: str,
        pk_value: Any,
        changes: Mapping[str, Any],
        timeout: Optional[float],
    ) -> CommandResult:
        meta = await self.catalog.describe_table(table_name, timeout)
        statement = self.builder.build_update(meta, pk_value, changes)
        result = await self._execute(meta, statement, timeout)
        if result.row_count == 0:
            raise NotFound(f"Row {pk_value!r} not found in '{table_name}'")
        return result

    async def _delete(
        self, table_name: str, pk_value: Any, timeout: Optional[float]
    ) -> CommandResult:
        meta = await self.catalog.describe_table(table_name, timeout)
        statement = self.builder.build_delete(meta, pk_value)
        result = await self._execute(meta, statement, timeout)
        if result.row_count == 0:
            raise NotFound(f"Row {pk_value!r} not found in '{table_name}'")
        return result

    async def _page(
        self,
        meta: TableMetadata,
        statement: Statement,
        page: int,
        predicate: Optional[Predicate],
        term: Optional[str],
        timeout: Optional[float],
    ) -> Page:
        count = await self._execute(meta, self.builder.build_count(meta, predicate), timeout)
        total_rows = int(count.rows[0]["total"])
        pager_result = pager.compute(page, total_rows, self.config.page_size)

        result = await self._execute(meta, statement, timeout)
        rows = RowSet(columns=meta.column_names, rows=result.rows)
        return Page(
            table=meta.name,
            rows=rows,
            pager=pager_result,
            total_rows=total_rows,
            page_size=self.config.page_size,
            ordered=statement.ordered,
            term=term,
        )

    async def _execute(
        self, meta: TableMetadata, statement: Statement, timeout: Optional[float]
    ) -> Any:
        try:
            return await self.gateway.execute(statement, timeout)
        except ExecutionError as exc:
            if exc.is_schema_mismatch:
                self.catalog.invalidate(meta.name)
            raise

    def _ensure_writable(self, command: str) -> None:
        if self.config.read_only:
            logger.warning(f"Rejected {command}: database is read-only")
            raise ReadOnlyViolation(
                f"{command} is not allowed: database is configured as read-only"
            )
