"""Schema catalog - tables, columns and primary keys from the system catalog."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional

from tablemin.errors import QUERY_CANCELED, ExecutionError, TableNotFound
from tablemin.gateway import ConnectionGateway
from tablemin.models import ColumnMetadata, PrimaryKey, Statement, TableMetadata

logger = logging.getLogger(__name__)

LIST_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = :schema
    AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

COLUMNS_SQL = """
    SELECT c.column_name, c.data_type, c.is_nullable, c.column_default,
           c.ordinal_position, c.identity_generation, c.is_generated,
           format_type(a.atttypid, NULL) AS sql_type,
           col_description(a.attrelid, a.attnum) AS comment
    FROM information_schema.columns c
    JOIN pg_catalog.pg_namespace n ON n.nspname = c.table_schema
    JOIN pg_catalog.pg_class t ON t.relnamespace = n.oid AND t.relname = c.table_name
    JOIN pg_catalog.pg_attribute a ON a.attrelid = t.oid AND a.attname = c.column_name
    WHERE c.table_schema = :schema AND c.table_name = :table_name
    ORDER BY c.ordinal_position
"""

PRIMARY_KEY_SQL = """
    SELECT a.attname
    FROM pg_catalog.pg_index i
    JOIN pg_catalog.pg_class t ON t.oid = i.indrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_catalog.pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
    WHERE n.nspname = :schema AND t.relname = :table_name
    AND i.indisprimary
"""

_TABLES_KEY = ("tables",)


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


def _consume_exception(future: "asyncio.Future[Any]") -> None:
    # Keeps asyncio quiet when every waiter was cancelled before the load failed
    if not future.cancelled():
        future.exception()


class SchemaCatalog:
    """
    Discovers tables, columns and primary keys of one schema.

    Results are cached per key for `ttl` seconds. Refills are single-flight:
    concurrent callers for the same key share one in-flight catalog query.
    Each caller waits at most its own timeout, and the query is cancelled
    once every caller has gone. Failed loads are never cached.
    """

    def __init__(
        self,
        gateway: ConnectionGateway,
        schema: str = "public",
        ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.schema = schema
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, _CacheEntry] = {}
        self._inflight: Dict[Hashable, "asyncio.Task[Any]"] = {}
        self._waiters: Dict["asyncio.Task[Any]", int] = {}
        self._generation = 0

    async def list_tables(self, timeout: Optional[float] = None) -> List[str]:
        """All base tables in the schema, sorted by name."""
        tables = await self._cached(
            _TABLES_KEY, lambda: self._load_tables(timeout), timeout
        )
        return list(tables)

    async def describe_table(
        self, name: str, timeout: Optional[float] = None
    ) -> TableMetadata:
        """Columns in ordinal order plus primary key; TableNotFound if unlisted."""
        return await self._cached(
            ("table", name), lambda: self._load_table(name, timeout), timeout
        )

    async def primary_key_of(
        self, name: str, timeout: Optional[float] = None
    ) -> PrimaryKey:
        meta = await self.describe_table(name, timeout)
        return meta.primary_key

    def invalidate(self, name: Optional[str] = None) -> None:
        """Forget one table (and the table list), or everything."""
        self._generation += 1
        if name is None:
            self._entries.clear()
        else:
            self._entries.pop(("table", name), None)
            self._entries.pop(_TABLES_KEY, None)
        logger.debug(f"Schema cache invalidated: {name or 'all tables'}")

    async def _cached(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
        timeout: Optional[float],
    ) -> Any:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            return entry.value

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fill(key, loader))
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
        timeout = self.gateway.default_timeout if timeout is None else timeout

        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            # One waiter giving up must not abort the load for the others
            if timeout is None:
                return await asyncio.shield(task)
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            raise ExecutionError(
                f"Catalog query cancelled after {timeout}s", code=QUERY_CANCELED
            ) from None
        finally:
            self._leave(key, task)

    def _leave(self, key: Hashable, task: "asyncio.Task[Any]") -> None:
        self._waiters[task] -= 1
        if self._waiters[task]:
            return
        del self._waiters[task]
        if not task.done():
            # Nobody is waiting any more; stop the catalog query
            if self._inflight.get(key) is task:
                del self._inflight[key]
            task.cancel()
            logger.debug(f"Schema cache refill abandoned: {key}")

    async def _fill(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        generation = self._generation
        try:
            value = await loader()
            if generation == self._generation:
                self._entries[key] = _CacheEntry(value, self._clock() + self.ttl)
            logger.debug(f"Schema cache refilled: {key}")
            return value
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    async def _load_tables(self, timeout: Optional[float]) -> List[str]:
        result = await self.gateway.execute(
            Statement(sql=LIST_TABLES_SQL, binds={"schema": self.schema}), timeout
        )
        return [row["table_name"] for row in result.rows]

    async def _load_table(self, name: str, timeout: Optional[float]) -> TableMetadata:
        tables = await self.list_tables(timeout)
        if name not in tables:
            # The cached list may predate the table; look once more before failing
            self._entries.pop(_TABLES_KEY, None)
            tables = await self.list_tables(timeout)
            if name not in tables:
                raise TableNotFound(name)

        binds = {"schema": self.schema, "table_name": name}
        column_rows = await self.gateway.execute(Statement(sql=COLUMNS_SQL, binds=binds), timeout)
        pk_rows = await self.gateway.execute(Statement(sql=PRIMARY_KEY_SQL, binds=binds), timeout)

        columns = tuple(
            ColumnMetadata(
                name=row["column_name"],
                data_type=row["data_type"],
                sql_type=row["sql_type"],
                nullable=row["is_nullable"] == "YES",
                ordinal_position=row["ordinal_position"],
                default=row["column_default"],
                comment=row["comment"],
                identity=row["identity_generation"],
                generated=row["is_generated"] == "ALWAYS",
            )
            for row in column_rows.rows
        )

        pk_names = [row["attname"] for row in pk_rows.rows]
        if len(pk_names) == 1:
            primary_key = PrimaryKey.column(pk_names[0])
        else:
            if pk_names:
                logger.debug(f"Composite primary key on '{name}' treated as no primary key")
            primary_key = PrimaryKey.none()

        return TableMetadata(
            name=name, columns=columns, primary_key=primary_key, schema=self.schema
        )
