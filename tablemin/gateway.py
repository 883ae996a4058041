"""
Connection gateway - executes statements on the pooled async engine.

The read-only policy is enforced here, before a connection is checked out of
the pool. Raw SQL cannot be validated, so a read-only gateway rejects all of it.
"""

import asyncio
import logging
import re
from typing import Optional, Union

from sqlalchemy import text
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from tablemin.errors import (
    CONNECTION_FAILURE,
    QUERY_CANCELED,
    ExecutionError,
    ReadOnlyViolation,
)
from tablemin.models import CommandResult, RowSet, Statement, StatementKind

logger = logging.getLogger(__name__)

# Leading keywords of statements that only read
READ_KEYWORDS = {"SELECT", "WITH", "SHOW", "EXPLAIN", "VALUES", "TABLE"}

# Keywords that make a statement something other than a pure read
WRITE_KEYWORDS = re.compile(
    r"\b(INSERT|UPDATE|DELETE|MERGE|UPSERT|ALTER|DROP|CREATE|TRUNCATE|GRANT|REVOKE"
    r"|COPY|CALL|DO|LOCK|VACUUM|ANALYZE|REINDEX|CLUSTER|REFRESH|COMMENT|SECURITY"
    r"|INTO|SET|RESET|NOTIFY|LISTEN|UNLISTEN|PREPARE|EXECUTE|DEALLOCATE|DISCARD"
    r"|IMPORT|BEGIN|START|COMMIT|ROLLBACK|SAVEPOINT|RELEASE)\b",
    re.IGNORECASE,
)

# Comments, dollar-quoted bodies, string literals and quoted identifiers
_OPAQUE = re.compile(
    r"""
      (?P<comment>--[^\n]*|/\*.*?\*/)
    | (?P<dollar>\$(?P<tag>[A-Za-z_][A-Za-z0-9_]*|)\$.*?\$(?P=tag)\$)
    | (?P<string>'(?:[^']|'')*')
    | (?P<ident>"(?:[^"]|"")*")
    """,
    re.DOTALL | re.VERBOSE,
)


def strip_opaque(sql: str) -> str:
    """Blank out comments, literals and quoted identifiers."""
    return _OPAQUE.sub(" ? ", sql)


def is_pure_read(sql: str) -> bool:
    """
    Decide whether raw SQL only reads.

    Single statement, leading keyword in READ_KEYWORDS, and no write or DDL
    keyword anywhere outside comments and literals.
    """
    cleaned = strip_opaque(sql).strip().rstrip(";").strip()
    if not cleaned or ";" in cleaned:
        return False
    head = cleaned.split(None, 1)[0].upper()
    if head not in READ_KEYWORDS:
        return False
    return WRITE_KEYWORDS.search(cleaned) is None


def _error_code(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return code
    return None


def _error_message(exc: DBAPIError) -> str:
    # asyncpg errors arrive wrapped by the SQLAlchemy adapter; prefer the driver exception
    source = getattr(exc.orig, "__cause__", None) or exc.orig or exc
    return str(source).strip()


class ConnectionGateway:
    """
    Owns the engine's bounded connection pool and runs Statements.

    Reads return a RowSet; writes return a CommandResult. Database failures
    are raised as ExecutionError and leave the pool usable.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        read_only: bool = False,
        default_timeout: Optional[float] = None,
    ):
        self.engine = engine
        self.read_only = read_only
        self.default_timeout = default_timeout

    def check_allowed(self, statement: Statement) -> None:
        """Raise ReadOnlyViolation for anything but a built read in read-only mode."""
        if not self.read_only or statement.kind is StatementKind.READ:
            return
        logger.warning(f"Rejected {statement.command} statement: database is read-only")
        raise ReadOnlyViolation(
            f"{statement.command} is not allowed: database is configured as read-only"
        )

    async def execute(
        self, statement: Statement, timeout: Optional[float] = None
    ) -> Union[RowSet, CommandResult]:
        """
        Execute a statement within an optional deadline.

        Args:
            statement: Built or raw statement
            timeout: Seconds before the statement is cancelled; defaults to
                the gateway's default_timeout

        Returns:
            RowSet for row-returning statements, CommandResult otherwise
        """
        self.check_allowed(statement)
        timeout = self.default_timeout if timeout is None else timeout
        logger.debug(f"Executing {statement.command} ({statement.kind.value})")

        try:
            if timeout is None:
                return await self._run(statement)
            return await asyncio.wait_for(self._run(statement), timeout)
        except asyncio.TimeoutError:
            raise ExecutionError(
                f"Statement cancelled after {timeout}s", code=QUERY_CANCELED
            ) from None
        except DBAPIError as exc:
            raise ExecutionError(_error_message(exc), code=_error_code(exc)) from exc
        except (OSError, SQLAlchemyError) as exc:
            # Raised before a statement reaches the server, e.g. connection refused
            logger.error(f"Database unavailable: {exc!r}")
            raise ExecutionError(
                str(exc) or type(exc).__name__, code=CONNECTION_FAILURE
            ) from exc

    async def _run(self, statement: Statement) -> Union[RowSet, CommandResult]:
        if statement.kind is StatementKind.READ:
            async with self.engine.connect() as conn:
                result = await conn.execute(text(statement.sql), statement.binds)
                return self._normalize(statement, result)

        if statement.kind is StatementKind.RAW:
            # Reads run in a read-only transaction that is rolled back on release
            if is_pure_read(statement.sql):
                async with self.engine.connect() as conn:
                    await conn.exec_driver_sql("SET TRANSACTION READ ONLY")
                    result = await conn.exec_driver_sql(statement.sql)
                    return self._normalize(statement, result)
            async with self.engine.begin() as conn:
                result = await conn.exec_driver_sql(statement.sql)
                return self._normalize(statement, result)

        async with self.engine.begin() as conn:
            result = await conn.execute(text(statement.sql), statement.binds)
            return self._normalize(statement, result)

    @staticmethod
    def _normalize(
        statement: Statement, result: CursorResult
    ) -> Union[RowSet, CommandResult]:
        if result.returns_rows:
            rows = RowSet(
                columns=list(result.keys()),
                rows=[dict(row._mapping) for row in result],
            )
            if statement.kind is StatementKind.WRITE:
                return CommandResult(
                    command=statement.command, row_count=len(rows), returned=rows
                )
            return rows

        row_count = result.rowcount if result.rowcount is not None else 0
        return CommandResult(command=statement.command, row_count=max(row_count, 0))

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.engine.dispose()
