"""
Parameterized SQL generation for arbitrary catalog tables.

Identifiers are taken only from TableMetadata and quoted with the PostgreSQL
dialect's identifier preparer. Every value is a bound parameter.
"""

import datetime
import json
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.dialects import postgresql

from tablemin import pager
from tablemin.errors import InvalidArgument
from tablemin.models import (
    ColumnMetadata,
    Predicate,
    Statement,
    StatementKind,
    TableMetadata,
)

_preparer = postgresql.dialect().identifier_preparer

# Backslash is PostgreSQL's default LIKE escape character
_LIKE_ESCAPES = str.maketrans({"\\": "\\\\", "%": "\\%", "_": "\\_"})


def _escape_colons(sql: str) -> str:
    # text() reads ":word" as a bind marker, even inside quoted identifiers
    return sql.replace(":", "\\:")


def quote_ident(name: str) -> str:
    """Always double-quote an identifier, doubling embedded quotes."""
    return _escape_colons(_preparer.quote_identifier(name))


def to_text_param(value: Any) -> Optional[str]:
    """Convert a request value to the text form PostgreSQL will cast."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    return str(value)


class QueryBuilder:
    """
    Builds Statements for paging, searching and mutating a table.

    Column names coming from requests are checked against the metadata with
    TableMetadata.column(), which raises IdentifierRejected for unknown names
    before any SQL text is assembled.
    """

    def table_ref(self, meta: TableMetadata) -> str:
        return f"{quote_ident(meta.schema)}.{quote_ident(meta.name)}"

    def select_list(self, meta: TableMetadata) -> str:
        return ", ".join(quote_ident(c.name) for c in meta.columns)

    def typed_param(self, column: ColumnMetadata, bind_name: str) -> str:
        """Bind as text and cast to the column's declared type."""
        return f"CAST(CAST(:{bind_name} AS text) AS {_escape_colons(column.sql_type)})"

    def _pk_predicate(self, meta: TableMetadata, pk_value: Any, action: str) -> Predicate:
        pk_col = meta.pk_column
        if pk_col is None:
            raise InvalidArgument(
                f"Cannot {action} rows of '{meta.name}': table has no primary key"
            )
        if pk_value is None:
            raise InvalidArgument(f"Cannot {action} a row without a primary key value")
        return Predicate(
            sql=f"{quote_ident(pk_col.name)} = {self.typed_param(pk_col, 'pk')}",
            binds={"pk": to_text_param(pk_value)},
        )

    def _order_by(self, meta: TableMetadata) -> Tuple[str, bool]:
        if meta.primary_key.is_none:
            return "", False
        return f"\nORDER BY {quote_ident(meta.primary_key.name)} ASC", True

    def _page_statement(
        self,
        meta: TableMetadata,
        page: int,
        page_size: int,
        predicate: Optional[Predicate] = None,
    ) -> Statement:
        order_by, ordered = self._order_by(meta)
        where = f"\nWHERE {predicate.sql}" if predicate else ""
        binds: Dict[str, Any] = dict(predicate.binds) if predicate else {}
        binds["limit"] = page_size
        binds["offset"] = pager.page_offset(page, page_size)
        sql = (
            f"SELECT {self.select_list(meta)}\n"
            f"FROM {self.table_ref(meta)}"
            f"{where}{order_by}\n"
            "LIMIT :limit OFFSET :offset"
        )
        return Statement(sql=sql, binds=binds, ordered=ordered)

    def build_select_page(self, meta: TableMetadata, page: int, page_size: int) -> Statement:
        """
        One page of rows, ordered by primary key when the table has one.

        Without a primary key the statement is marked ordered=False: rows come
        back in the database's natural order, which is not stable across pages.
        """
        return self._page_statement(meta, page, page_size)

    def build_count(self, meta: TableMetadata, predicate: Optional[Predicate] = None) -> Statement:
        """Row count, optionally filtered."""
        where = f"\nWHERE {predicate.sql}" if predicate else ""
        return Statement(
            sql=f"SELECT COUNT(*) AS total\nFROM {self.table_ref(meta)}{where}",
            binds=dict(predicate.binds) if predicate else {},
        )

    def search_predicate(self, meta: TableMetadata, term: Optional[str]) -> Predicate:
        """Case-insensitive partial match of term against every column."""
        if not term:
            raise InvalidArgument("Search term must not be empty")
        if not meta.columns:
            return Predicate(sql="FALSE")
        pattern = f"%{term.translate(_LIKE_ESCAPES)}%"
        clauses = [
            f"CAST({quote_ident(c.name)} AS text) ILIKE :pattern" for c in meta.columns
        ]
        return Predicate(sql="(" + " OR ".join(clauses) + ")", binds={"pattern": pattern})

    def build_search(
        self, meta: TableMetadata, term: Optional[str], page: int, page_size: int
    ) -> Statement:
        """Page of rows matching term; pair with build_count(search_predicate(...))."""
        predicate = self.search_predicate(meta, term)
        return self._page_statement(meta, page, page_size, predicate)

    def build_get_row(self, meta: TableMetadata, pk_value: Any) -> Statement:
        predicate = self._pk_predicate(meta, pk_value, "look up")
        return Statement(
            sql=(
                f"SELECT {self.select_list(meta)}\n"
                f"FROM {self.table_ref(meta)}\n"
                f"WHERE {predicate.sql}\n"
                "LIMIT 1"
            ),
            binds=predicate.binds,
        )

    def _assignments(
        self, meta: TableMetadata, values: Mapping[str, Any], writable
    ) -> List[Tuple[ColumnMetadata, Optional[str]]]:
        # Resolve every name first so an unknown column is rejected even when
        # it would have been dropped afterwards.
        resolved = [(meta.column(name), value) for name, value in values.items()]
        assignments = []
        for column, value in resolved:
            if not writable(column):
                continue
            if value == "" and column.nullable:
                value = None
            assignments.append((column, to_text_param(value)))
        return assignments

    def build_insert(self, meta: TableMetadata, values: Mapping[str, Any]) -> Statement:
        """
        INSERT ... RETURNING the new row.

        Server-generated columns are skipped even when supplied. Empty strings
        become NULL only for nullable columns; for NOT NULL columns they are
        passed through and the database enforces the constraint.
        """
        assignments = self._assignments(meta, values, lambda c: not c.server_generated)
        if not assignments:
            raise InvalidArgument(f"No insertable columns supplied for '{meta.name}'")

        binds = {}
        names, params = [], []
        for i, (column, value) in enumerate(assignments):
            bind_name = f"v{i}"
            binds[bind_name] = value
            names.append(quote_ident(column.name))
            params.append(self.typed_param(column, bind_name))

        sql = (
            f"INSERT INTO {self.table_ref(meta)} ({', '.join(names)})\n"
            f"VALUES ({', '.join(params)})\n"
            f"RETURNING {self.select_list(meta)}"
        )
        return Statement(sql=sql, binds=binds, kind=StatementKind.WRITE, command="INSERT")

    def build_update(
        self, meta: TableMetadata, pk_value: Any, changes: Mapping[str, Any]
    ) -> Statement:
        """UPDATE one row by primary key, RETURNING the updated row."""
        predicate = self._pk_predicate(meta, pk_value, "update")
        if not changes:
            raise InvalidArgument("No changes supplied")
        assignments = self._assignments(meta, changes, lambda c: c.updatable)
        if not assignments:
            raise InvalidArgument(f"No updatable columns supplied for '{meta.name}'")

        binds = dict(predicate.binds)
        set_clauses = []
        for i, (column, value) in enumerate(assignments):
            bind_name = f"v{i}"
            binds[bind_name] = value
            set_clauses.append(
                f"{quote_ident(column.name)} = {self.typed_param(column, bind_name)}"
            )

        sql = (
            f"UPDATE {self.table_ref(meta)}\n"
            f"SET {', '.join(set_clauses)}\n"
            f"WHERE {predicate.sql}\n"
            f"RETURNING {self.select_list(meta)}"
        )
        return Statement(sql=sql, binds=binds, kind=StatementKind.WRITE, command="UPDATE")

    def build_delete(self, meta: TableMetadata, pk_value: Any) -> Statement:
        predicate = self._pk_predicate(meta, pk_value, "delete")
        return Statement(
            sql=f"DELETE FROM {self.table_ref(meta)}\nWHERE {predicate.sql}",
            binds=predicate.binds,
            kind=StatementKind.WRITE,
            command="DELETE",
        )

    def prepare_raw_execute(self, sql_text: Optional[str]) -> Statement:
        """
        Wrap admin-supplied SQL unchanged.

        Raw SQL cannot be validated here; the gateway decides whether it may
        run at all.
        """
        text = (sql_text or "").strip()
        if not text:
            raise InvalidArgument("SQL text must not be empty")
        command = text.split(None, 1)[0].upper()
        return Statement(sql=text, kind=StatementKind.RAW, command=command)
