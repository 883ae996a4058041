"""Pytest configuration and fixtures."""

import asyncio
import re
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from tablemin.catalog import COLUMNS_SQL, LIST_TABLES_SQL, PRIMARY_KEY_SQL
from tablemin.config import EngineConfig
from tablemin.models import ColumnMetadata, PrimaryKey, TableMetadata
from tablemin.query_builder import QueryBuilder
from tablemin.service import TableService


class FakeResult:
    """Enough of a CursorResult for the gateway's normalization."""

    def __init__(self, columns=None, rows=None, rowcount=-1):
        self.columns = list(columns or [])
        self.rows = list(rows or [])
        self.rowcount = rowcount
        self.returns_rows = bool(self.columns)

    def keys(self):
        return self.columns

    def __iter__(self):
        for row in self.rows:
            yield SimpleNamespace(_mapping={c: row.get(c) for c in self.columns})


class FakeDatabase:
    """
    In-memory stand-in answering the catalog and data queries the engine sends.

    Only understands the statement shapes produced by QueryBuilder and
    SchemaCatalog.
    """

    def __init__(self):
        self.tables: Dict[str, Dict[str, Any]] = {}
        self.executed: List[tuple] = []
        self.connections = 0
        self.gate: Optional[asyncio.Event] = None
        self.delay = 0.0
        self.error: Optional[Exception] = None
        self.connect_error: Optional[Exception] = None
        self.raw_result = FakeResult(["one"], [{"one": 1}])

    def add_table(self, name, columns, pk=None, rows=None):
        catalog_rows = []
        for position, (col_name, data_type, nullable, default) in enumerate(columns, 1):
            catalog_rows.append({
                "column_name": col_name,
                "data_type": data_type,
                "sql_type": data_type,
                "is_nullable": "YES" if nullable else "NO",
                "column_default": default,
                "ordinal_position": position,
                "identity_generation": None,
                "is_generated": "NEVER",
                "comment": None,
            })
        self.tables[name] = {
            "columns": catalog_rows,
            "pk": [pk] if isinstance(pk, str) else list(pk or []),
            "rows": [dict(r) for r in (rows or [])],
        }

    def count(self, sql: str) -> int:
        return sum(1 for s, _ in self.executed if s == sql)

    def count_prefix(self, prefix: str) -> int:
        return sum(1 for s, _ in self.executed if s.startswith(prefix))

    async def run(self, sql: str, binds: Optional[dict]) -> FakeResult:
        binds = dict(binds or {})
        self.executed.append((sql, binds))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.respond(sql, binds)

    def respond(self, sql: str, binds: dict) -> FakeResult:
        if sql == LIST_TABLES_SQL:
            return FakeResult(["table_name"], [{"table_name": t} for t in sorted(self.tables)])
        if sql == COLUMNS_SQL:
            table = self.tables.get(binds["table_name"], {"columns": []})
            columns = table["columns"]
            keys = list(columns[0]) if columns else ["column_name"]
            return FakeResult(keys, columns)
        if sql == PRIMARY_KEY_SQL:
            table = self.tables.get(binds["table_name"], {"pk": []})
            return FakeResult(["attname"], [{"attname": n} for n in table["pk"]])

        name = re.search(r'"public"\."((?:[^"]|"")+)"', sql).group(1)
        table = self.tables[name]
        column_names = [c["column_name"] for c in table["columns"]]
        pk = table["pk"][0] if table["pk"] else None

        if sql.startswith("SELECT COUNT(*)"):
            return FakeResult(["total"], [{"total": len(self._matching(table, binds))}])
        if sql.startswith("SELECT"):
            rows = self._matching(table, binds)
            if "pk" in binds:
                rows = [r for r in rows if str(r.get(pk)) == binds["pk"]][:1]
            if "ORDER BY" in sql:
                rows = sorted(rows, key=lambda r: r[pk])
            if "limit" in binds:
                rows = rows[binds["offset"]:binds["offset"] + binds["limit"]]
            return FakeResult(column_names, rows)
        if sql.startswith("INSERT"):
            names = re.findall(r'"((?:[^"]|"")+)"', re.search(r"\(([^)]*)\)", sql).group(1))
            row = {c: None for c in column_names}
            for i, col in enumerate(names):
                row[col] = binds[f"v{i}"]
            if pk is not None and row.get(pk) is None:
                row[pk] = max([r[pk] for r in table["rows"]] or [0]) + 1
            table["rows"].append(row)
            return FakeResult(column_names, [row])
        if sql.startswith("UPDATE"):
            targets = [r for r in table["rows"] if str(r.get(pk)) == binds["pk"]]
            for col, bind in re.findall(r'"((?:[^"]|"")+)" = CAST\(CAST\(:(v\d+)', sql):
                for row in targets:
                    row[col] = binds[bind]
            return FakeResult(column_names, targets)
        if sql.startswith("DELETE"):
            before = len(table["rows"])
            table["rows"] = [r for r in table["rows"] if str(r.get(pk)) != binds["pk"]]
            return FakeResult(rowcount=before - len(table["rows"]))
        raise AssertionError(f"Unexpected statement: {sql}")

    @staticmethod
    def _matching(table, binds) -> List[dict]:
        rows = list(table["rows"])
        if "pattern" not in binds:
            return rows
        needle = binds["pattern"].strip("%").replace("\\%", "%").replace("\\_", "_").lower()
        return [
            r for r in rows
            if any(v is not None and needle in str(v).lower() for v in r.values())
        ]


class FakeConnection:
    def __init__(self, db: FakeDatabase):
        self.db = db

    async def execute(self, clause, binds=None):
        return await self.db.run(clause.text, binds)

    async def exec_driver_sql(self, sql):
        self.db.executed.append((sql, {}))
        if sql == "SET TRANSACTION READ ONLY":
            return FakeResult()
        if self.db.error is not None:
            raise self.db.error
        return self.db.raw_result


class _ConnectionContext:
    def __init__(self, db: FakeDatabase):
        self.db = db

    async def __aenter__(self):
        if self.db.connect_error is not None:
            raise self.db.connect_error
        self.db.connections += 1
        return FakeConnection(self.db)

    async def __aexit__(self, *exc_info):
        return False


class FakeEngine:
    """AsyncEngine stand-in handing out FakeConnections."""

    def __init__(self, db: FakeDatabase):
        self.db = db
        self.disposed = False

    def connect(self):
        return _ConnectionContext(self.db)

    def begin(self):
        return _ConnectionContext(self.db)

    async def dispose(self):
        self.disposed = True


def widget_rows(count: int) -> List[dict]:
    return [
        {"id": i, "name": f"widget {i}", "note": None if i % 2 else f"note {i}"}
        for i in range(1, count + 1)
    ]


@pytest.fixture
def fake_db() -> FakeDatabase:
    """Database with a 30-row `widgets` table and a key-less `events` table."""
    db = FakeDatabase()
    db.add_table(
        "widgets",
        [
            ("id", "integer", False, "nextval('widgets_id_seq'::regclass)"),
            ("name", "text", False, None),
            ("note", "text", True, None),
        ],
        pk="id",
        rows=widget_rows(30),
    )
    db.add_table(
        "events",
        [("kind", "text", True, None), ("payload", "jsonb", True, None)],
        rows=[{"kind": "boot", "payload": "{}"}],
    )
    return db


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(page_size=25, statement_timeout=None)


def build_service(db: FakeDatabase, config: EngineConfig) -> TableService:
    return TableService.from_engine(FakeEngine(db), config)


@pytest.fixture
def service(fake_db, engine_config) -> TableService:
    return build_service(fake_db, engine_config)


@pytest.fixture
def read_only_service(fake_db) -> TableService:
    return build_service(fake_db, EngineConfig(read_only=True, statement_timeout=None))


@pytest.fixture
def builder() -> QueryBuilder:
    return QueryBuilder()


def column(name, data_type="text", nullable=True, position=1, **kwargs) -> ColumnMetadata:
    return ColumnMetadata(
        name=name,
        data_type=data_type,
        sql_type=kwargs.pop("sql_type", data_type),
        nullable=nullable,
        ordinal_position=position,
        **kwargs,
    )


@pytest.fixture
def widgets_meta() -> TableMetadata:
    return TableMetadata(
        name="widgets",
        columns=(
            column("id", "integer", nullable=False, position=1,
                   default="nextval('widgets_id_seq'::regclass)"),
            column("name", "character varying", nullable=False, position=2),
            column("note", "text", nullable=True, position=3),
            column("created_at", "timestamp with time zone", position=4,
                   default="now()"),
        ),
        primary_key=PrimaryKey.column("id"),
    )


@pytest.fixture
def keyless_meta() -> TableMetadata:
    return TableMetadata(
        name="events",
        columns=(
            column("kind", "text", position=1),
            column("payload", "jsonb", position=2),
        ),
        primary_key=PrimaryKey.none(),
    )


@pytest_asyncio.fixture(scope="function")
async def client(service) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the service backed by FakeDatabase."""
    from tablemin_api.api.deps import get_table_service
    from tablemin_api.main import app

    app.dependency_overrides[get_table_service] = lambda: service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def read_only_client(read_only_service) -> AsyncGenerator[AsyncClient, None]:
    from tablemin_api.api.deps import get_table_service
    from tablemin_api.main import app

    app.dependency_overrides[get_table_service] = lambda: read_only_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def fake_engine(fake_db) -> FakeEngine:
    return FakeEngine(fake_db)


@pytest.fixture
def make_service(fake_db):
    """Factory for services over fake_db with a given EngineConfig."""

    def _make(config: EngineConfig) -> TableService:
        return build_service(fake_db, config)

    return _make


@pytest.fixture
def make_column():
    return column


@pytest.fixture
def fake_result():
    return FakeResult
