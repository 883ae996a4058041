"""Value types shared by the catalog, builder, gateway and service."""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from tablemin.errors import IdentifierRejected


@dataclass(frozen=True)
class ColumnMetadata:
    """One column as described by the system catalog."""

    name: str
    data_type: str
    sql_type: str
    nullable: bool
    ordinal_position: int
    default: Optional[str] = None
    comment: Optional[str] = None
    identity: Optional[str] = None
    generated: bool = False

    @property
    def server_generated(self) -> bool:
        """True for identity, generated and sequence-backed columns."""
        if self.identity is not None or self.generated:
            return True
        return bool(self.default) and self.default.startswith("nextval(")

    @property
    def updatable(self) -> bool:
        return not self.generated and self.identity != "ALWAYS"


@dataclass(frozen=True)
class PrimaryKey:
    """
    Either no primary key or a single named column.

    Build with PrimaryKey.none() or PrimaryKey.column(name).
    """

    name: Optional[str] = None

    @classmethod
    def none(cls) -> "PrimaryKey":
        return cls(None)

    @classmethod
    def column(cls, name: str) -> "PrimaryKey":
        return cls(name)

    @property
    def is_none(self) -> bool:
        return self.name is None

    def __bool__(self) -> bool:
        return self.name is not None


@dataclass(frozen=True)
class TableMetadata:
    """Table name, columns in ordinal order, and primary key."""

    name: str
    columns: Tuple[ColumnMetadata, ...]
    primary_key: PrimaryKey = field(default_factory=PrimaryKey.none)
    schema: str = "public"

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> ColumnMetadata:
        """Look up a column by exact name or raise IdentifierRejected."""
        for col in self.columns:
            if col.name == name:
                return col
        raise IdentifierRejected(name, kind="column")

    @property
    def pk_column(self) -> Optional[ColumnMetadata]:
        if self.primary_key.is_none:
            return None
        return self.column(self.primary_key.name)


class StatementKind(enum.Enum):
    """How the gateway must treat a statement."""

    READ = "read"
    WRITE = "write"
    RAW = "raw"


@dataclass(frozen=True)
class Predicate:
    """WHERE fragment plus the binds it references."""

    sql: str
    binds: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Statement:
    """SQL text, bound parameters and execution hints."""

    sql: str
    binds: Dict[str, Any] = field(default_factory=dict)
    kind: StatementKind = StatementKind.READ
    command: str = "SELECT"
    ordered: bool = True


@dataclass
class RowSet:
    """Ordered column names plus rows of typed, possibly-null values."""

    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to a DataFrame, keeping column order even when empty."""
        return pd.DataFrame(self.rows, columns=self.columns)


@dataclass
class CommandResult:
    """Outcome of a write or DDL statement."""

    command: str
    row_count: int
    returned: Optional[RowSet] = None


@dataclass(frozen=True)
class PagerResult:
    offset: int
    clamped_page: int
    total_pages: int


@dataclass
class Page:
    """One page of rows with the pagination it was computed from."""

    table: str
    rows: RowSet
    pager: PagerResult
    total_rows: int
    page_size: int
    ordered: bool = True
    term: Optional[str] = None
