"""Schema introspection and dynamic query engine for arbitrary tables."""

from tablemin.catalog import SchemaCatalog
from tablemin.config import EngineConfig
from tablemin.gateway import ConnectionGateway
from tablemin.query_builder import QueryBuilder
from tablemin.service import TableService

__all__ = [
    "SchemaCatalog",
    "EngineConfig",
    "ConnectionGateway",
    "QueryBuilder",
    "TableService",
]
