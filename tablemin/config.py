"""Immutable engine configuration."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class EngineConfig:
    """Everything the engine reads, passed explicitly at construction."""

    read_only: bool = False
    page_size: int = 25
    schema: str = "public"
    cache_ttl: float = 60.0
    statement_timeout: Optional[float] = 30.0
    export_chunk_size: int = 5000
    export_max_rows: int = 100_000

    def __post_init__(self):
        if self.page_size < 1:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        if self.export_chunk_size < 1:
            raise ValueError("export_chunk_size must be positive")
