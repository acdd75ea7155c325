"""TaskPilot Storage Layer - SQLAlchemy adapter for the rule store and execution ledger."""

from .base import StorageAdapter
from .postgres_adapter import PostgresAdapter, PostgresConfig
from .models import Base, JSON_TYPE, TIMESTAMP_TYPE

__all__ = [
    "StorageAdapter",
    "PostgresAdapter",
    "PostgresConfig",
    "Base",
    "JSON_TYPE",
    "TIMESTAMP_TYPE",
]
