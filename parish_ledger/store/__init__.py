"""Document store implementations."""

from .base import DocumentStore, DocumentNotFoundError, StoreError, WriteBatch, WriteOp
from .memory import InMemoryDocumentStore, JsonFileDocumentStore

__all__ = [
    "DocumentStore",
    "DocumentNotFoundError",
    "StoreError",
    "WriteBatch",
    "WriteOp",
    "InMemoryDocumentStore",
    "JsonFileDocumentStore",
    "create_store",
]


def create_store(settings) -> DocumentStore:
    """Build the store selected by ``settings.store_backend``."""
    if settings.store_backend == "json":
        return JsonFileDocumentStore(settings.store_path)
    if settings.store_backend == "memory":
        return InMemoryDocumentStore()
    raise ValueError(f"Unknown store backend: {settings.store_backend}")
