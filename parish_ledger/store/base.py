"""
Document store interface.

Stores hold plain dict documents grouped in named collections. Single
document writes are atomic; multi-document atomicity is only available
through ``batch()`` on stores that report ``supports_batch``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class StoreError(Exception):
    """Base class for persistence failures."""


class DocumentNotFoundError(StoreError, KeyError):
    """Raised when a document required by an operation does not exist."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")

    def __str__(self) -> str:
        return f"{self.collection}/{self.doc_id} not found"


@dataclass
class WriteOp:
    """A single pending write."""
    kind: str  # "set", "update" or "delete"
    collection: str
    doc_id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "collection": self.collection,
            "docId": self.doc_id,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WriteOp":
        return cls(
            kind=data["kind"],
            collection=data["collection"],
            doc_id=data["docId"],
            data=dict(data.get("data") or {}),
        )


class WriteBatch:
    """Collects writes and applies them together on ``commit()``."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self.ops: List[WriteOp] = []
        self.committed = False

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteBatch":
        self.ops.append(WriteOp("set", collection, doc_id, dict(data)))
        return self

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> "WriteBatch":
        self.ops.append(WriteOp("update", collection, doc_id, dict(fields)))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self.ops.append(WriteOp("delete", collection, doc_id))
        return self

    async def commit(self) -> None:
        if self.committed:
            raise StoreError("Batch already committed")
        await self._store.commit_batch(self.ops)
        self.committed = True


class DocumentStore(ABC):
    """Generic async document store."""

    @property
    def supports_batch(self) -> bool:
        """Whether ``batch()`` commits atomically."""
        return False

    @abstractmethod
    async def get_many(
        self,
        collection: str,
        order_by: Optional[str] = None,
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        """Full collection scan, optionally ordered by one field."""

    @abstractmethod
    async def get_one(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one document or None."""

    @abstractmethod
    async def set_one(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Create or merge a document."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Merge fields into an existing document and stamp ``updatedAt``."""

    @abstractmethod
    async def delete_one(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def commit_batch(self, ops: List[WriteOp]) -> None:
        """
        Apply a list of writes.

        The default applies them one by one and is not atomic; stores with
        native batches override this and ``supports_batch``.
        """
        for op in ops:
            await self.apply(op)

    async def apply(self, op: WriteOp) -> None:
        if op.kind == "set":
            await self.set_one(op.collection, op.doc_id, op.data)
        elif op.kind == "update":
            await self.update(op.collection, op.doc_id, op.data)
        elif op.kind == "delete":
            await self.delete_one(op.collection, op.doc_id)
        else:
            raise StoreError(f"Unknown write kind: {op.kind}")
