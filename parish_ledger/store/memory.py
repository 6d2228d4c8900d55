"""
In-memory and JSON-file document stores.
"""

import asyncio
import copy
import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from .base import DocumentNotFoundError, DocumentStore, StoreError, WriteOp

logger = structlog.get_logger()


def _sort_key(value: Any):
    if value is None:
        return (0, "")
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, (date, datetime)):
        return (2, value.isoformat())
    return (2, str(value))


class InMemoryDocumentStore(DocumentStore):
    """
    Dict-backed store with atomic batches.

    Documents are deep-copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(
        self,
        initial: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or datetime.utcnow
        for collection, docs in (initial or {}).items():
            for doc_id, data in docs.items():
                self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    @property
    def supports_batch(self) -> bool:
        return True

    async def get_many(
        self,
        collection: str,
        order_by: Optional[str] = None,
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        docs = [
            {**copy.deepcopy(data), "id": doc_id}
            for doc_id, data in self._collections.get(collection, {}).items()
        ]
        if order_by:
            docs.sort(key=lambda d: _sort_key(d.get(order_by)), reverse=descending)
        return docs

    async def get_one(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return {**copy.deepcopy(data), "id": doc_id}

    async def set_one(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        async with self._lock:
            self._set(collection, doc_id, data)
            self._persist()

    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        async with self._lock:
            self._update(collection, doc_id, fields)
            self._persist()

    async def delete_one(self, collection: str, doc_id: str) -> None:
        async with self._lock:
            self._collections.get(collection, {}).pop(doc_id, None)
            self._persist()

    async def commit_batch(self, ops: List[WriteOp]) -> None:
        async with self._lock:
            # Validate everything first so a bad op applies nothing
            pending_sets = {(op.collection, op.doc_id) for op in ops if op.kind == "set"}
            for op in ops:
                if op.kind not in ("set", "update", "delete"):
                    raise StoreError(f"Unknown write kind: {op.kind}")
                if op.kind == "update":
                    exists = op.doc_id in self._collections.get(op.collection, {})
                    if not exists and (op.collection, op.doc_id) not in pending_sets:
                        raise DocumentNotFoundError(op.collection, op.doc_id)

            snapshot = copy.deepcopy(self._collections)
            try:
                for op in ops:
                    if op.kind == "set":
                        self._set(op.collection, op.doc_id, op.data)
                    elif op.kind == "update":
                        self._update(op.collection, op.doc_id, op.data)
                    else:
                        self._collections.get(op.collection, {}).pop(op.doc_id, None)
                self._persist()
            except Exception:
                self._collections = snapshot
                raise

        logger.debug("Batch committed", writes=len(ops))

    def _set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        now = self._clock()
        docs = self._collections.setdefault(collection, {})
        existing = docs.get(doc_id, {})
        merged = {**existing, **copy.deepcopy(data), "updatedAt": now}
        merged.setdefault("createdAt", now)
        merged.pop("id", None)
        docs[doc_id] = merged

    def _update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise DocumentNotFoundError(collection, doc_id)
        docs[doc_id].update(copy.deepcopy(fields))
        docs[doc_id].pop("id", None)
        docs[doc_id]["updatedAt"] = self._clock()

    def _persist(self) -> None:
        """Hook for subclasses that keep a durable copy."""


def _json_default(value: Any):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class JsonFileDocumentStore(InMemoryDocumentStore):
    """
    In-memory store mirrored to a single JSON file.

    The file is rewritten after every committed write, so a batch lands on
    disk in one write.
    """

    def __init__(self, path: Path, clock: Optional[Callable[[], datetime]] = None):
        self.path = Path(path)
        initial = {}
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                initial = json.load(f)
            logger.info("Loaded document store", path=str(self.path))
        super().__init__(initial=initial, clock=clock)

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._collections, f, indent=2, ensure_ascii=False, default=_json_default)
        tmp_path.replace(self.path)
