# equiplend/db/memory.py
import asyncio
import copy
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from equiplend.core.exceptions import NotFoundError
from equiplend.db.store import Store, WriteBatch, WriteConflict, WriteOp


class MemoryStore(Store):
    """
    Process-local store for development and tests.
    Commits are serialised by a lock and applied to a copy of the touched
    collections, which is swapped in only when every op succeeded.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(name, {})

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        doc = self._collection(collection).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def get_many(self, collection: str, keys: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        docs = self._collection(collection)
        return {k: copy.deepcopy(docs[k]) for k in keys if k in docs}

    async def put(self, collection: str, key: str, document: Dict[str, Any]) -> None:
        async with self._lock:
            self._collection(collection)[key] = copy.deepcopy(document)

    async def patch(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        async with self._lock:
            docs = self._collection(collection)
            if key not in docs: raise NotFoundError(collection, key)
            docs[key].update(copy.deepcopy(fields))

    async def find(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                   limit: Optional[int] = None) -> List[Dict[str, Any]]:
        filters = filters or {}
        found = []
        for doc in self._collection(collection).values():
            if all(doc.get(k) == v for k, v in filters.items()):
                found.append(copy.deepcopy(doc))
                if limit and len(found) >= limit: break
        return found

    async def commit(self, batch: WriteBatch) -> None:
        if not len(batch): return
        async with self._lock:
            staged = {op.collection: copy.deepcopy(self._collection(op.collection)) for op in batch}
            for op in batch:
                self._apply(staged[op.collection], op)
            self._data.update(staged)
        logger.debug(f"MemoryStore committed batch of {len(batch)} op(s).")

    @staticmethod
    def _apply(docs: Dict[str, Dict[str, Any]], op: WriteOp) -> None:
        if op.insert:
            if op.key in docs: raise WriteConflict(op.collection, op.key, "key already exists")
            docs[op.key] = copy.deepcopy(op.set_fields)
            return

        doc = docs.get(op.key)
        if doc is None: raise WriteConflict(op.collection, op.key, "document not found")
        for name, expected in op.expect.items():
            if doc.get(name) != expected:
                raise WriteConflict(op.collection, op.key, f"expected {name}={expected!r}, found {doc.get(name)!r}")

        if op.delete:
            del docs[op.key]
            return

        doc.update(copy.deepcopy(op.set_fields))
        for name, amount in op.inc_fields.items():
            doc[name] = (doc.get(name) or 0) + amount
        if op.positive_flag:
            flag, counter = op.positive_flag
            doc[flag] = (doc.get(counter) or 0) > 0
