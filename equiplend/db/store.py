# equiplend/db/store.py
"""
Persistence contract used by the lending core.

Documents are plain dicts keyed by a string id inside a named collection.
Every state transition stages its writes into a WriteBatch and hands it to
Store.commit(), which must apply the whole batch or nothing.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

# --- Collection names ---
BORROWS = "borrow_transactions"
ASSET_UNITS = "asset_units"
EQUIPMENT = "equipment"
RESERVATIONS = "room_reservations"
OUTBOX = "notification_outbox"
ADMIN_LOGS = "admin_logs"
MAIL = "mail"


class WriteConflict(Exception):
    """Raised by a store when a guarded write no longer matches its expectations."""

    def __init__(self, collection: str, key: str, reason: str):
        super().__init__(f"{collection}/{key}: {reason}")
        self.collection = collection
        self.key = key
        self.reason = reason


@dataclass
class WriteOp:
    collection: str
    key: str
    set_fields: Dict[str, Any] = field(default_factory=dict)
    inc_fields: Dict[str, int] = field(default_factory=dict)
    # field -> value that must currently hold, checked at commit
    expect: Dict[str, Any] = field(default_factory=dict)
    insert: bool = False
    delete: bool = False
    # (flag_field, counter_field): after increments, flag = counter > 0
    positive_flag: Optional[Tuple[str, str]] = None


class WriteBatch:
    """Ordered set of writes committed as one unit of work."""

    def __init__(self):
        self.ops: List[WriteOp] = []

    def __len__(self) -> int:
        return len(self.ops)

    def __iter__(self):
        return iter(self.ops)

    def insert(self, collection: str, key: str, document: Dict[str, Any]) -> "WriteBatch":
        self.ops.append(WriteOp(collection, key, set_fields=dict(document), insert=True))
        return self

    def update(self, collection: str, key: str, fields: Dict[str, Any],
               expect: Optional[Dict[str, Any]] = None) -> "WriteBatch":
        self.ops.append(WriteOp(collection, key, set_fields=dict(fields), expect=dict(expect or {})))
        return self

    def delete(self, collection: str, key: str, expect: Optional[Dict[str, Any]] = None) -> "WriteBatch":
        self.ops.append(WriteOp(collection, key, expect=dict(expect or {}), delete=True))
        return self

    def increment(self, collection: str, key: str, counter: str, amount: int,
                  flag: Optional[str] = None, fields: Optional[Dict[str, Any]] = None,
                  expect: Optional[Dict[str, Any]] = None) -> "WriteBatch":
        self.ops.append(WriteOp(
            collection, key,
            set_fields=dict(fields or {}),
            inc_fields={counter: amount},
            expect=dict(expect or {}),
            positive_flag=(flag, counter) if flag else None,
        ))
        return self

    def touches(self, collection: str) -> List[WriteOp]:
        return [op for op in self.ops if op.collection == collection]


class Store(ABC):

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        """Return the document or None."""

    @abstractmethod
    async def get_many(self, collection: str, keys: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Return the documents that exist, keyed by id."""

    @abstractmethod
    async def put(self, collection: str, key: str, document: Dict[str, Any]) -> None:
        """Create or fully replace a document."""

    @abstractmethod
    async def patch(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        """Merge fields into an existing document. Raises NotFoundError if missing."""

    @abstractmethod
    async def find(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                   limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Equality match on top-level fields, oldest first."""

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """
        Apply every op of the batch atomically.
        Raises WriteConflict when an expectation fails, an updated document is
        missing (updated or deleted) or an inserted key already exists; nothing is applied then.
        """

    async def close(self) -> None:
        return None
