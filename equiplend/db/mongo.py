# equiplend/db/mongo.py
from typing import Any, Dict, Iterable, List, Optional, Type

import motor.motor_asyncio
from beanie import Document
from loguru import logger
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError, PyMongoError

from equiplend.core.exceptions import ConsistencyError, NotFoundError
from equiplend.db import store as names
from equiplend.db.store import Store, WriteBatch, WriteConflict, WriteOp


# --- Collection definitions (Beanie registers them and builds the indexes) ---
class BorrowTransactionDocument(Document):
    id: Optional[str] = None
    status: str
    version: int = 1

    class Settings:
        name = names.BORROWS
        indexes = [
            IndexModel([("status", ASCENDING)], name="borrow_status_index"),
            IndexModel([("requester.email", ASCENDING)], name="borrow_requester_email_index"),
            IndexModel([("created_at", DESCENDING)], name="borrow_created_at_index"),
        ]


class AssetUnitDocument(Document):
    id: Optional[str] = None
    equipment_id: str
    available: bool = True

    class Settings:
        name = names.ASSET_UNITS
        indexes = [
            IndexModel([("equipment_id", ASCENDING), ("available", ASCENDING)], name="unit_equipment_available_index"),
        ]


class EquipmentDocument(Document):
    id: Optional[str] = None
    name: str
    category: str

    class Settings:
        name = names.EQUIPMENT
        indexes = [
            IndexModel([("name", ASCENDING)], name="equipment_name_index"),
            IndexModel([("category", ASCENDING)], name="equipment_category_index"),
        ]


class RoomReservationDocument(Document):
    id: Optional[str] = None
    status: str
    version: int = 1

    class Settings:
        name = names.RESERVATIONS
        indexes = [
            IndexModel([("room_id", ASCENDING), ("booking_date", ASCENDING)], name="reservation_room_date_index"),
            IndexModel([("status", ASCENDING)], name="reservation_status_index"),
        ]


class NotificationOutboxDocument(Document):
    id: Optional[str] = None
    status: str

    class Settings:
        name = names.OUTBOX
        indexes = [
            IndexModel([("status", ASCENDING), ("created_at", ASCENDING)], name="outbox_status_created_index"),
        ]


class AdminLogDocument(Document):
    id: Optional[str] = None

    class Settings:
        name = names.ADMIN_LOGS
        indexes = [IndexModel([("timestamp", DESCENDING)], name="admin_log_timestamp_index")]


class MailDocument(Document):
    id: Optional[str] = None

    class Settings:
        name = names.MAIL


DOCUMENT_MODELS: List[Type[Document]] = [
    BorrowTransactionDocument,
    AssetUnitDocument,
    EquipmentDocument,
    RoomReservationDocument,
    NotificationOutboxDocument,
    AdminLogDocument,
    MailDocument,
]


def _strip_id(raw: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if raw is None: return None
    raw.pop("_id", None)
    return raw


class MongoStore(Store):
    """Store backed by MongoDB. Batches run inside a client session transaction (replica set required)."""

    def __init__(self, client: motor.motor_asyncio.AsyncIOMotorClient, database_name: str):
        self.client = client
        self.database = client[database_name]

    def _coll(self, name: str):
        return self.database[name]

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        return _strip_id(await self._coll(collection).find_one({"_id": key}))

    async def get_many(self, collection: str, keys: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        keys = list(keys)
        if not keys: return {}
        found = {}
        async for raw in self._coll(collection).find({"_id": {"$in": keys}}):
            found[raw["_id"]] = _strip_id(raw)
        return found

    async def put(self, collection: str, key: str, document: Dict[str, Any]) -> None:
        await self._coll(collection).replace_one({"_id": key}, {"_id": key, **document}, upsert=True)

    async def patch(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        result = await self._coll(collection).update_one({"_id": key}, {"$set": fields})
        if result.matched_count == 0: raise NotFoundError(collection, key)

    async def find(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                   limit: Optional[int] = None) -> List[Dict[str, Any]]:
        cursor = self._coll(collection).find(filters or {}).sort("created_at", ASCENDING)
        if limit: cursor = cursor.limit(limit)
        return [_strip_id(raw) for raw in await cursor.to_list(length=limit)]

    async def commit(self, batch: WriteBatch) -> None:
        if not len(batch): return
        # a transient error aborts the whole transaction, so it is retried once;
        # on the rerun the guards are checked against the winner's state
        for attempt in (1, 2):
            applied: List[WriteOp] = []
            try:
                await self._run(batch, applied)
                return
            except (WriteConflict, NotFoundError):
                raise
            except PyMongoError as e:
                if e.has_error_label("UnknownTransactionCommitResult"):
                    logger.critical(f"Commit outcome unknown for batch of {len(batch)} op(s): {e}")
                    raise ConsistencyError("Batch commit outcome unknown; state must be verified.", ops=len(batch)) from e
                if e.has_error_label("TransientTransactionError"):
                    if attempt == 1:
                        logger.warning(f"Transient transaction error, retrying batch of {len(batch)} op(s): {e}")
                        continue
                    op = applied[-1] if applied else batch.ops[0]
                    raise WriteConflict(op.collection, op.key, "concurrent transaction") from e
                logger.opt(exception=True).error(f"Mongo transaction aborted: {e}")
                raise

    async def _run(self, batch: WriteBatch, applied: List[WriteOp]) -> None:
        async with await self.client.start_session() as session:
            async with session.start_transaction():
                for op in batch:
                    applied.append(op)
                    await self._apply(op, session)

    async def _apply(self, op: WriteOp, session) -> None:
        coll = self._coll(op.collection)
        if op.insert:
            try: await coll.insert_one({"_id": op.key, **op.set_fields}, session=session)
            except DuplicateKeyError as e: raise WriteConflict(op.collection, op.key, "key already exists") from e
            return

        query = {"_id": op.key, **op.expect}
        if op.delete:
            result = await coll.delete_one(query, session=session)
            if result.deleted_count == 0:
                await self._raise_missed(coll, op, session)
            return

        if op.positive_flag:
            flag, counter = op.positive_flag
            stage = {k: {"$literal": v} for k, v in op.set_fields.items()}
            for name, amount in op.inc_fields.items():
                stage[name] = {"$add": [{"$ifNull": [f"${name}", 0]}, amount]}
            update: Any = [{"$set": stage}, {"$set": {flag: {"$gt": [f"${counter}", 0]}}}]
        else:
            update = {}
            if op.set_fields: update["$set"] = op.set_fields
            if op.inc_fields: update["$inc"] = op.inc_fields

        result = await coll.update_one(query, update, session=session)
        if result.matched_count == 0:
            await self._raise_missed(coll, op, session)

    @staticmethod
    async def _raise_missed(coll, op: WriteOp, session) -> None:
        exists = await coll.find_one({"_id": op.key}, {"_id": 1}, session=session)
        raise WriteConflict(op.collection, op.key, "expectation failed" if exists else "document not found")

    async def close(self) -> None:
        self.client.close()
