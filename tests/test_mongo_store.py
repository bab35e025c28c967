"""
Tests for db.mongo: how transaction errors surface from MongoStore.commit.
"""

import pytest
from pymongo.errors import OperationFailure

from equiplend.core.exceptions import ConsistencyError
from equiplend.db.mongo import MongoStore
from equiplend.db.store import BORROWS, WriteBatch, WriteConflict


def _labelled(label: str) -> OperationFailure:
    return OperationFailure("WriteConflict error", code=112, details={"errorLabels": [label]})


class FakeResult:
    def __init__(self, matched_count):
        self.matched_count = matched_count


class FakeCollection:
    """update_one raises the queued errors first, then matches."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def update_one(self, query, update, session=None):
        self.calls += 1
        if self.errors: raise self.errors.pop(0)
        return FakeResult(1)


class FakeSession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def start_transaction(self):
        return self


class FakeDatabase:
    def __init__(self, collection):
        self.collection = collection

    def __getitem__(self, name):
        return self.collection


class FakeClient:
    def __init__(self, collection):
        self.database = FakeDatabase(collection)

    def __getitem__(self, name):
        return self.database

    async def start_session(self):
        return FakeSession()


def _transition() -> WriteBatch:
    return WriteBatch().update(BORROWS, "borrow-1", {"status": "returned", "version": 2},
                               expect={"version": 1, "status": "pending_return"})


def _store(collection) -> MongoStore:
    return MongoStore(FakeClient(collection), "equiplend_test")


class TestTransientErrors:
    async def test_retried_once(self):
        collection = FakeCollection(_labelled("TransientTransactionError"))
        await _store(collection).commit(_transition())
        assert collection.calls == 2

    async def test_second_failure_is_a_write_conflict(self):
        collection = FakeCollection(_labelled("TransientTransactionError"), _labelled("TransientTransactionError"))
        with pytest.raises(WriteConflict) as exc:
            await _store(collection).commit(_transition())
        assert exc.value.collection == BORROWS
        assert exc.value.key == "borrow-1"
        assert exc.value.reason == "concurrent transaction"
        assert collection.calls == 2


class TestOtherErrors:
    async def test_unknown_commit_result_is_fatal(self):
        collection = FakeCollection(_labelled("UnknownTransactionCommitResult"))
        with pytest.raises(ConsistencyError):
            await _store(collection).commit(_transition())
        assert collection.calls == 1

    async def test_unlabelled_errors_propagate(self):
        collection = FakeCollection(OperationFailure("not authorized", code=13))
        with pytest.raises(OperationFailure):
            await _store(collection).commit(_transition())

    async def test_empty_batch_never_opens_a_session(self):
        collection = FakeCollection()
        await _store(collection).commit(WriteBatch())
        assert collection.calls == 0
