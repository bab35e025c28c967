"""
Tests for services.notifications: outbox delivery, failure and retry.
"""

import pytest

from conftest import REQUESTER, RecordingSender, make_request
from equiplend.db.memory import MemoryStore
from equiplend.db.store import MAIL, OUTBOX, WriteBatch
from equiplend.models.enum import BorrowStatus, NotificationKind
from equiplend.scheduler.jobs import retry_failed_notifications
from equiplend.services.notifications import MailQueueSender, NotificationDispatcher, stage_notification


async def _stage(store, kind=NotificationKind.BORROW_CREATED, recipient="budi@example.edu"):
    batch = WriteBatch()
    entry = stage_notification(batch, kind, recipient, {"borrow_id": "borrow-1"})
    await store.commit(batch)
    return entry


class TestStaging:
    def test_missing_recipient_is_skipped(self):
        batch = WriteBatch()
        assert stage_notification(batch, NotificationKind.RETURN_SUBMITTED, None, {}) is None
        assert len(batch) == 0


class TestDispatch:
    async def test_pending_entries_delivered(self):
        store, sender = MemoryStore(), RecordingSender()
        entry = await _stage(store)
        summary = await NotificationDispatcher(store, sender).dispatch_pending()
        assert summary == {"delivered": 1, "failed": 0, "skipped": 0}
        assert sender.sent == [(NotificationKind.BORROW_CREATED, "budi@example.edu", {"borrow_id": "borrow-1"})]
        stored = await store.get(OUTBOX, entry.notification_id)
        assert stored["status"] == "delivered"
        assert stored["attempts"] == 1

    async def test_delivered_entries_not_sent_twice(self):
        store, sender = MemoryStore(), RecordingSender()
        await _stage(store)
        dispatcher = NotificationDispatcher(store, sender)
        await dispatcher.dispatch_pending()
        await dispatcher.retry_failed()
        assert len(sender.sent) == 1

    async def test_sender_failure_is_recorded(self):
        store = MemoryStore()
        entry = await _stage(store)
        dispatcher = NotificationDispatcher(store, RecordingSender(fail_with=ConnectionError("smtp down")))
        summary = await dispatcher.dispatch_pending()
        assert summary["failed"] == 1
        stored = await store.get(OUTBOX, entry.notification_id)
        assert stored["status"] == "failed"
        assert stored["last_error"] == "smtp down"

    async def test_failed_entries_retried_until_limit(self):
        store = MemoryStore()
        entry = await _stage(store)
        failing = NotificationDispatcher(store, RecordingSender(fail_with=RuntimeError("boom")), max_attempts=2)
        await failing.dispatch_pending()
        await failing.retry_failed()
        assert (await store.get(OUTBOX, entry.notification_id))["attempts"] == 2

        recovered = RecordingSender()
        summary = await NotificationDispatcher(store, recovered, max_attempts=2).retry_failed()
        assert summary == {"delivered": 0, "failed": 0, "skipped": 0}
        assert recovered.sent == []

    async def test_retry_job_delivers_failed(self):
        store = MemoryStore()
        entry = await _stage(store)
        await NotificationDispatcher(store, RecordingSender(fail_with=RuntimeError("boom"))).dispatch_pending()
        sender = RecordingSender()
        summary = await retry_failed_notifications(NotificationDispatcher(store, sender))
        assert summary["delivered"] == 1
        assert (await store.get(OUTBOX, entry.notification_id))["status"] == "delivered"

    async def test_mail_queue_sender(self):
        store = MemoryStore()
        await _stage(store)
        await NotificationDispatcher(store, MailQueueSender(store)).dispatch_pending()
        mails = await store.find(MAIL)
        assert len(mails) == 1
        assert mails[0]["to"] == "budi@example.edu"
        assert mails[0]["kind"] == "borrow_created"


class TestTransitionIsolation:
    @pytest.fixture
    def sender(self):
        return RecordingSender(fail_with=ConnectionError("mail relay unreachable"))

    async def test_failed_delivery_does_not_affect_transition(self, borrowings, services):
        services.dispatcher.auto_dispatch = True
        record = await borrowings.create(make_request())
        await services.dispatcher.wait_idle()
        assert record.status == BorrowStatus.BORROWED
        assert (await borrowings.get(record.borrow_id)).status == BorrowStatus.BORROWED
        entries = await services.store.find(OUTBOX)
        assert entries[0]["status"] == "failed"
        assert entries[0]["recipient"] == REQUESTER.email
