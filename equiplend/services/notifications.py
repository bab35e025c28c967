# equiplend/services/notifications.py
"""
Outbound notifications via a transactional outbox.

Transitions stage an outbox entry into their own batch, so an event exists
if and only if its transition committed. The dispatcher delivers entries
after the commit through a NotificationSender; a failed delivery is
recorded on the entry and retried later, never touching the transition.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set

from loguru import logger

from equiplend.core.utils import new_uuid, utcnow
from equiplend.db.store import MAIL, OUTBOX, Store, WriteBatch, WriteConflict
from equiplend.models.enum import NotificationKind, NotificationStatus
from equiplend.models.notification import DispatchResult, NotificationOutboxEntry


def stage_notification(batch: WriteBatch, kind: NotificationKind, recipient: Optional[str],
                       template_data: Dict[str, Any]) -> Optional[NotificationOutboxEntry]:
    if not recipient:
        logger.warning(f"No recipient for '{kind.value}' notification; skipped.")
        return None
    entry = NotificationOutboxEntry(
        notification_id=new_uuid(), kind=kind, recipient=recipient, template_data=template_data,
    )
    batch.insert(OUTBOX, entry.notification_id, entry.model_dump(mode="json"))
    return entry


# --- Senders (the delivery collaborator) ---
class NotificationSender(ABC):

    @abstractmethod
    async def send(self, kind: NotificationKind, recipient: str, template_data: Dict[str, Any]) -> DispatchResult:
        ...


class LoggingSender(NotificationSender):
    """Writes the notification to the log. Default for development."""

    async def send(self, kind, recipient, template_data):
        logger.info(f"[notify] {kind.value} -> {recipient}: {template_data}")
        return DispatchResult.ok()


class MailQueueSender(NotificationSender):
    """Queues a document in the `mail` collection for an external mailer to render and send."""

    def __init__(self, store: Store):
        self.store = store

    async def send(self, kind, recipient, template_data):
        mail_id = new_uuid()
        await self.store.put(MAIL, mail_id, {
            "mail_id": mail_id, "to": recipient, "kind": kind.value,
            "data": template_data, "created_at": utcnow().isoformat(),
        })
        return DispatchResult.ok()


# --- Dispatcher ---
class NotificationDispatcher:

    def __init__(self, store: Store, sender: NotificationSender, max_attempts: int = 5, auto_dispatch: bool = True):
        self.store = store
        self.sender = sender
        self.max_attempts = max_attempts
        self.auto_dispatch = auto_dispatch
        self._tasks: Set[asyncio.Task] = set()

    def kick(self) -> None:
        """Schedule delivery of pending entries without waiting for it."""
        if not self.auto_dispatch: return
        try:
            task = asyncio.get_running_loop().create_task(self.dispatch_pending())
        except RuntimeError:
            logger.debug("No running loop; outbox will be drained by the scheduler.")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        if self._tasks: await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _deliverable(self, include_failed: bool, limit: int) -> List[NotificationOutboxEntry]:
        raw = await self.store.find(OUTBOX, {"status": NotificationStatus.PENDING.value}, limit=limit)
        if include_failed:
            raw += await self.store.find(OUTBOX, {"status": NotificationStatus.FAILED.value}, limit=limit)
        entries = [NotificationOutboxEntry.model_validate(doc) for doc in raw]
        return [e for e in entries if e.attempts < self.max_attempts][:limit]

    async def _claim(self, entry: NotificationOutboxEntry) -> bool:
        batch = WriteBatch().update(
            OUTBOX, entry.notification_id,
            {"attempts": entry.attempts + 1, "updated_at": utcnow().isoformat()},
            expect={"attempts": entry.attempts, "status": entry.status.value},
        )
        try:
            await self.store.commit(batch)
            return True
        except WriteConflict:
            logger.debug(f"Notification {entry.notification_id} claimed elsewhere; skipping.")
            return False

    async def deliver(self, entry: NotificationOutboxEntry) -> DispatchResult:
        try:
            result = await self.sender.send(entry.kind, entry.recipient, entry.template_data)
        except Exception as e:
            logger.opt(exception=True).error(f"Sender raised for notification {entry.notification_id} ({entry.kind.value}): {e}")
            result = DispatchResult.failed(str(e) or type(e).__name__)

        fields: Dict[str, Any] = {"updated_at": utcnow().isoformat()}
        if result.delivered:
            fields.update(status=NotificationStatus.DELIVERED.value, last_error=None)
            logger.info(f"Notification {entry.kind.value} delivered to {entry.recipient}.")
        else:
            fields.update(status=NotificationStatus.FAILED.value, last_error=result.reason)
            logger.warning(f"Notification {entry.kind.value} to {entry.recipient} failed: {result.reason}")
        await self.store.patch(OUTBOX, entry.notification_id, fields)
        return result

    async def dispatch_pending(self, include_failed: bool = False, limit: int = 50) -> Dict[str, int]:
        summary = {"delivered": 0, "failed": 0, "skipped": 0}
        try:
            entries = await self._deliverable(include_failed, limit)
        except Exception as e:
            logger.opt(exception=True).error(f"Could not read notification outbox: {e}")
            return summary

        for entry in entries:
            try:
                if not await self._claim(entry):
                    summary["skipped"] += 1
                    continue
                result = await self.deliver(entry)
                summary["delivered" if result.delivered else "failed"] += 1
            except Exception as e:
                summary["failed"] += 1
                logger.opt(exception=True).error(f"Outbox bookkeeping failed for {entry.notification_id}: {e}")
        if entries:
            logger.info(f"Outbox pass finished: {summary}")
        return summary

    async def retry_failed(self, limit: int = 50) -> Dict[str, int]:
        return await self.dispatch_pending(include_failed=True, limit=limit)
