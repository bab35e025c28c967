# equiplend/services/registry.py
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from equiplend.db.store import Store
from equiplend.models.enum import CancelPolicy
from equiplend.services.borrowings import BorrowService
from equiplend.services.inventory import InventoryService
from equiplend.services.ledger import AvailabilityLedger
from equiplend.services.notifications import (
    LoggingSender, MailQueueSender, NotificationDispatcher, NotificationSender,
)
from equiplend.services.reservations import ReservationService


@dataclass
class LendingServices:
    """Everything the HTTP layer and the scheduler need, wired to one store."""
    store: Store
    ledger: AvailabilityLedger
    dispatcher: NotificationDispatcher
    borrowings: BorrowService
    reservations: ReservationService
    inventory: InventoryService


def build_sender(kind: str, store: Store) -> NotificationSender:
    if kind == "mail": return MailQueueSender(store)
    if kind != "log": logger.warning(f"Unknown NOTIFICATION_SENDER '{kind}'. Falling back to log sender.")
    return LoggingSender()


def build_services(store: Store, sender: Optional[NotificationSender] = None,
                   cancel_policy: str = CancelPolicy.RETAIN.value, admin_email: Optional[str] = None,
                   max_attempts: int = 5, auto_dispatch: bool = True) -> LendingServices:
    try:
        policy = CancelPolicy(cancel_policy)
    except ValueError:
        logger.warning(f"Unknown CANCEL_POLICY '{cancel_policy}'. Using '{CancelPolicy.RETAIN.value}'.")
        policy = CancelPolicy.RETAIN

    ledger = AvailabilityLedger(store)
    dispatcher = NotificationDispatcher(store, sender or LoggingSender(),
                                        max_attempts=max_attempts, auto_dispatch=auto_dispatch)
    return LendingServices(
        store=store,
        ledger=ledger,
        dispatcher=dispatcher,
        borrowings=BorrowService(store, ledger, dispatcher, cancel_policy=policy, admin_email=admin_email),
        reservations=ReservationService(store, dispatcher, admin_email=admin_email),
        inventory=InventoryService(store, ledger),
    )
