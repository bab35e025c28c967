# equiplend/services/borrowings.py
"""
Borrow transaction state machine.

    scheduled -> borrowed -> pending_return -> returned
        |            |  ^          |
        +-> cancelled+  +-- reject-+

Every transition loads the record by key, checks existence, then status,
then the payload, and stages all of its writes (record, ledger, stock,
admin log, outbox) into one batch. The record write is guarded on the
version and status that were read, so of two racing transitions only one
can commit; the other fails with InvalidStateError.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from equiplend.core.exceptions import (
    ConsistencyError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError,
)
from equiplend.core.utils import new_record_id, utcnow
from equiplend.db.store import ASSET_UNITS, BORROWS, EQUIPMENT, Store, WriteBatch, WriteConflict
from equiplend.models.borrowing import BorrowItem, BorrowTransaction
from equiplend.models.enum import (
    AdminAction, AdminTarget, AssetCondition, BorrowStatus, CancelPolicy, EquipmentCategory, NotificationKind,
)
from equiplend.models.identity import Actor
from equiplend.services.audit import stage_admin_action
from equiplend.services.ledger import AvailabilityLedger
from equiplend.services.notifications import NotificationDispatcher, stage_notification
from equiplend.services.reconciler import reconcile

# transition -> statuses it may start from
TRANSITIONS: Dict[str, frozenset] = {
    "confirm_handover": frozenset({BorrowStatus.SCHEDULED}),
    "acknowledge_receipt": frozenset({BorrowStatus.BORROWED}),
    "submit_return": frozenset({BorrowStatus.BORROWED}),
    "approve_return": frozenset({BorrowStatus.PENDING_RETURN}),
    "reject_return": frozenset({BorrowStatus.PENDING_RETURN}),
    "cancel": frozenset({BorrowStatus.SCHEDULED, BorrowStatus.BORROWED}),
}


class BorrowService:

    def __init__(self, store: Store, ledger: AvailabilityLedger, dispatcher: NotificationDispatcher,
                 cancel_policy: CancelPolicy = CancelPolicy.RETAIN, admin_email: Optional[str] = None,
                 clock: Callable = utcnow):
        self.store = store
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.cancel_policy = CancelPolicy(cancel_policy)
        self.admin_email = admin_email
        self.clock = clock

    # --- helpers ---
    async def get(self, borrow_id: str) -> BorrowTransaction:
        raw = await self.store.get(BORROWS, borrow_id)
        if raw is None: raise NotFoundError(BORROWS, borrow_id)
        return BorrowTransaction.model_validate(raw)

    @staticmethod
    def _guard(record: BorrowTransaction, transition: str) -> None:
        if record.status not in TRANSITIONS[transition]:
            raise InvalidStateError(record.borrow_id, transition, record.status.value)

    def _template_data(self, record: BorrowTransaction, **extra: Any) -> Dict[str, Any]:
        data = {
            "borrow_id": record.borrow_id,
            "user_name": record.requester.name,
            "equipment_names": [item.equipment_name for item in record.equipment_items],
            "borrow_type": record.borrow_type.value,
            "borrow_date": record.borrow_date.isoformat(),
            "borrow_time": record.borrow_time,
            "expected_return_date": record.expected_return_date.isoformat(),
            "expected_return_time": record.expected_return_time or "",
            "status": record.status.value,
        }
        data.update(extra)
        return data

    async def _raise_conflict(self, record_id: str, transition: str, conflict: WriteConflict):
        if conflict.collection == BORROWS:
            current = await self.store.get(BORROWS, record_id)
            status = current.get("status") if current else None
            logger.warning(f"Lost race on '{record_id}' during {transition}; status is now '{status}'.")
            raise InvalidStateError(
                record_id, transition, status,
                detail=f"'{record_id}' changed while trying to {transition} (status is now '{status}').",
            ) from conflict
        logger.critical(f"Batch for {transition} on '{record_id}' aborted: {conflict}")
        raise ConsistencyError(f"Could not {transition} '{record_id}': {conflict.reason}.",
                               id=record_id, collection=conflict.collection, key=conflict.key) from conflict

    async def _commit(self, record: BorrowTransaction, transition: str, batch: WriteBatch,
                      changes: Dict[str, Any], now) -> BorrowTransaction:
        changes = {**changes, "version": record.version + 1, "updated_at": now}
        updated = record.model_copy(update=changes)
        dumped = updated.model_dump(mode="json")
        # the record write goes first so a lost race is reported as such
        guarded = WriteBatch().update(
            BORROWS, record.borrow_id, {k: dumped[k] for k in changes},
            expect={"version": record.version, "status": record.status.value},
        )
        guarded.ops.extend(batch.ops)
        try:
            await self.store.commit(guarded)
        except WriteConflict as e:
            await self._raise_conflict(record.borrow_id, transition, e)
        logger.info(f"Borrow '{record.borrow_id}': {transition} ({record.status.value} -> {updated.status.value}).")
        self.dispatcher.kick()
        return updated

    async def _stage_stock(self, batch: WriteBatch, amounts: Dict[str, int], now_iso: str,
                           check_stock: bool = False) -> None:
        """Apply signed stock changes to consumable equipment; unknown equipment is skipped."""
        if not amounts: return
        known = await self.store.get_many(EQUIPMENT, amounts.keys())
        for equipment_id, amount in sorted(amounts.items()):
            doc = known.get(equipment_id)
            if doc is None:
                logger.warning(f"Consumable equipment '{equipment_id}' not found; stock left untouched.")
                continue
            current = doc.get("quantity", 0)
            expect = None
            if check_stock:
                if current + amount < 0:
                    raise ValidationError(
                        f"Not enough stock for '{doc.get('name', equipment_id)}': {current} left, {-amount} requested.",
                        equipment_id=equipment_id)
                expect = {"quantity": current}
            batch.increment(EQUIPMENT, equipment_id, "quantity", amount, flag="available",
                            fields={"updated_at": now_iso}, expect=expect)

    # --- create ---
    @staticmethod
    def _build_items(request: BorrowTransaction.Create) -> List[BorrowItem]:
        items: List[BorrowItem] = []
        seen_codes: set = set()
        for req in request.items:
            context = {"equipment_id": req.equipment_id, "equipment_name": req.equipment_name}
            if req.quantity <= 0:
                raise ValidationError(f"Quantity for '{req.equipment_name}' must be greater than zero.", **context)
            codes = [c.strip() for c in req.serial_codes if c and c.strip()]
            if req.equipment_category == EquipmentCategory.ASSET:
                if len(set(codes)) != len(codes):
                    raise ValidationError(f"Duplicate serial code for '{req.equipment_name}'.", **context)
                if len(codes) != req.quantity:
                    raise ValidationError(
                        f"'{req.equipment_name}' lists {len(codes)} serial code(s) for quantity {req.quantity}.", **context)
                clash = seen_codes.intersection(codes)
                if clash:
                    raise ValidationError(f"Serial code(s) {sorted(clash)} listed twice in one borrow.", **context)
                seen_codes.update(codes)
            elif codes:
                raise ValidationError(f"Consumable '{req.equipment_name}' cannot list serial codes.", **context)
            items.append(BorrowItem(
                equipment_id=req.equipment_id, equipment_name=req.equipment_name,
                equipment_category=req.equipment_category, quantity_borrowed=req.quantity, serial_codes=codes,
            ))
        return items

    async def create(self, request: BorrowTransaction.Create, actor: Optional[Actor] = None) -> BorrowTransaction:
        items = self._build_items(request)
        now = self.clock()
        record = BorrowTransaction(
            borrow_id=new_record_id("borrow", int(now.timestamp() * 1000)),
            requester=request.requester,
            borrow_type=request.borrow_type,
            equipment_items=items,
            borrow_date=request.borrow_date,
            borrow_time=request.borrow_time,
            expected_return_date=request.expected_return_date,
            expected_return_time=request.expected_return_time,
            condition_before_borrow=request.condition_before_borrow,
            notes=request.notes or "",
            status=BorrowStatus.BORROWED if request.hand_over else BorrowStatus.SCHEDULED,
            created_at=now,
            updated_at=now,
        )
        if request.hand_over and actor is not None and actor.is_staff:
            record.confirmed_by, record.confirmed_by_email, record.confirmed_at = actor.display_name, actor.email, now

        batch = WriteBatch()
        batch.insert(BORROWS, record.borrow_id, record.model_dump(mode="json"))
        owners = {code: item.equipment_id for item in items for code in item.serial_codes}
        await self.ledger.stage_unavailable(batch, record.asset_codes(), require_available=True,
                                            borrow_id=record.borrow_id, owners=owners)
        consumed: Dict[str, int] = {}
        for item in items:
            if item.equipment_category == EquipmentCategory.CONSUMABLE:
                consumed[item.equipment_id] = consumed.get(item.equipment_id, 0) - item.quantity_borrowed
        await self._stage_stock(batch, consumed, now.isoformat(), check_stock=True)
        stage_notification(batch, NotificationKind.BORROW_CREATED, record.requester.email, self._template_data(record))

        try:
            await self.store.commit(batch)
        except WriteConflict as e:
            if e.collection in (ASSET_UNITS, EQUIPMENT):
                raise ValidationError(
                    f"Requested equipment changed while the borrow was being created ({e.key}); please retry.",
                    key=e.key) from e
            raise ConsistencyError(f"Could not create borrow: {e.reason}.", key=e.key) from e

        logger.info(f"Borrow '{record.borrow_id}' created for '{record.requester.email}' with status '{record.status.value}'.")
        self.dispatcher.kick()
        return record

    # --- transitions ---
    async def confirm_handover(self, borrow_id: str, actor: Actor) -> BorrowTransaction:
        record = await self.get(borrow_id)
        self._guard(record, "confirm_handover")
        now = self.clock()
        batch = WriteBatch()
        stage_admin_action(batch, actor, AdminAction.CONFIRM, AdminTarget.BORROW, record.borrow_id,
                           f"Handed over to {record.requester.name}")
        updated_view = record.model_copy(update={"status": BorrowStatus.BORROWED})
        stage_notification(batch, NotificationKind.BORROW_CONFIRMED, record.requester.email,
                           self._template_data(updated_view))
        return await self._commit(record, "confirm_handover", batch, {
            "status": BorrowStatus.BORROWED,
            "confirmed_by": actor.display_name, "confirmed_by_email": actor.email, "confirmed_at": now,
        }, now)

    async def acknowledge_receipt(self, borrow_id: str, actor: Actor) -> BorrowTransaction:
        record = await self.get(borrow_id)
        self._guard(record, "acknowledge_receipt")
        if record.acknowledged_at is not None:
            raise InvalidStateError(borrow_id, "acknowledge_receipt", record.status.value,
                                    detail=f"'{borrow_id}' was already acknowledged by {record.acknowledged_by}.")
        now = self.clock()
        batch = WriteBatch()
        stage_admin_action(batch, actor, AdminAction.ACKNOWLEDGE, AdminTarget.BORROW, record.borrow_id,
                           f"Borrow of {record.requester.name} acknowledged")
        stage_notification(batch, NotificationKind.BORROW_ACKNOWLEDGED, record.requester.email,
                           self._template_data(record, acknowledged_by=actor.display_name))
        return await self._commit(record, "acknowledge_receipt", batch, {
            "acknowledged_by": actor.display_name, "acknowledged_by_email": actor.email, "acknowledged_at": now,
        }, now)

    async def submit_return(self, borrow_id: str, payload: BorrowTransaction.ReturnSubmission,
                            actor: Optional[Actor] = None) -> BorrowTransaction:
        record = await self.get(borrow_id)
        self._guard(record, "submit_return")
        if actor is not None and not actor.is_staff and actor.user_id != record.requester.user_id:
            raise PermissionDeniedError("Only the requester or staff can return this borrow.",
                                        id=borrow_id, user_id=actor.user_id)
        merged = reconcile(record.equipment_items, payload.items)

        now = self.clock()
        batch = WriteBatch()
        await self._stage_stock(batch, merged.restock, now.isoformat())
        changes: Dict[str, Any] = {
            "equipment_items": merged.items,
            "status": BorrowStatus.PENDING_RETURN,
            "actual_return_date": payload.return_date,
            "return_time": payload.return_time,
            "condition_on_return": payload.condition_on_return,
            "returned_by": payload.returned_by_name or (actor.display_name if actor else record.requester.name),
            "returned_by_email": (actor.email if actor and actor.email else record.requester.email),
            "return_submitted_at": now,
        }
        if payload.damages_and_issues: changes["damages_and_issues"] = payload.damages_and_issues
        if payload.notes: changes["notes"] = payload.notes
        stage_notification(batch, NotificationKind.RETURN_SUBMITTED, self.admin_email,
                           self._template_data(record, returned_by=changes["returned_by"],
                                               condition_on_return=payload.condition_on_return))
        return await self._commit(record, "submit_return", batch, changes, now)

    @staticmethod
    def _split_by_condition(items: Iterable[BorrowItem]):
        release, retain = [], []
        for item in items:
            if not item.is_asset: continue
            for code in item.serial_codes:
                (release if item.condition_of(code) == AssetCondition.NORMAL else retain).append(code)
        return release, retain

    async def _stage_unit_conditions(self, batch: WriteBatch, items: Iterable[BorrowItem], codes: List[str]) -> None:
        """Record the reported damage on units that stay out of circulation."""
        known = await self.store.get_many(ASSET_UNITS, codes)
        for item in items:
            for code in item.serial_codes:
                condition = item.condition_of(code)
                if code in known and condition is not None:
                    batch.update(ASSET_UNITS, code, {"condition": condition.value})

    async def approve_return(self, borrow_id: str, actor: Actor) -> BorrowTransaction:
        record = await self.get(borrow_id)
        self._guard(record, "approve_return")
        release, retain = self._split_by_condition(record.equipment_items)
        if retain:
            logger.info(f"Borrow '{borrow_id}': unit(s) {retain} stay unavailable (damaged, lost or unreported).")

        now = self.clock()
        batch = WriteBatch()
        await self.ledger.stage_available(batch, release)
        await self._stage_unit_conditions(batch, record.equipment_items, retain)
        stage_admin_action(batch, actor, AdminAction.APPROVE, AdminTarget.BORROW, record.borrow_id,
                           f"Return approved; released {len(release)} unit(s), retained {len(retain)}")
        stage_notification(batch, NotificationKind.RETURN_APPROVED, record.requester.email,
                           self._template_data(record, approved_by=actor.display_name, retained_codes=retain))
        return await self._commit(record, "approve_return", batch, {
            "status": BorrowStatus.RETURNED,
            "approved_by": actor.display_name, "approved_by_email": actor.email, "approved_at": now,
        }, now)

    async def reject_return(self, borrow_id: str, reason: str, actor: Optional[Actor] = None) -> BorrowTransaction:
        record = await self.get(borrow_id)
        self._guard(record, "reject_return")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to reject a return.", id=borrow_id)

        now = self.clock()
        line = f"Return rejected: {reason}"
        batch = WriteBatch()
        stage_admin_action(batch, actor, AdminAction.REJECT, AdminTarget.BORROW, record.borrow_id, line)
        stage_notification(batch, NotificationKind.RETURN_REJECTED, record.requester.email,
                           self._template_data(record, reason=reason))
        # reconciled item data is left as submitted so the next submission can build on it
        return await self._commit(record, "reject_return", batch, {
            "status": BorrowStatus.BORROWED,
            "notes": f"{record.notes} | {line}" if record.notes else line,
            "rejection_reason": reason,
            "rejected_by": actor.display_name if actor else "Admin",
            "rejected_by_email": actor.email if actor else None,
            "rejected_at": now,
        }, now)

    async def cancel(self, borrow_id: str, actor: Actor, reason: Optional[str] = None) -> BorrowTransaction:
        record = await self.get(borrow_id)
        self._guard(record, "cancel")
        reason = (reason or "").strip() or None

        now = self.clock()
        batch = WriteBatch()
        if self.cancel_policy == CancelPolicy.RELEASE:
            await self.ledger.stage_available(batch, record.asset_codes())
            restore = {}
            for item in record.equipment_items:
                if item.equipment_category == EquipmentCategory.CONSUMABLE:
                    restore[item.equipment_id] = restore.get(item.equipment_id, 0) + item.quantity_borrowed
            await self._stage_stock(batch, restore, now.isoformat())
        stage_admin_action(batch, actor, AdminAction.CANCEL, AdminTarget.BORROW, record.borrow_id,
                           f"Cancelled: {reason or 'no reason given'}")
        stage_notification(batch, NotificationKind.BORROW_CANCELLED, record.requester.email,
                           self._template_data(record, reason=reason or "", cancelled_by=actor.display_name))
        return await self._commit(record, "cancel", batch, {
            "status": BorrowStatus.CANCELLED,
            "cancelled_by": actor.display_name, "cancelled_by_email": actor.email,
            "cancelled_at": now, "cancel_reason": reason,
        }, now)
