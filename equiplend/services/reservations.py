# equiplend/services/reservations.py
from typing import Any, Callable, Dict, Optional

from loguru import logger

from equiplend.core.exceptions import (
    ConsistencyError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError,
)
from equiplend.core.utils import new_record_id, utcnow
from equiplend.db.store import RESERVATIONS, Store, WriteBatch, WriteConflict
from equiplend.models.enum import (
    AdminAction, AdminTarget, CancelledByType, NotificationKind, ReservationStatus,
)
from equiplend.models.identity import Actor
from equiplend.models.reservation import RoomReservation
from equiplend.services.audit import stage_admin_action
from equiplend.services.notifications import NotificationDispatcher, stage_notification

TRANSITIONS: Dict[str, frozenset] = {
    "approve": frozenset({ReservationStatus.PENDING}),
    "reject": frozenset({ReservationStatus.PENDING}),
    "cancel": frozenset({ReservationStatus.PENDING, ReservationStatus.APPROVED}),
    "record_return": frozenset({ReservationStatus.APPROVED}),
}


class ReservationService:
    """Room booking approval workflow. Has no effect on the availability ledger."""

    def __init__(self, store: Store, dispatcher: NotificationDispatcher, admin_email: Optional[str] = None,
                 clock: Callable = utcnow):
        self.store = store
        self.dispatcher = dispatcher
        self.admin_email = admin_email
        self.clock = clock

    async def get(self, reservation_id: str) -> RoomReservation:
        raw = await self.store.get(RESERVATIONS, reservation_id)
        if raw is None: raise NotFoundError(RESERVATIONS, reservation_id)
        return RoomReservation.model_validate(raw)

    @staticmethod
    def _guard(record: RoomReservation, transition: str) -> None:
        if record.status not in TRANSITIONS[transition]:
            raise InvalidStateError(record.reservation_id, transition, record.status.value)

    @staticmethod
    def _template_data(record: RoomReservation, **extra: Any) -> Dict[str, Any]:
        data = {
            "reservation_id": record.reservation_id,
            "user_name": record.requester.name,
            "room_name": record.room_name,
            "booking_date": record.booking_date.isoformat(),
            "start_time": record.start_time,
            "end_time": record.end_time,
            "people": record.people,
            "objective": record.objective,
        }
        data.update(extra)
        return data

    async def _commit(self, record: RoomReservation, transition: str, batch: WriteBatch,
                      changes: Dict[str, Any]) -> RoomReservation:
        changes = {**changes, "version": record.version + 1, "updated_at": self.clock()}
        updated = record.model_copy(update=changes)
        dumped = updated.model_dump(mode="json")
        guarded = WriteBatch().update(
            RESERVATIONS, record.reservation_id, {k: dumped[k] for k in changes},
            expect={"version": record.version, "status": record.status.value},
        )
        guarded.ops.extend(batch.ops)
        try:
            await self.store.commit(guarded)
        except WriteConflict as e:
            if e.collection != RESERVATIONS:
                raise ConsistencyError(f"Could not {transition} '{record.reservation_id}': {e.reason}.",
                                       id=record.reservation_id) from e
            current = await self.store.get(RESERVATIONS, record.reservation_id)
            status = current.get("status") if current else None
            raise InvalidStateError(
                record.reservation_id, transition, status,
                detail=f"'{record.reservation_id}' changed while trying to {transition} (status is now '{status}').",
            ) from e
        logger.info(f"Reservation '{record.reservation_id}': {transition} "
                    f"({record.status.value} -> {updated.status.value}).")
        self.dispatcher.kick()
        return updated

    # --- operations ---
    async def request(self, payload: RoomReservation.Create) -> RoomReservation:
        # zero-padded HH:MM compares chronologically as text
        if payload.end_time <= payload.start_time:
            raise ValidationError("End time must be after start time.",
                                  start_time=payload.start_time, end_time=payload.end_time)
        now = self.clock()
        record = RoomReservation(
            reservation_id=new_record_id("reservation", int(now.timestamp() * 1000)),
            created_at=now, updated_at=now,
            **payload.model_dump(),
        )
        batch = WriteBatch().insert(RESERVATIONS, record.reservation_id, record.model_dump(mode="json"))
        stage_notification(batch, NotificationKind.RESERVATION_REQUESTED, self.admin_email,
                           self._template_data(record, user_email=record.requester.email))
        try:
            await self.store.commit(batch)
        except WriteConflict as e:
            raise ConsistencyError(f"Could not store reservation: {e.reason}.", key=e.key) from e
        logger.info(f"Reservation '{record.reservation_id}' requested for room '{record.room_name}'.")
        self.dispatcher.kick()
        return record

    async def approve(self, reservation_id: str, actor: Actor) -> RoomReservation:
        record = await self.get(reservation_id)
        self._guard(record, "approve")
        batch = WriteBatch()
        stage_admin_action(batch, actor, AdminAction.APPROVE, AdminTarget.ROOM, record.room_name,
                           f"Reservation {record.reservation_id} on {record.booking_date.isoformat()}")
        stage_notification(batch, NotificationKind.RESERVATION_APPROVED, record.requester.email,
                           self._template_data(record, approved_by=actor.display_name))
        return await self._commit(record, "approve", batch, {
            "status": ReservationStatus.APPROVED,
            "approved_by": actor.display_name, "approved_at": self.clock(),
        })

    async def reject(self, reservation_id: str, reason: str, actor: Actor) -> RoomReservation:
        record = await self.get(reservation_id)
        self._guard(record, "reject")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to reject a reservation.", id=reservation_id)
        batch = WriteBatch()
        stage_admin_action(batch, actor, AdminAction.REJECT, AdminTarget.ROOM, record.room_name,
                           f"Reservation {record.reservation_id} rejected: {reason}")
        stage_notification(batch, NotificationKind.RESERVATION_REJECTED, record.requester.email,
                           self._template_data(record, reason=reason))
        return await self._commit(record, "reject", batch, {
            "status": ReservationStatus.CANCELLED,
            "cancelled_by_type": CancelledByType.ADMIN,
            "cancelled_by": actor.display_name,
            "cancel_reason": reason,
            "cancelled_at": self.clock(),
        })

    async def cancel(self, reservation_id: str, actor: Actor, reason: Optional[str] = None) -> RoomReservation:
        record = await self.get(reservation_id)
        self._guard(record, "cancel")
        if not actor.is_staff and actor.user_id != record.requester.user_id:
            raise PermissionDeniedError("Only the requester or staff can cancel this reservation.",
                                        id=reservation_id, user_id=actor.user_id)
        reason = (reason or "").strip() or None
        batch = WriteBatch()
        stage_notification(batch, NotificationKind.RESERVATION_CANCELLED, self.admin_email,
                           self._template_data(record, reason=reason or "", cancelled_by=actor.display_name))
        return await self._commit(record, "cancel", batch, {
            "status": ReservationStatus.CANCELLED,
            "cancelled_by_type": CancelledByType.USER,
            "cancelled_by": actor.display_name,
            "cancel_reason": reason,
            "cancelled_at": self.clock(),
        })

    async def record_return(self, reservation_id: str, payload: RoomReservation.ReturnReport) -> RoomReservation:
        record = await self.get(reservation_id)
        self._guard(record, "record_return")
        return await self._commit(record, "record_return", WriteBatch(), {
            "status": ReservationStatus.RETURNED,
            "room_condition": payload.room_condition,
            "equipment_condition": payload.equipment_condition,
            "return_notes": payload.return_notes,
            "photo_refs": list(payload.photo_refs),
            "returned_at": self.clock(),
        })
