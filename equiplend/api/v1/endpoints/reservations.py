# equiplend/api/v1/endpoints/reservations.py
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Request, status

from equiplend.api.deps import bind_requester, get_services
from equiplend.core.rate_limiter import limiter
from equiplend.core.security import get_current_actor, require_staff_or_admin
from equiplend.models.identity import Actor
from equiplend.models.reservation import RoomReservation
from equiplend.services.registry import LendingServices

router = APIRouter(
    prefix="/reservations",
    tags=["Room Reservations"],
)


def _response(record: RoomReservation) -> RoomReservation.Response:
    return RoomReservation.Response(reservation_id=record.reservation_id, status=record.status, version=record.version)


@router.post("", response_model=RoomReservation.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/hour")
async def request_reservation(
    request: Request,
    payload: RoomReservation.Create = Body(...),
    actor: Actor = Depends(get_current_actor),
    services: LendingServices = Depends(get_services),
):
    payload = payload.model_copy(update={"requester": bind_requester(payload.requester, actor)})
    return _response(await services.reservations.request(payload))


@router.get("/{reservation_id}", response_model=RoomReservation)
@limiter.limit("120/minute")
async def read_reservation(
    request: Request,
    reservation_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    services: LendingServices = Depends(get_services),
):
    return await services.reservations.get(reservation_id)


@router.post("/{reservation_id}/approve", response_model=RoomReservation.Response)
@limiter.limit("60/minute")
async def approve_reservation(
    request: Request,
    reservation_id: str = Path(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    return _response(await services.reservations.approve(reservation_id, actor))


@router.post("/{reservation_id}/reject", response_model=RoomReservation.Response)
@limiter.limit("60/minute")
async def reject_reservation(
    request: Request,
    reservation_id: str = Path(...),
    payload: RoomReservation.Reason = Body(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    return _response(await services.reservations.reject(reservation_id, payload.reason, actor))


@router.post("/{reservation_id}/cancel", response_model=RoomReservation.Response)
@limiter.limit("60/minute")
async def cancel_reservation(
    request: Request,
    reservation_id: str = Path(...),
    payload: Optional[RoomReservation.Reason] = Body(default=None),
    actor: Actor = Depends(get_current_actor),
    services: LendingServices = Depends(get_services),
):
    record = await services.reservations.cancel(reservation_id, actor, reason=payload.reason if payload else None)
    return _response(record)


@router.post("/{reservation_id}/return", response_model=RoomReservation.Response)
@limiter.limit("30/minute")
async def record_room_return(
    request: Request,
    reservation_id: str = Path(...),
    payload: RoomReservation.ReturnReport = Body(...),
    actor: Actor = Depends(get_current_actor),
    services: LendingServices = Depends(get_services),
):
    return _response(await services.reservations.record_return(reservation_id, payload))
