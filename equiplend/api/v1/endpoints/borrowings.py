# equiplend/api/v1/endpoints/borrowings.py
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Request, status
from loguru import logger

from equiplend.api.deps import bind_requester, get_services
from equiplend.core.rate_limiter import limiter
from equiplend.core.security import get_current_actor, require_staff_or_admin
from equiplend.models.borrowing import BorrowTransaction
from equiplend.models.identity import Actor
from equiplend.services.registry import LendingServices

router = APIRouter(
    prefix="/borrowings",
    tags=["Borrowings"],
)


def _response(record: BorrowTransaction, message: str) -> BorrowTransaction.Response:
    return BorrowTransaction.Response(
        borrow_id=record.borrow_id, status=record.status, version=record.version, message=message,
    )


@router.post("", response_model=BorrowTransaction.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/hour")
async def create_borrowing(
    request: Request,
    payload: BorrowTransaction.Create = Body(...),
    actor: Actor = Depends(get_current_actor),
    services: LendingServices = Depends(get_services),
):
    """Records a borrow. Asset units are taken out of circulation and consumable stock is reduced."""
    payload = payload.model_copy(update={"requester": bind_requester(payload.requester, actor)})
    logger.info(f"'{actor.user_id}' creating borrow for '{payload.requester.email}' ({len(payload.items)} item(s)).")
    record = await services.borrowings.create(payload, actor=actor)
    return _response(record, "Borrow recorded.")


@router.get("/{borrow_id}", response_model=BorrowTransaction)
@limiter.limit("120/minute")
async def read_borrowing(
    request: Request,
    borrow_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    services: LendingServices = Depends(get_services),
):
    return await services.borrowings.get(borrow_id)


@router.post("/{borrow_id}/confirm", response_model=BorrowTransaction.Response)
@limiter.limit("60/minute")
async def confirm_handover(
    request: Request,
    borrow_id: str = Path(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    record = await services.borrowings.confirm_handover(borrow_id, actor)
    return _response(record, "Hand-over confirmed.")


@router.post("/{borrow_id}/acknowledge", response_model=BorrowTransaction.Response)
@limiter.limit("60/minute")
async def acknowledge_receipt(
    request: Request,
    borrow_id: str = Path(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    record = await services.borrowings.acknowledge_receipt(borrow_id, actor)
    return _response(record, "Borrow acknowledged.")


@router.post("/{borrow_id}/return", response_model=BorrowTransaction.Response)
@limiter.limit("30/minute")
async def submit_return(
    request: Request,
    borrow_id: str = Path(...),
    payload: BorrowTransaction.ReturnSubmission = Body(...),
    actor: Actor = Depends(get_current_actor),
    services: LendingServices = Depends(get_services),
):
    record = await services.borrowings.submit_return(borrow_id, payload, actor=actor)
    return _response(record, "Return submitted, waiting for staff check.")


@router.post("/{borrow_id}/approve-return", response_model=BorrowTransaction.Response)
@limiter.limit("60/minute")
async def approve_return(
    request: Request,
    borrow_id: str = Path(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    record = await services.borrowings.approve_return(borrow_id, actor)
    return _response(record, "Return approved.")


@router.post("/{borrow_id}/reject-return", response_model=BorrowTransaction.Response)
@limiter.limit("60/minute")
async def reject_return(
    request: Request,
    borrow_id: str = Path(...),
    payload: BorrowTransaction.Reason = Body(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    record = await services.borrowings.reject_return(borrow_id, payload.reason, actor=actor)
    return _response(record, "Return rejected.")


@router.post("/{borrow_id}/cancel", response_model=BorrowTransaction.Response)
@limiter.limit("60/minute")
async def cancel_borrowing(
    request: Request,
    borrow_id: str = Path(...),
    payload: Optional[BorrowTransaction.Reason] = Body(default=None),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    record = await services.borrowings.cancel(borrow_id, actor, reason=payload.reason if payload else None)
    return _response(record, "Borrow cancelled.")
