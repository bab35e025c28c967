# equiplend/api/v1/endpoints/equipment.py
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Request, status
from loguru import logger

from equiplend.api.deps import get_services
from equiplend.core.rate_limiter import limiter
from equiplend.core.security import get_current_actor, require_staff_or_admin
from equiplend.models.equipment import AssetUnit, Equipment
from equiplend.models.identity import Actor
from equiplend.services.registry import LendingServices

router = APIRouter(
    prefix="/equipment",
    tags=["Equipment"],
)


@router.post("/assets", response_model=Equipment, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
async def register_asset(
    request: Request,
    payload: Equipment.CreateAsset = Body(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    logger.info(f"'{actor.display_name}' registering asset '{payload.name}' ({len(payload.serial_codes)} unit(s)).")
    return await services.inventory.register_asset(payload, actor=actor)


@router.post("/consumables", response_model=Equipment, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
async def register_consumable(
    request: Request,
    payload: Equipment.CreateConsumable = Body(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    return await services.inventory.register_consumable(payload, actor=actor)


@router.post("/{equipment_id}/stock", response_model=Equipment)
@limiter.limit("60/minute")
async def add_stock(
    request: Request,
    equipment_id: str = Path(...),
    payload: Equipment.AddStock = Body(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    return await services.inventory.add_stock(equipment_id, payload, actor=actor)


@router.get("/{equipment_id}", response_model=Equipment)
@limiter.limit("120/minute")
async def read_equipment(
    request: Request,
    equipment_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    services: LendingServices = Depends(get_services),
):
    return await services.inventory.get_equipment(equipment_id)


@router.get("/{equipment_id}/units/available", response_model=List[AssetUnit])
@limiter.limit("120/minute")
async def list_available_units(
    request: Request,
    equipment_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    services: LendingServices = Depends(get_services),
):
    """Serial codes that can be picked for a new borrow."""
    return await services.inventory.list_available_units(equipment_id)


@router.patch("/{equipment_id}", response_model=Equipment)
@limiter.limit("60/minute")
async def update_equipment(
    request: Request,
    equipment_id: str = Path(...),
    payload: Equipment.Update = Body(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    return await services.inventory.update_equipment(equipment_id, payload, actor=actor)


@router.delete("/{equipment_id}", response_model=Equipment)
@limiter.limit("30/minute")
async def delete_equipment(
    request: Request,
    equipment_id: str = Path(...),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    logger.warning(f"'{actor.display_name}' deleting equipment '{equipment_id}'.")
    return await services.inventory.delete_equipment(equipment_id, actor=actor)


@router.get("/units/{serial_code}", response_model=AssetUnit)
@limiter.limit("120/minute")
async def read_unit(
    request: Request,
    serial_code: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    services: LendingServices = Depends(get_services),
):
    return await services.inventory.get_unit(serial_code)


@router.post("/units/{serial_code}/restore", response_model=AssetUnit)
@limiter.limit("60/minute")
async def restore_unit(
    request: Request,
    serial_code: str = Path(...),
    payload: Optional[AssetUnit.Restore] = Body(default=None),
    actor: Actor = Depends(require_staff_or_admin),
    services: LendingServices = Depends(get_services),
):
    """Manual correction: returns a damaged or lost unit to circulation."""
    return await services.inventory.restore_unit(serial_code, actor, notes=payload.notes if payload else None)
