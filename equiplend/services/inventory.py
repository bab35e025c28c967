# equiplend/services/inventory.py
"""
Inventory administration: equipment masters, serialized units and
consumable stock. Availability of existing units is never written here
except through the ledger.
"""
from typing import Callable, List, Optional

from loguru import logger

from equiplend.core.exceptions import ConsistencyError, InvalidStateError, NotFoundError, ValidationError
from equiplend.core.utils import new_record_id, utcnow
from equiplend.db.store import ASSET_UNITS, BORROWS, EQUIPMENT, Store, WriteBatch, WriteConflict
from equiplend.models.enum import (
    ACTIVE_BORROW_STATUSES, AdminAction, AdminTarget, AssetCondition, EquipmentCategory,
)
from equiplend.models.equipment import AssetUnit, Equipment
from equiplend.models.identity import Actor
from equiplend.services.audit import stage_admin_action
from equiplend.services.ledger import AvailabilityLedger


def _clean_codes(codes: List[str]) -> List[str]:
    cleaned = [c.strip() for c in codes if c and c.strip()]
    if len(set(cleaned)) != len(cleaned):
        raise ValidationError("Serial codes must be unique.", serial_codes=cleaned)
    return cleaned


class InventoryService:

    def __init__(self, store: Store, ledger: AvailabilityLedger, clock: Callable = utcnow):
        self.store = store
        self.ledger = ledger
        self.clock = clock

    async def get_equipment(self, equipment_id: str) -> Equipment:
        raw = await self.store.get(EQUIPMENT, equipment_id)
        if raw is None: raise NotFoundError(EQUIPMENT, equipment_id)
        return Equipment.model_validate(raw)

    async def get_unit(self, serial_code: str) -> AssetUnit:
        raw = await self.store.get(ASSET_UNITS, serial_code)
        if raw is None: raise NotFoundError(ASSET_UNITS, serial_code)
        return AssetUnit.model_validate(raw)

    async def _stage_units(self, batch: WriteBatch, equipment_id: str, codes: List[str]) -> None:
        existing = await self.store.get_many(ASSET_UNITS, codes)
        if existing:
            raise ValidationError(f"Serial code(s) {sorted(existing)} already registered.", serial_codes=sorted(existing))
        now = self.clock()
        for code in codes:
            unit = AssetUnit(serial_code=code, equipment_id=equipment_id, created_at=now)
            batch.insert(ASSET_UNITS, code, unit.model_dump(mode="json"))

    async def _commit(self, batch: WriteBatch, what: str, guarded_id: Optional[str] = None) -> None:
        try:
            await self.store.commit(batch)
        except WriteConflict as e:
            if guarded_id is not None:
                raise InvalidStateError(guarded_id, what, None,
                                        detail=f"'{e.key}' changed while trying to {what}; please retry.") from e
            if e.collection == ASSET_UNITS:
                raise ValidationError(f"Serial code '{e.key}' already registered.", serial_code=e.key) from e
            raise ConsistencyError(f"Could not {what}: {e.reason}.", key=e.key) from e

    async def _active_borrow_status(self, unit: AssetUnit) -> Optional[str]:
        if not unit.borrow_id: return None
        borrow = await self.store.get(BORROWS, unit.borrow_id)
        status = borrow.get("status") if borrow else None
        return status if status in {s.value for s in ACTIVE_BORROW_STATUSES} else None

    async def _borrows_holding(self, equipment_id: str) -> List[str]:
        holders = []
        for status in ACTIVE_BORROW_STATUSES:
            for raw in await self.store.find(BORROWS, {"status": status.value}):
                if any(item.get("equipment_id") == equipment_id for item in raw.get("equipment_items", [])):
                    holders.append(raw["borrow_id"])
        return sorted(holders)

    async def list_available_units(self, equipment_id: str) -> List[AssetUnit]:
        """Units of an asset that can be lent right now, by serial code."""
        equipment = await self.get_equipment(equipment_id)
        if equipment.category != EquipmentCategory.ASSET: return []
        found = await self.store.find(ASSET_UNITS, {"equipment_id": equipment_id, "available": True})
        return sorted((AssetUnit.model_validate(raw) for raw in found), key=lambda unit: unit.serial_code)

    # --- equipment masters ---
    async def register_asset(self, payload: Equipment.CreateAsset, actor: Optional[Actor] = None) -> Equipment:
        codes = _clean_codes(payload.serial_codes)
        if not codes: raise ValidationError("An asset needs at least one serial code.")
        now = self.clock()
        equipment = Equipment(
            equipment_id=new_record_id("equipment", int(now.timestamp() * 1000)),
            name=payload.name, category=EquipmentCategory.ASSET, unit=payload.unit,
            equipment_types=payload.equipment_types, quantity=len(codes), available=True,
            picture=payload.picture, created_at=now, updated_at=now,
        )
        batch = WriteBatch().insert(EQUIPMENT, equipment.equipment_id, equipment.model_dump(mode="json"))
        await self._stage_units(batch, equipment.equipment_id, codes)
        stage_admin_action(batch, actor, AdminAction.ADD, AdminTarget.EQUIPMENT, equipment.name,
                           f"Registered asset with {len(codes)} unit(s)")
        await self._commit(batch, "register asset")
        logger.info(f"Asset '{equipment.name}' registered as {equipment.equipment_id} with {len(codes)} unit(s).")
        return equipment

    async def register_consumable(self, payload: Equipment.CreateConsumable,
                                  actor: Optional[Actor] = None) -> Equipment:
        now = self.clock()
        equipment = Equipment(
            equipment_id=new_record_id("equipment", int(now.timestamp() * 1000)),
            name=payload.name, category=EquipmentCategory.CONSUMABLE, unit=payload.unit,
            equipment_types=payload.equipment_types, quantity=payload.quantity,
            available=payload.quantity > 0, picture=payload.picture, created_at=now, updated_at=now,
        )
        batch = WriteBatch().insert(EQUIPMENT, equipment.equipment_id, equipment.model_dump(mode="json"))
        stage_admin_action(batch, actor, AdminAction.ADD, AdminTarget.EQUIPMENT, equipment.name,
                           f"Registered consumable with stock {payload.quantity}")
        await self._commit(batch, "register consumable")
        logger.info(f"Consumable '{equipment.name}' registered as {equipment.equipment_id}.")
        return equipment

    async def add_stock(self, equipment_id: str, payload: Equipment.AddStock,
                        actor: Optional[Actor] = None) -> Equipment:
        equipment = await self.get_equipment(equipment_id)
        now = self.clock()
        batch = WriteBatch()
        if equipment.category == EquipmentCategory.ASSET:
            if payload.quantity: raise ValidationError("Add serial codes, not a quantity, to an asset.", id=equipment_id)
            codes = _clean_codes(payload.serial_codes)
            if not codes: raise ValidationError("No serial codes given.", id=equipment_id)
            await self._stage_units(batch, equipment_id, codes)
            amount, details = len(codes), f"Added unit(s) {codes}"
        else:
            if payload.serial_codes: raise ValidationError("Consumables have no serial codes.", id=equipment_id)
            if payload.quantity <= 0: raise ValidationError("Stock to add must be greater than zero.", id=equipment_id)
            amount, details = payload.quantity, f"Added {payload.quantity} {equipment.unit}(s) to stock"
        batch.increment(EQUIPMENT, equipment_id, "quantity", amount, flag="available",
                        fields={"updated_at": now.isoformat()})
        stage_admin_action(batch, actor, AdminAction.UPDATE, AdminTarget.EQUIPMENT, equipment.name, details)
        await self._commit(batch, "add stock")
        logger.info(f"Stock of '{equipment.name}' raised by {amount}.")
        return await self.get_equipment(equipment_id)

    async def update_equipment(self, equipment_id: str, payload: Equipment.Update,
                               actor: Optional[Actor] = None) -> Equipment:
        equipment = await self.get_equipment(equipment_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not changes: raise ValidationError("Nothing to update.", id=equipment_id)
        batch = WriteBatch().update(EQUIPMENT, equipment_id, {**changes, "updated_at": self.clock().isoformat()})
        stage_admin_action(batch, actor, AdminAction.EDIT, AdminTarget.EQUIPMENT, changes.get("name", equipment.name),
                           f"Updated {', '.join(sorted(changes))}")
        await self._commit(batch, "update equipment")
        logger.info(f"Equipment '{equipment_id}' updated ({sorted(changes)}).")
        return await self.get_equipment(equipment_id)

    async def delete_equipment(self, equipment_id: str, actor: Optional[Actor] = None) -> Equipment:
        """Remove a master together with its units. Refused while any active borrow holds it."""
        raw = await self.store.get(EQUIPMENT, equipment_id)
        if raw is None: raise NotFoundError(EQUIPMENT, equipment_id)
        equipment = Equipment.model_validate(raw)
        holders = await self._borrows_holding(equipment_id)
        if holders:
            raise InvalidStateError(equipment_id, "delete_equipment", "on_loan",
                                    detail=f"'{equipment.name}' is still on loan in {holders}.")

        units = await self.store.find(ASSET_UNITS, {"equipment_id": equipment_id})
        # a borrow or restock committed after these reads makes the guards fail
        batch = WriteBatch().delete(EQUIPMENT, equipment_id, expect={"updated_at": raw.get("updated_at")})
        for unit in units:
            batch.delete(ASSET_UNITS, unit["serial_code"], expect={"borrow_id": unit.get("borrow_id")})
        stage_admin_action(batch, actor, AdminAction.DELETE, AdminTarget.EQUIPMENT, equipment.name,
                           f"Deleted {equipment.category.value} with {len(units)} unit(s)")
        await self._commit(batch, "delete_equipment", guarded_id=equipment_id)
        logger.info(f"Equipment '{equipment.name}' ({equipment_id}) deleted with {len(units)} unit(s).")
        return equipment

    # --- manual correction ---
    async def restore_unit(self, serial_code: str, actor: Actor, notes: Optional[str] = None) -> AssetUnit:
        """Put a unit that came back damaged or lost into circulation again."""
        unit = await self.get_unit(serial_code)
        status = await self._active_borrow_status(unit)
        if status:
            raise InvalidStateError(serial_code, "restore_unit", status,
                                    detail=f"Unit '{serial_code}' is still on loan in '{unit.borrow_id}' ({status}).")
        batch = WriteBatch()
        # guarded first: the ledger write below clears borrow_id
        batch.update(ASSET_UNITS, serial_code, {"condition": AssetCondition.NORMAL.value},
                     expect={"borrow_id": unit.borrow_id})
        await self.ledger.stage_available(batch, [serial_code])
        stage_admin_action(batch, actor, AdminAction.EDIT, AdminTarget.EQUIPMENT, serial_code,
                           f"Unit restored from '{unit.condition.value}'" + (f": {notes}" if notes else ""))
        await self._commit(batch, "restore_unit", guarded_id=serial_code)
        logger.info(f"Unit '{serial_code}' restored to circulation by {actor.display_name}.")
        return await self.get_unit(serial_code)
