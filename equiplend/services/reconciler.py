# equiplend/services/reconciler.py
"""
Merge a caller's return claim into the stored item list.

Claims are matched on (equipment_id, equipment_name). Only fields present
in a claim overwrite the stored copy, so a rejected return can be
re-submitted piece by piece without losing what was already reported.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from loguru import logger

from equiplend.core.exceptions import ValidationError
from equiplend.models.borrowing import BorrowItem, ItemReturnClaim
from equiplend.models.enum import EquipmentCategory


@dataclass
class Reconciliation:
    items: List[BorrowItem]
    # equipment_id -> quantity to credit back to consumable stock
    restock: Dict[str, int] = field(default_factory=dict)


def _validate_claim(stored: BorrowItem, claim: ItemReturnClaim) -> None:
    context = {"equipment_id": stored.equipment_id, "equipment_name": stored.equipment_name}
    qty = claim.quantity_returned
    if qty is not None:
        if qty < 0:
            raise ValidationError(f"Returned quantity for '{stored.equipment_name}' cannot be negative.", **context)
        if qty > stored.quantity_borrowed:
            raise ValidationError(
                f"Returned quantity {qty} exceeds borrowed quantity {stored.quantity_borrowed} "
                f"for '{stored.equipment_name}'.", **context)

    if claim.code_conditions:
        if stored.equipment_category == EquipmentCategory.CONSUMABLE:
            raise ValidationError(f"Consumable '{stored.equipment_name}' cannot carry per-code conditions.", **context)
        unknown = sorted({c.code for c in claim.code_conditions} - set(stored.serial_codes))
        if unknown:
            raise ValidationError(f"Serial code(s) {unknown} were not borrowed under '{stored.equipment_name}'.",
                                  serial_codes=unknown, **context)
        codes = [c.code for c in claim.code_conditions]
        if len(codes) != len(set(codes)):
            raise ValidationError(f"Duplicate serial code in conditions for '{stored.equipment_name}'.", **context)


def _merge(stored: BorrowItem, claim: ItemReturnClaim) -> BorrowItem:
    merged = stored.model_copy(deep=True)
    if claim.return_condition is not None: merged.return_condition = claim.return_condition
    if claim.consumption_status is not None: merged.consumption_status = claim.consumption_status
    if claim.return_notes: merged.return_notes = claim.return_notes
    if claim.quantity_returned is not None: merged.quantity_returned = claim.quantity_returned
    if claim.code_conditions is not None:
        merged.code_conditions = [c.model_copy() for c in claim.code_conditions]
    return merged


def reconcile(stored_items: Sequence[BorrowItem], claims: Sequence[ItemReturnClaim]) -> Reconciliation:
    claims_by_key = {}
    for claim in claims:
        claims_by_key[claim.match_key] = claim  # last claim for a key wins

    stored_keys = {item.match_key for item in stored_items}
    for key in claims_by_key:
        if key not in stored_keys:
            logger.warning(f"Return claim for {key} matches no borrowed item; ignored.")

    # validate everything before building anything so a bad claim leaves no partial result
    for item in stored_items:
        claim = claims_by_key.get(item.match_key)
        if claim is not None: _validate_claim(item, claim)

    merged_items: List[BorrowItem] = []
    restock: Dict[str, int] = {}
    for item in stored_items:
        claim = claims_by_key.get(item.match_key)
        if claim is None:
            merged_items.append(item)
            continue
        merged = _merge(item, claim)
        if merged.equipment_category == EquipmentCategory.CONSUMABLE and (merged.quantity_returned or 0) > 0:
            delta = merged.quantity_returned - merged.quantity_restocked
            if delta > 0:
                restock[merged.equipment_id] = restock.get(merged.equipment_id, 0) + delta
                merged.quantity_restocked += delta
        merged_items.append(merged)

    return Reconciliation(items=merged_items, restock=restock)
