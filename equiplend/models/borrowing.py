# equiplend/models/borrowing.py
from typing import Optional, List
from datetime import date, datetime, timezone

from pydantic import BaseModel, Field

from .identity import Requester
from .enum import (
    AssetCondition, BorrowStatus, BorrowType, ConsumptionStatus, EquipmentCategory,
)


class CodeCondition(BaseModel):
    """Condition of one serialized unit as reported on return."""
    code: str = Field(..., min_length=1)
    condition: AssetCondition
    notes: Optional[str] = None


class BorrowItem(BaseModel):
    equipment_id: str
    equipment_name: str
    equipment_category: EquipmentCategory
    quantity_borrowed: int
    quantity_returned: Optional[int] = None
    # --- assets ---
    serial_codes: List[str] = Field(default_factory=list)
    return_condition: Optional[AssetCondition] = None
    code_conditions: List[CodeCondition] = Field(default_factory=list)
    # --- consumables ---
    consumption_status: Optional[ConsumptionStatus] = None
    quantity_restocked: int = 0
    return_notes: Optional[str] = None

    @property
    def is_asset(self) -> bool:
        return self.equipment_category == EquipmentCategory.ASSET

    @property
    def match_key(self):
        return (self.equipment_id, self.equipment_name)

    def condition_of(self, code: str) -> Optional[AssetCondition]:
        """Code-level condition, falling back to the item-level one."""
        for entry in self.code_conditions:
            if entry.code == code: return entry.condition
        return self.return_condition


class BorrowItemRequest(BaseModel):
    equipment_id: str = Field(..., min_length=1)
    equipment_name: str = Field(..., min_length=1)
    equipment_category: EquipmentCategory
    # positivity is checked by the service so it surfaces as a lending ValidationError
    quantity: int
    serial_codes: List[str] = Field(default_factory=list)


class ItemReturnClaim(BaseModel):
    """Per-item return claim. Absent fields leave the stored value untouched."""
    equipment_id: str
    equipment_name: str
    return_condition: Optional[AssetCondition] = None
    consumption_status: Optional[ConsumptionStatus] = None
    return_notes: Optional[str] = None
    quantity_returned: Optional[int] = None
    code_conditions: Optional[List[CodeCondition]] = None

    @property
    def match_key(self):
        return (self.equipment_id, self.equipment_name)


class BorrowTransaction(BaseModel):
    borrow_id: str
    requester: Requester
    borrow_type: BorrowType
    equipment_items: List[BorrowItem]
    borrow_date: date
    borrow_time: str
    expected_return_date: date
    expected_return_time: Optional[str] = None
    actual_return_date: Optional[date] = None
    return_time: Optional[str] = None
    condition_before_borrow: str = ""
    condition_on_return: Optional[str] = None
    damages_and_issues: Optional[str] = None
    notes: str = ""
    status: BorrowStatus
    version: int = 1

    # --- audit stamps, one group per stage ---
    confirmed_by: Optional[str] = None
    confirmed_by_email: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    acknowledged_by_email: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    returned_by: Optional[str] = None
    returned_by_email: Optional[str] = None
    return_submitted_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_by_email: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_by_email: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_by_email: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def asset_codes(self) -> List[str]:
        return [code for item in self.equipment_items if item.is_asset for code in item.serial_codes]

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        requester: Requester
        borrow_type: BorrowType
        items: List[BorrowItemRequest] = Field(..., min_length=1)
        borrow_date: date
        borrow_time: str
        expected_return_date: date
        expected_return_time: Optional[str] = None
        condition_before_borrow: str = ""
        notes: Optional[str] = None
        hand_over: bool = Field(default=True, description="False keeps the borrow scheduled until staff confirm hand-over")

    class ReturnSubmission(BaseModel):
        return_date: date
        return_time: str
        condition_on_return: str = ""
        damages_and_issues: Optional[str] = None
        notes: Optional[str] = None
        returned_by_name: Optional[str] = None
        items: List[ItemReturnClaim] = Field(default_factory=list)

    class Reason(BaseModel):
        reason: str = ""

    class Response(BaseModel):
        borrow_id: str
        status: BorrowStatus
        version: int
        message: Optional[str] = None

        class Config: use_enum_values = True

