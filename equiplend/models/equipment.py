# equiplend/models/equipment.py
from typing import Optional, List
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .enum import AssetCondition, EquipmentCategory


class Equipment(BaseModel):
    """Equipment master. For consumables `quantity` is the shared stock counter."""
    equipment_id: str
    name: str = Field(..., max_length=200)
    category: EquipmentCategory
    unit: str = "piece"
    equipment_types: List[str] = Field(default_factory=list)
    quantity: int = Field(default=0, ge=0)
    available: bool = True
    picture: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # --- Pydantic Schemas for API ---
    class CreateAsset(BaseModel):
        name: str = Field(..., min_length=1, max_length=200)
        serial_codes: List[str] = Field(..., min_length=1)
        unit: str = "piece"
        equipment_types: List[str] = Field(default_factory=list)
        picture: Optional[str] = None

    class CreateConsumable(BaseModel):
        name: str = Field(..., min_length=1, max_length=200)
        quantity: int = Field(..., ge=0)
        unit: str = "piece"
        equipment_types: List[str] = Field(default_factory=list)
        picture: Optional[str] = None

    class AddStock(BaseModel):
        quantity: int = Field(default=0, ge=0, description="Consumables: amount added to stock")
        serial_codes: List[str] = Field(default_factory=list, description="Assets: new unit serial codes")

    class Update(BaseModel):
        """Metadata only. Stock changes go through AddStock."""
        name: Optional[str] = Field(default=None, min_length=1, max_length=200)
        unit: Optional[str] = Field(default=None, min_length=1)
        equipment_types: Optional[List[str]] = None
        picture: Optional[str] = None


class AssetUnit(BaseModel):
    """One physical serialized unit. `available` is written only by the availability ledger."""
    serial_code: str
    equipment_id: str
    available: bool = True
    condition: AssetCondition = AssetCondition.NORMAL
    # borrow that last took the unit out of circulation
    borrow_id: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Restore(BaseModel):
        notes: Optional[str] = None
