# equiplend/models/reservation.py
from typing import Optional, List
from datetime import date, datetime, timezone

from pydantic import BaseModel, Field

from .identity import Requester
from .enum import CancelledByType, ReservationStatus

HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


class RoomReservation(BaseModel):
    reservation_id: str
    room_id: str
    room_name: str
    requester: Requester
    booking_date: date
    start_time: str
    end_time: str
    people: int = 1
    objective: str = ""
    status: ReservationStatus = ReservationStatus.PENDING
    version: int = 1

    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    cancelled_by_type: Optional[CancelledByType] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    # --- post-use report (informational only) ---
    room_condition: Optional[str] = None
    equipment_condition: Optional[str] = None
    return_notes: Optional[str] = None
    photo_refs: List[str] = Field(default_factory=list)
    returned_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        room_id: str = Field(..., min_length=1)
        room_name: str = Field(..., min_length=1)
        requester: Requester
        booking_date: date
        start_time: str = Field(..., pattern=HHMM, description="24-hour HH:MM")
        end_time: str = Field(..., pattern=HHMM, description="24-hour HH:MM")
        people: int = Field(default=1, ge=1)
        objective: str = ""

    class ReturnReport(BaseModel):
        room_condition: str = Field(..., min_length=1)
        equipment_condition: Optional[str] = None
        return_notes: Optional[str] = None
        photo_refs: List[str] = Field(default_factory=list, description="References to damage/cleanliness photos")

    class Reason(BaseModel):
        reason: str = ""

    class Response(BaseModel):
        reservation_id: str
        status: ReservationStatus
        version: int

        class Config: use_enum_values = True
