# equiplend/models/identity.py
from typing import Optional
from enum import Enum

from pydantic import BaseModel, EmailStr, Field


class UserRole(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    USER = "user"


class Actor(BaseModel):
    """Whoever performs a transition. Built from verified token claims."""
    user_id: str
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    role: UserRole = Field(default=UserRole.USER)

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.user_id

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.STAFF)


class Requester(BaseModel):
    """The person a borrow or reservation belongs to."""
    user_id: str
    email: EmailStr
    name: str = Field(..., min_length=1)
    id_number: Optional[str] = None

    class Config: from_attributes = True
