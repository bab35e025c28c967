# equiplend/models/notification.py
from typing import Any, Dict, Optional
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .enum import NotificationKind, NotificationStatus


class NotificationOutboxEntry(BaseModel):
    """An outbound message committed together with the transition that caused it."""
    notification_id: str
    kind: NotificationKind
    recipient: str
    template_data: Dict[str, Any] = Field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DispatchResult(BaseModel):
    delivered: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "DispatchResult":
        return cls(delivered=True)

    @classmethod
    def failed(cls, reason: str) -> "DispatchResult":
        return cls(delivered=False, reason=reason)
