# equiplend/models/audit.py
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .enum import AdminAction, AdminTarget


class AdminActionLog(BaseModel):
    log_id: str
    admin_email: str = ""
    admin_name: str = "Unknown"
    action: AdminAction
    type: AdminTarget
    item_name: str
    details: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
