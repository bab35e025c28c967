# equiplend/services/audit.py
from typing import Optional

from equiplend.core.utils import new_uuid
from equiplend.db.store import ADMIN_LOGS, WriteBatch
from equiplend.models.audit import AdminActionLog
from equiplend.models.enum import AdminAction, AdminTarget
from equiplend.models.identity import Actor


def stage_admin_action(batch: WriteBatch, actor: Optional[Actor], action: AdminAction,
                       target: AdminTarget, item_name: str, details: str = "") -> AdminActionLog:
    """Record a staff action in the same batch as the change it describes."""
    entry = AdminActionLog(
        log_id=new_uuid(),
        admin_email=(actor.email if actor and actor.email else ""),
        admin_name=(actor.display_name if actor else "System"),
        action=action,
        type=target,
        item_name=item_name,
        details=details,
    )
    batch.insert(ADMIN_LOGS, entry.log_id, entry.model_dump(mode="json"))
    return entry
