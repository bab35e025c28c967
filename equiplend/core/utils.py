# equiplend/core/utils.py
import secrets
import string
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

_BASE36 = string.digits + string.ascii_lowercase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def random_base36(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def new_record_id(prefix: str, now_ms: Optional[int] = None) -> str:
    """`<prefix>-<epoch ms>-<9 base36 chars>`, e.g. borrow-1718000000000-k3j9x0a1b."""
    if now_ms is None: now_ms = int(time.time() * 1000)
    return f"{prefix}-{now_ms}-{random_base36()}"


def new_uuid() -> str:
    return uuid.uuid4().hex
