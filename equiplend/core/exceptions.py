# equiplend/core/exceptions.py
from typing import Any, Dict, Optional


class LendingError(Exception):
    """Base error for the lending core. Carries enough context to render a message."""
    status_code = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error": type(self).__name__, "context": self.context}


class NotFoundError(LendingError):
    status_code = 404

    def __init__(self, collection: str, key: str):
        super().__init__(f"{collection} '{key}' not found.", collection=collection, id=key)
        self.collection = collection
        self.key = key


class InvalidStateError(LendingError):
    status_code = 409

    def __init__(self, record_id: str, transition: str, current_status: Optional[str], detail: Optional[str] = None):
        message = detail or f"Cannot {transition} '{record_id}' while status is '{current_status}'."
        super().__init__(message, id=record_id, transition=transition, current_status=current_status)
        self.record_id = record_id
        self.transition = transition
        self.current_status = current_status


class ValidationError(LendingError):
    """Bad payload: missing reason text, non-positive quantity, over-return..."""
    status_code = 422


class ConsistencyError(LendingError):
    """A batch may have been partially applied. Fatal, never retried."""
    status_code = 500


class PermissionDeniedError(LendingError):
    """The actor is signed in but may not act on this record."""
    status_code = 403
