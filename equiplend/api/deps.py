# equiplend/api/deps.py
from fastapi import HTTPException, Request, status

from equiplend.models.identity import Actor, Requester
from equiplend.services.registry import LendingServices


def get_services(request: Request) -> LendingServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up.")
    return services


def bind_requester(requester: Requester, actor: Actor) -> Requester:
    """Staff may file on behalf of anyone; other callers always file as themselves."""
    if actor.is_staff or requester.user_id == actor.user_id:
        return requester
    return requester.model_copy(update={"user_id": actor.user_id})
