# equiplend/api/v1/api.py
from fastapi import APIRouter

from equiplend.api.v1.endpoints import borrowings, equipment, reservations

api_router_v1 = APIRouter(prefix="/api/v1")

api_router_v1.include_router(borrowings.router)
api_router_v1.include_router(reservations.router)
api_router_v1.include_router(equipment.router)
