"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import admin, conversion, cron, registry

api_router = APIRouter()

api_router.include_router(
    conversion.router,
    prefix="/conversion",
    tags=["conversion"]
)

api_router.include_router(
    cron.router,
    prefix="/cron",
    tags=["cron"]
)

api_router.include_router(
    admin.router,
    prefix="/admin",
    tags=["admin"]
)

api_router.include_router(
    registry.router,
    prefix="/admin",
    tags=["registry"]
)
