"""HTTP routes. Only health for now; clients talk over the WebSocket."""

from fastapi import APIRouter

from rowcast.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(health_router, tags=["health"])
