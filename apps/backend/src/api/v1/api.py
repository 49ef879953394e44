from fastapi import APIRouter

from .health import router as health_router
from .market import router as market_router
from .queue import router as queue_router
from .recommendations import router as recommendations_router


# No authentication: the gateway sits behind the front end's own session layer.
api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(queue_router)
api_router.include_router(recommendations_router)
api_router.include_router(market_router)
