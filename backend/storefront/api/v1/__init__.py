"""Version 1 API routers."""

from fastapi import APIRouter

from storefront.api.v1.orders import router as orders_router
from storefront.api.v1.tracking import router as tracking_router

api_router = APIRouter()
api_router.include_router(orders_router)
api_router.include_router(tracking_router)

__all__ = ["api_router"]
