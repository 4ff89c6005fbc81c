from fastapi import APIRouter

from .applications import router as applications_router
from .categories import router as categories_router
from .executors import router as executors_router
from .orders import router as orders_router

api_router = APIRouter()

api_router.include_router(categories_router, prefix="/categories", tags=["categories"])
api_router.include_router(orders_router, prefix="/orders", tags=["orders"])
api_router.include_router(applications_router, prefix="/orders", tags=["applications"])
api_router.include_router(executors_router, prefix="/executors", tags=["executors"])
