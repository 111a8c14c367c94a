"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.orders import router as orders_router
from app.api.routes.settings import router as settings_router
from app.api.webhooks.razorpay import router as razorpay_router

router = APIRouter()

router.include_router(orders_router, prefix="/orders", tags=["orders"])
router.include_router(settings_router, prefix="/settings", tags=["settings"])
router.include_router(razorpay_router, prefix="/webhooks", tags=["webhooks"])
