from fastapi import APIRouter

from .endpoints import health, loyalty, notifications, observability, push

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(loyalty.router)
router.include_router(push.router)
router.include_router(notifications.router)
router.include_router(observability.router)
