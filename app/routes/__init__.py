from fastapi import APIRouter
from .users_routes import router as users_router
from .request_routes import router as request_router
from .notification_routes import router as notification_router


router = APIRouter()

router.include_router(users_router)
router.include_router(request_router)
router.include_router(notification_router)
