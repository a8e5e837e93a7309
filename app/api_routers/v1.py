from fastapi import APIRouter

from app.features.health.routes.health import router as health_router
from app.features.waitlist.routes.moderation import router as waitlist_admin_router
from app.features.waitlist.routes.waitlist import router as waitlist_router

api_router = APIRouter()

# Register all feature routes
api_router.include_router(health_router)
api_router.include_router(waitlist_router)
api_router.include_router(waitlist_admin_router)
