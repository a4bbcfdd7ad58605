"""API routes for the Link Tracker."""

from fastapi import APIRouter

from .analytics import router as analytics_router
from .auth import router as auth_router
from .escalations import router as escalations_router
from .events import router as events_router
from .notifications import router as notifications_router
from .rca import router as rca_router
from .reports import router as reports_router
from .sites import router as sites_router

# Main API router
api_router = APIRouter()

# Auth routes (dev-login, me)
api_router.include_router(auth_router)

# Lifecycle: escalation -> report -> RCA
api_router.include_router(escalations_router)
api_router.include_router(reports_router)
api_router.include_router(rca_router)

# Read-side views
api_router.include_router(notifications_router)
api_router.include_router(sites_router)
api_router.include_router(analytics_router)
api_router.include_router(events_router)

__all__ = ["api_router"]
