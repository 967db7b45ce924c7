"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from fintrack.app.api.v1.endpoints import auth, admin

router = APIRouter()

# Include authentication endpoints
router.include_router(auth.router)

# Include admin endpoints
router.include_router(admin.router)
