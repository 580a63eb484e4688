"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from rideshare_backend.app.api.v1.endpoints import rides

router = APIRouter()

# Rideshare lobby endpoints
router.include_router(rides.router)
