"""
API routes aggregation.
"""

from fastapi import APIRouter

from .flags import router as flags_router
from .phases import pilot_router
from .phases import router as phases_router

router = APIRouter()

router.include_router(flags_router, prefix="/flags", tags=["flags"])
router.include_router(phases_router, prefix="/phases", tags=["phases"])
router.include_router(pilot_router, prefix="/pilot", tags=["pilot"])
