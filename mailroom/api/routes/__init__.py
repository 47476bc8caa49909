"""
API Routes
"""
from fastapi import APIRouter

from mailroom.api.routes.newsletters import router as newsletters_router

router = APIRouter()

router.include_router(newsletters_router, prefix="/newsletters", tags=["Newsletters"])
