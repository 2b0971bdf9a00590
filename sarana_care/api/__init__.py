"""API routes for Sarana Care."""

from fastapi import APIRouter

from .complaints import router as complaints_router
from .notifications import router as notifications_router
from .reference import router as reference_router

# Main API router
api_router = APIRouter()

# Health, categories, profile
api_router.include_router(reference_router)

# Complaint lifecycle is the primary resource
api_router.include_router(complaints_router)

# Per-user derived notifications (/me/notifications)
api_router.include_router(notifications_router)

__all__ = ["api_router"]
