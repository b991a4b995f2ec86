"""
Health and basic status endpoints.
"""
from fastapi import APIRouter, Request

from ..config import ENVIRONMENT, get_matching_config

router = APIRouter(prefix="", tags=["health"])


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Emergency Donor Matching Backend",
        "status": "operational",
        "version": "1.0.0"
    }


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    ready = getattr(request.app.state, "matching_orchestrator", None) is not None
    config = get_matching_config()
    return {
        "status": "healthy" if ready else "starting",
        "environment": ENVIRONMENT,
        "supabase_enabled": config["supabase_enabled"],
        "provider_order": config["provider_order"],
    }
