"""
FastAPI application for the emergency donor matching backend.
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import emergency as emergency_router
from .routers import health
from .services.emergency_matching import create_matching_orchestrator
from .utils.logging import setup_structured_logging

setup_structured_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Emergency Donor Matching API",
    description="Donor ranking and tiered notification escalation for urgent blood requests",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(emergency_router.router)


@app.on_event("startup")
async def _on_startup():
    """Build the matching orchestrator."""
    app.state.matching_orchestrator = create_matching_orchestrator()
    logger.info("✅ Matching orchestrator ready")


@app.on_event("shutdown")
async def _on_shutdown():
    """Cancel pending waves and response watchers."""
    orchestrator = getattr(app.state, "matching_orchestrator", None)
    if orchestrator is not None:
        await orchestrator.shutdown()
