"""
Emergency Matching Router

API endpoints for urgent donor matching:
- POST /api/emergency/match - Rank donors and start notification escalation
- POST /api/emergency/matches/{match_id}/response - Donor accepts or declines
- GET /api/emergency/providers - Ranking provider availability
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request

from donormatch.schemas.emergency import (
    DonorResponseRequest,
    EmergencyMatchRequest,
    EmergencyMatchResponse,
    MatchRecordResponse,
)
from donormatch.services.emergency_matching import (
    MatchingOrchestrator,
    MatchNotFound,
    PersistenceError,
    ResponseAlreadyRecorded,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/emergency", tags=["emergency"])


def get_matching_orchestrator(request: Request) -> MatchingOrchestrator:
    orchestrator = getattr(request.app.state, "matching_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Matching service not initialized")
    return orchestrator


@router.post("/match", response_model=EmergencyMatchResponse)
async def match_emergency_request(
    request: EmergencyMatchRequest,
    orchestrator: MatchingOrchestrator = Depends(get_matching_orchestrator),
):
    """Rank compatible donors for an urgent request and notify them in waves."""
    summary = await orchestrator.process_emergency_request(request.to_domain())
    return EmergencyMatchResponse.from_summary(request.request_id, summary)


@router.post("/matches/{match_id}/response", response_model=MatchRecordResponse)
async def record_donor_response(
    match_id: str,
    body: DonorResponseRequest,
    orchestrator: MatchingOrchestrator = Depends(get_matching_orchestrator),
):
    """Record a donor's accept/decline. A match can be answered only once."""
    try:
        record = await orchestrator.match_store.record_response(match_id, body.response)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except MatchNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ResponseAlreadyRecorded as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        logger.error(f"❌ Donor response not recorded: {e}")
        raise HTTPException(status_code=503, detail="Match store unavailable")
    return MatchRecordResponse.from_record(record)


@router.get("/providers")
async def provider_status(
    orchestrator: MatchingOrchestrator = Depends(get_matching_orchestrator),
) -> Dict[str, Any]:
    """Which ranking providers are configured/reachable, and their circuit state."""
    pipeline = orchestrator.pipeline
    available = await pipeline.check_available_services()
    return {
        "providers": [
            {
                "name": provider.name,
                "available": available.get(provider.name, False),
                "circuit": pipeline.breaker(provider.name).get_state(),
            }
            for provider in pipeline.providers
        ],
        "fallback": "heuristic",
    }
