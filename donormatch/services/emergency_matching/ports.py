"""
Ports: interface contracts for the collaborators the matching core consumes.

Interfaces only; Supabase and in-memory adapters live in their own modules.
"""
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from .models import DonorCandidate, DonorResponse, MatchRecord, ScoredMatch, UrgencyLevel


class CandidateSource(Protocol):
    async def find(
        self,
        blood_type: str,
        urgency: UrgencyLevel,
        lat: float,
        lon: float,
        radius_km: float,
    ) -> List[DonorCandidate]:
        ...


class MatchStore(Protocol):
    async def write(self, request_id: str, matches: List[ScoredMatch]) -> List[MatchRecord]:
        ...

    def subscribe(self, request_id: str) -> AsyncIterator[MatchRecord]:
        ...

    async def get_records(self, request_id: str) -> List[MatchRecord]:
        ...

    async def record_response(self, match_id: str, response: DonorResponse) -> MatchRecord:
        ...


class NotificationDelivery(Protocol):
    async def send(self, donor_id: str, title: str, message: str, metadata: Dict[str, Any]) -> None:
        ...


class RequesterNotifier(Protocol):
    async def notify(
        self,
        requester_id: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...
