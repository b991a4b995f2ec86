"""
Pytest fixtures for emergency matching tests.

Providers, delivery and candidate search are in-process fakes; nothing here
touches the network.
"""
import asyncio
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import pytest

from donormatch.services.emergency_matching.errors import (
    CandidateFetchFailure,
    NotificationDeliveryError,
    ProviderUnavailable,
)
from donormatch.services.emergency_matching.match_store import InMemoryMatchStore
from donormatch.services.emergency_matching.models import (
    DonorCandidate,
    EmergencyRequest,
    EscalationContext,
    ProviderTag,
    ScoredMatch,
    UrgencyLevel,
)
from donormatch.services.emergency_matching.providers.ranking_abstract import RankingProviderBase

TODAY = date(2024, 6, 1)


class FakeProvider(RankingProviderBase):
    """Ranking provider returning a canned answer (or raising)."""

    def __init__(self, tag: ProviderTag, answer: Any = None, delay_s: float = 0, available: bool = True):
        super().__init__(timeout_s=1.0)
        self.tag = tag
        self.answer = answer
        self.delay_s = delay_s
        self.available = available
        self.calls: List[int] = []

    def is_available(self) -> bool:
        return self.available

    async def rank(self, candidates: Sequence[DonorCandidate], urgency: UrgencyLevel) -> str:
        self.calls.append(len(candidates))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer


class RecordingDelivery:
    """NotificationDelivery that records payloads; donors in `fail_for` raise."""

    def __init__(self, fail_for: Sequence[str] = ()):
        self.sent: List[Dict[str, Any]] = []
        self.fail_for = set(fail_for)

    async def send(self, donor_id: str, title: str, message: str, metadata: Dict[str, Any]) -> None:
        if donor_id in self.fail_for:
            raise NotificationDeliveryError(donor_id, "push gateway rejected")
        self.sent.append({"donor_id": donor_id, "title": title, "message": message, "metadata": metadata})

    def donors_for_wave(self, tier: int) -> List[str]:
        return [s["donor_id"] for s in self.sent if s["metadata"].get("wave") == tier]


class RecordingNotifier:
    def __init__(self):
        self.notified: List[Dict[str, Any]] = []

    async def notify(self, requester_id: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.notified.append({"requester_id": requester_id, "message": message, "metadata": metadata})


class StaticCandidateSource:
    """CandidateSource returning fixed candidates; a list of results is consumed call by call."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def find(self, blood_type, urgency, lat, lon, radius_km):
        self.calls += 1
        result = self.results[min(self.calls, len(self.results)) - 1]
        if isinstance(result, Exception):
            raise result
        return list(result)


def candidate(donor_id: str, distance_km: float, total_donations: int = 2, blood_type: str = "O+",
              last_donation_date: Optional[date] = None) -> DonorCandidate:
    return DonorCandidate(
        donor_id=donor_id,
        blood_type=blood_type,
        distance_km=distance_km,
        total_donations=total_donations,
        last_donation_date=last_donation_date,
    )


def scored(donor_id: str, score: int, distance_km: float = 1.0, minutes: int = 20) -> ScoredMatch:
    return ScoredMatch(
        donor_id=donor_id,
        confidence_score=score,
        estimated_response_minutes=minutes,
        reasoning=("test",),
        source=ProviderTag.HEURISTIC,
        distance_km=distance_km,
    )


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def make_candidate():
    return candidate


@pytest.fixture
def make_scored():
    return scored


@pytest.fixture
def ranked_matches() -> List[ScoredMatch]:
    """20 matches, already in rank order (d01 best)."""
    return [scored(f"d{i:02d}", 100 - i, distance_km=float(i)) for i in range(1, 21)]


@pytest.fixture
def twelve_candidates() -> List[DonorCandidate]:
    return [candidate(f"c{i:02d}", float(i)) for i in range(1, 13)]


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def unreachable(fake_provider):
    """Factory for a provider that always fails at the network level."""
    def _make(tag: ProviderTag):
        return fake_provider(tag, ProviderUnavailable(f"{tag.value} connection refused"))
    return _make


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def failing_delivery():
    return RecordingDelivery


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def match_store():
    return InMemoryMatchStore()


@pytest.fixture
def candidate_source():
    return StaticCandidateSource


@pytest.fixture
def fetch_failure():
    return CandidateFetchFailure("find_compatible_donors RPC failed: 500")


@pytest.fixture
def escalation_context():
    def _make(request_id: str = "req-1", urgency: UrgencyLevel = UrgencyLevel.CRITICAL) -> EscalationContext:
        return EscalationContext(
            request_id=request_id,
            blood_type="O-",
            patient_name="Jane Doe",
            units_needed=3,
            urgency=urgency,
        )
    return _make


@pytest.fixture
def emergency_request():
    def _make(urgency: UrgencyLevel = UrgencyLevel.NORMAL, request_id: str = "req-1",
              requester_id: Optional[str] = "requester-1") -> EmergencyRequest:
        return EmergencyRequest(
            request_id=request_id,
            blood_type="O+",
            urgency=urgency,
            hospital_lat=40.71,
            hospital_lon=-74.0,
            patient_name="Jane Doe",
            units_needed=2,
            requester_id=requester_id,
        )
    return _make
