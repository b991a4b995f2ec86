"""
Emergency Matching Models: Data classes for donor ranking, persistence and escalation.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class BloodType(str, Enum):
    """ABO/Rh blood types."""
    O_NEG = "O-"
    O_POS = "O+"
    A_NEG = "A-"
    A_POS = "A+"
    B_NEG = "B-"
    B_POS = "B+"
    AB_NEG = "AB-"
    AB_POS = "AB+"


class UrgencyLevel(str, Enum):
    """Request severity. Ordered: CRITICAL > HIGH > NORMAL."""
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _URGENCY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank >= other.rank


_URGENCY_RANK = {
    UrgencyLevel.NORMAL: 0,
    UrgencyLevel.HIGH: 1,
    UrgencyLevel.CRITICAL: 2,
}


class ProviderTag(str, Enum):
    """Which ranker produced a result."""
    GEMINI = "gemini"
    OPENAI = "openai"
    OLLAMA = "ollama"
    HEURISTIC = "heuristic"
    FALLBACK = "fallback"  # Legacy orchestrator path
    NONE = "none"          # Nothing was ranked


class DonorResponse(str, Enum):
    """Donor response state for a persisted match."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class WavePriority(str, Enum):
    """Priority label attached to a notification wave."""
    CRITICAL = "CRITICAL"
    URGENT = "URGENT"
    HIGH = "HIGH"
    STANDARD = "STANDARD"


@dataclass(frozen=True)
class DonorCandidate:
    """Snapshot of a compatible donor returned by the candidate search."""
    donor_id: str
    blood_type: str
    distance_km: float
    total_donations: int = 0
    last_donation_date: Optional[date] = None
    is_available: bool = True
    contact_id: Optional[str] = None  # user id notifications are addressed to


@dataclass(frozen=True)
class ScoredMatch:
    """A ranked donor with a bounded confidence score."""
    donor_id: str
    confidence_score: int
    estimated_response_minutes: int
    reasoning: Tuple[str, ...]
    source: ProviderTag
    distance_km: Optional[float] = None
    total_donations: Optional[int] = None
    contact_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "donor_id": self.donor_id,
            "confidence_score": self.confidence_score,
            "estimated_response_minutes": self.estimated_response_minutes,
            "reasoning": list(self.reasoning),
            "source": self.source.value,
            "distance_km": self.distance_km,
            "total_donations": self.total_donations,
        }


@dataclass(frozen=True)
class RankingEntry:
    """Provider-agnostic ranking tuple, 1-based index into the summarized candidates."""
    index: int
    score: float
    estimated_minutes: float
    reason: str


@dataclass(frozen=True)
class Ranked:
    """Provider produced a usable ranking."""
    matches: List[ScoredMatch]


@dataclass(frozen=True)
class Unavailable:
    """Provider could not be used for this ranking run."""
    reason: str


ProviderResult = Union[Ranked, Unavailable]


@dataclass
class MatchRecord:
    """Persisted match bound to a request, tracking the donor's response."""
    request_id: str
    donor_id: str
    compatibility_score: int
    estimated_response_minutes: int = 0
    distance_km: Optional[float] = None
    reasoning: str = ""
    donor_response: DonorResponse = DonorResponse.PENDING
    responded_at: Optional[datetime] = None
    match_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_settled(self) -> bool:
        return self.donor_response != DonorResponse.PENDING

    @classmethod
    def from_match(cls, request_id: str, match: ScoredMatch) -> "MatchRecord":
        return cls(
            request_id=request_id,
            donor_id=match.donor_id,
            compatibility_score=match.confidence_score,
            estimated_response_minutes=match.estimated_response_minutes,
            distance_km=match.distance_km,
            reasoning="; ".join(match.reasoning),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.match_id,
            "request_id": self.request_id,
            "donor_id": self.donor_id,
            "compatibility_score": self.compatibility_score,
            "estimated_response_time": self.estimated_response_minutes,
            "distance_km": self.distance_km,
            "ai_reasoning": self.reasoning,
            "donor_response": self.donor_response.value,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MatchRecord":
        responded_at = row.get("responded_at")
        created_at = row.get("created_at")
        return cls(
            match_id=str(row["id"]),
            request_id=str(row["request_id"]),
            donor_id=str(row["donor_id"]),
            compatibility_score=int(row.get("compatibility_score") or 0),
            estimated_response_minutes=int(row.get("estimated_response_time") or 0),
            distance_km=row.get("distance_km"),
            reasoning=row.get("ai_reasoning") or "",
            donor_response=DonorResponse(row.get("donor_response") or "pending"),
            responded_at=datetime.fromisoformat(responded_at) if responded_at else None,
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class NotificationWave:
    """A timed batch of donor notifications."""
    name: str
    tier: int
    priority: WavePriority
    matches: Tuple[ScoredMatch, ...]
    delay_seconds: float
    fire_at: datetime

    @property
    def donor_ids(self) -> List[str]:
        return [m.donor_id for m in self.matches]

    @property
    def is_immediate(self) -> bool:
        return self.delay_seconds <= 0


@dataclass
class EmergencyRequest:
    """Urgent blood request handed to the orchestrator."""
    request_id: str
    blood_type: str
    urgency: UrgencyLevel
    hospital_lat: float
    hospital_lon: float
    patient_name: str
    units_needed: int
    requester_id: Optional[str] = None
    radius_km: Optional[float] = None


@dataclass
class EscalationContext:
    """Request details the escalator embeds in notification payloads."""
    request_id: str
    blood_type: str
    patient_name: str
    units_needed: int
    urgency: UrgencyLevel

    @classmethod
    def from_request(cls, request: EmergencyRequest) -> "EscalationContext":
        return cls(
            request_id=request.request_id,
            blood_type=request.blood_type,
            patient_name=request.patient_name,
            units_needed=request.units_needed,
            urgency=request.urgency,
        )


@dataclass
class MatchSummary:
    """Structured result returned to the requester."""
    matches_found: int
    estimated_response_time: float
    top_matches: List[ScoredMatch]
    processing_time_ms: int
    provider_tag: ProviderTag
    waves_scheduled: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matches_found": self.matches_found,
            "estimated_response_time": self.estimated_response_time,
            "top_matches": [m.to_dict() for m in self.top_matches],
            "processing_time_ms": self.processing_time_ms,
            "provider_tag": self.provider_tag.value,
            "waves_scheduled": self.waves_scheduled,
        }
