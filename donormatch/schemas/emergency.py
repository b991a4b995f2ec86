"""
Emergency Matching Schemas

Pydantic models for the emergency matching endpoints.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..services.emergency_matching.models import (
    BloodType,
    DonorResponse,
    EmergencyRequest,
    MatchRecord,
    MatchSummary,
    ProviderTag,
    ScoredMatch,
    UrgencyLevel,
)


class EmergencyMatchRequest(BaseModel):
    """Urgent blood request"""
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Blood request id")
    blood_type: BloodType = Field(..., description="Requested blood type (e.g., 'O-', 'AB+')")
    urgency_level: UrgencyLevel = Field(UrgencyLevel.NORMAL, description="normal, high or critical")
    hospital_lat: float = Field(..., ge=-90, le=90)
    hospital_lon: float = Field(..., ge=-180, le=180)
    patient_name: str = Field(..., min_length=1)
    units_needed: int = Field(1, ge=1)
    requester_id: Optional[str] = Field(None, description="User notified when a donor accepts")
    radius_km: Optional[float] = Field(None, gt=0, description="Search radius; server default when omitted")

    def to_domain(self) -> EmergencyRequest:
        return EmergencyRequest(
            request_id=self.request_id,
            blood_type=self.blood_type.value,
            urgency=self.urgency_level,
            hospital_lat=self.hospital_lat,
            hospital_lon=self.hospital_lon,
            patient_name=self.patient_name,
            units_needed=self.units_needed,
            requester_id=self.requester_id,
            radius_km=self.radius_km,
        )


class ScoredMatchOut(BaseModel):
    """Ranked donor"""
    donor_id: str
    confidence_score: int = Field(..., ge=0, le=100)
    estimated_response_minutes: int = Field(..., ge=0)
    reasoning: List[str] = Field(default_factory=list)
    source: ProviderTag
    distance_km: Optional[float] = None
    total_donations: Optional[int] = None

    @classmethod
    def from_match(cls, match: ScoredMatch) -> "ScoredMatchOut":
        return cls(**match.to_dict())


class EmergencyMatchResponse(BaseModel):
    """Matching summary returned to the requester"""
    request_id: str
    matches_found: int
    estimated_response_time: float = Field(..., description="Mean estimated donor response time (minutes)")
    top_matches: List[ScoredMatchOut]
    processing_time_ms: int
    provider_tag: ProviderTag
    waves_scheduled: int = 0

    @classmethod
    def from_summary(cls, request_id: str, summary: MatchSummary) -> "EmergencyMatchResponse":
        return cls(
            request_id=request_id,
            matches_found=summary.matches_found,
            estimated_response_time=summary.estimated_response_time,
            top_matches=[ScoredMatchOut.from_match(m) for m in summary.top_matches],
            processing_time_ms=summary.processing_time_ms,
            provider_tag=summary.provider_tag,
            waves_scheduled=summary.waves_scheduled,
        )


class DonorResponseRequest(BaseModel):
    """Donor accepting or declining a match"""
    response: DonorResponse = Field(..., description="accepted or declined")


class MatchRecordResponse(BaseModel):
    """Persisted match"""
    match_id: str
    request_id: str
    donor_id: str
    compatibility_score: int
    donor_response: DonorResponse
    responded_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: MatchRecord) -> "MatchRecordResponse":
        return cls(
            match_id=record.match_id,
            request_id=record.request_id,
            donor_id=record.donor_id,
            compatibility_score=record.compatibility_score,
            donor_response=record.donor_response,
            responded_at=record.responded_at,
        )
