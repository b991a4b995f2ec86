"""
API Schemas - Pydantic models for request/response validation.

- emergency.py: emergency match request/response, donor response
"""

from .emergency import (
    DonorResponseRequest,
    EmergencyMatchRequest,
    EmergencyMatchResponse,
    MatchRecordResponse,
    ScoredMatchOut,
)

__all__ = [
    'DonorResponseRequest',
    'EmergencyMatchRequest',
    'EmergencyMatchResponse',
    'MatchRecordResponse',
    'ScoredMatchOut',
]
