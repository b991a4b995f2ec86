"""
Emergency Matching Package: donor ranking, persistence and notification escalation.
"""
from .models import (
    DonorCandidate,
    DonorResponse,
    EmergencyRequest,
    EscalationContext,
    MatchRecord,
    MatchSummary,
    NotificationWave,
    ProviderTag,
    ScoredMatch,
    UrgencyLevel,
    WavePriority,
)
from .errors import (
    CandidateFetchFailure,
    EmergencyMatchingError,
    MatchNotFound,
    NotificationDeliveryError,
    PersistenceError,
    ProviderParseError,
    ProviderUnavailable,
    ResponseAlreadyRecorded,
    StreamDisconnected,
)
from .heuristic_ranker import HeuristicRanker, legacy_compatibility_score
from .ranking_pipeline import RankingPipeline
from .match_store import InMemoryMatchStore, SupabaseMatchStore
from .notification_escalator import EscalationState, NotificationEscalator, ScheduledDispatch
from .response_monitor import ResponseMonitor
from .orchestrator import MatchingOrchestrator, create_matching_orchestrator

__all__ = [
    "DonorCandidate",
    "DonorResponse",
    "EmergencyRequest",
    "EscalationContext",
    "MatchRecord",
    "MatchSummary",
    "NotificationWave",
    "ProviderTag",
    "ScoredMatch",
    "UrgencyLevel",
    "WavePriority",
    "CandidateFetchFailure",
    "EmergencyMatchingError",
    "MatchNotFound",
    "NotificationDeliveryError",
    "PersistenceError",
    "ProviderParseError",
    "ProviderUnavailable",
    "ResponseAlreadyRecorded",
    "StreamDisconnected",
    "HeuristicRanker",
    "legacy_compatibility_score",
    "RankingPipeline",
    "InMemoryMatchStore",
    "SupabaseMatchStore",
    "EscalationState",
    "NotificationEscalator",
    "ScheduledDispatch",
    "ResponseMonitor",
    "MatchingOrchestrator",
    "create_matching_orchestrator",
]
