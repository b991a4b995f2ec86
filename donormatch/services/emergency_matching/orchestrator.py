"""
Matching Orchestrator: fetch → rank → persist → escalate → summarize.

Emergency flows never raise to the caller. Any failure on the main path drops
to the legacy path (fixed compatibility score, single notification round),
and if that fails too the caller still receives an empty summary.
"""
import logging
import time
from typing import List, Optional, Sequence

from ..supabase_service import SupabaseService
from .errors import PersistenceError
from .heuristic_ranker import legacy_compatibility_score, sort_matches
from .models import (
    DonorCandidate,
    EmergencyRequest,
    EscalationContext,
    MatchSummary,
    ProviderTag,
    ScoredMatch,
    UrgencyLevel,
)
from .notification_escalator import NotificationEscalator
from .ports import CandidateSource, MatchStore
from .ranking_pipeline import RankingPipeline
from .response_monitor import ResponseMonitor

logger = logging.getLogger(__name__)

LEGACY_RESPONSE_MINUTES = 45
TOP_MATCHES = 5


def mean_response_minutes(matches: Sequence[ScoredMatch]) -> float:
    if not matches:
        return 0
    return round(sum(m.estimated_response_minutes for m in matches) / len(matches), 1)


class MatchingOrchestrator:
    """Coordinates ranking, persistence and escalation for one emergency request at a time."""

    def __init__(
        self,
        candidate_source: CandidateSource,
        pipeline: RankingPipeline,
        match_store: MatchStore,
        escalator: NotificationEscalator,
        monitor: Optional[ResponseMonitor] = None,
        supabase: Optional[SupabaseService] = None,
        radius_km: float = 50,
        critical_max_results: int = 20,
        default_max_results: int = 10,
    ):
        self.candidate_source = candidate_source
        self.pipeline = pipeline
        self.match_store = match_store
        self.escalator = escalator
        self.monitor = monitor
        self.supabase = supabase
        self.radius_km = radius_km
        self.critical_max_results = critical_max_results
        self.default_max_results = default_max_results

    def max_results(self, urgency: UrgencyLevel) -> int:
        return self.critical_max_results if urgency == UrgencyLevel.CRITICAL else self.default_max_results

    async def process_emergency_request(self, request: EmergencyRequest) -> MatchSummary:
        """
        Match donors for an emergency request.

        Args:
            request: Emergency blood request

        Returns:
            MatchSummary (possibly with zero matches); never raises
        """
        started = time.perf_counter()
        logger.info(
            f"🚨 Emergency request {request.request_id}: {request.blood_type} "
            f"x{request.units_needed} ({request.urgency.value})"
        )
        try:
            summary = await self._match(request, started)
        except Exception as e:
            logger.error(f"❌ Emergency matching failed for {request.request_id}: {e}")
            summary = await self._legacy_match(request, started)

        await self._log_run(request, summary)
        return summary

    async def _fetch(self, request: EmergencyRequest) -> List[DonorCandidate]:
        return await self.candidate_source.find(
            request.blood_type,
            request.urgency,
            request.hospital_lat,
            request.hospital_lon,
            request.radius_km or self.radius_km,
        )

    async def _match(self, request: EmergencyRequest, started: float) -> MatchSummary:
        candidates = await self._fetch(request)
        if not candidates:
            logger.info(f"⚠️ No compatible donors for request {request.request_id}")
            return self._summary([], ProviderTag.NONE, started)

        ranked, tag = await self.pipeline.rank(candidates, request.urgency)
        ranked = ranked[:self.max_results(request.urgency)]

        persisted = True
        try:
            await self.match_store.write(request.request_id, ranked)
        except PersistenceError as e:
            persisted = False
            logger.error(f"❌ Match persistence failed for {request.request_id}, escalating anyway: {e}")

        context = EscalationContext.from_request(request)
        waves = await self.escalator.schedule(ranked, request.urgency, context)

        if self.monitor is not None and persisted and waves:
            self.monitor.start(request.request_id, request.requester_id, request.patient_name)

        summary = self._summary(ranked, tag, started, waves_scheduled=len(waves))
        logger.info(
            f"✅ Request {request.request_id}: {summary.matches_found} matches via {tag.value}, "
            f"{len(waves)} waves, {summary.processing_time_ms}ms"
        )
        return summary

    async def _legacy_match(self, request: EmergencyRequest, started: float) -> MatchSummary:
        logger.info("🔄 Falling back to basic matching algorithm")
        try:
            candidates = await self._fetch(request)
            matches = sort_matches(
                ScoredMatch(
                    donor_id=c.donor_id,
                    confidence_score=legacy_compatibility_score(c),
                    estimated_response_minutes=LEGACY_RESPONSE_MINUTES,
                    reasoning=("Basic compatibility match",),
                    source=ProviderTag.FALLBACK,
                    distance_km=c.distance_km,
                    total_donations=c.total_donations,
                    contact_id=c.contact_id,
                )
                for c in candidates
            )[:self.max_results(request.urgency)]

            if matches:
                try:
                    await self.match_store.write(request.request_id, matches)
                except PersistenceError as e:
                    logger.error(f"❌ Legacy match persistence failed for {request.request_id}: {e}")
                await self.escalator.notify_basic_matches(matches, EscalationContext.from_request(request))

            summary = self._summary(matches, ProviderTag.FALLBACK, started)
            summary.estimated_response_time = LEGACY_RESPONSE_MINUTES
            return summary
        except Exception as e:
            logger.error(f"❌ Fallback matching also failed for {request.request_id}: {e}")
            return self._summary([], ProviderTag.NONE, started)

    @staticmethod
    def _summary(
        matches: Sequence[ScoredMatch],
        tag: ProviderTag,
        started: float,
        waves_scheduled: int = 0,
    ) -> MatchSummary:
        return MatchSummary(
            matches_found=len(matches),
            estimated_response_time=mean_response_minutes(matches),
            top_matches=list(matches[:TOP_MATCHES]),
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            provider_tag=tag,
            waves_scheduled=waves_scheduled,
        )

    async def _log_run(self, request: EmergencyRequest, summary: MatchSummary) -> None:
        if self.supabase is None:
            return
        await self.supabase.log_run({
            "request_id": request.request_id,
            "urgency_level": request.urgency.value,
            "blood_type": request.blood_type,
            "matches_found": summary.matches_found,
            "provider": summary.provider_tag.value,
            "waves_scheduled": summary.waves_scheduled,
            "processing_time_ms": summary.processing_time_ms,
        })

    async def shutdown(self) -> None:
        await self.escalator.shutdown()
        if self.monitor is not None:
            await self.monitor.stop_all()


def create_matching_orchestrator(
    supabase: Optional[SupabaseService] = None,
    candidate_source: Optional[CandidateSource] = None,
    match_store: Optional[MatchStore] = None,
    delivery=None,
    requester_notifier=None,
    providers=None,
) -> MatchingOrchestrator:
    """
    Build the matching graph from config.

    Anything not passed in is created from settings: Supabase adapters when
    Supabase is configured, in-memory store and logging delivery otherwise.
    """
    from donormatch.config import (
        CANDIDATE_RADIUS_KM,
        CRITICAL_MAX_RESULTS,
        DEFAULT_MAX_RESULTS,
        ESCALATION_RETAIN_SETTLED,
        MATCH_POLL_INTERVAL_S,
        MONITOR_MAX_RETRIES,
        MONITOR_MAX_WATCH_S,
        MONITOR_RETRY_DELAY_S,
        PROVIDER_FAILURE_THRESHOLD,
        PROVIDER_RECOVERY_S,
        PROVIDER_TIMEOUT_S,
        WAVE_TWO_DELAY_S,
    )
    from .candidate_source import SupabaseCandidateSource
    from .delivery import (
        LoggingNotificationDelivery,
        LoggingRequesterNotifier,
        SupabaseNotificationDelivery,
        SupabaseRequesterNotifier,
    )
    from .match_store import InMemoryMatchStore, SupabaseMatchStore
    from .providers import build_ranking_providers

    supabase = supabase or SupabaseService()
    if supabase.enabled:
        candidate_source = candidate_source or SupabaseCandidateSource(supabase)
        match_store = match_store or SupabaseMatchStore(supabase, poll_interval_s=MATCH_POLL_INTERVAL_S)
        delivery = delivery or SupabaseNotificationDelivery(supabase)
        requester_notifier = requester_notifier or SupabaseRequesterNotifier(supabase)
    else:
        logger.warning("⚠️ Supabase not configured - using in-memory match store and log delivery")
        match_store = match_store or InMemoryMatchStore()
        delivery = delivery or LoggingNotificationDelivery()
        requester_notifier = requester_notifier or LoggingRequesterNotifier()
        if candidate_source is None:
            candidate_source = SupabaseCandidateSource(supabase)

    pipeline = RankingPipeline(
        providers if providers is not None else build_ranking_providers(),
        timeout_s=PROVIDER_TIMEOUT_S,
        failure_threshold=PROVIDER_FAILURE_THRESHOLD,
        recovery_s=PROVIDER_RECOVERY_S,
    )
    escalator = NotificationEscalator(
        delivery,
        match_store,
        wave_two_delay_s=WAVE_TWO_DELAY_S,
        retain_settled=ESCALATION_RETAIN_SETTLED,
    )
    monitor = ResponseMonitor(
        match_store,
        requester_notifier,
        on_acceptance=escalator.cancel_pending,
        max_retries=MONITOR_MAX_RETRIES,
        retry_delay_s=MONITOR_RETRY_DELAY_S,
        max_watch_s=MONITOR_MAX_WATCH_S,
    )
    return MatchingOrchestrator(
        candidate_source,
        pipeline,
        match_store,
        escalator,
        monitor=monitor,
        supabase=supabase,
        radius_km=CANDIDATE_RADIUS_KM,
        critical_max_results=CRITICAL_MAX_RESULTS,
        default_max_results=DEFAULT_MAX_RESULTS,
    )
