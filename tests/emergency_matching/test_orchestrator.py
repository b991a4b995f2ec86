"""
End-to-end tests for the matching orchestrator with in-process collaborators.
"""
import asyncio

import pytest

from donormatch.services.emergency_matching.errors import PersistenceError
from donormatch.services.emergency_matching.heuristic_ranker import HeuristicRanker
from donormatch.services.emergency_matching.match_store import InMemoryMatchStore
from donormatch.services.emergency_matching.models import DonorResponse, ProviderTag, UrgencyLevel, WavePriority
from donormatch.services.emergency_matching.notification_escalator import NotificationEscalator
from donormatch.services.emergency_matching.orchestrator import MatchingOrchestrator
from donormatch.services.emergency_matching.ranking_pipeline import RankingPipeline
from donormatch.services.emergency_matching.response_monitor import ResponseMonitor

VALID = '[{"donorIndex": 2, "score": 96, "estimatedMinutes": 14, "reason": "Experienced"}]'


class WriteFailingStore(InMemoryMatchStore):
    async def write(self, request_id, matches):
        raise PersistenceError("insert into matches failed: 503")


class ExplodingPipeline:
    async def rank(self, candidates, urgency):
        raise RuntimeError("unexpected ranking bug")


@pytest.fixture
def build_orchestrator(today, delivery, notifier, match_store):
    def _build(candidate_source, providers=(), store=None, pipeline=None):
        store = store or match_store
        escalator = NotificationEscalator(delivery, store, wave_two_delay_s=0.05)
        monitor = ResponseMonitor(store, notifier, on_acceptance=escalator.cancel_pending, retry_delay_s=0)
        return MatchingOrchestrator(
            candidate_source,
            pipeline or RankingPipeline(list(providers), heuristic=HeuristicRanker(today=lambda: today)),
            store,
            escalator,
            monitor=monitor,
        )
    return _build


@pytest.fixture
def three_nearby(make_candidate):
    return [make_candidate("d20", 20), make_candidate("d1", 1), make_candidate("d5", 5)]


@pytest.mark.asyncio
async def test_all_providers_down_normal_request(build_orchestrator, candidate_source, unreachable, three_nearby,
                                                  emergency_request, delivery, match_store):
    """3 O+ donors at 1/5/20km, normal urgency, every provider unavailable."""
    providers = [unreachable(ProviderTag.GEMINI), unreachable(ProviderTag.OPENAI), unreachable(ProviderTag.OLLAMA)]
    orchestrator = build_orchestrator(candidate_source(three_nearby), providers)

    summary = await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.NORMAL))

    assert summary.provider_tag == ProviderTag.HEURISTIC
    assert summary.matches_found == 3
    assert [(m.donor_id, m.confidence_score) for m in summary.top_matches] == [("d1", 89), ("d5", 85), ("d20", 70)]
    assert summary.estimated_response_time == 30.3
    assert summary.waves_scheduled == 1
    assert [s["donor_id"] for s in delivery.sent] == ["d1", "d5", "d20"]
    assert {s["metadata"]["priority"] for s in delivery.sent} == {WavePriority.STANDARD.value}
    assert len(await match_store.get_records("req-1")) == 3

    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_no_candidates_means_no_calls_and_no_waves(build_orchestrator, candidate_source, fake_provider,
                                                         emergency_request, delivery):
    provider = fake_provider(ProviderTag.GEMINI, VALID)
    orchestrator = build_orchestrator(candidate_source([]), [provider])

    summary = await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.CRITICAL))

    assert summary.matches_found == 0
    assert summary.provider_tag == ProviderTag.NONE
    assert summary.estimated_response_time == 0
    assert summary.waves_scheduled == 0
    assert provider.calls == []
    assert delivery.sent == []


@pytest.mark.asyncio
async def test_critical_request_uses_second_provider(build_orchestrator, candidate_source, fake_provider,
                                                     twelve_candidates, emergency_request):
    providers = [fake_provider(ProviderTag.GEMINI, "{not json"), fake_provider(ProviderTag.OPENAI, VALID)]
    orchestrator = build_orchestrator(candidate_source(twelve_candidates), providers)

    summary = await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.CRITICAL))

    assert summary.provider_tag == ProviderTag.OPENAI
    assert summary.matches_found == 12
    assert summary.top_matches[0].donor_id == "c02"
    assert summary.waves_scheduled == 2

    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_results_are_capped_by_urgency(build_orchestrator, candidate_source, make_candidate, emergency_request):
    many = [make_candidate(f"c{i:02d}", float(i)) for i in range(1, 26)]
    orchestrator = build_orchestrator(candidate_source(many))

    critical = await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.CRITICAL, "req-c"))
    normal = await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.NORMAL, "req-n"))

    assert critical.matches_found == 20
    assert normal.matches_found == 10
    assert len(critical.top_matches) == 5

    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_persistence_failure_still_escalates(build_orchestrator, candidate_source, three_nearby,
                                                   emergency_request, delivery):
    orchestrator = build_orchestrator(candidate_source(three_nearby), store=WriteFailingStore())

    summary = await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.HIGH))

    assert summary.matches_found == 3
    assert summary.provider_tag == ProviderTag.HEURISTIC
    assert len(delivery.sent) == 3
    assert not orchestrator.monitor.is_watching("req-1")


@pytest.mark.asyncio
async def test_candidate_fetch_failure_uses_legacy_path(build_orchestrator, candidate_source, fetch_failure,
                                                        three_nearby, emergency_request, delivery, match_store):
    orchestrator = build_orchestrator(candidate_source(fetch_failure, three_nearby))

    summary = await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.CRITICAL))

    assert summary.provider_tag == ProviderTag.FALLBACK
    assert summary.estimated_response_time == 45
    assert [(m.donor_id, m.confidence_score) for m in summary.top_matches] == [("d1", 100), ("d5", 100), ("d20", 90)]
    assert {s["title"] for s in delivery.sent} == {"Blood Request Match Found"}
    assert len(await match_store.get_records("req-1")) == 3


@pytest.mark.asyncio
async def test_unexpected_pipeline_error_uses_legacy_path(build_orchestrator, candidate_source, three_nearby,
                                                          emergency_request):
    orchestrator = build_orchestrator(candidate_source(three_nearby), pipeline=ExplodingPipeline())

    summary = await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.NORMAL))

    assert summary.provider_tag == ProviderTag.FALLBACK
    assert summary.matches_found == 3


@pytest.mark.asyncio
async def test_legacy_failure_returns_empty_summary(build_orchestrator, candidate_source, fetch_failure,
                                                    emergency_request):
    orchestrator = build_orchestrator(candidate_source(fetch_failure))

    summary = await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.CRITICAL))

    assert summary.matches_found == 0
    assert summary.provider_tag == ProviderTag.NONE
    assert summary.top_matches == []


@pytest.mark.asyncio
async def test_early_acceptance_cancels_second_wave_and_notifies_requester(
    build_orchestrator, candidate_source, make_candidate, emergency_request, match_store, notifier, delivery
):
    donors = [make_candidate(f"c{i:02d}", float(i)) for i in range(1, 21)]
    orchestrator = build_orchestrator(candidate_source(donors))

    await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.CRITICAL))
    first_wave = [s["donor_id"] for s in delivery.sent]
    record = next(r for r in await match_store.get_records("req-1") if r.donor_id == first_wave[0])

    await match_store.record_response(record.match_id, DonorResponse.ACCEPTED)
    await orchestrator.escalator.wait_pending("req-1")
    await asyncio.sleep(0.01)

    assert len(orchestrator.escalator.dispatched_waves("req-1")) == 1
    assert len(delivery.sent) == 5
    assert len(notifier.notified) == 1

    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_acceptance_without_requester_still_cancels_second_wave(
    build_orchestrator, candidate_source, make_candidate, emergency_request, match_store, notifier, delivery
):
    donors = [make_candidate(f"c{i:02d}", float(i)) for i in range(1, 21)]
    orchestrator = build_orchestrator(candidate_source(donors))

    await orchestrator.process_emergency_request(emergency_request(UrgencyLevel.CRITICAL, requester_id=None))
    assert orchestrator.monitor.is_watching("req-1")

    record = (await match_store.get_records("req-1"))[10]
    await match_store.record_response(record.match_id, DonorResponse.ACCEPTED)
    await orchestrator.escalator.wait_pending("req-1")

    assert len(orchestrator.escalator.dispatched_waves("req-1")) == 1
    assert notifier.notified == []

    await orchestrator.shutdown()
