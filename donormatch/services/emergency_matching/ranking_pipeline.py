"""
Ranking Pipeline: ordered provider fallback chain ending in the heuristic ranker.

Providers are tried one at a time (cheapest/fastest first), each exactly once
per call and bounded by a timeout. The first provider with a valid ranking
wins; candidates it did not rank are scored by the heuristic ranker so every
candidate yields exactly one match. If no provider succeeds the heuristic
ranker scores everything.
"""
import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import ProviderParseError, ProviderUnavailable
from .heuristic_ranker import HeuristicRanker, clamp_score, round_half_up, sort_matches
from .models import (
    DonorCandidate,
    ProviderResult,
    ProviderTag,
    Ranked,
    RankingEntry,
    ScoredMatch,
    Unavailable,
    UrgencyLevel,
)
from .providers.circuit_breaker import CircuitBreaker
from .providers.ranking_abstract import RankingProviderBase

logger = logging.getLogger(__name__)


def dedupe_candidates(candidates: Sequence[DonorCandidate]) -> List[DonorCandidate]:
    """Collapse repeated donor ids, keeping the first occurrence."""
    seen = set()
    unique = []
    for candidate in candidates:
        if candidate.donor_id in seen:
            logger.warning(f"⚠️ Duplicate candidate {candidate.donor_id} dropped")
            continue
        seen.add(candidate.donor_id)
        unique.append(candidate)
    return unique


class RankingPipeline:
    """Ranks candidates through an injected, ordered list of providers."""

    def __init__(
        self,
        providers: Sequence[RankingProviderBase],
        heuristic: Optional[HeuristicRanker] = None,
        timeout_s: float = 8.0,
        failure_threshold: int = 3,
        recovery_s: float = 60,
    ):
        self.providers = list(providers)
        self.heuristic = heuristic or HeuristicRanker()
        self.timeout_s = timeout_s
        self._breakers: Dict[str, CircuitBreaker] = {
            p.name: CircuitBreaker(p.name, failure_threshold=failure_threshold, recovery_s=recovery_s)
            for p in self.providers
        }

    def breaker(self, provider_name: str) -> CircuitBreaker:
        return self._breakers[provider_name]

    async def rank(
        self,
        candidates: Sequence[DonorCandidate],
        urgency: UrgencyLevel,
    ) -> Tuple[List[ScoredMatch], ProviderTag]:
        """
        Rank candidates.

        Args:
            candidates: Compatible donors for the request
            urgency: Request urgency

        Returns:
            (matches sorted by score desc / distance asc / donor id, tag of the ranker used)
        """
        if not candidates:
            return [], ProviderTag.NONE

        unique = dedupe_candidates(candidates)
        started = time.perf_counter()

        for provider in self.providers:
            if not provider.is_available():
                logger.debug(f"Skipping {provider.name}: not configured")
                continue

            logger.info(f"🤖 Trying {provider.name} ranking for {len(unique)} candidates...")
            result = await self._attempt(provider, unique, urgency)

            if isinstance(result, Ranked):
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                logger.info(f"✅ {provider.name} ranking successful ({len(result.matches)} matches, {elapsed_ms}ms)")
                return sort_matches(result.matches), provider.tag

            logger.warning(f"⚠️ {provider.name} unavailable: {result.reason}")

        logger.info("🔧 Using heuristic ranking fallback")
        return self.heuristic.rank(unique, urgency), ProviderTag.HEURISTIC

    async def _attempt(
        self,
        provider: RankingProviderBase,
        candidates: List[DonorCandidate],
        urgency: UrgencyLevel,
    ) -> ProviderResult:
        window = candidates[:provider.summary_limit]
        breaker = self._breakers.get(provider.name)
        if breaker is None:
            breaker = self._breakers[provider.name] = CircuitBreaker(provider.name)

        try:
            entries = await breaker.call_async(self._invoke, provider, window, urgency)
        except ProviderParseError as e:
            return Unavailable(f"parse error: {e}")
        except ProviderUnavailable as e:
            return Unavailable(str(e))
        except Exception as e:
            logger.error(f"❌ {provider.name} raised unexpected {type(e).__name__}: {e}")
            return Unavailable(f"unexpected error: {e}")

        return Ranked(self._merge(provider.tag, entries, window, candidates, urgency))

    async def _invoke(
        self,
        provider: RankingProviderBase,
        window: List[DonorCandidate],
        urgency: UrgencyLevel,
    ) -> List[RankingEntry]:
        try:
            raw = await asyncio.wait_for(provider.rank(window, urgency), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(f"{provider.name} timed out after {self.timeout_s}s") from e
        return provider.parse_response(raw, window)

    def _merge(
        self,
        tag: ProviderTag,
        entries: List[RankingEntry],
        window: List[DonorCandidate],
        candidates: List[DonorCandidate],
        urgency: UrgencyLevel,
    ) -> List[ScoredMatch]:
        matches: List[ScoredMatch] = []
        ranked_ids = set()

        for entry in entries:
            if not 1 <= entry.index <= len(window):
                continue
            candidate = window[entry.index - 1]
            if candidate.donor_id in ranked_ids:
                continue
            ranked_ids.add(candidate.donor_id)
            matches.append(ScoredMatch(
                donor_id=candidate.donor_id,
                confidence_score=clamp_score(entry.score),
                estimated_response_minutes=max(0, round_half_up(entry.estimated_minutes)),
                reasoning=(entry.reason,),
                source=tag,
                distance_km=candidate.distance_km,
                total_donations=candidate.total_donations,
                contact_id=candidate.contact_id,
            ))

        # Candidates beyond the summary window or omitted by the provider
        for candidate in candidates:
            if candidate.donor_id not in ranked_ids:
                matches.append(self.heuristic.score(candidate, urgency))

        return matches

    async def check_available_services(self) -> Dict[str, bool]:
        """Report which providers are configured and reachable."""
        results = {}
        for provider in self.providers:
            try:
                results[provider.name] = await provider.ping()
            except Exception as e:
                logger.warning(f"⚠️ {provider.name} availability check failed: {e}")
                results[provider.name] = False
        return results
