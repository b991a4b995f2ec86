"""
Ranking Provider Abstraction Layer
==================================
Unified interface for the external services that rank donor candidates
(Gemini, OpenAI, local Ollama). Each provider owns its request/response shape
and adapts the answer to common RankingEntry tuples; the pipeline only sees
`rank()` and `parse_response()`.

Usage:
    providers = build_ranking_providers()  # ordered per RANKING_PROVIDER_ORDER
    raw = await providers[0].rank(candidates, UrgencyLevel.CRITICAL)
    entries = providers[0].parse_response(raw, candidates)
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx
from httpx import Timeout

from ..errors import ProviderParseError, ProviderUnavailable
from ..models import DonorCandidate, ProviderTag, RankingEntry, UrgencyLevel
from .parsing import parse_ranking_entries

logger = logging.getLogger(__name__)


def summarize_candidate(position: int, candidate: DonorCandidate) -> str:
    last = candidate.last_donation_date.isoformat() if candidate.last_donation_date else "Never"
    return (
        f"{position}. Distance: {candidate.distance_km}km, Donations: {candidate.total_donations}, "
        f"Blood: {candidate.blood_type}, Last: {last}"
    )


def build_ranking_prompt(candidates: Sequence[DonorCandidate], urgency: UrgencyLevel) -> str:
    """Prompt for cloud providers that can answer with structured JSON."""
    donor_summary = "\n".join(summarize_candidate(i + 1, c) for i, c in enumerate(candidates))
    return f"""
Rank blood donors for {urgency.value} urgency request. Consider:
- Distance (closer = better, critical for emergency)
- Donation history (experience matters)
- Recent donations (not too recent, 56+ days ideal)
- Blood type compatibility

Donors:
{donor_summary}

Return JSON array with: donorIndex (1-based), score (0-100), estimatedMinutes, reason

Example: [{{"donorIndex": 1, "score": 95, "estimatedMinutes": 25, "reason": "Close distance, experienced donor"}}]

Focus on top 10 donors only.
"""


class RankingProviderBase(ABC):
    """Abstract base class for ranking providers."""

    tag: ProviderTag
    summary_limit: int = 15

    def __init__(
        self,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_s = timeout_s
        self.transport = transport

    @property
    def name(self) -> str:
        return self.tag.value

    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is configured (API key or endpoint set)."""
        pass

    @abstractmethod
    async def rank(self, candidates: Sequence[DonorCandidate], urgency: UrgencyLevel) -> str:
        """
        Ask the provider to rank the summarized candidates.

        Args:
            candidates: Candidates already cut to `summary_limit`
            urgency: Request urgency

        Returns:
            Raw ranking text produced by the provider

        Raises:
            ProviderUnavailable: network failure or non-2xx status
            ProviderParseError: response envelope does not hold ranking text
        """
        pass

    def parse_response(self, raw: str, candidates: Sequence[DonorCandidate]) -> List[RankingEntry]:
        """Adapt raw ranking text to RankingEntry tuples (JSON array by default)."""
        return parse_ranking_entries(raw, len(candidates))

    async def ping(self) -> bool:
        """Cheap reachability check; cloud providers report configuration only."""
        return self.is_available()

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        try:
            async with httpx.AsyncClient(timeout=Timeout(self.timeout_s), transport=self.transport) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(f"{self.name} API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"{self.name} request failed: {type(e).__name__}: {e}") from e
        except json.JSONDecodeError as e:
            raise ProviderParseError(f"{self.name} returned non-JSON body: {e}") from e


def build_ranking_providers(
    order: Optional[Sequence[str]] = None,
    timeout_s: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[RankingProviderBase]:
    """
    Instantiate providers in fallback order.

    Args:
        order: Provider names, e.g. ["gemini", "openai", "ollama"] (default: RANKING_PROVIDER_ORDER)
        timeout_s: httpx timeout per call (default: PROVIDER_TIMEOUT_S)
        transport: Optional httpx transport shared by all providers

    Returns:
        Provider instances; unknown names are skipped with a warning
    """
    from donormatch.config import PROVIDER_TIMEOUT_S, RANKING_PROVIDER_ORDER
    from .gemini import GeminiRankingProvider
    from .ollama import OllamaRankingProvider
    from .openai_provider import OpenAIRankingProvider

    registry = {
        ProviderTag.GEMINI.value: GeminiRankingProvider,
        ProviderTag.OPENAI.value: OpenAIRankingProvider,
        ProviderTag.OLLAMA.value: OllamaRankingProvider,
    }

    providers: List[RankingProviderBase] = []
    for name in (order if order is not None else RANKING_PROVIDER_ORDER):
        provider_class = registry.get(name.strip().lower())
        if provider_class is None:
            logger.warning(f"⚠️ Unknown ranking provider '{name}' in configuration, skipping")
            continue
        providers.append(provider_class(
            timeout_s=timeout_s if timeout_s is not None else PROVIDER_TIMEOUT_S,
            transport=transport,
        ))

    logger.info(f"✅ Ranking providers configured: {[p.name for p in providers]}")
    return providers
