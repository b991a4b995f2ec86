"""
Ollama ranking provider (local model, no API key).

Small local models do not follow JSON instructions reliably, so the prompt asks
for an ordinal ranking and the answer is parsed as a list of positions.
"""
import logging
from typing import List, Optional, Sequence

import httpx
from httpx import Timeout
from pydantic import BaseModel, ValidationError

from donormatch.config import OLLAMA_ENDPOINT, OLLAMA_MODEL
from ..errors import ProviderParseError, ProviderUnavailable
from ..models import DonorCandidate, ProviderTag, RankingEntry, UrgencyLevel
from .parsing import parse_ordinal_ranking
from .ranking_abstract import RankingProviderBase

logger = logging.getLogger(__name__)

PING_TIMEOUT_S = 2.0


class OllamaGenerateResponse(BaseModel):
    response: str


def build_ordinal_prompt(candidates: Sequence[DonorCandidate], urgency: UrgencyLevel) -> str:
    donor_list = "\n".join(
        f"{i + 1}. {c.distance_km}km, {c.total_donations} donations" for i, c in enumerate(candidates)
    )
    return f"Rank blood donors for {urgency.value} request by preference (1=best):\n{donor_list}\n\nRanking:"


class OllamaRankingProvider(RankingProviderBase):
    """Local Ollama `/api/generate` ranking."""

    tag = ProviderTag.OLLAMA
    summary_limit = 8

    def __init__(
        self,
        endpoint: Optional[str] = None,
        model: Optional[str] = None,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout_s=timeout_s, transport=transport)
        self.endpoint = (endpoint if endpoint is not None else OLLAMA_ENDPOINT or "").rstrip("/")
        self.model = model or OLLAMA_MODEL

    def is_available(self) -> bool:
        return bool(self.endpoint)

    async def rank(self, candidates: Sequence[DonorCandidate], urgency: UrgencyLevel) -> str:
        if not self.is_available():
            raise ProviderUnavailable("Ollama endpoint not configured")

        payload = {
            "model": self.model,
            "prompt": build_ordinal_prompt(candidates, urgency),
            "stream": False,
            "options": {
                "temperature": 0.3,
                "num_predict": 400,
            },
        }
        data = await self._post_json(f"{self.endpoint}/api/generate", payload)

        try:
            return OllamaGenerateResponse.model_validate(data).response
        except ValidationError as e:
            raise ProviderParseError(f"Unexpected Ollama response shape: {e}") from e

    def parse_response(self, raw: str, candidates: Sequence[DonorCandidate]) -> List[RankingEntry]:
        return parse_ordinal_ranking(raw, candidates)

    async def ping(self) -> bool:
        """Check that the local server answers `/api/tags` within two seconds."""
        if not self.is_available():
            return False
        try:
            async with httpx.AsyncClient(timeout=Timeout(PING_TIMEOUT_S), transport=self.transport) as client:
                response = await client.get(f"{self.endpoint}/api/tags")
                return response.is_success
        except httpx.HTTPError as e:
            logger.debug(f"Ollama ping failed: {e}")
            return False
