"""
Google Gemini ranking provider.
"""
import logging
from typing import List, Optional, Sequence

import httpx
from pydantic import BaseModel, ValidationError

from donormatch.config import GEMINI_BASE_URL, GEMINI_MODEL, GOOGLE_AI_KEY, PROVIDER_SUMMARY_LIMIT
from ..errors import ProviderParseError, ProviderUnavailable
from ..models import DonorCandidate, ProviderTag, UrgencyLevel
from .ranking_abstract import RankingProviderBase, build_ranking_prompt

logger = logging.getLogger(__name__)


class _GeminiPart(BaseModel):
    text: str


class _GeminiContent(BaseModel):
    parts: List[_GeminiPart]


class _GeminiCandidate(BaseModel):
    content: _GeminiContent


class GeminiResponse(BaseModel):
    """Subset of the generateContent response the ranking needs."""
    candidates: List[_GeminiCandidate]


class GeminiRankingProvider(RankingProviderBase):
    """
    Gemini `generateContent` ranking.

    Gemini-specific:
    - API key passed as `key` query parameter
    - Answer text at candidates[0].content.parts[0].text
    """

    tag = ProviderTag.GEMINI
    summary_limit = PROVIDER_SUMMARY_LIMIT

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout_s=timeout_s, transport=transport)
        self.api_key = api_key or GOOGLE_AI_KEY
        self.model = model or GEMINI_MODEL
        self.base_url = (base_url or GEMINI_BASE_URL).rstrip("/")

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def rank(self, candidates: Sequence[DonorCandidate], urgency: UrgencyLevel) -> str:
        if not self.is_available():
            raise ProviderUnavailable("Gemini provider not configured (GOOGLE_AI_KEY missing)")

        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent?key={self.api_key}"
        payload = {
            "contents": [{"parts": [{"text": build_ranking_prompt(candidates, urgency)}]}],
            "generationConfig": {
                "temperature": 0.2,
                "maxOutputTokens": 1000,
            },
        }
        data = await self._post_json(url, payload, headers={"Content-Type": "application/json"})

        try:
            envelope = GeminiResponse.model_validate(data)
            return envelope.candidates[0].content.parts[0].text
        except (ValidationError, IndexError) as e:
            raise ProviderParseError(f"Unexpected Gemini response shape: {e}") from e
