"""
OpenAI chat-completions ranking provider.
"""
import logging
from typing import List, Optional, Sequence

import httpx
from pydantic import BaseModel, ValidationError

from donormatch.config import OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL, PROVIDER_SUMMARY_LIMIT
from ..errors import ProviderParseError, ProviderUnavailable
from ..models import DonorCandidate, ProviderTag, UrgencyLevel
from .ranking_abstract import RankingProviderBase, build_ranking_prompt

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE = "You are a blood donation matching AI. Analyze donors and return JSON rankings."


class _ChatMessage(BaseModel):
    content: str


class _ChatChoice(BaseModel):
    message: _ChatMessage


class ChatCompletionResponse(BaseModel):
    choices: List[_ChatChoice]


class OpenAIRankingProvider(RankingProviderBase):
    """OpenAI ranking via `/v1/chat/completions` with a bearer key."""

    tag = ProviderTag.OPENAI
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
        self.api_key = api_key or OPENAI_API_KEY
        self.model = model or OPENAI_MODEL
        self.base_url = (base_url or OPENAI_BASE_URL).rstrip("/")

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def rank(self, candidates: Sequence[DonorCandidate], urgency: UrgencyLevel) -> str:
        if not self.is_available():
            raise ProviderUnavailable("OpenAI provider not configured (OPENAI_API_KEY missing)")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": build_ranking_prompt(candidates, urgency)},
            ],
            "temperature": 0.2,
            "max_tokens": 800,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        data = await self._post_json(f"{self.base_url}/v1/chat/completions", payload, headers=headers)

        try:
            envelope = ChatCompletionResponse.model_validate(data)
            return envelope.choices[0].message.content
        except (ValidationError, IndexError) as e:
            raise ProviderParseError(f"Unexpected OpenAI response shape: {e}") from e
