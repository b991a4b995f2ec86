"""
Ranking Providers: external donor-ranking services consulted in fallback order.

Usage:
    from donormatch.services.emergency_matching.providers import build_ranking_providers

    providers = build_ranking_providers(["gemini", "openai", "ollama"])
"""

from .ranking_abstract import (
    RankingProviderBase,
    build_ranking_prompt,
    build_ranking_providers,
)
from .gemini import GeminiRankingProvider
from .openai_provider import OpenAIRankingProvider
from .ollama import OllamaRankingProvider
from .circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from .parsing import extract_json_array, parse_ordinal_ranking, parse_ranking_entries

__all__ = [
    "RankingProviderBase",
    "build_ranking_prompt",
    "build_ranking_providers",
    "GeminiRankingProvider",
    "OpenAIRankingProvider",
    "OllamaRankingProvider",
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitState",
    "extract_json_array",
    "parse_ordinal_ranking",
    "parse_ranking_entries",
]
