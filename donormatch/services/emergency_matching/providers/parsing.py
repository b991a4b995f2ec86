"""
Ranking response parsing.

Provider output is free text from a language model. Nothing in it is trusted:
the JSON array is located and decoded, every entry is validated on its own,
indices are bounds-checked against the summarized candidates, duplicates are
dropped (first wins) and numbers are clamped. A payload with no valid entry
raises ProviderParseError so the pipeline moves to the next provider.
"""
import json
import math
import re
import logging
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ProviderParseError
from ..models import DonorCandidate, RankingEntry

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 50.0
DEFAULT_ESTIMATED_MINUTES = 30.0
DEFAULT_REASON = "AI analysis"

ORDINAL_RANK_LIMIT = 10
ORDINAL_TOP_SCORE = 90
ORDINAL_STEP = 8
ORDINAL_MIN_SCORE = 20
ORDINAL_BASE_MINUTES = 25.0
ORDINAL_MINUTES_PER_KM = 1.5
ORDINAL_REASON = "Local AI ranking"


class RankingItem(BaseModel):
    """One ranking entry as emitted by a cloud provider."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    donor_index: int = Field(..., alias="donorIndex")
    score: Optional[float] = None
    estimated_minutes: Optional[float] = Field(None, alias="estimatedMinutes")
    reason: Optional[str] = None


def _finite_or(value: Optional[float], default: float) -> float:
    if value is None or not math.isfinite(value):
        return default
    return value


def extract_json_array(text: str) -> List[Any]:
    """
    Return the JSON array embedded in `text`.

    Arrays of objects win over bare arrays such as citation markers or
    index lists in surrounding prose; the first bare array is the fallback.
    """
    if not isinstance(text, str) or not text.strip():
        raise ProviderParseError("Empty provider response")

    decoder = json.JSONDecoder()
    first_list = None
    for match in re.finditer(r"\[", text):
        try:
            value, _ = decoder.raw_decode(text, match.start())
        except ValueError:
            continue
        if not isinstance(value, list):
            continue
        if any(isinstance(item, dict) for item in value):
            return value
        if first_list is None:
            first_list = value
    if first_list is not None:
        return first_list
    raise ProviderParseError("No JSON array found in provider response")


def parse_ranking_entries(text: str, candidate_count: int) -> List[RankingEntry]:
    """Validate a JSON ranking payload into bounded RankingEntry tuples."""
    items = extract_json_array(text)

    entries: List[RankingEntry] = []
    seen = set()
    for raw in items:
        if not isinstance(raw, dict):
            continue
        try:
            item = RankingItem.model_validate(raw)
        except ValidationError as e:
            logger.debug(f"Skipping invalid ranking entry {raw!r}: {e.error_count()} errors")
            continue

        if not 1 <= item.donor_index <= candidate_count:
            logger.debug(f"Skipping out-of-range donorIndex {item.donor_index} (candidates: {candidate_count})")
            continue
        if item.donor_index in seen:
            continue
        seen.add(item.donor_index)

        score = min(100.0, max(0.0, _finite_or(item.score, DEFAULT_SCORE)))
        minutes = max(0.0, _finite_or(item.estimated_minutes, DEFAULT_ESTIMATED_MINUTES))
        reason = (item.reason or "").strip() or DEFAULT_REASON
        entries.append(RankingEntry(
            index=item.donor_index,
            score=score,
            estimated_minutes=minutes,
            reason=reason,
        ))

    if not entries:
        raise ProviderParseError(f"No valid ranking entries in {len(items)} items")
    return entries


def parse_ordinal_ranking(text: str, candidates: Sequence[DonorCandidate]) -> List[RankingEntry]:
    """
    Parse a free-text ordinal ranking ("3, 1, 2 ...") from a local model.

    The first up-to-ten integers are read as 1-based candidate positions, best first.
    """
    if not isinstance(text, str):
        raise ProviderParseError("Empty provider response")

    numbers = re.findall(r"\d+", text)
    if not numbers:
        raise ProviderParseError("No ranking numbers in provider response")

    positions = []
    for token in numbers[:min(len(candidates), ORDINAL_RANK_LIMIT)]:
        position = int(token)
        if 1 <= position <= len(candidates) and position not in positions:
            positions.append(position)

    if not positions:
        raise ProviderParseError("No in-range ranking numbers in provider response")

    entries = []
    for rank, position in enumerate(positions):
        candidate = candidates[position - 1]
        entries.append(RankingEntry(
            index=position,
            score=float(max(ORDINAL_MIN_SCORE, ORDINAL_TOP_SCORE - rank * ORDINAL_STEP)),
            estimated_minutes=ORDINAL_BASE_MINUTES + max(0.0, candidate.distance_km) * ORDINAL_MINUTES_PER_KM,
            reason=ORDINAL_REASON,
        ))
    return entries
