"""
Heuristic Ranker: deterministic rule-based donor scoring.

Terminal fallback of the ranking pipeline and filler for candidates a provider
did not rank. Scoring (clamped to [0, 100], rounded half up):

    50
    + max(0, 30 - distance_km)                    closer is better
    + min(25, total_donations * 2.5)              experience
    - 20 if last donation < 56 days ago           medically ineligible window
    -  5 if last donation > 365 days ago          staleness
    + 15 if CRITICAL and total_donations >= 5     experienced donors for emergencies
    + 10 for O-, + 5 for O+                       universal donors

Estimated response minutes: 20 + distance_km * 1.2 + jitter, jitter in
[0, JITTER_MAX_MINUTES] drawn from an injected RNG (no jitter by default).
"""
import math
import random
from datetime import date
from typing import Callable, Iterable, List, Optional

from .models import DonorCandidate, ProviderTag, ScoredMatch, UrgencyLevel

BASE_SCORE = 50.0
DISTANCE_CEILING_KM = 30.0
EXPERIENCE_CAP = 25.0
POINTS_PER_DONATION = 2.5
INELIGIBLE_WINDOW_DAYS = 56
STALE_AFTER_DAYS = 365
RECENT_DONATION_PENALTY = 20.0
STALE_DONATION_PENALTY = 5.0
CRITICAL_EXPERIENCE_MIN_DONATIONS = 5
CRITICAL_EXPERIENCE_BONUS = 15.0
UNIVERSAL_DONOR_BONUS = {"O-": 10.0, "O+": 5.0}

BASE_RESPONSE_MINUTES = 20.0
MINUTES_PER_KM = 1.2
JITTER_MAX_MINUTES = 10.0

HEURISTIC_REASON = "Rule-based algorithm"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


def ranking_sort_key(match: ScoredMatch):
    """Score descending, then distance ascending, then donor id."""
    distance = match.distance_km if match.distance_km is not None else math.inf
    return (-match.confidence_score, distance, match.donor_id)


def sort_matches(matches: Iterable[ScoredMatch]) -> List[ScoredMatch]:
    return sorted(matches, key=ranking_sort_key)


def days_since(last_donation: Optional[date], today: date) -> Optional[int]:
    if last_donation is None:
        return None
    return (today - last_donation).days


class HeuristicRanker:
    """Pure scorer; `today` and the jitter RNG are injectable for reproducibility."""

    def __init__(
        self,
        today: Optional[Callable[[], date]] = None,
        jitter_rng: Optional[random.Random] = None,
    ):
        self._today = today or date.today
        self._jitter_rng = jitter_rng

    def compute_score(self, candidate: DonorCandidate, urgency: UrgencyLevel) -> int:
        score = BASE_SCORE
        score += max(0.0, DISTANCE_CEILING_KM - candidate.distance_km)
        score += min(EXPERIENCE_CAP, candidate.total_donations * POINTS_PER_DONATION)

        elapsed = days_since(candidate.last_donation_date, self._today())
        if elapsed is not None:
            if elapsed < INELIGIBLE_WINDOW_DAYS:
                score -= RECENT_DONATION_PENALTY
            elif elapsed > STALE_AFTER_DAYS:
                score -= STALE_DONATION_PENALTY

        if urgency == UrgencyLevel.CRITICAL and candidate.total_donations >= CRITICAL_EXPERIENCE_MIN_DONATIONS:
            score += CRITICAL_EXPERIENCE_BONUS

        score += UNIVERSAL_DONOR_BONUS.get(candidate.blood_type, 0.0)
        return clamp_score(score)

    def estimate_response_minutes(self, candidate: DonorCandidate) -> int:
        minutes = BASE_RESPONSE_MINUTES + max(0.0, candidate.distance_km) * MINUTES_PER_KM
        if self._jitter_rng is not None:
            minutes += self._jitter_rng.uniform(0.0, JITTER_MAX_MINUTES)
        return max(0, round_half_up(minutes))

    def score(self, candidate: DonorCandidate, urgency: UrgencyLevel) -> ScoredMatch:
        return ScoredMatch(
            donor_id=candidate.donor_id,
            confidence_score=self.compute_score(candidate, urgency),
            estimated_response_minutes=self.estimate_response_minutes(candidate),
            reasoning=(HEURISTIC_REASON,),
            source=ProviderTag.HEURISTIC,
            distance_km=candidate.distance_km,
            total_donations=candidate.total_donations,
            contact_id=candidate.contact_id,
        )

    def rank(self, candidates: Iterable[DonorCandidate], urgency: UrgencyLevel) -> List[ScoredMatch]:
        return sort_matches(self.score(c, urgency) for c in candidates)


def legacy_compatibility_score(candidate: DonorCandidate, today: Optional[date] = None) -> int:
    """Fixed compatibility score used by the orchestrator's legacy path."""
    score = 100

    if candidate.distance_km > 20:
        score -= 20
    elif candidate.distance_km > 10:
        score -= 10
    elif candidate.distance_km > 5:
        score -= 5

    if candidate.total_donations >= 10:
        score += 10
    elif candidate.total_donations >= 5:
        score += 5

    elapsed = days_since(candidate.last_donation_date, today or date.today())
    if elapsed is not None:
        if elapsed < 56:
            score -= 30  # Less than 8 weeks
        elif elapsed < 84:
            score -= 10  # Less than 12 weeks

    return max(0, min(100, score))
