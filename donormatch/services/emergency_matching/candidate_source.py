"""
Candidate Source - compatible donor search through the `find_compatible_donors` RPC.

The geodistance query itself lives in the database; this adapter only maps rows.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..supabase_service import SupabaseError, SupabaseService
from .errors import CandidateFetchFailure
from .models import DonorCandidate, UrgencyLevel

logger = logging.getLogger(__name__)


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        logger.debug(f"Unparseable last_donation_date {value!r}")
        return None


def candidate_from_row(row: Dict[str, Any]) -> DonorCandidate:
    return DonorCandidate(
        donor_id=str(row["donor_id"]),
        blood_type=row.get("blood_type", ""),
        distance_km=float(row.get("distance_km") or 0.0),
        total_donations=int(row.get("total_donations") or 0),
        last_donation_date=_parse_date(row.get("last_donation_date")),
        is_available=row.get("availability_status", "available") == "available",
        contact_id=row.get("user_id"),
    )


class SupabaseCandidateSource:
    """CandidateSource backed by a Supabase RPC."""

    FUNCTION = "find_compatible_donors"

    def __init__(self, service: SupabaseService):
        self.service = service

    async def find(
        self,
        blood_type: str,
        urgency: UrgencyLevel,
        lat: float,
        lon: float,
        radius_km: float,
    ) -> List[DonorCandidate]:
        try:
            rows = await self.service.rpc(self.FUNCTION, {
                "request_blood_type": blood_type,
                "hospital_lat": lat,
                "hospital_lon": lon,
                "max_distance_km": radius_km,
            })
        except SupabaseError as e:
            raise CandidateFetchFailure(f"Donor search failed: {e}") from e

        candidates = []
        for row in rows or []:
            try:
                candidates.append(candidate_from_row(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"⚠️ Skipping malformed donor row: {e}")
        logger.info(f"🔍 Found {len(candidates)} compatible donors for {blood_type} ({urgency.value})")
        return candidates
