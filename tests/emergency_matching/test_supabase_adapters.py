"""
Tests for the Supabase-backed candidate search and notification adapters.
"""
import json
from datetime import date

import httpx
import pytest

from donormatch.services.emergency_matching.candidate_source import SupabaseCandidateSource
from donormatch.services.emergency_matching.delivery import (
    SupabaseNotificationDelivery,
    SupabaseRequesterNotifier,
)
from donormatch.services.emergency_matching.errors import CandidateFetchFailure, NotificationDeliveryError
from donormatch.services.emergency_matching.models import UrgencyLevel
from donormatch.services.supabase_service import SupabaseError, SupabaseService


def _service(handler):
    return SupabaseService(url="https://db.test", key="anon", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_candidate_source_calls_rpc_and_maps_rows():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[
            {"donor_id": "d1", "user_id": "u1", "blood_type": "O-", "distance_km": 2.4,
             "total_donations": 7, "last_donation_date": "2024-01-15", "availability_status": "available"},
            {"donor_id": "d2", "user_id": "u2", "blood_type": "O-", "distance_km": None,
             "total_donations": None, "last_donation_date": None, "availability_status": "busy"},
            {"user_id": "broken-row"},
        ])

    source = SupabaseCandidateSource(_service(handler))
    candidates = await source.find("O-", UrgencyLevel.CRITICAL, 40.7, -74.0, 50)

    assert seen["path"] == "/rest/v1/rpc/find_compatible_donors"
    assert seen["body"] == {"request_blood_type": "O-", "hospital_lat": 40.7, "hospital_lon": -74.0,
                            "max_distance_km": 50}
    assert [c.donor_id for c in candidates] == ["d1", "d2"]
    assert candidates[0].last_donation_date == date(2024, 1, 15)
    assert candidates[0].contact_id == "u1"
    assert candidates[1].distance_km == 0.0
    assert candidates[1].is_available is False


@pytest.mark.asyncio
async def test_candidate_source_failure():
    source = SupabaseCandidateSource(_service(lambda request: httpx.Response(500)))
    with pytest.raises(CandidateFetchFailure):
        await source.find("A+", UrgencyLevel.NORMAL, 0.0, 0.0, 50)


@pytest.mark.asyncio
async def test_unconfigured_service_raises():
    service = SupabaseService(url="", key="")
    assert not service.enabled
    with pytest.raises(SupabaseError):
        await service.select("matches")


@pytest.mark.asyncio
async def test_delivery_writes_notification_row_for_contact():
    rows = []

    def handler(request: httpx.Request) -> httpx.Response:
        rows.extend(json.loads(request.content))
        return httpx.Response(201, json=rows)

    delivery = SupabaseNotificationDelivery(_service(handler))
    await delivery.send("d1", "🚨 CRITICAL Blood Request", "URGENT: ...", {
        "type": "emergency_blood_request", "request_id": "req-1", "contact_id": "u1", "wave": 1,
    })

    assert rows[0]["user_id"] == "u1"
    assert rows[0]["type"] == "emergency_blood_request"
    assert rows[0]["data"] == {"request_id": "req-1", "wave": 1}


@pytest.mark.asyncio
async def test_delivery_failure_names_the_donor():
    delivery = SupabaseNotificationDelivery(_service(lambda request: httpx.Response(503)))
    with pytest.raises(NotificationDeliveryError) as exc:
        await delivery.send("d9", "t", "m", {})
    assert exc.value.donor_id == "d9"


@pytest.mark.asyncio
async def test_requester_notifier_title():
    rows = []

    def handler(request: httpx.Request) -> httpx.Response:
        rows.extend(json.loads(request.content))
        return httpx.Response(201, json=rows)

    await SupabaseRequesterNotifier(_service(handler)).notify("requester-1", "A donor has accepted", {"a": 1})

    assert rows[0]["title"] == "🎉 Donor Found!"
    assert rows[0]["type"] == "donor_accepted"


@pytest.mark.asyncio
async def test_log_run_never_raises():
    service = _service(lambda request: httpx.Response(500))
    await service.log_run({"request_id": "req-1", "matches_found": 0})
