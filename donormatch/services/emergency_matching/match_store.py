"""
Match Store - persistence of ranked matches and donor responses.

The store is the only writer of donor-response state. `record_response` is the
single path that moves a match from pending to accepted/declined, exactly once.
Subscribers receive settled records as an async stream; on (re)subscribe the
already-settled records are replayed first, so consumers must be idempotent.

Two implementations:
- InMemoryMatchStore: queue-backed, used in development and tests
- SupabaseMatchStore: `matches` table via PostgREST, updates by polling
"""

import asyncio
import dataclasses
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List

from ..supabase_service import SupabaseError, SupabaseService
from .errors import MatchNotFound, PersistenceError, ResponseAlreadyRecorded, StreamDisconnected
from .models import DonorResponse, MatchRecord, ScoredMatch

logger = logging.getLogger(__name__)

_DISCONNECT = object()
_CLOSE = object()


def _snapshot(record: MatchRecord) -> MatchRecord:
    return dataclasses.replace(record)


class InMemoryMatchStore:
    """
    In-memory match store.

    Features:
    - asyncio Lock around response transitions
    - Per-request subscriber queues
    - `disconnect()` / `close()` to end live streams
    """

    def __init__(self):
        self._records: Dict[str, MatchRecord] = {}
        self._by_request: Dict[str, List[str]] = {}
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()

    async def write(self, request_id: str, matches: List[ScoredMatch]) -> List[MatchRecord]:
        async with self._lock:
            ids = self._by_request.setdefault(request_id, [])
            existing_donors = {self._records[i].donor_id for i in ids}
            written = []
            for match in matches:
                if match.donor_id in existing_donors:
                    continue
                record = MatchRecord.from_match(request_id, match)
                self._records[record.match_id] = record
                ids.append(record.match_id)
                existing_donors.add(match.donor_id)
                written.append(_snapshot(record))
        logger.debug(f"Stored {len(written)} match records for request {request_id}")
        return written

    async def get_records(self, request_id: str) -> List[MatchRecord]:
        return [_snapshot(self._records[i]) for i in self._by_request.get(request_id, [])]

    async def get_record(self, match_id: str) -> MatchRecord:
        record = self._records.get(match_id)
        if record is None:
            raise MatchNotFound(f"Match {match_id} not found")
        return _snapshot(record)

    async def record_response(self, match_id: str, response: DonorResponse) -> MatchRecord:
        if response == DonorResponse.PENDING:
            raise ValueError("Donor response must be accepted or declined")

        async with self._lock:
            record = self._records.get(match_id)
            if record is None:
                raise MatchNotFound(f"Match {match_id} not found")
            if record.is_settled:
                logger.warning(
                    f"⚠️ Ignoring {response.value} for match {match_id}: already {record.donor_response.value}"
                )
                raise ResponseAlreadyRecorded(match_id, record.donor_response.value)
            record.donor_response = response
            record.responded_at = datetime.now(timezone.utc)
            update = _snapshot(record)

        await self._publish(update.request_id, update)
        return update

    async def _publish(self, request_id: str, item) -> None:
        for queue in list(self._subscribers.get(request_id, [])):
            await queue.put(item)

    async def subscribe(self, request_id: str) -> AsyncIterator[MatchRecord]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(request_id, []).append(queue)
        try:
            for record in await self.get_records(request_id):
                if record.is_settled:
                    yield record
            while True:
                item = await queue.get()
                if item is _DISCONNECT:
                    raise StreamDisconnected(f"Match stream for request {request_id} disconnected")
                if item is _CLOSE:
                    return
                yield item
        finally:
            subscribers = self._subscribers.get(request_id, [])
            if queue in subscribers:
                subscribers.remove(queue)

    def subscriber_count(self, request_id: str) -> int:
        return len(self._subscribers.get(request_id, []))

    async def disconnect(self, request_id: str) -> None:
        """Drop every live stream for the request (subscribers see StreamDisconnected)."""
        await self._publish(request_id, _DISCONNECT)

    async def close(self, request_id: str) -> None:
        """End every live stream for the request normally."""
        await self._publish(request_id, _CLOSE)


class SupabaseMatchStore:
    """Match store backed by the Supabase `matches` table."""

    TABLE = "matches"

    def __init__(self, service: SupabaseService, poll_interval_s: float = 5.0):
        self.service = service
        self.poll_interval_s = poll_interval_s

    async def write(self, request_id: str, matches: List[ScoredMatch]) -> List[MatchRecord]:
        records = [MatchRecord.from_match(request_id, m) for m in matches]
        if not records:
            return []
        try:
            rows = await self.service.insert(self.TABLE, [r.to_row() for r in records])
        except SupabaseError as e:
            raise PersistenceError(f"Failed to create match records for {request_id}: {e}") from e
        return [MatchRecord.from_row(row) for row in rows] if rows else records

    async def get_records(self, request_id: str) -> List[MatchRecord]:
        try:
            rows = await self.service.select(self.TABLE, {"request_id": request_id}, order="compatibility_score.desc")
        except SupabaseError as e:
            raise PersistenceError(f"Failed to load match records for {request_id}: {e}") from e
        return [MatchRecord.from_row(row) for row in rows]

    async def record_response(self, match_id: str, response: DonorResponse) -> MatchRecord:
        if response == DonorResponse.PENDING:
            raise ValueError("Donor response must be accepted or declined")

        data = {
            "donor_response": response.value,
            "responded_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            # Filtering on pending makes the transition conditional in the database
            rows = await self.service.update(
                self.TABLE, data, {"id": match_id, "donor_response": DonorResponse.PENDING.value}
            )
            if rows:
                return MatchRecord.from_row(rows[0])
            existing = await self.service.select(self.TABLE, {"id": match_id}, limit=1)
        except SupabaseError as e:
            raise PersistenceError(f"Failed to record response for match {match_id}: {e}") from e

        if not existing:
            raise MatchNotFound(f"Match {match_id} not found")
        current = existing[0].get("donor_response", "unknown")
        logger.warning(f"⚠️ Ignoring {response.value} for match {match_id}: already {current}")
        raise ResponseAlreadyRecorded(match_id, current)

    async def subscribe(self, request_id: str) -> AsyncIterator[MatchRecord]:
        """Poll for settled records; ends once every record for the request is settled."""
        last_seen: Dict[str, DonorResponse] = {}
        while True:
            try:
                records = await self.get_records(request_id)
            except PersistenceError as e:
                raise StreamDisconnected(str(e)) from e

            for record in records:
                if record.is_settled and last_seen.get(record.match_id) != record.donor_response:
                    last_seen[record.match_id] = record.donor_response
                    yield record

            if records and all(r.is_settled for r in records):
                return
            await asyncio.sleep(self.poll_interval_s)
