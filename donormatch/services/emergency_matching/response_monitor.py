"""
Response Monitor - reacts to donor responses streamed from the match store.

The first acceptance for a request notifies the requester; later acceptances
are logged as additional donors and never produce a second notification.
Stream drops are retried with a fixed delay. Replayed records are filtered
so a resubscription never repeats an update. A background watch ends when
every donor has answered or after `max_watch_s`, and its per-request state
is released.
"""
import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional, Set, Tuple

from .errors import PersistenceError, StreamDisconnected
from .models import DonorResponse, MatchRecord
from .ports import MatchStore, RequesterNotifier

logger = logging.getLogger(__name__)


class ResponseMonitor:
    """Watches match records per request and notifies the requester once."""

    def __init__(
        self,
        match_store: MatchStore,
        requester_notifier: RequesterNotifier,
        on_acceptance: Optional[Callable[[str], Any]] = None,
        max_retries: int = 3,
        retry_delay_s: float = 2.0,
        max_watch_s: Optional[float] = None,
    ):
        self.match_store = match_store
        self.requester_notifier = requester_notifier
        self.on_acceptance = on_acceptance
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s
        self.max_watch_s = max_watch_s
        self._notified: Set[str] = set()
        self._accepted: Set[str] = set()
        self._additional: Dict[str, int] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def watch(self, request_id: str) -> AsyncIterator[MatchRecord]:
        """
        Yield each settled match record for a request once.

        Raises:
            StreamDisconnected: the stream dropped more than `max_retries` times in a row
        """
        seen: Set[Tuple[str, DonorResponse]] = set()
        retries = 0
        while True:
            try:
                async for record in self.match_store.subscribe(request_id):
                    key = (record.match_id, record.donor_response)
                    if key in seen:
                        continue
                    seen.add(key)
                    retries = 0
                    yield record
                return
            except StreamDisconnected as e:
                if retries >= self.max_retries:
                    logger.error(f"❌ Match stream for request {request_id} lost after {retries} retries: {e}")
                    raise
                retries += 1
                logger.warning(
                    f"⚠️ Match stream for request {request_id} dropped, "
                    f"resubscribing ({retries}/{self.max_retries})"
                )
                await asyncio.sleep(self.retry_delay_s)

    async def handle_update(
        self,
        record: MatchRecord,
        requester_id: Optional[str],
        patient_name: str,
    ) -> bool:
        """
        React to one settled record.

        Returns:
            True if the requester was notified by this call
        """
        request_id = record.request_id
        if record.donor_response == DonorResponse.DECLINED:
            logger.info(f"Donor {record.donor_id} declined request {request_id}")
            return False
        if record.donor_response != DonorResponse.ACCEPTED:
            return False

        if request_id not in self._accepted:
            self._accepted.add(request_id)
            await self._run_acceptance_hook(request_id)

        if request_id in self._notified:
            self._additional[request_id] = self._additional.get(request_id, 0) + 1
            logger.info(
                f"➕ Additional donor {record.donor_id} accepted request {request_id}; "
                f"requester already notified"
            )
            return False

        if not requester_id:
            logger.info(f"✅ Donor {record.donor_id} accepted request {request_id} (no requester to notify)")
            return False

        # Claimed before the await so concurrent updates cannot notify twice
        self._notified.add(request_id)
        message = f"A donor has accepted your blood request for {patient_name}"
        try:
            await self.requester_notifier.notify(requester_id, message, {
                "type": "donor_accepted",
                "request_id": request_id,
                "match_id": record.match_id,
                "donor_id": record.donor_id,
            })
        except Exception as e:
            self._notified.discard(request_id)
            logger.error(f"❌ Failed to notify requester {requester_id} for request {request_id}: {e}")
            return False

        logger.info(f"🎉 Requester {requester_id} notified: donor {record.donor_id} accepted request {request_id}")
        return True

    async def _run_acceptance_hook(self, request_id: str) -> None:
        if self.on_acceptance is None:
            return
        try:
            result = self.on_acceptance(request_id)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"⚠️ Acceptance hook failed for request {request_id}: {e}")

    def notified(self, request_id: str) -> bool:
        return request_id in self._notified

    def additional_acceptances(self, request_id: str) -> int:
        return self._additional.get(request_id, 0)

    def is_watching(self, request_id: str) -> bool:
        task = self._tasks.get(request_id)
        return task is not None and not task.done()

    def start(self, request_id: str, requester_id: Optional[str], patient_name: str) -> asyncio.Task:
        """Watch a request in the background until every match is settled or `max_watch_s` runs out."""
        task = self._tasks.get(request_id)
        if task is not None and not task.done():
            logger.warning(f"⚠️ Already watching request {request_id}")
            return task
        task = asyncio.create_task(self._run(request_id, requester_id, patient_name))
        self._tasks[request_id] = task
        logger.info(f"👀 Watching donor responses for request {request_id}")
        return task

    async def _run(self, request_id: str, requester_id: Optional[str], patient_name: str) -> None:
        try:
            await asyncio.wait_for(self._consume(request_id, requester_id, patient_name), self.max_watch_s)
        except asyncio.TimeoutError:
            logger.warning(f"⏱️ Stopped watching request {request_id} after {self.max_watch_s}s")
        except StreamDisconnected:
            pass
        finally:
            self._tasks.pop(request_id, None)
            self.release(request_id)

    async def _consume(self, request_id: str, requester_id: Optional[str], patient_name: str) -> None:
        async for record in self.watch(request_id):
            await self.handle_update(record, requester_id, patient_name)
            if await self._all_settled(request_id):
                logger.info(f"All donors responded for request {request_id}")
                return

    def release(self, request_id: str) -> None:
        """Drop the notify-once guard and counters kept for a request."""
        self._notified.discard(request_id)
        self._accepted.discard(request_id)
        self._additional.pop(request_id, None)

    @property
    def tracked(self) -> int:
        """Number of requests with guard state still held."""
        return len(self._notified | self._accepted | set(self._additional))

    async def _all_settled(self, request_id: str) -> bool:
        try:
            records = await self.match_store.get_records(request_id)
        except PersistenceError as e:
            logger.debug(f"Settled check skipped for request {request_id}: {e}")
            return False
        return bool(records) and all(r.is_settled for r in records)

    async def stop(self, request_id: str) -> None:
        task = self._tasks.pop(request_id, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def stop_all(self) -> None:
        for request_id in list(self._tasks):
            await self.stop(request_id)
        logger.info("🛑 Response monitor stopped")
