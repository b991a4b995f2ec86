"""
Notification Escalator - tiered, urgency-dependent donor notification waves.

Wave 1 is dispatched immediately and awaited. A delayed wave (critical requests
only) runs as a cancellable task; right before it fires the escalator reads the
match store and skips the wave if a Wave 1 donor has already accepted.
Settled escalations are kept for inspection up to `retain_settled`, oldest
dropped first.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Deque, Dict, List, Optional, Sequence, Tuple

from .errors import NotificationDeliveryError, PersistenceError
from .models import (
    DonorResponse,
    EscalationContext,
    NotificationWave,
    ScoredMatch,
    UrgencyLevel,
    WavePriority,
)
from .ports import MatchStore, NotificationDelivery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WaveRule:
    """Slice [start, stop) of the ranked list sent as one wave."""
    name: str
    priority: WavePriority
    start: int
    stop: int
    delayed: bool = False


WAVE_POLICY: Dict[UrgencyLevel, Tuple[WaveRule, ...]] = {
    UrgencyLevel.CRITICAL: (
        WaveRule("immediate_top_5", WavePriority.CRITICAL, 0, 5),
        WaveRule("delayed_next_10", WavePriority.URGENT, 5, 15, delayed=True),
    ),
    UrgencyLevel.HIGH: (
        WaveRule("immediate_top_10", WavePriority.HIGH, 0, 10),
    ),
    UrgencyLevel.NORMAL: (
        WaveRule("immediate_top_8", WavePriority.STANDARD, 0, 8),
    ),
}


class EscalationState(str, Enum):
    CREATED = "created"
    WAVE_1_DISPATCHED = "wave_1_dispatched"
    WAVE_2_DISPATCHED = "wave_2_dispatched"
    SETTLED = "settled"


def compose_notification(
    match: ScoredMatch,
    wave: NotificationWave,
    context: EscalationContext,
) -> Tuple[str, str, Dict[str, Any]]:
    """Build (title, message, metadata) for one donor in a wave."""
    if wave.priority == WavePriority.STANDARD:
        title = "Blood Donation Request"
        message = f"{context.blood_type} blood needed for {context.patient_name}. You're a compatible match!"
        notification_type = "blood_request"
    else:
        distance = f"{match.distance_km:.1f}" if match.distance_km is not None else "Unknown"
        title = f"🚨 {wave.priority.value} Blood Request"
        message = (
            f"URGENT: {context.blood_type} blood needed for {context.patient_name}. "
            f"{context.units_needed} units required. Distance: {distance}km"
        )
        notification_type = "emergency_blood_request"

    channels = ["in_app", "push", "sms"] if wave.priority == WavePriority.CRITICAL else ["in_app"]
    metadata = {
        "type": notification_type,
        "request_id": context.request_id,
        "urgency_level": context.urgency.value,
        "priority": wave.priority.value,
        "wave": wave.tier,
        "estimated_response_time": match.estimated_response_minutes,
        "confidence_score": match.confidence_score,
        "channels": channels,
        "contact_id": match.contact_id,
    }
    return title, message, metadata


class ScheduledDispatch:
    """
    Cancellable handle for a wave waiting on its delay.

    Once the wave starts sending (`mark_firing`) `cancel` is a no-op and the
    wave runs to completion.
    """

    def __init__(self, wave: NotificationWave, action: Awaitable[Any]):
        self.wave = wave
        self.firing = False
        self._task = asyncio.create_task(action)

    def mark_firing(self) -> None:
        self.firing = True

    def cancel(self) -> bool:
        if self.firing or self._task.done():
            return False
        return self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass


@dataclass
class _Escalation:
    context: EscalationContext
    state: EscalationState = EscalationState.CREATED
    history: List[EscalationState] = field(default_factory=lambda: [EscalationState.CREATED])
    dispatched: List[NotificationWave] = field(default_factory=list)
    first_wave_donors: List[str] = field(default_factory=list)
    pending: Optional[ScheduledDispatch] = None
    delivery_failures: int = 0

    def advance(self, state: EscalationState) -> None:
        self.state = state
        self.history.append(state)


class NotificationEscalator:
    """Schedules notification waves and dispatches them through NotificationDelivery."""

    def __init__(
        self,
        delivery: NotificationDelivery,
        match_store: Optional[MatchStore] = None,
        wave_two_delay_s: float = 120,
        policy: Optional[Dict[UrgencyLevel, Tuple[WaveRule, ...]]] = None,
        retain_settled: int = 200,
    ):
        self.delivery = delivery
        self.match_store = match_store
        self.wave_two_delay_s = wave_two_delay_s
        self.policy = policy or WAVE_POLICY
        self.retain_settled = retain_settled
        self._escalations: Dict[str, _Escalation] = {}
        self._settled: Deque[Tuple[str, _Escalation]] = deque()

    def build_waves(
        self,
        ranked: Sequence[ScoredMatch],
        urgency: UrgencyLevel,
        now: Optional[datetime] = None,
    ) -> List[NotificationWave]:
        now = now or datetime.now(timezone.utc)
        waves = []
        for rule in self.policy[urgency]:
            matches = tuple(ranked[rule.start:rule.stop])
            if not matches:
                continue
            delay = self.wave_two_delay_s if rule.delayed else 0
            waves.append(NotificationWave(
                name=rule.name,
                tier=len(waves) + 1,
                priority=rule.priority,
                matches=matches,
                delay_seconds=delay,
                fire_at=now + timedelta(seconds=delay),
            ))
        return waves

    async def schedule(
        self,
        ranked: Sequence[ScoredMatch],
        urgency: UrgencyLevel,
        context: EscalationContext,
    ) -> List[NotificationWave]:
        """
        Build the waves for a request, dispatch the immediate one and arm the delayed one.

        Returns:
            Every wave built for the request (dispatched or pending)
        """
        previous = self._escalations.get(context.request_id)
        if previous is not None and previous.pending is not None and previous.pending.cancel():
            logger.warning(f"⚠️ Request {context.request_id} scheduled again, earlier delayed wave cancelled")
            self._settle(previous)

        escalation = _Escalation(context=context)
        self._escalations[context.request_id] = escalation

        waves = self.build_waves(ranked, urgency)
        if not waves:
            logger.info(f"No donors to notify for request {context.request_id}")
            self._settle(escalation)
            return []

        for wave in waves:
            if wave.is_immediate:
                await self._dispatch(escalation, wave)
                if wave.tier == 1:
                    escalation.first_wave_donors = wave.donor_ids
                    escalation.advance(EscalationState.WAVE_1_DISPATCHED)
            else:
                escalation.pending = ScheduledDispatch(wave, self._fire_delayed(escalation, wave))
                logger.info(
                    f"⏱️ Wave {wave.tier} ({len(wave.matches)} donors) armed for request "
                    f"{context.request_id} in {wave.delay_seconds}s"
                )

        if escalation.pending is None:
            self._settle(escalation)
        return waves

    async def _fire_delayed(self, escalation: _Escalation, wave: NotificationWave) -> None:
        request_id = escalation.context.request_id
        await asyncio.sleep(wave.delay_seconds)

        if await self._first_wave_accepted(escalation):
            logger.info(f"✅ Wave 1 donor accepted for request {request_id}, skipping wave {wave.tier}")
            self._settle(escalation)
            return

        if escalation.pending is not None:
            escalation.pending.mark_firing()
        await self._dispatch(escalation, wave)
        escalation.advance(EscalationState.WAVE_2_DISPATCHED)
        self._settle(escalation)

    async def _first_wave_accepted(self, escalation: _Escalation) -> bool:
        if self.match_store is None:
            return False
        try:
            records = await self.match_store.get_records(escalation.context.request_id)
        except PersistenceError as e:
            logger.warning(f"⚠️ Could not check responses before delayed wave, firing anyway: {e}")
            return False
        except Exception as e:
            logger.error(f"❌ Unreadable match records before delayed wave, firing anyway: {e}")
            return False
        donors = set(escalation.first_wave_donors)
        return any(r.donor_id in donors and r.donor_response == DonorResponse.ACCEPTED for r in records)

    async def _dispatch(self, escalation: _Escalation, wave: NotificationWave) -> int:
        logger.info(
            f"🚨 Dispatching wave {wave.tier} [{wave.priority.value}] to {len(wave.matches)} donors "
            f"for request {escalation.context.request_id}"
        )
        results = await asyncio.gather(
            *(self._send(match, wave, escalation.context) for match in wave.matches),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            logger.warning(f"⚠️ {failure}")
        escalation.delivery_failures += len(failures)
        escalation.dispatched.append(wave)
        return len(results) - len(failures)

    async def _send(self, match: ScoredMatch, wave: NotificationWave, context: EscalationContext) -> None:
        title, message, metadata = compose_notification(match, wave, context)
        try:
            await self.delivery.send(match.donor_id, title, message, metadata)
        except NotificationDeliveryError:
            raise
        except Exception as e:
            raise NotificationDeliveryError(match.donor_id, str(e)) from e

    async def notify_basic_matches(self, matches: Sequence[ScoredMatch], context: EscalationContext) -> int:
        """Single untiered notification round used by the legacy matching path."""
        async def send(match: ScoredMatch) -> None:
            distance = f"{match.distance_km:.1f}" if match.distance_km is not None else "Unknown"
            try:
                await self.delivery.send(
                    match.donor_id,
                    "Blood Request Match Found",
                    f"A {context.blood_type} blood request matches your profile. Distance: {distance}km",
                    {
                        "type": "blood_request",
                        "request_id": context.request_id,
                        "urgency_level": context.urgency.value,
                        "contact_id": match.contact_id,
                    },
                )
            except Exception as e:
                raise NotificationDeliveryError(match.donor_id, str(e)) from e

        results = await asyncio.gather(*(send(m) for m in matches), return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            logger.warning(f"⚠️ {failure}")
        return len(results) - len(failures)

    def cancel_pending(self, request_id: str) -> bool:
        """Abort the delayed wave for a request. Returns True if one was cancelled."""
        escalation = self._escalations.get(request_id)
        if escalation is None or escalation.pending is None:
            return False
        if not escalation.pending.cancel():
            return False
        logger.info(f"🛑 Delayed wave cancelled for request {request_id}")
        self._settle(escalation)
        return True

    def _settle(self, escalation: _Escalation) -> None:
        escalation.advance(EscalationState.SETTLED)
        self._settled.append((escalation.context.request_id, escalation))
        while len(self._settled) > self.retain_settled:
            request_id, oldest = self._settled.popleft()
            if self._escalations.get(request_id) is oldest:
                del self._escalations[request_id]

    @property
    def tracked(self) -> int:
        """Number of escalations currently held (active plus retained settled)."""
        return len(self._escalations)

    def dispatched_waves(self, request_id: str) -> List[NotificationWave]:
        escalation = self._escalations.get(request_id)
        return list(escalation.dispatched) if escalation else []

    def state(self, request_id: str) -> Optional[EscalationState]:
        escalation = self._escalations.get(request_id)
        return escalation.state if escalation else None

    def history(self, request_id: str) -> List[EscalationState]:
        escalation = self._escalations.get(request_id)
        return list(escalation.history) if escalation else []

    def delivery_failures(self, request_id: str) -> int:
        escalation = self._escalations.get(request_id)
        return escalation.delivery_failures if escalation else 0

    async def wait_pending(self, request_id: str) -> None:
        """Wait for the delayed wave of a request to fire, be skipped or be cancelled."""
        escalation = self._escalations.get(request_id)
        if escalation and escalation.pending:
            await escalation.pending.wait()

    async def shutdown(self) -> None:
        """Cancel every pending delayed wave."""
        pending = [e.pending for e in self._escalations.values() if e.pending and not e.pending.done]
        for handle in pending:
            handle.cancel()
        for handle in pending:
            await handle.wait()
        if pending:
            logger.info(f"🛑 Cancelled {len(pending)} pending waves")
