"""
Call Orchestrator Base
Event pump, phase bookkeeping and teardown shared by both call roles.

Every external event (store change, relay message, peer state, timer)
is put on one asyncio.Queue and consumed by a single pump task. User
actions and pump events run under one asyncio.Lock, so an orchestrator
never handles two things at once.

Each call attempt gets a generation number. Teardown bumps it, so events
still queued for a finished attempt are discarded by the pump.
"""
import asyncio
import logging
from typing import Any, Callable, Optional

from videokyc.domain.interfaces.call_notifier import CallNotifier, LoggingNotifier
from videokyc.domain.interfaces.call_record_store import (
    CallRecordStore,
    CallStoreError,
    CALL_FAILED_NOTE,
    CallSubscription,
)
from videokyc.domain.interfaces.media_source import MediaSource
from videokyc.domain.interfaces.peer_connection import PeerConnectionFactory
from videokyc.domain.interfaces.signaling_relay import SignalingRelay
from videokyc.domain.models.call_phase import CallPhase, CallView
from videokyc.domain.models.call_record import CallRecord, CallStatus, LIVE_STATUSES
from videokyc.domain.models.signal_message import CallRole
from videokyc.domain.services.negotiation import CallNegotiator, NegotiationEvent

logger = logging.getLogger(__name__)

RECORD_CHANGED = "record"

PhaseListener = Callable[[CallView], None]


class CallOrchestrator:
    """Base class for the requester and responder state machines"""

    role: CallRole
    idle_phase: CallPhase

    def __init__(
        self,
        user_id: str,
        store: CallRecordStore,
        relay: SignalingRelay,
        peer_factory: PeerConnectionFactory,
        media_source: MediaSource,
        notifier: Optional[CallNotifier] = None,
        negotiation_timeout_seconds: float = 30.0,
        on_phase_change: Optional[PhaseListener] = None,
    ):
        self.user_id = user_id
        self.store = store
        self.relay = relay
        self.peer_factory = peer_factory
        self.media_source = media_source
        self.notifier = notifier or LoggingNotifier()
        self.negotiation_timeout_seconds = negotiation_timeout_seconds
        self.on_phase_change = on_phase_change

        self._phase: CallPhase = self.idle_phase
        self.call: Optional[CallRecord] = None
        self.negotiator: Optional[CallNegotiator] = None
        self._call_subscription: Optional[CallSubscription] = None

        self._attempt = 0
        self._queue: asyncio.Queue = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._pump_task: Optional[asyncio.Task] = None

    @property
    def phase(self) -> CallPhase:
        return self._phase

    @property
    def view(self) -> CallView:
        return CallView.for_phase(self._phase)

    @property
    def banner(self) -> str:
        return self.view.banner

    @property
    def call_id(self) -> Optional[str]:
        return self.call.id if self.call else None

    async def shutdown(self) -> None:
        """Tear down any call in progress and stop the event pump"""
        async with self._lock:
            await self._teardown()
            await self._on_shutdown()

        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None

    async def _on_shutdown(self) -> None:
        pass

    def _ensure_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump())

    def _post(self, attempt: Optional[int], kind: Any, payload: Any) -> None:
        self._queue.put_nowait((attempt, kind, payload))

    def _poster(self) -> Callable[[Any, Any], None]:
        """Post callback bound to the current attempt"""
        attempt = self._attempt
        return lambda kind, payload: self._post(attempt, kind, payload)

    async def _pump(self) -> None:
        while True:
            attempt, kind, payload = await self._queue.get()
            if attempt is not None and attempt != self._attempt:
                continue
            async with self._lock:
                if attempt is not None and attempt != self._attempt:
                    continue
                try:
                    await self._handle_event(kind, payload)
                except Exception as e:
                    logger.error(f"{self.role.value} failed handling {kind} for call {self.call_id}: {e}")
                    if self.call is not None:
                        await self._fail("Call failed", "Something went wrong with the call. Please try again.")

    async def _handle_event(self, kind: Any, payload: Any) -> None:
        if kind == RECORD_CHANGED:
            if self.call is not None and payload.id == self.call.id:
                self.call = payload
                await self._on_record_changed(payload)
        elif kind == NegotiationEvent.SIGNAL:
            if self.negotiator is not None:
                message = await self.negotiator.handle_signal(payload)
                if message is not None:
                    await self._on_signal(message)
        elif kind == NegotiationEvent.PEER_STATE:
            await self._on_peer_state(payload)
        elif kind == NegotiationEvent.TIMEOUT:
            await self._on_timeout()
        else:
            await self._on_other_event(kind, payload)

    async def _on_record_changed(self, record: CallRecord) -> None:
        pass

    async def _on_signal(self, message: Any) -> None:
        pass

    async def _on_peer_state(self, state: Any) -> None:
        pass

    async def _on_timeout(self) -> None:
        pass

    async def _on_other_event(self, kind: Any, payload: Any) -> None:
        logger.debug(f"Ignoring {kind} event")

    def _set_phase(self, phase: CallPhase) -> None:
        if phase == self._phase:
            return
        logger.info(
            f"{self.role.value} {self._phase.value} -> {phase.value}",
            extra={"call_id": self.call_id},
        )
        self._phase = phase
        if self.on_phase_change is not None:
            try:
                self.on_phase_change(self.view)
            except Exception as e:
                logger.error(f"Phase listener failed: {e}")

    def _notify(self, title: str, description: str, variant: str = "default") -> None:
        self.notifier.notify(title, description, variant)

    def _new_negotiator(self, call_id: str) -> CallNegotiator:
        self.negotiator = CallNegotiator(
            call_id=call_id,
            role=self.role,
            relay=self.relay,
            peer_factory=self.peer_factory,
            post=self._poster(),
        )
        return self.negotiator

    async def _subscribe_to_call(self, call_id: str) -> None:
        post = self._poster()
        self._call_subscription = await self.store.subscribe_to_call(
            call_id,
            lambda record: post(RECORD_CHANGED, record),
        )

    async def _teardown(self, final_phase: Optional[CallPhase] = None) -> None:
        """
        Release everything held for the current attempt and return to idle.

        Safe to call repeatedly; later calls find nothing left to release.
        """
        self._attempt += 1

        negotiator, self.negotiator = self.negotiator, None
        if negotiator is not None:
            await negotiator.close()

        subscription, self._call_subscription = self._call_subscription, None
        if subscription is not None:
            await subscription.close()

        self.call = None
        if final_phase is not None:
            self._set_phase(final_phase)
        self._set_phase(self.idle_phase)

    async def _close_record(self, call_id: str, note: str) -> None:
        """Best-effort: mark a still-live record rejected"""
        try:
            await self.store.update_status(
                call_id,
                CallStatus.REJECTED,
                expected_status=LIVE_STATUSES,
                notes=note,
            )
        except CallStoreError as e:
            logger.warning(f"Could not close call {call_id}: {e.message}", extra={"call_id": call_id})

    async def _fail(
        self,
        title: str,
        description: str,
        final_phase: Optional[CallPhase] = None,
        close_record: bool = True,
    ) -> None:
        """Surface an error, tear down and release a still-live record"""
        call_id = self.call_id
        self._notify(title, description, "destructive")
        await self._teardown(final_phase)
        if close_record and call_id is not None:
            await self._close_record(call_id, CALL_FAILED_NOTE)
