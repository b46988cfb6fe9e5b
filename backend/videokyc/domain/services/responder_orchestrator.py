"""
Responder Orchestrator
Drives the verifier's side of a verification call.

idle -> notified -> accepted -> connecting -> reviewing -> decided -> idle
        notified -> rejected -> idle

The responder claims a waiting record, joins the signaling channel,
announces itself and is always the side that creates the offer.
"""
import logging
from typing import Any, Awaitable, Callable, List, Optional

from videokyc.domain.interfaces.call_record_store import (
    CallStoreError,
    CallSubscription,
    CallRecordNotFoundError,
    StaleCallRecordError,
    CANCELLED_BY_REQUESTER_NOTE,
)
from videokyc.domain.interfaces.media_source import MediaPermissionError
from videokyc.domain.interfaces.peer_connection import PeerConnectionState, TERMINAL_PEER_STATES
from videokyc.domain.interfaces.signaling_relay import SignalingError
from videokyc.domain.models.call_phase import ResponderPhase
from videokyc.domain.models.call_record import CallRecord, CallStatus, VerificationResult
from videokyc.domain.models.signal_message import CallRole
from videokyc.domain.services.call_orchestrator import CallOrchestrator

logger = logging.getLogger(__name__)

INCOMING_CALL = "incoming"
REFRESH_WAITING = "refresh_waiting"

DecisionListener = Callable[[CallRecord], Awaitable[Any]]


class ResponderOrchestrator(CallOrchestrator):
    """State machine for the verifier conducting a call"""

    role = CallRole.RESPONDER
    idle_phase = ResponderPhase.IDLE

    def __init__(self, *args, decision_listeners: Optional[List[DecisionListener]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.decision_listeners: List[DecisionListener] = list(decision_listeners or [])
        self.incoming: Optional[CallRecord] = None
        self._waiting_subscription: Optional[CallSubscription] = None

    def add_decision_listener(self, listener: DecisionListener) -> None:
        self.decision_listeners.append(listener)

    async def start(self) -> None:
        """
        Watch for waiting call records.

        Raises:
            CallStoreError: If the change feed cannot be opened
        """
        self._ensure_pump()
        if self._waiting_subscription is not None:
            return

        self._waiting_subscription = await self.store.subscribe_to_waiting(
            lambda record: self._post(None, INCOMING_CALL, record)
        )

        # Requests made before we started listening
        for record in await self.store.list_waiting_calls():
            self._post(None, INCOMING_CALL, record)

        logger.info(f"Responder {self.user_id} is watching for calls")

    async def accept(self) -> bool:
        """
        Claim the incoming call and start the media session.

        Returns:
            True if the call reached the connecting phase
        """
        async with self._lock:
            if self.phase != ResponderPhase.NOTIFIED or self.incoming is None:
                logger.warning(f"accept ignored while {self.phase.value}")
                return False

            incoming = self.incoming
            try:
                record = await self.store.update_status(
                    incoming.id,
                    CallStatus.RESPONDER_CONNECTED,
                    expected_status=CallStatus.WAITING_RESPONDER,
                    responder_id=self.user_id,
                )
            except (StaleCallRecordError, CallRecordNotFoundError):
                self.incoming = None
                self._set_phase(ResponderPhase.IDLE)
                self._notify("Call already taken", "Another verifier has already handled this call.", "destructive")
                return False
            except CallStoreError as e:
                self._notify("Could not accept call", e.message, "destructive")
                return False

            self.incoming = None
            self.call = record
            self._set_phase(ResponderPhase.ACCEPTED)

            try:
                stream = await self.media_source.acquire()
            except MediaPermissionError as e:
                await self._teardown()
                self._notify("Camera or microphone access was denied", e.message, "destructive")
                return False

            try:
                await self._subscribe_to_call(record.id)
                negotiator = self._new_negotiator(record.id)
                await negotiator.attach_media(stream)
                await negotiator.join()
                await negotiator.announce()

                self.call = await self.store.update_status(
                    record.id,
                    CallStatus.IN_CALL,
                    expected_status=CallStatus.RESPONDER_CONNECTED,
                )

                await negotiator.make_offer()
            except StaleCallRecordError:
                await self._teardown()
                self._notify("Call ended", "The user left before the call started.")
                return False
            except (CallStoreError, SignalingError) as e:
                await self._fail("Connection failed", e.message)
                return False

            self._set_phase(ResponderPhase.CONNECTING)
            negotiator.start_timer(self.negotiation_timeout_seconds)
            return True

    async def reject(self) -> bool:
        """Decline the incoming call without touching media"""
        async with self._lock:
            if self.phase != ResponderPhase.NOTIFIED or self.incoming is None:
                logger.warning(f"reject ignored while {self.phase.value}")
                return False

            incoming, self.incoming = self.incoming, None
            try:
                record = await self.store.update_status(
                    incoming.id,
                    CallStatus.REJECTED,
                    expected_status=CallStatus.WAITING_RESPONDER,
                    responder_id=self.user_id,
                )
            except (StaleCallRecordError, CallRecordNotFoundError):
                self._set_phase(ResponderPhase.IDLE)
                self._notify("Call already taken", "Another verifier has already handled this call.", "destructive")
                return False
            except CallStoreError as e:
                self.incoming = incoming
                self._notify("Could not reject call", e.message, "destructive")
                return False

            self._set_phase(ResponderPhase.REJECTED)
            await self._run_decision_listeners(record)
            self._set_phase(ResponderPhase.IDLE)
            return True

    async def submit_decision(self, result: VerificationResult, notes: Optional[str] = None) -> Optional[CallRecord]:
        """
        Record the verification outcome and end the call.

        Only allowed while reviewing.

        Returns:
            The completed record, or None if the decision was not recorded
        """
        async with self._lock:
            if self.phase != ResponderPhase.REVIEWING or self.call is None:
                logger.warning(f"submit_decision ignored while {self.phase.value}")
                return None

            try:
                record = await self.store.update_status(
                    self.call.id,
                    CallStatus.COMPLETED,
                    expected_status=CallStatus.IN_CALL,
                    verification_result=VerificationResult(result),
                    notes=notes,
                )
            except StaleCallRecordError:
                await self._teardown()
                self._notify("Call ended", "The call ended before the decision was recorded.", "destructive")
                return None
            except CallStoreError as e:
                self._notify("Could not record decision", e.message, "destructive")
                return None

            self.call = record
            self._set_phase(ResponderPhase.DECIDED)
            await self._run_decision_listeners(record)
            await self._teardown()

            self._notify(
                "Verification recorded",
                f"The user was {record.verification_result.value}.",
            )
            return record

    async def _run_decision_listeners(self, record: CallRecord) -> None:
        for listener in self.decision_listeners:
            try:
                await listener(record)
            except Exception as e:
                logger.error(
                    f"Decision listener failed for call {record.id}: {e}",
                    extra={"call_id": record.id},
                )

    async def _on_shutdown(self) -> None:
        subscription, self._waiting_subscription = self._waiting_subscription, None
        if subscription is not None:
            await subscription.close()
        self.incoming = None

    def _set_phase(self, phase: ResponderPhase) -> None:
        was_idle = self.phase == ResponderPhase.IDLE
        super()._set_phase(phase)
        # Requests that arrived while busy were dropped; look again once free
        if phase == ResponderPhase.IDLE and not was_idle and self._waiting_subscription is not None:
            self._post(None, REFRESH_WAITING, None)

    async def _on_other_event(self, kind: Any, payload: Any) -> None:
        if kind == INCOMING_CALL:
            self._offer_incoming(payload)
        elif kind == REFRESH_WAITING:
            await self._offer_waiting_calls()

    async def _offer_waiting_calls(self) -> None:
        if self.phase != ResponderPhase.IDLE or self._waiting_subscription is None:
            return
        try:
            waiting = await self.store.list_waiting_calls()
        except CallStoreError as e:
            logger.warning(f"Could not list waiting calls: {e.message}")
            return
        for record in waiting:
            if self._offer_incoming(record):
                return

    def _offer_incoming(self, record: CallRecord) -> bool:
        """Move to notified for a waiting record this responder may take"""
        if self.phase != ResponderPhase.IDLE or record.status != CallStatus.WAITING_RESPONDER:
            return False
        if record.requester_id == self.user_id:
            return False
        if record.responder_id and record.responder_id != self.user_id:
            return False

        self.incoming = record
        self._set_phase(ResponderPhase.NOTIFIED)
        self._notify("Incoming verification call", f"User {record.requester_id} is waiting for verification.")
        return True

    async def _on_record_changed(self, record: CallRecord) -> None:
        if record.status == CallStatus.REJECTED:
            if record.notes == CANCELLED_BY_REQUESTER_NOTE or self.phase != ResponderPhase.CONNECTING:
                await self._teardown()
                self._notify("Call ended", "The user left the call.")
            else:
                await self._fail(
                    "Connection failed",
                    "The call ended before the video connection was established.",
                    close_record=False,
                )
        elif record.status == CallStatus.COMPLETED and self.phase != ResponderPhase.DECIDED:
            await self._teardown()
            self._notify("Call ended", "This call was completed elsewhere.")

    async def _on_peer_state(self, state: PeerConnectionState) -> None:
        if state == PeerConnectionState.CONNECTED:
            if self.phase == ResponderPhase.CONNECTING:
                self.negotiator.cancel_timer()
                self._set_phase(ResponderPhase.REVIEWING)
        elif state in TERMINAL_PEER_STATES:
            if self.phase in (ResponderPhase.CONNECTING, ResponderPhase.REVIEWING):
                await self._fail("Connection lost", "The video connection was interrupted.")

    async def _on_timeout(self) -> None:
        if self.phase == ResponderPhase.CONNECTING:
            await self._fail("Connection failed", "The video connection timed out. Please try again.")
