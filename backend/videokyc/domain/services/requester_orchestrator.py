"""
Requester Orchestrator
Drives the user's side of a verification call.

idle -> requested -> waiting_for_responder -> connecting -> verifying
     -> ended | rejected -> idle

The requester never offers. It joins the signaling channel as soon as
its record exists so an early offer is not lost, acquires media when the
responder shows up (record claimed or role-joined, whichever comes first)
and answers the responder's offer.
"""
import logging
from typing import Any, Optional

from videokyc.domain.interfaces.call_record_store import (
    ActiveCallExistsError,
    CallStoreError,
    CANCELLED_BY_REQUESTER_NOTE,
    EXPIRED_CALL_NOTE,
)
from videokyc.domain.interfaces.media_source import MediaPermissionError
from videokyc.domain.interfaces.peer_connection import PeerConnectionState, TERMINAL_PEER_STATES
from videokyc.domain.interfaces.signaling_relay import SignalingError
from videokyc.domain.models.call_phase import RequesterPhase
from videokyc.domain.models.call_record import (
    CallRecord,
    CallStatus,
    CallType,
    VerificationResult,
)
from videokyc.domain.models.signal_message import CallRole, RoleJoinedSignal
from videokyc.domain.services.call_orchestrator import CallOrchestrator, RECORD_CHANGED

logger = logging.getLogger(__name__)


class RequesterOrchestrator(CallOrchestrator):
    """State machine for the user asking to be verified"""

    role = CallRole.REQUESTER
    idle_phase = RequesterPhase.IDLE

    async def request_call(self, call_type: CallType = CallType.KYC_VERIFICATION) -> Optional[CallRecord]:
        """
        Create a call record and wait for a responder.

        Returns:
            The created record, or None if the request could not be made
        """
        self._ensure_pump()

        async with self._lock:
            if self.phase != RequesterPhase.IDLE:
                logger.warning(f"request_call ignored while {self.phase.value}")
                return None

            self._set_phase(RequesterPhase.REQUESTED)

            try:
                record = await self.store.create_call(self.user_id, call_type)
            except ActiveCallExistsError as e:
                self._notify("Call already requested", e.message, "destructive")
                self._set_phase(RequesterPhase.IDLE)
                return None
            except CallStoreError as e:
                self._notify("Could not request call", e.message, "destructive")
                self._set_phase(RequesterPhase.IDLE)
                return None

            self.call = record
            try:
                await self._subscribe_to_call(record.id)
                await self._new_negotiator(record.id).join()
            except (CallStoreError, SignalingError) as e:
                await self._fail("Could not request call", e.message, RequesterPhase.ENDED)
                return None

            # Catch a claim that landed before the subscription was live
            latest = await self._refresh(record.id)
            if latest is not None and latest.status != record.status:
                self._post(self._attempt, RECORD_CHANGED, latest)

            self._set_phase(RequesterPhase.WAITING_FOR_RESPONDER)
            self._notify("Call requested", "A verifier will join shortly.")
            return record

    async def hang_up(self) -> None:
        """Cancel the request or leave the call"""
        async with self._lock:
            if self.phase == RequesterPhase.IDLE:
                return

            call_id = self.call_id
            if call_id is not None:
                await self._close_record(call_id, CANCELLED_BY_REQUESTER_NOTE)
            await self._teardown(RequesterPhase.ENDED)
            logger.info(f"Requester left call {call_id}", extra={"call_id": call_id})

    async def _refresh(self, call_id: str) -> Optional[CallRecord]:
        try:
            return await self.store.get_call(call_id)
        except CallStoreError as e:
            logger.warning(f"Could not refresh call {call_id}: {e.message}")
            return None

    async def _on_record_changed(self, record: CallRecord) -> None:
        if record.status in (CallStatus.RESPONDER_CONNECTED, CallStatus.IN_CALL):
            if self.phase == RequesterPhase.WAITING_FOR_RESPONDER:
                await self._start_media()
            return

        if record.status == CallStatus.COMPLETED:
            approved = record.verification_result == VerificationResult.APPROVED
            await self._teardown(RequesterPhase.ENDED)
            if approved:
                self._notify("Verification approved", "Your identity has been verified.")
            else:
                self._notify(
                    "Verification not approved",
                    record.notes or "Your verification was not approved.",
                    "destructive",
                )
            return

        if record.status == CallStatus.REJECTED:
            await self._on_rejected(record)

    async def _on_rejected(self, record: CallRecord) -> None:
        if self.phase == RequesterPhase.WAITING_FOR_RESPONDER:
            await self._teardown(RequesterPhase.REJECTED)
            if record.notes == EXPIRED_CALL_NOTE:
                self._notify("Call request expired", "No verifier was available. Please try again later.", "destructive")
            else:
                self._notify("Call declined", "Your call request was declined.", "destructive")
        elif self.phase == RequesterPhase.CONNECTING:
            await self._fail(
                "Connection failed",
                "The call ended before the video connection was established.",
                RequesterPhase.ENDED,
                close_record=False,
            )
        else:
            await self._teardown(RequesterPhase.ENDED)
            self._notify("Call ended", "The verifier ended the call.")

    async def _on_signal(self, message: Any) -> None:
        if isinstance(message, RoleJoinedSignal) and message.role == CallRole.RESPONDER:
            if self.phase == RequesterPhase.WAITING_FOR_RESPONDER:
                await self._start_media()

    async def _start_media(self) -> None:
        try:
            stream = await self.media_source.acquire()
        except MediaPermissionError as e:
            # The record is left alone; the responder's timer releases it
            await self._teardown(RequesterPhase.ENDED)
            self._notify("Camera or microphone access was denied", e.message, "destructive")
            return

        self._set_phase(RequesterPhase.CONNECTING)
        self.negotiator.start_timer(self.negotiation_timeout_seconds)
        try:
            await self.negotiator.attach_media(stream)
        except SignalingError as e:
            await self._fail("Connection failed", e.message, RequesterPhase.ENDED)

    async def _on_peer_state(self, state: PeerConnectionState) -> None:
        if state == PeerConnectionState.CONNECTED:
            if self.phase == RequesterPhase.CONNECTING:
                self.negotiator.cancel_timer()
                self._set_phase(RequesterPhase.VERIFYING)
        elif state in TERMINAL_PEER_STATES:
            if self.phase in (RequesterPhase.CONNECTING, RequesterPhase.VERIFYING):
                await self._fail("Connection lost", "The video connection was interrupted.", RequesterPhase.ENDED)

    async def _on_timeout(self) -> None:
        if self.phase == RequesterPhase.CONNECTING:
            await self._fail(
                "Connection failed",
                "The video connection timed out. Please try again.",
                RequesterPhase.ENDED,
            )
