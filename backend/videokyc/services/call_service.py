"""
Call Service
Record-level call operations for HTTP clients.

Browser clients run their own media session; the API only moves the
shared record through the same conditional transitions the orchestrators
use, and runs decision listeners after a verdict.
"""
import logging
from typing import Any, Awaitable, Callable, List, Optional

from videokyc.domain.interfaces.call_record_store import (
    CallRecordStore,
    CallRecordNotFoundError,
    StaleCallRecordError,
    CANCELLED_BY_REQUESTER_NOTE,
)
from videokyc.domain.models.call_record import (
    CallRecord,
    CallStatus,
    CallType,
    LIVE_STATUSES,
    VerificationResult,
)

logger = logging.getLogger(__name__)

DecisionListener = Callable[[CallRecord], Awaitable[Any]]


class CallAccessError(Exception):
    """Raised when a user acts on a call they are not part of."""
    def __init__(self, message: str = "You are not a participant in this call."):
        self.message = message
        super().__init__(self.message)


class CallService:
    """Thin wrapper over a CallRecordStore with participant checks"""

    def __init__(self, store: CallRecordStore, decision_listeners: Optional[List[DecisionListener]] = None):
        self.store = store
        self.decision_listeners: List[DecisionListener] = list(decision_listeners or [])

    def add_decision_listener(self, listener: DecisionListener) -> None:
        self.decision_listeners.append(listener)

    async def request_call(self, requester_id: str) -> CallRecord:
        return await self.store.create_call(requester_id, CallType.KYC_VERIFICATION)

    async def get_active_call(self, requester_id: str) -> Optional[CallRecord]:
        return await self.store.get_live_call(requester_id)

    async def list_waiting_calls(self) -> List[CallRecord]:
        return await self.store.list_waiting_calls()

    async def get_call(self, call_id: str, user_id: str, is_admin: bool = False) -> CallRecord:
        """
        Raises:
            CallRecordNotFoundError: Unknown call id
            CallAccessError: Caller is neither a participant nor an admin
        """
        record = await self.store.get_call(call_id)
        if record is None:
            raise CallRecordNotFoundError()
        if not is_admin and user_id not in (record.requester_id, record.responder_id):
            raise CallAccessError()
        return record

    async def accept(self, call_id: str, responder_id: str) -> CallRecord:
        record = await self._get(call_id)
        if record.requester_id == responder_id:
            raise CallAccessError("You cannot verify your own call.")
        return await self.store.update_status(
            call_id,
            CallStatus.RESPONDER_CONNECTED,
            expected_status=CallStatus.WAITING_RESPONDER,
            responder_id=responder_id,
        )

    async def start(self, call_id: str, responder_id: str) -> CallRecord:
        """Move a claimed call into in_call once media is negotiating"""
        record = await self._get(call_id)
        if record.responder_id != responder_id:
            raise CallAccessError()
        return await self.store.update_status(
            call_id,
            CallStatus.IN_CALL,
            expected_status=CallStatus.RESPONDER_CONNECTED,
        )

    async def reject(self, call_id: str, responder_id: str, notes: Optional[str] = None) -> CallRecord:
        record = await self.store.update_status(
            call_id,
            CallStatus.REJECTED,
            expected_status=CallStatus.WAITING_RESPONDER,
            responder_id=responder_id,
            notes=notes,
        )
        await self._run_decision_listeners(record)
        return record

    async def cancel(self, call_id: str, requester_id: str) -> CallRecord:
        record = await self._get(call_id)
        if record.requester_id != requester_id:
            raise CallAccessError()
        return await self.store.update_status(
            call_id,
            CallStatus.REJECTED,
            expected_status=LIVE_STATUSES,
            notes=CANCELLED_BY_REQUESTER_NOTE,
        )

    async def decide(
        self,
        call_id: str,
        responder_id: str,
        result: VerificationResult,
        notes: Optional[str] = None,
    ) -> CallRecord:
        """
        Record a verdict on a call that is in progress.

        Raises:
            StaleCallRecordError: The call is not in_call
            CallAccessError: The caller is not the call's responder
        """
        current = await self._get(call_id)
        if current.status != CallStatus.IN_CALL:
            raise StaleCallRecordError("A decision can only be recorded during the call.")
        if current.responder_id != responder_id:
            raise CallAccessError()

        record = await self.store.update_status(
            call_id,
            CallStatus.COMPLETED,
            expected_status=CallStatus.IN_CALL,
            verification_result=VerificationResult(result),
            notes=notes,
        )
        await self._run_decision_listeners(record)
        return record

    async def _get(self, call_id: str) -> CallRecord:
        record = await self.store.get_call(call_id)
        if record is None:
            raise CallRecordNotFoundError()
        return record

    async def _run_decision_listeners(self, record: CallRecord) -> None:
        for listener in self.decision_listeners:
            try:
                await listener(record)
            except Exception as e:
                logger.error(f"Decision listener failed for call {record.id}: {e}", extra={"call_id": record.id})
