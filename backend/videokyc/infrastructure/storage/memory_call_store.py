"""
In-Memory Call Record Store
Process-local store with synchronous change notifications.

Used when no Supabase project is configured (development) and as the
shared store in the call-flow test harness.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from videokyc.domain.interfaces.call_record_store import (
    CallRecordStore,
    CallSubscription,
    CallChangeHandler,
    ActiveCallExistsError,
    CallRecordNotFoundError,
    StaleCallRecordError,
    EXPIRED_CALL_NOTE,
)
from videokyc.domain.models.call_record import (
    CallRecord,
    CallStatus,
    CallType,
    VerificationResult,
    StatusSpec,
    LIVE_STATUSES,
    normalize_statuses,
)

logger = logging.getLogger(__name__)


class _MemorySubscription(CallSubscription):
    def __init__(self, store: "InMemoryCallRecordStore", subscription_id: int):
        self._store = store
        self._subscription_id = subscription_id
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._store._subscribers.pop(self._subscription_id, None)


class InMemoryCallRecordStore(CallRecordStore):
    """
    Call record store kept in a dict.

    Writes are serialized with an asyncio lock so the live-record check and
    conditional updates are atomic within the process.
    """

    def __init__(self):
        self._records: Dict[str, CallRecord] = {}
        self._subscribers: Dict[int, tuple] = {}
        self._next_subscription_id = 0
        self._lock = asyncio.Lock()

    async def create_call(
        self,
        requester_id: str,
        call_type: CallType = CallType.KYC_VERIFICATION,
    ) -> CallRecord:
        async with self._lock:
            if self._find_live(requester_id):
                raise ActiveCallExistsError()

            record = CallRecord(
                id=str(uuid.uuid4()),
                requester_id=requester_id,
                status=CallStatus.WAITING_RESPONDER,
                call_type=call_type,
            )
            self._records[record.id] = record

        logger.info(f"Created call {record.id} for requester {requester_id}", extra={"call_id": record.id})
        self._publish(record)
        return record

    async def update_status(
        self,
        call_id: str,
        new_status: CallStatus,
        *,
        expected_status: Optional[StatusSpec] = None,
        responder_id: Optional[str] = None,
        verification_result: Optional[VerificationResult] = None,
        notes: Optional[str] = None,
    ) -> CallRecord:
        new_status = CallStatus(new_status)

        if (verification_result is not None) != (new_status == CallStatus.COMPLETED):
            raise ValueError("verification_result must be set if and only if status is completed")

        async with self._lock:
            current = self._records.get(call_id)
            if current is None:
                raise CallRecordNotFoundError()

            if expected_status is not None and current.status not in normalize_statuses(expected_status):
                raise StaleCallRecordError()

            data = current.model_dump()
            data["status"] = new_status
            data["updated_at"] = datetime.utcnow()
            if new_status != CallStatus.COMPLETED:
                data["verification_result"] = None
            if responder_id is not None:
                data["responder_id"] = responder_id
            if verification_result is not None:
                data["verification_result"] = VerificationResult(verification_result)
            if notes is not None:
                data["notes"] = notes

            # Re-validate so invariant violations surface as ValueError
            updated = CallRecord.model_validate(data)
            self._records[call_id] = updated

        logger.info(
            f"Call {call_id}: {current.status.value} -> {updated.status.value}",
            extra={"call_id": call_id},
        )
        self._publish(updated)
        return updated

    async def get_call(self, call_id: str) -> Optional[CallRecord]:
        return self._records.get(call_id)

    async def get_live_call(self, requester_id: str) -> Optional[CallRecord]:
        return self._find_live(requester_id)

    async def list_waiting_calls(self) -> List[CallRecord]:
        waiting = [r for r in self._records.values() if r.status == CallStatus.WAITING_RESPONDER]
        return sorted(waiting, key=lambda r: r.created_at)

    async def subscribe_to_call(self, call_id: str, on_change: CallChangeHandler) -> CallSubscription:
        return self._subscribe(lambda r: r.id == call_id, on_change)

    async def subscribe_to_requester(
        self,
        requester_id: str,
        on_change: CallChangeHandler,
    ) -> CallSubscription:
        return self._subscribe(lambda r: r.requester_id == requester_id, on_change)

    async def subscribe_to_waiting(self, on_change: CallChangeHandler) -> CallSubscription:
        return self._subscribe(lambda r: r.status == CallStatus.WAITING_RESPONDER, on_change)

    async def expire_stale_calls(self, max_age_seconds: float) -> List[CallRecord]:
        cutoff = datetime.utcnow() - timedelta(seconds=max_age_seconds)
        stale_ids = [
            r.id for r in self._records.values()
            if r.status in LIVE_STATUSES and r.created_at < cutoff
        ]

        expired = []
        for call_id in stale_ids:
            try:
                record = await self.update_status(
                    call_id,
                    CallStatus.REJECTED,
                    expected_status=LIVE_STATUSES,
                    notes=EXPIRED_CALL_NOTE,
                )
            except StaleCallRecordError:
                continue
            expired.append(record)

        if expired:
            logger.warning(f"Expired {len(expired)} stale call(s)")
        return expired

    @property
    def name(self) -> str:
        return "memory"

    def _find_live(self, requester_id: str) -> Optional[CallRecord]:
        for record in self._records.values():
            if record.requester_id == requester_id and record.is_live:
                return record
        return None

    def _subscribe(
        self,
        predicate: Callable[[CallRecord], bool],
        on_change: CallChangeHandler,
    ) -> CallSubscription:
        self._next_subscription_id += 1
        subscription_id = self._next_subscription_id
        self._subscribers[subscription_id] = (predicate, on_change)
        return _MemorySubscription(self, subscription_id)

    def _publish(self, record: CallRecord) -> None:
        for predicate, handler in list(self._subscribers.values()):
            if not predicate(record):
                continue
            try:
                handler(record)
            except Exception as e:
                logger.error(f"Call change handler failed for {record.id}: {e}")
