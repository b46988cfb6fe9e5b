"""
Supabase Call Record Store
Persists call records in the `video_calls` table and streams changes
through Supabase Realtime postgres_changes.

Expected table (public.video_calls):
    id uuid primary key default gen_random_uuid(),
    requester_id uuid not null,
    responder_id uuid,
    status text not null,
    call_type text not null,
    verification_result text,
    notes text,
    created_at timestamptz default now(),
    updated_at timestamptz default now()

A partial unique index on (requester_id) where status is live backs the
single-live-record check atomically; a violation maps to
ActiveCallExistsError.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import AsyncClient

from videokyc.domain.interfaces.call_record_store import (
    CallRecordStore,
    CallSubscription,
    CallChangeHandler,
    CallStoreError,
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
    LEGACY_STATUS_ALIASES,
    VIDEO_CALLS_TABLE,
    normalize_statuses,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def status_filter_values(expected: StatusSpec) -> List[str]:
    """Status values to match in a filter, including legacy aliases"""
    statuses = normalize_statuses(expected)
    values = sorted(s.value for s in statuses)
    values += sorted(alias for alias, status in LEGACY_STATUS_ALIASES.items() if status in statuses)
    return values


class SupabaseCallSubscription(CallSubscription):
    """Realtime channel subscribed to postgres_changes on video_calls."""

    def __init__(self, supabase: AsyncClient, channel):
        self._supabase = supabase
        self._channel = channel

    async def close(self) -> None:
        channel = self._channel
        if channel is None:
            return
        self._channel = None
        try:
            await self._supabase.remove_channel(channel)
        except Exception as e:
            logger.warning(f"Error removing call subscription channel: {e}")


class SupabaseCallRecordStore(CallRecordStore):
    """
    Call record store backed by Supabase.

    Conditional updates add a status filter to the UPDATE so the write only
    applies when the row is still in an expected status.
    """

    def __init__(self, supabase: AsyncClient, table: str = VIDEO_CALLS_TABLE):
        self.supabase = supabase
        self.table = table

    async def create_call(
        self,
        requester_id: str,
        call_type: CallType = CallType.KYC_VERIFICATION,
    ) -> CallRecord:
        if await self.get_live_call(requester_id):
            raise ActiveCallExistsError()

        row = {
            "requester_id": requester_id,
            "status": CallStatus.WAITING_RESPONDER.value,
            "call_type": CallType(call_type).value,
        }

        try:
            response = await self.supabase.table(self.table).insert(row).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise ActiveCallExistsError()
            logger.error(f"Failed to create call for requester {requester_id}: {e}")
            raise CallStoreError()
        except Exception as e:
            logger.error(f"Failed to create call for requester {requester_id}: {e}")
            raise CallStoreError()

        if not response.data:
            raise CallStoreError()

        record = CallRecord.from_row(response.data[0])
        logger.info(f"Created call {record.id} for requester {requester_id}", extra={"call_id": record.id})
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

        payload: Dict[str, Any] = {
            "status": new_status.value,
            "updated_at": datetime.utcnow().isoformat(),
        }
        if new_status != CallStatus.COMPLETED:
            payload["verification_result"] = None
        if responder_id is not None:
            payload["responder_id"] = responder_id
        if verification_result is not None:
            payload["verification_result"] = VerificationResult(verification_result).value
        if notes is not None:
            payload["notes"] = notes

        query = self.supabase.table(self.table).update(payload).eq("id", call_id)
        if expected_status is not None:
            query = query.in_("status", status_filter_values(expected_status))

        try:
            response = await query.execute()
        except Exception as e:
            logger.error(f"Failed to update call {call_id} to {new_status.value}: {e}")
            raise CallStoreError()

        if not response.data:
            # Nothing matched: either the row is gone or its status moved on
            if await self.get_call(call_id) is None:
                raise CallRecordNotFoundError()
            raise StaleCallRecordError()

        record = CallRecord.from_row(response.data[0])
        logger.info(f"Call {call_id} -> {record.status.value}", extra={"call_id": call_id})
        return record

    async def get_call(self, call_id: str) -> Optional[CallRecord]:
        try:
            response = await self.supabase.table(self.table).select("*").eq("id", call_id).limit(1).execute()
        except Exception as e:
            logger.error(f"Failed to fetch call {call_id}: {e}")
            raise CallStoreError()

        if not response.data:
            return None
        return CallRecord.from_row(response.data[0])

    async def get_live_call(self, requester_id: str) -> Optional[CallRecord]:
        try:
            response = await self.supabase.table(self.table).select("*").eq(
                "requester_id", requester_id
            ).in_(
                "status", status_filter_values(LIVE_STATUSES)
            ).order("created_at", desc=True).limit(1).execute()
        except Exception as e:
            logger.error(f"Failed to look up live call for {requester_id}: {e}")
            raise CallStoreError()

        if not response.data:
            return None
        return CallRecord.from_row(response.data[0])

    async def list_waiting_calls(self) -> List[CallRecord]:
        try:
            response = await self.supabase.table(self.table).select("*").in_(
                "status", status_filter_values(CallStatus.WAITING_RESPONDER)
            ).order("created_at").execute()
        except Exception as e:
            logger.error(f"Failed to list waiting calls: {e}")
            raise CallStoreError()

        return [CallRecord.from_row(row) for row in response.data or []]

    async def subscribe_to_call(self, call_id: str, on_change: CallChangeHandler) -> CallSubscription:
        return await self._subscribe(f"video_calls_call_{call_id}", f"id=eq.{call_id}", on_change)

    async def subscribe_to_requester(
        self,
        requester_id: str,
        on_change: CallChangeHandler,
    ) -> CallSubscription:
        return await self._subscribe(
            f"video_calls_requester_{requester_id}",
            f"requester_id=eq.{requester_id}",
            on_change,
        )

    async def subscribe_to_waiting(self, on_change: CallChangeHandler) -> CallSubscription:
        values = ",".join(status_filter_values(CallStatus.WAITING_RESPONDER))
        return await self._subscribe("video_calls_waiting", f"status=in.({values})", on_change)

    async def expire_stale_calls(self, max_age_seconds: float) -> List[CallRecord]:
        cutoff = (datetime.utcnow() - timedelta(seconds=max_age_seconds)).isoformat()
        payload = {
            "status": CallStatus.REJECTED.value,
            "notes": EXPIRED_CALL_NOTE,
            "updated_at": datetime.utcnow().isoformat(),
        }

        try:
            response = await self.supabase.table(self.table).update(payload).in_(
                "status", status_filter_values(LIVE_STATUSES)
            ).lt("created_at", cutoff).execute()
        except Exception as e:
            logger.error(f"Failed to expire stale calls: {e}")
            raise CallStoreError()

        expired = [CallRecord.from_row(row) for row in response.data or []]
        if expired:
            logger.warning(f"Expired {len(expired)} stale call(s)")
        return expired

    @property
    def name(self) -> str:
        return "supabase"

    async def _subscribe(self, topic: str, row_filter: str, on_change: CallChangeHandler) -> CallSubscription:
        # Unique topic per subscription so two subscribers never share a channel
        channel = self.supabase.channel(f"{topic}_{uuid.uuid4().hex[:8]}")

        def _on_postgres_change(payload: Dict[str, Any]) -> None:
            row = (payload.get("data") or {}).get("record")
            if not row:
                return
            try:
                record = CallRecord.from_row(row)
            except ValueError as e:
                logger.warning(f"Ignoring malformed call change on {topic}: {e}")
                return
            on_change(record)

        channel.on_postgres_changes(
            "*",
            _on_postgres_change,
            table=self.table,
            schema="public",
            filter=row_filter,
        )

        try:
            await channel.subscribe()
        except Exception as e:
            logger.error(f"Failed to subscribe to {topic}: {e}")
            raise CallStoreError()

        return SupabaseCallSubscription(self.supabase, channel)
