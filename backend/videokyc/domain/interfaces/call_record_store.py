"""
Call Record Store Interface
Abstract base class for persisted call records and their change feed
"""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from videokyc.domain.models.call_record import (
    CallRecord,
    CallStatus,
    CallType,
    VerificationResult,
    StatusSpec,
)


CallChangeHandler = Callable[[CallRecord], None]

EXPIRED_CALL_NOTE = "Call request expired before it was answered"
CANCELLED_BY_REQUESTER_NOTE = "Cancelled by requester"
CALL_FAILED_NOTE = "Call ended before verification completed"


class CallStoreError(Exception):
    """Raised when the call record backend cannot be reached or rejects a write."""
    def __init__(self, message: str = "Could not update the verification call. Please try again."):
        self.message = message
        super().__init__(self.message)


class ActiveCallExistsError(CallStoreError):
    """Raised when a requester already has a live call record."""
    def __init__(self, message: str = "You already have a verification call in progress."):
        super().__init__(message)


class CallRecordNotFoundError(CallStoreError):
    """Raised when a call record does not exist."""
    def __init__(self, message: str = "Verification call not found."):
        super().__init__(message)


class StaleCallRecordError(CallStoreError):
    """Raised when a conditional update finds an unexpected current status."""
    def __init__(self, message: str = "This call was already handled by someone else."):
        super().__init__(message)


class CallSubscription(ABC):
    """Handle for an active change-notification subscription"""

    @abstractmethod
    async def close(self) -> None:
        """Stop receiving notifications. Idempotent."""
        pass


class CallRecordStore(ABC):
    """
    Abstract base class for call record stores.

    The store exclusively owns durability. Subscribers receive full
    records after every insert or update matching their filter.
    """

    @abstractmethod
    async def create_call(
        self,
        requester_id: str,
        call_type: CallType = CallType.KYC_VERIFICATION,
    ) -> CallRecord:
        """
        Insert a new record in `waiting_responder`.

        Args:
            requester_id: Identity of the party requesting verification
            call_type: Purpose tag

        Returns:
            The created record including its id

        Raises:
            ActiveCallExistsError: If the requester already has a live record
            CallStoreError: On backend failure
        """
        pass

    @abstractmethod
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
        """
        Transition a record's status, writing only the given fields.

        Args:
            call_id: Record to update
            new_status: Target status
            expected_status: When given, the write only applies if the current
                status is one of these (compare-and-swap); otherwise the write
                is last-write-wins
            responder_id: Assign the responder
            verification_result: Outcome, only valid with `completed`
            notes: Responder notes

        Returns:
            The updated record

        Raises:
            ValueError: If the write would break a record invariant
            CallRecordNotFoundError: If the record does not exist
            StaleCallRecordError: If the current status does not match
            CallStoreError: On backend failure
        """
        pass

    @abstractmethod
    async def get_call(self, call_id: str) -> Optional[CallRecord]:
        """Fetch a record by id"""
        pass

    @abstractmethod
    async def get_live_call(self, requester_id: str) -> Optional[CallRecord]:
        """Fetch the requester's live record, if any"""
        pass

    @abstractmethod
    async def list_waiting_calls(self) -> List[CallRecord]:
        """Records waiting for a responder, oldest first"""
        pass

    @abstractmethod
    async def subscribe_to_call(self, call_id: str, on_change: CallChangeHandler) -> CallSubscription:
        """Stream every update to one record"""
        pass

    @abstractmethod
    async def subscribe_to_requester(
        self,
        requester_id: str,
        on_change: CallChangeHandler,
    ) -> CallSubscription:
        """Stream every insert/update to the requester's records"""
        pass

    @abstractmethod
    async def subscribe_to_waiting(self, on_change: CallChangeHandler) -> CallSubscription:
        """Stream records entering or updated in `waiting_responder`"""
        pass

    @abstractmethod
    async def expire_stale_calls(self, max_age_seconds: float) -> List[CallRecord]:
        """
        Move live records older than `max_age_seconds` to `rejected`.

        Returns:
            The expired records
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Store provider name (e.g., "supabase", "memory")"""
        pass
