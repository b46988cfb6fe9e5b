"""
Call Record Domain Models
One persisted row per video-KYC call attempt (table: video_calls)
"""
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, Dict, Any, Iterable, FrozenSet, Union
from datetime import datetime
from enum import Enum


VIDEO_CALLS_TABLE = "video_calls"


class CallStatus(str, Enum):
    """Call record status"""
    WAITING_RESPONDER = "waiting_responder"      # Requester is waiting for a verifier
    RESPONDER_CONNECTED = "responder_connected"  # Verifier claimed the call
    IN_CALL = "in_call"                          # Media negotiation / live call
    COMPLETED = "completed"                      # Decision recorded
    REJECTED = "rejected"                        # Declined, cancelled or expired


class CallType(str, Enum):
    """Purpose of the call"""
    KYC_VERIFICATION = "kyc_verification"


class VerificationResult(str, Enum):
    """Outcome of a completed verification call"""
    APPROVED = "approved"
    REJECTED = "rejected"


LIVE_STATUSES: FrozenSet[CallStatus] = frozenset({
    CallStatus.WAITING_RESPONDER,
    CallStatus.RESPONDER_CONNECTED,
    CallStatus.IN_CALL,
})

TERMINAL_STATUSES: FrozenSet[CallStatus] = frozenset({
    CallStatus.COMPLETED,
    CallStatus.REJECTED,
})

# Older admin-specific deployments wrote these values
LEGACY_STATUS_ALIASES: Dict[str, CallStatus] = {
    "waiting_admin": CallStatus.WAITING_RESPONDER,
    "admin_connected": CallStatus.RESPONDER_CONNECTED,
}

LEGACY_COLUMN_ALIASES: Dict[str, str] = {
    "user_id": "requester_id",
    "admin_id": "responder_id",
    "admin_notes": "notes",
}

StatusSpec = Union[CallStatus, str, Iterable[Union[CallStatus, str]]]


def normalize_status(value: Union[CallStatus, str]) -> CallStatus:
    """
    Map a raw status value (including legacy aliases) onto CallStatus.

    Raises:
        ValueError: If the value is not a known status
    """
    if isinstance(value, CallStatus):
        return value
    if value in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[value]
    return CallStatus(value)


def normalize_statuses(expected: StatusSpec) -> FrozenSet[CallStatus]:
    """Accept a single status or a collection of statuses"""
    if isinstance(expected, (CallStatus, str)):
        return frozenset({normalize_status(expected)})
    return frozenset(normalize_status(s) for s in expected)


class CallRecord(BaseModel):
    """
    Shared, persisted record of one verification call attempt.

    Both orchestrators only ever hold a cached copy received through
    change notifications; the store owns durability.
    """
    id: str
    requester_id: str
    responder_id: Optional[str] = None
    status: CallStatus = CallStatus.WAITING_RESPONDER
    call_type: CallType = CallType.KYC_VERIFICATION
    verification_result: Optional[VerificationResult] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for legacy, canonical in LEGACY_COLUMN_ALIASES.items():
            if legacy in data and data.get(canonical) is None:
                data[canonical] = data.pop(legacy)
        if isinstance(data.get("status"), str):
            data["status"] = normalize_status(data["status"])
        return data

    @model_validator(mode="after")
    def _check_invariants(self) -> "CallRecord":
        if (self.verification_result is not None) != (self.status == CallStatus.COMPLETED):
            raise ValueError("verification_result must be set if and only if status is completed")
        if self.status in (CallStatus.RESPONDER_CONNECTED, CallStatus.IN_CALL, CallStatus.COMPLETED) \
                and not self.responder_id:
            raise ValueError(f"responder_id is required once status is {self.status.value}")
        return self

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CallRecord":
        """Build a record from a database row or realtime payload"""
        return cls.model_validate(row)

    def to_row(self) -> Dict[str, Any]:
        """Serialize for insertion (canonical column names)"""
        return self.model_dump(mode="json")
