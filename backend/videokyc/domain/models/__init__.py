"""Domain models"""

# Call record
from .call_record import (
    CallRecord,
    CallStatus,
    CallType,
    VerificationResult,
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    VIDEO_CALLS_TABLE,
    normalize_status,
    normalize_statuses,
)

# Signal messages
from .signal_message import (
    SignalType,
    CallRole,
    OfferSignal,
    AnswerSignal,
    IceCandidateSignal,
    RoleJoinedSignal,
    SignalMessage,
    parse_signal,
)

# Orchestration phases
from .call_phase import (
    RequesterPhase,
    ResponderPhase,
    CallPhase,
    CallView,
)

__all__ = [
    "CallRecord",
    "CallStatus",
    "CallType",
    "VerificationResult",
    "LIVE_STATUSES",
    "TERMINAL_STATUSES",
    "VIDEO_CALLS_TABLE",
    "normalize_status",
    "normalize_statuses",
    "SignalType",
    "CallRole",
    "OfferSignal",
    "AnswerSignal",
    "IceCandidateSignal",
    "RoleJoinedSignal",
    "SignalMessage",
    "parse_signal",
    "RequesterPhase",
    "ResponderPhase",
    "CallPhase",
    "CallView",
]
