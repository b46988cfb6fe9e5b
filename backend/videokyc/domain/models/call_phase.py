"""
Call Phase Models
Single tagged phase per role; every UI flag is derived from it.
"""
from pydantic import BaseModel
from enum import Enum
from typing import Dict, Union


class RequesterPhase(str, Enum):
    """Requester orchestration phase"""
    IDLE = "idle"
    REQUESTED = "requested"                          # Creating the call record
    WAITING_FOR_RESPONDER = "waiting_for_responder"  # Record live, nobody joined yet
    CONNECTING = "connecting"                        # Peer negotiation in progress
    VERIFYING = "verifying"                          # Media flowing, verifier reviewing
    ENDED = "ended"                                  # Transient, resets to idle
    REJECTED = "rejected"                            # Transient, resets to idle


class ResponderPhase(str, Enum):
    """Responder orchestration phase"""
    IDLE = "idle"
    NOTIFIED = "notified"        # Incoming request awaiting accept/reject
    ACCEPTED = "accepted"        # Record claimed, acquiring media
    REJECTED = "rejected"        # Transient, resets to idle
    CONNECTING = "connecting"    # Offer sent, waiting for the peer
    REVIEWING = "reviewing"      # Media flowing, reviewing documents
    DECIDED = "decided"          # Transient, resets to idle


CallPhase = Union[RequesterPhase, ResponderPhase]


REQUESTER_BANNERS: Dict[RequesterPhase, str] = {
    RequesterPhase.IDLE: "",
    RequesterPhase.REQUESTED: "Requesting a verification call...",
    RequesterPhase.WAITING_FOR_RESPONDER: "Waiting for a verifier. Please keep this window open.",
    RequesterPhase.CONNECTING: "Verifier joined. Connecting...",
    RequesterPhase.VERIFYING: "In call",
    RequesterPhase.ENDED: "Call ended",
    RequesterPhase.REJECTED: "Your call request was declined",
}

RESPONDER_BANNERS: Dict[ResponderPhase, str] = {
    ResponderPhase.IDLE: "",
    ResponderPhase.NOTIFIED: "Incoming verification call",
    ResponderPhase.ACCEPTED: "Starting camera...",
    ResponderPhase.REJECTED: "Call declined",
    ResponderPhase.CONNECTING: "Waiting for the user to connect...",
    ResponderPhase.REVIEWING: "User connected. In call",
    ResponderPhase.DECIDED: "Verification recorded",
}


class CallView(BaseModel):
    """Read-only UI projection of a phase"""
    phase: str
    banner: str
    is_in_call: bool
    show_video: bool
    can_request: bool
    can_decide: bool

    @classmethod
    def for_phase(cls, phase: CallPhase) -> "CallView":
        if isinstance(phase, RequesterPhase):
            banner = REQUESTER_BANNERS[phase]
            in_call = phase == RequesterPhase.VERIFYING
            show_video = phase in (RequesterPhase.CONNECTING, RequesterPhase.VERIFYING)
            can_request = phase == RequesterPhase.IDLE
            can_decide = False
        else:
            banner = RESPONDER_BANNERS[phase]
            in_call = phase == ResponderPhase.REVIEWING
            show_video = phase in (
                ResponderPhase.ACCEPTED,
                ResponderPhase.CONNECTING,
                ResponderPhase.REVIEWING,
            )
            can_request = False
            can_decide = phase == ResponderPhase.REVIEWING

        return cls(
            phase=phase.value,
            banner=banner,
            is_in_call=in_call,
            show_video=show_video,
            can_request=can_request,
            can_decide=can_decide,
        )
