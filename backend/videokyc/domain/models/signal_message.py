"""
Signal Message Schemas
Negotiation messages relayed between the two parties of one call.

Session descriptions and ICE candidates are opaque pass-through blobs;
they are never inspected or mutated here.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Literal, Dict, Any, Union
from enum import Enum


class SignalType(str, Enum):
    """All supported signal message types"""
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    ROLE_JOINED = "role-joined"


class CallRole(str, Enum):
    """The two human roles in a verification call"""
    REQUESTER = "requester"
    RESPONDER = "responder"


class _Signal(BaseModel):
    model_config = ConfigDict(extra="allow", use_enum_values=True)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize for the relay: {"type": ..., ...payload}"""
        return self.model_dump(mode="json")


class OfferSignal(_Signal):
    """Session description offer (sent by the responder)"""
    type: Literal["offer"] = "offer"
    offer: Dict[str, Any] = Field(..., description="Opaque session description")


class AnswerSignal(_Signal):
    """Session description answer (sent by the requester)"""
    type: Literal["answer"] = "answer"
    answer: Dict[str, Any] = Field(..., description="Opaque session description")


class IceCandidateSignal(_Signal):
    """Trickled ICE candidate"""
    type: Literal["ice-candidate"] = "ice-candidate"
    candidate: Dict[str, Any] = Field(..., description="Opaque candidate blob")


class RoleJoinedSignal(_Signal):
    """A party has joined the signaling channel and is ready to negotiate"""
    type: Literal["role-joined"] = "role-joined"
    role: CallRole = CallRole.RESPONDER


SignalMessage = Union[
    OfferSignal,
    AnswerSignal,
    IceCandidateSignal,
    RoleJoinedSignal,
]


def parse_signal(data: Dict[str, Any]) -> SignalMessage:
    """
    Parse an incoming relay payload based on its type field

    Args:
        data: Raw message dictionary

    Returns:
        Parsed signal message

    Raises:
        ValueError: If the message type is unknown or the payload is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"Signal payload must be an object, got {type(data).__name__}")

    message_type = data.get("type")

    # Older deployments announced the verifier with a dedicated tag
    if message_type == "admin-joined":
        return RoleJoinedSignal(role=CallRole.RESPONDER)

    message_map = {
        SignalType.OFFER.value: OfferSignal,
        SignalType.ANSWER.value: AnswerSignal,
        SignalType.ICE_CANDIDATE.value: IceCandidateSignal,
        SignalType.ROLE_JOINED.value: RoleJoinedSignal,
    }

    message_class = message_map.get(message_type)
    if not message_class:
        raise ValueError(f"Unknown signal type: {message_type}")

    return message_class(**data)
