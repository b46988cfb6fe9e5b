"""
Peer Connection Interface
Abstract base class for a single bidirectional audio/video media session
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet

from videokyc.domain.interfaces.media_source import LocalMediaStream


class PeerConnectionState(str, Enum):
    """Connection state of a media session"""
    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


# Any of these ends the call
TERMINAL_PEER_STATES: FrozenSet[PeerConnectionState] = frozenset({
    PeerConnectionState.DISCONNECTED,
    PeerConnectionState.FAILED,
    PeerConnectionState.CLOSED,
})


IceCandidateHandler = Callable[[Dict[str, Any]], None]
RemoteTrackHandler = Callable[[Any], None]
StateChangeHandler = Callable[[PeerConnectionState], None]


class PeerConnection(ABC):
    """
    Abstract base class for peer connections.

    Exactly one side of a call creates an offer; the side receiving an
    offer always answers. Session descriptions and candidates are opaque
    dictionaries in browser wire format:
        description: {"type": "offer" | "answer", "sdp": "..."}
        candidate:   {"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}
    """

    @abstractmethod
    def attach_local_media(self, stream: LocalMediaStream) -> None:
        """
        Add local audio and video tracks for transmission.

        Args:
            stream: Acquired local media
        """
        pass

    @abstractmethod
    async def create_offer(self) -> Dict[str, Any]:
        """
        Create an offer and apply it as the local description.

        Returns:
            Offer session description
        """
        pass

    @abstractmethod
    async def create_answer(self) -> Dict[str, Any]:
        """
        Create an answer to the applied remote offer and apply it locally.

        Returns:
            Answer session description
        """
        pass

    @abstractmethod
    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        """
        Apply the remote party's session description.

        Args:
            description: Offer or answer from the remote party
        """
        pass

    @abstractmethod
    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        """
        Feed a remote ICE candidate.

        Errors (malformed candidate, no remote description yet) are caught
        and discarded: a lost or rejected candidate is never fatal.

        Args:
            candidate: Candidate blob from the remote party
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Release media tracks and the underlying connection.

        Idempotent and safe on a connection that never negotiated.
        """
        pass

    @property
    @abstractmethod
    def state(self) -> PeerConnectionState:
        """Current connection state"""
        pass


class PeerConnectionFactory(ABC):
    """Creates one PeerConnection per call attempt"""

    @abstractmethod
    def create(
        self,
        on_local_ice_candidate: IceCandidateHandler,
        on_remote_track: RemoteTrackHandler,
        on_state_change: StateChangeHandler,
    ) -> PeerConnection:
        """
        Build a connection configured with STUN/TURN servers.

        Nothing is negotiated until media is attached and an offer or
        answer is produced.
        """
        pass
