"""
aiortc Peer Connection
PeerConnection implementation on top of aiortc's RTCPeerConnection.

aiortc gathers every ICE candidate while applying the local description
and embeds them in the SDP instead of trickling them. Browser peers expect
trickled candidates, so after each local description is applied the
`a=candidate` lines are re-emitted through `on_local_ice_candidate`.
Duplicates are harmless: extra candidates are never fatal.
"""
import logging
from typing import Any, Dict, List, Optional

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from videokyc.core.config import DEFAULT_ICE_SERVERS
from videokyc.domain.interfaces.media_source import LocalMediaStream
from videokyc.domain.interfaces.peer_connection import (
    PeerConnection,
    PeerConnectionFactory,
    PeerConnectionState,
    IceCandidateHandler,
    RemoteTrackHandler,
    StateChangeHandler,
)

logger = logging.getLogger(__name__)


def build_configuration(ice_servers: Optional[List[Dict[str, Any]]] = None) -> RTCConfiguration:
    """Translate browser-style iceServers entries into an RTCConfiguration"""
    servers = []
    if ice_servers is None:
        ice_servers = DEFAULT_ICE_SERVERS
    for server in ice_servers:
        servers.append(RTCIceServer(
            urls=server["urls"],
            username=server.get("username"),
            credential=server.get("credential"),
        ))
    return RTCConfiguration(iceServers=servers)


def extract_candidates(sdp: str) -> List[Dict[str, Any]]:
    """
    Pull `a=candidate` lines out of an SDP as browser-style candidate dicts.

    Each candidate carries the mid and m-line index of the media section
    it was found in.
    """
    candidates = []
    mline_index = -1
    mid: Optional[str] = None

    for raw_line in sdp.splitlines():
        line = raw_line.strip()
        if line.startswith("m="):
            mline_index += 1
            mid = None
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:"):]
        elif line.startswith("a=candidate:") and mline_index >= 0:
            candidates.append({
                "candidate": line[len("a="):],
                "sdpMid": mid,
                "sdpMLineIndex": mline_index,
            })

    return candidates


def parse_candidate(blob: Dict[str, Any]):
    """Browser candidate dict -> aiortc RTCIceCandidate"""
    text = blob.get("candidate") or ""
    if text.startswith("candidate:"):
        text = text[len("candidate:"):]
    if not text:
        raise ValueError("Empty ICE candidate")

    candidate = candidate_from_sdp(text)
    candidate.sdpMid = blob.get("sdpMid")
    candidate.sdpMLineIndex = blob.get("sdpMLineIndex")
    return candidate


class AiortcPeerConnection(PeerConnection):
    """One aiortc media session for one call attempt."""

    def __init__(
        self,
        on_local_ice_candidate: IceCandidateHandler,
        on_remote_track: RemoteTrackHandler,
        on_state_change: StateChangeHandler,
        ice_servers: Optional[List[Dict[str, Any]]] = None,
    ):
        self._on_local_ice_candidate = on_local_ice_candidate
        self._on_remote_track = on_remote_track
        self._on_state_change = on_state_change
        self._closed = False
        self._state = PeerConnectionState.NEW

        self._pc = RTCPeerConnection(configuration=build_configuration(ice_servers))
        self._pc.on("connectionstatechange", self._handle_connection_state_change)
        self._pc.on("track", self._handle_track)

    def attach_local_media(self, stream: LocalMediaStream) -> None:
        for track in stream.tracks:
            self._pc.addTrack(track)
        logger.debug(f"Attached {len(stream.tracks)} local track(s)")

    async def create_offer(self) -> Dict[str, Any]:
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        return self._publish_local_description()

    async def create_answer(self) -> Dict[str, Any]:
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return self._publish_local_description()

    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            await self._pc.addIceCandidate(parse_candidate(candidate))
        except Exception as e:
            logger.debug(f"Discarding ICE candidate: {e}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pc.close()
        self._set_state(PeerConnectionState.CLOSED)

    @property
    def state(self) -> PeerConnectionState:
        return self._state

    def _publish_local_description(self) -> Dict[str, Any]:
        local = self._pc.localDescription
        for candidate in extract_candidates(local.sdp):
            self._on_local_ice_candidate(candidate)
        return {"type": local.type, "sdp": local.sdp}

    def _handle_connection_state_change(self) -> None:
        try:
            state = PeerConnectionState(self._pc.connectionState)
        except ValueError:
            logger.warning(f"Unknown connection state: {self._pc.connectionState}")
            return
        self._set_state(state)

    def _handle_track(self, track) -> None:
        logger.info(f"Remote {track.kind} track received")
        self._on_remote_track(track)

    def _set_state(self, state: PeerConnectionState) -> None:
        if state == self._state:
            return
        logger.info(f"Peer connection {self._state.value} -> {state.value}")
        self._state = state
        self._on_state_change(state)


class AiortcPeerConnectionFactory(PeerConnectionFactory):
    """Creates AiortcPeerConnection instances with configured ICE servers."""

    def __init__(self, ice_servers: Optional[List[Dict[str, Any]]] = None):
        self.ice_servers = DEFAULT_ICE_SERVERS if ice_servers is None else ice_servers

    def create(
        self,
        on_local_ice_candidate: IceCandidateHandler,
        on_remote_track: RemoteTrackHandler,
        on_state_change: StateChangeHandler,
    ) -> PeerConnection:
        return AiortcPeerConnection(
            on_local_ice_candidate=on_local_ice_candidate,
            on_remote_track=on_remote_track,
            on_state_change=on_state_change,
            ice_servers=self.ice_servers,
        )
