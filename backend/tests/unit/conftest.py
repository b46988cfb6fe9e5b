"""
Shared fixtures for call-flow tests.

FakePeerNetwork stands in for WebRTC: two fake peers "connect" once each
has both descriptions and at least one ICE candidate from the other.
LossyRelay drops chosen signal types to simulate a lossy channel.
"""
import asyncio
import itertools
import os
from typing import Any, Callable, Dict, List, Optional

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

from videokyc.domain.interfaces.call_notifier import RecordingNotifier
from videokyc.domain.interfaces.media_source import (
    LocalMediaStream,
    MediaPermissionError,
    MediaSource,
)
from videokyc.domain.interfaces.peer_connection import (
    PeerConnection,
    PeerConnectionFactory,
    PeerConnectionState,
)
from videokyc.domain.interfaces.signaling_relay import SignalingRelay
from videokyc.domain.services.requester_orchestrator import RequesterOrchestrator
from videokyc.domain.services.responder_orchestrator import ResponderOrchestrator
from videokyc.infrastructure.signaling.memory_relay import InMemorySignalingHub, InMemorySignalingRelay
from videokyc.infrastructure.storage.memory_call_store import InMemoryCallRecordStore


class FakeTrack:
    def __init__(self, kind: str):
        self.kind = kind
        self.enabled = True
        self.stop_calls = 0

    def stop(self):
        self.stop_calls += 1


class FakeMediaSource(MediaSource):
    """Hands out fake tracks, or refuses like a denied permission prompt"""

    def __init__(self, deny: bool = False):
        self.deny = deny
        self.acquire_count = 0
        self.streams: List[LocalMediaStream] = []

    async def acquire(self) -> LocalMediaStream:
        self.acquire_count += 1
        if self.deny:
            raise MediaPermissionError()
        stream = LocalMediaStream(audio=FakeTrack("audio"), video=FakeTrack("video"))
        self.streams.append(stream)
        return stream


class FakePeerConnection(PeerConnection):
    CANDIDATES_PER_DESCRIPTION = 2

    def __init__(self, network: "FakePeerNetwork", label: str, on_local_ice_candidate, on_remote_track, on_state_change):
        self.network = network
        self.label = label
        self.peer_id = next(network.ids)
        self._on_local_ice_candidate = on_local_ice_candidate
        self._on_remote_track = on_remote_track
        self._on_state_change = on_state_change

        self._state = PeerConnectionState.NEW
        self.tracks: List[Any] = []
        self.local_description: Optional[Dict[str, Any]] = None
        self.remote_description: Optional[Dict[str, Any]] = None
        self.remote_peer_id: Optional[int] = None
        self.candidates_added = 0
        self.candidates_discarded = 0
        self.offers_created = 0
        self.answers_created = 0
        self.close_calls = 0
        self.closed = False

    @property
    def state(self) -> PeerConnectionState:
        return self._state

    def attach_local_media(self, stream: LocalMediaStream) -> None:
        self.tracks = stream.tracks

    async def create_offer(self) -> Dict[str, Any]:
        self.offers_created += 1
        self.local_description = {"type": "offer", "sdp": f"v=0\r\no=fake {self.peer_id}\r\n"}
        self._emit_candidates()
        return self.local_description

    async def create_answer(self) -> Dict[str, Any]:
        if self.remote_description is None or self.remote_description["type"] != "offer":
            raise RuntimeError("Cannot answer without a remote offer")
        self.answers_created += 1
        self.local_description = {"type": "answer", "sdp": f"v=0\r\no=fake {self.peer_id}\r\n"}
        self._emit_candidates()
        self._check_connected()
        return self.local_description

    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        self.remote_description = description
        self.remote_peer_id = int(description["sdp"].split("o=fake ")[1].split()[0])
        self._set_state(PeerConnectionState.CONNECTING)
        self._check_connected()

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        if self.closed or self.remote_description is None or candidate.get("peer") != self.remote_peer_id:
            self.candidates_discarded += 1
            return
        self.candidates_added += 1
        self._check_connected()

    async def close(self) -> None:
        self.close_calls += 1
        if self.closed:
            return
        was_connected = self._state == PeerConnectionState.CONNECTED
        self.closed = True
        self._set_state(PeerConnectionState.CLOSED)
        remote = self.network.find(self.remote_peer_id)
        if was_connected and remote is not None and not remote.closed:
            remote._set_state(PeerConnectionState.DISCONNECTED)

    @property
    def ready(self) -> bool:
        return (
            not self.closed
            and self.local_description is not None
            and self.remote_description is not None
            and self.candidates_added > 0
        )

    def _emit_candidates(self) -> None:
        for i in range(self.CANDIDATES_PER_DESCRIPTION):
            self._on_local_ice_candidate({
                "candidate": f"candidate:{i} 1 udp {2130706431 - i} 10.0.0.{self.peer_id} {5000 + i} typ host",
                "sdpMid": "0",
                "sdpMLineIndex": 0,
                "peer": self.peer_id,
            })

    def _check_connected(self) -> None:
        remote = self.network.find(self.remote_peer_id)
        if remote is None or remote.remote_peer_id != self.peer_id:
            return
        if self.ready and remote.ready:
            for peer in (self, remote):
                if peer.state != PeerConnectionState.CONNECTED:
                    peer._set_state(PeerConnectionState.CONNECTED)
                    peer._on_remote_track(FakeTrack("video"))

    def _set_state(self, state: PeerConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        self._on_state_change(state)


class FakePeerFactory(PeerConnectionFactory):
    def __init__(self, network: "FakePeerNetwork", label: str):
        self.network = network
        self.label = label

    def create(self, on_local_ice_candidate, on_remote_track, on_state_change) -> PeerConnection:
        peer = FakePeerConnection(self.network, self.label, on_local_ice_candidate, on_remote_track, on_state_change)
        self.network.peers.append(peer)
        return peer


class FakePeerNetwork:
    """Registry of fake peers so they can find each other by id"""

    def __init__(self):
        self.ids = itertools.count(1)
        self.peers: List[FakePeerConnection] = []

    def factory(self, label: str) -> FakePeerFactory:
        return FakePeerFactory(self, label)

    def find(self, peer_id: Optional[int]) -> Optional[FakePeerConnection]:
        for peer in self.peers:
            if peer.peer_id == peer_id:
                return peer
        return None

    def peers_for(self, label: str) -> List[FakePeerConnection]:
        return [p for p in self.peers if p.label == label]


class LossyRelay(SignalingRelay):
    """Wraps a relay and silently drops chosen outgoing signal types"""

    def __init__(self, inner: SignalingRelay):
        self.inner = inner
        self.drops: Dict[str, int] = {}
        self.sent: List[Dict[str, Any]] = []
        self.dropped: List[Dict[str, Any]] = []
        self.leave_calls = 0

    def drop_next(self, signal_type: str, count: int = 1) -> None:
        self.drops[signal_type] = self.drops.get(signal_type, 0) + count

    def sent_types(self) -> List[str]:
        return [m["type"] for m in self.sent]

    async def join(self, call_id, on_message) -> None:
        await self.inner.join(call_id, on_message)

    async def send(self, call_id, message) -> None:
        signal_type = message.get("type")
        if self.drops.get(signal_type):
            self.drops[signal_type] -= 1
            self.dropped.append(message)
            return
        self.sent.append(message)
        await self.inner.send(call_id, message)

    async def leave(self) -> None:
        self.leave_calls += 1
        await self.inner.leave()

    @property
    def joined_call_id(self):
        return self.inner.joined_call_id

    @property
    def name(self) -> str:
        return "lossy"


class CallHarness:
    """Builds orchestrators that share one store, hub and fake network"""

    def __init__(self, negotiation_timeout_seconds: float = 2.0):
        self.store = InMemoryCallRecordStore()
        self.hub = InMemorySignalingHub()
        self.network = FakePeerNetwork()
        self.negotiation_timeout_seconds = negotiation_timeout_seconds
        self.orchestrators: List[Any] = []

    def relay(self) -> LossyRelay:
        return LossyRelay(InMemorySignalingRelay(self.hub))

    def _build(self, cls, label: str, user_id: str, deny_media: bool, **kwargs):
        phases: List[str] = []
        orchestrator = cls(
            user_id=user_id,
            store=self.store,
            relay=self.relay(),
            peer_factory=self.network.factory(label),
            media_source=FakeMediaSource(deny=deny_media),
            notifier=RecordingNotifier(),
            negotiation_timeout_seconds=kwargs.pop("negotiation_timeout_seconds", self.negotiation_timeout_seconds),
            on_phase_change=lambda view: phases.append(view.phase),
            **kwargs,
        )
        orchestrator.phases = phases
        self.orchestrators.append(orchestrator)
        return orchestrator

    def requester(self, user_id: str = "user-1", deny_media: bool = False, **kwargs) -> RequesterOrchestrator:
        return self._build(RequesterOrchestrator, "requester", user_id, deny_media, **kwargs)

    def responder(self, user_id: str = "admin-1", deny_media: bool = False, **kwargs) -> ResponderOrchestrator:
        return self._build(ResponderOrchestrator, "responder", user_id, deny_media, **kwargs)

    @staticmethod
    async def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(interval)

    async def shutdown(self) -> None:
        for orchestrator in self.orchestrators:
            await orchestrator.shutdown()


@pytest.fixture
def harness():
    return CallHarness()
