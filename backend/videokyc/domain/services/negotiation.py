"""
Call Negotiator
Owns the signaling relay, the peer connection and the negotiation timer
for one call attempt.

The negotiator never decides call phases. Relay messages, peer state
changes and the timer are handed to the owning orchestrator through its
`post` callback and come back in through `handle_signal` once the
orchestrator's pump picks them up.

Ordering guarantees:
    - Exactly one side offers. An answerer ignores stray answers and an
      offerer ignores stray offers.
    - An offer that arrives before local media is attached is queued and
      answered as soon as the peer exists.
    - Remote ICE candidates that arrive before the remote description are
      buffered and flushed after it is applied.
    - Local candidates are only published after the local description has
      been sent, so the remote side never sees a candidate first.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from videokyc.domain.interfaces.media_source import LocalMediaStream
from videokyc.domain.interfaces.peer_connection import (
    PeerConnection,
    PeerConnectionFactory,
    PeerConnectionState,
)
from videokyc.domain.interfaces.signaling_relay import SignalingRelay, SignalingError
from videokyc.domain.models.signal_message import (
    AnswerSignal,
    CallRole,
    IceCandidateSignal,
    OfferSignal,
    RoleJoinedSignal,
    SignalMessage,
    parse_signal,
)

logger = logging.getLogger(__name__)


class NegotiationEvent(str, Enum):
    """Event kinds posted to the owning orchestrator"""
    SIGNAL = "signal"
    PEER_STATE = "peer_state"
    TIMEOUT = "timeout"


PostEvent = Callable[[NegotiationEvent, Any], None]


class CallNegotiator:
    """
    Peer negotiation for one call attempt.

    Args:
        call_id: Call record id (keys the signaling channel)
        role: Local role; the responder is always the offerer
        relay: Relay owned by this negotiator
        peer_factory: Creates the peer connection once media is ready
        post: Callback feeding the orchestrator's event queue
    """

    def __init__(
        self,
        call_id: str,
        role: CallRole,
        relay: SignalingRelay,
        peer_factory: PeerConnectionFactory,
        post: PostEvent,
    ):
        self.call_id = call_id
        self.role = role
        self.relay = relay
        self.peer_factory = peer_factory
        self._post = post

        self.peer: Optional[PeerConnection] = None
        self.local_stream: Optional[LocalMediaStream] = None
        self.remote_tracks: List[Any] = []

        self._pending_offer: Optional[Dict[str, Any]] = None
        self._remote_candidates: List[Dict[str, Any]] = []
        self._local_candidates: List[Dict[str, Any]] = []
        self._remote_description_set = False
        self._local_description_sent = False
        self._offer_sent = False
        self._answer_sent = False

        self._timer: Optional[asyncio.Task] = None
        self._send_tasks: Set[asyncio.Task] = set()
        self._joined = False
        self.closed = False

    @property
    def is_offerer(self) -> bool:
        return self.role == CallRole.RESPONDER

    @property
    def has_peer(self) -> bool:
        return self.peer is not None

    async def join(self) -> None:
        """
        Join the call's signaling channel.

        Raises:
            SignalingError: If the channel cannot be joined
        """
        await self.relay.join(self.call_id, self._on_relay_message)
        self._joined = True
        logger.info(f"{self.role.value} joined signaling for call {self.call_id}", extra={"call_id": self.call_id})

    async def announce(self) -> None:
        """Tell the other party this role is on the channel and ready"""
        await self._send(RoleJoinedSignal(role=self.role))

    async def attach_media(self, stream: LocalMediaStream) -> None:
        """
        Create the peer connection with local media attached.

        A queued offer is answered immediately.
        """
        if self.closed:
            stream.stop()
            return

        self.local_stream = stream
        self.peer = self.peer_factory.create(
            on_local_ice_candidate=self._on_local_ice_candidate,
            on_remote_track=self._on_remote_track,
            on_state_change=self._on_peer_state_change,
        )
        self.peer.attach_local_media(stream)

        if self._pending_offer is not None:
            offer, self._pending_offer = self._pending_offer, None
            await self._answer(offer)

    async def make_offer(self) -> None:
        """
        Create the single offer of this call and send it.

        Raises:
            SignalingError: If the offer cannot be published
        """
        if not self.is_offerer:
            raise RuntimeError("Only the responder creates the offer")
        if self.peer is None:
            raise RuntimeError("Local media must be attached before offering")
        if self._offer_sent:
            logger.warning(f"Offer already sent for call {self.call_id}")
            return

        offer = await self.peer.create_offer()
        self._offer_sent = True
        await self._send(OfferSignal(offer=offer))
        await self._local_description_published()

    async def handle_signal(self, data: Dict[str, Any]) -> Optional[SignalMessage]:
        """
        Process one relay message.

        Returns:
            The parsed message, or None when it was malformed or arrived
            after close
        """
        if self.closed:
            return None

        try:
            message = parse_signal(data)
        except ValueError as e:
            logger.warning(f"Dropping malformed signal on call {self.call_id}: {e}")
            return None

        if isinstance(message, OfferSignal):
            await self._handle_offer(message.offer)
        elif isinstance(message, AnswerSignal):
            await self._handle_answer(message.answer)
        elif isinstance(message, IceCandidateSignal):
            await self._handle_remote_candidate(message.candidate)
        return message

    def start_timer(self, timeout_seconds: float) -> None:
        """Post TIMEOUT unless cancelled within timeout_seconds"""
        self.cancel_timer()
        self._timer = asyncio.create_task(self._run_timer(timeout_seconds))

    def cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def close(self) -> None:
        """Stop tracks, close the peer and leave the channel. Idempotent."""
        if self.closed:
            return
        self.closed = True

        self.cancel_timer()
        for task in list(self._send_tasks):
            task.cancel()
        self._send_tasks.clear()

        if self.local_stream is not None:
            self.local_stream.stop()

        if self.peer is not None:
            try:
                await self.peer.close()
            except Exception as e:
                logger.warning(f"Error closing peer connection for call {self.call_id}: {e}")

        if self._joined:
            await self.relay.leave()
            self._joined = False

        logger.info(f"Negotiation closed for call {self.call_id}", extra={"call_id": self.call_id})

    async def _handle_offer(self, offer: Dict[str, Any]) -> None:
        if self.is_offerer:
            logger.warning(f"Responder ignoring unexpected offer on call {self.call_id}")
            return
        if self._answer_sent or self._pending_offer is not None:
            logger.debug(f"Ignoring duplicate offer on call {self.call_id}")
            return
        if self.peer is None:
            # Media not ready yet; answer once attach_media runs
            self._pending_offer = offer
            return
        await self._answer(offer)

    async def _answer(self, offer: Dict[str, Any]) -> None:
        await self.peer.set_remote_description(offer)
        self._remote_description_set = True
        await self._flush_remote_candidates()

        answer = await self.peer.create_answer()
        self._answer_sent = True
        await self._send(AnswerSignal(answer=answer))
        await self._local_description_published()

    async def _handle_answer(self, answer: Dict[str, Any]) -> None:
        if not self.is_offerer:
            logger.warning(f"Requester ignoring unexpected answer on call {self.call_id}")
            return
        if not self._offer_sent or self._remote_description_set:
            logger.debug(f"Ignoring answer on call {self.call_id}: no outstanding offer")
            return
        await self.peer.set_remote_description(answer)
        self._remote_description_set = True
        await self._flush_remote_candidates()

    async def _handle_remote_candidate(self, candidate: Dict[str, Any]) -> None:
        if self.peer is None or not self._remote_description_set:
            self._remote_candidates.append(candidate)
            return
        await self.peer.add_ice_candidate(candidate)

    async def _flush_remote_candidates(self) -> None:
        candidates, self._remote_candidates = self._remote_candidates, []
        for candidate in candidates:
            await self.peer.add_ice_candidate(candidate)

    async def _local_description_published(self) -> None:
        self._local_description_sent = True
        candidates, self._local_candidates = self._local_candidates, []
        for candidate in candidates:
            await self._send(IceCandidateSignal(candidate=candidate))

    async def _send(self, message: SignalMessage) -> None:
        if self.closed:
            return
        await self.relay.send(self.call_id, message.to_wire())

    async def _send_candidate_later(self, candidate: Dict[str, Any]) -> None:
        try:
            await self._send(IceCandidateSignal(candidate=candidate))
        except SignalingError as e:
            # Losing a candidate is never fatal
            logger.warning(f"Failed to send ICE candidate on call {self.call_id}: {e.message}")

    async def _run_timer(self, timeout_seconds: float) -> None:
        await asyncio.sleep(timeout_seconds)
        self._timer = None
        logger.warning(
            f"Negotiation for call {self.call_id} timed out after {timeout_seconds}s",
            extra={"call_id": self.call_id},
        )
        self._post(NegotiationEvent.TIMEOUT, None)

    def _on_relay_message(self, data: Dict[str, Any]) -> None:
        if not self.closed:
            self._post(NegotiationEvent.SIGNAL, data)

    def _on_local_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        if self.closed:
            return
        if not self._local_description_sent:
            self._local_candidates.append(candidate)
            return
        task = asyncio.ensure_future(self._send_candidate_later(candidate))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)

    def _on_remote_track(self, track: Any) -> None:
        self.remote_tracks.append(track)

    def _on_peer_state_change(self, state: PeerConnectionState) -> None:
        if not self.closed:
            self._post(NegotiationEvent.PEER_STATE, state)
