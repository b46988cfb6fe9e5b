"""
In-Memory Signaling Relay
Process-local broadcast hub keyed by call id.

Backs the WebSocket signaling endpoint and local development. Like a
Supabase broadcast channel, a message is delivered to every other
subscriber on the channel and never echoed to its sender.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from videokyc.domain.interfaces.signaling_relay import (
    SignalingRelay,
    SignalHandler,
    channel_name,
)

logger = logging.getLogger(__name__)


@dataclass
class HubSubscriber:
    """One subscription on a hub channel."""
    subscriber_id: int
    call_id: str
    handler: SignalHandler
    joined_at: datetime = field(default_factory=datetime.utcnow)
    messages_received: int = 0


class InMemorySignalingHub:
    """Routes messages between subscribers of the same call channel."""

    def __init__(self):
        self._channels: Dict[str, Dict[int, HubSubscriber]] = {}
        self._next_id = 0
        self.messages_published = 0
        self.messages_delivered = 0

    def subscribe(self, call_id: str, handler: SignalHandler) -> int:
        """Register a handler; returns the subscriber id."""
        self._next_id += 1
        subscriber = HubSubscriber(subscriber_id=self._next_id, call_id=call_id, handler=handler)
        self._channels.setdefault(call_id, {})[subscriber.subscriber_id] = subscriber
        logger.debug(f"Hub subscriber {subscriber.subscriber_id} joined {channel_name(call_id)}")
        return subscriber.subscriber_id

    def unsubscribe(self, call_id: str, subscriber_id: int) -> None:
        channel = self._channels.get(call_id)
        if not channel:
            return
        channel.pop(subscriber_id, None)
        if not channel:
            del self._channels[call_id]

    def publish(self, call_id: str, message: Dict[str, Any], sender_id: Optional[int] = None) -> int:
        """
        Deliver a message to every other subscriber of the channel.

        Returns:
            Number of subscribers the message was delivered to
        """
        self.messages_published += 1
        delivered = 0
        for subscriber in list(self._channels.get(call_id, {}).values()):
            if subscriber.subscriber_id == sender_id:
                continue
            subscriber.messages_received += 1
            delivered += 1
            try:
                subscriber.handler(message)
            except Exception as e:
                logger.error(f"Signal handler failed on {channel_name(call_id)}: {e}")
        self.messages_delivered += delivered
        return delivered

    def subscriber_count(self, call_id: str) -> int:
        return len(self._channels.get(call_id, {}))

    def active_channels(self) -> List[str]:
        return list(self._channels.keys())


class InMemorySignalingRelay(SignalingRelay):
    """SignalingRelay client bound to an InMemorySignalingHub."""

    def __init__(self, hub: InMemorySignalingHub):
        self._hub = hub
        self._call_id: Optional[str] = None
        self._subscriber_id: Optional[int] = None

    async def join(self, call_id: str, on_message: SignalHandler) -> None:
        await self.leave()
        self._subscriber_id = self._hub.subscribe(call_id, on_message)
        self._call_id = call_id

    async def send(self, call_id: str, message: Dict[str, Any]) -> None:
        if self._call_id is None:
            logger.debug(f"Dropping signal for {call_id}: relay has not joined a channel")
            return
        self._hub.publish(call_id, message, sender_id=self._subscriber_id)

    async def leave(self) -> None:
        if self._call_id is None:
            return
        self._hub.unsubscribe(self._call_id, self._subscriber_id)
        self._call_id = None
        self._subscriber_id = None

    @property
    def joined_call_id(self) -> Optional[str]:
        return self._call_id

    @property
    def name(self) -> str:
        return "memory"
