"""
Signaling Relay Interface
Abstract base class for call-scoped signal transports
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional


SignalHandler = Callable[[Dict[str, Any]], None]


def channel_name(call_id: str) -> str:
    """Channel topic shared by both parties of a call"""
    return f"video_call_{call_id}"


class SignalingError(Exception):
    """Raised when a signal cannot be published or a channel cannot be joined."""
    def __init__(self, message: str = "Could not reach the call signaling service. Please try again."):
        self.message = message
        super().__init__(self.message)


class SignalingRelay(ABC):
    """
    Abstract base class for signaling relays.

    A relay delivers opaque JSON signal messages between the two parties
    of one call. It provides no persistence, no buffering and no retry:
    a message published while the other party is not subscribed is lost.

    Each relay instance holds at most one subscription. Instances are owned
    by the orchestration that uses them; there is no process-wide channel.
    """

    @abstractmethod
    async def join(self, call_id: str, on_message: SignalHandler) -> None:
        """
        Subscribe to the channel for a call.

        Replaces any previous subscription held by this instance.
        `on_message` is invoked synchronously for every message received
        after the subscription is active.

        Args:
            call_id: Call identifier scoping the channel
            on_message: Callback receiving the raw message dictionary

        Raises:
            SignalingError: If the subscription cannot be opened
        """
        pass

    @abstractmethod
    async def send(self, call_id: str, message: Dict[str, Any]) -> None:
        """
        Publish a message on the channel for a call.

        Silently dropped if this instance has not joined any channel.

        Args:
            call_id: Call identifier scoping the channel
            message: JSON-serializable signal message

        Raises:
            SignalingError: If the transport rejects the publish
        """
        pass

    @abstractmethod
    async def leave(self) -> None:
        """
        Tear down the current subscription.

        Idempotent: calling it with no active subscription is a no-op.
        """
        pass

    @property
    @abstractmethod
    def joined_call_id(self) -> Optional[str]:
        """Call id of the active subscription, or None"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Relay provider name (e.g., "supabase", "memory")"""
        pass
