"""
Supabase Signaling Relay
Relays signal messages over a Supabase Realtime broadcast channel.

Channel topic: video_call_{call_id}
Broadcast event: signal
"""
import logging
from typing import Any, Dict, Optional

from supabase import AsyncClient

from videokyc.domain.interfaces.signaling_relay import (
    SignalingRelay,
    SignalingError,
    SignalHandler,
    channel_name,
)

logger = logging.getLogger(__name__)

SIGNAL_EVENT = "signal"


class SupabaseSignalingRelay(SignalingRelay):
    """
    Signaling relay backed by Supabase Realtime broadcast.

    One instance owns at most one channel. Joining a new call replaces
    the previous channel; there is no module-level channel shared across
    calls, so several relays can live in one process.
    """

    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase
        self._channel = None
        self._call_id: Optional[str] = None

    async def join(self, call_id: str, on_message: SignalHandler) -> None:
        await self.leave()

        def _on_broadcast(payload: Dict[str, Any]) -> None:
            message = payload.get("payload")
            if message is None:
                return
            on_message(message)

        channel = self.supabase.channel(channel_name(call_id))
        channel.on_broadcast(SIGNAL_EVENT, _on_broadcast)

        try:
            await channel.subscribe()
        except Exception as e:
            logger.error(f"Failed to join signaling channel {channel_name(call_id)}: {e}")
            raise SignalingError()

        self._channel = channel
        self._call_id = call_id
        logger.info(f"Joined signaling channel {channel_name(call_id)}", extra={"call_id": call_id})

    async def send(self, call_id: str, message: Dict[str, Any]) -> None:
        if self._channel is None:
            logger.debug(f"Dropping signal for {call_id}: relay has not joined a channel")
            return

        if call_id != self._call_id:
            logger.warning(f"Signal for {call_id} sent on channel for {self._call_id}")

        try:
            await self._channel.send_broadcast(SIGNAL_EVENT, message)
        except Exception as e:
            logger.error(f"Failed to publish {message.get('type')} signal: {e}")
            raise SignalingError()

    async def leave(self) -> None:
        channel = self._channel
        if channel is None:
            return

        call_id = self._call_id
        self._channel = None
        self._call_id = None

        try:
            await self.supabase.remove_channel(channel)
        except Exception as e:
            # Channel is already unusable; nothing left to release
            logger.warning(f"Error leaving signaling channel for {call_id}: {e}")

        logger.info(f"Left signaling channel for {call_id}", extra={"call_id": call_id})

    @property
    def joined_call_id(self) -> Optional[str]:
        return self._call_id

    @property
    def name(self) -> str:
        return "supabase"
