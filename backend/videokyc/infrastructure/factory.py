"""
Provider Factories
Select signaling, storage and peer connection implementations by name.
"""
from typing import Any, Dict, List, Optional

from videokyc.domain.interfaces.call_record_store import CallRecordStore
from videokyc.domain.interfaces.media_source import MediaSource
from videokyc.domain.interfaces.peer_connection import PeerConnectionFactory
from videokyc.domain.interfaces.signaling_relay import SignalingRelay


class SignalingRelayFactory:
    """
    Factory for creating Signaling Relay instances.

    Each call to create() returns a fresh relay; relays are never shared
    between orchestrators.
    """

    @classmethod
    def create(cls, provider: str, supabase=None, hub=None) -> SignalingRelay:
        """
        Create signaling relay instance.

        Args:
            provider: "supabase" or "memory"
            supabase: AsyncClient, required for "supabase"
            hub: InMemorySignalingHub, required for "memory"
        """
        if provider == "supabase":
            if supabase is None:
                raise ValueError("Supabase signaling relay requires a Supabase client")
            from videokyc.infrastructure.signaling.supabase_relay import SupabaseSignalingRelay
            return SupabaseSignalingRelay(supabase)
        elif provider == "memory":
            from videokyc.infrastructure.signaling.memory_relay import InMemorySignalingHub, InMemorySignalingRelay
            return InMemorySignalingRelay(hub if hub is not None else InMemorySignalingHub())
        raise ValueError(
            f"Unknown signaling provider: {provider}. "
            f"Available: {', '.join(cls.list_providers())}"
        )

    @classmethod
    def list_providers(cls) -> List[str]:
        return ["supabase", "memory"]


class CallRecordStoreFactory:
    """Factory for creating Call Record Store instances"""

    @classmethod
    def create(cls, provider: str, supabase=None) -> CallRecordStore:
        if provider == "supabase":
            if supabase is None:
                raise ValueError("Supabase call store requires a Supabase client")
            from videokyc.infrastructure.storage.supabase_call_store import SupabaseCallRecordStore
            return SupabaseCallRecordStore(supabase)
        elif provider == "memory":
            from videokyc.infrastructure.storage.memory_call_store import InMemoryCallRecordStore
            return InMemoryCallRecordStore()
        raise ValueError(
            f"Unknown call store provider: {provider}. "
            f"Available: {', '.join(cls.list_providers())}"
        )

    @classmethod
    def list_providers(cls) -> List[str]:
        return ["supabase", "memory"]


class PeerConnectionProviderFactory:
    """Factory for creating PeerConnectionFactory instances"""

    @classmethod
    def create(cls, provider: str = "aiortc", ice_servers: Optional[List[Dict[str, Any]]] = None) -> PeerConnectionFactory:
        if provider == "aiortc":
            from videokyc.infrastructure.webrtc.aiortc_peer_connection import AiortcPeerConnectionFactory
            return AiortcPeerConnectionFactory(ice_servers)
        raise ValueError(f"Unknown peer connection provider: {provider}. Available: aiortc")

    @classmethod
    def create_media_source(cls, device: Optional[str] = None, media_format: Optional[str] = None) -> MediaSource:
        from videokyc.infrastructure.webrtc.media_source import DeviceMediaSource
        return DeviceMediaSource(device=device, media_format=media_format)
