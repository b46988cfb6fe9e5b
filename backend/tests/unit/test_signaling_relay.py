"""
Unit tests for signaling relays (in-memory hub and Supabase broadcast)
"""
import pytest
from unittest.mock import MagicMock, AsyncMock

from videokyc.domain.interfaces.signaling_relay import SignalingError, channel_name
from videokyc.infrastructure.signaling.memory_relay import InMemorySignalingHub, InMemorySignalingRelay
from videokyc.infrastructure.signaling.supabase_relay import SupabaseSignalingRelay, SIGNAL_EVENT


OFFER = {"type": "offer", "offer": {"type": "offer", "sdp": "v=0"}}


class TestChannelName:

    def test_channel_name(self):
        assert channel_name("abc") == "video_call_abc"


class TestInMemoryRelay:
    """Test the process-local relay"""

    @pytest.mark.asyncio
    async def test_message_reaches_other_party_only(self):
        hub = InMemorySignalingHub()
        a, b = InMemorySignalingRelay(hub), InMemorySignalingRelay(hub)
        received_a, received_b = [], []
        await a.join("c1", received_a.append)
        await b.join("c1", received_b.append)

        await a.send("c1", OFFER)

        assert received_b == [OFFER]
        assert received_a == []

    @pytest.mark.asyncio
    async def test_send_before_join_is_dropped(self):
        hub = InMemorySignalingHub()
        a, b = InMemorySignalingRelay(hub), InMemorySignalingRelay(hub)
        received = []
        await b.join("c1", received.append)

        await a.send("c1", OFFER)

        assert received == []
        assert hub.messages_published == 0

    @pytest.mark.asyncio
    async def test_message_before_other_party_joins_is_lost(self):
        hub = InMemorySignalingHub()
        a, b = InMemorySignalingRelay(hub), InMemorySignalingRelay(hub)
        received = []
        await a.join("c1", lambda m: None)
        await a.send("c1", OFFER)
        await b.join("c1", received.append)

        assert received == []

    @pytest.mark.asyncio
    async def test_join_replaces_previous_channel(self):
        hub = InMemorySignalingHub()
        relay = InMemorySignalingRelay(hub)
        await relay.join("c1", lambda m: None)
        await relay.join("c2", lambda m: None)

        assert relay.joined_call_id == "c2"
        assert hub.subscriber_count("c1") == 0
        assert hub.subscriber_count("c2") == 1

    @pytest.mark.asyncio
    async def test_leave_is_idempotent(self):
        hub = InMemorySignalingHub()
        relay = InMemorySignalingRelay(hub)
        await relay.join("c1", lambda m: None)

        await relay.leave()
        await relay.leave()

        assert relay.joined_call_id is None
        assert hub.active_channels() == []

    @pytest.mark.asyncio
    async def test_channels_are_isolated(self):
        hub = InMemorySignalingHub()
        a, b = InMemorySignalingRelay(hub), InMemorySignalingRelay(hub)
        received = []
        await a.join("c1", lambda m: None)
        await b.join("c2", received.append)

        await a.send("c1", OFFER)

        assert received == []

    def test_failing_handler_does_not_block_others(self):
        hub = InMemorySignalingHub()
        received = []

        def broken(message):
            raise RuntimeError("boom")

        hub.subscribe("c1", broken)
        hub.subscribe("c1", received.append)

        assert hub.publish("c1", OFFER) == 2
        assert received == [OFFER]


class TestSupabaseRelay:
    """Test the Supabase broadcast relay with a mocked client"""

    @pytest.fixture
    def supabase(self):
        client = MagicMock()
        channel = MagicMock()
        channel.subscribe = AsyncMock(return_value=channel)
        channel.send_broadcast = AsyncMock()
        client.channel.return_value = channel
        client.remove_channel = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_join_subscribes_to_call_channel(self, supabase):
        relay = SupabaseSignalingRelay(supabase)
        await relay.join("c1", lambda m: None)

        supabase.channel.assert_called_once_with("video_call_c1")
        channel = supabase.channel.return_value
        assert channel.on_broadcast.call_args[0][0] == SIGNAL_EVENT
        channel.subscribe.assert_awaited_once()
        assert relay.joined_call_id == "c1"

    @pytest.mark.asyncio
    async def test_broadcast_payload_is_unwrapped(self, supabase):
        relay = SupabaseSignalingRelay(supabase)
        received = []
        await relay.join("c1", received.append)

        callback = supabase.channel.return_value.on_broadcast.call_args[0][1]
        callback({"event": SIGNAL_EVENT, "payload": OFFER, "type": "broadcast"})

        assert received == [OFFER]

    @pytest.mark.asyncio
    async def test_send_broadcasts_signal_event(self, supabase):
        relay = SupabaseSignalingRelay(supabase)
        await relay.join("c1", lambda m: None)

        await relay.send("c1", OFFER)

        supabase.channel.return_value.send_broadcast.assert_awaited_once_with(SIGNAL_EVENT, OFFER)

    @pytest.mark.asyncio
    async def test_send_without_join_is_noop(self, supabase):
        relay = SupabaseSignalingRelay(supabase)
        await relay.send("c1", OFFER)
        supabase.channel.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_failure_raises_signaling_error(self, supabase):
        relay = SupabaseSignalingRelay(supabase)
        await relay.join("c1", lambda m: None)
        supabase.channel.return_value.send_broadcast.side_effect = RuntimeError("socket closed")

        with pytest.raises(SignalingError):
            await relay.send("c1", OFFER)

    @pytest.mark.asyncio
    async def test_join_failure_raises_signaling_error(self, supabase):
        supabase.channel.return_value.subscribe.side_effect = RuntimeError("timeout")
        relay = SupabaseSignalingRelay(supabase)

        with pytest.raises(SignalingError):
            await relay.join("c1", lambda m: None)
        assert relay.joined_call_id is None

    @pytest.mark.asyncio
    async def test_leave_removes_channel_once(self, supabase):
        relay = SupabaseSignalingRelay(supabase)
        await relay.join("c1", lambda m: None)

        await relay.leave()
        await relay.leave()

        supabase.remove_channel.assert_awaited_once()
        assert relay.joined_call_id is None

    @pytest.mark.asyncio
    async def test_leave_swallows_remove_errors(self, supabase):
        supabase.remove_channel.side_effect = RuntimeError("already gone")
        relay = SupabaseSignalingRelay(supabase)
        await relay.join("c1", lambda m: None)

        await relay.leave()

        assert relay.joined_call_id is None

    @pytest.mark.asyncio
    async def test_rejoin_leaves_previous_channel(self, supabase):
        relay = SupabaseSignalingRelay(supabase)
        await relay.join("c1", lambda m: None)
        await relay.join("c2", lambda m: None)

        supabase.remove_channel.assert_awaited_once()
        assert relay.joined_call_id == "c2"
