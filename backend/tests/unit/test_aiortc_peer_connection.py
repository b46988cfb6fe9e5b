"""
Unit tests for the aiortc peer connection wrapper
"""
import pytest
from unittest.mock import MagicMock, patch

from aiortc.mediastreams import AudioStreamTrack

from videokyc.domain.interfaces.media_source import LocalMediaStream, MediaPermissionError
from videokyc.domain.interfaces.peer_connection import PeerConnectionState
from videokyc.infrastructure.webrtc.aiortc_peer_connection import (
    AiortcPeerConnection,
    AiortcPeerConnectionFactory,
    DEFAULT_ICE_SERVERS,
    build_configuration,
    extract_candidates,
    parse_candidate,
)
from videokyc.infrastructure.webrtc.media_source import DeviceMediaSource


SAMPLE_SDP = "\r\n".join([
    "v=0",
    "o=- 1 1 IN IP4 0.0.0.0",
    "s=-",
    "t=0 0",
    "m=audio 9 UDP/TLS/RTP/SAVPF 111",
    "a=mid:0",
    "a=candidate:1 1 udp 2130706431 192.168.1.5 50000 typ host",
    "a=candidate:2 1 udp 1694498815 203.0.113.9 50001 typ srflx raddr 192.168.1.5 rport 50000",
    "m=video 9 UDP/TLS/RTP/SAVPF 96",
    "a=mid:1",
    "a=candidate:3 1 udp 2130706431 192.168.1.5 50002 typ host",
    "",
])


class TestSdpHelpers:
    """Test candidate extraction and parsing"""

    def test_extract_candidates(self):
        candidates = extract_candidates(SAMPLE_SDP)

        assert len(candidates) == 3
        assert candidates[0] == {
            "candidate": "candidate:1 1 udp 2130706431 192.168.1.5 50000 typ host",
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        }
        assert candidates[2]["sdpMid"] == "1"
        assert candidates[2]["sdpMLineIndex"] == 1

    def test_extract_candidates_without_media(self):
        assert extract_candidates("v=0\r\na=candidate:1 1 udp 1 1.2.3.4 5 typ host\r\n") == []

    def test_parse_browser_candidate(self):
        candidate = parse_candidate({
            "candidate": "candidate:2 1 udp 1694498815 203.0.113.9 50001 typ srflx raddr 192.168.1.5 rport 50000",
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        })

        assert candidate.ip == "203.0.113.9"
        assert candidate.port == 50001
        assert candidate.type == "srflx"
        assert candidate.relatedAddress == "192.168.1.5"
        assert candidate.sdpMid == "0"
        assert candidate.sdpMLineIndex == 0

    def test_parse_empty_candidate(self):
        with pytest.raises(ValueError):
            parse_candidate({"candidate": "", "sdpMid": "0"})

    def test_default_configuration(self):
        configuration = build_configuration()
        assert configuration.iceServers[0].urls == DEFAULT_ICE_SERVERS[0]["urls"]

    def test_turn_credentials(self):
        configuration = build_configuration([
            {"urls": "turn:turn.example.com:3478", "username": "u", "credential": "p"},
        ])
        server = configuration.iceServers[0]
        assert server.username == "u"
        assert server.credential == "p"

    def test_explicit_empty_server_list(self):
        assert build_configuration([]).iceServers == []


class TestAiortcPeerConnection:
    """Test the wrapper against a real RTCPeerConnection"""

    def make_peer(self):
        callbacks = MagicMock()
        peer = AiortcPeerConnectionFactory(ice_servers=[]).create(
            on_local_ice_candidate=callbacks.candidate,
            on_remote_track=callbacks.track,
            on_state_change=callbacks.state,
        )
        return peer, callbacks

    @pytest.mark.asyncio
    async def test_factory_creates_wrapper(self):
        peer, _ = self.make_peer()
        assert isinstance(peer, AiortcPeerConnection)
        assert peer.state == PeerConnectionState.NEW
        await peer.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        peer, callbacks = self.make_peer()

        await peer.close()
        await peer.close()

        assert peer.state == PeerConnectionState.CLOSED
        closed_calls = [c for c in callbacks.state.call_args_list if c.args[0] == PeerConnectionState.CLOSED]
        assert len(closed_calls) == 1

    @pytest.mark.asyncio
    async def test_bad_candidate_is_discarded(self):
        peer, _ = self.make_peer()

        await peer.add_ice_candidate({"candidate": "candidate:garbage"})
        await peer.add_ice_candidate({"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host"})

        await peer.close()

    @pytest.mark.asyncio
    async def test_candidate_after_close_is_ignored(self):
        peer, _ = self.make_peer()
        await peer.close()
        await peer.add_ice_candidate({"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0"})

    @pytest.mark.asyncio
    async def test_create_offer_with_local_audio(self):
        peer, callbacks = self.make_peer()
        track = AudioStreamTrack()
        peer.attach_local_media(LocalMediaStream(audio=track))

        offer = await peer.create_offer()

        assert offer["type"] == "offer"
        assert "m=audio" in offer["sdp"]
        # Every embedded candidate is re-emitted for trickle peers
        assert callbacks.candidate.call_count == len(extract_candidates(offer["sdp"]))

        await peer.close()
        track.stop()


class TestDeviceMediaSource:
    """Test MediaPlayer-backed acquisition with the player mocked out"""

    @pytest.mark.asyncio
    async def test_acquire_wraps_player_tracks(self):
        player = MagicMock()
        with patch("videokyc.infrastructure.webrtc.media_source.MediaPlayer", return_value=player) as media_player:
            stream = await DeviceMediaSource("/dev/video1", "v4l2").acquire()

        media_player.assert_called_once_with("/dev/video1", format="v4l2")
        assert stream.audio is player.audio
        assert stream.video is player.video
        assert stream.owner is player

    @pytest.mark.asyncio
    async def test_open_failure_is_permission_error(self):
        with patch("videokyc.infrastructure.webrtc.media_source.MediaPlayer", side_effect=OSError("busy")):
            with pytest.raises(MediaPermissionError):
                await DeviceMediaSource("/dev/video1", "v4l2").acquire()

    @pytest.mark.asyncio
    async def test_no_tracks_is_permission_error(self):
        player = MagicMock(audio=None, video=None)
        with patch("videokyc.infrastructure.webrtc.media_source.MediaPlayer", return_value=player):
            with pytest.raises(MediaPermissionError):
                await DeviceMediaSource("clip.mp4").acquire()

    def test_platform_default_device(self):
        with patch("videokyc.infrastructure.webrtc.media_source.platform.system", return_value="Linux"):
            source = DeviceMediaSource()
        assert source.device == "/dev/video0"
        assert source.media_format == "v4l2"
