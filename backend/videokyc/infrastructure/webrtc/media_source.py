"""
Device Media Source
Opens a local camera/microphone (or a media file) through aiortc's MediaPlayer.
"""
import asyncio
import logging
import platform
from typing import Optional

from aiortc.contrib.media import MediaPlayer

from videokyc.domain.interfaces.media_source import (
    MediaSource,
    LocalMediaStream,
    MediaPermissionError,
)

logger = logging.getLogger(__name__)


def default_device() -> tuple:
    """Platform default capture device and ffmpeg input format"""
    system = platform.system()
    if system == "Darwin":
        return "default:default", "avfoundation"
    if system == "Windows":
        return "video=Integrated Camera:audio=Microphone", "dshow"
    return "/dev/video0", "v4l2"


class DeviceMediaSource(MediaSource):
    """
    Media source backed by MediaPlayer.

    `device` may be a capture device or a media file path; `media_format`
    is the ffmpeg input format (None lets ffmpeg probe a file).
    """

    def __init__(self, device: Optional[str] = None, media_format: Optional[str] = None):
        if device is None:
            device, detected_format = default_device()
            media_format = media_format or detected_format
        self.device = device
        self.media_format = media_format

    async def acquire(self) -> LocalMediaStream:
        try:
            # Opening a device blocks on ffmpeg probing
            player = await asyncio.to_thread(MediaPlayer, self.device, format=self.media_format)
        except Exception as e:
            logger.error(f"Could not open media device {self.device}: {e}")
            raise MediaPermissionError()

        if player.audio is None and player.video is None:
            raise MediaPermissionError("No camera or microphone was found on this device.")

        logger.info(
            f"Acquired media from {self.device} "
            f"(audio={player.audio is not None}, video={player.video is not None})"
        )
        return LocalMediaStream(audio=player.audio, video=player.video, owner=player)
