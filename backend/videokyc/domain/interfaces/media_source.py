"""
Media Source Interface
Local camera/microphone acquisition
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional


class MediaPermissionError(Exception):
    """Raised when camera or microphone access is denied or unavailable."""
    def __init__(self, message: str = "Camera or microphone access was denied. Please allow access and try again."):
        self.message = message
        super().__init__(self.message)


@dataclass
class LocalMediaStream:
    """Acquired local tracks plus the handle that owns the devices."""
    audio: Optional[Any] = None
    video: Optional[Any] = None
    owner: Optional[Any] = None
    stopped: bool = False
    extra_tracks: List[Any] = field(default_factory=list)

    @property
    def tracks(self) -> List[Any]:
        tracks = [t for t in (self.audio, self.video) if t is not None]
        return tracks + list(self.extra_tracks)

    def stop(self) -> None:
        """Stop every track. Idempotent."""
        if self.stopped:
            return
        self.stopped = True
        for track in self.tracks:
            stop = getattr(track, "stop", None)
            if callable(stop):
                stop()

    def set_audio_enabled(self, enabled: bool) -> None:
        """Mute or unmute the microphone track"""
        if self.audio is not None and hasattr(self.audio, "enabled"):
            self.audio.enabled = enabled

    def set_video_enabled(self, enabled: bool) -> None:
        """Turn the camera track on or off"""
        if self.video is not None and hasattr(self.video, "enabled"):
            self.video.enabled = enabled


class MediaSource(ABC):
    """
    Abstract base class for local media acquisition.

    Acquisition is the only user-blocking step of a call (a permission
    prompt in a browser, device open on a host).
    """

    @abstractmethod
    async def acquire(self) -> LocalMediaStream:
        """
        Acquire local audio and video.

        Returns:
            Stream with at least one track

        Raises:
            MediaPermissionError: If access is denied or no device is available
        """
        pass
