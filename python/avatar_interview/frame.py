"""
Frame control channel.

Best-effort messaging with the embedded interview frame. Outbound media
toggles are fire-and-forget: the local toggle state is the source of
truth and is updated even if posting fails. Inbound messages are only
accepted from the provider origin.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import urlsplit


__all__ = [
    "FrameControlChannel",
    "FrameEvent",
    "FrameMessageType",
    "LocalMediaState",
    "normalize_origin",
]


logger = logging.getLogger(__name__)


FramePoster = Callable[[dict[str, Any]], None]


class FrameMessageType(str, Enum):
    """Message types exchanged with the embedded frame."""

    TOGGLE_VIDEO = "toggleVideo"
    TOGGLE_AUDIO = "toggleAudio"
    TOGGLE_MUTE = "toggleMute"
    CONNECTION_STATUS = "connectionStatus"
    MEETING_ENDED = "meetingEnded"
    ERROR = "error"


INBOUND_TYPES = frozenset(
    {
        FrameMessageType.CONNECTION_STATUS,
        FrameMessageType.MEETING_ENDED,
        FrameMessageType.ERROR,
    }
)


@dataclass
class LocalMediaState:
    """Local intent for camera, microphone and interviewer audio."""

    video: bool = True
    audio: bool = True
    muted: bool = False


@dataclass(frozen=True)
class FrameEvent:
    """An accepted inbound frame message."""

    type: FrameMessageType
    payload: dict[str, Any] = field(default_factory=dict)


def normalize_origin(value: Optional[str]) -> Optional[str]:
    """Reduce a URL or origin to 'scheme://host[:port]' in lowercase."""
    if not value:
        return None
    parts = urlsplit(value.strip())
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


class FrameControlChannel:
    """
    Message channel to one embedded frame.

    Example:
        >>> channel = FrameControlChannel("https://tavus.daily.co", poster=frame_post)
        >>> channel.toggle_video()
        False
    """

    def __init__(self, provider_origin: str, poster: Optional[FramePoster] = None) -> None:
        origin = normalize_origin(provider_origin)
        if origin is None:
            raise ValueError(f"Invalid provider origin: {provider_origin!r}")
        self.provider_origin = origin
        self._poster = poster
        self.media = LocalMediaState()

    @property
    def is_attached(self) -> bool:
        return self._poster is not None

    def attach(self, poster: FramePoster) -> None:
        self._poster = poster

    def detach(self) -> None:
        self._poster = None

    def _post(self, message: dict[str, Any]) -> bool:
        if self._poster is None:
            logger.debug("Frame not ready; dropping %s", message.get("type"))
            return False
        try:
            self._poster(message)
        except Exception as e:
            logger.warning("Could not communicate with interview frame: %s", e)
            return False
        return True

    def toggle_video(self, enabled: Optional[bool] = None) -> bool:
        """Flip (or set) local camera state and notify the frame. Returns the new state."""
        self.media.video = (not self.media.video) if enabled is None else enabled
        self._post({"type": FrameMessageType.TOGGLE_VIDEO.value, "enabled": self.media.video})
        return self.media.video

    def toggle_audio(self, enabled: Optional[bool] = None) -> bool:
        """Flip (or set) local microphone state and notify the frame."""
        self.media.audio = (not self.media.audio) if enabled is None else enabled
        self._post({"type": FrameMessageType.TOGGLE_AUDIO.value, "enabled": self.media.audio})
        return self.media.audio

    def toggle_mute(self, muted: Optional[bool] = None) -> bool:
        """Flip (or set) interviewer mute state and notify the frame."""
        self.media.muted = (not self.media.muted) if muted is None else muted
        self._post({"type": FrameMessageType.TOGGLE_MUTE.value, "muted": self.media.muted})
        return self.media.muted

    def receive(self, payload: Any, origin: Optional[str]) -> Optional[FrameEvent]:
        """
        Validate an inbound frame message.

        Returns:
            The accepted FrameEvent, or None if the origin does not match the
            provider origin or the message is not a recognized type.
        """
        if normalize_origin(origin) != self.provider_origin:
            logger.warning("Ignoring frame message from untrusted origin: %s", origin)
            return None

        if not isinstance(payload, dict):
            logger.debug("Ignoring non-object frame message")
            return None

        try:
            message_type = FrameMessageType(payload.get("type"))
        except ValueError:
            logger.debug("Ignoring unknown frame message type: %s", payload.get("type"))
            return None

        if message_type not in INBOUND_TYPES:
            logger.debug("Ignoring outbound-only frame message type: %s", message_type.value)
            return None

        return FrameEvent(type=message_type, payload=dict(payload))
