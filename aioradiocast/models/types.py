"""Models for enum types used by aioradiocast."""

from enum import Enum


class RadioCommand(Enum):
    """Commands understood by the control endpoint besides effect names."""

    START = "start"
    """Start streaming the current source."""
    STOP = "stop"
    """Stop the current stream; listeners stay connected."""


class PlaybackStateType(Enum):
    """Enum for Playback States."""

    IDLE = "idle"
    """No throttle is feeding the broadcaster."""
    STREAMING = "streaming"
    """A throttle is feeding the broadcaster."""


class CommandResultType(Enum):
    """Outcome reported back to the control endpoint caller."""

    OK = "ok"
    ERROR = "error"
