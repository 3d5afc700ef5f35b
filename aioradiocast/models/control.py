"""
Control messages for the radio HTTP endpoint.

The browser controller posts a single command string. The server answers with a
result object telling whether the engine acted on it.
"""

from __future__ import annotations

from dataclasses import dataclass

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import CommandResultType, PlaybackStateType, RadioCommand


# Client -> Server: POST /controller body
@dataclass
class ControlCommandPayload(DataClassORJSONMixin):
    """A raw command sent by the controller UI."""

    command: str
    """Either a RadioCommand value or the name of an effect to splice in."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if not isinstance(self.command, str):
            raise TypeError(f"Command must be a string, got {type(self.command).__name__}")

    @property
    def normalized(self) -> str:
        """Command with surrounding whitespace removed, lowercased."""
        return self.command.strip().lower()

    def as_radio_command(self) -> RadioCommand | None:
        """Return the matching RadioCommand, or None for effect names."""
        try:
            return RadioCommand(self.normalized)
        except ValueError:
            return None


# Server -> Client: POST /controller response
@dataclass
class ControlResultPayload(DataClassORJSONMixin):
    """Result of a control command."""

    result: CommandResultType
    message: str | None = None
    """Human readable reason, only set on errors."""

    @property
    def ok(self) -> bool:
        """True when the engine accepted the command."""
        return self.result == CommandResultType.OK

    class Config(BaseConfig):
        """Config for serializing json messages."""

        omit_none = True


# Server -> Client: GET /status response
@dataclass
class RadioStatusPayload(DataClassORJSONMixin):
    """Snapshot of the broadcast session."""

    state: PlaybackStateType
    source: str
    listeners: int
    bitrate: int | None = None
    """Probed bitrate in bits per second, only set while streaming."""
    splicing: bool = False

    class Config(BaseConfig):
        """Config for serializing json messages."""

        omit_none = True
