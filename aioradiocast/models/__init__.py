"""Models for the aioradiocast control protocol."""

from __future__ import annotations

__all__ = [
    "CommandResultType",
    "ControlCommandPayload",
    "ControlResultPayload",
    "PlaybackStateType",
    "RadioCommand",
    "RadioStatusPayload",
    "control",
    "types",
]

from . import control, types
from .control import ControlCommandPayload, ControlResultPayload, RadioStatusPayload
from .types import CommandResultType, PlaybackStateType, RadioCommand
