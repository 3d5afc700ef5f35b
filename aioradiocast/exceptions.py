"""Exceptions raised by the radio engine."""

from __future__ import annotations


class RadioError(Exception):
    """Base class for errors reported back to a control command caller."""


class EffectNotFoundError(RadioError):
    """No file in the effects directory matches the requested effect name."""

    def __init__(self, effect_name: str) -> None:
        """Initialize with the effect name that failed to resolve."""
        super().__init__(f"the effect {effect_name!r} wasn't found")
        self.effect_name = effect_name


class SourceUnavailableError(RadioError):
    """The configured source file is missing or unreadable."""

    def __init__(self, source: str, reason: str) -> None:
        """Initialize with the source path and the underlying reason."""
        super().__init__(f"cannot open source {source!r}: {reason}")
        self.source = source


class NotStreamingError(RadioError):
    """An operation needs a live stream but the engine is idle."""


class MixerError(RadioError):
    """The external mixing process failed during a splice."""


class EffectBusyError(RadioError):
    """Another effect is still being spliced into the stream."""
