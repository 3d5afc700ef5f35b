"""Live audio broadcast server with effect splicing."""

from .config import RadioConfig
from .exceptions import (
    EffectBusyError,
    EffectNotFoundError,
    MixerError,
    NotStreamingError,
    RadioError,
    SourceUnavailableError,
)

__all__ = [
    "EffectBusyError",
    "EffectNotFoundError",
    "MixerError",
    "NotStreamingError",
    "RadioConfig",
    "RadioError",
    "SourceUnavailableError",
]
