"""Configuration for the radio server."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

ROOT_DIRECTORY = Path(__file__).resolve().parent.parent
AUDIO_DIRECTORY = ROOT_DIRECTORY / "audio"

HOME_PAGE = "home/index.html"
CONTROLLER_PAGE = "controller/index.html"


@dataclass(frozen=True)
class RadioConfig(DataClassORJSONMixin):
    """Settings read once at process start."""

    public_directory: str = str(ROOT_DIRECTORY / "public")
    """Directory holding the browser UI assets."""
    fx_directory: str = str(AUDIO_DIRECTORY / "fx")
    """Directory searched for sound effects."""
    default_source: str = str(AUDIO_DIRECTORY / "songs" / "conversation.mp3")
    """Source streamed when playback starts."""
    fallback_bitrate: str = "128000"
    """Bits per second used when the bitrate probe fails."""
    bitrate_divisor: int = 8
    """Divides probed bits per second into throttle bytes per second."""
    audio_media_type: str = "mp3"
    """Container type passed to sox for both mixer inputs and its output."""
    song_volume: str = "0.99"
    """Volume factor for the live source while mixing."""
    fx_volume: str = "0.1"
    """Volume factor for the effect while mixing."""
    fallback_fx_duration: float = 3.0
    """Seconds of source fed to the mixer when an effect's duration is unknown."""
    probe_timeout: float = 10.0
    """Seconds before a hung sox probe is killed."""
    chunk_size: int = 4096
    """Bytes read from a source per chunk."""
    listener_queue_size: int = 64
    """Chunks buffered per listener before the oldest is dropped."""
    host: str = "0.0.0.0"
    port: int = 3000

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.bitrate_divisor <= 0:
            raise ValueError(f"bitrate_divisor must be positive, got {self.bitrate_divisor}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.listener_queue_size <= 0:
            raise ValueError(
                f"listener_queue_size must be positive, got {self.listener_queue_size}"
            )

    @classmethod
    def from_file(cls, path: str | Path) -> RadioConfig:
        """Load a config from a JSON file; missing keys keep their defaults."""
        return cls.from_json(Path(path).read_bytes())

    class Config(BaseConfig):
        """Config for parsing json settings."""

        forbid_extra_keys = True
