"""Radio server: broadcast engine and its HTTP front end."""

from .effects import EffectLibrary, EffectSplicer, SpliceJob
from .listeners import Broadcaster, ListenerRegistry, ListenerSink
from .playback import BroadcastSession, PlaybackPipeline, PlaybackRun
from .prober import BitrateProber
from .server import RadioServer
from .service import RadioService
from .stream import PassThrough, Pipe, ProcessStdin, ProcessStdout, SourceReader, Throttle

__all__ = [
    "BitrateProber",
    "BroadcastSession",
    "Broadcaster",
    "EffectLibrary",
    "EffectSplicer",
    "ListenerRegistry",
    "ListenerSink",
    "PassThrough",
    "Pipe",
    "PlaybackPipeline",
    "PlaybackRun",
    "ProcessStdin",
    "ProcessStdout",
    "RadioServer",
    "RadioService",
    "SourceReader",
    "SpliceJob",
    "Throttle",
]
