"""Rate-limited playback of the current source into the broadcaster."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING

from aioradiocast.exceptions import SourceUnavailableError
from aioradiocast.models.types import PlaybackStateType

from .stream import DEFAULT_CHUNK_SIZE, Pipe, SourceReader, Throttle, Writable

if TYPE_CHECKING:
    from .effects import SpliceJob
    from .prober import BitrateProber

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PlaybackRun:
    """Stages wired for one start() until the stream ends."""

    reader: SourceReader
    """Open handle on the source being played."""
    throttle: Throttle
    """The throttle currently feeding the broadcaster."""
    done: asyncio.Future[int]
    """Resolves with the bytes broadcast once the run ends."""
    feed: Pipe | None = None
    """Pipe currently writing into the throttle."""
    splice: SpliceJob | None = None
    """Effect splice in flight, if any."""
    bytes_emitted: int = 0
    """Bytes emitted by throttles this run has finished with."""
    released: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    """Set once the run has let go of its reader and stages."""
    _finish_task: asyncio.Task[None] | None = field(default=None, repr=False)


class BroadcastSession:
    """
    The single live broadcast.

    Tracks what is playing and which stages feed the broadcaster. Playback and
    effect splicing both rewire it, always while holding `lock`.
    """

    def __init__(self, broadcaster: Writable, source: str) -> None:
        """
        Create an idle session.

        Args:
            broadcaster: Writable every live throttle emits into.
            source: Path of the source played on start.
        """
        self.lock = asyncio.Lock()
        self.broadcaster = broadcaster
        self.source = source
        self.bitrate: str | None = None
        """Last probed bitrate in bits per second."""
        self.byte_rate: float = 0.0
        """Throttle rate derived from the last probe."""
        self._run: PlaybackRun | None = None

    @property
    def run(self) -> PlaybackRun | None:
        """The active playback run, if any."""
        return self._run

    @property
    def throttle(self) -> Throttle | None:
        """The throttle currently feeding the broadcaster."""
        return self._run.throttle if self._run is not None else None

    @property
    def reader(self) -> SourceReader | None:
        """The open handle on the active source."""
        return self._run.reader if self._run is not None else None

    @property
    def state(self) -> PlaybackStateType:
        """Whether a throttle is feeding the broadcaster."""
        if self._run is None or self._run.throttle.writable_ended:
            return PlaybackStateType.IDLE
        return PlaybackStateType.STREAMING

    def begin(self, reader: SourceReader, throttle: Throttle) -> PlaybackRun:
        """Wire reader -> throttle -> broadcaster as a new run."""
        if self._run is not None:
            raise RuntimeError("A playback run is already active")
        run = PlaybackRun(
            reader=reader,
            throttle=throttle,
            done=asyncio.get_running_loop().create_future(),
        )
        self._run = run
        self.attach_throttle(run, throttle)
        self.attach_feed(run, Pipe(reader, throttle, name="source->throttle"))
        return run

    def attach_throttle(self, run: PlaybackRun, throttle: Throttle) -> None:
        """Make throttle the live stage of run, emitting into the broadcaster."""
        run.throttle = throttle
        task = asyncio.create_task(throttle.run(self.broadcaster), name="throttle->broadcaster")
        task.add_done_callback(partial(self._on_output_done, run, throttle))

    def attach_feed(self, run: PlaybackRun, pipe: Pipe) -> None:
        """Start pipe as the upstream of run's throttle."""
        run.feed = pipe
        pipe.start()
        pipe.add_done_callback(partial(self._on_feed_done, run))

    def _on_feed_done(self, run: PlaybackRun, pipe: Pipe) -> None:
        if (err := pipe.exception()) is None:
            return
        logger.error("%s failed: %s", pipe.name, err)
        if pipe is run.feed and pipe.destination is run.throttle:
            # Nothing else will feed this throttle; let the run end.
            run.throttle.end()

    def _on_output_done(
        self, run: PlaybackRun, throttle: Throttle, task: asyncio.Task[int]
    ) -> None:
        run.bytes_emitted += throttle.bytes_emitted
        if throttle is not run.throttle:
            # Replaced by a splice; the run goes on with its successor.
            return
        error = None if task.cancelled() else task.exception()
        if self._run is run:
            self._run = None
        run._finish_task = asyncio.create_task(self._finish(run, error))  # noqa: SLF001

    async def _finish(self, run: PlaybackRun, error: BaseException | None) -> None:
        """Release everything the run still holds and resolve its future."""
        try:
            if run.splice is not None:
                await run.splice.cancel()
                run.splice = None
            if run.feed is not None:
                await run.feed.unpipe()
            run.reader.close()
        finally:
            run.released.set()
        if run.done.done():
            return
        if error is not None:
            logger.error("Stream of %s failed: %s", self.source, error)
            run.done.set_exception(error)
        else:
            logger.info("Stream of %s ended after %d bytes", self.source, run.bytes_emitted)
            run.done.set_result(run.bytes_emitted)


class PlaybackPipeline:
    """Start and stop plain playback of the session's source."""

    def __init__(
        self,
        session: BroadcastSession,
        prober: BitrateProber,
        *,
        bitrate_divisor: int = 8,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            session: The session this pipeline wires.
            prober: Used to derive the throttle rate from the source.
            bitrate_divisor: Divides probed bits per second into throttle bytes per second.
            chunk_size: Bytes read from the source at a time.
        """
        self._session = session
        self._prober = prober
        self._bitrate_divisor = bitrate_divisor
        self._chunk_size = chunk_size

    def create_file_stream(self, filename: str) -> SourceReader:
        """Open filename for chunked reading."""
        return SourceReader.open(filename, chunk_size=self._chunk_size)

    async def launch(self) -> asyncio.Future[int]:
        """
        Wire up playback and return the future resolving when it ends.

        Raises:
            SourceUnavailableError: If the source cannot be opened; the session stays idle.
        """
        session = self._session
        async with session.lock:
            if (run := session.run) is not None:
                if not run.throttle.writable_ended:
                    logger.warning("Already streaming %s, ignoring start", session.source)
                    return run.done
                # A stopped run is still flushing; let it finish first.
                await run.released.wait()

            logger.info("Starting stream of %s", session.source)
            bitrate = await self._prober.probe_bitrate(session.source)
            byte_rate = float(bitrate) / self._bitrate_divisor
            try:
                reader = self.create_file_stream(session.source)
            except OSError as err:
                logger.error("Cannot open %s: %s", session.source, err)
                raise SourceUnavailableError(session.source, str(err)) from err

            session.bitrate = bitrate
            session.byte_rate = byte_rate
            run = session.begin(reader, Throttle(byte_rate))
            logger.debug("Streaming %s at %s bytes/s", session.source, byte_rate)
            return run.done

    async def start(self) -> int:
        """Play the source to the end (or until stopped); return the bytes broadcast."""
        done = await self.launch()
        # Cancelling the caller must not cancel the run itself.
        return await asyncio.shield(done)

    async def stop(self) -> None:
        """End the live throttle; a no-op while idle."""
        session = self._session
        async with session.lock:
            run = session.run
            if run is None or run.throttle.writable_ended:
                logger.debug("Stop requested while idle")
                return
            logger.info("Stopping stream of %s", session.source)
            if run.splice is not None:
                splice, run.splice = run.splice, None
                await splice.cancel()
            run.throttle.end()
