"""Sound effect lookup and splicing effects into the live stream."""

from __future__ import annotations

import asyncio
import logging
import math
import os
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from aioradiocast.exceptions import (
    EffectBusyError,
    EffectNotFoundError,
    MixerError,
    NotStreamingError,
)

from .stream import PassThrough, Pipe, ProcessStdin, ProcessStdout, Throttle

if TYPE_CHECKING:
    from aioradiocast.config import RadioConfig

    from .playback import BroadcastSession, PlaybackRun
    from .prober import BitrateProber

logger = logging.getLogger(__name__)


class EffectLibrary:
    """Resolves short effect names to files in the effects directory."""

    def __init__(self, directory: str) -> None:
        """Search directory for effects."""
        self.directory = os.path.abspath(directory)

    async def resolve(self, effect_name: str) -> str:
        """
        Return the path of the first file whose name starts with effect_name.

        Matching ignores case. Entries are checked in sorted order so the result
        does not depend on the filesystem's listing order.

        Raises:
            EffectNotFoundError: If no entry matches.
            OSError: If the directory cannot be listed.
        """
        wanted = effect_name.strip().lower()
        if not wanted:
            raise EffectNotFoundError(effect_name)
        entries = await asyncio.to_thread(os.listdir, self.directory)
        for entry in sorted(entries):
            if entry.lower().startswith(wanted):
                return os.path.join(self.directory, entry)
        raise EffectNotFoundError(effect_name)


@dataclass(eq=False)
class SpliceJob:
    """An effect being mixed into the live stream, and the stages it owns."""

    effect: str
    """Path of the effect file."""
    run: PlaybackRun
    """Playback run the effect was spliced into."""
    process: asyncio.subprocess.Process
    """The sox mixer."""
    mixer_stdin: ProcessStdin
    to_mixer: Pipe
    """Source reader -> mixer stdin."""
    from_mixer: Pipe
    """Mixer stdout -> mixed pass-through."""
    mixed_feed: Pipe
    """Mixed pass-through -> live throttle."""
    supervisor: asyncio.Task[None] | None = field(default=None, repr=False)

    async def cancel(self) -> None:
        """Tear the splice down without resuming playback."""
        if self.supervisor is not None and self.supervisor is not asyncio.current_task():
            self.supervisor.cancel()
        for pipe in (self.to_mixer, self.mixed_feed, self.from_mixer):
            await pipe.unpipe()
        self.mixer_stdin.end()
        if self.process.returncode is None:
            with suppress(ProcessLookupError):
                self.process.kill()
        await self.process.wait()
        logger.debug("Splice of %s cancelled", self.effect)


class EffectSplicer:
    """Splices sound effects into the live stream without interrupting listeners."""

    def __init__(
        self,
        session: BroadcastSession,
        library: EffectLibrary,
        prober: BitrateProber,
        config: RadioConfig,
    ) -> None:
        """
        Initialize the splicer.

        Args:
            session: The live session effects are spliced into.
            library: Resolves effect names to files.
            prober: Measures effect durations.
            config: Mixer volumes, media type and fallback effect duration.
        """
        self._session = session
        self._library = library
        self._prober = prober
        self._config = config

    async def _execute_mixer(self, effect: str) -> asyncio.subprocess.Process:
        """Spawn sox mixing the live audio on stdin with the effect file."""
        media_type = self._config.audio_media_type
        args = [
            "-t", media_type,
            "-v", self._config.song_volume,
            "-m", "-",
            "-t", media_type,
            "-v", self._config.fx_volume,
            effect,
            "-t", media_type,
            "-",
        ]  # fmt: skip
        return await asyncio.create_subprocess_exec(
            "sox",
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )

    async def _effect_duration(self, effect: str) -> float:
        """Seconds the effect lasts, falling back to the configured default."""
        duration = await self._prober.probe_duration(effect)
        if duration is None:
            logger.warning(
                "Unknown duration for %s, assuming %ss", effect, self._config.fallback_fx_duration
            )
            duration = self._config.fallback_fx_duration
        return duration

    async def append_effect(self, effect_name: str) -> SpliceJob:
        """
        Mix the named effect into the live stream.

        Returns once the mixed audio is wired to the broadcaster; the effect
        then plays out in the background and plain playback resumes after it.

        Raises:
            EffectNotFoundError: If no effect matches; the stream is untouched.
            NotStreamingError: If nothing is playing.
            EffectBusyError: If another effect is still playing.
            MixerError: If the mixer cannot be started; plain playback continues.
        """
        effect = await self._library.resolve(effect_name)
        duration = await self._effect_duration(effect)
        logger.info("Adding effect %s", effect)
        session = self._session
        async with session.lock:
            run = session.run
            if run is None or run.throttle.writable_ended:
                raise NotStreamingError("nothing is streaming")
            if run.splice is not None:
                raise EffectBusyError(f"effect {run.splice.effect!r} is still playing")
            # Bytes of live source that play while the effect lasts.
            segment_bytes = max(1, math.ceil(duration * session.byte_rate))

            old_throttle = run.throttle
            reader = run.reader
            old_throttle.pause()
            if run.feed is not None:
                await run.feed.unpipe()
            logger.debug("Source detached from the live throttle")
            # Hand back what the paused throttle still holds so nothing is skipped.
            reader.unshift(old_throttle.take_buffered())

            try:
                process = await self._execute_mixer(effect)
            except OSError as err:
                logger.error("Could not start mixer for %s: %s", effect, err)
                old_throttle.resume()
                session.attach_feed(run, Pipe(reader, old_throttle, name="source->throttle"))
                raise MixerError(f"could not start mixer: {err}") from err

            assert process.stdin is not None
            assert process.stdout is not None
            mixer_stdin = ProcessStdin(process.stdin)
            mixed = PassThrough()
            to_mixer = Pipe(reader, mixer_stdin, limit=segment_bytes, name="source->mixer")
            from_mixer = Pipe(ProcessStdout(process.stdout), mixed, name="mixer->mixed")
            to_mixer.start()
            from_mixer.start()

            throttle = Throttle(session.byte_rate)
            mixed_feed = Pipe(mixed, throttle, end=False, name="mixed->throttle")
            session.attach_throttle(run, throttle)
            session.attach_feed(run, mixed_feed)
            old_throttle.abort()

            job = SpliceJob(
                effect=effect,
                run=run,
                process=process,
                mixer_stdin=mixer_stdin,
                to_mixer=to_mixer,
                from_mixer=from_mixer,
                mixed_feed=mixed_feed,
            )
            run.splice = job
            job.supervisor = asyncio.create_task(self._supervise(job), name="splice-supervisor")
        return job

    async def _supervise(self, job: SpliceJob) -> None:
        """Wait for the effect to play out, then resume plain playback."""
        to_mixer, from_mixer, returncode = await asyncio.gather(
            job.to_mixer.wait(),
            job.from_mixer.wait(),
            job.process.wait(),
            return_exceptions=True,
        )
        failure: BaseException | None = None
        for result in (to_mixer, from_mixer, returncode):
            if isinstance(result, BaseException):
                failure = result
                break
        else:
            if returncode != 0:
                failure = MixerError(f"mixer exited with code {returncode}")

        if failure is None:
            await job.mixed_feed.wait()
        else:
            logger.error("Effect %s failed: %s; resuming plain playback", job.effect, failure)
            job.mixer_stdin.end()
            await job.mixed_feed.unpipe()

        session = self._session
        async with session.lock:
            run = job.run
            if run.splice is not job:
                # Stopped or torn down while the effect played.
                return
            run.splice = None
            if session.run is not run or run.throttle.writable_ended:
                return
            logger.info("Effect %s finished, resuming %s", job.effect, session.source)
            session.attach_feed(run, Pipe(run.reader, run.throttle, name="source->throttle"))
