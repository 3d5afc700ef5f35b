"""Radio service tying the broadcast engine together."""

from __future__ import annotations

import asyncio
import logging
import os

from aioradiocast.config import RadioConfig
from aioradiocast.exceptions import RadioError
from aioradiocast.models import (
    CommandResultType,
    ControlCommandPayload,
    ControlResultPayload,
    PlaybackStateType,
    RadioCommand,
    RadioStatusPayload,
)

from .effects import EffectLibrary, EffectSplicer, SpliceJob
from .listeners import ListenerRegistry, ListenerSink
from .playback import BroadcastSession, PlaybackPipeline
from .prober import BitrateProber

logger = logging.getLogger(__name__)


class RadioService:
    """One broadcast session with its listeners, playback and effect splicing."""

    def __init__(self, config: RadioConfig | None = None) -> None:
        """Build the engine from config; nothing runs until a start command."""
        self.config = config if config is not None else RadioConfig()
        self.listeners = ListenerRegistry(self.config.listener_queue_size)
        self.session = BroadcastSession(self.listeners.broadcaster(), self.config.default_source)
        self.prober = BitrateProber(self.config.fallback_bitrate, timeout=self.config.probe_timeout)
        self.playback = PlaybackPipeline(
            self.session,
            self.prober,
            bitrate_divisor=self.config.bitrate_divisor,
            chunk_size=self.config.chunk_size,
        )
        self.effects = EffectLibrary(self.config.fx_directory)
        self.splicer = EffectSplicer(self.session, self.effects, self.prober, self.config)
        self._background: set[asyncio.Task[None]] = set()

    def create_client_stream(self) -> tuple[str, ListenerSink]:
        """Register a new listener."""
        return self.listeners.register()

    def remove_client_stream(self, listener_id: str) -> None:
        """Deregister a listener; unknown ids are ignored."""
        self.listeners.deregister(listener_id)

    async def start_streaming(self) -> asyncio.Future[int]:
        """Launch playback in the background and return its completion future."""
        done = await self.playback.launch()
        task = asyncio.create_task(self._report_playback(done))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return done

    async def _report_playback(self, done: asyncio.Future[int]) -> None:
        try:
            await asyncio.shield(done)
        except Exception:
            logger.exception("Playback of %s failed", self.session.source)

    async def stop_streaming(self) -> None:
        """Stop playback; listeners stay connected."""
        await self.playback.stop()

    async def append_effect(self, effect_name: str) -> SpliceJob:
        """Splice the named effect into the live stream."""
        return await self.splicer.append_effect(effect_name)

    async def handle_command(self, payload: ControlCommandPayload) -> ControlResultPayload:
        """Run a controller command and report whether the engine acted on it."""
        logger.info("Command received: %r", payload.command)
        command = payload.as_radio_command()
        try:
            if command is RadioCommand.START:
                await self.start_streaming()
            elif command is RadioCommand.STOP:
                await self.stop_streaming()
            else:
                job = await self.append_effect(payload.normalized)
                logger.info("Added effect %s to the stream", job.effect)
        except (RadioError, OSError) as err:
            logger.warning("Command %r failed: %s", payload.command, err)
            return ControlResultPayload(result=CommandResultType.ERROR, message=str(err))
        return ControlResultPayload(result=CommandResultType.OK)

    def status(self) -> RadioStatusPayload:
        """Describe the current session."""
        session = self.session
        run = session.run
        streaming = session.state == PlaybackStateType.STREAMING
        return RadioStatusPayload(
            state=session.state,
            source=os.path.basename(session.source),
            listeners=len(self.listeners),
            bitrate=int(float(session.bitrate)) if streaming and session.bitrate else None,
            splicing=run is not None and run.splice is not None,
        )

    async def get_file_info(self, file: str) -> tuple[str, str]:
        """
        Resolve file inside the public directory.

        Returns:
            Tuple of (extension, full path).

        Raises:
            FileNotFoundError: If the file does not exist or lies outside the public directory.
        """
        public_directory = os.path.abspath(self.config.public_directory)
        full_path = os.path.abspath(os.path.join(public_directory, file.lstrip("/")))
        if os.path.commonpath([public_directory, full_path]) != public_directory:
            raise FileNotFoundError(file)
        if not await asyncio.to_thread(os.path.isfile, full_path):
            raise FileNotFoundError(full_path)
        return os.path.splitext(full_path)[1], full_path

    async def close(self) -> None:
        """Stop playback and disconnect every listener."""
        await self.stop_streaming()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        for listener_id in list(self.listeners):
            self.listeners.deregister(listener_id)
