"""Byte-stream pipeline primitives built on asyncio."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from contextlib import suppress
from typing import BinaryIO, Protocol

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4096
DEFAULT_HIGH_WATER_MARK = 16 * 1024


class Readable(Protocol):
    """Something a Pipe can pull chunks from."""

    cancel_safe: bool
    """Whether a pending read() may be cancelled without losing data."""

    async def read(self) -> bytes:
        """Return the next chunk, or b"" once exhausted."""

    def unshift(self, chunk: bytes) -> None:
        """Push a chunk back so the next read() returns it first."""


class Writable(Protocol):
    """Something a Pipe can push chunks into."""

    @property
    def writable_ended(self) -> bool:
        """True once end() was called."""

    async def write(self, chunk: bytes) -> None:
        """Accept a chunk, then wait while the writable is over capacity."""

    def end(self) -> None:
        """Signal that no more chunks will be written."""


class SourceReader:
    """
    Read a binary file in chunks without blocking the event loop.

    Reads run in a worker thread, so a pending read() is not cancel safe. Chunks
    handed back through unshift() are returned before any further file data.
    """

    cancel_safe = False

    def __init__(
        self,
        file: BinaryIO,
        *,
        name: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """
        Wrap an already open binary file.

        Args:
            file: File object opened in binary read mode.
            name: Label used in logs, defaults to the file's name.
            chunk_size: Maximum bytes returned by one read().
        """
        self._file = file
        self.name = name if name is not None else str(getattr(file, "name", "<stream>"))
        self._chunk_size = chunk_size
        self._pushed_back: deque[bytes] = deque()
        self._eof = False
        self._closed = False

    @classmethod
    def open(cls, path: str, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> SourceReader:
        """Open path for reading. Raises OSError if it cannot be opened."""
        return cls(open(path, "rb"), name=path, chunk_size=chunk_size)  # noqa: SIM115

    @property
    def closed(self) -> bool:
        """True once close() was called."""
        return self._closed

    async def read(self) -> bytes:
        """Return the next chunk, or b"" at end of file."""
        if self._pushed_back:
            return self._pushed_back.popleft()
        if self._eof or self._closed:
            return b""
        chunk: bytes = await asyncio.to_thread(self._file.read, self._chunk_size)
        if not chunk:
            self._eof = True
        return chunk

    def unshift(self, chunk: bytes) -> None:
        """Push a chunk back in front of the remaining file data."""
        if chunk:
            self._pushed_back.appendleft(chunk)

    def close(self) -> None:
        """Close the underlying file; further reads return b""."""
        if self._closed:
            return
        self._closed = True
        self._pushed_back.clear()
        self._file.close()


class PassThrough:
    """In-memory buffer handing chunks from one task to another with backpressure."""

    cancel_safe = True

    def __init__(self, high_water_mark: int = DEFAULT_HIGH_WATER_MARK) -> None:
        """Create an empty buffer that applies backpressure above high_water_mark bytes."""
        self._high_water_mark = high_water_mark
        self._buffer: deque[bytes] = deque()
        self._buffered = 0
        self._ended = False
        self._data_event = asyncio.Event()
        self._space_event = asyncio.Event()
        self._space_event.set()

    @property
    def buffered(self) -> int:
        """Bytes currently waiting to be read."""
        return self._buffered

    @property
    def writable_ended(self) -> bool:
        """True once end() was called."""
        return self._ended

    @property
    def readable_ended(self) -> bool:
        """True once end() was called and every buffered chunk was read."""
        return self._ended and not self._buffer

    async def write(self, chunk: bytes) -> None:
        """Buffer a chunk, then wait until the buffer drops below the high water mark."""
        if self._ended:
            raise RuntimeError("write after end")
        self._push(chunk)
        if self._buffered >= self._high_water_mark:
            self._space_event.clear()
        await self._space_event.wait()

    def unshift(self, chunk: bytes) -> None:
        """Put a chunk back at the front of the buffer."""
        if chunk:
            self._buffer.appendleft(chunk)
            self._buffered += len(chunk)
            self._data_event.set()

    async def read(self) -> bytes:
        """Return the next buffered chunk, waiting for one; b"" once ended and empty."""
        while not self._buffer:
            if self._ended:
                return b""
            self._data_event.clear()
            await self._data_event.wait()
        chunk = self._buffer.popleft()
        self._buffered -= len(chunk)
        if self._buffered < self._high_water_mark:
            self._space_event.set()
        return chunk

    def end(self) -> None:
        """Mark the end of input; readers drain what is left and then see b""."""
        if self._ended:
            return
        self._ended = True
        self._data_event.set()
        self._space_event.set()

    def take_buffered(self) -> bytes:
        """Remove and return everything buffered but not yet read."""
        data = b"".join(self._buffer)
        self._buffer.clear()
        self._buffered = 0
        self._space_event.set()
        return data

    def _push(self, chunk: bytes) -> None:
        if chunk:
            self._buffer.append(chunk)
            self._buffered += len(chunk)
            self._data_event.set()


class Throttle(PassThrough):
    """
    Forward buffered bytes to a destination at a bounded rate.

    Writers fill the buffer; run() emits it so that the average output rate never
    exceeds bytes_per_second. The output side can be paused without dropping
    buffered data, which lets a splice detach the upstream and salvage whatever
    the throttle still holds.
    """

    def __init__(
        self,
        bytes_per_second: float,
        *,
        high_water_mark: int = DEFAULT_HIGH_WATER_MARK,
    ) -> None:
        """Create a throttle emitting at most bytes_per_second."""
        if bytes_per_second <= 0:
            raise ValueError(f"bytes_per_second must be positive, got {bytes_per_second}")
        super().__init__(high_water_mark)
        self.bytes_per_second = bytes_per_second
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._aborted = False
        self._bytes_emitted = 0

    @property
    def paused(self) -> bool:
        """True while the output side is paused."""
        return not self._resumed.is_set()

    @property
    def aborted(self) -> bool:
        """True once abort() was called."""
        return self._aborted

    @property
    def bytes_emitted(self) -> int:
        """Bytes forwarded to the destination so far."""
        return self._bytes_emitted

    def pause(self) -> None:
        """Stop emitting; buffered bytes stay in place and writers see backpressure."""
        self._resumed.clear()

    def resume(self) -> None:
        """Continue emitting after pause()."""
        self._resumed.set()

    def abort(self) -> None:
        """End immediately, discarding buffered bytes, and let run() return."""
        self._aborted = True
        self.take_buffered()
        self.end()
        self._resumed.set()

    async def run(self, destination: Writable) -> int:
        """Emit buffered chunks into destination until ended; return bytes emitted."""
        loop = asyncio.get_running_loop()
        window_start = loop.time()
        window_bytes = 0
        while True:
            if self.paused:
                await self._resumed.wait()
                window_start = loop.time()
                window_bytes = 0
            chunk = await self.read()
            if not chunk or self._aborted:
                break
            if self.paused:
                # Paused while waiting for data; keep the chunk for later.
                self.unshift(chunk)
                continue
            await destination.write(chunk)
            self._bytes_emitted += len(chunk)
            window_bytes += len(chunk)
            delay = window_start + window_bytes / self.bytes_per_second - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
        logger.debug("Throttle finished after %d bytes", self._bytes_emitted)
        return self._bytes_emitted


class ProcessStdin:
    """Writable adapter around a subprocess's stdin."""

    def __init__(self, writer: asyncio.StreamWriter) -> None:
        """Wrap the StreamWriter returned by asyncio.create_subprocess_exec."""
        self._writer = writer
        self._ended = False

    @property
    def writable_ended(self) -> bool:
        """True once end() was called or the pipe was closed."""
        return self._ended or self._writer.is_closing()

    async def write(self, chunk: bytes) -> None:
        """Write a chunk and wait for the pipe to drain."""
        self._writer.write(chunk)
        await self._writer.drain()

    def end(self) -> None:
        """Close stdin so the process sees end of input."""
        if self._ended:
            return
        self._ended = True
        with suppress(OSError, RuntimeError):
            self._writer.close()


class ProcessStdout:
    """Readable adapter around a subprocess's stdout."""

    cancel_safe = True

    def __init__(self, reader: asyncio.StreamReader, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        """Wrap the StreamReader returned by asyncio.create_subprocess_exec."""
        self._reader = reader
        self._chunk_size = chunk_size
        self._pushed_back: deque[bytes] = deque()

    async def read(self) -> bytes:
        """Return the next chunk of process output, or b"" at EOF."""
        if self._pushed_back:
            return self._pushed_back.popleft()
        return await self._reader.read(self._chunk_size)

    def unshift(self, chunk: bytes) -> None:
        """Push a chunk back in front of the remaining output."""
        if chunk:
            self._pushed_back.appendleft(chunk)


class Pipe:
    """
    Copy chunks from a readable into a writable as an independent task.

    The pipe finishes when the source is exhausted, when the destination is
    ended by someone else, once `limit` bytes were copied, or after unpipe().
    A chunk read after detachment was requested is pushed back onto the source,
    so a detached source can be handed to a new consumer without losing data.
    """

    def __init__(
        self,
        source: Readable,
        destination: Writable,
        *,
        end: bool = True,
        limit: int | None = None,
        name: str = "pipe",
    ) -> None:
        """
        Prepare a pipe; call start() to begin copying.

        Args:
            source: Readable to pull from.
            destination: Writable to push into.
            end: Whether to end() the destination once the source is exhausted
                or the limit is reached.
            limit: Maximum number of bytes to copy, None for no limit.
            name: Label used in logs and for the task name.
        """
        self.source = source
        self.destination = destination
        self.name = name
        self._end = end
        self._limit = limit
        self._copied = 0
        self._unpiping = False
        self._writing = False
        self._task: asyncio.Task[int] | None = None

    @property
    def copied(self) -> int:
        """Bytes copied so far."""
        return self._copied

    @property
    def done(self) -> bool:
        """True once the copy task has finished."""
        return self._task is not None and self._task.done()

    def start(self) -> Pipe:
        """Start copying in a new task and return self."""
        if self._task is not None:
            raise RuntimeError(f"{self.name} already started")
        self._task = asyncio.create_task(self._run(), name=self.name)
        return self

    async def wait(self) -> int:
        """Wait for the copy to finish and return the bytes copied."""
        if self._task is None:
            raise RuntimeError(f"{self.name} was never started")
        return await self._task

    def add_done_callback(self, callback: Callable[[Pipe], None]) -> None:
        """Call callback with this pipe once the copy task finishes."""
        if self._task is None:
            raise RuntimeError(f"{self.name} was never started")
        self._task.add_done_callback(lambda _task: callback(self))

    def exception(self) -> BaseException | None:
        """Return the error the copy failed with, if it finished with one."""
        if self._task is None or not self._task.done() or self._task.cancelled():
            return None
        return self._task.exception()

    async def unpipe(self) -> None:
        """Detach the source from the destination and wait until it is detached."""
        if self._task is None or self._task.done():
            self._unpiping = True
            return
        self._unpiping = True
        if self._writing or self.source.cancel_safe:
            self._task.cancel()
        await asyncio.wait([self._task])
        logger.debug("%s unpiped after %d bytes", self.name, self._copied)

    async def _run(self) -> int:
        try:
            while not self._unpiping and not self.destination.writable_ended:
                chunk = await self.source.read()
                if self._unpiping or self.destination.writable_ended:
                    self.source.unshift(chunk)
                    break
                if not chunk:
                    if self._end:
                        self.destination.end()
                    break
                if self._limit is not None:
                    remaining = self._limit - self._copied
                    if len(chunk) > remaining:
                        self.source.unshift(chunk[remaining:])
                        chunk = chunk[:remaining]
                self._copied += len(chunk)
                self._writing = True
                try:
                    await self.destination.write(chunk)
                finally:
                    self._writing = False
                if self._limit is not None and self._copied >= self._limit:
                    if self._end:
                        self.destination.end()
                    break
        except asyncio.CancelledError:
            if not self._unpiping:
                raise
        return self._copied
