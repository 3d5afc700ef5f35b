"""Connected listeners and the broadcaster that fans audio out to them."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Iterator
from uuid import uuid4

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 64


class ListenerSink:
    """
    Per-listener chunk queue.

    The broadcaster pushes into it without ever waiting; the HTTP layer drains it
    at whatever pace the listener's connection allows. When the queue is full the
    oldest chunk is dropped, so a stalled listener only loses its own audio.
    """

    def __init__(self, listener_id: str, max_chunks: int = DEFAULT_QUEUE_SIZE) -> None:
        """Create an open sink for the given listener id."""
        self.listener_id = listener_id
        self._chunks: deque[bytes] = deque(maxlen=max_chunks)
        self._ended = False
        self._dropped = 0
        self._data_event = asyncio.Event()

    @property
    def ended(self) -> bool:
        """True once the listener went away."""
        return self._ended

    @property
    def dropped(self) -> int:
        """Number of chunks dropped because the listener fell behind."""
        return self._dropped

    def write(self, chunk: bytes) -> None:
        """Queue a chunk for the listener."""
        if self._ended:
            return
        if len(self._chunks) == self._chunks.maxlen:
            self._dropped += 1
            logger.debug("Listener %s is lagging, dropping oldest chunk", self.listener_id)
        self._chunks.append(chunk)
        self._data_event.set()

    def end(self) -> None:
        """Mark the sink closed; queued chunks are discarded."""
        self._ended = True
        self._chunks.clear()
        self._data_event.set()

    async def read(self) -> bytes:
        """Wait for the next chunk; b"" once the sink is ended."""
        while not self._chunks:
            if self._ended:
                return b""
            self._data_event.clear()
            await self._data_event.wait()
        return self._chunks.popleft()

    def __aiter__(self) -> AsyncIterator[bytes]:
        """Iterate chunks until the sink is ended."""
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        while chunk := await self.read():
            yield chunk


class ListenerRegistry:
    """Listener id to sink mapping shared by the HTTP layer and the broadcaster."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        """Create an empty registry; queue_size bounds every new sink."""
        self._sinks: dict[str, ListenerSink] = {}
        self._queue_size = queue_size

    def register(self) -> tuple[str, ListenerSink]:
        """Create a sink for a new listener and return its id and the sink."""
        listener_id = uuid4().hex
        sink = ListenerSink(listener_id, self._queue_size)
        self._sinks[listener_id] = sink
        logger.info("Listener %s connected (%d total)", listener_id, len(self._sinks))
        return listener_id, sink

    def deregister(self, listener_id: str) -> None:
        """Remove a listener; unknown ids are ignored."""
        sink = self._sinks.pop(listener_id, None)
        if sink is None:
            return
        sink.end()
        logger.info("Listener %s disconnected (%d total)", listener_id, len(self._sinks))

    def get(self, listener_id: str) -> ListenerSink | None:
        """Return the sink registered under listener_id, if any."""
        return self._sinks.get(listener_id)

    def snapshot(self) -> list[tuple[str, ListenerSink]]:
        """Return the current (id, sink) pairs."""
        return list(self._sinks.items())

    def broadcaster(self) -> Broadcaster:
        """Return a writable that fans chunks out to every registered sink."""
        return Broadcaster(self)

    def __len__(self) -> int:
        """Number of registered listeners."""
        return len(self._sinks)

    def __contains__(self, listener_id: object) -> bool:
        """Whether listener_id is registered."""
        return listener_id in self._sinks

    def __iter__(self) -> Iterator[str]:
        """Iterate registered listener ids."""
        return iter(list(self._sinks))


class Broadcaster:
    """Writable that duplicates every chunk to all open listener sinks."""

    def __init__(self, registry: ListenerRegistry) -> None:
        """Attach to a registry."""
        self._registry = registry
        self._bytes_written = 0

    @property
    def bytes_written(self) -> int:
        """Bytes accepted since creation."""
        return self._bytes_written

    @property
    def writable_ended(self) -> bool:
        """A broadcaster is never ended; listeners outlive streams."""
        return False

    async def write(self, chunk: bytes) -> None:
        """Deliver chunk to every sink registered right now, pruning closed ones."""
        for listener_id, sink in self._registry.snapshot():
            if sink.ended:
                logger.debug("Pruning closed listener %s", listener_id)
                self._registry.deregister(listener_id)
                continue
            sink.write(chunk)
        self._bytes_written += len(chunk)

    def end(self) -> None:
        """Ignore end of input; the next stream reuses the same listeners."""
