from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from aioradiocast.exceptions import SourceUnavailableError
from aioradiocast.models import PlaybackStateType
from aioradiocast.server.listeners import ListenerRegistry
from aioradiocast.server.playback import BroadcastSession, PlaybackPipeline
from aioradiocast.server.prober import BitrateProber


def _pipeline(source: str, fallback_bitrate: str = "128000") -> PlaybackPipeline:
    registry = ListenerRegistry(queue_size=1000)
    session = BroadcastSession(registry.broadcaster(), source)
    return PlaybackPipeline(session, BitrateProber(fallback_bitrate), chunk_size=1000)


def _without_sox(pipeline: PlaybackPipeline):
    return patch.object(pipeline._prober, "_execute_sox", side_effect=OSError("no sox"))  # noqa: SLF001


@pytest.mark.asyncio
async def test_start_streams_whole_file_at_fallback_rate(tmp_path) -> None:
    source = tmp_path / "song.mp3"
    source.write_bytes(b"s" * 1000)
    registry = ListenerRegistry(queue_size=1000)
    _, sink = registry.register()
    session = BroadcastSession(registry.broadcaster(), str(source))
    pipeline = PlaybackPipeline(session, BitrateProber("128000"), chunk_size=1000)

    with _without_sox(pipeline):
        done = await pipeline.launch()
        assert session.state == PlaybackStateType.STREAMING
        assert session.throttle is not None
        assert session.throttle.bytes_per_second == 16000
        assert session.bitrate == "128000"
        assert await asyncio.wait_for(done, timeout=5) == 1000

    assert session.state == PlaybackStateType.IDLE
    assert session.run is None
    assert await sink.read() == b"s" * 1000


@pytest.mark.asyncio
async def test_start_returns_bytes_broadcast(tmp_path) -> None:
    source = tmp_path / "song.mp3"
    source.write_bytes(b"s" * 2500)
    pipeline = _pipeline(str(source), fallback_bitrate="800000")

    with _without_sox(pipeline):
        assert await asyncio.wait_for(pipeline.start(), timeout=5) == 2500


@pytest.mark.asyncio
async def test_missing_source_leaves_session_idle(tmp_path) -> None:
    pipeline = _pipeline(str(tmp_path / "missing.mp3"))
    session = pipeline._session  # noqa: SLF001

    with _without_sox(pipeline), pytest.raises(SourceUnavailableError):
        await pipeline.launch()

    assert session.run is None
    assert session.state == PlaybackStateType.IDLE


@pytest.mark.asyncio
async def test_start_while_streaming_returns_the_running_stream(tmp_path) -> None:
    source = tmp_path / "song.mp3"
    source.write_bytes(b"s" * 64_000)
    pipeline = _pipeline(str(source))

    with _without_sox(pipeline):
        first = await pipeline.launch()
        second = await pipeline.launch()
        assert first is second
        await pipeline.stop()
        await asyncio.wait_for(first, timeout=5)


@pytest.mark.asyncio
async def test_stop_ends_the_stream_early(tmp_path) -> None:
    source = tmp_path / "song.mp3"
    source.write_bytes(b"s" * 64_000)
    pipeline = _pipeline(str(source))
    session = pipeline._session  # noqa: SLF001

    with _without_sox(pipeline):
        done = await pipeline.launch()
        await asyncio.sleep(0.05)
        reader = session.reader
        await pipeline.stop()
        broadcast = await asyncio.wait_for(done, timeout=5)

    assert 0 < broadcast < 64_000
    assert session.state == PlaybackStateType.IDLE
    assert reader is not None
    assert reader.closed


@pytest.mark.asyncio
async def test_stop_is_idempotent(tmp_path) -> None:
    source = tmp_path / "song.mp3"
    source.write_bytes(b"s" * 64_000)
    pipeline = _pipeline(str(source))
    session = pipeline._session  # noqa: SLF001

    await pipeline.stop()
    assert session.state == PlaybackStateType.IDLE

    with _without_sox(pipeline):
        done = await pipeline.launch()
        throttle = session.throttle
        assert throttle is not None
        with patch.object(throttle, "end", wraps=throttle.end) as end:
            await pipeline.stop()
            await pipeline.stop()
            assert end.call_count == 1
        await asyncio.wait_for(done, timeout=5)

    await pipeline.stop()
    assert session.state == PlaybackStateType.IDLE


@pytest.mark.asyncio
async def test_restart_after_stop_plays_from_the_beginning(tmp_path) -> None:
    source = tmp_path / "song.mp3"
    source.write_bytes(b"s" * 3000)
    pipeline = _pipeline(str(source), fallback_bitrate="800000")

    with _without_sox(pipeline):
        first = await pipeline.launch()
        await pipeline.stop()
        second = await pipeline.launch()
        assert second is not first
        assert await asyncio.wait_for(second, timeout=5) == 3000
        assert first.done()


@pytest.mark.asyncio
async def test_cancelled_start_leaves_the_engine_restartable(tmp_path) -> None:
    source = tmp_path / "song.mp3"
    source.write_bytes(b"s" * 64_000)
    pipeline = _pipeline(str(source))
    session = pipeline._session  # noqa: SLF001

    with _without_sox(pipeline):
        with pytest.raises(TimeoutError):
            await asyncio.wait_for(pipeline.start(), timeout=0.05)
        first = session.run
        assert first is not None
        assert not first.done.cancelled()
        assert session.state == PlaybackStateType.STREAMING

        await pipeline.stop()
        done = await asyncio.wait_for(pipeline.launch(), timeout=5)
        assert done is not first.done
        assert first.released.is_set()
        assert session.state == PlaybackStateType.STREAMING

        await pipeline.stop()
        await asyncio.wait_for(done, timeout=5)

    assert first.done.result() > 0
