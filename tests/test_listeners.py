from __future__ import annotations

import asyncio

import pytest

from aioradiocast.server.listeners import ListenerRegistry, ListenerSink


@pytest.mark.asyncio
async def test_broadcast_reaches_every_open_listener() -> None:
    registry = ListenerRegistry()
    sinks = [registry.register()[1] for _ in range(3)]

    await registry.broadcaster().write(b"hello")

    for sink in sinks:
        assert await sink.read() == b"hello"


@pytest.mark.asyncio
async def test_closed_listener_is_pruned_on_broadcast() -> None:
    registry = ListenerRegistry()
    open_id, open_sink = registry.register()
    closed_id, closed_sink = registry.register()
    closed_sink.end()

    await registry.broadcaster().write(b"hello")

    assert len(registry) == 1
    assert open_id in registry
    assert closed_id not in registry
    assert await open_sink.read() == b"hello"
    assert await closed_sink.read() == b""


@pytest.mark.asyncio
async def test_broadcast_without_listeners_is_accepted() -> None:
    registry = ListenerRegistry()
    broadcaster = registry.broadcaster()

    await broadcaster.write(b"nobody")

    assert broadcaster.bytes_written == 6
    assert not broadcaster.writable_ended


@pytest.mark.asyncio
async def test_late_listener_only_gets_later_chunks() -> None:
    registry = ListenerRegistry()
    broadcaster = registry.broadcaster()
    _, early = registry.register()
    await broadcaster.write(b"first")
    _, late = registry.register()
    await broadcaster.write(b"second")

    assert await early.read() == b"first"
    assert await early.read() == b"second"
    assert await late.read() == b"second"


def test_deregister_unknown_listener_is_ignored() -> None:
    registry = ListenerRegistry()
    listener_id, sink = registry.register()

    registry.deregister("not-a-listener")
    registry.deregister(listener_id)
    registry.deregister(listener_id)

    assert len(registry) == 0
    assert sink.ended


def test_registered_ids_are_unique() -> None:
    registry = ListenerRegistry()
    ids = {registry.register()[0] for _ in range(20)}
    assert len(ids) == 20
    assert set(registry) == ids
    assert all(registry.get(listener_id) is not None for listener_id in ids)


@pytest.mark.asyncio
async def test_lagging_listener_drops_oldest_chunks() -> None:
    sink = ListenerSink("slow", max_chunks=2)

    for chunk in (b"a", b"b", b"c"):
        sink.write(chunk)

    assert sink.dropped == 1
    assert await sink.read() == b"b"
    assert await sink.read() == b"c"


@pytest.mark.asyncio
async def test_sink_iteration_stops_when_ended() -> None:
    sink = ListenerSink("listener")
    received: list[bytes] = []

    async def _consume() -> None:
        async for chunk in sink:
            received.append(chunk)

    consumer = asyncio.create_task(_consume())
    sink.write(b"one")
    sink.write(b"two")
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    sink.end()
    await asyncio.wait_for(consumer, timeout=1)

    assert received == [b"one", b"two"]


def test_write_after_end_is_ignored() -> None:
    sink = ListenerSink("gone")
    sink.end()
    sink.write(b"late")
    assert sink.dropped == 0
