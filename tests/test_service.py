from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from aioradiocast.config import RadioConfig
from aioradiocast.models import (
    CommandResultType,
    ControlCommandPayload,
    PlaybackStateType,
)
from aioradiocast.server.service import RadioService


def _service(tmp_path) -> RadioService:
    fx_directory = tmp_path / "fx"
    fx_directory.mkdir()
    (fx_directory / "fx01.mp3").write_bytes(b"fx")
    public_directory = tmp_path / "public"
    (public_directory / "home").mkdir(parents=True)
    (public_directory / "home" / "index.html").write_text("<h1>radio</h1>")
    return RadioService(
        RadioConfig(
            default_source=str(tmp_path / "song.mp3"),
            fx_directory=str(fx_directory),
            public_directory=str(public_directory),
        )
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("command", ["start", "    START    ", "Start\n"])
async def test_start_command_is_normalized(tmp_path, command: str) -> None:
    service = _service(tmp_path)
    with (
        patch.object(service, "start_streaming", AsyncMock()) as start,
        patch.object(service, "stop_streaming", AsyncMock()) as stop,
    ):
        result = await service.handle_command(ControlCommandPayload(command=command))

    assert result.ok
    start.assert_awaited_once()
    stop.assert_not_awaited()


@pytest.mark.asyncio
async def test_stop_command(tmp_path) -> None:
    service = _service(tmp_path)
    with (
        patch.object(service, "start_streaming", AsyncMock()) as start,
        patch.object(service, "stop_streaming", AsyncMock()) as stop,
    ):
        result = await service.handle_command(ControlCommandPayload(command=" stop "))

    assert result.result == CommandResultType.OK
    stop.assert_awaited_once()
    start.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_effect_command_fails_without_action(tmp_path) -> None:
    service = _service(tmp_path)
    with (
        patch.object(service, "start_streaming", AsyncMock()) as start,
        patch.object(service, "stop_streaming", AsyncMock()) as stop,
    ):
        result = await service.handle_command(
            ControlCommandPayload(command="    NON EXISTING    ")
        )

    assert not result.ok
    assert result.message == "the effect 'non existing' wasn't found"
    start.assert_not_awaited()
    stop.assert_not_awaited()
    assert service.session.state == PlaybackStateType.IDLE


@pytest.mark.asyncio
async def test_effect_command_passes_normalized_name(tmp_path) -> None:
    service = _service(tmp_path)
    with patch.object(service, "append_effect", AsyncMock()) as append_effect:
        result = await service.handle_command(ControlCommandPayload(command="  FX01 "))

    assert result.ok
    append_effect.assert_awaited_once_with("fx01")


@pytest.mark.asyncio
async def test_effect_command_while_idle_fails(tmp_path) -> None:
    service = _service(tmp_path)
    with patch.object(service.prober, "_execute_sox", side_effect=OSError("no sox")):
        result = await service.handle_command(ControlCommandPayload(command="fx01"))

    assert result.result == CommandResultType.ERROR
    assert result.message == "nothing is streaming"


@pytest.mark.asyncio
async def test_start_command_with_missing_source_fails(tmp_path) -> None:
    service = _service(tmp_path)
    with patch.object(service.prober, "_execute_sox", side_effect=OSError("no sox")):
        result = await service.handle_command(ControlCommandPayload(command="start"))

    assert not result.ok
    assert result.message is not None
    assert "song.mp3" in result.message
    assert service.session.state == PlaybackStateType.IDLE


@pytest.mark.asyncio
async def test_status_reports_listeners_and_streaming(tmp_path) -> None:
    service = _service(tmp_path)
    (tmp_path / "song.mp3").write_bytes(b"s" * 64_000)
    service.create_client_stream()

    status = service.status()
    assert status.state == PlaybackStateType.IDLE
    assert status.source == "song.mp3"
    assert status.listeners == 1
    assert status.bitrate is None

    with patch.object(service.prober, "_execute_sox", side_effect=OSError("no sox")):
        done = await service.start_streaming()
        status = service.status()
        assert status.state == PlaybackStateType.STREAMING
        assert status.bitrate == 128000
        assert not status.splicing
        await service.close()
        await asyncio.wait_for(done, timeout=5)

    assert len(service.listeners) == 0


@pytest.mark.asyncio
async def test_get_file_info(tmp_path) -> None:
    service = _service(tmp_path)

    extension, full_path = await service.get_file_info("home/index.html")

    assert extension == ".html"
    assert full_path == str(tmp_path / "public" / "home" / "index.html")


@pytest.mark.asyncio
@pytest.mark.parametrize("file", ["missing.css", "../song.mp3", "home/../../fx/fx01.mp3", "home"])
async def test_get_file_info_outside_or_missing(tmp_path, file: str) -> None:
    service = _service(tmp_path)
    (tmp_path / "song.mp3").write_bytes(b"secret")

    with pytest.raises(FileNotFoundError):
        await service.get_file_info(file)


@pytest.mark.asyncio
async def test_get_file_info_ignores_leading_slash(tmp_path) -> None:
    service = _service(tmp_path)

    extension, full_path = await service.get_file_info("/home/index.html")

    assert extension == ".html"
    assert full_path == str(tmp_path / "public" / "home" / "index.html")


def test_client_streams_register_and_deregister(tmp_path) -> None:
    service = _service(tmp_path)

    listener_id, sink = service.create_client_stream()
    assert listener_id in service.listeners

    service.remove_client_stream(listener_id)
    service.remove_client_stream(listener_id)
    assert listener_id not in service.listeners
    assert sink.ended


@pytest.mark.asyncio
async def test_start_command_after_close_restarts_playback(tmp_path) -> None:
    service = _service(tmp_path)
    (tmp_path / "song.mp3").write_bytes(b"s" * 64_000)

    with patch.object(service.prober, "_execute_sox", side_effect=OSError("no sox")):
        first = await service.start_streaming()
        await service.close()
        assert not first.cancelled()

        result = await service.handle_command(ControlCommandPayload(command="start"))
        assert result.ok
        run = service.session.run
        assert run is not None
        assert run.done is not first
        assert service.session.state == PlaybackStateType.STREAMING

        await service.close()
        await asyncio.wait_for(run.done, timeout=5)
