"""HTTP server exposing the radio stream, the controller and the browser UI."""

from __future__ import annotations

import logging

from aiohttp import web

from aioradiocast.config import CONTROLLER_PAGE, HOME_PAGE, RadioConfig
from aioradiocast.models import ControlCommandPayload

from .service import RadioService

logger = logging.getLogger(__name__)


class RadioServer:
    """aiohttp front end for a RadioService."""

    STREAM_PATH = "/stream"
    CONTROLLER_PATH = "/controller"
    HOME_PATH = "/home"
    STATUS_PATH = "/status"

    def __init__(self, service: RadioService | None = None) -> None:
        """Expose service over HTTP; a default RadioService is created if None."""
        self._service = service if service is not None else RadioService()
        self._runner: web.AppRunner | None = None

    @property
    def service(self) -> RadioService:
        """The engine behind this server."""
        return self._service

    @property
    def config(self) -> RadioConfig:
        """Configuration of the underlying service."""
        return self._service.config

    @property
    def running(self) -> bool:
        """True between start_server() and stop_server()."""
        return self._runner is not None

    def create_web_application(self) -> web.Application:
        """
        Create and configure the aiohttp web application.

        Returns:
            Configured aiohttp web.Application instance.
        """
        app = web.Application()
        app.router.add_get("/", self.on_index)
        app.router.add_get(self.HOME_PATH, self.on_home)
        app.router.add_get(self.CONTROLLER_PATH, self.on_controller_page)
        app.router.add_post(self.CONTROLLER_PATH, self.on_command)
        app.router.add_get(self.STREAM_PATH, self.on_listener_connect)
        app.router.add_get(self.STATUS_PATH, self.on_status)
        app.router.add_get("/{path:.+}", self.on_static_file)
        return app

    async def on_index(self, request: web.Request) -> web.StreamResponse:
        """Redirect to the home page."""
        raise web.HTTPFound(self.HOME_PATH)

    async def on_home(self, request: web.Request) -> web.StreamResponse:
        """Serve the listener page."""
        return await self._serve_file(request, HOME_PAGE)

    async def on_controller_page(self, request: web.Request) -> web.StreamResponse:
        """Serve the controller page."""
        return await self._serve_file(request, CONTROLLER_PAGE)

    async def on_static_file(self, request: web.Request) -> web.StreamResponse:
        """Serve any other file from the public directory."""
        return await self._serve_file(request, request.match_info["path"])

    async def on_status(self, request: web.Request) -> web.StreamResponse:
        """Report the broadcast state."""
        return web.Response(
            text=self._service.status().to_json(), content_type="application/json"
        )

    async def on_command(self, request: web.Request) -> web.StreamResponse:
        """Handle a command posted by the controller UI."""
        body = await request.read()
        try:
            payload = ControlCommandPayload.from_json(body)
        except Exception as err:  # noqa: BLE001
            logger.debug("Rejecting malformed command %r: %s", body, err)
            raise web.HTTPBadRequest(reason="Malformed command") from err

        result = await self._service.handle_command(payload)
        return web.Response(
            text=result.to_json(),
            status=200 if result.ok else 400,
            content_type="application/json",
        )

    async def on_listener_connect(self, request: web.Request) -> web.StreamResponse:
        """Stream the live broadcast to one listener until they disconnect."""
        logger.debug("Incoming listener connection from %s", request.remote)
        response = web.StreamResponse(headers={"Content-Type": "audio/mpeg"})
        response.enable_chunked_encoding()
        await response.prepare(request)

        listener_id, sink = self._service.create_client_stream()
        try:
            async for chunk in sink:
                await response.write(chunk)
        except ConnectionResetError:
            logger.debug("Listener %s went away", listener_id)
        finally:
            sink.end()
            self._service.remove_client_stream(listener_id)
        return response

    async def _serve_file(self, request: web.Request, file: str) -> web.StreamResponse:
        try:
            _extension, full_path = await self._service.get_file_info(file)
        except FileNotFoundError as err:
            logger.debug("File not found: %s", file)
            raise web.HTTPNotFound from err
        return web.FileResponse(full_path)

    async def start_server(self, port: int | None = None, host: str | None = None) -> None:
        """
        Listen for listeners and controller requests.

        Args:
            port: TCP port, defaults to the configured port.
            host: Address to bind, defaults to the configured host. "0.0.0.0"
                binds every interface.

        Raises:
            RuntimeError: If the server is already running.
            OSError: If the address cannot be bound.
        """
        if self._runner is not None:
            raise RuntimeError("Radio server is already running")
        port = port if port is not None else self.config.port
        host = host if host is not None else self.config.host

        runner = web.AppRunner(self.create_web_application())
        await runner.setup()
        site = web.TCPSite(runner, host=None if host == "0.0.0.0" else host, port=port)
        try:
            await site.start()
        except OSError as err:
            logger.error("Cannot listen on %s:%d: %s", host, port, err)
            await runner.cleanup()
            raise
        self._runner = runner
        logger.info("Radio server listening on %s:%d", host, port)

    async def stop_server(self) -> None:
        """Stop accepting requests; a no-op when not running."""
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        await runner.cleanup()
        logger.info("Radio server stopped")

    async def close(self) -> None:
        """Stop the broadcast, disconnect listeners and shut the server down."""
        await self._service.close()
        await self.stop_server()
