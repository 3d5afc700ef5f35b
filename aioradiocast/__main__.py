"""Run the radio server from the command line."""

from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import suppress

from aioradiocast.advertise import StreamAdvertiser
from aioradiocast.config import RadioConfig
from aioradiocast.exceptions import RadioError
from aioradiocast.server import RadioServer, RadioService
from aioradiocast.util import listener_url

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="aioradiocast",
        description="Live audio broadcast server with sound effect splicing",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", help="JSON file overriding the default settings")
    parser.add_argument("--host", help="address to listen on (overrides config)")
    parser.add_argument("--port", type=int, help="port to listen on (overrides config)")
    parser.add_argument("--source", help="audio file to broadcast (overrides config)")
    parser.add_argument("--advertise", action="store_true", help="advertise the stream via mDNS")
    parser.add_argument("--autostart", action="store_true", help="start streaming immediately")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="logging level",
    )
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> RadioConfig:
    """Build the configuration from the config file and command line overrides."""
    config = RadioConfig.from_file(args.config) if args.config else RadioConfig()
    overrides = {
        key: value
        for key, value in (("host", args.host), ("port", args.port), ("default_source", args.source))
        if value is not None
    }
    if overrides:
        config = RadioConfig.from_dict({**config.to_dict(), **overrides})
    return config


async def run(config: RadioConfig, *, advertise: bool, autostart: bool) -> None:
    """Serve until cancelled."""
    server = RadioServer(RadioService(config))
    await server.start_server()
    advertiser = StreamAdvertiser(config.port, RadioServer.STREAM_PATH) if advertise else None
    logger.info(
        "Listeners can tune in at %s",
        listener_url(config.host, config.port, RadioServer.STREAM_PATH),
    )
    try:
        if advertiser is not None:
            await advertiser.start()
        if autostart:
            try:
                await server.service.start_streaming()
            except RadioError as err:
                logger.error("Autostart failed: %s", err)
        await asyncio.Event().wait()
    finally:
        if advertiser is not None:
            await advertiser.stop()
        await server.close()


def main(argv: list[str] | None = None) -> None:
    """Entry point for `python -m aioradiocast`."""
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    config = load_config(args)
    with suppress(KeyboardInterrupt):
        asyncio.run(run(config, advertise=args.advertise, autostart=args.autostart))


if __name__ == "__main__":
    main()
