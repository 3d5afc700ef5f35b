"""Bitrate and duration probing through the sox command line tool."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

logger = logging.getLogger(__name__)

SOX_BINARY = "sox"
# sox --i prints a single short line; one read is enough.
PROBE_READ_LIMIT = 1024


class BitrateProber:
    """Ask sox about an audio file, degrading to defaults when it cannot answer."""

    def __init__(
        self,
        fallback_bitrate: str,
        *,
        timeout: float | None = 10.0,
        sox_binary: str = SOX_BINARY,
    ) -> None:
        """
        Initialize the prober.

        Args:
            fallback_bitrate: Bits per second returned whenever probing fails.
            timeout: Seconds before a hung sox process is killed, None to wait forever.
            sox_binary: Name or path of the sox executable.
        """
        self.fallback_bitrate = fallback_bitrate
        self._timeout = timeout
        self._sox_binary = sox_binary

    async def _execute_sox(self, args: list[str]) -> asyncio.subprocess.Process:
        """Spawn sox with args, stdout and stderr piped."""
        return await asyncio.create_subprocess_exec(
            self._sox_binary,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def _query(self, args: list[str]) -> str | None:
        """Run sox and return its trimmed output, or None if it failed."""
        try:
            process = await self._execute_sox(args)
        except OSError as err:
            logger.error("Could not run %s: %s", self._sox_binary, err)
            return None

        assert process.stdout is not None
        assert process.stderr is not None
        try:
            async with asyncio.timeout(self._timeout):
                success, error = await asyncio.gather(
                    process.stdout.read(PROBE_READ_LIMIT),
                    process.stderr.read(PROBE_READ_LIMIT),
                )
                await process.wait()
        except TimeoutError:
            logger.error("sox %s timed out after %ss", " ".join(args), self._timeout)
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            return None

        if error:
            logger.error("sox %s failed: %s", " ".join(args), error.decode(errors="replace").strip())
            return None
        return success.decode(errors="replace").strip()

    async def probe_bitrate(self, source: str) -> str:
        """
        Return the bitrate of source in bits per second.

        sox reports kilobits with a trailing "k" ("128k"), which is rewritten to
        plain bits ("128000"). Any failure yields the fallback bitrate; this
        method never raises.
        """
        try:
            output = await self._query(["--i", "-B", source])
        except Exception:
            logger.exception("Unexpected error probing bitrate of %s", source)
            output = None
        if not output:
            logger.warning("Using fallback bitrate %s for %s", self.fallback_bitrate, source)
            return self.fallback_bitrate

        if output.endswith("k"):
            output = output[:-1] + "000"
        try:
            float(output)
        except ValueError:
            logger.warning(
                "Unrecognized bitrate %r for %s, using fallback %s",
                output,
                source,
                self.fallback_bitrate,
            )
            return self.fallback_bitrate
        logger.debug("Probed bitrate of %s: %s", source, output)
        return output

    async def probe_duration(self, source: str) -> float | None:
        """Return the duration of source in seconds, or None if sox cannot tell."""
        try:
            output = await self._query(["--i", "-D", source])
        except Exception:
            logger.exception("Unexpected error probing duration of %s", source)
            return None
        if not output:
            return None
        try:
            duration = float(output)
        except ValueError:
            logger.warning("Unrecognized duration %r for %s", output, source)
            return None
        return duration if duration > 0 else None
