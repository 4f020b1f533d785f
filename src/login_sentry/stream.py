"""Live log stream read from a follower process.

The follower (journalctl -f by default) is expected to run forever. If it
exits on its own, iteration raises StreamClosedError. Calling stop() ends
iteration quietly instead.
"""

import asyncio
from collections.abc import AsyncIterator

import structlog

from login_sentry.errors import StreamClosedError

log = structlog.get_logger()

# Longest accepted log line (bytes). A trigger inside a longer line is not
# reliably detected.
LINE_LIMIT = 1024 * 1024


class LogStream:
    """Async iterator over the lines printed by a log follower command."""

    def __init__(self, command: list[str], line_limit: int = LINE_LIMIT):
        self.command = command
        self.line_limit = line_limit
        self._proc: asyncio.subprocess.Process | None = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> None:
        """Spawn the follower.

        Does nothing once stop() has been called.

        Raises:
            StreamClosedError: If the command cannot be started.
        """
        if self._stopping:
            return
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                limit=self.line_limit,
            )
        except OSError as e:
            raise StreamClosedError(f"Cannot start log stream {self.command[0]}: {e}") from e
        log.info("stream_started", command=" ".join(self.command), pid=self._proc.pid)

    def __aiter__(self) -> AsyncIterator[str]:
        return self.lines()

    async def lines(self) -> AsyncIterator[str]:
        """Yield lines in emission order, without the trailing newline.

        Raises:
            StreamClosedError: If the follower ends without stop() being called.
        """
        if self._proc is None:
            await self.start()
            if self._proc is None:
                return
        assert self._proc.stdout is not None

        while True:
            try:
                raw = await self._proc.stdout.readline()
            except ValueError:
                # Over-long line. If its newline was already buffered the whole line
                # is gone; otherwise only the buffered part is, and the rest arrives
                # as the next line.
                log.warning("stream_line_too_long", limit=self.line_limit)
                continue

            if not raw:
                returncode = await self._proc.wait()
                if self._stopping:
                    return
                log.error("stream_closed", returncode=returncode)
                raise StreamClosedError(
                    f"Log stream ended unexpectedly (exit status {returncode})",
                    returncode=returncode,
                )

            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def stop(self) -> None:
        """Stop the follower. Pending iteration ends without an error."""
        self._stopping = True
        if self._proc is None:
            return
        try:
            self._proc.terminate()
            await asyncio.wait_for(self._proc.wait(), timeout=5.0)
        except ProcessLookupError:
            pass  # Process already exited
        except asyncio.TimeoutError:
            self._proc.kill()
        log.debug("stream_stopped")
