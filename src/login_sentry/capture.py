"""Single-frame capture through an external command.

Runs the configured capture command (ffmpeg by default) once, bounded by a
hard timeout. Outcomes are returned as a tagged CaptureResult; a timeout or
a failing command is a normal result, not an exception.
"""

import asyncio
import os
import signal
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog

log = structlog.get_logger()


class CaptureStatus(Enum):
    """How a capture attempt ended."""

    SUCCESS = "success"
    TIMED_OUT = "timed_out"
    EXITED_NONZERO = "exited_nonzero"
    NO_OUTPUT = "no_output"
    LAUNCH_FAILED = "launch_failed"


@dataclass
class CaptureResult:
    """Result of one capture attempt."""

    status: CaptureStatus
    path: Path
    elapsed: float
    returncode: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is CaptureStatus.SUCCESS


def build_command(template: list[str], device: str, output: Path) -> list[str]:
    """Fill {device} and {output} placeholders in an argv template."""
    return [
        arg.replace("{device}", device).replace("{output}", str(output)) for arg in template
    ]


class CaptureInvoker:
    """Runs the capture command against a device, one attempt at a time."""

    def __init__(self, command: list[str], device: str, timeout: float = 5.0):
        """Initialize the invoker.

        Args:
            command: argv template with {device} and {output} placeholders
            device: Capture source, e.g. /dev/video0
            timeout: Seconds before the command is killed
        """
        self.command = command
        self.device = device
        self.timeout = timeout

    async def capture(self, output: Path) -> CaptureResult:
        """Capture one frame to `output`.

        SUCCESS requires the command to exit 0 within the timeout and the
        output file to exist afterwards. On any other outcome a partial file
        at `output` is removed.
        """
        argv = build_command(self.command, self.device, output)
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,  # No tty interaction
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,  # Capture stderr for error messages
                start_new_session=True,  # Detach from controlling terminal
            )
        except OSError as e:
            return self._failed(output, CaptureStatus.LAUNCH_FAILED, start, error=str(e))

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            try:
                # Own session, so the process group id is the pid
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass  # Exited between the timeout and the kill
            await process.wait()
            return self._failed(
                output,
                CaptureStatus.TIMED_OUT,
                start,
                returncode=process.returncode,
                error=f"no result after {self.timeout}s",
            )

        if process.returncode != 0:
            error_msg = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
            return self._failed(
                output,
                CaptureStatus.EXITED_NONZERO,
                start,
                returncode=process.returncode,
                error=error_msg or None,
            )

        if not output.exists():
            return self._failed(output, CaptureStatus.NO_OUTPUT, start, returncode=0)

        return CaptureResult(
            status=CaptureStatus.SUCCESS,
            path=output,
            elapsed=time.monotonic() - start,
            returncode=0,
        )

    def _failed(
        self,
        output: Path,
        status: CaptureStatus,
        start: float,
        returncode: int | None = None,
        error: str | None = None,
    ) -> CaptureResult:
        """Build a failure result and drop any partial output file."""
        try:
            output.unlink(missing_ok=True)
        except OSError as e:
            log.warning("capture_cleanup_failed", path=str(output), error=str(e))
        return CaptureResult(
            status=status,
            path=output,
            elapsed=time.monotonic() - start,
            returncode=returncode,
            error=error,
        )
