"""Background daemon for login-sentry.

Follows the system log and, for each line containing the trigger pattern,
takes one photo unless the newest photo on disk is younger than the
debounce window. Lines are handled strictly one at a time; the loop waits
for a capture to finish (or be killed) before reading the next line.
"""

import asyncio
import os
import signal
import stat
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import psutil
import structlog

from login_sentry.artifacts import ArtifactStore, resolve_owner
from login_sentry.capture import CaptureInvoker, CaptureResult
from login_sentry.config import Config
from login_sentry.debounce import DebounceGate, Decision
from login_sentry.detector import TriggerDetector
from login_sentry.errors import AlreadyRunningError
from login_sentry.logging import configure
from login_sentry.stream import LogStream

log = structlog.get_logger()


@dataclass
class DaemonState:
    """Runtime counters of the daemon."""

    running: bool = False
    lines_seen: int = 0
    triggers: int = 0
    suppressed: int = 0
    captures: int = 0
    failures: int = 0
    last_capture: str | None = None

    def record_capture(self, filename: str) -> None:
        """Update state after a finalized capture."""
        self.captures += 1
        self.last_capture = filename


class Daemon:
    """Main daemon class: log stream -> trigger -> debounce -> capture -> finalize."""

    def __init__(
        self,
        config: Config,
        stream: LogStream | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.state = DaemonState()

        owner = resolve_owner(config.capture.owner, config.capture.group)
        self.store = ArtifactStore(
            config.capture_dir,
            owner,
            prefix=config.capture.prefix,
            extension=config.capture.extension,
        )
        self.detector = TriggerDetector(config.trigger.pattern)
        self.gate = DebounceGate(self.store, window=config.trigger.debounce_seconds, clock=clock)
        self.invoker = CaptureInvoker(
            config.capture.command,
            config.capture.device,
            timeout=config.capture.timeout,
        )
        self.stream = stream or LogStream(config.stream.command)

        self._shutdown_event = asyncio.Event()
        self._stop_task: asyncio.Task | None = None
        self._pid_written = False

    async def process_line(self, line: str) -> CaptureResult | None:
        """Handle one log line.

        Returns:
            The capture result if a capture was attempted, None if the line
            did not match or was debounced.

        Raises:
            ArtifactFinalizeError: If a successful capture cannot be locked down.
        """
        self.state.lines_seen += 1
        if not self.detector.matches(line):
            return None
        self.state.triggers += 1

        if self.gate.decide() is Decision.SUPPRESS:
            self.state.suppressed += 1
            return None

        output = self.store.path_for(datetime.now())
        result = await self.invoker.capture(output)

        if not result.ok:
            self.state.failures += 1
            log.warning(
                "capture_failed",
                status=result.status.value,
                returncode=result.returncode,
                error=result.error,
                elapsed=round(result.elapsed, 2),
            )
            return result

        artifact = self.store.finalize(result.path)
        self.state.record_capture(artifact.name)
        log.info(
            "capture_saved",
            filename=artifact.name,
            elapsed=round(result.elapsed, 2),
        )
        return result

    async def run_event_loop(self) -> None:
        """Consume the log stream until shutdown.

        Raises:
            StreamClosedError: If the stream ends without a shutdown request.
        """
        async for line in self.stream:
            await self.process_line(line)
            if self._shutdown_event.is_set():
                break

    async def start(self) -> None:
        """Start the daemon and run until shutdown or a fatal error."""
        from importlib.metadata import PackageNotFoundError, version

        try:
            pkg_version = version("login-sentry")
        except PackageNotFoundError:
            pkg_version = "unknown"
        log.info("daemon_starting", version=pkg_version)

        capture = self.config.capture
        log.info(
            "daemon_config",
            pattern=self.config.trigger.pattern,
            debounce_seconds=self.config.trigger.debounce_seconds,
            capture_timeout=capture.timeout,
            device=capture.device,
            directory=str(self.store.directory),
            owner=f"{capture.owner}:{capture.group}",
        )

        # Setup signal handlers
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        # Check for existing instance
        if self._check_already_running():
            log.error("daemon_already_running")
            raise AlreadyRunningError("Daemon is already running")

        self._write_pid_file()

        self.store.ensure_directory()
        log.info("directory_ready", path=str(self.store.directory))

        self._check_device()

        if self._shutdown_event.is_set():
            log.info("daemon_start_aborted")
            return

        await self.stream.start()

        self.state.running = True
        log.info("daemon_started")

        await self.run_event_loop()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        log.info("daemon_stopping")
        self.state.running = False

        await self.stream.stop()
        if self._stop_task:
            await self._stop_task
            self._stop_task = None

        if self._pid_written:
            self._remove_pid_file()

        log.info(
            "daemon_stopped",
            lines=self.state.lines_seen,
            triggers=self.state.triggers,
            captures=self.state.captures,
            failures=self.state.failures,
            last_capture=self.state.last_capture,
        )

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        self._shutdown_event.set()
        if self._stop_task is None:
            # Ends the stream iteration; an in-flight capture still completes
            self._stop_task = asyncio.get_running_loop().create_task(self.stream.stop())

    def _check_device(self) -> None:
        """Warn when the capture device is missing; captures will fail until it appears."""
        device = Path(self.config.capture.device)
        try:
            is_char_device = stat.S_ISCHR(device.stat().st_mode)
        except OSError:
            is_char_device = False
        if not is_char_device:
            log.warning("capture_device_missing", device=str(device))

    def _write_pid_file(self) -> None:
        """Write PID file."""
        self.config.pid_path.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_path.write_text(str(os.getpid()))
        self._pid_written = True
        log.debug("pid_file_written", path=str(self.config.pid_path))

    def _remove_pid_file(self) -> None:
        """Remove PID file."""
        if self.config.pid_path.exists():
            self.config.pid_path.unlink()
            log.debug("pid_file_removed")

    def _check_already_running(self) -> bool:
        """Check if daemon is already running.

        Verifies not just that a process with the PID exists, but that it's
        actually the login-sentry daemon, since PIDs are reused after a reboot.
        """
        if not self.config.pid_path.exists():
            return False

        try:
            pid = int(self.config.pid_path.read_text().strip())
        except ValueError:
            log.warning("pid_file_invalid", reason="not a number")
            self._remove_pid_file()
            return False

        if pid == os.getpid():
            return False

        try:
            proc = psutil.Process(pid)
            cmdline = proc.cmdline()

            if _is_daemon_cmdline(cmdline):
                log.info(
                    "daemon_already_running_verified",
                    pid=pid,
                    cmdline=" ".join(cmdline[:3]),
                )
                return True

            # Process exists but it's not the daemon - stale PID file
            log.warning(
                "pid_file_stale",
                reason="different process",
                pid=pid,
                actual_process=proc.name(),
            )
            self._remove_pid_file()
            return False

        except psutil.NoSuchProcess:
            log.warning("pid_file_stale", reason="process not found", pid=pid)
            self._remove_pid_file()
            return False
        except psutil.AccessDenied:
            # Can't inspect process - assume it's running
            log.warning("pid_check_access_denied", pid=pid)
            return True


def _is_daemon_cmdline(cmdline: list[str]) -> bool:
    cmdline_str = " ".join(cmdline).lower()
    return "login-sentry" in cmdline_str or "login_sentry" in cmdline_str


def running_daemon_pid(pid_path: Path) -> int | None:
    """Return the PID recorded in pid_path if that process is the daemon.

    Read-only: a stale or unreadable PID file is reported as None and left
    in place.
    """
    try:
        pid = int(pid_path.read_text().strip())
    except (OSError, ValueError):
        return None

    try:
        if _is_daemon_cmdline(psutil.Process(pid).cmdline()):
            return pid
        return None
    except psutil.NoSuchProcess:
        return None
    except psutil.AccessDenied:
        # Can't inspect process - assume it's the daemon
        return pid


async def run_daemon(config: Config | None = None, log_file: bool = True) -> None:
    """Run the daemon until shutdown.

    Args:
        config: Optional config, loads from file if not provided
        log_file: Write the JSON log file in addition to console output

    Raises:
        LoginSentryError: On any fatal condition (the caller exits non-zero).
    """
    if config is None:
        config = Config.load()

    configure(config, log_file=log_file)

    daemon = Daemon(config)

    try:
        await daemon.start()
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()
