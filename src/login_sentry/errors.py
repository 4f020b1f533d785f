"""Exceptions raised by login-sentry.

Anything derived from LoginSentryError is fatal for the daemon: the process
exits non-zero and the service supervisor restarts it.
"""


class LoginSentryError(Exception):
    """Base class for fatal daemon errors."""


class ConfigError(LoginSentryError, ValueError):
    """Configuration file could not be parsed or holds invalid values."""


class ArtifactDirectoryError(LoginSentryError):
    """Capture directory could not be created or given the right owner."""


class ArtifactFinalizeError(LoginSentryError):
    """A captured file could not be locked down to its final owner and mode."""


class StreamClosedError(LoginSentryError):
    """The log follower ended or could not be started."""

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode


class AlreadyRunningError(LoginSentryError):
    """Another daemon instance holds the PID file."""
