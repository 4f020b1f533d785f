"""Rate limiting for captures, derived from the capture directory."""

import time
from collections.abc import Callable
from enum import Enum

from login_sentry.artifacts import ArtifactStore


class Decision(Enum):
    """Outcome of a debounce check."""

    ALLOW = "allow"
    SUPPRESS = "suppress"


class DebounceGate:
    """Allow a capture only if the newest artifact is at least `window` old.

    There is no in-memory "last capture" time. Every decision stats the
    directory again, so the gate agrees with the disk across restarts.
    """

    def __init__(
        self,
        store: ArtifactStore,
        window: float = 4.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.window = window
        self._clock = clock

    def decide(self, now: float | None = None) -> Decision:
        """Decide whether a capture may run now.

        Args:
            now: Wall-clock time to evaluate at. Read from the clock when omitted.
        """
        latest = self.store.most_recent()
        if latest is None:
            return Decision.ALLOW

        if now is None:
            now = self._clock()
        if now - latest.mtime < self.window:
            return Decision.SUPPRESS
        return Decision.ALLOW
