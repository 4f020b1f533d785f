"""Trigger detection on raw log lines."""

from dataclasses import dataclass


@dataclass(frozen=True)
class TriggerDetector:
    """Literal, case-sensitive substring match. No regex, no state."""

    pattern: str

    def __post_init__(self) -> None:
        if not self.pattern:
            raise ValueError("Trigger pattern must not be empty")

    def matches(self, line: str) -> bool:
        """Return True if the line contains the trigger pattern."""
        return self.pattern in line
