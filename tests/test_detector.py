"""Tests for trigger detection."""

import pytest

from login_sentry.detector import TriggerDetector


@pytest.fixture
def detector() -> TriggerDetector:
    return TriggerDetector("authentication failure")


def test_matches_pam_failure(detector: TriggerDetector):
    """A typical PAM failure line triggers."""
    line = (
        "Mar 09 14:05:07 host sudo[4242]: pam_unix(sudo:auth): authentication failure; "
        "logname=alice uid=1000 euid=0 tty=/dev/pts/0 ruser=alice rhost=  user=alice"
    )
    assert detector.matches(line) is True


def test_matches_anywhere_in_line(detector: TriggerDetector):
    """The pattern may appear at the start, middle or end."""
    assert detector.matches("authentication failure")
    assert detector.matches("xx authentication failure")
    assert detector.matches("authentication failure xx")


def test_no_match_for_other_lines(detector: TriggerDetector):
    """Unrelated lines do not trigger."""
    assert detector.matches("session opened for user alice") is False
    assert detector.matches("") is False


def test_match_is_case_sensitive(detector: TriggerDetector):
    """Case differences do not match."""
    assert detector.matches("Authentication Failure") is False
    assert detector.matches("AUTHENTICATION FAILURE") is False


def test_match_is_literal():
    """Regex metacharacters in the pattern are matched literally."""
    detector = TriggerDetector("fail.*")
    assert detector.matches("login fail.* here") is True
    assert detector.matches("login failed") is False


def test_partial_pattern_does_not_match(detector: TriggerDetector):
    """The whole pattern must be present."""
    assert detector.matches("authentication fail") is False
    assert detector.matches("authenticationfailure") is False


def test_empty_pattern_rejected():
    """An empty pattern would match every line."""
    with pytest.raises(ValueError, match="empty"):
        TriggerDetector("")
