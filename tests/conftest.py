"""Shared test fixtures for login-sentry."""

import os
import time
from contextlib import ExitStack
from pathlib import Path
from typing import Iterator
from unittest.mock import patch

import pytest

from login_sentry.artifacts import ArtifactStore, OwnerIdentity
from login_sentry.config import CaptureConfig, Config, StreamConfig, TriggerConfig

# Writes a fake frame to the output path given as $0
WRITE_FRAME = ["/bin/sh", "-c", 'printf frame > "$0"', "{output}"]
# Never returns on its own
HANG = ["/bin/sh", "-c", "exec sleep 10", "{output}"]
# Exits non-zero after leaving a partial file behind
FAIL_PARTIAL = [
    "/bin/sh",
    "-c",
    'printf partial > "$0"; echo "no such device" >&2; exit 1',
    "{output}",
]


def make_owner() -> OwnerIdentity:
    """Owner matching the test process, so chown is a no-op."""
    return OwnerIdentity(
        uid=os.getuid(),
        gid=os.getgid(),
        user=str(os.getuid()),
        group=str(os.getgid()),
    )


def make_config(
    capture_dir: Path,
    command: list[str] | None = None,
    timeout: float = 5.0,
    debounce_seconds: float = 4.0,
    stream_command: list[str] | None = None,
) -> Config:
    """Create a Config that captures into capture_dir as the current user."""
    return Config(
        capture=CaptureConfig(
            owner=str(os.getuid()),
            group=str(os.getgid()),
            device="/dev/null",
            directory=str(capture_dir),
            timeout=timeout,
            command=command or list(WRITE_FRAME),
        ),
        trigger=TriggerConfig(debounce_seconds=debounce_seconds),
        stream=StreamConfig(command=stream_command or ["/bin/sh", "-c", "exec sleep 10"]),
    )


def make_artifact(store: ArtifactStore, name: str, age: float = 0.0) -> Path:
    """Create an artifact file whose mtime is `age` seconds in the past."""
    path = store.directory / f"{store.prefix}{name}{store.extension}"
    path.write_bytes(b"frame")
    mtime = time.time() - age
    os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def capture_dir(tmp_path: Path) -> Path:
    """Capture directory path (not created)."""
    return tmp_path / "captures"


@pytest.fixture
def store(capture_dir: Path) -> ArtifactStore:
    """ArtifactStore owned by the current user with its directory in place."""
    store = ArtifactStore(capture_dir, make_owner())
    store.ensure_directory()
    return store


def _patch_config_paths(stack: ExitStack, base_path: Path) -> None:
    """Apply all Config path property patches to the given ExitStack.

    Args:
        stack: ExitStack to register patches with
        base_path: Directory to use for all Config paths
    """
    # fmt: off
    stack.enter_context(patch.object(
        Config, "config_dir",
        new_callable=lambda: property(lambda self: base_path / "etc")
    ))
    stack.enter_context(patch.object(
        Config, "state_dir",
        new_callable=lambda: property(lambda self: base_path / "log")
    ))
    stack.enter_context(patch.object(
        Config, "runtime_dir",
        new_callable=lambda: property(lambda self: base_path / "run")
    ))
    # fmt: on


@pytest.fixture
def patched_config_paths(tmp_path: Path) -> Iterator[Path]:
    """Fixture that patches all Config path properties to use tmp_path.

    Yields the base path for tests that need to reference it directly.
    """
    with ExitStack() as stack:
        _patch_config_paths(stack, tmp_path)
        yield tmp_path
