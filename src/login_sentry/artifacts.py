"""Capture directory and the artifacts inside it.

The directory is the only state login-sentry keeps. The debounce gate reads
the newest artifact's mtime from here instead of remembering the last capture
time, so restarts and multiple instances see the same history.
"""

import grp
import os
import pwd
import stat
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import structlog

from login_sentry.errors import ArtifactDirectoryError, ArtifactFinalizeError

log = structlog.get_logger()

DIRECTORY_MODE = 0o750  # rwxr-x---
ARTIFACT_MODE = 0o400  # r--------
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"


@dataclass(frozen=True)
class OwnerIdentity:
    """Resolved owner of the capture directory and its artifacts."""

    uid: int
    gid: int
    user: str
    group: str


@dataclass(frozen=True)
class Artifact:
    """One captured file as seen on disk."""

    path: Path
    mtime: float
    uid: int
    gid: int
    mode: int

    @property
    def name(self) -> str:
        return self.path.name

    @classmethod
    def from_path(cls, path: Path) -> "Artifact":
        st = path.stat()
        return cls(
            path=path,
            mtime=st.st_mtime,
            uid=st.st_uid,
            gid=st.st_gid,
            mode=stat.S_IMODE(st.st_mode),
        )


def resolve_owner(user: str, group: str) -> OwnerIdentity:
    """Resolve user and group names (or numeric ids) to an OwnerIdentity.

    Raises:
        ArtifactDirectoryError: If the user or group does not exist.
    """
    try:
        if user.isdigit():
            uid = int(user)
        else:
            uid = pwd.getpwnam(user).pw_uid
    except KeyError as e:
        raise ArtifactDirectoryError(f"Unknown capture owner: {user!r}") from e

    try:
        if group.isdigit():
            gid = int(group)
        else:
            gid = grp.getgrnam(group).gr_gid
    except KeyError as e:
        raise ArtifactDirectoryError(f"Unknown capture group: {group!r}") from e

    return OwnerIdentity(uid=uid, gid=gid, user=user, group=group)


class ArtifactStore:
    """Owns the capture directory: creation, ownership, lookup, lock-down.

    Without an owner the store is read-only: lookups work, but
    ensure_directory() and finalize() refuse to run.
    """

    def __init__(
        self,
        directory: Path,
        owner: OwnerIdentity | None = None,
        prefix: str = "failed-login_",
        extension: str = ".jpg",
    ):
        self.directory = Path(directory)
        self.owner = owner
        self.prefix = prefix
        self.extension = extension

    @property
    def pattern(self) -> str:
        """Glob matching artifact file names."""
        return f"{self.prefix}*{self.extension}"

    def ensure_directory(self) -> None:
        """Create the directory if needed and enforce its owner and mode.

        Safe to call repeatedly: a directory that is already correct is left
        alone, and existing contents are never touched.

        Raises:
            ArtifactDirectoryError: If the directory cannot be created or fixed.
        """
        owner = self._require_owner(ArtifactDirectoryError)
        try:
            if not self.directory.exists():
                self.directory.mkdir(mode=DIRECTORY_MODE, parents=True)
                # mkdir mode is filtered through the umask
                os.chmod(self.directory, DIRECTORY_MODE)
                os.chown(self.directory, owner.uid, owner.gid)
                log.info("directory_created", path=str(self.directory))
                return

            if not self.directory.is_dir():
                raise ArtifactDirectoryError(f"Capture path is not a directory: {self.directory}")

            st = self.directory.stat()
            if (st.st_uid, st.st_gid) != (owner.uid, owner.gid):
                os.chown(self.directory, owner.uid, owner.gid)
                log.info(
                    "directory_owner_fixed",
                    path=str(self.directory),
                    old_uid=st.st_uid,
                    old_gid=st.st_gid,
                    uid=owner.uid,
                    gid=owner.gid,
                )
            if stat.S_IMODE(st.st_mode) != DIRECTORY_MODE:
                os.chmod(self.directory, DIRECTORY_MODE)
                log.info(
                    "directory_mode_fixed",
                    path=str(self.directory),
                    old_mode=oct(stat.S_IMODE(st.st_mode)),
                )
        except OSError as e:
            raise ArtifactDirectoryError(
                f"Cannot prepare capture directory {self.directory}: {e}"
            ) from e

    def list_artifacts(self) -> list[Artifact]:
        """Return all artifacts, newest first.

        Raises:
            OSError: If the directory cannot be read.
        """
        artifacts = []
        for path in self.directory.glob(self.pattern):
            try:
                if path.is_file():
                    artifacts.append(Artifact.from_path(path))
            except FileNotFoundError:
                continue
        artifacts.sort(key=lambda a: a.mtime, reverse=True)
        return artifacts

    def most_recent(self) -> Artifact | None:
        """Return the newest artifact, or None if there is none.

        Read errors are reported as None so a flaky directory never stops
        a capture.
        """
        try:
            artifacts = self.list_artifacts()
        except OSError as e:
            log.debug("most_recent_unreadable", path=str(self.directory), error=str(e))
            return None
        return artifacts[0] if artifacts else None

    def path_for(self, when: datetime) -> Path:
        """Return a fresh artifact path for a capture taken at `when`.

        Two captures within the same second get _1, _2, ... suffixes; an
        existing file is never reused.
        """
        stem = f"{self.prefix}{when.strftime(TIMESTAMP_FORMAT)}"
        candidate = self.directory / f"{stem}{self.extension}"
        n = 0
        while candidate.exists():
            n += 1
            candidate = self.directory / f"{stem}_{n}{self.extension}"
        return candidate

    def finalize(self, path: Path) -> Artifact:
        """Make a freshly captured file read-only and hand it to the owner.

        Only called after a confirmed successful capture.

        Raises:
            ArtifactFinalizeError: If the mode or owner cannot be set.
        """
        owner = self._require_owner(ArtifactFinalizeError)
        try:
            # chmod before chown: the final owner never sees a wider mode
            os.chmod(path, ARTIFACT_MODE)
            os.chown(path, owner.uid, owner.gid)
            return Artifact.from_path(path)
        except OSError as e:
            raise ArtifactFinalizeError(f"Cannot finalize {path}: {e}") from e

    def _require_owner(self, exc_type: type[Exception]) -> OwnerIdentity:
        if self.owner is None:
            raise exc_type(f"No owner configured for {self.directory}")
        return self.owner
