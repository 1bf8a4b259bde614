"""Run lock — a marker file that means "a backup is in progress".

The marker is a plain file so an operator can see it and
remove it by hand after a hard kill. Use it as a context manager; the
release then happens on every way out of the block.

Usage:
    with RunLock(config.lock_file):
        ...
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .errors import AlreadyRunningError

logger = logging.getLogger("skvault.lock")


class RunLock:
    """Advisory, file-presence mutual exclusion for backup runs.

    Args:
        path: Location of the marker file.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._held = False

    @property
    def held(self) -> bool:
        """Whether this instance created the current marker."""
        return self._held

    def is_locked(self) -> bool:
        """Whether any marker exists, ours or someone else's."""
        return self.path.exists()

    def acquire(self) -> None:
        """Create the marker.

        Raises:
            AlreadyRunningError: If the marker already exists.
        """
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError as exc:
            raise AlreadyRunningError(
                f"{self.path} exists. Assuming a backup is already running; "
                "remove it by hand if that run is dead."
            ) from exc
        os.close(fd)
        self._held = True
        logger.debug("Acquired run lock %s", self.path)

    def release(self) -> None:
        """Delete the marker. Deleting an absent marker is not an error."""
        self.path.unlink(missing_ok=True)
        self._held = False
        logger.debug("Released run lock %s", self.path)

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
