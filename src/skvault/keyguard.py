"""
KeyGuard — preflight checks on the public key and the running process.

The public key is the only secret-adjacent material on the backup host.
Whoever can replace it can read every future backup, so it must be
read-only (0400) and owned by the account that runs the backups.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Optional

from .errors import KeyPermissionError, PreflightError

logger = logging.getLogger("skvault.keyguard")

REQUIRED_KEY_MODE = 0o400


def validate_public_key(
    path: Path,
    expected_uid: Optional[int] = None,
    expected_gid: Optional[int] = None,
) -> None:
    """Check mode and ownership of the public key file.

    Args:
        path: Public key file.
        expected_uid: Owner to require. Defaults to the effective uid.
        expected_gid: Group to require. Defaults to the effective gid.

    Raises:
        KeyPermissionError: If the file is missing, not mode 0400, or
            not owned by the expected user and group.
    """
    uid = os.geteuid() if expected_uid is None else expected_uid
    gid = os.getegid() if expected_gid is None else expected_gid

    try:
        st = os.stat(path)
    except OSError as exc:
        raise KeyPermissionError(f"Can't stat public key '{path}': {exc}") from exc

    mode = stat.S_IMODE(st.st_mode)
    problems = []
    if mode != REQUIRED_KEY_MODE:
        problems.append(f"mode is {mode:o}, should be {REQUIRED_KEY_MODE:o}")
    if st.st_uid != uid:
        problems.append(f"owner uid is {st.st_uid}, should be {uid}")
    if st.st_gid != gid:
        problems.append(f"group gid is {st.st_gid}, should be {gid}")

    if problems:
        raise KeyPermissionError(
            f"File {path} has incorrect permissions or owner: " + "; ".join(problems)
        )
    logger.debug("Public key %s passed permission check", path)


def check_privileges(euid: Optional[int] = None) -> None:
    """Refuse to run backups as root.

    Raises:
        PreflightError: If the effective uid is 0.
    """
    effective = os.geteuid() if euid is None else euid
    if effective == 0:
        raise PreflightError("Backups MUST NOT be run as root.")
