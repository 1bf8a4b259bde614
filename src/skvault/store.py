"""
Artifact store — naming, placement, listing, and retention.

Repository layout (defaults):
    repository/
    ├── backup.2020-06-05-133440.tar.e       # payload ciphertext
    └── backup.2020-06-05-133440.aes.key.e   # key ciphertext

Both files share the timestamp identifier. Placement renames the
temporary files into the repository (same filesystem, so each rename is
atomic) and never overwrites: a second run inside the same second gets a
short random suffix on its identifier instead.
"""

from __future__ import annotations

import logging
import os
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import PlacementError
from .models import ArtifactPair, PruneMode, PruneReport, VaultConfig

logger = logging.getLogger("skvault.store")

TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"
SECONDS_PER_DAY = 86400


class ArtifactStore:
    """The backup repository directory.

    Args:
        config: Vault configuration (repository path, naming, prune mode).
    """

    def __init__(self, config: VaultConfig) -> None:
        self.config = config
        self.repository = Path(config.repository)

    # -- naming ------------------------------------------------------------

    def payload_name(self, backup_id: str) -> str:
        return f"{self.config.payload_prefix}{backup_id}{self.config.payload_suffix}"

    def key_name(self, backup_id: str) -> str:
        return f"{self.config.key_prefix}{backup_id}{self.config.key_suffix}"

    def _identify(self, name: str) -> Optional[tuple[str, str]]:
        """Map a filename to (backup_id, "payload" | "key"), or None."""
        # Longest suffix first so one convention cannot swallow the other.
        candidates = sorted(
            (
                ("key", self.config.key_prefix, self.config.key_suffix),
                ("payload", self.config.payload_prefix, self.config.payload_suffix),
            ),
            key=lambda c: len(c[2]),
            reverse=True,
        )
        for kind, prefix, suffix in candidates:
            if name.startswith(prefix) and name.endswith(suffix):
                backup_id = name[len(prefix):len(name) - len(suffix)]
                if backup_id:
                    return backup_id, kind
        return None

    # -- placement ---------------------------------------------------------

    def place(
        self,
        temp_payload: Path,
        temp_key: Path,
        timestamp: Optional[datetime] = None,
    ) -> ArtifactPair:
        """Move a temporary ciphertext pair into the repository.

        The key file goes first and the payload second. Restores start
        from a payload, so until the second rename lands there is
        nothing restorable. If the payload rename fails the key file is
        moved back out.

        Args:
            temp_payload: Temporary payload ciphertext.
            temp_key: Temporary key ciphertext.
            timestamp: Run time. Defaults to now (local time).

        Returns:
            The placed ArtifactPair.

        Raises:
            PlacementError: If either rename fails.
        """
        stamp = (timestamp or datetime.now()).strftime(TIMESTAMP_FORMAT)
        try:
            self.repository.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PlacementError(f"Can't create repository {self.repository}: {exc}") from exc

        backup_id = stamp
        while self._taken(backup_id):
            backup_id = f"{stamp}-{secrets.token_hex(2)}"
            logger.warning("Artifact %s already exists, using %s", stamp, backup_id)

        payload_dest = self.repository / self.payload_name(backup_id)
        key_dest = self.repository / self.key_name(backup_id)

        try:
            os.rename(temp_key, key_dest)
        except OSError as exc:
            raise PlacementError(f"Can't move {temp_key} to {key_dest}: {exc}") from exc

        try:
            os.rename(temp_payload, payload_dest)
        except OSError as exc:
            try:
                os.rename(key_dest, temp_key)
            except OSError as rollback_exc:
                logger.error(
                    "Could not roll back %s after failed placement: %s",
                    key_dest, rollback_exc,
                )
            raise PlacementError(
                f"Can't move {temp_payload} to {payload_dest}: {exc}"
            ) from exc

        logger.info("Placed backup %s in %s", backup_id, self.repository)
        return self._pair(backup_id, payload_dest, key_dest)

    def _taken(self, backup_id: str) -> bool:
        return (
            (self.repository / self.payload_name(backup_id)).exists()
            or (self.repository / self.key_name(backup_id)).exists()
        )

    # -- listing -----------------------------------------------------------

    def _scan(self) -> dict[str, dict[str, Path]]:
        groups: dict[str, dict[str, Path]] = {}
        if not self.repository.is_dir():
            return groups
        for entry in self.repository.iterdir():
            if not entry.is_file():
                continue
            ident = self._identify(entry.name)
            if ident is None:
                continue
            backup_id, kind = ident
            groups.setdefault(backup_id, {})[kind] = entry
        return groups

    @staticmethod
    def _pair(
        backup_id: str, payload: Optional[Path], key: Optional[Path]
    ) -> ArtifactPair:
        size = 0
        newest = 0.0
        for path in (payload, key):
            if path is None:
                continue
            st = path.stat()
            size += st.st_size
            newest = max(newest, st.st_mtime)
        return ArtifactPair(
            backup_id=backup_id,
            payload_path=payload,
            key_path=key,
            size=size,
            created=datetime.fromtimestamp(newest, tz=timezone.utc) if newest else None,
        )

    def list_artifacts(self) -> list[ArtifactPair]:
        """All artifacts in the repository, newest first.

        Half pairs are included with ``complete == False``.
        """
        pairs = [
            self._pair(backup_id, files.get("payload"), files.get("key"))
            for backup_id, files in self._scan().items()
        ]
        return sorted(pairs, key=lambda p: p.backup_id, reverse=True)

    # -- retention ---------------------------------------------------------

    @staticmethod
    def _age_days(path: Path, now: float) -> int:
        """Whole days since last modification, rounded down like find -mtime."""
        return int((now - path.stat().st_mtime) // SECONDS_PER_DAY)

    def prune(self, max_age_days: int, now: Optional[float] = None) -> PruneReport:
        """Delete artifacts older than ``max_age_days`` whole days.

        A file exactly ``max_age_days`` old is kept (``find -mtime +N``).
        In pair mode an artifact goes as a unit once its oldest file
        crosses the threshold, so no half pair is left behind. In file
        mode each file is judged on its own age.

        Individual failures are logged and collected; pruning continues.

        Args:
            max_age_days: Retention in days.
            now: Reference time (epoch seconds). Defaults to now.

        Returns:
            PruneReport with deleted files and errors.
        """
        reference = time.time() if now is None else now
        report = PruneReport()

        for backup_id, files in sorted(self._scan().items()):
            try:
                ages = {kind: self._age_days(path, reference) for kind, path in files.items()}
            except OSError as exc:
                report.errors.append(f"{backup_id}: {exc}")
                logger.error("Can't stat artifact %s: %s", backup_id, exc)
                continue

            if self.config.prune_mode == PruneMode.PAIR:
                doomed = list(files.values()) if max(ages.values()) > max_age_days else []
            else:
                doomed = [files[kind] for kind, age in ages.items() if age > max_age_days]

            for path in doomed:
                try:
                    path.unlink()
                except OSError as exc:
                    report.errors.append(f"{path}: {exc}")
                    logger.error("Failed to prune %s: %s", path, exc)
                    continue
                report.deleted.append(path)
                logger.info("Pruned %s", path)

        return report
