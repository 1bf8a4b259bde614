"""Sealed backup and restore.

The encrypt path, start to finish:

    preflight (not root, backend tools present)
    └── RunLock
        ├── KeyGuard          public key is 0400 and ours
        ├── pack              optional, when sources are configured
        ├── EnvelopeCipher    payload + fresh secret -> ciphertext pair
        ├── ArtifactStore     rename both into the repository
        └── prune             retention, best effort per file

Restore resolves the companion files, then decrypts. It does not take
the run lock: it is an operator action and is not expected to race a
scheduled run. If one does, the restore still only reads the
repository.
"""

from __future__ import annotations

import logging
import tarfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from .archive import Archiver, TarArchiver
from .cipher import CipherBackend, EnvelopeCipher, get_backend, resolve_mode
from .errors import ArchiveError, PlacementError
from .keyguard import check_privileges, validate_public_key
from .lock import RunLock
from .models import (
    ArtifactPair,
    BackupResult,
    CipherMode,
    PruneReport,
    RestoreResult,
    VaultConfig,
)
from .restore import RestoreResolver
from .store import ArtifactStore

logger = logging.getLogger("skvault.backup")


def create_backup(
    config: VaultConfig,
    backend: Optional[CipherBackend] = None,
    archiver: Optional[Archiver] = None,
    now: Optional[datetime] = None,
) -> BackupResult:
    """Run one encrypted backup.

    Args:
        config: Vault configuration.
        backend: Cipher backend. Defaults to the configured one.
        archiver: Packs ``config.sources`` when any are set.
        now: Run timestamp for naming. Defaults to the current time.

    Returns:
        BackupResult with the placed artifact and the prune report.

    Raises:
        PreflightError: Root, missing tools, bad key permissions, or an
            existing lock. Raised before any key material exists.
        ArchiveError: Packing the sources failed.
        CipherError: Encryption failed; nothing reached the repository.
        PlacementError: The ciphertexts exist in the work root but could
            not be moved into the repository.
    """
    backend = backend or get_backend(config.backend)
    check_privileges()
    backend.preflight()
    store = ArtifactStore(config)

    with RunLock(config.lock_file):
        validate_public_key(config.public_key)
        mode = resolve_mode(config.cipher_mode, backend)

        if config.sources:
            try:
                (archiver or TarArchiver()).pack(
                    config.sources, config.payload, remove_sources=config.remove_sources
                )
            except (OSError, ValueError, tarfile.TarError) as exc:
                raise ArchiveError(f"Packing the dump failed: {exc}") from exc

        cipher = EnvelopeCipher(backend, config.root, mode)
        encrypted = cipher.encrypt(config.payload, config.public_key)

        try:
            pair = store.place(encrypted.payload_cipher, encrypted.key_cipher, timestamp=now)
        except PlacementError:
            logger.error(
                "Ciphertexts left for manual placement: %s, %s",
                encrypted.payload_cipher, encrypted.key_cipher,
            )
            raise

        report = store.prune(config.retention_days)
        if report.errors:
            logger.warning("Pruning finished with %d error(s)", len(report.errors))

    logger.info("Backup %s complete, pruned %d file(s)", pair.backup_id, report.count)
    return BackupResult(
        backup_id=pair.backup_id,
        payload_path=pair.payload_path,
        key_path=pair.key_path,
        mode=mode,
        pruned=report,
    )


def restore_backup(
    config: VaultConfig,
    payload: Path,
    output: Path,
    key: Optional[Path] = None,
    private_key: Optional[Path] = None,
    mode: Optional[CipherMode] = None,
    backend: Optional[CipherBackend] = None,
) -> RestoreResult:
    """Decrypt one artifact into ``output``.

    Args:
        config: Vault configuration.
        payload: Payload ciphertext.
        output: Plaintext destination; must not exist.
        key: Key ciphertext; derived from ``payload`` when omitted.
        private_key: RSA private key; derived from config when omitted.
        mode: Force a cipher mode (must match the artifact's).
        backend: Cipher backend. Defaults to the configured one.

    Returns:
        RestoreResult with the output path and the mode used.

    Raises:
        ResolutionError: Missing companions, existing output, or
            unwritable directories. Nothing is touched.
        CipherError: Decryption failed; no output is left behind.
    """
    backend = backend or get_backend(config.backend)
    backend.preflight()
    if RunLock(config.lock_file).is_locked():
        logger.warning(
            "A backup run holds %s; restoring from a repository that may be changing",
            config.lock_file,
        )

    paths = RestoreResolver(config).resolve(
        payload, output, key=key, private_key=private_key
    )
    default_mode = mode or resolve_mode(config.cipher_mode, backend)
    cipher = EnvelopeCipher(backend, config.root, default_mode)
    used = cipher.decrypt(
        paths.payload_cipher,
        paths.key_cipher,
        paths.private_key,
        paths.output,
        mode=mode,
    )

    return RestoreResult(output=paths.output, mode=used, size=paths.output.stat().st_size)


def list_backups(config: VaultConfig) -> list[ArtifactPair]:
    """List artifacts in the repository, newest first."""
    return ArtifactStore(config).list_artifacts()


def prune_backups(config: VaultConfig, days: Optional[int] = None) -> PruneReport:
    """Apply retention outside a backup run.

    Takes the run lock so it never races a scheduled backup.

    Args:
        config: Vault configuration.
        days: Override ``config.retention_days``.
    """
    retention = config.retention_days if days is None else days
    with RunLock(config.lock_file):
        return ArtifactStore(config).prune(retention)
