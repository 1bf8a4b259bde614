"""
Pydantic models for vault configuration, artifacts, and run results.

The configuration is built once at startup and handed to every
component explicitly. Nothing reads paths from module globals.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class CipherMode(str, Enum):
    """Symmetric cipher mode used for a payload.

    PBKDF2 is `openssl enc -aes-256-cbc -salt -pbkdf2`. LEGACY is the
    pre-1.1.1 `openssl enc -aes-256-cbc -salt -md md5` key derivation.
    LEGACY_SHA256 is what a bare `openssl enc -salt` wrote on 1.1.0;
    it is only ever read, never written.
    """

    PBKDF2 = "pbkdf2"
    LEGACY = "legacy"
    LEGACY_SHA256 = "legacy-sha256"


class CipherModeSetting(str, Enum):
    """Configured cipher mode; AUTO follows the cipher library version."""

    AUTO = "auto"
    PBKDF2 = "pbkdf2"
    LEGACY = "legacy"


class BackendName(str, Enum):
    """Which cipher backend performs the actual crypto."""

    NATIVE = "native"
    OPENSSL = "openssl"


class PruneMode(str, Enum):
    """How retention pruning treats the two files of an artifact."""

    PAIR = "pair"
    FILE = "file"


class VaultConfig(BaseModel):
    """Everything the pipeline needs to know about paths and policy.

    Attributes:
        root: Working root. Temporary files live here.
        repository: Where finished artifacts are placed.
        public_key: RSA public key used to seal each run's secret.
        private_key: RSA private key, only needed for restore.
        lock_file: Run lock marker.
        payload: Packaged plaintext payload the dump producer leaves behind.
        sources: Files to pack into the payload before encryption.
        remove_sources: Delete sources once they are packed.
        retention_days: Artifacts older than this many days are pruned.
        cipher_mode: Symmetric mode, or auto from the library version.
        backend: Cipher backend.
        prune_mode: Prune by artifact pair or by individual file.
    """

    root: Path = Path("/opt/backup")
    repository: Optional[Path] = None
    public_key: Optional[Path] = None
    private_key: Optional[Path] = None
    lock_file: Optional[Path] = None
    payload: Optional[Path] = None
    sources: list[Path] = Field(default_factory=list)
    remove_sources: bool = False
    retention_days: int = Field(default=30, ge=0)
    cipher_mode: CipherModeSetting = CipherModeSetting.AUTO
    backend: BackendName = BackendName.NATIVE
    prune_mode: PruneMode = PruneMode.PAIR
    payload_prefix: str = "backup."
    payload_suffix: str = ".tar.e"
    key_prefix: str = "backup."
    key_suffix: str = ".aes.key.e"

    @model_validator(mode="after")
    def _fill_derived_paths(self) -> "VaultConfig":
        root = self.root.expanduser()
        self.root = root

        def _anchor(value: Optional[Path], default: str) -> Path:
            path = Path(value).expanduser() if value is not None else Path(default)
            return path if path.is_absolute() else root / path

        self.repository = _anchor(self.repository, "repository")
        self.public_key = _anchor(self.public_key, "backups-rsa-key.pub")
        self.lock_file = _anchor(self.lock_file, "skvault.lock")
        self.payload = _anchor(self.payload, "current_backup.tar")
        if self.private_key is not None:
            self.private_key = _anchor(self.private_key, "")
        self.sources = [_anchor(s, "") for s in self.sources]
        return self


class EncryptedPayload(BaseModel):
    """Temporary ciphertext pair produced by one encrypt call."""

    payload_cipher: Path
    key_cipher: Path
    mode: CipherMode


class ArtifactPair(BaseModel):
    """A backup artifact in the repository.

    Attributes:
        backup_id: Shared identifier (timestamp plus optional suffix).
        payload_path: Payload ciphertext, None if missing.
        key_path: Key ciphertext, None if missing.
        size: Combined size in bytes of the files present.
        created: Modification time of the newest file present.
    """

    backup_id: str
    payload_path: Optional[Path] = None
    key_path: Optional[Path] = None
    size: int = 0
    created: Optional[datetime] = None

    @property
    def complete(self) -> bool:
        """Only a pair with both files is restorable."""
        return self.payload_path is not None and self.key_path is not None


class ResolvedPaths(BaseModel):
    """Validated inputs for a restore."""

    payload_cipher: Path
    key_cipher: Path
    private_key: Path
    output: Path


class PruneReport(BaseModel):
    """Outcome of a retention pass."""

    deleted: list[Path] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def count(self) -> int:
        """Number of files deleted."""
        return len(self.deleted)


class BackupResult(BaseModel):
    """Outcome of a successful backup run."""

    backup_id: str
    payload_path: Path
    key_path: Path
    mode: CipherMode
    pruned: PruneReport = Field(default_factory=PruneReport)
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RestoreResult(BaseModel):
    """Outcome of a successful restore."""

    output: Path
    mode: CipherMode
    size: int = 0
