"""Restore resolver — fill in companion paths and check them before decrypting.

An operator usually has just the payload file in hand. The key file
sits next to it by naming convention, and the private key sits next to
where the public key was configured (``backups-rsa-key.pub`` ->
``backups-rsa-key``).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from .errors import ResolutionError
from .models import ResolvedPaths, VaultConfig

logger = logging.getLogger("skvault.restore")


class RestoreResolver:
    """Resolve and validate restore inputs.

    Args:
        config: Vault configuration (naming conventions, key paths, root).
    """

    def __init__(self, config: VaultConfig) -> None:
        self.config = config

    def derive_key_path(self, payload: Path) -> Path:
        """Key file path that belongs to ``payload``.

        ``backup.2020-06-05-133440.tar.e`` -> ``backup.2020-06-05-133440.aes.key.e``
        """
        payload = Path(payload)
        name = payload.name
        cfg = self.config
        if name.endswith(cfg.payload_suffix):
            name = name[: -len(cfg.payload_suffix)]
        if cfg.payload_prefix != cfg.key_prefix and name.startswith(cfg.payload_prefix):
            name = cfg.key_prefix + name[len(cfg.payload_prefix):]
        return payload.with_name(name + cfg.key_suffix)

    def derive_private_key_path(self) -> Path:
        """Private key path: configured, or the public key minus its extension."""
        if self.config.private_key is not None:
            return Path(self.config.private_key)
        public_key = Path(self.config.public_key)
        if not public_key.suffix:
            raise ResolutionError(
                f"Can't derive a private key path from '{public_key}'; pass one explicitly"
            )
        return public_key.with_suffix("")

    def resolve(
        self,
        payload: Path,
        output: Path,
        key: Optional[Path] = None,
        private_key: Optional[Path] = None,
    ) -> ResolvedPaths:
        """Resolve every restore input and validate it.

        Args:
            payload: Payload ciphertext.
            output: Where the plaintext will be written.
            key: Key ciphertext. Derived from ``payload`` when omitted.
            private_key: RSA private key. Derived from config when omitted.

        Returns:
            ResolvedPaths ready for EnvelopeCipher.decrypt.

        Raises:
            ResolutionError: Unreadable inputs, existing output, or
                unwritable output directory or work root.
        """
        payload = Path(payload).expanduser()
        output = Path(output).expanduser()
        key_path = Path(key).expanduser() if key else self.derive_key_path(payload)
        private_path = (
            Path(private_key).expanduser() if private_key else self.derive_private_key_path()
        )

        self._require_readable(payload, "backup file")
        self._require_readable(key_path, "symmetric key file")
        self._require_readable(private_path, "private key")

        if output.exists():
            raise ResolutionError(f"Output file '{output}' already exists")

        out_dir = output.parent if str(output.parent) else Path(".")
        self._require_writable(out_dir, "output directory")
        self._require_writable(Path(self.config.root), "work directory")

        logger.debug(
            "Resolved restore: payload=%s key=%s private=%s output=%s",
            payload, key_path, private_path, output,
        )
        return ResolvedPaths(
            payload_cipher=payload,
            key_cipher=key_path,
            private_key=private_path,
            output=output,
        )

    @staticmethod
    def _require_readable(path: Path, label: str) -> None:
        if not path.is_file() or not os.access(path, os.R_OK):
            raise ResolutionError(f"Can't open {label}: '{path}'")

    @staticmethod
    def _require_writable(path: Path, label: str) -> None:
        if not path.is_dir() or not os.access(path, os.W_OK):
            raise ResolutionError(f"Can't write to {label} '{path}'")
