"""Error taxonomy for the backup and restore pipeline.

Every failure the pipeline can surface derives from VaultError so the
CLI can report it uniformly. Preflight errors abort before any state
mutation; cipher errors abort before anything reaches the repository.
"""

from __future__ import annotations


class VaultError(Exception):
    """Base class for all skvault failures."""


class ConfigError(VaultError):
    """Raised when the configuration file exists but cannot be used."""


class PreflightError(VaultError):
    """Raised when a run cannot safely start."""


class KeyPermissionError(PreflightError, PermissionError):
    """Raised when the public key has the wrong mode, owner, or group."""


class AlreadyRunningError(PreflightError):
    """Raised when the run lock marker already exists."""


class MissingExecutableError(PreflightError):
    """Raised when a required external tool is not on PATH."""


class CipherError(VaultError):
    """Raised when an encryption or decryption step fails."""


class ResolutionError(VaultError):
    """Raised when restore inputs cannot be resolved or validated."""


class PlacementError(VaultError, OSError):
    """Raised when moving an artifact into the repository fails."""


class ArchiveError(VaultError):
    """Raised when packing the payload fails."""
