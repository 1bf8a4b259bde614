"""Configuration loading.

Reads ``skvault.yaml`` from the vault root (or an explicit path) into a
VaultConfig. A missing file means defaults. A file that exists but
cannot be read or parsed is fatal: running a backup with half-applied
settings is worse than not running at all.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from . import VAULT_ROOT
from .errors import ConfigError
from .models import VaultConfig

logger = logging.getLogger("skvault.config")

CONFIG_FILENAME = "skvault.yaml"


def load_config(
    root: Optional[Path] = None,
    config_file: Optional[Path] = None,
) -> VaultConfig:
    """Load the vault configuration.

    Args:
        root: Vault root. Defaults to $SKVAULT_ROOT or /opt/backup.
        config_file: Explicit config path. Defaults to <root>/skvault.yaml.

    Returns:
        VaultConfig with derived paths filled in.

    Raises:
        ConfigError: If the file exists but is unreadable or invalid.
    """
    root_path = Path(root or VAULT_ROOT).expanduser()
    path = Path(config_file).expanduser() if config_file else root_path / CONFIG_FILENAME

    data: dict = {}
    if path.exists():
        if not os.access(path, os.R_OK):
            raise ConfigError(f"Can't open config file '{path}'")
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Failed to parse config file '{path}': {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config file '{path}' must contain a mapping")
        logger.debug("Loaded config from %s", path)
    elif config_file:
        raise ConfigError(f"Config file not found: {path}")
    else:
        logger.debug("No config at %s, using defaults", path)

    # An explicit root wins over the file; the file wins over the env default.
    if root is not None or "root" not in data:
        data["root"] = str(root_path)

    try:
        return VaultConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in '{path}': {exc}") from exc


def describe_config(config: VaultConfig) -> dict[str, str]:
    """Flatten a config into display strings for verbose output."""
    return {
        name: (value.value if hasattr(value, "value") else str(value))
        for name, value in config.model_dump().items()
    }
