"""
SKVault CLI — sealed backups from the command line.

The main Click group lives here; each command group registers itself
from its own module.

Entry point: skvault.cli:main
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click

from .. import VAULT_ROOT, __version__


@click.group()
@click.version_option(version=__version__, prog_name="skvault")
@click.option(
    "--root", default=None, type=click.Path(file_okay=False),
    help=f"Vault root (work directory). Overrides the config file's root. "
         f"Default: SKVAULT_ROOT or {VAULT_ROOT}.",
)
@click.option(
    "--config", "config_file", default=None, type=click.Path(dir_okay=False),
    help="Config file. Defaults to <root>/skvault.yaml.",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging and config dump.")
@click.pass_context
def main(ctx: click.Context, root: Optional[str], config_file: Optional[str], verbose: bool):
    """SKVault — encrypted backups the backup host can't read.

    Each run seals the payload with a fresh AES key and seals that key
    with your RSA public key. Keep the private key offline.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["root"] = Path(root).expanduser() if root else None
    ctx.obj["config_file"] = Path(config_file).expanduser() if config_file else None
    ctx.obj["verbose"] = verbose


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .backup import register_backup_commands
from .keys import register_key_commands
from .repo import register_repo_commands

register_backup_commands(main)
register_key_commands(main)
register_repo_commands(main)
