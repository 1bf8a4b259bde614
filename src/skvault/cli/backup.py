"""Backup and restore commands: backup, restore."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel

from ..models import CipherMode
from ._common import console, exit_on_sigterm, get_config, reported_errors


def register_backup_commands(main: click.Group) -> None:
    """Register the backup and restore commands."""

    @main.command("backup")
    @click.pass_context
    def backup(ctx: click.Context):
        """Encrypt the current payload into the repository.

        Meant for cron. Takes no arguments; everything comes from the
        config. Exits non-zero on any failure.

        Examples:

            skvault backup

            SKVAULT_ROOT=/srv/backup skvault backup
        """
        from ..backup import create_backup

        config = get_config(ctx)
        exit_on_sigterm()

        with reported_errors():
            result = create_backup(config)

        size_kb = result.payload_path.stat().st_size / 1024
        console.print(Panel(
            f"[bold green]Backup sealed[/]\n"
            f"ID: {result.backup_id}\n"
            f"Mode: {result.mode.value}\n"
            f"Size: {size_kb:.1f} KB\n"
            f"Payload: [cyan]{result.payload_path}[/]\n"
            f"Key: [cyan]{result.key_path}[/]\n"
            f"Pruned: {result.pruned.count} file(s)",
            title="Backup Complete",
            border_style="green",
        ))
        for err in result.pruned.errors:
            console.print(f"  [yellow]prune: {err}[/]")

    @main.command("restore")
    @click.argument("payload", type=click.Path(dir_okay=False))
    @click.option("--output", "-o", required=True, type=click.Path(dir_okay=False),
                  help="Where to write the decrypted archive. Must not exist.")
    @click.option("--key-file", "-s", default=None, type=click.Path(dir_okay=False),
                  help="Encrypted symmetric key. Defaults to the payload's companion.")
    @click.option("--private-key", "-k", default=None, type=click.Path(dir_okay=False),
                  help="RSA private key. Defaults to the public key path minus '.pub'.")
    @click.option("--mode", type=click.Choice([m.value for m in CipherMode]), default=None,
                  help="Force a cipher mode for key files that don't record one.")
    @click.pass_context
    def restore(
        ctx: click.Context,
        payload: str,
        output: str,
        key_file: Optional[str],
        private_key: Optional[str],
        mode: Optional[str],
    ):
        """Decrypt a backup with the offline private key.

        The companion key file is found next to PAYLOAD by name.

        Examples:

            skvault restore repository/backup.2020-06-05-133440.tar.e -o data.tar

            skvault restore data.tar.e -s key.bin.e -k ~/keys/backups-rsa-key -o data.tar
        """
        from ..backup import restore_backup

        config = get_config(ctx)

        with reported_errors():
            result = restore_backup(
                config,
                payload=Path(payload),
                output=Path(output),
                key=Path(key_file) if key_file else None,
                private_key=Path(private_key) if private_key else None,
                mode=CipherMode(mode) if mode else None,
            )

        console.print(Panel(
            f"[bold green]Restore complete[/]\n"
            f"Mode: {result.mode.value}\n"
            f"Size: {result.size} bytes\n"
            f"Output: [cyan]{result.output}[/]",
            title="Restore Complete",
            border_style="green",
        ))
