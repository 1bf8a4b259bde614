"""Key commands: init, check-key."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel

from ._common import console, get_config, reported_errors


def register_key_commands(main: click.Group) -> None:
    """Register key management commands."""

    @main.command("init")
    @click.option("--bits", default=4096, show_default=True, type=click.IntRange(min=2048),
                  help="RSA key size.")
    @click.option("--out", "out", default=None, type=click.Path(dir_okay=False),
                  help="Private key path. Defaults to the configured public key minus '.pub'.")
    @click.pass_context
    def init(ctx: click.Context, bits: int, out: Optional[str]):
        """Generate the RSA key pair for a new vault.

        Writes the private key (0600) and PUBLIC.pub (0400). Move the
        private key off this machine before the first backup.

        Examples:

            skvault init

            skvault --root /srv/backup init --bits 2048
        """
        from ..keygen import generate_key_pair
        from ..restore import RestoreResolver

        config = get_config(ctx)
        with reported_errors():
            target = Path(out) if out else RestoreResolver(config).derive_private_key_path()
            private_path, public_path = generate_key_pair(target, bits=bits)

        if public_path != config.public_key:
            console.print(
                f"[yellow]Note:[/] config expects the public key at "
                f"[cyan]{config.public_key}[/]"
            )
        console.print(Panel(
            f"[bold green]Key pair generated[/] ({bits} bits)\n"
            f"Public:  [cyan]{public_path}[/] (0400)\n"
            f"Private: [cyan]{private_path}[/] (0600)\n\n"
            f"[bold red]Move the private key off this host now.[/]\n"
            f"Store it somewhere safe; without it no backup can be restored.",
            title="Vault Keys",
            border_style="green",
        ))

    @main.command("check-key")
    @click.pass_context
    def check_key(ctx: click.Context):
        """Verify the public key is 0400 and owned by this user.

        Examples:

            skvault check-key
        """
        from ..keyguard import validate_public_key

        config = get_config(ctx)
        with reported_errors():
            validate_public_key(config.public_key)
        console.print(f"[green]OK[/] {config.public_key}")
