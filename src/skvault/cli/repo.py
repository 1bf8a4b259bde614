"""Repository commands: list, prune."""

from __future__ import annotations

from typing import Optional

import click
from rich.table import Table

from ._common import console, get_config, reported_errors


def register_repo_commands(main: click.Group) -> None:
    """Register repository inspection and retention commands."""

    @main.command("list")
    @click.pass_context
    def list_cmd(ctx: click.Context):
        """List artifacts in the repository.

        Examples:

            skvault list
        """
        from ..backup import list_backups

        config = get_config(ctx)
        artifacts = list_backups(config)

        if not artifacts:
            console.print("\n[dim]No backups found.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Backup", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Created", style="dim")
        table.add_column("State")

        for a in artifacts:
            size_kb = a.size / 1024
            created = a.created.isoformat()[:19] if a.created else "-"
            state = "[green]complete[/]" if a.complete else "[red]incomplete[/]"
            table.add_row(a.backup_id, f"{size_kb:.1f} KB", created, state)

        console.print(f"\n[bold]{len(artifacts)}[/] backup(s):\n")
        console.print(table)
        console.print()

    @main.command("prune")
    @click.option("--days", default=None, type=click.IntRange(min=0),
                  help="Retention in days. Defaults to the configured value.")
    @click.pass_context
    def prune(ctx: click.Context, days: Optional[int]):
        """Delete artifacts older than the retention period.

        Examples:

            skvault prune

            skvault prune --days 7
        """
        from ..backup import prune_backups

        config = get_config(ctx)
        with reported_errors():
            report = prune_backups(config, days=days)

        console.print(f"Pruned [bold]{report.count}[/] file(s)")
        for path in report.deleted:
            console.print(f"  [dim]{path}[/]")
        if report.errors:
            for err in report.errors:
                console.print(f"  [red]{err}[/]")
            raise SystemExit(1)
