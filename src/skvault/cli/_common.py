"""Shared utilities for all CLI command modules.

Provides the Rich consoles, config loading from the Click context, and
the one place where VaultError turns into an exit status.
"""

from __future__ import annotations

import signal
from contextlib import contextmanager
from typing import Iterator

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import describe_config, load_config
from ..errors import VaultError
from ..models import VaultConfig

console = Console()
err_console = Console(stderr=True)


def get_config(ctx: click.Context) -> VaultConfig:
    """Load the config named by the global options, exit 1 on failure."""
    obj = ctx.find_root().obj or {}
    with reported_errors():
        config = load_config(root=obj.get("root"), config_file=obj.get("config_file"))
    if obj.get("verbose"):
        print_config(config)
    return config


def print_config(config: VaultConfig) -> None:
    """Dump loaded settings to stderr (verbose mode)."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in describe_config(config).items():
        table.add_row(name, value)
    err_console.print("[bold]Loaded settings:[/]")
    err_console.print(table)


@contextmanager
def reported_errors() -> Iterator[None]:
    """Print any VaultError to stderr and exit with status 1."""
    try:
        yield
    except VaultError as exc:
        err_console.print(f"[red]{escape(str(exc))}[/]", soft_wrap=True)
        raise SystemExit(1)


def _terminate(signum, frame):
    raise SystemExit(128 + signum)


def exit_on_sigterm() -> None:
    """Turn SIGTERM into SystemExit so context managers unwind."""
    signal.signal(signal.SIGTERM, _terminate)
