"""CLI entry point for fabengine.

Commands:
- fabengine start [--debug] [--slow] [--port PORT] [--data-dir PATH]
- fabengine info [--port PORT]
- fabengine secret show/reset
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from fabengine import __version__
from fabengine.config import Settings
from fabengine.engine.config_store import EngineConfig
from fabengine.engine.errors import BootError
from fabengine.engine.secret import SecretProvisioner, mask_secret

console = Console()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _settings(data_dir: str | None, **kwargs) -> Settings:
    settings = Settings(**kwargs)
    if data_dir:
        settings.data_dir = Path(data_dir).expanduser()
    return settings


@click.group()
@click.version_option(version=__version__)
def cli():
    """fabengine - CNC controller host engine."""
    pass


@cli.command()
@click.option("--debug", is_flag=True, help="Debug mode: verbose logs, cache busting")
@click.option("--slow", is_flag=True, help="With --debug, add random request latency")
@click.option("--port", type=int, default=None, help="Override the configured port")
@click.option("--data-dir", type=click.Path(), default=None, help="Engine data directory")
@click.option("--stage-timeout", type=float, default=None, help="Per-stage timeout (s)")
@click.option("--log-level", default="info", help="Log level")
def start(
    debug: bool,
    slow: bool,
    port: int | None,
    data_dir: str | None,
    stage_timeout: float | None,
    log_level: str,
):
    """Boot the engine and serve the dashboard."""
    from fabengine.engine.engine import Engine

    if slow and not debug:
        console.print("[yellow]--slow has no effect without --debug[/yellow]")

    _configure_logging("debug" if debug else log_level)
    settings = _settings(
        data_dir, debug=debug, slow=slow, port=port, stage_timeout=stage_timeout
    )
    mode_text = "[yellow]DEBUG[/yellow]" if debug else "[green]NORMAL[/green]"
    console.print(f"[bold blue]Starting fabengine ({mode_text})[/bold blue]")
    console.print(f"[dim]Data directory: {settings.data_dir}[/dim]")

    engine = Engine(settings)

    async def run() -> None:
        await engine.start()
        await engine.serve()

    try:
        asyncio.run(run())
    except BootError as e:
        console.print(f"[red]Boot failed in stage {e.stage}: {escape(str(e.cause))}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Engine stopped by user[/yellow]")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Engine host")
@click.option("--port", type=int, default=80, help="Engine port")
def info(host: str, port: int):
    """Show version information of a running engine."""
    import httpx

    try:
        response = httpx.get(f"http://{host}:{port}/info", timeout=5.0)
    except httpx.ConnectError:
        console.print("[red]Cannot connect to engine[/red]")
        console.print("[dim]Is the engine running? Start with: fabengine start[/dim]")
        sys.exit(1)

    if response.status_code != 200:
        console.print(f"[red]Engine returned {response.status_code}[/red]")
        console.print(f"[dim]{response.text}[/dim]")
        sys.exit(1)

    data = response.json()["data"]["info"]
    version = data.get("version") or {}
    firmware = data.get("firmware") or {}

    table = Table(title="Engine Info")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Version", version.get("number") or "-")
    table.add_row("Hash", version.get("hash") or "-")
    table.add_row("Type", version.get("type") or "-")
    table.add_row("Debug", str(version.get("debug", False)))
    table.add_row("Firmware Build", str(firmware.get("build") or "-"))
    table.add_row("Firmware Version", str(firmware.get("version") or "-"))
    table.add_row("Firmware Config", str(firmware.get("config") or "-"))
    console.print(table)


@cli.group()
def secret():
    """Session secret management."""
    pass


@secret.command("show")
@click.option("--data-dir", type=click.Path(), default=None, help="Engine data directory")
def show_secret(data_dir: str | None):
    """Show the session secret (masked)."""
    settings = _settings(data_dir)
    provisioner = SecretProvisioner(EngineConfig(settings.data_dir).secret_path)
    value = provisioner.read()
    if value:
        console.print(f"[bold]Secret:[/bold] {mask_secret(value)}")
        console.print(f"[dim]Stored in {provisioner.path}[/dim]")
    else:
        console.print("[yellow]No valid secret found.[/yellow]")
        console.print("[dim]One is generated on the next 'fabengine start'.[/dim]")


@secret.command("reset")
@click.option("--data-dir", type=click.Path(), default=None, help="Engine data directory")
@click.confirmation_option(prompt="This will sign out every session. Continue?")
def reset_secret(data_dir: str | None):
    """Delete the session secret so a new one is generated on next start."""
    settings = _settings(data_dir)
    provisioner = SecretProvisioner(EngineConfig(settings.data_dir).secret_path)
    if provisioner.delete():
        console.print("[green]✓ Secret deleted[/green]")
        console.print("[yellow]Note: Restart the engine to generate a new one.[/yellow]")
    else:
        console.print("[dim]No secret to delete.[/dim]")


if __name__ == "__main__":
    cli()
