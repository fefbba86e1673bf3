"""
FlowGate command line interface.

Runs the API server, triggers status sweeps and inspects the configured
servers from a terminal.
"""

import logging
import time
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from flowgate.config.settings import get_settings
from flowgate.version import __version__

console = Console()

app = typer.Typer(
    name="flowgate",
    help="FlowGate - analysis job orchestration for GenePattern and Galaxy",
    add_completion=False,
    rich_markup_mode="rich",
)


def _setup_logging(level: str) -> None:
    """Route every FlowGate logger through one RichHandler on the root logger."""
    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    rich_handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%X]"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[rich_handler],
        force=True,
    )


@app.callback(invoke_without_command=True)
def default_callback(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Override FLOWGATE_LOG_LEVEL"
    ),
):
    """FlowGate orchestration layer."""
    _setup_logging(log_level or get_settings().LOG_LEVEL)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()


def _orchestrator():
    from flowgate.core.orchestrator import Orchestrator

    return Orchestrator.from_settings(get_settings())


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Default: PORT"),
    host: Optional[str] = typer.Option(None, "--host", help="Default: HOST"),
):
    """
    Start the orchestration API server.
    """
    import uvicorn

    settings = get_settings()
    host = host or settings.HOST
    port = port or settings.PORT

    console.print(f"[cyan]Starting FlowGate {__version__} on {host}:{port}[/cyan]")
    uvicorn.run(
        "flowgate.api.main:create_app",
        factory=True,
        host=host,
        port=port,
        log_config=None,
    )


@app.command()
def check(
    user: Optional[str] = typer.Option(
        None, "--user", "-u", help="Only this user's analyses (default: all)"
    ),
    experiment: Optional[int] = typer.Option(None, "--experiment", "-e"),
):
    """Poll the backends once for unfinished analyses."""
    from flowgate.core.status_tracker import PollScope

    orchestrator = _orchestrator()
    if user:
        scope = PollScope.owner(user, experiment_id=experiment)
    else:
        scope = PollScope.all(experiment_id=experiment)

    report = orchestrator.tracker.poll(scope)

    table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan")
    table.add_column("Checked", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Unchanged", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("More polling", justify="center")
    table.add_row(
        str(report.checked),
        str(len(report.updated)),
        str(len(report.unchanged)),
        str(len(report.skipped)),
        "yes" if report.periodic_check_needed else "no",
    )
    console.print(table)


@app.command()
def sweep(
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i", help="Seconds between sweeps (default: FLOWGATE_SWEEP_INTERVAL)"
    ),
):
    """Run the status sweeper in the foreground until interrupted."""
    orchestrator = _orchestrator()
    interval = interval if interval is not None else get_settings().SWEEP_INTERVAL
    if interval <= 0:
        console.print("[red]Sweep interval must be positive[/red]")
        raise typer.Exit(1)

    console.print(f"[cyan]Sweeping every {interval:g}s (Ctrl+C to stop)[/cyan]")
    try:
        while True:
            report = orchestrator.sweeper.sweep_once()
            if report is not None and report.updated:
                console.print(f"[green]{len(report.updated)} analyses updated[/green]")
            time.sleep(interval)
    except KeyboardInterrupt:
        console.print("[dim]Sweeper stopped[/dim]")


@app.command()
def modules(server: str = typer.Argument(..., help="Name of a configured server")):
    """List the modules offered by a configured server."""
    from flowgate.core.exceptions import FlowgateError

    orchestrator = _orchestrator()
    registry = orchestrator.registry
    try:
        analysis_server = registry.get_server(server)
        client = orchestrator.clients.get(registry.classify(analysis_server))
        entries = client.list_modules(
            analysis_server, registry.credentials_for(analysis_server)
        )
    except FlowgateError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    table = Table(
        title=f"Modules on {server}", box=box.ROUNDED, border_style="cyan"
    )
    table.add_column("Name", style="bold white")
    table.add_column("Identifier", style="cyan")
    for entry in entries:
        table.add_row(
            str(entry.get("name", "")),
            str(entry.get("lsid") or entry.get("id") or ""),
        )
    console.print(table)


@app.command()
def config_show():
    """Display current configuration with masked secrets."""
    settings = get_settings()

    table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    for name, value in sorted(settings.get_all_settings().items()):
        table.add_row(name, str(value))

    console.print(
        Panel.fit("[bold cyan]FlowGate configuration[/bold cyan]", padding=(0, 2))
    )
    console.print(table)


if __name__ == "__main__":
    app()
