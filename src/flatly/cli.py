"""flatly CLI - Command-line interface.

Usage:
    flatly add <package>
    flatly remove <package>
    flatly daemon [--once]
    flatly status [--json]
"""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from flatly.config import FlatlyPaths, FlatlySettings, load_settings, resolve_paths
from flatly.exceptions import FlatlyError
from flatly.modules.package_manager import FlatpakManager, PackageManager
from flatly.modules.state_store import StateStore
from flatly.types import OutcomeType, PackageOutcome, StatusReport

console = Console()
app = typer.Typer(
    name="flatly",
    help="Keep installed Flatpak applications in line with a declared list",
)

DEBUG_OPTION = typer.Option(
    False,
    "--debug",
    "-d",
    help="Keep active.json in the current directory",
)
VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Enable verbose logging",
)


def setup_logging(verbose: bool = False) -> None:
    """Set up logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_time=True, show_path=False)],
    )

    logging.getLogger("flatly").setLevel(level)


@app.callback(invoke_without_command=True)
def usage(ctx: typer.Context) -> None:
    """Print usage when no command is given."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


def build_manager(settings: FlatlySettings) -> PackageManager:
    """Create the package manager backend from settings."""
    return FlatpakManager(
        settings.flatpak_binary,
        installation=settings.installation,
        remote=settings.remote,
        command_timeout=settings.command_timeout,
        query_timeout=settings.query_timeout,
    )


def _load(debug: bool, **overrides) -> tuple[FlatlyPaths, FlatlySettings, StateStore]:
    paths = resolve_paths(debug=debug)
    paths.ensure_root()
    settings = load_settings(paths, **overrides)
    store = StateStore(paths.active_file, paths.backup_dir)
    return paths, settings, store


def _run_one_shot(action: str, package: str, debug: bool, verbose: bool) -> None:
    from flatly.modules.locking import state_lock
    from flatly.modules.pipeline import run_add, run_remove

    setup_logging(verbose=verbose)

    runner = run_add if action == "add" else run_remove
    try:
        paths, settings, store = _load(debug)
        manager = build_manager(settings)
        with state_lock(paths.lock_file, timeout=settings.lock_timeout):
            outcome = runner(store, manager, package, settings)
    except FlatlyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    _output_outcome(outcome)


@app.command()
def add(
    package: str = typer.Argument(..., help="Application ID, e.g. org.gimp.GIMP"),
    debug: bool = DEBUG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Install an application and record it in active.json."""
    _run_one_shot("add", package, debug, verbose)


@app.command()
def remove(
    package: str = typer.Argument(..., help="Application ID, e.g. org.gimp.GIMP"),
    debug: bool = DEBUG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Uninstall an application and record the change in active.json."""
    _run_one_shot("remove", package, debug, verbose)


@app.command()
def daemon(
    once: bool = typer.Option(
        False,
        "--once",
        help="Run a single cycle and exit",
    ),
    interval: float = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between cycles (overrides config)",
    ),
    debug: bool = DEBUG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Watch active.json and reconcile installed applications."""
    from flatly.modules.daemon import DaemonLoop

    setup_logging(verbose=verbose)

    try:
        paths, settings, store = _load(debug, interval_seconds=interval)
    except FlatlyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    loop = DaemonLoop(store, build_manager(settings), settings, lock_file=paths.lock_file)
    if once:
        loop.run(max_ticks=1)
        return

    loop.install_signal_handlers()
    loop.run()


@app.command()
def status(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output results as JSON",
    ),
    debug: bool = DEBUG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show drift between active.json and installed applications."""
    from flatly.modules.policy import build_status_report

    setup_logging(verbose=verbose)

    try:
        paths = resolve_paths(debug=debug)
        settings = load_settings(paths)
        store = StateStore(paths.active_file, paths.backup_dir)
        declared, existed = store.read()
        if not existed:
            console.print(f"[yellow]No state file at {paths.active_file}[/yellow]")
            console.print("Run [bold]flatly daemon[/bold] once to create it.")
            raise typer.Exit(2)
        installed = build_manager(settings).list_installed()
    except FlatlyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2)

    report = build_status_report(declared, installed, str(paths.active_file))

    if output_json:
        print(report.model_dump_json(indent=2))
    else:
        _output_status(report)

    if not report.in_sync:
        raise typer.Exit(1)


@app.command()
def backups(
    debug: bool = DEBUG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """List backups of active.json, oldest first."""
    setup_logging(verbose=verbose)

    try:
        paths = resolve_paths(debug=debug)
    except FlatlyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    store = StateStore(paths.active_file, paths.backup_dir)
    found = store.list_backups()
    if not found:
        console.print(f"No backups in {paths.backup_dir}")
        return

    table = Table(title=f"Backups ({len(found)})")
    table.add_column("File")
    table.add_column("Size", justify="right")
    for path in found:
        table.add_row(path.name, f"{path.stat().st_size} B")
    console.print(table)


def _output_outcome(outcome: PackageOutcome) -> None:
    """Print the result of a one-shot command."""
    messages = {
        OutcomeType.INSTALLED: f"[green]✓ {outcome.package} successfully installed[/green]",
        OutcomeType.REMOVED: f"[green]✓ {outcome.package} successfully uninstalled[/green]",
        OutcomeType.SKIPPED_ALREADY_PRESENT: f"{outcome.package} is already installed. Skipping.",
        OutcomeType.SKIPPED_ALREADY_ABSENT: f"{outcome.package} is not installed. Skipping.",
    }
    console.print(messages.get(outcome.outcome, f"{outcome.package}: {outcome.outcome.value}"))


def _output_status(report: StatusReport) -> None:
    """Output drift report with rich formatting."""
    if report.in_sync:
        console.print(Panel(
            f"[green]✓ In sync[/green]\n\n"
            f"{len(report.declared)} declared packages are installed.",
            title="Status",
            border_style="green",
        ))
        return

    console.print(Panel(
        f"[yellow]Drift detected[/yellow]\n\n"
        f"Missing: {len(report.missing)}\n"
        f"Extra: {len(report.extra)}",
        title="Status",
        border_style="yellow",
    ))

    table = Table(title=f"Drift ({report.state_file})")
    table.add_column("Package")
    table.add_column("State")
    for name in report.missing:
        table.add_row(name, "[red]declared, not installed[/red]")
    for name in report.extra:
        table.add_row(name, "[yellow]installed, not declared[/yellow]")
    console.print(table)


@app.command()
def version(
    debug: bool = DEBUG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show version information and where state is kept."""
    from flatly import __version__

    setup_logging(verbose=verbose)

    console.print(f"flatly version {__version__}")
    try:
        paths = resolve_paths(debug=debug)
    except FlatlyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"State file: {paths.active_file}", soft_wrap=True)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
