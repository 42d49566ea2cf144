"""Command-line interface for Project Ledger."""

from datetime import date, datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import Config, ensure_directories, load_config
from .db.repository import Database
from .exceptions import LedgerError
from .logging import configure_logging
from .processing.progress import project_progress
from .services import BillingService, HierarchyService, ProjectService, TrackingService

# Create Typer app with subcommands
app = typer.Typer(
    name="projectledger",
    help="Project tracking and billing ledger.",
    no_args_is_help=True,
)

project_app = typer.Typer(help="Inspect projects.")
tracking_app = typer.Typer(help="Manage public tracking codes.")
invoices_app = typer.Typer(help="Invoice maintenance.")

app.add_typer(project_app, name="project")
app.add_typer(tracking_app, name="tracking")
app.add_typer(invoices_app, name="invoices")

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file"),
]


def get_config(config_path: Path | None) -> Config:
    """Load configuration and set up logging."""
    config = load_config(config_path)
    configure_logging(config)
    return config


def get_db(config: Config) -> Database:
    """Get database connection and ensure it's initialized."""
    db = Database(config.database.path)
    db.initialize()
    return db


def fail(error: LedgerError) -> None:
    """Print a service error and exit non-zero."""
    console.print(f"[red]{error}[/red]")
    raise typer.Exit(1)


def money(cents: int, currency: str = "usd") -> str:
    return f"{cents / 100:,.2f} {currency.upper()}"


@app.command()
def version():
    """Show version information."""
    console.print(f"projectledger version {__version__}")


@app.command("init-db")
def init_db(config_path: ConfigOption = None):
    """Create the database schema."""
    config = get_config(config_path)
    ensure_directories(config)
    db = get_db(config)
    db.close()
    console.print(f"[green]Database initialized at {config.database.path}[/green]")


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to"),
    ] = None,
    config_path: ConfigOption = None,
):
    """Start the HTTP API server."""
    import uvicorn

    from .web import create_app

    config = get_config(config_path)
    ensure_directories(config)

    server_host = host or config.web.host
    server_port = port or config.web.port

    console.print("[cyan]Starting Project Ledger API...[/cyan]")
    console.print(f"  Host: {server_host}")
    console.print(f"  Port: {server_port}")
    console.print(f"  Config: {config_path or 'instance/config.yaml'}")

    uvicorn.run(create_app(config=config), host=server_host, port=server_port)


# Project subcommands


@project_app.command("show")
def project_show(
    project_id: Annotated[int, typer.Argument(help="Project ID")],
    config_path: ConfigOption = None,
):
    """Show a project's phases, tasks and progress."""
    config = get_config(config_path)
    db = get_db(config)

    try:
        project = ProjectService(db).get_project(project_id)
        tree = HierarchyService(db).project_tree(project_id)
        code = db.get_active_code_for_project(project_id)
        progress = project_progress([p.phase for p in tree], [t for p in tree for t in p.tasks])

        console.print(f"\n[bold]{project.title}[/bold] ({project.status})")
        console.print(f"  Tracking code: {code.code if code else '-'}")
        console.print(
            f"  Progress: {progress.completion_percentage}% "
            f"({progress.completed_phases}/{progress.total_phases} phases complete)\n"
        )

        table = Table(title="Phases")
        table.add_column("#", style="white", justify="right")
        table.add_column("Phase / Task", style="cyan")
        table.add_column("Status", style="yellow")
        table.add_column("Done", style="green", justify="right")
        table.add_column("Due", style="white")

        for item in tree:
            phase = item.phase
            table.add_row(
                str(phase.sort_order),
                f"[bold]{phase.name}[/bold]",
                phase.status,
                f"{item.completion_percentage}%",
                str(phase.estimated_end_date or ""),
            )
            for task in item.tasks:
                table.add_row("", f"  {task.name}", "", f"{task.completion_percentage}%", "")

        console.print(table)
    except LedgerError as e:
        fail(e)
    finally:
        db.close()


# Tracking subcommands


@tracking_app.command("regenerate")
def tracking_regenerate(
    project_id: Annotated[int, typer.Argument(help="Project ID")],
    config_path: ConfigOption = None,
):
    """Revoke the active tracking code and issue a new one."""
    config = get_config(config_path)
    db = get_db(config)

    try:
        code = TrackingService(db, config.tracking).regenerate(project_id, user="cli")
        base_url = config.tracking.public_base_url.rstrip("/")
        console.print(f"[green]New tracking code: {code.code}[/green]")
        console.print(f"  {base_url}/track/{code.code}")
    except LedgerError as e:
        fail(e)
    finally:
        db.close()


@tracking_app.command("resolve")
def tracking_resolve(
    code: Annotated[str, typer.Argument(help="Tracking code")],
    config_path: ConfigOption = None,
):
    """Show what the public sees for a tracking code."""
    config = get_config(config_path)
    db = get_db(config)

    try:
        tree = TrackingService(db, config.tracking).resolve(code)
        if tree is None:
            console.print(f"[red]Tracking code {code} not found[/red]")
            raise typer.Exit(1)

        progress = tree.progress
        table = Table(title=f"{tree.project.title} - {progress.completion_percentage}% complete")
        table.add_column("Phase", style="cyan")
        table.add_column("Status", style="yellow")
        table.add_column("Tasks", style="white", justify="right")
        table.add_column("Done", style="green", justify="right")
        for item in tree.phases:
            table.add_row(
                item.phase.name,
                item.phase.status,
                str(len(item.tasks)),
                f"{item.completion_percentage}%",
            )
        console.print(table)
    finally:
        db.close()


# Invoice subcommands


@invoices_app.command("mark-overdue")
def invoices_mark_overdue(
    as_of: Annotated[
        Optional[str],
        typer.Option("--as-of", help="Treat this date (YYYY-MM-DD) as today"),
    ] = None,
    config_path: ConfigOption = None,
):
    """Flag sent or partially paid invoices that are past due."""
    try:
        today = datetime.strptime(as_of, "%Y-%m-%d").date() if as_of else date.today()
    except ValueError:
        console.print(f"[red]Invalid date: {as_of} (expected YYYY-MM-DD)[/red]")
        raise typer.Exit(1)

    config = get_config(config_path)
    db = get_db(config)

    try:
        updated = BillingService(db, config=config.billing).mark_overdue(today=today)
        if not updated:
            console.print("[yellow]No invoices are overdue[/yellow]")
            raise typer.Exit(0)

        table = Table(title=f"Marked overdue as of {today}")
        table.add_column("Invoice", style="cyan")
        table.add_column("Due", style="white")
        table.add_column("Total", style="green", justify="right")
        for invoice in updated:
            table.add_row(
                invoice.invoice_number,
                str(invoice.due_date),
                money(invoice.total, invoice.currency),
            )
        console.print(table)
    finally:
        db.close()


@invoices_app.command("settle")
def invoices_settle(
    invoice_id: Annotated[int, typer.Argument(help="Invoice ID")],
    config_path: ConfigOption = None,
):
    """Set paid / partially paid from the invoice's succeeded payments."""
    config = get_config(config_path)
    db = get_db(config)

    try:
        invoice = BillingService(db, config=config.billing).settle_invoice(invoice_id)
        paid = db.sum_payments(invoice_id)
        console.print(
            f"[green]{invoice.invoice_number}: {invoice.status}[/green] "
            f"({money(paid, invoice.currency)} of {money(invoice.total, invoice.currency)})"
        )
    except LedgerError as e:
        fail(e)
    finally:
        db.close()


if __name__ == "__main__":
    app()
