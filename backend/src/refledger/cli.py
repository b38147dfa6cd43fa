"""Command-line interface for refledger."""

from typing import Annotated

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from refledger.auth.credits import credit_service
from refledger.exceptions import RefLedgerError
from refledger.ledger.service import ledger_service
from refledger.logging_config import configure_logging, get_logger
from refledger.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="refledger",
    help="refledger - referral rewards ledger",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Bind port")] = 8000,
    reload: Annotated[bool, typer.Option("--reload", help="Restart on code changes")] = False,
) -> None:
    """Run the HTTP API."""
    console.print(f"[bold blue]Serving refledger API on http://{host}:{port}[/bold blue]")
    uvicorn.run(
        "refledger.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


@app.command("leaderboard")
def show_leaderboard(
    limit: Annotated[int, typer.Option("--limit", "-l", help="Number of users to show")] = 10,
) -> None:
    """Show the users with the most credits."""
    try:
        rows = credit_service.get_leaderboard(limit)
    except RefLedgerError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1)

    if not rows:
        console.print("[yellow]No users yet[/yellow]")
        return

    table = Table(title="Leaderboard")
    table.add_column("#", justify="right")
    table.add_column("User ID", style="cyan")
    table.add_column("Email", style="green")
    table.add_column("Credits", justify="right")
    table.add_column("Referral Code")

    for rank, row in enumerate(rows, start=1):
        table.add_row(
            str(rank),
            str(row["user_id"]),
            row["email"],
            str(row["credits"]),
            row["referral_code"],
        )

    console.print(table)


@app.command("history")
def show_history(
    user_id: Annotated[int, typer.Argument(help="User ID")],
    limit: Annotated[int, typer.Option("--limit", "-l", help="Max entries")] = 20,
) -> None:
    """Show a user's ledger entries, newest first."""
    try:
        entries = ledger_service.history_for(user_id, limit=limit)
    except RefLedgerError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1)

    if not entries:
        console.print(f"[yellow]No ledger entries for user {user_id}[/yellow]")
        return

    table = Table(title=f"Ledger for user {user_id}")
    table.add_column("ID", style="cyan")
    table.add_column("When")
    table.add_column("Delta", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Reason")
    table.add_column("Counterpart")
    table.add_column("Purchase")

    for entry in entries:
        table.add_row(
            str(entry.id),
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            f"{entry.delta:+d}",
            str(entry.balance_after),
            entry.reason.value,
            str(entry.counterpart_user_id or "-"),
            str(entry.purchase_id or "-"),
        )

    console.print(table)


@app.command("reconcile")
def reconcile() -> None:
    """Check every balance against the sum of its ledger entries."""
    mismatches = ledger_service.reconcile()

    if not mismatches:
        console.print("[bold green]✓[/bold green] All balances match the ledger")
        return

    table = Table(title="Balance mismatches")
    table.add_column("User ID", style="cyan")
    table.add_column("Email")
    table.add_column("Balance", justify="right")
    table.add_column("Ledger total", justify="right")

    for row in mismatches:
        table.add_row(
            str(row["user_id"]),
            row["email"],
            str(row["credits"]),
            str(row["ledger_total"]),
        )

    console.print(table)
    console.print(f"[bold red]✗[/bold red] {len(mismatches)} balance(s) out of sync")
    raise typer.Exit(1)


if __name__ == "__main__":
    app()
