import logging
import subprocess
import sys
from enum import Enum
from typing import Optional

import typer
from rich.console import Console

import bookbase.database as database
from bookbase.accounts import Accounts
from bookbase.circulation import Circulation
from bookbase.config import settings
from bookbase.database import initialize_database
from bookbase.exceptions import ExternalServiceError
from bookbase.library import Library
from bookbase.notifications import run_due_soon_job, run_overdue_job
from bookbase.services.email_service import EmailService
from bookbase.utils.ui_helpers import (
    print_books,
    print_checkouts,
    print_job_result,
    print_stats_result,
    set_output_mode,
)

logger = logging.getLogger(__name__)

console = Console()

app = typer.Typer(help="BookBase library management CLI")


class ReminderKind(str, Enum):
    due_soon = "due-soon"
    overdue = "overdue"


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
):
    """Global CLI options (output mode, logging)."""
    logging.basicConfig(level=logging.DEBUG if verbose else settings.log_level)
    if output:
        set_output_mode(output)


@app.command("init-db")
def cli_init_db():
    """Create or migrate the database schema."""
    initialize_database()
    print(f"Database ready at {database.DATABASE_FILE}")


@app.command("create-librarian")
def cli_create_librarian(
    email: str = typer.Option(..., "--email", "-e", help="Login email"),
    first_name: str = typer.Option(..., "--first-name", help="First name"),
    last_name: str = typer.Option(..., "--last-name", help="Last name"),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Create a librarian account, even when librarian self-registration is off."""
    Library()
    try:
        user = Accounts().create_librarian(email, password, first_name, last_name)
    except ValueError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Librarian created: {user.email} ({user.id})")


@app.command("books")
def cli_books(
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Only this genre"),
    available: bool = typer.Option(False, "--available", "-a", help="Only titles with copies on the shelf"),
):
    """List the catalog."""
    lib = Library()
    if genre:
        books = lib.books_by_genre(genre)
        if available:
            books = [b for b in books if b.available_copies > 0]
    elif available:
        books = lib.available_books()
    else:
        books = lib.list_books()
    print_books(books)


@app.command("stats")
def cli_stats():
    """Show catalog and circulation statistics."""
    print_stats_result(Library().get_statistics())


@app.command("overdue")
def cli_overdue():
    """List overdue loans, oldest due date first."""
    Library()
    print_checkouts(Circulation().overdue_for_report())


@app.command("remind")
def cli_remind(kind: ReminderKind = typer.Argument(..., help="due-soon or overdue")):
    """Run a reminder job now instead of waiting for the scheduler."""
    Library()
    try:
        if kind == ReminderKind.due_soon:
            result = run_due_soon_job()
        else:
            result = run_overdue_job()
    except (ValueError, ExternalServiceError) as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print_job_result(result)


@app.command("send-test-email")
def cli_send_test_email(recipient: str = typer.Argument(..., help="Address to send to")):
    """Check the SMTP settings by sending a short message."""
    result = EmailService().send(
        recipient,
        f"{settings.app_name} test email",
        "This is a test message from the library system. SMTP is configured correctly.",
    )
    if not result.success:
        print(f"Error: {result.error}")
        raise typer.Exit(code=1)
    print(f"Test email sent to {recipient} ({result.message_id})")


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host", help="Interface to bind"),
    port: int = typer.Option(settings.api_port, "--port", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the HTTP API with uvicorn."""
    url = f"http://{host}:{port}/"
    print(f"Starting API on {url}")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "bookbase.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args, check=True)
    except subprocess.CalledProcessError as e:
        console.print(f"[bold red]uvicorn exited with status {e.returncode}[/]")
        raise typer.Exit(code=e.returncode)
    except KeyboardInterrupt:
        console.print("[dim]Server stopped[/]")


if __name__ == "__main__":
    app()
