import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_books(books: List[Any]) -> None:
    """Print catalog entries in the current output mode.
    - plain: 'ISBN - Title by Authors (available/total)' lines, or 'No books in library.'
    - json: JSON array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ISBN", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Authors", style="white")
        table.add_column("Genre", style="white")
        table.add_column("Available", justify="right")
        for b in books:
            table.add_row(b.isbn, b.title, ", ".join(b.authors), b.genre or "",
                          f"{b.available_copies}/{b.total_copies}")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.isbn} - {b.title} by {', '.join(b.authors)} ({b.available_copies}/{b.total_copies})")


def print_checkouts(checkouts: List[Any], now=None) -> None:
    mode = get_output_mode()

    if not checkouts:
        print("No overdue books.")
        return

    rows = [c.to_dict(now, include_overdue_days=True) for c in checkouts]
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="⏰ Overdue", show_lines=True, header_style="bold red")
        table.add_column("Book", style="white")
        table.add_column("Borrower", style="white")
        table.add_column("Email", style="cyan")
        table.add_column("Due", no_wrap=True)
        table.add_column("Days overdue", justify="right", style="bold red")
        for c, row in zip(checkouts, rows):
            table.add_row((c.book or {}).get("title", ""), c.user_name, (c.user or {}).get("email", ""),
                          c.expected_return_date[:10], str(row["days_overdue"]))
        _console.print(table)
    else:
        for c, row in zip(checkouts, rows):
            print(f"{(c.book or {}).get('title', '')} - {c.user_name} <{(c.user or {}).get('email', '')}> "
                  f"due {c.expected_return_date[:10]} ({row['days_overdue']} days overdue)")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode.
    - plain: one 'Label: value' line per metric
    - json: JSON object
    - rich: Panel with the main metrics
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = [
        ("Total Books", "total_books"),
        ("Total Copies", "total_copies"),
        ("Available Copies", "available_copies"),
        ("Genres", "genres"),
        ("Users", "total_users"),
        ("Active Checkouts", "active_checkouts"),
        ("Overdue Checkouts", "overdue_checkouts"),
    ]

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for label, key in labels)
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for label, key in labels:
            print(f"{label}: {stats.get(key, 0)}")


def print_job_result(result: Dict[str, Any]) -> None:
    """Print the outcome of a reminder job."""
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(result, ensure_ascii=False))
    elif mode == "rich":
        details = result.get("details") or {}
        body = result.get("message", "")
        if details:
            body += "\n" + "\n".join(f"[bold]{k}:[/] {v}" for k, v in details.items())
        _console.print(Panel.fit(body, title="✉️  Reminders", border_style="green"))
    else:
        print(result.get("message", ""))
        for key, value in (result.get("details") or {}).items():
            print(f"  {key}: {value}")
